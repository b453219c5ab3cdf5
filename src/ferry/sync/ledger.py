"""
History ledger: which relative paths each task has already transferred.

On disk the ledger is one JSON document::

    {"<task name>": {"records": {"<relative path>": "<ISO-8601 timestamp>"}}}

It is loaded once at startup and rewritten wholesale after every task run
and at shutdown. The ledger map and every TaskHistory map have their own
lock; the locks keep concurrent runs from corrupting memory, nothing more.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ferry.exceptions import LedgerIOError
from ferry.utils.logging import get_logger


def _parse_timestamp(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts


class TaskHistory:
    """Relative path -> time of the last successful transfer, for one task."""

    def __init__(self, records: dict[str, datetime] | None = None):
        self._records: dict[str, datetime] = dict(records or {})
        self._lock = threading.RLock()

    def add(self, path: str, when: datetime | None = None) -> None:
        with self._lock:
            self._records[path] = when or datetime.now(UTC)

    def has(self, path: str) -> bool:
        with self._lock:
            return path in self._records

    def get(self, path: str) -> datetime | None:
        """Transfer time for a path, or None if it was never transferred."""
        with self._lock:
            return self._records.get(path)

    def remove(self, path: str) -> None:
        with self._lock:
            self._records.pop(path, None)

    def snapshot(self) -> dict[str, datetime]:
        """Copy of all records, taken under the lock."""
        with self._lock:
            return dict(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._records

    def to_dict(self) -> dict[str, Any]:
        return {"records": {path: ts.isoformat() for path, ts in self.snapshot().items()}}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskHistory:
        records = data.get("records") or {}
        return cls({str(path): _parse_timestamp(str(ts)) for path, ts in records.items()})


class HistoryLedger:
    """
    Per-task transfer histories, persisted as one JSON file.

    ``get_task_history`` always hands out the same TaskHistory instance for
    a given name, so mutations made by a run are seen by every later save.
    """

    def __init__(self, path: str | Path, *, logger: logging.Logger | None = None):
        self.path = Path(path)
        self._tasks: dict[str, TaskHistory] = {}
        self._lock = threading.RLock()
        # Serialises writers of the backing file
        self._save_lock = threading.Lock()
        self.logger = logger or get_logger("ferry.sync.ledger")

    def load(self) -> None:
        """
        Replace in-memory state with the persisted ledger.

        A missing file is a first run and leaves the ledger empty.

        Raises:
            LedgerIOError: The file exists but cannot be read or parsed
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            self.logger.debug(f"No history file at {self.path}, starting empty")
            return
        except OSError as e:
            raise LedgerIOError(f"Cannot read history file {self.path}: {e}", path=str(self.path)) from e

        try:
            data = json.loads(raw) if raw.strip() else {}
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            tasks = {str(name): TaskHistory.from_dict(entry or {}) for name, entry in data.items()}
        except (ValueError, TypeError, AttributeError) as e:
            raise LedgerIOError(f"Cannot parse history file {self.path}: {e}", path=str(self.path)) from e

        with self._lock:
            self._tasks = tasks
        self.logger.info(f"Loaded history for {len(tasks)} task(s) from {self.path}")

    def save(self) -> None:
        """
        Write the full ledger, replacing the backing file atomically.

        Raises:
            LedgerIOError: The file cannot be written; in-memory state is kept
        """
        data = self.to_dict()
        tmp_path = self.path.with_name(f"{self.path.name}.part")
        with self._save_lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
                os.replace(tmp_path, self.path)
            except OSError as e:
                raise LedgerIOError(f"Cannot write history file {self.path}: {e}", path=str(self.path)) from e

    def get_task_history(self, task_name: str) -> TaskHistory:
        """Return the history for a task, creating and registering it on first access."""
        with self._lock:
            history = self._tasks.get(task_name)
            if history is None:
                history = TaskHistory()
                self._tasks[task_name] = history
            return history

    def task_names(self) -> list[str]:
        with self._lock:
            return list(self._tasks)

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            tasks = dict(self._tasks)
        return {name: history.to_dict() for name, history in tasks.items()}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(path='{self.path}', tasks={len(self.task_names())})"
