"""
Transfer engine: one run of one task.

A run opens both backends, walks the source tree depth-first, copies every
file that passes the name filter, the staleness filter and the ledger check,
then (optionally) deletes destination files whose ledger entry has aged past
the retention window, and finally saves the ledger.

Failures are contained at the smallest scope that makes sense: a file that
fails is logged and retried next run (no ledger entry is written), a
directory that fails to list is skipped along with its subtree, and only
connection or filter-regex problems abort the whole run.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from ferry.config.tasks import Auth, Task
from ferry.exceptions import ConfigurationError, ConnectionError_, FerryError, FilesystemError, LedgerIOError
from ferry.filesystems.base import FileSystem, join_rel
from ferry.filesystems.factory import create_filesystem
from ferry.sync.ledger import HistoryLedger, TaskHistory
from ferry.utils.logging import get_logger

COPY_CHUNK_SIZE = 1024 * 1024

FileSystemFactory = Callable[[str, str, Auth | None], FileSystem]


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class RunSummary:
    """Counters for one task run."""

    task: str
    started_at: datetime
    finished_at: datetime | None = None
    transferred: int = 0
    skipped: int = 0
    failed: int = 0
    failed_dirs: int = 0
    removed: int = 0
    bytes_copied: int = 0

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data


class TransferEngine:
    """
    Runs tasks against a shared HistoryLedger.

    Runs of the same task are serialised by a per-task lock, so an immediate
    run and a scheduled run of one task never overlap; different tasks run
    fully in parallel.

    Args:
        ledger: Shared history ledger
        filesystem_factory: Builds an un-initialised backend from (kind, root, auth)
        clock: Returns the current time as a timezone-aware datetime
        logger: Logger for run progress (default: ``ferry.sync.engine``)
    """

    def __init__(
        self,
        ledger: HistoryLedger,
        *,
        filesystem_factory: FileSystemFactory = create_filesystem,
        clock: Callable[[], datetime] = utc_now,
        logger: logging.Logger | None = None,
    ):
        self.ledger = ledger
        self.filesystem_factory = filesystem_factory
        self.clock = clock
        self.logger = logger or get_logger("ferry.sync.engine")
        self._task_locks: dict[str, threading.Lock] = {}
        self._task_locks_guard = threading.Lock()

    def _lock_for(self, task_name: str) -> threading.Lock:
        with self._task_locks_guard:
            lock = self._task_locks.get(task_name)
            if lock is None:
                lock = self._task_locks[task_name] = threading.Lock()
            return lock

    def is_running(self, task_name: str) -> bool:
        return self._lock_for(task_name).locked()

    def run_task(self, task: Task) -> RunSummary:
        """
        Run one task to completion, blocking.

        Raises:
            ConfigurationError: The task's filename regex does not compile (no I/O is attempted)
            ConnectionError_: Either backend could not be initialised
        """
        try:
            pattern = re.compile(task.source_regex)
        except re.error as e:
            raise ConfigurationError(
                f"Task '{task.name}': invalid source_regex {task.source_regex!r}: {e}", details={"task": task.name}
            ) from e

        lock = self._lock_for(task.name)
        if lock.locked():
            self.logger.info(f"Task {task.name} is already running, waiting for it to finish")
        with lock:
            return self._run_locked(task, pattern)

    def _run_locked(self, task: Task, pattern: re.Pattern[str]) -> RunSummary:
        summary = RunSummary(task=task.name, started_at=self.clock())
        self.logger.info(f"Starting task: {task.name}")
        try:
            with ExitStack() as stack:
                src = stack.enter_context(
                    self._open_filesystem(task.name, "source", task.source_type, task.source_path, task.source_auth)
                )
                dst = stack.enter_context(
                    self._open_filesystem(task.name, "target", task.target_type, task.target_path, task.target_auth)
                )

                history = self.ledger.get_task_history(task.name)

                self._process_directory(src, dst, "", task, pattern, history, summary)

                # Cleanup runs even when parts of the traversal failed
                if task.retention_days > 0:
                    self._cleanup(dst, task, history, summary)
        finally:
            self._save_ledger()
            summary.finished_at = self.clock()

        self.logger.info(
            f"Finished task: {task.name} (transferred={summary.transferred}, skipped={summary.skipped}, "
            f"failed={summary.failed}, failed_dirs={summary.failed_dirs}, removed={summary.removed})"
        )
        return summary

    @contextmanager
    def _open_filesystem(
        self, task_name: str, side: str, kind: str, root_path: str, auth: Auth | None
    ) -> Iterator[FileSystem]:
        """Build and initialise one backend; it is closed on every exit path."""
        try:
            fs = self.filesystem_factory(kind, root_path, auth)
        except FerryError as e:
            raise ConnectionError_(
                f"Task '{task_name}': cannot create {side} filesystem of type '{kind}': {e}",
                details={"task": task_name},
            ) from e
        try:
            fs.init()
        except ConnectionError_:
            fs.close()
            raise
        except (FerryError, OSError) as e:
            fs.close()
            raise ConnectionError_(
                f"Task '{task_name}': failed to init {side} filesystem {fs!r}: {e}", details={"task": task_name}
            ) from e

        if not fs.capabilities.native_stat or not fs.capabilities.native_mkdir_all:
            self.logger.debug(f"{side} {fs!r}: stat/mkdir_all are synthesised (O(siblings) stat, advisory mkdir)")
        try:
            yield fs
        finally:
            fs.close()

    def _process_directory(
        self,
        src: FileSystem,
        dst: FileSystem,
        rel_dir: str,
        task: Task,
        pattern: re.Pattern[str],
        history: TaskHistory,
        summary: RunSummary,
    ) -> None:
        try:
            entries = src.list(rel_dir)
        except Exception as e:
            summary.failed_dirs += 1
            self.logger.error(f"Error processing directory '{rel_dir or '/'}' for task {task.name}: {e}")
            return

        for entry in entries:
            rel_path = join_rel(rel_dir, entry.name)

            if entry.is_dir:
                self._process_directory(src, dst, rel_path, task, pattern, history, summary)
                continue

            if not pattern.fullmatch(entry.name):
                summary.skipped += 1
                self.logger.debug(f"Skip {rel_path}: name does not match {task.source_regex!r}")
                continue

            if task.source_newer_days > 0:
                cutoff = self.clock() - timedelta(days=task.source_newer_days)
                if entry.mod_time < cutoff:
                    summary.skipped += 1
                    self.logger.debug(f"Skip {rel_path}: modified {entry.mod_time.isoformat()} before {cutoff.isoformat()}")
                    continue

            if history.has(rel_path):
                summary.skipped += 1
                self.logger.debug(f"Skip {rel_path}: already transferred")
                continue

            try:
                copied = self._transfer_file(src, dst, rel_path)
            except Exception as e:
                summary.failed += 1
                self.logger.error(f"Failed to transfer {rel_path} for task {task.name}: {e}")
                continue

            history.add(rel_path, self.clock())
            summary.transferred += 1
            summary.bytes_copied += copied
            self.logger.info(f"Transferred file: {rel_path} (size: {copied})")

    def _transfer_file(self, src: FileSystem, dst: FileSystem, rel_path: str) -> int:
        """Copy one file end to end, returning the number of bytes written."""
        parent = rel_path.rpartition("/")[0]
        if parent:
            dst.mkdir_all(parent)

        copied = 0
        with src.open(rel_path) as reader, dst.create(rel_path) as writer:
            while True:
                chunk = reader.read(COPY_CHUNK_SIZE)
                if not chunk:
                    break
                writer.write(chunk)
                copied += len(chunk)
        return copied

    def _cleanup(self, dst: FileSystem, task: Task, history: TaskHistory, summary: RunSummary) -> None:
        """Remove destination files whose ledger entry is older than the retention window."""
        cutoff = self.clock() - timedelta(days=task.retention_days)

        # Copy first so no lock is held during backend I/O
        records = history.snapshot()

        for rel_path, transferred_at in records.items():
            if not transferred_at < cutoff:
                continue

            try:
                dst.stat(rel_path)
            except FilesystemError:
                # Already gone
                continue

            self.logger.info(f"Cleaning up old file: {rel_path} (transferred at {transferred_at.isoformat()})")
            try:
                dst.remove(rel_path)
            except Exception as e:
                self.logger.error(f"Failed to remove {rel_path} for task {task.name}: {e}")
                continue
            summary.removed += 1

    def _save_ledger(self) -> None:
        try:
            self.ledger.save()
        except LedgerIOError as e:
            self.logger.warning(f"Failed to save history: {e}")
