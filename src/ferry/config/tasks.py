"""
Task definitions.

A task is one synchronisation job: where to read, where to write, which
files qualify, how long transferred files are kept, and when it runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ferry.config.loader import Config
from ferry.exceptions import ConfigurationError
from ferry.filesystems.factory import BACKEND_KINDS

_DEFAULT_PORTS = {"sftp": 22, "ftp": 21}


@dataclass(frozen=True)
class Auth:
    """Credentials for a remote backend."""

    host: str
    port: int
    user: str = ""
    password: str = ""
    private_key_path: str | None = None
    private_key_passphrase: str | None = None
    timeout_s: float = 30.0

    def __repr__(self) -> str:
        # Keep secrets out of logs
        return f"Auth(host='{self.host}', port={self.port}, user='{self.user}')"


@dataclass(frozen=True)
class Task:
    """One configured synchronisation job."""

    name: str
    cron: str
    source_type: str
    source_path: str
    target_type: str
    target_path: str
    source_regex: str = ".*"
    retention_days: int = 0
    source_newer_days: int = 0
    source_auth: Auth | None = None
    target_auth: Auth | None = None


def _int_field(task_name: str, data: dict[str, Any], key: str) -> int:
    value = data.get(key, 0)
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ConfigurationError(f"Task '{task_name}': '{key}' must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Task '{task_name}': '{key}' must be an integer, got {value!r}") from e


def _auth_from_dict(task_name: str, side: str, kind: str, data: Any) -> Auth | None:
    if kind == "local":
        return None
    if not isinstance(data, dict) or not data.get("host"):
        raise ConfigurationError(
            f"Task '{task_name}': '{side}_auth' with at least 'host' is required for {kind}",
            details={"task": task_name},
        )
    try:
        port = int(data.get("port") or _DEFAULT_PORTS[kind])
        timeout_s = float(data.get("timeout_s", 30.0))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Task '{task_name}': invalid '{side}_auth': {e}") from e
    return Auth(
        host=str(data["host"]),
        port=port,
        user=str(data.get("user") or ""),
        password=str(data.get("password") or ""),
        private_key_path=data.get("private_key_path"),
        private_key_passphrase=data.get("private_key_passphrase"),
        timeout_s=timeout_s,
    )


def task_from_dict(data: dict[str, Any]) -> Task:
    """Build and validate a Task from its config mapping."""
    if not isinstance(data, dict):
        raise ConfigurationError(f"Each task must be a mapping, got {type(data).__name__}")

    name = str(data.get("name") or "").strip()
    if not name:
        raise ConfigurationError("Task is missing 'name'")

    cron = str(data.get("cron") or "").strip()
    if not cron:
        raise ConfigurationError(f"Task '{name}' is missing 'cron'", details={"task": name})

    kinds = {}
    for side in ("source", "target"):
        kind = str(data.get(f"{side}_type") or "").strip().lower()
        if kind not in BACKEND_KINDS:
            raise ConfigurationError(
                f"Task '{name}': '{side}_type' must be one of {', '.join(BACKEND_KINDS)}, got {kind!r}",
                details={"task": name},
            )
        kinds[side] = kind

    return Task(
        name=name,
        cron=cron,
        source_type=kinds["source"],
        source_path=str(data.get("source_path") or ""),
        target_type=kinds["target"],
        target_path=str(data.get("target_path") or ""),
        source_regex=str(data.get("source_regex") or ".*"),
        retention_days=_int_field(name, data, "retention_days"),
        source_newer_days=_int_field(name, data, "source_newer_days"),
        source_auth=_auth_from_dict(name, "source", kinds["source"], data.get("source_auth")),
        target_auth=_auth_from_dict(name, "target", kinds["target"], data.get("target_auth")),
    )


def load_tasks(config: Config) -> list[Task]:
    """
    Build the task list from a loaded configuration.

    Raises:
        ConfigurationError: A task is malformed or two tasks share a name
    """
    tasks: list[Task] = []
    seen: set[str] = set()
    for raw in config.tasks:
        task = task_from_dict(raw)
        if task.name in seen:
            raise ConfigurationError(f"Duplicate task name: '{task.name}'", details={"task": task.name})
        seen.add(task.name)
        tasks.append(task)
    return tasks
