"""
Ferry - scheduled, idempotent file transfer between local disk, SFTP and FTP.
"""

__version__ = "0.1.0"

from ferry.config import Auth, Config, Task, load_config, load_tasks
from ferry.exceptions import (
    ConfigurationError,
    ConnectionError_,
    CreateError,
    FerryConnectionError,
    FerryError,
    FilesystemError,
    LedgerIOError,
    ListError,
    MkdirError,
    NotFoundError,
    OpenError,
    RemoveError,
    StatError,
)
from ferry.filesystems import FileEntry, FileSystem, create_filesystem
from ferry.service import TaskScheduler
from ferry.sync import HistoryLedger, RunSummary, TaskHistory, TransferEngine
from ferry.utils.logging import get_logger, setup_logging, setup_logging_from_config

__all__ = [
    "__version__",
    # Configuration
    "Auth",
    "Config",
    "Task",
    "load_config",
    "load_tasks",
    # Filesystems
    "FileEntry",
    "FileSystem",
    "create_filesystem",
    # Core
    "HistoryLedger",
    "TaskHistory",
    "TransferEngine",
    "RunSummary",
    "TaskScheduler",
    # Exceptions
    "FerryError",
    "ConfigurationError",
    "ConnectionError_",
    "FerryConnectionError",
    "FilesystemError",
    "ListError",
    "OpenError",
    "CreateError",
    "MkdirError",
    "StatError",
    "NotFoundError",
    "RemoveError",
    "LedgerIOError",
    # Logging
    "get_logger",
    "setup_logging",
    "setup_logging_from_config",
]
