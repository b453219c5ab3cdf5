"""
Ferry exception hierarchy.

All domain-specific exceptions inherit from FerryError, making it easy
to catch any ferry error with a single base class while still allowing
fine-grained handling when needed.

Hierarchy::

    FerryError
    ├── ConfigurationError        - config loading, task validation, bad filter regex
    ├── ConnectionError_          - backend dial / authentication failures
    ├── FilesystemError           - per-operation backend I/O failures
    │   ├── ListError             - directory listing
    │   ├── OpenError             - opening a file for reading
    │   ├── CreateError           - creating / writing a file
    │   ├── MkdirError            - directory creation
    │   ├── StatError             - stat failures other than "missing"
    │   │   └── NotFoundError     - path does not exist
    │   └── RemoveError           - file deletion
    └── LedgerIOError             - history ledger load / save
"""

from __future__ import annotations


class FerryError(Exception):
    """Base exception for all Ferry errors."""

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# --- Configuration -----------------------------------------------------------


class ConfigurationError(FerryError):
    """Raised when configuration loading, parsing, or validation fails."""


# --- Connections -------------------------------------------------------------


class ConnectionError_(FerryError):
    """Raised when a storage backend cannot be dialled or authenticated.

    Named with trailing underscore to avoid shadowing the builtin
    ``ConnectionError``; the public alias ``FerryConnectionError``
    is preferred for external use.
    """


# Public alias so callers don't need the underscore
FerryConnectionError = ConnectionError_


# --- Filesystem operations ---------------------------------------------------


class FilesystemError(FerryError):
    """Base class for a failed operation against one backend path."""

    def __init__(self, message: str, *, path: str = "", cause: Exception | None = None) -> None:
        super().__init__(message, details={"path": path})
        self.path = path
        if cause is not None:
            self.__cause__ = cause


class ListError(FilesystemError):
    """Raised when a directory cannot be listed."""


class OpenError(FilesystemError):
    """Raised when a file cannot be opened for reading."""


class CreateError(FilesystemError):
    """Raised when a file cannot be created or written."""


class MkdirError(FilesystemError):
    """Raised when a directory chain cannot be created."""


class StatError(FilesystemError):
    """Raised when a path cannot be stat'ed."""


class NotFoundError(StatError):
    """Raised when a path does not exist."""


class RemoveError(FilesystemError):
    """Raised when a file cannot be removed."""


# --- Ledger ------------------------------------------------------------------


class LedgerIOError(FerryError):
    """Raised when the history ledger cannot be read or written."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message, details={"path": path})
        self.path = path
