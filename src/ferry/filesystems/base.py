"""
Filesystem abstraction shared by the local, SFTP and FTP backends.

Every operation takes a path relative to the instance's configured root,
using "/" as separator. The empty string names the root itself.
"""

from __future__ import annotations

import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO


@dataclass(frozen=True)
class FileEntry:
    """One file or directory as reported by ``list`` or ``stat``."""

    name: str
    size: int
    mod_time: datetime
    is_dir: bool
    path: str  # relative to the filesystem root


@dataclass(frozen=True)
class Capabilities:
    """
    Cost notes for operations that not every protocol supports natively.

    ``native_stat``: False means ``stat`` lists the parent directory and scans
    it, O(siblings) per call.
    ``native_mkdir_all``: False means ``mkdir_all`` issues one create per
    ancestor and ignores failures, so success is not verified.
    """

    native_stat: bool = True
    native_mkdir_all: bool = True


class FileSystem(ABC):
    """
    Uniform capability surface over one storage backend.

    An instance owns at most one live session, opened by ``init`` and
    released by ``close``. Instances are usable as context managers.
    """

    kind: str = ""
    capabilities = Capabilities()

    def __init__(self, root_path: str):
        self.root_path = root_path

    @abstractmethod
    def init(self) -> None:
        """Establish the backend (create local root, or dial and authenticate)."""

    @abstractmethod
    def close(self) -> None:
        """Release the session. Safe to call more than once."""

    @abstractmethod
    def list(self, path: str) -> list[FileEntry]:
        """Return the immediate children of a directory."""

    @abstractmethod
    def open(self, path: str) -> BinaryIO:
        """Open a file for reading."""

    @abstractmethod
    def create(self, path: str) -> BinaryIO:
        """Create (or truncate) a file for writing."""

    @abstractmethod
    def mkdir_all(self, path: str) -> None:
        """Ensure the full directory chain exists."""

    @abstractmethod
    def stat(self, path: str) -> FileEntry:
        """Return one entry, raising NotFoundError if the path is missing."""

    @abstractmethod
    def remove(self, path: str) -> None:
        """Delete a file."""

    def full_path(self, path: str) -> str:
        """
        Join a relative path onto the root, posix style.

        An empty root means the session's working directory, so the root
        itself is "." and every child stays relative to it.
        """
        rel = path.strip("/")
        if not rel:
            return self.root_path or "."
        return posixpath.join(self.root_path, rel) if self.root_path else rel

    def __enter__(self) -> FileSystem:
        self.init()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(root_path='{self.root_path}')"


def join_rel(parent: str, name: str) -> str:
    """Join a child name onto a relative directory path."""
    return f"{parent}/{name}" if parent else name
