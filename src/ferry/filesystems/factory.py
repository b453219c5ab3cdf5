"""Backend construction keyed by the configured kind string."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ferry.exceptions import ConfigurationError
from ferry.filesystems.base import FileSystem
from ferry.filesystems.ftp import FTPFileSystem, ftp_config_from_auth
from ferry.filesystems.local import LocalFileSystem
from ferry.filesystems.sftp import SFTPFileSystem, sftp_config_from_auth

if TYPE_CHECKING:
    from ferry.config.tasks import Auth

BACKEND_KINDS = ("local", "sftp", "ftp")


def create_filesystem(kind: str, root_path: str, auth: Auth | None = None) -> FileSystem:
    """
    Create an (un-initialised) backend for one side of a task.

    Args:
        kind: One of ``local``, ``sftp``, ``ftp``
        root_path: Root directory every relative path is resolved against
        auth: Credentials; required for the remote kinds

    Raises:
        ConfigurationError: Unknown kind, or remote kind without auth
    """
    if kind == "local":
        return LocalFileSystem(root_path)
    if kind in ("sftp", "ftp"):
        if auth is None:
            raise ConfigurationError(f"auth required for {kind}")
        if kind == "sftp":
            return SFTPFileSystem(root_path, sftp_config_from_auth(auth))
        return FTPFileSystem(root_path, ftp_config_from_auth(auth))
    raise ConfigurationError(f"unknown filesystem type: {kind!r} (expected one of {', '.join(BACKEND_KINDS)})")
