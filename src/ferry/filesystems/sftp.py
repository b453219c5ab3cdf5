"""
SFTP backend.

One paramiko transport + SFTP channel per instance, opened by ``init``.
``stat`` is native; ``mkdir_all`` walks the ancestor chain with one stat
(and at most one mkdir) per level, and verifies each level.
"""

from __future__ import annotations

import errno
import posixpath
import socket
import stat as stat_mod
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, BinaryIO

import paramiko

from ferry.exceptions import (
    ConnectionError_,
    CreateError,
    ListError,
    MkdirError,
    NotFoundError,
    OpenError,
    RemoveError,
    StatError,
)
from ferry.filesystems.base import Capabilities, FileEntry, FileSystem, join_rel


@dataclass(frozen=True)
class SFTPConfig:
    host: str
    port: int = 22
    username: str | None = None
    password: str | None = None
    private_key_path: str | None = None
    private_key_passphrase: str | None = None
    connect_timeout_s: float = 30.0


def _is_missing(exc: BaseException) -> bool:
    return isinstance(exc, FileNotFoundError) or getattr(exc, "errno", None) == errno.ENOENT


def _entry(name: str, rel_path: str, attr: paramiko.SFTPAttributes) -> FileEntry:
    is_dir = stat_mod.S_ISDIR(attr.st_mode or 0)
    return FileEntry(
        name=name,
        size=0 if is_dir else int(attr.st_size or 0),
        mod_time=datetime.fromtimestamp(int(attr.st_mtime or 0), tz=UTC),
        is_dir=is_dir,
        path=rel_path,
    )


class SFTPFileSystem(FileSystem):
    """Files under a root directory on an SSH server."""

    kind = "sftp"
    capabilities = Capabilities(native_stat=True, native_mkdir_all=True)

    def __init__(self, root_path: str, config: SFTPConfig):
        super().__init__(root_path)
        self.config = config
        self._transport: paramiko.Transport | None = None
        self._client: paramiko.SFTPClient | None = None

    @property
    def client(self) -> paramiko.SFTPClient:
        if self._client is None:
            raise ConnectionError_(f"SFTP session to {self.config.host} is not open")
        return self._client

    def _load_key(self) -> paramiko.PKey | None:
        cfg = self.config
        if not cfg.private_key_path:
            return None
        # Try common key types; paramiko will raise if incompatible.
        try:
            return paramiko.RSAKey.from_private_key_file(cfg.private_key_path, password=cfg.private_key_passphrase)
        except paramiko.SSHException:
            return paramiko.Ed25519Key.from_private_key_file(cfg.private_key_path, password=cfg.private_key_passphrase)

    def init(self) -> None:
        if self._client is not None:
            return

        cfg = self.config
        if not cfg.host:
            raise ConnectionError_("SFTP backend missing host")

        transport = None
        try:
            sock = socket.create_connection((cfg.host, cfg.port), timeout=cfg.connect_timeout_s)
            transport = paramiko.Transport(sock)
            transport.banner_timeout = cfg.connect_timeout_s
            transport.auth_timeout = cfg.connect_timeout_s
            transport.connect(
                username=cfg.username,
                password=cfg.password,
                pkey=self._load_key(),
            )
            client = paramiko.SFTPClient.from_transport(transport)
            if client is None:
                raise paramiko.SSHException("server refused the sftp subsystem")
        except (paramiko.SSHException, OSError) as e:
            if transport is not None:
                transport.close()
            raise ConnectionError_(
                f"SFTP connect to {cfg.host}:{cfg.port} failed: {e}", details={"host": cfg.host, "port": cfg.port}
            ) from e

        self._transport = transport
        self._client = client

    def close(self) -> None:
        """Close SFTP client + underlying transport."""
        try:
            if self._client is not None:
                self._client.close()
        finally:
            self._client = None
        try:
            if self._transport is not None:
                self._transport.close()
        finally:
            self._transport = None

    def list(self, path: str) -> list[FileEntry]:
        rel_dir = path.strip("/")
        try:
            attrs = self.client.listdir_attr(self.full_path(path))
        except (OSError, paramiko.SSHException) as e:
            raise ListError(f"Cannot list '{path}': {e}", path=path, cause=e) from e
        return [_entry(a.filename, join_rel(rel_dir, a.filename), a) for a in attrs if a.filename not in (".", "..")]

    def open(self, path: str) -> BinaryIO:
        try:
            handle = self.client.open(self.full_path(path), "rb")
            handle.prefetch()
        except (OSError, paramiko.SSHException) as e:
            raise OpenError(f"Cannot open '{path}': {e}", path=path, cause=e) from e
        return handle  # type: ignore[return-value]

    def create(self, path: str) -> BinaryIO:
        try:
            handle = self.client.open(self.full_path(path), "wb")
            handle.set_pipelined(True)
        except (OSError, paramiko.SSHException) as e:
            raise CreateError(f"Cannot create '{path}': {e}", path=path, cause=e) from e
        return handle  # type: ignore[return-value]

    def mkdir_all(self, path: str) -> None:
        target = self.full_path(path)
        chain: list[str] = []
        current = target
        while current not in ("", "/", "."):
            chain.append(current)
            current = posixpath.dirname(current)

        for directory in reversed(chain):
            try:
                attr = self.client.stat(directory)
            except (OSError, paramiko.SSHException) as e:
                if not _is_missing(e):
                    raise MkdirError(f"Cannot stat '{directory}': {e}", path=path, cause=e) from e
            else:
                if not stat_mod.S_ISDIR(attr.st_mode or 0):
                    raise MkdirError(f"'{directory}' exists and is not a directory", path=path)
                continue
            try:
                self.client.mkdir(directory)
            except (OSError, paramiko.SSHException) as e:
                raise MkdirError(f"Cannot create directory '{directory}': {e}", path=path, cause=e) from e

    def stat(self, path: str) -> FileEntry:
        full = self.full_path(path)
        try:
            attr = self.client.stat(full)
        except (OSError, paramiko.SSHException) as e:
            if _is_missing(e):
                raise NotFoundError(f"Not found: '{path}'", path=path, cause=e) from e
            raise StatError(f"Cannot stat '{path}': {e}", path=path, cause=e) from e
        return _entry(posixpath.basename(full), path.strip("/"), attr)

    def remove(self, path: str) -> None:
        try:
            self.client.remove(self.full_path(path))
        except (OSError, paramiko.SSHException) as e:
            raise RemoveError(f"Cannot remove '{path}': {e}", path=path, cause=e) from e

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(host='{self.config.host}', root_path='{self.root_path}')"


def sftp_config_from_auth(auth: Any) -> SFTPConfig:
    """Build an SFTPConfig from a task's Auth block."""
    return SFTPConfig(
        host=auth.host,
        port=int(auth.port or 22),
        username=auth.user or None,
        password=auth.password or None,
        private_key_path=auth.private_key_path,
        private_key_passphrase=auth.private_key_passphrase,
        connect_timeout_s=float(auth.timeout_s),
    )
