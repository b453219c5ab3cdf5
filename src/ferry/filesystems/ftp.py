"""
FTP backend.

Uses standard ftplib. FTP has no stat and no "create parents" primitive, so:

- ``stat`` lists the parent directory and scans it for the name, O(siblings).
- ``mkdir_all`` issues one MKD per ancestor, root to leaf, ignoring every
  failure. The server's reply cannot reliably tell "already exists" from a
  real failure, so the result is advisory; a real failure surfaces at
  ``create`` time instead.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from datetime import UTC, datetime
from ftplib import FTP, all_errors, error_perm
from typing import Any, BinaryIO

from ferry.exceptions import (
    ConnectionError_,
    CreateError,
    FilesystemError,
    ListError,
    NotFoundError,
    OpenError,
    RemoveError,
    StatError,
)
from ferry.filesystems.base import Capabilities, FileEntry, FileSystem, join_rel


@dataclass(frozen=True)
class FTPConfig:
    host: str
    port: int = 21
    username: str = "anonymous"
    password: str = "anonymous@"
    connect_timeout_s: float = 30.0
    passive: bool = True


def _parse_modify(value: str | None) -> datetime:
    """Parse an MLSD ``modify`` fact / MDTM reply (YYYYMMDDHHMMSS[.fff], UTC)."""
    if not value:
        return datetime.fromtimestamp(0, tz=UTC)
    try:
        return datetime.strptime(value[:14], "%Y%m%d%H%M%S").replace(tzinfo=UTC)
    except ValueError:
        return datetime.fromtimestamp(0, tz=UTC)


class FTPTransferStream:
    """
    File-like view of one FTP data connection (RETR or STOR).

    Closing the stream closes the data socket and reads the server's
    completion reply; a negative reply raises the backend's error type.
    """

    def __init__(self, ftp: FTP, conn: Any, *, mode: str, path: str):
        self._ftp = ftp
        self._conn = conn
        self._mode = mode
        self._path = path
        self._reader = conn.makefile("rb") if mode == "rb" else None
        self.closed = False

    def _error(self, message: str, cause: BaseException) -> FilesystemError:
        error_cls = OpenError if self._mode == "rb" else CreateError
        return error_cls(message, path=self._path, cause=cause)  # type: ignore[arg-type]

    def read(self, size: int = -1) -> bytes:
        if self._reader is None:
            raise OSError("stream not opened for reading")
        try:
            return self._reader.read(size)
        except all_errors as e:
            raise self._error(f"Read of '{self._path}' failed: {e}", e) from e

    def write(self, data: bytes) -> int:
        if self._reader is not None:
            raise OSError("stream not opened for writing")
        try:
            self._conn.sendall(data)
        except all_errors as e:
            raise self._error(f"Write of '{self._path}' failed: {e}", e) from e
        return len(data)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            if self._reader is not None:
                self._reader.close()
            self._conn.close()
            self._ftp.voidresp()
        except all_errors as e:
            raise self._error(f"Transfer of '{self._path}' not confirmed: {e}", e) from e

    def __enter__(self) -> FTPTransferStream:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class FTPFileSystem(FileSystem):
    """Files under a root directory on an FTP server."""

    kind = "ftp"
    capabilities = Capabilities(native_stat=False, native_mkdir_all=False)

    def __init__(self, root_path: str, config: FTPConfig):
        super().__init__(root_path)
        self.config = config
        self._client: FTP | None = None
        self._mlsd_supported = True

    @property
    def client(self) -> FTP:
        if self._client is None:
            raise ConnectionError_(f"FTP session to {self.config.host} is not open")
        return self._client

    def init(self) -> None:
        if self._client is not None:
            return

        cfg = self.config
        if not cfg.host:
            raise ConnectionError_("FTP backend missing host")

        ftp = FTP()
        try:
            ftp.connect(cfg.host, cfg.port, timeout=cfg.connect_timeout_s)
            ftp.login(cfg.username or "anonymous", cfg.password or "anonymous@")
            ftp.set_pasv(cfg.passive)
        except all_errors as e:
            ftp.close()
            raise ConnectionError_(
                f"FTP connect to {cfg.host}:{cfg.port} failed: {e}", details={"host": cfg.host, "port": cfg.port}
            ) from e
        self._client = ftp

    def close(self) -> None:
        if self._client is None:
            return
        try:
            self._client.quit()
        except all_errors:
            # QUIT failed (server gone); drop the socket instead
            self._client.close()
        finally:
            self._client = None

    def _list_full(self, full_dir: str, rel_dir: str) -> list[FileEntry]:
        """List one directory by absolute server path."""
        if self._mlsd_supported:
            try:
                entries = []
                for name, facts in self.client.mlsd(full_dir, facts=["type", "size", "modify"]):
                    kind = facts.get("type", "file")
                    if name in (".", "..") or kind in ("cdir", "pdir"):
                        continue
                    is_dir = kind == "dir"
                    entries.append(
                        FileEntry(
                            name=name,
                            size=0 if is_dir else int(facts.get("size", 0) or 0),
                            mod_time=_parse_modify(facts.get("modify")),
                            is_dir=is_dir,
                            path=join_rel(rel_dir, name),
                        )
                    )
                return entries
            except error_perm as e:
                # 500/502: command not implemented, fall back to NLST
                if not str(e).startswith(("500", "502")):
                    raise
                self._mlsd_supported = False

        # NLST + SIZE/MDTM for older servers
        entries = []
        for listing in self.client.nlst(full_dir):
            name = posixpath.basename(listing.rstrip("/"))
            if name in (".", "..", ""):
                continue
            full = posixpath.join(full_dir, name)
            try:
                size = self.client.size(full)
                is_dir = False
            except error_perm:
                # SIZE is refused (5xx) for directories; other failures fail the listing
                size = 0
                is_dir = True
            mod_time = datetime.fromtimestamp(0, tz=UTC)
            if not is_dir:
                try:
                    mod_time = _parse_modify(self.client.voidcmd(f"MDTM {full}").split()[-1])
                except error_perm:
                    # MDTM not supported
                    pass
            entries.append(
                FileEntry(name=name, size=size or 0, mod_time=mod_time, is_dir=is_dir, path=join_rel(rel_dir, name))
            )
        return entries

    def list(self, path: str) -> list[FileEntry]:
        try:
            return self._list_full(self.full_path(path), path.strip("/"))
        except all_errors as e:
            raise ListError(f"Cannot list '{path}': {e}", path=path, cause=e) from e

    def _transfer(self, command: str) -> Any:
        self.client.voidcmd("TYPE I")
        return self.client.transfercmd(command)

    def open(self, path: str) -> BinaryIO:
        try:
            conn = self._transfer(f"RETR {self.full_path(path)}")
        except all_errors as e:
            raise OpenError(f"Cannot open '{path}': {e}", path=path, cause=e) from e
        return FTPTransferStream(self.client, conn, mode="rb", path=path)  # type: ignore[return-value]

    def create(self, path: str) -> BinaryIO:
        try:
            conn = self._transfer(f"STOR {self.full_path(path)}")
        except all_errors as e:
            raise CreateError(f"Cannot create '{path}': {e}", path=path, cause=e) from e
        return FTPTransferStream(self.client, conn, mode="wb", path=path)  # type: ignore[return-value]

    def mkdir_all(self, path: str) -> None:
        chain: list[str] = []
        current = self.full_path(path)
        while current not in ("", "/", "."):
            chain.append(current)
            current = posixpath.dirname(current)

        for directory in reversed(chain):
            try:
                self.client.mkd(directory)
            except all_errors:
                pass  # Ignore if already exists or really fails

    def stat(self, path: str) -> FileEntry:
        full = self.full_path(path)
        rel = path.strip("/")
        name = posixpath.basename(full)
        try:
            siblings = self._list_full(posixpath.dirname(full) or ".", posixpath.dirname(rel))
        except error_perm as e:
            raise NotFoundError(f"Not found: '{path}'", path=path, cause=e) from e
        except all_errors as e:
            raise StatError(f"Cannot stat '{path}': {e}", path=path, cause=e) from e

        for entry in siblings:
            if entry.name == name:
                return entry
        raise NotFoundError(f"Not found: '{path}'", path=path)

    def remove(self, path: str) -> None:
        try:
            self.client.delete(self.full_path(path))
        except all_errors as e:
            raise RemoveError(f"Cannot remove '{path}': {e}", path=path, cause=e) from e

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(host='{self.config.host}', root_path='{self.root_path}')"


def ftp_config_from_auth(auth: Any) -> FTPConfig:
    """Build an FTPConfig from a task's Auth block."""
    return FTPConfig(
        host=auth.host,
        port=int(auth.port or 21),
        username=auth.user or "anonymous",
        password=auth.password or "anonymous@",
        connect_timeout_s=float(auth.timeout_s),
    )
