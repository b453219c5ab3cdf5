"""Local disk backend."""

from __future__ import annotations

import os
from datetime import UTC, datetime
from pathlib import Path
from typing import BinaryIO

from ferry.exceptions import CreateError, ListError, MkdirError, NotFoundError, OpenError, RemoveError, StatError
from ferry.filesystems.base import Capabilities, FileEntry, FileSystem, join_rel


def _entry(name: str, rel_path: str, st: os.stat_result, is_dir: bool) -> FileEntry:
    return FileEntry(
        name=name,
        size=0 if is_dir else st.st_size,
        mod_time=datetime.fromtimestamp(st.st_mtime, tz=UTC),
        is_dir=is_dir,
        path=rel_path,
    )


class LocalFileSystem(FileSystem):
    """Files under a directory on this machine. No session to manage."""

    kind = "local"
    capabilities = Capabilities(native_stat=True, native_mkdir_all=True)

    def _resolve(self, path: str) -> Path:
        rel = path.strip("/")
        return Path(self.root_path) / rel if rel else Path(self.root_path)

    def init(self) -> None:
        # OSError propagates; the engine reports it as a connection failure
        Path(self.root_path).mkdir(parents=True, exist_ok=True)

    def close(self) -> None:
        pass

    def list(self, path: str) -> list[FileEntry]:
        entries: list[FileEntry] = []
        try:
            with os.scandir(self._resolve(path)) as it:
                for item in it:
                    try:
                        is_dir = item.is_dir()
                        st = item.stat()
                    except OSError:
                        # Vanished or unreadable between listing and stat
                        continue
                    entries.append(_entry(item.name, join_rel(path.strip("/"), item.name), st, is_dir))
        except OSError as e:
            raise ListError(f"Cannot list '{path}': {e}", path=path, cause=e) from e
        return entries

    def open(self, path: str) -> BinaryIO:
        try:
            return open(self._resolve(path), "rb")
        except OSError as e:
            raise OpenError(f"Cannot open '{path}': {e}", path=path, cause=e) from e

    def create(self, path: str) -> BinaryIO:
        try:
            return open(self._resolve(path), "wb")
        except OSError as e:
            raise CreateError(f"Cannot create '{path}': {e}", path=path, cause=e) from e

    def mkdir_all(self, path: str) -> None:
        try:
            self._resolve(path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise MkdirError(f"Cannot create directory '{path}': {e}", path=path, cause=e) from e

    def stat(self, path: str) -> FileEntry:
        target = self._resolve(path)
        try:
            st = target.stat()
        except FileNotFoundError as e:
            raise NotFoundError(f"Not found: '{path}'", path=path, cause=e) from e
        except OSError as e:
            raise StatError(f"Cannot stat '{path}': {e}", path=path, cause=e) from e
        return _entry(target.name, path.strip("/"), st, target.is_dir())

    def remove(self, path: str) -> None:
        target = self._resolve(path)
        if target.is_dir():
            raise RemoveError(f"Refusing to remove directory '{path}'", path=path)
        try:
            target.unlink()
        except OSError as e:
            raise RemoveError(f"Cannot remove '{path}': {e}", path=path, cause=e) from e
