"""
Local Storage — StorageBackend over the local filesystem.

Blocking filesystem calls run in the event loop's default executor.
"""
import os
import shutil
import asyncio
import logging
import functools
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from .backend import StorageBackend, StorageEntry

logger = logging.getLogger("cryptomator.vault")


class LocalStorageBackend(StorageBackend):
    """Reads and writes vault files on a local disk."""

    async def _run(self, fn: Callable[..., Any], *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    # ------------------------------------------------------------------
    # Blocking helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _list(path: str) -> list[StorageEntry]:
        entries = []
        with os.scandir(path) as it:
            for entry in it:
                st = entry.stat()
                entries.append(
                    StorageEntry(
                        name=entry.name,
                        full_path=f"{path.rstrip('/')}/{entry.name}",
                        is_directory=entry.is_dir(),
                        last_modified=datetime.fromtimestamp(
                            st.st_mtime, tz=timezone.utc
                        ),
                        size=st.st_size,
                    )
                )
        return entries

    @staticmethod
    def _write(path: str, data: bytes) -> None:
        tmp = Path(f"{path}.tmp")
        try:
            tmp.write_bytes(data)
            os.replace(tmp, path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise

    @staticmethod
    def _rename(old_path: str, new_path: str) -> None:
        if os.path.lexists(new_path):
            raise FileExistsError(new_path)
        os.rename(old_path, new_path)

    @staticmethod
    def _mkdir(path: str, recursive: bool) -> None:
        if recursive:
            os.makedirs(path, exist_ok=True)
        else:
            os.mkdir(path)

    # ------------------------------------------------------------------
    # StorageBackend
    # ------------------------------------------------------------------

    async def read_bytes(self, path: str) -> bytes:
        return await self._run(Path(path).read_bytes)

    async def write_bytes(self, path: str, data: bytes) -> None:
        await self._run(self._write, path, bytes(data))

    async def list(self, path: str) -> list[StorageEntry]:
        return await self._run(self._list, path)

    async def create_directory(self, path: str, recursive: bool = False) -> None:
        await self._run(self._mkdir, path, recursive)

    async def remove_file(self, path: str) -> None:
        await self._run(os.remove, path)

    async def remove_directory_recursive(self, path: str) -> None:
        await self._run(shutil.rmtree, path)

    async def rename(self, old_path: str, new_path: str) -> None:
        await self._run(self._rename, old_path, new_path)

    async def exists(self, path: str) -> bool:
        return await self._run(os.path.lexists, path)
