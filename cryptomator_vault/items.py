"""
Vault Items — Files and directories as seen through an open vault.

An ``EncryptedItem`` is a stateless view: the shared fields describe where the
entry lives and what it is called, ``payload`` carries the per-kind data
(``FileInfo`` or ``DirectoryInfo``). Items hold no lock on the backend and go
stale if the backend changes underneath them.
"""
import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union

from .conf import CONTENTS_FILE_NAME, DIR_FILE_NAME
from .crypto.content import ContentCipher

if TYPE_CHECKING:
    from .vault import Vault


class ItemKind(Enum):
    FILE = "f"
    DIRECTORY = "d"


class DirIdCache:
    """Cache cell for a directory's DirID.

    Concurrent ``get()`` calls share a single fetch; ``invalidate()`` makes the
    next ``get()`` read the DirID again.
    """

    def __init__(self, value: Optional[str] = None):
        self._value = value
        self._valid = value is not None
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"<DirIdCache valid={self._valid}>"

    @property
    def valid(self) -> bool:
        return self._valid

    @property
    def value(self) -> Optional[str]:
        return self._value if self._valid else None

    async def get(self, fetch: Callable[[], Awaitable[str]]) -> str:
        if self._valid:
            return self._value
        async with self._lock:
            if not self._valid:
                self._value = await fetch()
                self._valid = True
            return self._value

    def invalidate(self) -> None:
        self._valid = False


@dataclass
class FileInfo:
    size: int = 0  # ciphertext bytes

    @property
    def cleartext_size(self) -> int:
        return ContentCipher.cleartext_size(self.size)


@dataclass
class DirectoryInfo:
    dir_id: DirIdCache = field(default_factory=DirIdCache)


@dataclass(eq=False)
class EncryptedItem:
    """A file or directory entry of an open vault."""
    vault: "Vault" = field(repr=False)
    kind: ItemKind
    name: str
    encoded_name: str
    physical_path: str
    parent_dir_id: Optional[str]
    payload: Union[FileInfo, DirectoryInfo]
    last_modified: Optional[datetime] = None
    shortened: bool = False

    @property
    def is_file(self) -> bool:
        return self.kind is ItemKind.FILE

    @property
    def is_dir(self) -> bool:
        return self.kind is ItemKind.DIRECTORY

    @property
    def is_root(self) -> bool:
        return self.parent_dir_id is None

    @property
    def payload_path(self) -> str:
        """Path of ``dir.c9r`` for directories, of the ciphertext for files."""
        if self.is_dir:
            return f"{self.physical_path}/{DIR_FILE_NAME}"
        if self.shortened:
            return f"{self.physical_path}/{CONTENTS_FILE_NAME}"
        return self.physical_path

    def _require(self, kind: ItemKind) -> None:
        if self.kind is not kind:
            raise TypeError(f"{self.physical_path} is not a {kind.name.lower()}")

    # ------------------------------------------------------------------
    # Directory helpers
    # ------------------------------------------------------------------

    async def get_dir_id(self) -> str:
        """Return this directory's DirID, reading and caching it if needed."""
        self._require(ItemKind.DIRECTORY)
        return await self.payload.dir_id.get(
            lambda: self.vault.read_dir_id(self)
        )

    def invalidate_dir_id(self) -> None:
        self._require(ItemKind.DIRECTORY)
        self.payload.dir_id.invalidate()

    async def list_items(self) -> list["EncryptedItem"]:
        return await self.vault.list_items(await self.get_dir_id())

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------

    async def decrypt(self) -> bytes:
        self._require(ItemKind.FILE)
        return await self.vault.decrypt_file(self)

    # ------------------------------------------------------------------
    # Structural operations
    # ------------------------------------------------------------------

    async def rename(self, new_name: str) -> None:
        await self.vault.rename(self, new_name)

    async def move(self, new_parent: "EncryptedItem") -> None:
        await self.vault.move(self, new_parent)

    async def delete(self) -> None:
        await self.vault.delete(self)
