"""
Storage Backend — Byte-oriented file primitives consumed by the vault.

Paths are opaque ``/``-separated strings; a backend never interprets vault
semantics. Errors (missing files, permissions) are raised as the standard
``OSError`` subclasses and the vault lets them propagate unchanged.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class StorageEntry:
    """One entry of a directory listing."""
    name: str
    full_path: str
    is_directory: bool
    last_modified: Optional[datetime] = None
    size: int = 0


class StorageBackend(ABC):
    """Asynchronous storage primitives."""

    @abstractmethod
    async def read_bytes(self, path: str) -> bytes:
        ...

    async def read_text(self, path: str) -> str:
        data = await self.read_bytes(path)
        return data.decode("utf-8")

    @abstractmethod
    async def write_bytes(self, path: str, data: bytes) -> None:
        """Create or replace the file at ``path``."""

    async def write_text(self, path: str, text: str) -> None:
        await self.write_bytes(path, text.encode("utf-8"))

    @abstractmethod
    async def list(self, path: str) -> list[StorageEntry]:
        """List the direct children of directory ``path``."""

    @abstractmethod
    async def create_directory(self, path: str, recursive: bool = False) -> None:
        """Create ``path``; with ``recursive`` also missing parents, and an
        existing directory is not an error."""

    @abstractmethod
    async def remove_file(self, path: str) -> None:
        ...

    @abstractmethod
    async def remove_directory_recursive(self, path: str) -> None:
        ...

    @abstractmethod
    async def rename(self, old_path: str, new_path: str) -> None:
        """Move a file or directory; fails if ``new_path`` exists."""

    @abstractmethod
    async def exists(self, path: str) -> bool:
        ...
