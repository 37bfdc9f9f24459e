"""Storage backends for encrypted vault files."""

from .backend import StorageBackend, StorageEntry
from .local import LocalStorageBackend

__all__ = [
    "StorageBackend",
    "StorageEntry",
    "LocalStorageBackend",
]
