"""Cryptomator Vault — Read and write Cryptomator (format 8) vaults.

Security Note (Threat Model):
    Master keys stay in process memory while a vault is open. ``Vault.close()``
    zeroes the key buffers, but copies held by third-party libraries
    (PyJWT, AES key wrap) are immutable and only released by the garbage
    collector. Protecting the process memory itself is out of scope.
"""

from .version import __version__
from .conf import VaultOptions
from .exceptions import (
    DecryptionError,
    DecryptionTarget,
    ExistsError,
    InvalidSignatureError,
    InvalidVaultError,
    VaultClosedError,
    VaultError,
)
from .items import DirectoryInfo, EncryptedItem, FileInfo, ItemKind
from .storage import LocalStorageBackend, StorageBackend, StorageEntry
from .vault import Vault

__all__ = [
    "__version__",
    "Vault",
    "VaultOptions",
    "EncryptedItem",
    "ItemKind",
    "FileInfo",
    "DirectoryInfo",
    "StorageBackend",
    "StorageEntry",
    "LocalStorageBackend",
    "VaultError",
    "InvalidVaultError",
    "DecryptionError",
    "DecryptionTarget",
    "InvalidSignatureError",
    "ExistsError",
    "VaultClosedError",
]
