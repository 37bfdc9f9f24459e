"""Cryptographic layer of the vault engine: primitives, master keys and file contents."""

from .provider import CryptoProvider, wipe
from .keys import KeyManager, MasterKeySet, MasterkeyRecord, VaultConfig
from .content import ContentCipher, FileHeader

__all__ = [
    "CryptoProvider",
    "wipe",
    "KeyManager",
    "MasterKeySet",
    "MasterkeyRecord",
    "VaultConfig",
    "ContentCipher",
    "FileHeader",
]
