"""Vault error taxonomy.

Callers can tell a wrong password (``DecryptionError`` on the vault), a
tampered or corrupted vault (``InvalidSignatureError``) and a name collision
(``ExistsError``) apart. Backend I/O errors are never wrapped.
"""
from enum import Enum
from typing import Any, Optional


class DecryptionTarget(Enum):
    """What failed to decrypt or verify."""
    VAULT = "vault"
    ITEM_NAME = "item_name"
    FILE = "file"


class VaultError(Exception):
    """Base class for all vault errors."""


class InvalidVaultError(VaultError):
    """Vault files are malformed or use an unsupported format."""


class DecryptionError(VaultError):
    """Data could not be decrypted (wrong key or foreign data)."""

    def __init__(self, target: DecryptionTarget, item: Optional[Any] = None):
        self.target = target
        self.item = item
        if item is not None:
            msg = f"Unable to decrypt {target.value}: {item}"
        else:
            msg = f"Unable to decrypt {target.value}"
        super().__init__(msg)


class InvalidSignatureError(VaultError):
    """An authentication tag did not match (tampering or corruption)."""

    def __init__(self, target: DecryptionTarget, detail: str = ""):
        self.target = target
        msg = f"Signature verification failed for {target.value}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class ExistsError(VaultError):
    """A structural operation would overwrite an existing entry."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Destination already exists: {path}")


class VaultClosedError(VaultError):
    """The vault was closed and its master keys are gone."""

    def __init__(self, root: str):
        self.root = root
        super().__init__(f"Vault is closed: {root}")
