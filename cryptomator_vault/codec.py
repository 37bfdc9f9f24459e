"""
Path Codec — Directory-ID hashing and item-name encryption.

- Directory contents live at ``<root>/d/<2>/<30>``, where the 32 characters are
  BASE32(SHA1(SIV(dir_id))). The location depends on the DirID only, never on
  the directory's name or position in the tree.
- Names are BASE64URL(SIV(name, ad=[parent_dir_id])): deterministic, so a
  name's physical location can always be recomputed from (name, parent).
- Encoded names longer than the shortening threshold are stored in a
  ``<BASE64URL(SHA1(encoded))>.c9s`` container whose ``name.c9s`` holds the
  full encoded name.

Security Note:
    Never log plaintext names; physical paths are fine.
"""
import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Optional

from cryptography.exceptions import InvalidTag

from .conf import (
    CONTENTS_FILE_NAME,
    CRYPTOMATOR_FILE_SUFFIX,
    DATA_DIR_NAME,
    DEFLATED_FILE_SUFFIX,
    DIR_FILE_NAME,
    INFLATED_FILE_NAME,
)
from .crypto.keys import MasterKeySet
from .crypto.provider import CryptoProvider
from .exceptions import DecryptionError, DecryptionTarget
from .storage import StorageBackend, StorageEntry

logger = logging.getLogger("cryptomator.vault")


@dataclass(frozen=True)
class EntryLocation:
    """Where an item's entry lives inside its parent's content directory."""
    parent_path: str
    encoded_name: str
    shortened: bool
    entry_name: str

    @property
    def path(self) -> str:
        return f"{self.parent_path}/{self.entry_name}"

    @property
    def dir_file(self) -> str:
        return f"{self.path}/{DIR_FILE_NAME}"

    @property
    def name_file(self) -> str:
        return f"{self.path}/{INFLATED_FILE_NAME}"

    @property
    def contents_file(self) -> str:
        """File payload path: the entry itself, or ``contents.c9r`` inside a
        shortened container."""
        if self.shortened:
            return f"{self.path}/{CONTENTS_FILE_NAME}"
        return self.path


class PathCodec:
    """Maps DirIDs to storage paths and encrypts item names."""

    def __init__(
        self,
        crypto: CryptoProvider,
        keys: MasterKeySet,
        root: str,
        backend: StorageBackend,
        shortening_threshold: int,
    ):
        self._crypto = crypto
        self._keys = keys
        self._root = root
        self._backend = backend
        self.shortening_threshold = shortening_threshold

    # ------------------------------------------------------------------
    # Directories
    # ------------------------------------------------------------------

    def hash_dir_id(self, dir_id: str) -> str:
        sealed = self._crypto.siv_seal(self._keys.siv_key, dir_id.encode("utf-8"))
        digest = self._crypto.sha1(sealed)
        return base64.b32encode(digest).decode("ascii").rstrip("=")

    def get_dir(self, dir_id: str) -> str:
        """Return the storage path holding the children of ``dir_id``."""
        dir_hash = self.hash_dir_id(dir_id)
        return f"{self._root}/{DATA_DIR_NAME}/{dir_hash[:2]}/{dir_hash[2:]}"

    # ------------------------------------------------------------------
    # Names
    # ------------------------------------------------------------------

    def encrypt_name(self, name: str, parent_dir_id: str) -> str:
        sealed = self._crypto.siv_seal(
            self._keys.siv_key,
            name.encode("utf-8"),
            [parent_dir_id.encode("utf-8")],
        )
        return base64.urlsafe_b64encode(sealed).decode("ascii")

    def decrypt_name(
        self,
        encoded: str,
        parent_dir_id: str,
        item: Optional[Any] = None,
    ) -> str:
        """Decrypt an encoded name, with or without its ``.c9r`` suffix.

        Raises:
            DecryptionError: Target ITEM_NAME, the name does not authenticate
            under this vault's keys and ``parent_dir_id``.
        """
        if encoded.endswith(CRYPTOMATOR_FILE_SUFFIX):
            encoded = encoded[:-len(CRYPTOMATOR_FILE_SUFFIX)]
        try:
            sealed = base64.urlsafe_b64decode(encoded.encode("ascii"))
            plaintext = self._crypto.siv_open(
                self._keys.siv_key, sealed, [parent_dir_id.encode("utf-8")]
            )
            return plaintext.decode("utf-8")
        except (binascii.Error, InvalidTag, UnicodeError, ValueError) as err:
            raise DecryptionError(DecryptionTarget.ITEM_NAME, item) from err

    def shortened_name(self, encoded: str) -> str:
        digest = self._crypto.sha1(encoded.encode("ascii"))
        return base64.urlsafe_b64encode(digest).decode("ascii") + DEFLATED_FILE_SUFFIX

    def locate(self, name: str, parent_dir_id: str) -> EntryLocation:
        """Compute the entry location of ``name`` under ``parent_dir_id``."""
        encoded = self.encrypt_name(name, parent_dir_id)
        shortened = len(encoded) > self.shortening_threshold
        if shortened:
            entry_name = self.shortened_name(encoded)
        else:
            entry_name = encoded + CRYPTOMATOR_FILE_SUFFIX
        return EntryLocation(
            parent_path=self.get_dir(parent_dir_id),
            encoded_name=encoded,
            shortened=shortened,
            entry_name=entry_name,
        )

    async def resolve_entry_name(
        self, entry: StorageEntry, parent_dir_id: str
    ) -> tuple[str, str]:
        """Recover ``(encoded, plaintext)`` for a listed entry.

        Shortened entries read their full encoded name from ``name.c9s``.
        """
        if entry.name.endswith(DEFLATED_FILE_SUFFIX):
            encoded = await self._backend.read_text(
                f"{entry.full_path}/{INFLATED_FILE_NAME}"
            )
            encoded = encoded.strip()
        else:
            encoded = entry.name
        if encoded.endswith(CRYPTOMATOR_FILE_SUFFIX):
            encoded = encoded[:-len(CRYPTOMATOR_FILE_SUFFIX)]
        return encoded, self.decrypt_name(encoded, parent_dir_id, entry)
