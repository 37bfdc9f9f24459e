"""
Vault — Open, create and modify Cryptomator vaults.

Provides the public API of the engine:
- ``Vault.create()`` / ``Vault.open()`` — unlock or initialize a vault
- ``list_items()`` / ``get_root_dir()`` — browse by DirID
- ``create_directory()`` / ``encrypt_file()`` / ``decrypt_file()``
- ``rename()`` / ``move()`` / ``delete()`` — structural changes
- ``change_password()`` — re-wrap the master keys under a new password

Every structural operation recomputes physical locations from
(plaintext name, parent DirID) through the ``PathCodec``; no operation takes a
lock on the backend, so callers that need isolation between concurrent
operations must serialize them.

Known limitation:
    Multi-step writes (shortened containers, new directories, relocations)
    remove their own partial state when a step fails, but a cancelled task or
    a crashed process can leave a partially written entry behind.

Security Note:
    Never log plaintext names, contents or keys. Only log physical paths and
    operation names.
"""
import asyncio
import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Optional

from .codec import EntryLocation, PathCodec
from .conf import (
    DATA_DIR_NAME,
    DIR_ID_BACKUP_FILE_NAME,
    CONTENTS_FILE_NAME,
    CRYPTOMATOR_FILE_SUFFIX,
    DEFLATED_FILE_SUFFIX,
    DIR_FILE_NAME,
    ROOT_DIR_ID,
    VAULT_CONFIG_FILENAME,
    MASTERKEY_FILENAME,
    VaultOptions,
)
from .crypto.content import ContentCipher
from .crypto.keys import KeyManager, MasterKeySet, MasterkeyRecord, VaultConfig
from .crypto.provider import CryptoProvider
from .exceptions import ExistsError, InvalidVaultError, VaultClosedError
from .items import DirectoryInfo, DirIdCache, EncryptedItem, FileInfo, ItemKind
from .storage import StorageBackend, StorageEntry

logger = logging.getLogger("cryptomator.vault")

MAX_DIR_ID_LENGTH = 36


async def _discard(
    backend: StorageBackend,
    files: Sequence[str] = (),
    directories: Sequence[str] = (),
) -> None:
    """Best-effort removal of partially written entries."""
    targets = [(path, backend.remove_file) for path in files]
    targets += [(path, backend.remove_directory_recursive) for path in directories]
    for path, remove in targets:
        try:
            if await backend.exists(path):
                await remove(path)
        except OSError as err:
            logger.error("Failed to clean up %s: %s", path, err)


class Vault:
    """An unlocked Cryptomator vault.

    Use ``Vault.create()`` or ``Vault.open()`` rather than the constructor.
    ``close()`` (or leaving a ``with`` block) zeroes the master keys.
    """

    def __init__(
        self,
        backend: StorageBackend,
        root: str,
        keys: MasterKeySet,
        config: VaultConfig,
        name: Optional[str] = None,
        crypto: Optional[CryptoProvider] = None,
        vault_file: Optional[str] = None,
        masterkey_file: Optional[str] = None,
    ):
        self.backend = backend
        self.root = root
        self.name = name
        self.keys = keys
        self.config = config
        self._crypto = crypto or CryptoProvider()
        self._key_manager = KeyManager(self._crypto)
        self._vault_file = vault_file or f"{root}/{VAULT_CONFIG_FILENAME}"
        self._masterkey_file = masterkey_file or f"{root}/{MASTERKEY_FILENAME}"
        self.codec = PathCodec(
            self._crypto, keys, root, backend, config.shortening_threshold
        )
        self.cipher = ContentCipher(self._crypto, keys)

    def __repr__(self) -> str:
        return f"<Vault name={self.name!r} root={self.root!r}>"

    def __enter__(self) -> "Vault":
        return self

    def __exit__(self, *_) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self.keys.destroyed

    def close(self) -> None:
        self.keys.destroy()

    def _check_open(self) -> None:
        if self.keys.destroyed:
            raise VaultClosedError(self.root)

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    async def create(
        cls,
        backend: StorageBackend,
        directory: str,
        password: str,
        options: Optional[VaultOptions] = None,
        crypto: Optional[CryptoProvider] = None,
    ) -> "Vault":
        """Create a new vault and return it unlocked.

        Args:
            backend: Storage for the encrypted files.
            directory: Target directory. With ``options.name`` set the vault
                is created in a subdirectory of that name.
            password: Vault password.
            options: Creation options; environment defaults when omitted.
            crypto: Crypto capability to use.

        Raises:
            ExistsError: If a vault already exists at the target.
        """
        options = options or VaultOptions.from_env()
        crypto = crypto or CryptoProvider()
        directory = directory.rstrip("/")
        root = f"{directory}/{options.name}" if options.name else directory
        vault_file = f"{root}/{VAULT_CONFIG_FILENAME}"
        if await backend.exists(vault_file):
            raise ExistsError(vault_file)

        keys, config, record, token = await KeyManager(crypto).create(
            password, options
        )
        masterkey_file = f"{root}/{MASTERKEY_FILENAME}"
        data_dir = f"{root}/{DATA_DIR_NAME}"
        written = []
        own_data_dir = False
        try:
            await backend.create_directory(root, recursive=True)
            own_data_dir = not await backend.exists(data_dir)
            await backend.write_bytes(masterkey_file, record.to_json())
            written.append(masterkey_file)
            await backend.write_text(vault_file, token)
            written.append(vault_file)
            vault = cls(backend, root, keys, config, name=options.name, crypto=crypto)
            await backend.create_directory(
                vault.codec.get_dir(ROOT_DIR_ID), recursive=True
            )
        except Exception:
            keys.destroy()
            await _discard(
                backend,
                files=written,
                directories=[data_dir] if own_data_dir else [],
            )
            raise
        logger.info("Vault created at %s", root)
        return vault

    @classmethod
    async def open(
        cls,
        backend: StorageBackend,
        directory: str,
        password: str,
        name: Optional[str] = None,
        vault_file: Optional[str] = None,
        masterkey_file: Optional[str] = None,
        crypto: Optional[CryptoProvider] = None,
    ) -> "Vault":
        """Unlock an existing vault.

        Args:
            backend: Storage holding the encrypted files.
            directory: Vault root containing ``vault.cryptomator`` and ``d``.
            password: Vault password.
            name: Optional display name.
            vault_file: Custom location of ``vault.cryptomator``.
            masterkey_file: Custom location of the masterkey file; defaults to
                the file named by the config token's key id.

        Raises:
            DecryptionError: The password is wrong.
            InvalidSignatureError: The vault configuration was tampered with.
            InvalidVaultError: The vault files are malformed or unsupported.
        """
        crypto = crypto or CryptoProvider()
        root = directory.rstrip("/")
        vault_file = vault_file or f"{root}/{VAULT_CONFIG_FILENAME}"
        token = (await backend.read_text(vault_file)).strip()
        if masterkey_file is None:
            masterkey_file = f"{root}/{KeyManager.masterkey_filename(token)}"
        record = await backend.read_bytes(masterkey_file)
        keys, config = await KeyManager(crypto).open(password, record, token)
        logger.info("Vault opened at %s", root)
        return cls(
            backend,
            root,
            keys,
            config,
            name=name,
            crypto=crypto,
            vault_file=vault_file,
            masterkey_file=masterkey_file,
        )

    async def change_password(
        self,
        old_password: str,
        new_password: str,
        scrypt_cost_param: Optional[int] = None,
        scrypt_block_size: Optional[int] = None,
    ) -> None:
        """Re-wrap the master keys under ``new_password``.

        The master keys themselves do not change, so no file is re-encrypted.

        Raises:
            DecryptionError: ``old_password`` does not unlock the vault.
        """
        self._check_open()
        token = (await self.backend.read_text(self._vault_file)).strip()
        raw = await self.backend.read_bytes(self._masterkey_file)
        check, _ = await self._key_manager.open(old_password, raw, token)
        check.destroy()

        current = MasterkeyRecord.from_json(raw)
        record = await self._key_manager.wrap(
            self.keys,
            new_password,
            scrypt_cost_param or current.scrypt_cost_param,
            scrypt_block_size or current.scrypt_block_size,
            version=current.version,
        )
        await self.backend.write_bytes(self._masterkey_file, record.to_json())
        logger.info("Vault password changed for %s", self.root)

    # ------------------------------------------------------------------
    # Browsing
    # ------------------------------------------------------------------

    async def get_dir(self, dir_id: str) -> str:
        self._check_open()
        return self.codec.get_dir(dir_id)

    async def get_root_dir(self) -> EncryptedItem:
        """Return the root directory (DirID ``""``) as an item."""
        self._check_open()
        return EncryptedItem(
            vault=self,
            kind=ItemKind.DIRECTORY,
            name="",
            encoded_name="",
            physical_path=self.codec.get_dir(ROOT_DIR_ID),
            parent_dir_id=None,
            payload=DirectoryInfo(dir_id=DirIdCache(ROOT_DIR_ID)),
        )

    async def list_encrypted(self, dir_id: str) -> list[StorageEntry]:
        """List the raw entries of a directory, without decrypting names."""
        self._check_open()
        entries = await self.backend.list(self.codec.get_dir(dir_id))
        return [e for e in entries if e.name != DIR_ID_BACKUP_FILE_NAME]

    async def _resolve_entry(
        self, entry: StorageEntry, dir_id: str
    ) -> Optional[EncryptedItem]:
        if entry.name.endswith(DEFLATED_FILE_SUFFIX) and entry.is_directory:
            children = {c.name: c for c in await self.backend.list(entry.full_path)}
            if DIR_FILE_NAME in children:
                kind, size = ItemKind.DIRECTORY, 0
            elif CONTENTS_FILE_NAME in children:
                kind, size = ItemKind.FILE, children[CONTENTS_FILE_NAME].size
            else:
                logger.warning("Skipping incomplete shortened entry %s", entry.full_path)
                return None
            shortened = True
        elif entry.name.endswith(CRYPTOMATOR_FILE_SUFFIX):
            if entry.is_directory:
                kind, size = ItemKind.DIRECTORY, 0
            else:
                kind, size = ItemKind.FILE, entry.size
            shortened = False
        else:
            logger.debug("Skipping foreign entry %s", entry.full_path)
            return None

        encoded, name = await self.codec.resolve_entry_name(entry, dir_id)
        if kind is ItemKind.DIRECTORY:
            payload = DirectoryInfo()
        else:
            payload = FileInfo(size=size)
        return EncryptedItem(
            vault=self,
            kind=kind,
            name=name,
            encoded_name=encoded,
            physical_path=entry.full_path,
            parent_dir_id=dir_id,
            payload=payload,
            last_modified=entry.last_modified,
            shortened=shortened,
        )

    async def list_items(self, dir_id: str) -> list[EncryptedItem]:
        """List and decrypt the items of a directory.

        Names are resolved concurrently; each result stays paired with the
        entry it was read from.

        Raises:
            DecryptionError: Target ITEM_NAME, with the failing entry attached.
        """
        self._check_open()
        entries = await self.list_encrypted(dir_id)
        resolved = await asyncio.gather(
            *(self._resolve_entry(entry, dir_id) for entry in entries)
        )
        return [item for item in resolved if item is not None]

    async def read_dir_id(self, item: EncryptedItem) -> str:
        """Read a directory's DirID from its ``dir.c9r``."""
        self._check_open()
        dir_id = await self.backend.read_text(item.payload_path)
        if len(dir_id) > MAX_DIR_ID_LENGTH:
            raise InvalidVaultError(f"Invalid directory id in {item.payload_path}")
        return dir_id

    async def read_dir_id_backup(self, dir_id: str) -> str:
        """Decrypt the ``dirid.c9r`` backup stored with a directory's children."""
        self._check_open()
        data = await self.backend.read_bytes(
            f"{self.codec.get_dir(dir_id)}/{DIR_ID_BACKUP_FILE_NAME}"
        )
        return self.cipher.decrypt(data).decode("utf-8")

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @staticmethod
    def _check_name(name: str) -> None:
        """Validate a plaintext item name.

        Raises:
            ValueError: If name is empty, a dot entry, or contains '/' or NUL.
        """
        if not name or name in (".", "..") or "/" in name or "\x00" in name:
            raise ValueError(f"Invalid item name: {name!r}")

    async def _remove_quietly(self, *paths: str) -> None:
        await _discard(self.backend, directories=paths)

    def _make_item(
        self,
        kind: ItemKind,
        name: str,
        location: EntryLocation,
        parent_dir_id: str,
        payload,
    ) -> EncryptedItem:
        return EncryptedItem(
            vault=self,
            kind=kind,
            name=name,
            encoded_name=location.encoded_name,
            physical_path=location.path,
            parent_dir_id=parent_dir_id,
            payload=payload,
            last_modified=datetime.now(timezone.utc),
            shortened=location.shortened,
        )

    async def create_directory(self, name: str, parent_dir_id: str) -> EncryptedItem:
        """Create a directory under ``parent_dir_id``.

        Writes the entry (``dir.c9r``, plus ``name.c9s`` when shortened) and
        materializes the new directory's content path with its ``dirid.c9r``
        backup. If any step fails, both are removed again.

        Raises:
            ExistsError: An entry with that name already exists.
        """
        self._check_open()
        self._check_name(name)
        location = self.codec.locate(name, parent_dir_id)
        if await self.backend.exists(location.path):
            raise ExistsError(location.path)

        dir_id = str(uuid.uuid4())
        content_path = self.codec.get_dir(dir_id)
        try:
            await self.backend.create_directory(location.path)
            if location.shortened:
                await self.backend.write_text(location.name_file, location.encoded_name)
            await self.backend.write_text(location.dir_file, dir_id)
            await self.backend.create_directory(content_path, recursive=True)
            await self.backend.write_bytes(
                f"{content_path}/{DIR_ID_BACKUP_FILE_NAME}",
                self.cipher.encrypt(dir_id.encode("utf-8")),
            )
        except Exception:
            await self._remove_quietly(location.path, content_path)
            raise
        logger.debug("Created directory entry %s", location.path)
        return self._make_item(
            ItemKind.DIRECTORY,
            name,
            location,
            parent_dir_id,
            DirectoryInfo(dir_id=DirIdCache(dir_id)),
        )

    async def encrypt_file(
        self,
        name: str,
        parent_dir_id: str,
        content: bytes,
        overwrite: bool = False,
    ) -> EncryptedItem:
        """Encrypt ``content`` and store it as file ``name``.

        Raises:
            ExistsError: The entry exists and ``overwrite`` is false, or it
                exists as a directory.
        """
        self._check_open()
        self._check_name(name)
        location = self.codec.locate(name, parent_dir_id)
        ciphertext = self.cipher.encrypt(content)

        exists = await self.backend.exists(location.path)
        if exists and (
            not overwrite or await self.backend.exists(location.dir_file)
        ):
            raise ExistsError(location.path)

        if location.shortened:
            created = False
            try:
                if not exists:
                    await self.backend.create_directory(location.path)
                    created = True
                    await self.backend.write_text(
                        location.name_file, location.encoded_name
                    )
                await self.backend.write_bytes(location.contents_file, ciphertext)
            except Exception:
                if created:
                    await self._remove_quietly(location.path)
                raise
        else:
            await self.backend.write_bytes(location.path, ciphertext)
        logger.debug("Wrote file entry %s", location.path)
        return self._make_item(
            ItemKind.FILE,
            name,
            location,
            parent_dir_id,
            FileInfo(size=len(ciphertext)),
        )

    async def decrypt_file(self, item: EncryptedItem) -> bytes:
        """Read and decrypt a file item.

        Raises:
            InvalidSignatureError: Target FILE, the header or a chunk fails
            authentication.
        """
        self._check_open()
        data = await self.backend.read_bytes(item.payload_path)
        return self.cipher.decrypt(data)

    # ------------------------------------------------------------------
    # Rename / move
    # ------------------------------------------------------------------

    async def _relocate(
        self, item: EncryptedItem, new_name: str, new_parent_dir_id: str
    ) -> None:
        """Move an entry to the location of (new_name, new_parent_dir_id).

        The target representation (plain ``.c9r`` or shortened ``.c9s``) is
        always derived from the new name, whatever the old one was.
        """
        target = self.codec.locate(new_name, new_parent_dir_id)
        source = item.physical_path
        if target.path == source:
            return
        if await self.backend.exists(target.path):
            raise ExistsError(target.path)

        if item.is_dir:
            # the entry directory already holds dir.c9r in both forms
            await self.backend.rename(source, target.path)
            if target.shortened:
                await self.backend.write_text(target.name_file, target.encoded_name)
            elif item.shortened:
                await self.backend.remove_file(target.name_file)
        elif item.shortened and target.shortened:
            await self.backend.rename(source, target.path)
            await self.backend.write_text(target.name_file, target.encoded_name)
        elif target.shortened:
            await self.backend.create_directory(target.path)
            try:
                await self.backend.write_text(target.name_file, target.encoded_name)
                await self.backend.rename(source, target.contents_file)
            except Exception:
                await self._remove_quietly(target.path)
                raise
        elif item.shortened:
            await self.backend.rename(
                f"{source}/{CONTENTS_FILE_NAME}", target.path
            )
            await self.backend.remove_directory_recursive(source)
        else:
            await self.backend.rename(source, target.path)

        logger.debug("Relocated %s -> %s", source, target.path)
        item.name = new_name
        item.encoded_name = target.encoded_name
        item.physical_path = target.path
        item.parent_dir_id = new_parent_dir_id
        item.shortened = target.shortened

    async def rename(self, item: EncryptedItem, new_name: str) -> None:
        """Rename an item within its parent directory.

        Raises:
            ValueError: The item is the root directory or the name is invalid.
            ExistsError: An entry with the new name already exists.
        """
        self._check_open()
        if item.is_root:
            raise ValueError("Cannot rename the root folder.")
        self._check_name(new_name)
        await self._relocate(item, new_name, item.parent_dir_id)

    async def move(self, item: EncryptedItem, new_parent: EncryptedItem) -> None:
        """Move an item into directory ``new_parent``; a DirID never changes.

        Raises:
            ValueError: The item is the root, the target is not a directory,
                or a directory would be moved into itself or a descendant.
            ExistsError: The target directory has an entry with that name.
        """
        self._check_open()
        if item.is_root:
            raise ValueError("Cannot move the root folder.")
        if not new_parent.is_dir:
            raise ValueError("Move target must be a directory.")
        parent_dir_id = await new_parent.get_dir_id()
        if item.is_dir:
            dir_id = await item.get_dir_id()
            subtree = await self._walk_dir_ids(dir_id)
            if parent_dir_id == dir_id or parent_dir_id in subtree:
                raise ValueError(
                    "Cannot move a directory into itself or one of its descendants."
                )
        await self._relocate(item, item.name, parent_dir_id)

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_file(self, item: EncryptedItem) -> None:
        self._check_open()
        if not item.is_file:
            raise ValueError(f"{item.physical_path} is not a file")
        if item.shortened:
            await self.backend.remove_directory_recursive(item.physical_path)
        else:
            await self.backend.remove_file(item.physical_path)
        logger.debug("Deleted file entry %s", item.physical_path)

    async def delete_dir(self, item: EncryptedItem) -> None:
        """Delete a directory and everything below it.

        Descendants are found by walking DirIDs. The directory's entry and
        the content path of the directory and of every descendant directory
        are removed, so no content folder is left unreachable.
        """
        self._check_open()
        if item.is_root:
            raise ValueError("Cannot delete the root folder.")
        if not item.is_dir:
            raise ValueError(f"{item.physical_path} is not a directory")

        content_paths = [
            self.codec.get_dir(dir_id)
            for dir_id in await self._walk_dir_ids(await item.get_dir_id())
        ]

        await asyncio.gather(
            self.backend.remove_directory_recursive(item.physical_path),
            *(self.backend.remove_directory_recursive(p) for p in content_paths),
        )
        item.invalidate_dir_id()
        logger.debug(
            "Deleted directory entry %s with %d content path(s)",
            item.physical_path, len(content_paths),
        )

    async def _walk_dir_ids(self, dir_id: str) -> list[str]:
        """DirIDs of a directory and of every directory below it.

        Directories whose content path is missing are logged and skipped.
        """
        found = []
        pending = [dir_id]
        while pending:
            current = pending.pop()
            path = self.codec.get_dir(current)
            if not await self.backend.exists(path):
                logger.warning("Content path %s is missing", path)
                continue
            found.append(current)
            for child in await self.list_items(current):
                if child.is_dir:
                    pending.append(await child.get_dir_id())
        return found

    async def delete(self, item: EncryptedItem) -> None:
        if item.is_dir:
            await self.delete_dir(item)
        else:
            await self.delete_file(item)
