"""
Vault Keys — Master key derivation, wrapping and config-token signing.

Two files protect a vault:
- ``masterkey.cryptomator``: the encryption and MAC master keys, AES-KW
  wrapped under scrypt(password), plus a MAC over the record version.
- ``vault.cryptomator``: a JWT holding the vault configuration, signed with
  HMAC over ``enc_key || mac_key``.

A wrong password shows up as an unwrap failure (``DecryptionError``); a
token or version MAC that does not verify under the unwrapped keys shows up
as ``InvalidSignatureError``.

Security Note:
    Never log passwords or key material. KEKs and concatenated signing keys
    are zeroed once used. Keys handed to ``PyJWT`` and returned by AES-KW are
    immutable ``bytes`` copies that cannot be zeroed; they go out of scope at
    the end of each call.
"""
import base64
import binascii
import logging
import uuid
from dataclasses import dataclass, field
from typing import Union

import jwt
import orjson
from cryptography.hazmat.primitives.keywrap import InvalidUnwrap
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..conf import (
    CIPHER_COMBO,
    KEY_LENGTH,
    MASTERKEY_FILENAME,
    MASTERKEY_KID_PREFIX,
    MASTERKEY_VERSION,
    SHORTENING_THRESHOLD,
    VAULT_FORMAT,
    VaultOptions,
)
from ..exceptions import (
    DecryptionError,
    DecryptionTarget,
    InvalidSignatureError,
    InvalidVaultError,
)
from .provider import CryptoProvider, wipe

logger = logging.getLogger("cryptomator.vault")

_JWT_ALGORITHMS = ("HS256", "HS384", "HS512")


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------

@dataclass
class MasterKeySet:
    """The vault's encryption and MAC master keys.

    Both keys live in ``bytearray`` buffers owned by this object; ``destroy()``
    zeroes them together with the derived SIV key.
    """
    enc_key: bytearray
    mac_key: bytearray
    _siv_key: bytearray = field(init=False, repr=False)

    def __post_init__(self):
        if len(self.enc_key) != KEY_LENGTH or len(self.mac_key) != KEY_LENGTH:
            raise ValueError("Master keys must be 32 bytes each")
        self._siv_key = bytearray(self.mac_key) + bytearray(self.enc_key)

    def __repr__(self) -> str:
        return f"<MasterKeySet destroyed={self.destroyed}>"

    @classmethod
    def generate(cls, crypto: CryptoProvider) -> "MasterKeySet":
        return cls(
            enc_key=bytearray(crypto.random_bytes(KEY_LENGTH)),
            mac_key=bytearray(crypto.random_bytes(KEY_LENGTH)),
        )

    @property
    def siv_key(self) -> bytearray:
        """``mac_key || enc_key``, the AES-SIV key for names and DirIDs."""
        return self._siv_key

    def signing_key(self) -> bytearray:
        """Return a fresh ``enc_key || mac_key`` buffer; the caller wipes it."""
        return bytearray(self.enc_key) + bytearray(self.mac_key)

    @property
    def destroyed(self) -> bool:
        return not any(self.enc_key) and not any(self.mac_key)

    def destroy(self) -> None:
        wipe(self.enc_key)
        wipe(self.mac_key)
        wipe(self._siv_key)


# ---------------------------------------------------------------------------
# Persisted models
# ---------------------------------------------------------------------------

class MasterkeyRecord(BaseModel):
    """Contents of ``masterkey.cryptomator``."""

    version: int = Field(default=MASTERKEY_VERSION)
    scrypt_salt: str = Field(alias="scryptSalt")
    scrypt_cost_param: int = Field(alias="scryptCostParam", ge=2)
    scrypt_block_size: int = Field(alias="scryptBlockSize", ge=1)
    primary_master_key: str = Field(alias="primaryMasterKey")
    hmac_master_key: str = Field(alias="hmacMasterKey")
    version_mac: str = Field(alias="versionMac")

    model_config = {"populate_by_name": True}

    def to_json(self) -> bytes:
        return orjson.dumps(
            self.model_dump(by_alias=True), option=orjson.OPT_INDENT_2
        )

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "MasterkeyRecord":
        """Parse a masterkey record.

        Raises:
            InvalidVaultError: If the record is not valid JSON or misses fields.
        """
        try:
            return cls.model_validate(orjson.loads(data))
        except (orjson.JSONDecodeError, ValidationError) as err:
            raise InvalidVaultError(
                f"Invalid {MASTERKEY_FILENAME}: {err}"
            ) from err


class VaultConfig(BaseModel):
    """Claims of the ``vault.cryptomator`` token."""

    format: int = Field(default=VAULT_FORMAT)
    shortening_threshold: int = Field(
        default=SHORTENING_THRESHOLD, alias="shorteningThreshold", ge=1
    )
    jti: str = Field(default_factory=lambda: str(uuid.uuid4()))
    cipher_combo: str = Field(default=CIPHER_COMBO, alias="cipherCombo")

    model_config = {"populate_by_name": True}

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: int) -> int:
        if v != VAULT_FORMAT:
            raise ValueError(f"Unsupported vault format: {v}")
        return v

    @field_validator("cipher_combo")
    @classmethod
    def validate_cipher_combo(cls, v: str) -> str:
        if v != CIPHER_COMBO:
            raise ValueError(f"Unsupported cipherCombo: {v}")
        return v

    def claims(self) -> dict:
        return self.model_dump(by_alias=True)


def _b64decode(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as err:
        raise InvalidVaultError(f"Invalid base64 in {what}") from err


def _b64encode(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def _version_bytes(version: int) -> bytes:
    return version.to_bytes(4, "big", signed=True)


# ---------------------------------------------------------------------------
# Key manager
# ---------------------------------------------------------------------------

class KeyManager:
    """Derives, unwraps and wraps master keys; signs and verifies configs."""

    def __init__(self, crypto: CryptoProvider):
        self._crypto = crypto

    def version_mac(self, keys: MasterKeySet, version: int) -> str:
        """Base64 HMAC-SHA256 of the record version as a signed int32 BE."""
        return _b64encode(
            self._crypto.hmac_sha256(keys.mac_key, _version_bytes(version))
        )

    @staticmethod
    def masterkey_filename(token: str) -> str:
        """Return the masterkey file named by the token's ``kid`` header.

        Raises:
            InvalidVaultError: If the token is not a JWT or the key id is not
            a masterkey file reference.
        """
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as err:
            raise InvalidVaultError(f"Invalid vault config token: {err}") from err
        kid = header.get("kid", "")
        if not kid.startswith(MASTERKEY_KID_PREFIX):
            raise InvalidVaultError(f"Unsupported key id in vault config: {kid}")
        return kid[len(MASTERKEY_KID_PREFIX):]

    def sign_config(self, keys: MasterKeySet, config: VaultConfig) -> str:
        key = keys.signing_key()
        try:
            return jwt.encode(
                config.claims(),
                bytes(key),
                algorithm="HS256",
                headers={
                    "kid": f"{MASTERKEY_KID_PREFIX}{MASTERKEY_FILENAME}",
                    "typ": "JWT",
                },
            )
        finally:
            wipe(key)

    def verify_config(self, keys: MasterKeySet, token: str) -> VaultConfig:
        """Verify the token signature and parse its claims.

        Raises:
            InvalidSignatureError: If the HMAC does not verify.
            InvalidVaultError: If the token or its claims are malformed.
        """
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as err:
            raise InvalidVaultError(f"Invalid vault config token: {err}") from err
        alg = header.get("alg")
        if alg not in _JWT_ALGORITHMS:
            raise InvalidVaultError(f"Unsupported vault config algorithm: {alg}")
        key = keys.signing_key()
        try:
            claims = jwt.decode(token, bytes(key), algorithms=[alg])
        except jwt.InvalidSignatureError as err:
            raise InvalidSignatureError(DecryptionTarget.VAULT) from err
        except jwt.InvalidTokenError as err:
            raise InvalidVaultError(f"Invalid vault config token: {err}") from err
        finally:
            wipe(key)
        try:
            return VaultConfig.model_validate(claims)
        except ValidationError as err:
            raise InvalidVaultError(f"Invalid vault configuration: {err}") from err

    async def open(
        self,
        password: str,
        masterkey_record: Union[str, bytes],
        config_token: str,
    ) -> tuple[MasterKeySet, VaultConfig]:
        """Unlock a vault.

        Args:
            password: Vault password.
            masterkey_record: Contents of ``masterkey.cryptomator``.
            config_token: Contents of ``vault.cryptomator``.

        Returns:
            Tuple of (unwrapped keys, verified configuration).

        Raises:
            DecryptionError: Target VAULT, the keys could not be unwrapped.
            InvalidSignatureError: Target VAULT, config token or version MAC
                does not verify.
            InvalidVaultError: Malformed or unsupported vault files.
        """
        record = MasterkeyRecord.from_json(masterkey_record)
        salt = _b64decode(record.scrypt_salt, "scryptSalt")
        wrapped_enc = _b64decode(record.primary_master_key, "primaryMasterKey")
        wrapped_mac = _b64decode(record.hmac_master_key, "hmacMasterKey")

        try:
            kek = await self._crypto.derive_kek(
                password, salt, record.scrypt_cost_param, record.scrypt_block_size
            )
        except ValueError as err:
            raise DecryptionError(DecryptionTarget.VAULT) from err
        enc_key = None
        try:
            enc_key = self._crypto.unwrap_key(kek, wrapped_enc)
            mac_key = self._crypto.unwrap_key(kek, wrapped_mac)
        except (InvalidUnwrap, ValueError) as err:
            logger.debug("Master key unwrap failed")
            if enc_key is not None:
                wipe(enc_key)
            raise DecryptionError(DecryptionTarget.VAULT) from err
        finally:
            wipe(kek)

        keys = MasterKeySet(enc_key=enc_key, mac_key=mac_key)
        try:
            config = self.verify_config(keys, config_token)
            if not self._crypto.hmac_verify(
                keys.mac_key,
                _version_bytes(record.version),
                _b64decode(record.version_mac, "versionMac"),
            ):
                raise InvalidSignatureError(
                    DecryptionTarget.VAULT, "versionMac mismatch"
                )
        except Exception:
            keys.destroy()
            raise
        return keys, config

    async def wrap(
        self,
        keys: MasterKeySet,
        password: str,
        cost_param: int,
        block_size: int,
        salt_length: int = 8,
        version: int = MASTERKEY_VERSION,
    ) -> MasterkeyRecord:
        """Wrap ``keys`` under a KEK derived from ``password`` with a new salt."""
        salt = self._crypto.random_bytes(salt_length)
        kek = await self._crypto.derive_kek(password, salt, cost_param, block_size)
        try:
            wrapped_enc = self._crypto.wrap_key(kek, keys.enc_key)
            wrapped_mac = self._crypto.wrap_key(kek, keys.mac_key)
        finally:
            wipe(kek)
        return MasterkeyRecord(
            version=version,
            scrypt_salt=_b64encode(salt),
            scrypt_cost_param=cost_param,
            scrypt_block_size=block_size,
            primary_master_key=_b64encode(wrapped_enc),
            hmac_master_key=_b64encode(wrapped_mac),
            version_mac=self.version_mac(keys, version),
        )

    async def create(
        self,
        password: str,
        options: VaultOptions,
    ) -> tuple[MasterKeySet, VaultConfig, MasterkeyRecord, str]:
        """Generate keys for a new vault.

        Returns:
            Tuple of (keys, configuration, masterkey record, signed token).
        """
        keys = MasterKeySet.generate(self._crypto)
        try:
            record = await self.wrap(
                keys,
                password,
                options.scrypt_cost_param,
                options.scrypt_block_size,
                options.scrypt_salt_length,
            )
            config = VaultConfig(
                format=options.format,
                shortening_threshold=options.shortening_threshold,
            )
            token = self.sign_config(keys, config)
        except Exception:
            keys.destroy()
            raise
        return keys, config, record, token
