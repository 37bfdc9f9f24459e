"""
Vault Configuration — On-disk constants and validated creation options.

Defaults for new vaults can be tuned through environment variables:
    VAULT_SCRYPT_COST_PARAM = <power of two, default 32768>
    VAULT_SCRYPT_BLOCK_SIZE = <integer, default 8>
    VAULT_SCRYPT_SALT_LENGTH = <bytes, default 8>
    VAULT_SHORTENING_THRESHOLD = <integer, default 220>

Security Note:
    Never log passwords or key material. Only log paths and parameters.
"""
import os
import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("cryptomator.vault")

# ---------------------------------------------------------------------------
# Vault format
# ---------------------------------------------------------------------------

VAULT_FORMAT = 8
MASTERKEY_VERSION = 999
CIPHER_COMBO = "SIV_CTRMAC"
KEY_LENGTH = 32  # AES-256

VAULT_CONFIG_FILENAME = "vault.cryptomator"
MASTERKEY_FILENAME = "masterkey.cryptomator"
MASTERKEY_KID_PREFIX = "masterkeyfile:"
DATA_DIR_NAME = "d"

CRYPTOMATOR_FILE_SUFFIX = ".c9r"
DEFLATED_FILE_SUFFIX = ".c9s"
DIR_FILE_NAME = "dir.c9r"
CONTENTS_FILE_NAME = "contents.c9r"
INFLATED_FILE_NAME = "name.c9s"
DIR_ID_BACKUP_FILE_NAME = "dirid.c9r"

ROOT_DIR_ID = ""


def _env_int(name: str, default: int) -> int:
    """Read an integer setting from the environment."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as err:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from err


SCRYPT_COST_PARAM = _env_int("VAULT_SCRYPT_COST_PARAM", 32768)
SCRYPT_BLOCK_SIZE = _env_int("VAULT_SCRYPT_BLOCK_SIZE", 8)
SCRYPT_SALT_LENGTH = _env_int("VAULT_SCRYPT_SALT_LENGTH", 8)
SHORTENING_THRESHOLD = _env_int("VAULT_SHORTENING_THRESHOLD", 220)


class VaultOptions(BaseModel):
    """Validated options for creating a vault.

    ``name`` selects a subdirectory of the target directory that becomes the
    vault root; when ``None`` the vault files are written directly into the
    target directory.
    """

    name: Optional[str] = None
    format: int = Field(default=VAULT_FORMAT)
    shortening_threshold: int = Field(default=SHORTENING_THRESHOLD, ge=1)
    scrypt_cost_param: int = Field(default=SCRYPT_COST_PARAM, ge=2)
    scrypt_block_size: int = Field(default=SCRYPT_BLOCK_SIZE, ge=1)
    scrypt_salt_length: int = Field(default=SCRYPT_SALT_LENGTH, ge=8, le=64)

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: int) -> int:
        """Only vault format 8 is supported."""
        if v != VAULT_FORMAT:
            raise ValueError(f"Unsupported vault format: {v}")
        return v

    @field_validator("scrypt_cost_param")
    @classmethod
    def validate_cost(cls, v: int) -> int:
        """scrypt requires N to be a power of two."""
        if v & (v - 1):
            raise ValueError(f"scrypt_cost_param must be a power of two, got {v}")
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and (not v or "/" in v):
            raise ValueError(f"Invalid vault name: {v!r}")
        return v

    @classmethod
    def from_env(cls, name: Optional[str] = None) -> "VaultOptions":
        """Create VaultOptions from the environment defaults.

        Returns:
            Populated VaultOptions instance.
        """
        return cls(
            name=name,
            shortening_threshold=_env_int(
                "VAULT_SHORTENING_THRESHOLD", SHORTENING_THRESHOLD
            ),
            scrypt_cost_param=_env_int(
                "VAULT_SCRYPT_COST_PARAM", SCRYPT_COST_PARAM
            ),
            scrypt_block_size=_env_int(
                "VAULT_SCRYPT_BLOCK_SIZE", SCRYPT_BLOCK_SIZE
            ),
            scrypt_salt_length=_env_int(
                "VAULT_SCRYPT_SALT_LENGTH", SCRYPT_SALT_LENGTH
            ),
        )
