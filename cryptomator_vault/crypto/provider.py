"""
Crypto Provider — Keyed primitives used by the vault engine.

Wraps the ``cryptography`` primitives the vault format needs:
- AES-SIV (RFC 5297) for deterministic name and directory-ID encryption
- AES-CTR + HMAC-SHA256 for file headers and content chunks
- AES key wrap (RFC 3394) for the persisted master keys
- scrypt for the password-derived key-encryption key

A ``CryptoProvider`` instance is passed explicitly to every component that
needs it; nothing here keeps process-wide key state.

Security Note:
    Never log key material, plaintext or ciphertext values.
    Transient key buffers are ``bytearray`` and must be ``wipe()``d after use.
"""
import os
import asyncio
import logging
import functools
from collections.abc import Sequence
from typing import Union

from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import cmac, hashes
from cryptography.hazmat.primitives import hmac as crypto_hmac
from cryptography.hazmat.primitives import constant_time
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from cryptography.hazmat.primitives.keywrap import aes_key_unwrap, aes_key_wrap

from ..conf import KEY_LENGTH

logger = logging.getLogger("cryptomator.vault")

BytesLike = Union[bytes, bytearray, memoryview]

BLOCK_SIZE = 16  # AES block
SIV_TAG_SIZE = 16

_ZERO_BLOCK = bytes(BLOCK_SIZE)
_BLOCK_MASK = (1 << 128) - 1
_RB = 0x87  # GF(2^128) reduction constant


def wipe(buffer: bytearray) -> None:
    """Overwrite a mutable buffer with zeros in place."""
    for i in range(len(buffer)):
        buffer[i] = 0


def _dbl(block: bytes) -> bytes:
    """Multiply a 128-bit block by x in GF(2^128)."""
    value = int.from_bytes(block, "big") << 1
    if value >> 128:
        value = (value & _BLOCK_MASK) ^ _RB
    return value.to_bytes(BLOCK_SIZE, "big")


def _xor(a: BytesLike, b: BytesLike) -> bytes:
    return bytes(x ^ y for x, y in zip(a, b))


class CryptoProvider:
    """Keyed cryptographic capability for the vault engine."""

    # ------------------------------------------------------------------
    # Randomness and hashing
    # ------------------------------------------------------------------

    def random_bytes(self, size: int) -> bytes:
        return os.urandom(size)

    def sha1(self, data: BytesLike) -> bytes:
        digest = hashes.Hash(hashes.SHA1())
        digest.update(bytes(data))
        return digest.finalize()

    def hmac_sha256(self, key: BytesLike, data: BytesLike) -> bytes:
        h = crypto_hmac.HMAC(key, hashes.SHA256())
        h.update(bytes(data))
        return h.finalize()

    def hmac_verify(self, key: BytesLike, data: BytesLike, tag: BytesLike) -> bool:
        """Check an HMAC-SHA256 tag in constant time."""
        h = crypto_hmac.HMAC(key, hashes.SHA256())
        h.update(bytes(data))
        try:
            h.verify(bytes(tag))
        except InvalidSignature:
            return False
        return True

    # ------------------------------------------------------------------
    # AES-CTR
    # ------------------------------------------------------------------

    def aes_ctr(self, key: BytesLike, nonce: BytesLike, data: BytesLike) -> bytes:
        """Apply the AES-CTR keystream; encryption and decryption are the same."""
        cipher = Cipher(algorithms.AES(key), modes.CTR(bytes(nonce)))
        ctx = cipher.encryptor()
        return ctx.update(bytes(data)) + ctx.finalize()

    # ------------------------------------------------------------------
    # AES-SIV (RFC 5297)
    # ------------------------------------------------------------------

    def _cmac(self, key: BytesLike, data: BytesLike) -> bytes:
        c = cmac.CMAC(algorithms.AES(key))
        c.update(bytes(data))
        return c.finalize()

    def _s2v(
        self,
        key: BytesLike,
        associated_data: Sequence[BytesLike],
        plaintext: BytesLike,
    ) -> bytes:
        d = self._cmac(key, _ZERO_BLOCK)
        for item in associated_data:
            d = _xor(_dbl(d), self._cmac(key, item))
        plaintext = bytes(plaintext)
        if len(plaintext) >= BLOCK_SIZE:
            t = plaintext[:-BLOCK_SIZE] + _xor(plaintext[-BLOCK_SIZE:], d)
        else:
            padded = plaintext + b"\x80" + bytes(BLOCK_SIZE - 1 - len(plaintext))
            t = _xor(_dbl(d), padded)
        return self._cmac(key, t)

    @staticmethod
    def _siv_counter(tag: bytes) -> bytes:
        q = bytearray(tag)
        q[8] &= 0x7F
        q[12] &= 0x7F
        return bytes(q)

    def siv_seal(
        self,
        key: BytesLike,
        plaintext: BytesLike,
        associated_data: Sequence[BytesLike] = (),
    ) -> bytes:
        """Deterministically encrypt ``plaintext``.

        Args:
            key: 64-byte SIV key; the first half keys S2V, the second half CTR.
            plaintext: Data to seal, may be empty.
            associated_data: Authenticated but unencrypted header strings.

        Returns:
            ``tag(16) || ciphertext``.
        """
        if len(key) != 2 * KEY_LENGTH:
            raise ValueError("SIV key must be 64 bytes")
        mac_part, ctr_part = key[:KEY_LENGTH], key[KEY_LENGTH:]
        tag = self._s2v(mac_part, associated_data, plaintext)
        return tag + self.aes_ctr(ctr_part, self._siv_counter(tag), plaintext)

    def siv_open(
        self,
        key: BytesLike,
        sealed: BytesLike,
        associated_data: Sequence[BytesLike] = (),
    ) -> bytes:
        """Decrypt and authenticate a ``siv_seal`` output.

        Raises:
            InvalidTag: If the input is too short or authentication fails.
        """
        if len(key) != 2 * KEY_LENGTH:
            raise ValueError("SIV key must be 64 bytes")
        sealed = bytes(sealed)
        if len(sealed) < SIV_TAG_SIZE:
            raise InvalidTag()
        mac_part, ctr_part = key[:KEY_LENGTH], key[KEY_LENGTH:]
        tag, ciphertext = sealed[:SIV_TAG_SIZE], sealed[SIV_TAG_SIZE:]
        plaintext = self.aes_ctr(ctr_part, self._siv_counter(tag), ciphertext)
        expected = self._s2v(mac_part, associated_data, plaintext)
        if not constant_time.bytes_eq(expected, tag):
            raise InvalidTag()
        return plaintext

    # ------------------------------------------------------------------
    # Key wrapping and derivation
    # ------------------------------------------------------------------

    def wrap_key(self, kek: BytesLike, key: BytesLike) -> bytes:
        return aes_key_wrap(kek, bytes(key))

    def unwrap_key(self, kek: BytesLike, wrapped: bytes) -> bytearray:
        """Unwrap a key into a wipeable buffer.

        Raises:
            cryptography.hazmat.primitives.keywrap.InvalidUnwrap: on
            integrity failure (usually a wrong password).
        """
        return bytearray(aes_key_unwrap(kek, wrapped))

    def scrypt(
        self,
        password: bytes,
        salt: bytes,
        cost_param: int,
        block_size: int,
        parallelism: int = 1,
    ) -> bytearray:
        kdf = Scrypt(
            salt=salt,
            length=KEY_LENGTH,
            n=cost_param,
            r=block_size,
            p=parallelism,
        )
        return bytearray(kdf.derive(password))

    async def derive_kek(
        self,
        password: str,
        salt: bytes,
        cost_param: int,
        block_size: int,
    ) -> bytearray:
        """Derive the 32-byte KEK with scrypt in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            functools.partial(
                self.scrypt,
                password.encode("utf-8"),
                salt,
                cost_param,
                block_size,
            ),
        )
