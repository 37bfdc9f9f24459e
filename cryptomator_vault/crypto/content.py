"""
Content Cipher — Authenticated, chunked encryption of file bodies.

Format: [header 88B][chunk 0][chunk 1]...

- header: [nonce 16B][AES-CTR(enc_key, nonce)(0xFF*8 | content_key 32B)][hmac 32B]
- chunk i: [nonce 16B][AES-CTR(content_key, nonce)(plaintext <= 32 KiB)][hmac 32B]

The header HMAC covers ``nonce || encrypted payload``; every chunk HMAC covers
``header_nonce || uint64_be(i) || chunk_nonce || ciphertext`` so chunks cannot
be reordered or spliced between files.

Security Note:
    Never log plaintext, ciphertext or content keys.
    Authentication is always checked before anything is decrypted.
"""
import struct
import logging
from collections.abc import Iterator
from typing import NamedTuple

from ..exceptions import DecryptionTarget, InvalidSignatureError
from .keys import MasterKeySet
from .provider import CryptoProvider

logger = logging.getLogger("cryptomator.vault")

NONCE_SIZE = 16
MAC_SIZE = 32
CONTENT_KEY_SIZE = 32
SENTINEL = b"\xff" * 8

HEADER_PAYLOAD_SIZE = len(SENTINEL) + CONTENT_KEY_SIZE  # 40
HEADER_SIZE = NONCE_SIZE + HEADER_PAYLOAD_SIZE + MAC_SIZE  # 88
CHUNK_SIZE = 32768  # plaintext bytes per chunk
CHUNK_OVERHEAD = NONCE_SIZE + MAC_SIZE  # 48
ENCRYPTED_CHUNK_SIZE = CHUNK_SIZE + CHUNK_OVERHEAD


class FileHeader(NamedTuple):
    nonce: bytes
    content_key: bytes


class ContentCipher:
    """Encrypts and decrypts file contents with the vault master keys."""

    def __init__(self, crypto: CryptoProvider, keys: MasterKeySet):
        self._crypto = crypto
        self._keys = keys

    def _fail(self, detail: str) -> InvalidSignatureError:
        logger.debug("File authentication failed: %s", detail)
        return InvalidSignatureError(DecryptionTarget.FILE, detail)

    # ------------------------------------------------------------------
    # Sizes
    # ------------------------------------------------------------------

    @staticmethod
    def chunk_count(ciphertext_size: int) -> int:
        body = max(ciphertext_size - HEADER_SIZE, 0)
        return -(-body // ENCRYPTED_CHUNK_SIZE)

    @staticmethod
    def ciphertext_size(cleartext_size: int) -> int:
        full, rest = divmod(cleartext_size, CHUNK_SIZE)
        size = HEADER_SIZE + full * ENCRYPTED_CHUNK_SIZE
        if rest:
            size += rest + CHUNK_OVERHEAD
        return size

    @staticmethod
    def cleartext_size(ciphertext_size: int) -> int:
        """Plaintext length of a well-formed ciphertext of the given length.

        Raises:
            ValueError: If no valid ciphertext can have that length.
        """
        body = ciphertext_size - HEADER_SIZE
        if body < 0:
            raise ValueError(f"Ciphertext too short: {ciphertext_size} bytes")
        full, rest = divmod(body, ENCRYPTED_CHUNK_SIZE)
        if rest and rest < CHUNK_OVERHEAD:
            raise ValueError(f"Invalid ciphertext size: {ciphertext_size} bytes")
        return full * CHUNK_SIZE + (rest - CHUNK_OVERHEAD if rest else 0)

    # ------------------------------------------------------------------
    # Header
    # ------------------------------------------------------------------

    def encrypt_header(self, header: FileHeader) -> bytes:
        payload = self._crypto.aes_ctr(
            self._keys.enc_key, header.nonce, SENTINEL + header.content_key
        )
        signed = header.nonce + payload
        return signed + self._crypto.hmac_sha256(self._keys.mac_key, signed)

    def decrypt_header(self, data: bytes) -> FileHeader:
        """Verify and decrypt the first ``HEADER_SIZE`` bytes of ``data``.

        Raises:
            InvalidSignatureError: Target FILE, truncated or forged header.
        """
        if len(data) < HEADER_SIZE:
            raise self._fail("truncated header")
        signed = data[:NONCE_SIZE + HEADER_PAYLOAD_SIZE]
        mac = data[NONCE_SIZE + HEADER_PAYLOAD_SIZE:HEADER_SIZE]
        if not self._crypto.hmac_verify(self._keys.mac_key, signed, mac):
            raise self._fail("header MAC mismatch")
        nonce = bytes(signed[:NONCE_SIZE])
        payload = self._crypto.aes_ctr(
            self._keys.enc_key, nonce, signed[NONCE_SIZE:]
        )
        if payload[:len(SENTINEL)] != SENTINEL:
            raise self._fail("header sentinel mismatch")
        return FileHeader(nonce=nonce, content_key=payload[len(SENTINEL):])

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def _chunk_mac_input(
        self, header: FileHeader, index: int, nonce: bytes, ciphertext: bytes
    ) -> bytes:
        return header.nonce + struct.pack(">Q", index) + nonce + ciphertext

    def encrypt_chunk(self, header: FileHeader, index: int, plaintext: bytes) -> bytes:
        nonce = self._crypto.random_bytes(NONCE_SIZE)
        ciphertext = self._crypto.aes_ctr(header.content_key, nonce, plaintext)
        mac = self._crypto.hmac_sha256(
            self._keys.mac_key, self._chunk_mac_input(header, index, nonce, ciphertext)
        )
        return nonce + ciphertext + mac

    def decrypt_chunk(self, header: FileHeader, index: int, chunk: bytes) -> bytes:
        """Verify and decrypt chunk number ``index``.

        Raises:
            InvalidSignatureError: Target FILE, truncated or forged chunk.
        """
        if len(chunk) < CHUNK_OVERHEAD:
            raise self._fail(f"truncated chunk {index}")
        nonce = bytes(chunk[:NONCE_SIZE])
        ciphertext = bytes(chunk[NONCE_SIZE:-MAC_SIZE])
        mac = chunk[-MAC_SIZE:]
        if not self._crypto.hmac_verify(
            self._keys.mac_key,
            self._chunk_mac_input(header, index, nonce, ciphertext),
            mac,
        ):
            raise self._fail(f"chunk {index} MAC mismatch")
        return self._crypto.aes_ctr(header.content_key, nonce, ciphertext)

    # ------------------------------------------------------------------
    # Whole files
    # ------------------------------------------------------------------

    def encrypt(self, plaintext: bytes) -> bytes:
        """Encrypt a file body under a fresh content key."""
        header = FileHeader(
            nonce=self._crypto.random_bytes(NONCE_SIZE),
            content_key=self._crypto.random_bytes(CONTENT_KEY_SIZE),
        )
        parts = [self.encrypt_header(header)]
        view = memoryview(plaintext)
        for index, offset in enumerate(range(0, len(view), CHUNK_SIZE)):
            parts.append(
                self.encrypt_chunk(header, index, bytes(view[offset:offset + CHUNK_SIZE]))
            )
        return b"".join(parts)

    def iter_decrypt(self, data: bytes) -> Iterator[bytes]:
        """Yield verified plaintext chunks in order.

        Iteration stops with ``InvalidSignatureError`` at the first chunk that
        fails to verify; nothing from that chunk is yielded.
        """
        header = self.decrypt_header(data)
        view = memoryview(data)
        for index in range(self.chunk_count(len(data))):
            start = HEADER_SIZE + index * ENCRYPTED_CHUNK_SIZE
            yield self.decrypt_chunk(
                header, index, view[start:start + ENCRYPTED_CHUNK_SIZE]
            )

    def decrypt(self, data: bytes) -> bytes:
        return b"".join(self.iter_decrypt(data))
