"""
Tests for directory-ID hashing and name encryption.

Tests cover:
- Name encryption round trips and determinism
- Content-path layout for DirIDs
- The shortening threshold boundary
"""
import base64
import re

import pytest

from cryptomator_vault import DecryptionError, DecryptionTarget, LocalStorageBackend
from cryptomator_vault.codec import PathCodec
from cryptomator_vault.crypto import MasterKeySet


@pytest.fixture
def codec(crypto, keys):
    return PathCodec(crypto, keys, "/vault", LocalStorageBackend(), 220)


class TestNames:
    """Tests for encrypt_name() / decrypt_name()."""

    @pytest.mark.parametrize("name", ["a.txt", "ünïcødé ✓", "x" * 300, " spaced name "])
    def test_round_trip(self, codec, name):
        """Test names decrypt back under the same parent."""
        encoded = codec.encrypt_name(name, "parent-id")
        assert codec.decrypt_name(encoded, "parent-id") == name

    def test_deterministic(self, codec):
        """Test the same (name, parent) always encodes identically."""
        assert codec.encrypt_name("a.txt", "p") == codec.encrypt_name("a.txt", "p")

    def test_parent_binding(self, codec):
        """Test the same name differs under another parent and fails to open there."""
        encoded = codec.encrypt_name("a.txt", "p1")
        assert encoded != codec.encrypt_name("a.txt", "p2")
        with pytest.raises(DecryptionError) as exc:
            codec.decrypt_name(encoded, "p2")
        assert exc.value.target is DecryptionTarget.ITEM_NAME

    def test_suffix_is_tolerated(self, codec):
        """Test decrypt_name accepts the .c9r entry name."""
        encoded = codec.encrypt_name("a.txt", "")
        assert codec.decrypt_name(encoded + ".c9r", "") == "a.txt"

    def test_uses_url_safe_alphabet(self, codec):
        """Test encoded names never contain '/' or '+'."""
        for i in range(50):
            encoded = codec.encrypt_name(f"file-{i}", "")
            assert "/" not in encoded and "+" not in encoded

    @pytest.mark.parametrize("garbage", ["not base64!", "AAAA", ""])
    def test_garbage_fails(self, codec, garbage):
        """Test undecodable names raise DecryptionError."""
        with pytest.raises(DecryptionError):
            codec.decrypt_name(garbage, "")

    def test_error_carries_item(self, codec):
        """Test the failing entry is attached to the error."""
        with pytest.raises(DecryptionError) as exc:
            codec.decrypt_name("AAAA", "", item="entry")
        assert exc.value.item == "entry"


class TestDirectories:
    """Tests for DirID hashing."""

    def test_layout(self, codec):
        """Test content paths are <root>/d/<2 chars>/<30 chars> in base32."""
        path = codec.get_dir("")
        match = re.fullmatch(r"/vault/d/([A-Z2-7]{2})/([A-Z2-7]{30})", path)
        assert match is not None

    def test_root_differs_from_others(self, codec):
        """Test distinct DirIDs map to distinct paths."""
        assert codec.get_dir("") != codec.get_dir("b2c3-uuid")
        assert codec.get_dir("x") == codec.get_dir("x")

    def test_depends_on_keys(self, crypto, codec):
        """Test another vault maps the same DirID elsewhere."""
        other = PathCodec(crypto, MasterKeySet.generate(crypto), "/vault",
                          LocalStorageBackend(), 220)
        assert other.get_dir("") != codec.get_dir("")


class TestShortening:
    """Tests for the shortening threshold."""

    def test_boundary(self, crypto, keys):
        """Test a 220-char encoded name stays plain at threshold 220 only."""
        name = "n" * 149  # 16 + 149 bytes -> 220 base64 chars
        plain = PathCodec(crypto, keys, "/v", LocalStorageBackend(), 220)
        location = plain.locate(name, "")
        assert len(location.encoded_name) == 220
        assert not location.shortened
        assert location.entry_name == location.encoded_name + ".c9r"

        tight = PathCodec(crypto, keys, "/v", LocalStorageBackend(), 219)
        assert tight.locate(name, "").shortened

    def test_long_name_is_shortened(self, codec):
        """Test a 224-char encoded name is shortened at threshold 220."""
        location = codec.locate("n" * 150, "")
        assert len(location.encoded_name) == 224
        assert location.shortened
        assert location.entry_name.endswith(".c9s")
        assert location.entry_name == codec.shortened_name(location.encoded_name)
        assert location.contents_file == f"{location.path}/contents.c9r"
        assert location.name_file == f"{location.path}/name.c9s"

    def test_shortened_name_is_sha1(self, crypto, codec):
        """Test the shortened entry is base64url(sha1(encoded)) + .c9s."""
        encoded = codec.encrypt_name("n" * 200, "")
        digest = crypto.sha1(encoded.encode("ascii"))
        assert codec.shortened_name(encoded) == base64.urlsafe_b64encode(digest).decode() + ".c9s"
