"""
Tests for master key handling and the vault configuration token.

Tests cover:
- Creating and re-opening key material
- Wrong passwords, tampered tokens and version MACs
- Malformed masterkey records and tokens
- Key destruction
"""
import base64

import jwt
import orjson
import pytest

from cryptomator_vault import (
    DecryptionError,
    DecryptionTarget,
    InvalidSignatureError,
    InvalidVaultError,
)
from cryptomator_vault.crypto import MasterKeySet, MasterkeyRecord, VaultConfig


class TestMasterKeySet:
    """Tests for the in-memory key set."""

    def test_siv_and_signing_key_order(self, keys):
        """Test SIV key is mac||enc and the signing key is enc||mac."""
        assert keys.siv_key == keys.mac_key + keys.enc_key
        assert keys.signing_key() == keys.enc_key + keys.mac_key

    def test_destroy_zeroes_keys(self, crypto):
        """Test destroy() wipes every buffer."""
        mk = MasterKeySet.generate(crypto)
        assert not mk.destroyed
        mk.destroy()
        assert mk.destroyed
        assert not any(mk.siv_key)

    def test_rejects_short_keys(self):
        """Test keys must be 32 bytes."""
        with pytest.raises(ValueError):
            MasterKeySet(enc_key=bytearray(16), mac_key=bytearray(32))

    def test_repr_hides_keys(self, keys):
        """Test the repr never includes key bytes."""
        assert "enc_key" not in repr(keys)


class TestCreateAndOpen:
    """Tests for KeyManager.create() and KeyManager.open()."""

    @pytest.mark.asyncio
    async def test_round_trip(self, key_manager, options):
        """Test keys created for a password open with that password."""
        keys, config, record, token = await key_manager.create("p@ss", options)
        opened, opened_config = await key_manager.open(
            "p@ss", record.to_json(), token
        )
        assert opened.enc_key == keys.enc_key
        assert opened.mac_key == keys.mac_key
        assert opened_config == config
        assert opened_config.format == 8
        assert opened_config.cipher_combo == "SIV_CTRMAC"

    @pytest.mark.asyncio
    async def test_record_layout(self, key_manager, options):
        """Test the persisted record uses the Cryptomator field names."""
        _, _, record, _ = await key_manager.create("p@ss", options)
        data = orjson.loads(record.to_json())
        assert data["version"] == 999
        assert data["scryptCostParam"] == options.scrypt_cost_param
        assert data["scryptBlockSize"] == options.scrypt_block_size
        assert len(base64.b64decode(data["scryptSalt"])) == 8
        assert len(base64.b64decode(data["primaryMasterKey"])) == 40
        assert len(base64.b64decode(data["hmacMasterKey"])) == 40
        assert "versionMac" in data

    @pytest.mark.asyncio
    async def test_token_headers_and_claims(self, key_manager, options):
        """Test the token names the masterkey file and carries the config."""
        keys, config, _, token = await key_manager.create("p@ss", options)
        header = jwt.get_unverified_header(token)
        assert header["kid"] == "masterkeyfile:masterkey.cryptomator"
        assert header["typ"] == "JWT"
        assert header["alg"] == "HS256"
        claims = jwt.decode(token, bytes(keys.enc_key + keys.mac_key), algorithms=["HS256"])
        assert claims["format"] == 8
        assert claims["shorteningThreshold"] == 220
        assert claims["cipherCombo"] == "SIV_CTRMAC"
        assert claims["jti"] == config.jti
        assert key_manager.masterkey_filename(token) == "masterkey.cryptomator"

    @pytest.mark.asyncio
    async def test_wrong_password(self, key_manager, options):
        """Test a wrong password raises DecryptionError on the vault."""
        _, _, record, token = await key_manager.create("p@ss", options)
        with pytest.raises(DecryptionError) as exc:
            await key_manager.open("wrong", record.to_json(), token)
        assert exc.value.target is DecryptionTarget.VAULT

    @pytest.mark.asyncio
    async def test_second_key_unwrap_failure_wipes_first_key(
        self, key_manager, options, monkeypatch
    ):
        """Test the already unwrapped key is zeroed when the other one fails."""
        _, _, record, token = await key_manager.create("p@ss", options)
        _, _, other, _ = await key_manager.create("other", options)
        broken = record.model_copy(update={"hmac_master_key": other.hmac_master_key})

        unwrapped = []
        unwrap = key_manager._crypto.unwrap_key

        def recording_unwrap(kek, wrapped):
            key = unwrap(kek, wrapped)
            unwrapped.append(key)
            return key

        monkeypatch.setattr(key_manager._crypto, "unwrap_key", recording_unwrap)
        with pytest.raises(DecryptionError) as exc:
            await key_manager.open("p@ss", broken.to_json(), token)
        assert exc.value.target is DecryptionTarget.VAULT
        assert len(unwrapped) == 1
        assert unwrapped[0] == bytearray(32)

    @pytest.mark.asyncio
    async def test_tampered_token(self, key_manager, options):
        """Test a token signed with other keys raises InvalidSignatureError."""
        _, _, record, _ = await key_manager.create("p@ss", options)
        other, config, _, foreign = await key_manager.create("p@ss", options)
        with pytest.raises(InvalidSignatureError) as exc:
            await key_manager.open("p@ss", record.to_json(), foreign)
        assert exc.value.target is DecryptionTarget.VAULT

    @pytest.mark.asyncio
    async def test_modified_claims(self, key_manager, options):
        """Test changing the payload invalidates the signature."""
        _, _, record, token = await key_manager.create("p@ss", options)
        head, _, sig = token.split(".")
        payload = base64.urlsafe_b64encode(
            orjson.dumps({"format": 8, "shorteningThreshold": 10,
                          "jti": "x", "cipherCombo": "SIV_CTRMAC"})
        ).decode().rstrip("=")
        with pytest.raises(InvalidSignatureError):
            await key_manager.open("p@ss", record.to_json(), f"{head}.{payload}.{sig}")

    @pytest.mark.asyncio
    async def test_version_mac_mismatch(self, key_manager, options):
        """Test a record whose versionMac does not verify is rejected."""
        _, _, record, token = await key_manager.create("p@ss", options)
        tampered = record.model_copy(
            update={"version_mac": base64.b64encode(b"\x00" * 32).decode()}
        )
        with pytest.raises(InvalidSignatureError):
            await key_manager.open("p@ss", tampered.to_json(), token)

    @pytest.mark.asyncio
    async def test_change_version_breaks_mac(self, key_manager, options):
        """Test bumping the record version without re-signing is rejected."""
        _, _, record, token = await key_manager.create("p@ss", options)
        tampered = record.model_copy(update={"version": 1000})
        with pytest.raises(InvalidSignatureError):
            await key_manager.open("p@ss", tampered.to_json(), token)

    @pytest.mark.asyncio
    async def test_rewrap_with_new_password(self, key_manager, options):
        """Test wrapping existing keys under a new password."""
        keys, _, _, token = await key_manager.create("p@ss", options)
        record = await key_manager.wrap(keys, "new", 1024, 8)
        opened, _ = await key_manager.open("new", record.to_json(), token)
        assert opened.enc_key == keys.enc_key


class TestMalformedInput:
    """Tests for malformed vault files."""

    def test_record_not_json(self):
        """Test garbage raises InvalidVaultError."""
        with pytest.raises(InvalidVaultError):
            MasterkeyRecord.from_json(b"not json")

    def test_record_missing_fields(self):
        """Test a record without keys raises InvalidVaultError."""
        with pytest.raises(InvalidVaultError):
            MasterkeyRecord.from_json(b'{"version": 999}')

    @pytest.mark.asyncio
    async def test_record_bad_base64(self, key_manager, options):
        """Test invalid base64 in the record raises InvalidVaultError."""
        _, _, record, token = await key_manager.create("p@ss", options)
        broken = record.model_copy(update={"primary_master_key": "!!!"})
        with pytest.raises(InvalidVaultError):
            await key_manager.open("p@ss", broken.to_json(), token)

    def test_token_not_jwt(self, key_manager):
        """Test a non-JWT config raises InvalidVaultError."""
        with pytest.raises(InvalidVaultError):
            key_manager.masterkey_filename("garbage")

    def test_unsupported_kid(self, key_manager, keys):
        """Test a key id that is not a masterkey file is rejected."""
        token = jwt.encode({"format": 8}, b"k" * 64, algorithm="HS256",
                           headers={"kid": "hub+https://example.com"})
        with pytest.raises(InvalidVaultError):
            key_manager.masterkey_filename(token)

    def test_unsupported_format(self, key_manager, keys):
        """Test a validly signed token with another format is rejected."""
        token = jwt.encode(
            {"format": 7, "shorteningThreshold": 220, "jti": "x",
             "cipherCombo": "SIV_CTRMAC"},
            bytes(keys.signing_key()),
            algorithm="HS256",
        )
        with pytest.raises(InvalidVaultError):
            key_manager.verify_config(keys, token)

    def test_unsupported_cipher_combo(self):
        """Test only SIV_CTRMAC is accepted."""
        with pytest.raises(ValueError):
            VaultConfig(cipher_combo="SIV_GCM")
