"""Shared fixtures for the vault test-suite."""
import pytest
import pytest_asyncio

from cryptomator_vault import LocalStorageBackend, Vault, VaultOptions
from cryptomator_vault.crypto import CryptoProvider, KeyManager, MasterKeySet


# Low scrypt cost keeps key derivation fast in tests.
TEST_COST = 1024
TEST_BLOCK = 8
PASSWORD = "p@ss"


def fast_options(**kwargs) -> VaultOptions:
    kwargs.setdefault("scrypt_cost_param", TEST_COST)
    kwargs.setdefault("scrypt_block_size", TEST_BLOCK)
    return VaultOptions(**kwargs)


@pytest.fixture
def options():
    """Vault creation options with a low scrypt cost."""
    return fast_options()


@pytest.fixture
def crypto():
    """A fresh crypto provider."""
    return CryptoProvider()


@pytest.fixture
def key_manager(crypto):
    return KeyManager(crypto)


@pytest.fixture
def keys(crypto):
    """Random master keys, destroyed after the test."""
    mk = MasterKeySet.generate(crypto)
    yield mk
    mk.destroy()


@pytest.fixture
def backend():
    return LocalStorageBackend()


@pytest_asyncio.fixture
async def vault(backend, tmp_path):
    """A new vault in a temporary directory, closed after the test."""
    v = await Vault.create(backend, str(tmp_path), PASSWORD, fast_options())
    yield v
    v.close()


@pytest_asyncio.fixture
async def root(vault):
    return await vault.get_root_dir()
