"""Tests for the local filesystem storage backend."""
import pytest

from cryptomator_vault import LocalStorageBackend


class TestLocalStorage:
    """Tests for LocalStorageBackend primitives."""

    @pytest.mark.asyncio
    async def test_write_read_list(self, backend, tmp_path):
        """Test written files are listed with size and full path."""
        await backend.write_text(f"{tmp_path}/a.txt", "hello")
        await backend.create_directory(f"{tmp_path}/sub")
        entries = {e.name: e for e in await backend.list(str(tmp_path))}
        assert set(entries) == {"a.txt", "sub"}
        assert entries["a.txt"].size == 5
        assert entries["a.txt"].full_path == f"{tmp_path}/a.txt"
        assert entries["sub"].is_directory
        assert entries["a.txt"].last_modified is not None
        assert await backend.read_text(f"{tmp_path}/a.txt") == "hello"

    @pytest.mark.asyncio
    async def test_overwrite_leaves_no_temp_file(self, backend, tmp_path):
        """Test replacing a file goes through a temporary file that is removed."""
        path = f"{tmp_path}/a.bin"
        await backend.write_bytes(path, b"1")
        await backend.write_bytes(path, b"2")
        assert await backend.read_bytes(path) == b"2"
        assert [e.name for e in await backend.list(str(tmp_path))] == ["a.bin"]

    @pytest.mark.asyncio
    async def test_failed_write_removes_temp_file(self, backend, tmp_path):
        """Test a write whose final replace fails leaves no temporary file."""
        await backend.create_directory(f"{tmp_path}/target")
        with pytest.raises(OSError):
            await backend.write_bytes(f"{tmp_path}/target", b"x")
        assert [e.name for e in await backend.list(str(tmp_path))] == ["target"]

    @pytest.mark.asyncio
    async def test_rename_refuses_existing_target(self, backend, tmp_path):
        """Test rename never overwrites."""
        await backend.write_bytes(f"{tmp_path}/a", b"a")
        await backend.write_bytes(f"{tmp_path}/b", b"b")
        with pytest.raises(FileExistsError):
            await backend.rename(f"{tmp_path}/a", f"{tmp_path}/b")
        await backend.rename(f"{tmp_path}/a", f"{tmp_path}/c")
        assert not await backend.exists(f"{tmp_path}/a")
        assert await backend.exists(f"{tmp_path}/c")

    @pytest.mark.asyncio
    async def test_recursive_create_and_remove(self, backend, tmp_path):
        """Test nested directories are created and removed as a tree."""
        await backend.create_directory(f"{tmp_path}/x/y/z", recursive=True)
        await backend.create_directory(f"{tmp_path}/x/y/z", recursive=True)
        await backend.write_bytes(f"{tmp_path}/x/y/z/f", b"f")
        await backend.remove_directory_recursive(f"{tmp_path}/x")
        assert not await backend.exists(f"{tmp_path}/x")

    @pytest.mark.asyncio
    async def test_missing_file_raises(self, backend, tmp_path):
        """Test backend errors propagate as OSError subclasses."""
        with pytest.raises(FileNotFoundError):
            await backend.read_bytes(f"{tmp_path}/missing")
        with pytest.raises(FileNotFoundError):
            await backend.remove_file(f"{tmp_path}/missing")

    def test_is_a_storage_backend(self):
        """Test the local backend implements the abstract interface."""
        from cryptomator_vault import StorageBackend
        assert isinstance(LocalStorageBackend(), StorageBackend)
