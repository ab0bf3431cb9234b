"""Tests for the piece output sink."""

from __future__ import annotations

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.storage]

from minibt.storage.sink import PieceSink
from minibt.utils.exceptions import StorageError


class TestPieceSink:
    """Test cases for positioned writes."""

    @pytest.mark.asyncio
    async def test_creates_file(self, tmp_path):
        """Test the first write creates the file."""
        path = tmp_path / "out.bin"
        await PieceSink(path).write(0, b"hello")
        assert path.read_bytes() == b"hello"

    @pytest.mark.asyncio
    async def test_out_of_order_writes(self, tmp_path):
        """Test pieces written out of order land at their offsets."""
        path = tmp_path / "out.bin"
        sink = PieceSink(path)
        await sink.write(4, b"5678")
        await sink.write(0, b"1234")
        await sink.write(8, b"9")
        assert path.read_bytes() == b"123456789"

    @pytest.mark.asyncio
    async def test_preserves_existing_content(self, tmp_path):
        """Test a write does not truncate the rest of the file."""
        path = tmp_path / "out.bin"
        path.write_bytes(b"aaaaaaaa")
        await PieceSink(path).write(2, b"bb")
        assert path.read_bytes() == b"aabbaaaa"

    @pytest.mark.asyncio
    async def test_truncate(self, tmp_path):
        """Test a truncating sink drops existing content on its first write."""
        path = tmp_path / "out.bin"
        path.write_bytes(b"old content")
        sink = PieceSink(path, truncate=True)
        await sink.write(0, b"new")
        await sink.write(3, b"er")
        assert path.read_bytes() == b"newer"

    @pytest.mark.asyncio
    async def test_creates_parent_directories(self, tmp_path):
        """Test missing parent directories are created."""
        path = tmp_path / "nested" / "dir" / "out.bin"
        await PieceSink(path).write(0, b"x")
        assert path.read_bytes() == b"x"

    @pytest.mark.asyncio
    async def test_negative_offset(self, tmp_path):
        """Test a negative offset is rejected."""
        with pytest.raises(StorageError):
            await PieceSink(tmp_path / "out.bin").write(-1, b"x")

    @pytest.mark.asyncio
    async def test_write_failure(self, tmp_path):
        """Test an unwritable path raises StorageError."""
        with pytest.raises(StorageError, match="Failed to write"):
            await PieceSink(tmp_path).write(0, b"x")
