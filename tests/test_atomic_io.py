"""Tests for padvault.utils.atomic_io module."""

import tempfile
from pathlib import Path
from unittest import mock

import pytest

from padvault.utils.atomic_io import atomic_write_bytes


class TestAtomicWriteBytes:
    """Tests for atomic_write_bytes function."""

    def test_creates_file(self):
        """Should create file with correct content."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "test.bank"
            result = atomic_write_bytes(path, b"bank bytes")

            assert result == path
            assert path.read_bytes() == b"bank bytes"

    def test_creates_parent_directories(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "exports" / "nested" / "file.bank"
            atomic_write_bytes(path, b"nested data")
            assert path.read_bytes() == b"nested data"

    def test_overwrites_existing_file(self):
        """Should atomically replace existing file."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "test.bank"
            path.write_bytes(b"old content")

            atomic_write_bytes(path, b"new content")

            assert path.read_bytes() == b"new content"

    def test_temp_file_cleaned_up_on_success(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "test.bank"
            atomic_write_bytes(path, b"data")
            assert not path.with_suffix(".bank.tmp").exists()

    def test_idempotent_with_existing_temp(self):
        """Should succeed even if an orphaned temp file exists."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "test.bank"
            path.with_suffix(".bank.tmp").write_bytes(b"orphaned temp data")

            atomic_write_bytes(path, b"fresh data")

            assert path.read_bytes() == b"fresh data"

    def test_failed_write_leaves_no_final_file(self):
        """A failing fsync removes the temp file and never publishes."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "test.bank"
            with mock.patch("padvault.utils.atomic_io.os.fsync", side_effect=OSError("disk")):
                with pytest.raises(OSError):
                    atomic_write_bytes(path, b"data")

            assert not path.exists()
            assert not path.with_suffix(".bank.tmp").exists()

    def test_empty_payload(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "empty.bank"
            atomic_write_bytes(path, b"")
            assert path.read_bytes() == b""
