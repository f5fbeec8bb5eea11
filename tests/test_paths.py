"""Tests for padvault.utils.paths module."""

from pathlib import Path

import pytest

from padvault.config import EXPORTS_DIR
from padvault.schemas import AssetKind
from padvault.utils.paths import asset_entry_path, export_file_path, export_filename


class TestAssetEntryPath:
    """Tests for archive-relative asset paths."""

    def test_audio_path(self):
        assert asset_entry_path(AssetKind.AUDIO, "p1") == "audio/p1.audio"

    def test_image_path(self):
        assert asset_entry_path("image", "p1") == "images/p1.image"

    def test_unknown_kind_raises(self):
        with pytest.raises(ValueError):
            asset_entry_path("video", "p1")


class TestExportFilename:
    """Tests for export_filename function."""

    def test_replaces_unsafe_characters(self):
        assert export_filename("Drums #1") == "Drums__1.bank"

    def test_keeps_alphanumerics_and_case(self):
        assert export_filename("MyBank2024") == "MyBank2024.bank"

    def test_non_ascii_replaced(self):
        assert export_filename("Café/Ü") == "Caf___.bank"


class TestExportFilePath:
    """Tests for export_file_path function."""

    def test_defaults_to_exports_dir(self):
        assert export_file_path("a.bank") == EXPORTS_DIR / "a.bank"

    def test_custom_directory(self, tmp_path):
        assert export_file_path("a.bank", tmp_path) == tmp_path / "a.bank"

    def test_strips_directory_components(self, tmp_path):
        path = export_file_path("../../etc/a.bank", tmp_path)
        assert path == tmp_path / "a.bank"
        assert path.parent == Path(tmp_path)
