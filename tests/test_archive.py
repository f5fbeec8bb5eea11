"""Tests for padvault.archive module."""

import io
import json
import zipfile

import pytest

from padvault import archive
from padvault.errors import ArchiveFormatError
from padvault.schemas import ArchiveManifest, BankMetadata


def _zip(entries: dict[str, bytes | str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as bundle:
        for name, data in entries.items():
            bundle.writestr(name, data)
    return buffer.getvalue()


class TestLooksLikeArchive:
    """Tests for looks_like_archive function."""

    def test_zip_bytes(self):
        assert archive.looks_like_archive(_zip({"bank.json": "{}"}))

    def test_empty_zip(self):
        assert archive.looks_like_archive(_zip({}))

    def test_other_bytes(self):
        assert not archive.looks_like_archive(b"PVBX\x01")
        assert not archive.looks_like_archive(b"")


class TestAssembleAndParse:
    """Tests for building and reading containers."""

    def test_manifest_metadata_and_assets(self):
        manifest = ArchiveManifest(
            name="Drums",
            pads=[{"id": "p1", "name": "Kick", "audioUrl": "audio/p1.audio"}],
            id="bank-1",
            default_color="#ff0000",
        )
        metadata = BankMetadata(password=True, transferable=False, bank_id="reg-1")
        data = archive.assemble(manifest, metadata, {"audio/p1.audio": b"RIFFdata"})

        with archive.parse(data) as contents:
            assert contents.manifest.name == "Drums"
            assert contents.manifest.id == "bank-1"
            assert contents.manifest.default_color == "#ff0000"
            assert contents.metadata.password is True
            assert contents.metadata.transferable is False
            assert contents.metadata.bank_id == "reg-1"
            assert contents.read_asset("audio/p1.audio") == b"RIFFdata"

    def test_wire_format_is_camel_case(self):
        manifest = ArchiveManifest(name="Drums", pads=[], default_color="#ff0000")
        metadata = BankMetadata(bank_id="reg-1")
        data = archive.assemble(manifest, metadata, {})

        with zipfile.ZipFile(io.BytesIO(data)) as bundle:
            bank_doc = json.loads(bundle.read("bank.json"))
            meta_doc = json.loads(bundle.read("metadata.json"))
            assert bundle.getinfo("bank.json").compress_type == zipfile.ZIP_DEFLATED
        assert bank_doc["defaultColor"] == "#ff0000"
        assert meta_doc["bankId"] == "reg-1"

    def test_metadata_omitted_when_none(self):
        data = archive.assemble({"name": "Drums", "pads": []}, None, {})
        with archive.parse(data) as contents:
            assert contents.metadata is None
            assert "metadata.json" not in contents.entries

    def test_read_missing_asset_returns_none(self):
        data = archive.assemble({"name": "Drums", "pads": []}, None, {})
        with archive.parse(data) as contents:
            assert contents.read_asset("audio/nope.audio") is None
            assert contents.read_asset(None) is None

    def test_read_after_close_returns_none(self):
        data = archive.assemble({"name": "Drums", "pads": []}, None, {"a": b"1"})
        contents = archive.parse(data)
        contents.close()
        assert contents.read_asset("a") is None

    def test_corrupt_deflate_entry_returns_none(self):
        data = archive.assemble({"name": "Drums", "pads": []}, None, {"a": b"x" * 1000})
        with zipfile.ZipFile(io.BytesIO(data)) as bundle:
            info = bundle.getinfo("a")
        # Local header is 30 bytes plus name and extra field
        name_len = int.from_bytes(data[info.header_offset + 26 : info.header_offset + 28], "little")
        extra_len = int.from_bytes(data[info.header_offset + 28 : info.header_offset + 30], "little")
        start = info.header_offset + 30 + name_len + extra_len
        corrupted = bytearray(data)
        corrupted[start : start + info.compress_size] = b"\xff" * info.compress_size

        with archive.parse(bytes(corrupted)) as contents:
            assert contents.read_asset("a") is None

    def test_unreadable_metadata_treated_as_absent(self):
        data = _zip(
            {
                "bank.json": json.dumps({"name": "Drums", "pads": []}),
                "metadata.json": "{not json",
            }
        )
        with archive.parse(data) as contents:
            assert contents.metadata is None


class TestParseErrors:
    """Tests for container-level parse failures."""

    def test_not_a_zip(self):
        with pytest.raises(ArchiveFormatError):
            archive.parse(b"definitely not a zip file")

    def test_missing_manifest(self):
        with pytest.raises(ArchiveFormatError, match="bank.json"):
            archive.parse(_zip({"audio/x.audio": b"x"}))

    def test_manifest_not_json(self):
        with pytest.raises(ArchiveFormatError, match="not valid JSON"):
            archive.parse(_zip({"bank.json": "{oops"}))

    def test_manifest_not_object(self):
        with pytest.raises(ArchiveFormatError):
            archive.parse(_zip({"bank.json": "[1, 2]"}))

    @pytest.mark.parametrize(
        "document",
        [
            {"pads": []},
            {"name": "Drums"},
            {"name": 42, "pads": []},
            {"name": "Drums", "pads": "nope"},
        ],
    )
    def test_manifest_missing_name_or_pads(self, document):
        with pytest.raises(ArchiveFormatError):
            archive.parse(_zip({"bank.json": json.dumps(document)}))

    def test_error_code(self):
        with pytest.raises(ArchiveFormatError) as exc_info:
            archive.parse(b"")
        assert exc_info.value.error_code == "ARCHIVE_FORMAT"
