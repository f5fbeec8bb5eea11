"""padvault - Bank archive codec.

A bank container is a ZIP archive (DEFLATE) holding:
- bank.json       - the manifest: bank record with archive-relative asset paths
- metadata.json   - optional access-control metadata (BankMetadata)
- audio/{padId}.audio, images/{padId}.image - raw pad assets

parse() validates only the manifest shape (name: str, pads: list). Pad
records are validated one by one during import so a bad pad is dropped
instead of failing the container. An unreadable metadata.json is treated as
absent.
"""

from __future__ import annotations

import io
import json
import logging
import zipfile
import zlib
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from padvault.config import ARCHIVE_COMPRESSION_LEVEL, MANIFEST_ENTRY, METADATA_ENTRY
from padvault.errors import ArchiveFormatError
from padvault.schemas import ArchiveManifest, BankMetadata

logger = logging.getLogger(__name__)

ZIP_MAGIC = b"PK\x03\x04"
# An archive with zero entries is just the end-of-central-directory record
ZIP_EMPTY_MAGIC = b"PK\x05\x06"


def looks_like_archive(data: bytes) -> bool:
    """Fast check for an unencrypted container (ZIP local header magic)."""
    head = bytes(data[:4])
    return head in (ZIP_MAGIC, ZIP_EMPTY_MAGIC)


@dataclass
class ArchiveContents:
    """A parsed container. Asset bytes are read lazily via read_asset()."""

    manifest: ArchiveManifest
    metadata: BankMetadata | None
    entries: frozenset[str] = field(default_factory=frozenset)
    _zip: zipfile.ZipFile | None = field(default=None, repr=False)

    def read_asset(self, path: str | None) -> bytes | None:
        """Read an asset entry by archive-relative path.

        Returns:
            The entry bytes, or None when the path is empty, missing, or the
            entry cannot be read.
        """
        if not path or self._zip is None or path not in self.entries:
            return None
        try:
            return self._zip.read(path)
        except (
            zipfile.BadZipFile,
            zlib.error,
            KeyError,
            OSError,
            EOFError,
            NotImplementedError,
            RuntimeError,
        ) as e:
            logger.warning("Failed to read archive entry %s: %s", path, e)
            return None

    def close(self) -> None:
        if self._zip is not None:
            self._zip.close()
            self._zip = None

    def __enter__(self) -> ArchiveContents:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def _manifest_document(manifest: ArchiveManifest | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(manifest, ArchiveManifest):
        return manifest.to_document()
    return dict(manifest)


def assemble(
    manifest: ArchiveManifest | Mapping[str, Any],
    metadata: BankMetadata | None,
    assets: Mapping[str, bytes],
    compression_level: int = ARCHIVE_COMPRESSION_LEVEL,
) -> bytes:
    """Build a container.

    Args:
        manifest: Manifest model or an already camelCased document.
        metadata: Access-control metadata; omitted from the archive if None.
        assets: Archive-relative path -> bytes for every pad asset.
        compression_level: DEFLATE level 0-9.

    Returns:
        ZIP bytes.
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(
        buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=compression_level
    ) as bundle:
        bundle.writestr(MANIFEST_ENTRY, json.dumps(_manifest_document(manifest), indent=2))
        if metadata is not None:
            document = metadata.model_dump(by_alias=True, mode="json", exclude_none=True)
            bundle.writestr(METADATA_ENTRY, json.dumps(document, indent=2))
        for path, data in assets.items():
            bundle.writestr(path, data)

    logger.debug(
        "Assembled container with %d assets (metadata=%s)", len(assets), metadata is not None
    )
    return buffer.getvalue()


def _read_metadata(bundle: zipfile.ZipFile, names: frozenset[str]) -> BankMetadata | None:
    if METADATA_ENTRY not in names:
        return None
    try:
        raw = json.loads(bundle.read(METADATA_ENTRY))
        return BankMetadata.model_validate(raw)
    except (ValueError, ValidationError, zipfile.BadZipFile, OSError) as e:
        # json.JSONDecodeError and UnicodeDecodeError are ValueErrors
        logger.warning("Ignoring unreadable %s: %s", METADATA_ENTRY, e)
        return None


def parse(data: bytes) -> ArchiveContents:
    """Open a decrypted container and validate its manifest.

    Args:
        data: ZIP bytes.

    Returns:
        ArchiveContents; close it (or use it as a context manager) when done.

    Raises:
        ArchiveFormatError: Not a ZIP, bank.json missing or not JSON, or the
            manifest lacks a string ``name`` / list ``pads``.
    """
    try:
        bundle = zipfile.ZipFile(io.BytesIO(data), "r")
    except zipfile.BadZipFile as e:
        raise ArchiveFormatError("not a bank archive") from e

    try:
        names = frozenset(bundle.namelist())
        if MANIFEST_ENTRY not in names:
            raise ArchiveFormatError(f"missing {MANIFEST_ENTRY}")

        try:
            raw = json.loads(bundle.read(MANIFEST_ENTRY))
        except (ValueError, zipfile.BadZipFile, OSError) as e:
            raise ArchiveFormatError(f"{MANIFEST_ENTRY} is not valid JSON") from e

        if not isinstance(raw, dict):
            raise ArchiveFormatError("bank data must be an object")
        try:
            manifest = ArchiveManifest.model_validate(raw)
        except ValidationError as e:
            raise ArchiveFormatError("missing bank name or pads") from e

        metadata = _read_metadata(bundle, names)
    except ArchiveFormatError:
        bundle.close()
        raise

    return ArchiveContents(manifest=manifest, metadata=metadata, entries=names, _zip=bundle)


__all__ = ["ArchiveContents", "assemble", "parse", "looks_like_archive"]
