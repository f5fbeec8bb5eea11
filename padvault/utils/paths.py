"""padvault - Canonical path and name helpers.

Does NOT create directories; atomic_write_bytes does that on publish.
"""

import re
from pathlib import Path

from padvault.config import (
    AUDIO_EXTENSION,
    AUDIO_FOLDER,
    BANK_FILE_EXTENSION,
    EXPORTS_DIR,
    IMAGE_EXTENSION,
    IMAGE_FOLDER,
)
from padvault.schemas import AssetKind

_UNSAFE_NAME_CHARS = re.compile(r"[^a-z0-9]", re.IGNORECASE)


def asset_entry_path(kind: AssetKind | str, pad_id: str) -> str:
    """Archive-relative path of a pad asset.

    Returns:
        "audio/{pad_id}.audio" or "images/{pad_id}.image".
    """
    if AssetKind(kind) == AssetKind.AUDIO:
        return f"{AUDIO_FOLDER}/{pad_id}{AUDIO_EXTENSION}"
    return f"{IMAGE_FOLDER}/{pad_id}{IMAGE_EXTENSION}"


def export_filename(bank_name: str) -> str:
    """File name for an exported bank: non-alphanumerics become underscores.

    Example:
        "Drums #1" -> "Drums__1.bank"
    """
    return f"{_UNSAFE_NAME_CHARS.sub('_', bank_name)}{BANK_FILE_EXTENSION}"


def export_file_path(filename: str, directory: str | Path | None = None) -> Path:
    """Path an export file is saved to; defaults to data/exports/."""
    base = Path(directory) if directory is not None else EXPORTS_DIR
    return base / Path(filename).name
