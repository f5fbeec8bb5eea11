"""padvault - Hashing utilities.

sha256 helpers return HEX DIGEST ONLY (no prefix). The bank duplicate
signature is the one place a prefixed token is built, because it is compared
against other origin tokens in the same namespace.
"""

import hashlib
from collections.abc import Sequence

_FNV_OFFSET_BASIS = 0x811C9DC5
_FNV_PRIME = 0x01000193


def sha256_bytes(data: bytes) -> str:
    """Compute SHA256 hash of bytes.

    Args:
        data: Bytes to hash.

    Returns:
        SHA256 hex digest (64 lowercase hex characters, no prefix).
    """
    return hashlib.sha256(data).hexdigest()


def fnv1a_32(text: str) -> str:
    """32-bit FNV-1a over the string's code points.

    Returns:
        8-character lowercase hex string.
    """
    value = _FNV_OFFSET_BASIS
    for char in text:
        value ^= ord(char)
        value = (value * _FNV_PRIME) & 0xFFFFFFFF
    return f"{value:08x}"


def bank_duplicate_signature(name: str | None, pad_names: Sequence[str | None]) -> str | None:
    """Content signature used to spot re-imports of the same bank.

    Built from the trimmed, lowercased bank name and pad names, so a bank
    exported without any id still deduplicates.

    Args:
        name: Bank name.
        pad_names: Pad names in manifest order.

    Returns:
        "sig:{fnv1a}:{pad_count}", or None for an unnamed or empty bank.
    """
    if not isinstance(name, str) or not name or not pad_names:
        return None
    normalized_name = name.strip().lower()
    normalized_pads = "|".join(
        (pad_name if isinstance(pad_name, str) else "").strip().lower() for pad_name in pad_names
    )
    count = len(pad_names)
    digest = fnv1a_32(f"{normalized_name}::{count}::{normalized_pads}")
    return f"sig:{digest}:{count}"
