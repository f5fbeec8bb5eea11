"""padvault - Configuration constants.

No external config libraries. All paths are relative to the repository root
by default; PADVAULT_DATA_DIR moves the data directory.
"""

import os
from pathlib import Path

# Repository root (parent of padvault/)
REPO_ROOT = Path(__file__).parent.parent.resolve()


def _get_env_int(name: str, default: int) -> int:
    """Get a positive integer from the environment or use the default.

    Args:
        name: Environment variable name.
        default: Value used when the variable is unset or invalid.

    Returns:
        The configured positive integer.
    """
    env_val = os.environ.get(name)
    if env_val:
        try:
            value = int(env_val)
            if value > 0:
                return value
        except ValueError:
            pass
    return default


def _get_data_dir() -> Path:
    env_val = os.environ.get("PADVAULT_DATA_DIR")
    if env_val:
        return Path(env_val).expanduser().resolve()
    return REPO_ROOT / "data"


# Data directories
DATA_DIR = _get_data_dir()
EXPORTS_DIR = DATA_DIR / "exports"

# Database path (bank records, blobs, quota ledger, key cache)
DB_PATH = DATA_DIR / "padvault.db"

# --- Blob storage ---

# Ceiling for cumulative image-blob bytes
MAX_IMAGE_QUOTA_BYTES = 50 * 1024 * 1024

# --- Archive layout ---

MANIFEST_ENTRY = "bank.json"
METADATA_ENTRY = "metadata.json"
AUDIO_FOLDER = "audio"
IMAGE_FOLDER = "images"
AUDIO_EXTENSION = ".audio"
IMAGE_EXTENSION = ".image"
BANK_FILE_EXTENSION = ".bank"

# DEFLATE level used when assembling containers
ARCHIVE_COMPRESSION_LEVEL = 9

# --- Import ---

# Pads extracted concurrently and committed with one store_batch call
IMPORT_BATCH_SIZE = 10

# Adaptive timeout: base + one step per started 100 MiB, capped
IMPORT_TIMEOUT_BASE_MS = 60_000
IMPORT_TIMEOUT_PER_100MB_MS = 60_000
IMPORT_TIMEOUT_MAX_MS = 10 * 60_000
IMPORT_HEADER_CHECK_TIMEOUT_MS = 10_000

# --- Export / trim ---

# Trim-in applies only past this start offset
TRIM_START_TOLERANCE_MS = 50
# Trim-out applies only when more than this much tail would be dropped
TRIM_END_TOLERANCE_MS = 200
# Bitrate for lossy re-encode of trimmed audio
LOSSY_BITRATE_KBPS = 128

# ffmpeg subprocess timeout in seconds
FFMPEG_TIMEOUT_SECONDS = _get_env_int("PADVAULT_FFMPEG_TIMEOUT_SEC", 120)

# --- Encryption ---

# Argon2id cost parameters for password-derived container keys
KDF_TIME_COST = _get_env_int("PADVAULT_KDF_TIME_COST", 3)
KDF_MEMORY_KIB = _get_env_int("PADVAULT_KDF_MEMORY_KIB", 64 * 1024)
KDF_PARALLELISM = _get_env_int("PADVAULT_KDF_PARALLELISM", 1)

# Shared password for banks exported with "allow export" disabled and no
# database entry. Importable by anyone, including signed-out users.
SHARED_EXPORT_DISABLED_PASSWORD = "padvault-export-disabled-2024-secure"

# Secret mixed into registry-derived bank passwords
BANK_KEY_SECRET = os.environ.get("PADVAULT_BANK_KEY_SECRET", "padvault-sampler-secret-2024")

# Persisted key / accessible-bank caches stay valid for 24 hours
KEY_CACHE_TTL_SECONDS = 24 * 60 * 60

# --- Bank defaults ---

DEFAULT_BANK_COLOR = "#3b82f6"
PAD_NAME_MAX_LENGTH = 32
