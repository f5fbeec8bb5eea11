"""Shared pytest fixtures for padvault tests.

Cheap Argon2 parameters and a throwaway data directory are configured before
any padvault module is imported, so every test encrypts quickly and nothing
is written under the repository.
"""

import io
import os
import tempfile
import wave

os.environ.setdefault("PADVAULT_KDF_TIME_COST", "1")
os.environ.setdefault("PADVAULT_KDF_MEMORY_KIB", "8")
os.environ.setdefault("PADVAULT_DATA_DIR", tempfile.mkdtemp(prefix="padvault-test-"))

import numpy as np  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from padvault.blob_store import BlobStore  # noqa: E402
from padvault.collaborators import (  # noqa: E402
    InMemoryAccessGrants,
    InMemoryAdminRegistry,
    StaticIdentity,
    UserIdentity,
)
from padvault.keys import KeyService  # noqa: E402
from padvault.library import BankLibrary  # noqa: E402
from services.bank_api.main import AppContext, app, override_context  # noqa: E402
from services.bank_export.service import BankExporter  # noqa: E402
from services.bank_import.service import BankImporter  # noqa: E402


def make_wav_bytes(
    duration_ms: float,
    sample_rate: int = 8000,
    channels: int = 1,
    sampwidth: int = 2,
    freq: float = 440.0,
) -> bytes:
    """Build an in-memory PCM WAV with a sine tone."""
    frames = int(round(duration_ms / 1000 * sample_rate))
    t = np.arange(frames) / sample_rate
    tone = 0.5 * np.sin(2 * np.pi * freq * t)
    planar = np.tile(tone, (channels, 1))

    if sampwidth == 1:
        raw = (planar * 127 + 128).astype(np.uint8).T.tobytes()
    elif sampwidth == 2:
        raw = (planar * 32767).astype("<i2").T.tobytes()
    elif sampwidth == 4:
        raw = (planar * (2**31 - 1)).astype("<i4").T.tobytes()
    else:
        raise ValueError(f"unsupported sample width {sampwidth}")

    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sampwidth)
        wf.setframerate(sample_rate)
        wf.writeframes(raw)
    return buffer.getvalue()


@pytest.fixture
def wav_factory():
    """Factory for in-memory WAV files."""
    return make_wav_bytes


@pytest.fixture
def blob_store():
    """Open blob store on a temporary SQLite database.

    Yields:
        BlobStore: opened store, closed after the test.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        store = BlobStore(os.path.join(tmpdir, "test.db"))
        store.open()
        yield store
        store.close()


@pytest.fixture
def library(blob_store):
    return BankLibrary(blob_store)


@pytest.fixture
def registry():
    return InMemoryAdminRegistry()


@pytest.fixture
def grants():
    return InMemoryAccessGrants()


@pytest.fixture
def key_service(blob_store, registry, grants):
    return KeyService(blob_store.session_factory, registry, grants)


@pytest.fixture
def admin_user():
    return UserIdentity(user_id="admin-1", email="admin@example.com", is_admin=True)


@pytest.fixture
def regular_user():
    return UserIdentity(user_id="user-1", email="user@example.com")


@pytest.fixture
def make_importer(blob_store, library, key_service):
    """Factory: BankImporter acting as the given user (None = signed out)."""

    def _make(user=None, **kwargs):
        return BankImporter(blob_store, library, key_service, StaticIdentity(user), **kwargs)

    return _make


@pytest.fixture
def make_exporter(blob_store, library, key_service):
    """Factory: BankExporter acting as the given user (None = signed out)."""

    def _make(user=None):
        return BankExporter(blob_store, library, key_service, StaticIdentity(user))

    return _make


@pytest.fixture
def sample_bank(library, wav_factory):
    """A bank with two pads: one trimmed to 500-2500 ms of 4 s, one untouched."""
    bank = library.add_bank("Drums #1", default_color="#ff0000")
    pad_a = library.add_pad(bank.id, "kick.wav", wav_factory(4000))
    library.update_pad(pad_a.id, start_time_ms=500, end_time_ms=2500)
    library.add_pad(bank.id, "snare.wav", wav_factory(1000), image=b"\x89PNG fake image")
    return library.get_bank(bank.id)


@pytest.fixture
def client(blob_store, registry, grants):
    """FastAPI test client bound to a temporary blob store.

    Yields:
        tuple: (test_client, AppContext)
    """
    context = AppContext.create(blob_store, registry=registry, grants=grants)
    override_context(context)
    yield TestClient(app), context
    override_context(None)
