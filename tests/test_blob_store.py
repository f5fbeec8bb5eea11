"""Tests for padvault.blob_store module."""

import pytest

from padvault.blob_store import BlobItem, BlobStore, storage_key
from padvault.errors import QuotaExceededError
from padvault.schemas import AssetKind


@pytest.fixture
def small_store(tmp_path):
    """Blob store with a 1000-byte image quota."""
    with BlobStore(tmp_path / "small.db", quota_limit=1000) as store:
        yield store


class TestStorageKey:
    """Tests for storage_key function."""

    def test_audio_key(self):
        assert storage_key(AssetKind.AUDIO, "pad1") == "audio_pad1"

    def test_image_key_from_string_kind(self):
        assert storage_key("image", "pad1") == "image_pad1"

    def test_unknown_kind_raises(self):
        with pytest.raises(ValueError):
            storage_key("video", "pad1")


class TestLifecycle:
    """Tests for open/close lifecycle."""

    def test_closed_store_rejects_calls(self, tmp_path):
        store = BlobStore(tmp_path / "x.db")
        assert not store.is_open
        with pytest.raises(RuntimeError):
            store.get("audio_x")

    def test_context_manager_opens_and_closes(self, tmp_path):
        with BlobStore(tmp_path / "x.db") as store:
            assert store.is_open
            store.store("p", b"abc", AssetKind.AUDIO)
        assert not store.is_open

    def test_data_survives_reopen(self, tmp_path):
        with BlobStore(tmp_path / "x.db") as store:
            store.store("p", b"abc", AssetKind.IMAGE)
        with BlobStore(tmp_path / "x.db") as store:
            assert store.get("image_p") == b"abc"
            assert store.current_usage() == 3


class TestStoreAndGet:
    """Tests for single-item store/get/delete."""

    def test_store_returns_key(self, blob_store):
        assert blob_store.store("pad1", b"audio", AssetKind.AUDIO) == "audio_pad1"
        assert blob_store.get("audio_pad1") == b"audio"
        assert blob_store.exists("audio_pad1")

    def test_get_missing_returns_none(self, blob_store):
        assert blob_store.get("audio_missing") is None
        assert not blob_store.exists("audio_missing")

    def test_audio_is_quota_exempt(self, small_store):
        small_store.store("pad1", b"x" * 5000, AssetKind.AUDIO)
        assert small_store.current_usage() == 0

    def test_image_counts_against_quota(self, small_store):
        small_store.store("pad1", b"x" * 400, AssetKind.IMAGE)
        assert small_store.current_usage() == 400

    def test_image_over_quota_rejected(self, small_store):
        small_store.store("pad1", b"x" * 900, AssetKind.IMAGE)
        with pytest.raises(QuotaExceededError) as exc_info:
            small_store.store("pad2", b"x" * 200, AssetKind.IMAGE)
        assert exc_info.value.current_usage == 900
        assert exc_info.value.requested == 200
        assert small_store.get("image_pad2") is None
        assert small_store.current_usage() == 900

    def test_overwrite_replaces_ledger_contribution(self, small_store):
        small_store.store("pad1", b"x" * 600, AssetKind.IMAGE)
        small_store.store("pad1", b"x" * 700, AssetKind.IMAGE)
        assert small_store.current_usage() == 700

    def test_delete_image_decrements_ledger(self, blob_store):
        blob_store.store("pad1", b"x" * 100, AssetKind.IMAGE)
        blob_store.delete("image_pad1")
        assert blob_store.current_usage() == 0
        assert blob_store.get("image_pad1") is None

    def test_delete_missing_is_noop(self, blob_store):
        blob_store.delete("image_nothing")
        assert blob_store.current_usage() == 0

    def test_ledger_never_negative(self, blob_store):
        """Ledger is floored at zero even if it drifted below the stored size."""
        from padvault.blob_store import IMAGE_LEDGER_KEY
        from padvault.models import QuotaLedger

        blob_store.store("pad1", b"x" * 100, AssetKind.IMAGE)
        with blob_store.session_factory() as session, session.begin():
            session.get(QuotaLedger, IMAGE_LEDGER_KEY).usage_bytes = 10
        blob_store.delete("image_pad1")
        assert blob_store.current_usage() == 0


class TestStoreBatch:
    """Tests for store_batch atomicity and quota pre-check."""

    def test_batch_writes_all_items(self, blob_store):
        keys = blob_store.store_batch(
            [
                BlobItem("a", b"1", AssetKind.AUDIO),
                BlobItem("a", b"22", AssetKind.IMAGE),
                BlobItem("b", b"333", AssetKind.AUDIO),
            ]
        )
        assert keys == ["audio_a", "image_a", "audio_b"]
        assert blob_store.current_usage() == 2
        assert blob_store.write_count == 3

    def test_batch_quota_checked_on_sum(self, small_store):
        """Each image fits alone, but the batch total does not."""
        items = [
            BlobItem("a", b"x" * 600, AssetKind.IMAGE),
            BlobItem("b", b"x" * 600, AssetKind.IMAGE),
        ]
        with pytest.raises(QuotaExceededError):
            small_store.store_batch(items)
        assert small_store.current_usage() == 0
        assert small_store.get("image_a") is None

    def test_failed_batch_rolls_back_audio(self, small_store):
        items = [
            BlobItem("a", b"audio", AssetKind.AUDIO),
            BlobItem("a", b"x" * 2000, AssetKind.IMAGE),
        ]
        with pytest.raises(QuotaExceededError):
            small_store.store_batch(items)
        assert small_store.get("audio_a") is None
        assert small_store.write_count == 0

    def test_empty_batch(self, blob_store):
        assert blob_store.store_batch([]) == []

    def test_duplicate_keys_last_wins(self, blob_store):
        blob_store.store_batch(
            [BlobItem("a", b"first", AssetKind.AUDIO), BlobItem("a", b"second", AssetKind.AUDIO)]
        )
        assert blob_store.get("audio_a") == b"second"

    def test_delete_many(self, blob_store):
        blob_store.store_batch(
            [BlobItem("a", b"12", AssetKind.IMAGE), BlobItem("b", b"34", AssetKind.AUDIO)]
        )
        blob_store.delete_many(["image_a", "audio_b", "audio_zzz"])
        assert blob_store.current_usage() == 0
        assert not blob_store.exists("audio_b")
