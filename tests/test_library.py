"""Tests for padvault.library module."""

import pytest

from padvault.errors import AccessDeniedError, NotFoundError, QuotaExceededError
from padvault.library import BankLibrary, trim_pad_name
from padvault.schemas import Bank, BankMetadata


class TestTrimPadName:
    def test_truncates_to_32(self):
        assert trim_pad_name("x" * 40) == "x" * 32

    def test_blank_becomes_untitled(self):
        assert trim_pad_name("   ") == "Untitled Pad"


class TestBanks:
    """Tests for bank CRUD."""

    def test_add_and_get(self, library):
        bank = library.add_bank("Drums", default_color="#ff0000")
        loaded = library.get_bank(bank.id)
        assert loaded.name == "Drums"
        assert loaded.default_color == "#ff0000"
        assert loaded.pads == []

    def test_sort_order_appends(self, library):
        first = library.add_bank("A")
        second = library.add_bank("B")
        assert second.sort_order == first.sort_order + 1
        assert [b.name for b in library.list_banks()] == ["A", "B"]

    def test_get_unknown_raises(self, library):
        with pytest.raises(NotFoundError):
            library.get_bank("missing")

    def test_update_bank(self, library):
        bank = library.add_bank("A")
        updated = library.update_bank(bank.id, name="Renamed", sort_order=7)
        assert updated.name == "Renamed"
        assert library.get_bank(bank.id).sort_order == 7

    def test_update_bank_rejects_access_flags(self, library):
        bank = library.add_bank("A")
        with pytest.raises(ValueError):
            library.update_bank(bank.id, exportable=False)

    def test_metadata_persisted(self, library):
        bank = Bank(
            id="b1",
            name="Admin",
            is_admin_bank=True,
            bank_metadata=BankMetadata(password=True, bank_id="reg-1", transferable=False),
        )
        library.insert_bank(bank)
        loaded = library.get_bank("b1")
        assert loaded.is_admin_bank
        assert loaded.bank_metadata.bank_id == "reg-1"
        assert loaded.bank_metadata.transferable is False

    def test_delete_bank_removes_blobs(self, library, blob_store, sample_bank):
        refs = [p.audio_ref for p in sample_bank.pads] + [
            p.image_ref for p in sample_bank.pads if p.image_ref
        ]
        assert blob_store.current_usage() > 0
        library.delete_bank(sample_bank.id)
        assert all(blob_store.get(ref) is None for ref in refs)
        assert blob_store.current_usage() == 0
        with pytest.raises(NotFoundError):
            library.get_bank(sample_bank.id)


class TestPads:
    """Tests for pad CRUD."""

    def test_add_pad_defaults(self, library, blob_store, wav_factory):
        bank = library.add_bank("Drums", default_color="#00ff00")
        pad = library.add_pad(bank.id, "kick.wav", wav_factory(100))
        assert pad.name == "kick"
        assert pad.color == "#00ff00"
        assert pad.position == 0
        assert pad.image_ref is None
        assert blob_store.get(pad.audio_ref) is not None

        second = library.add_pad(bank.id, "snare", wav_factory(100), image=b"img")
        assert second.position == 1
        assert blob_store.get(second.image_ref) == b"img"

    def test_add_pad_over_quota_stores_nothing(self, tmp_path, wav_factory):
        from padvault.blob_store import BlobStore

        with BlobStore(tmp_path / "q.db", quota_limit=10) as store:
            library = BankLibrary(store)
            bank = library.add_bank("Drums")
            with pytest.raises(QuotaExceededError):
                library.add_pad(bank.id, "kick", wav_factory(100), image=b"x" * 100)
            assert store.write_count == 0
            assert library.get_bank(bank.id).pads == []

    def test_update_pad(self, library, sample_bank):
        pad = sample_bank.pads[1]
        updated = library.update_pad(pad.id, volume=0.5, trigger_mode="hold")
        assert updated.volume == 0.5
        assert updated.trigger_mode == "hold"
        assert updated.audio_ref == pad.audio_ref

    @pytest.mark.parametrize(
        "changes",
        [
            {"volume": 1.5},
            {"pitch": 13},
            {"start_time_ms": 3000, "end_time_ms": 1000},
            {"start_time_ms": 0, "end_time_ms": 100, "fade_in_ms": 80, "fade_out_ms": 80},
        ],
    )
    def test_update_pad_rejects_invalid(self, library, sample_bank, changes):
        with pytest.raises(ValueError):
            library.update_pad(sample_bank.pads[1].id, **changes)

    def test_delete_pad(self, library, blob_store, sample_bank):
        pad = sample_bank.pads[1]
        library.delete_pad(pad.id)
        assert blob_store.get(pad.audio_ref) is None
        assert blob_store.get(pad.image_ref) is None
        assert len(library.get_bank(sample_bank.id).pads) == 1


class TestTransfer:
    """Tests for pad transfer between banks."""

    def test_transfer_moves_to_end_with_target_color(self, library, sample_bank, wav_factory):
        target = library.add_bank("Target", default_color="#123456")
        library.add_pad(target.id, "existing", wav_factory(100))
        moved = library.transfer_pad(sample_bank.pads[0].id, target.id)
        assert moved.position == 1
        assert moved.color == "#123456"
        assert len(library.get_bank(sample_bank.id).pads) == 1
        assert len(library.get_bank(target.id).pads) == 2

    def test_bank_flag_blocks_transfer(self, library, wav_factory):
        library.insert_bank(Bank(id="locked", name="Locked", transferable=False))
        pad = library.add_pad("locked", "kick", wav_factory(100))
        target = library.add_bank("Target")
        assert not library.can_transfer_from_bank("locked")
        with pytest.raises(AccessDeniedError):
            library.transfer_pad(pad.id, target.id)

    def test_metadata_flag_blocks_transfer(self, library):
        library.insert_bank(
            Bank(id="meta", name="Meta", bank_metadata=BankMetadata(transferable=False))
        )
        assert not library.can_transfer_from_bank("meta")

    def test_default_allows_transfer(self, library):
        bank = library.add_bank("Open")
        assert library.can_transfer_from_bank(bank.id)
