"""padvault - Local bank library.

CRUD for bank and pad records on top of the blob store's database. Binary
assets always go through BlobStore so quota accounting stays in one place;
this module only stores blob keys.
"""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import PurePath
from typing import Any

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from padvault.blob_store import BlobItem, BlobStore, storage_key
from padvault.config import DEFAULT_BANK_COLOR, PAD_NAME_MAX_LENGTH
from padvault.errors import AccessDeniedError, NotFoundError
from padvault.models import BankRecord, PadRecord
from padvault.schemas import AssetKind, Bank, BankMetadata, Pad, PadSettings

logger = logging.getLogger(__name__)

# Bank fields callers may change through update_bank()
UPDATABLE_BANK_FIELDS = frozenset({"name", "default_color", "sort_order"})


def new_id() -> str:
    return str(uuid.uuid4())


def trim_pad_name(name: str) -> str:
    name = (name or "").strip()
    return name[:PAD_NAME_MAX_LENGTH] if name else "Untitled Pad"


# --- Record <-> model conversion ---


def pad_from_record(record: PadRecord) -> Pad:
    settings = json.loads(record.settings_json)
    settings.update(id=record.id, position=record.position)
    return Pad.model_validate(
        {**settings, "audio_ref": record.audio_ref, "image_ref": record.image_ref}
    )


def bank_from_record(record: BankRecord) -> Bank:
    metadata = (
        BankMetadata.model_validate_json(record.metadata_json) if record.metadata_json else None
    )
    return Bank(
        id=record.id,
        name=record.name,
        default_color=record.default_color,
        pads=[pad_from_record(p) for p in record.pads],
        created_at=record.created_at,
        sort_order=record.sort_order,
        is_admin_bank=record.is_admin_bank,
        transferable=record.transferable,
        exportable=record.exportable,
        source_bank_id=record.source_bank_id,
        bank_metadata=metadata,
        creator_email=record.creator_email,
    )


def _pad_record(pad: Pad, bank_id: str) -> PadRecord:
    return PadRecord(
        id=pad.id,
        bank_id=bank_id,
        position=pad.position,
        audio_ref=pad.audio_ref,
        image_ref=pad.image_ref,
        settings_json=json.dumps(pad.settings_dict()),
    )


class BankLibrary:
    """Bank/pad records sharing the blob store's session factory."""

    def __init__(self, blob_store: BlobStore):
        self.blob_store = blob_store

    def _session(self) -> Session:
        return self.blob_store.session_factory()

    @staticmethod
    def _load_bank(session: Session, bank_id: str) -> BankRecord:
        stmt = (
            select(BankRecord)
            .where(BankRecord.id == bank_id)
            .options(selectinload(BankRecord.pads))
        )
        record = session.execute(stmt).scalar_one_or_none()
        if record is None:
            raise NotFoundError("Bank", bank_id)
        return record

    @staticmethod
    def _load_pad(session: Session, pad_id: str) -> PadRecord:
        record = session.get(PadRecord, pad_id)
        if record is None:
            raise NotFoundError("Pad", pad_id)
        return record

    # --- Banks ---

    def list_banks(self) -> list[Bank]:
        """All banks ordered by sort order."""
        with self._session() as session:
            stmt = (
                select(BankRecord)
                .options(selectinload(BankRecord.pads))
                .order_by(BankRecord.sort_order, BankRecord.created_at)
            )
            return [bank_from_record(r) for r in session.execute(stmt).scalars()]

    def get_bank(self, bank_id: str) -> Bank:
        """Raises NotFoundError for an unknown id."""
        with self._session() as session:
            return bank_from_record(self._load_bank(session, bank_id))

    def next_sort_order(self) -> int:
        with self._session() as session:
            current = session.execute(select(func.max(BankRecord.sort_order))).scalar()
            return 0 if current is None else current + 1

    def add_bank(self, name: str, default_color: str = DEFAULT_BANK_COLOR) -> Bank:
        """Create an empty bank at the end of the list."""
        bank = Bank(
            id=new_id(), name=name, default_color=default_color, sort_order=self.next_sort_order()
        )
        return self.insert_bank(bank)

    def insert_bank(self, bank: Bank) -> Bank:
        """Persist a fully built bank (pads included). Blobs must already exist."""
        with self._session() as session, session.begin():
            record = BankRecord(
                id=bank.id,
                name=bank.name,
                default_color=bank.default_color,
                sort_order=bank.sort_order,
                is_admin_bank=bank.is_admin_bank,
                transferable=bank.transferable,
                exportable=bank.exportable,
                source_bank_id=bank.source_bank_id,
                metadata_json=(
                    bank.bank_metadata.model_dump_json(by_alias=True)
                    if bank.bank_metadata is not None
                    else None
                ),
                creator_email=bank.creator_email,
                created_at=bank.created_at,
            )
            record.pads = [_pad_record(pad, bank.id) for pad in bank.pads]
            session.add(record)
        logger.info("Saved bank %s (%s) with %d pads", bank.id, bank.name, len(bank.pads))
        return bank

    def update_bank(self, bank_id: str, **changes: Any) -> Bank:
        """Update name, default_color or sort_order.

        Raises:
            ValueError: For fields that cannot be changed this way.
            NotFoundError: For an unknown bank.
        """
        unknown = set(changes) - UPDATABLE_BANK_FIELDS
        if unknown:
            raise ValueError(f"Cannot update bank fields: {sorted(unknown)}")
        with self._session() as session, session.begin():
            record = self._load_bank(session, bank_id)
            for name, value in changes.items():
                setattr(record, name, value)
            return bank_from_record(record)

    def delete_bank(self, bank_id: str) -> None:
        """Delete a bank, its pads, and every blob they reference."""
        with self._session() as session, session.begin():
            record = self._load_bank(session, bank_id)
            pad_ids = [p.id for p in record.pads]
            session.delete(record)

        # Delete by canonical keys so orphaned assets are released too
        keys = [storage_key(kind, pad_id) for pad_id in pad_ids for kind in AssetKind]
        self.blob_store.delete_many(keys)
        logger.info("Deleted bank %s and %d pads", bank_id, len(pad_ids))

    # --- Pads ---

    def get_pad(self, pad_id: str) -> Pad:
        with self._session() as session:
            return pad_from_record(self._load_pad(session, pad_id))

    def add_pad(
        self,
        bank_id: str,
        name: str,
        audio: bytes,
        image: bytes | None = None,
    ) -> Pad:
        """Create a pad at the end of a bank from raw audio (and image) bytes.

        ``name`` may be a file name; its extension is dropped.

        Raises:
            NotFoundError: Unknown bank.
            QuotaExceededError: The image does not fit; nothing is stored.
        """
        bank = self.get_bank(bank_id)
        pad_id = new_id()
        items = [BlobItem(pad_id, bytes(audio), AssetKind.AUDIO)]
        if image:
            items.append(BlobItem(pad_id, bytes(image), AssetKind.IMAGE))
        self.blob_store.store_batch(items)

        pad = Pad(
            id=pad_id,
            name=trim_pad_name(PurePath(name).stem if "." in name else name),
            color=bank.default_color,
            position=max((p.position for p in bank.pads), default=-1) + 1,
            audio_ref=storage_key(AssetKind.AUDIO, pad_id),
            image_ref=storage_key(AssetKind.IMAGE, pad_id) if image else None,
        )
        try:
            with self._session() as session, session.begin():
                session.add(_pad_record(pad, bank_id))
        except Exception:
            self.blob_store.delete_many([item.key for item in items])
            raise
        return pad

    def update_pad(self, pad_id: str, **changes: Any) -> Pad:
        """Update playback settings of a pad; the result is re-validated.

        Raises:
            NotFoundError: Unknown pad.
            ValueError: Changes break a pad invariant.
        """
        with self._session() as session, session.begin():
            record = self._load_pad(session, pad_id)
            current = pad_from_record(record)
            merged = {**current.settings_dict(), **changes, "id": pad_id}
            try:
                settings = PadSettings.model_validate(merged)
            except ValidationError as e:
                raise ValueError(f"Invalid pad settings: {e}") from e
            record.position = settings.position
            record.settings_json = json.dumps(settings.settings_dict())
            return pad_from_record(record)

    def delete_pad(self, pad_id: str) -> None:
        with self._session() as session, session.begin():
            session.delete(self._load_pad(session, pad_id))
        self.blob_store.delete_many([storage_key(kind, pad_id) for kind in AssetKind])

    # --- Transfer ---

    def can_transfer_from_bank(self, bank_id: str) -> bool:
        """Bank flag first, then the metadata flag, else allowed."""
        bank = self.get_bank(bank_id)
        if not bank.transferable:
            return False
        if bank.bank_metadata is not None:
            return bank.bank_metadata.transferable
        return True

    def transfer_pad(self, pad_id: str, target_bank_id: str) -> Pad:
        """Move a pad to the end of another bank, taking its default color.

        Raises:
            AccessDeniedError: The source bank does not allow transfers.
            NotFoundError: Unknown pad or target bank.
        """
        with self._session() as session:
            source_bank_id = self._load_pad(session, pad_id).bank_id
        if source_bank_id == target_bank_id:
            return self.get_pad(pad_id)
        if not self.can_transfer_from_bank(source_bank_id):
            raise AccessDeniedError(f"Pads cannot be transferred out of bank {source_bank_id}")

        with self._session() as session, session.begin():
            target = self._load_bank(session, target_bank_id)
            record = self._load_pad(session, pad_id)
            settings = json.loads(record.settings_json)
            settings["color"] = target.default_color
            record.bank_id = target_bank_id
            record.position = max((p.position for p in target.pads), default=-1) + 1
            record.settings_json = json.dumps(settings)
            return pad_from_record(record)


__all__ = [
    "BankLibrary",
    "UPDATABLE_BANK_FIELDS",
    "bank_from_record",
    "pad_from_record",
    "new_id",
    "trim_pad_name",
]
