"""padvault - Quota-tracked blob storage.

Binary pad assets (audio, images) are stored in SQLite keyed by
``{kind}_{id}``. Image bytes count against a fixed ceiling tracked in a
single ledger row that is always updated in the same transaction as the
blob writes it accounts for.

Rules:
- Quota is checked before any bytes are committed. A batch is checked once,
  against the sum of all its image bytes; any excess fails the whole batch.
- store_batch is strictly atomic: audio writes are rolled back too when the
  batch fails.
- Deleting an image decrements the ledger by its stored size, floored at 0.

All mutation of stored binaries goes through this class; it is the only
serialization point for the blob tables.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session, sessionmaker

from padvault.config import MAX_IMAGE_QUOTA_BYTES
from padvault.db import init_db
from padvault.errors import QuotaExceededError
from padvault.models import BlobRecord, QuotaLedger, utc_now
from padvault.schemas import AssetKind

logger = logging.getLogger(__name__)

# Ledger row key for image usage
IMAGE_LEDGER_KEY = "images"


def storage_key(kind: AssetKind | str, item_id: str) -> str:
    """Build the blob key for an asset.

    Args:
        kind: Asset kind ("audio" or "image").
        item_id: Pad id owning the asset.

    Returns:
        Storage key, e.g. "audio_k3j2h1".
    """
    return f"{AssetKind(kind).value}_{item_id}"


@dataclass(frozen=True)
class BlobItem:
    """One write in a batch."""

    item_id: str
    data: bytes
    kind: AssetKind

    @property
    def key(self) -> str:
        return storage_key(self.kind, self.item_id)


class BlobStore:
    """SQLite-backed blob store with an explicit open/close lifecycle.

    Usage:
        with BlobStore(db_path) as store:
            store.store("pad1", audio_bytes, AssetKind.AUDIO)
    """

    def __init__(
        self,
        db_path: str | Path | None = None,
        quota_limit: int = MAX_IMAGE_QUOTA_BYTES,
    ):
        self.db_path = db_path
        self.quota_limit = quota_limit
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None
        self._write_lock = threading.Lock()
        # Number of blob rows committed since open(); observability hook
        self.write_count = 0

    # --- Lifecycle ---

    def open(self) -> BlobStore:
        """Open the underlying database. Idempotent."""
        if self._engine is None:
            self._engine, self._session_factory = init_db(self.db_path)
            logger.debug("Blob store opened at %s", self.db_path or "default path")
        return self

    def close(self) -> None:
        """Dispose of the engine. Safe to call when already closed."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.debug("Blob store closed")

    def __enter__(self) -> BlobStore:
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._session_factory is not None

    @property
    def session_factory(self) -> sessionmaker:
        """Session factory of the open store (shared with the bank library)."""
        if self._session_factory is None:
            raise RuntimeError("Blob store is not open")
        return self._session_factory

    # --- Writes ---

    def store(self, item_id: str, data: bytes, kind: AssetKind | str) -> str:
        """Store a single blob.

        Args:
            item_id: Pad id owning the asset.
            data: Asset bytes.
            kind: Asset kind; images are quota-checked.

        Returns:
            The storage key written.

        Raises:
            QuotaExceededError: If an image would exceed the quota.
        """
        item = BlobItem(item_id=item_id, data=bytes(data), kind=AssetKind(kind))
        self.store_batch([item])
        return item.key

    def store_batch(self, items: Sequence[BlobItem]) -> list[str]:
        """Store several blobs in one transaction with one ledger update.

        Args:
            items: Writes to perform. A later item with the same key wins.

        Returns:
            Storage keys written, in input order without duplicates.

        Raises:
            QuotaExceededError: If the batch's image bytes would exceed the
                quota. Nothing is written in that case.
        """
        if not items:
            return []

        by_key: dict[str, BlobItem] = {}
        for item in items:
            by_key[item.key] = item

        incoming_image_bytes = sum(
            len(item.data) for item in by_key.values() if item.kind == AssetKind.IMAGE
        )

        with self._write_lock, self.session_factory() as session, session.begin():
            ledger = self._get_ledger(session)
            replaced_image_bytes = self._existing_image_bytes(session, list(by_key))
            projected = ledger.usage_bytes - replaced_image_bytes + incoming_image_bytes

            # Pre-flight: nothing has been written in this transaction yet
            if incoming_image_bytes > 0 and projected > self.quota_limit:
                logger.warning(
                    "Rejecting batch of %d blobs: image quota %d + %d > %d",
                    len(by_key),
                    ledger.usage_bytes,
                    incoming_image_bytes,
                    self.quota_limit,
                )
                raise QuotaExceededError(
                    current_usage=ledger.usage_bytes,
                    requested=incoming_image_bytes,
                    limit=self.quota_limit,
                )

            now = utc_now()
            for key, item in by_key.items():
                session.merge(
                    BlobRecord(
                        key=key,
                        kind=item.kind.value,
                        data=item.data,
                        size_bytes=len(item.data),
                        stored_at=now,
                    )
                )

            ledger.usage_bytes = max(0, projected)

        self.write_count += len(by_key)
        logger.debug(
            "Stored %d blobs (%d image bytes); image usage now %d",
            len(by_key),
            incoming_image_bytes,
            max(0, projected),
        )
        return list(by_key)

    def delete(self, key: str) -> None:
        """Delete a blob by storage key. Missing keys are ignored."""
        with self._write_lock, self.session_factory() as session, session.begin():
            record = session.get(BlobRecord, key)
            if record is None:
                return
            if record.kind == AssetKind.IMAGE.value:
                ledger = self._get_ledger(session)
                ledger.usage_bytes = max(0, ledger.usage_bytes - record.size_bytes)
            session.delete(record)
        logger.debug("Deleted blob %s", key)

    def delete_many(self, keys: Sequence[str]) -> None:
        """Delete several blobs; used to undo a failed import."""
        for key in keys:
            self.delete(key)

    # --- Reads ---

    def get(self, key: str) -> bytes | None:
        """Return the bytes stored under ``key``, or None."""
        with self.session_factory() as session:
            record = session.get(BlobRecord, key)
            return bytes(record.data) if record is not None else None

    def exists(self, key: str) -> bool:
        with self.session_factory() as session:
            stmt = select(BlobRecord.key).where(BlobRecord.key == key)
            return session.execute(stmt).scalar_one_or_none() is not None

    def current_usage(self) -> int:
        """Cumulative image bytes according to the ledger."""
        with self.session_factory() as session:
            ledger = session.get(QuotaLedger, IMAGE_LEDGER_KEY)
            return ledger.usage_bytes if ledger is not None else 0

    # --- Internals ---

    @staticmethod
    def _get_ledger(session: Session) -> QuotaLedger:
        ledger = session.get(QuotaLedger, IMAGE_LEDGER_KEY)
        if ledger is None:
            ledger = QuotaLedger(kind=IMAGE_LEDGER_KEY, usage_bytes=0)
            session.add(ledger)
        return ledger

    @staticmethod
    def _existing_image_bytes(session: Session, keys: list[str]) -> int:
        stmt = select(BlobRecord.size_bytes).where(
            BlobRecord.key.in_(keys), BlobRecord.kind == AssetKind.IMAGE.value
        )
        return sum(session.execute(stmt).scalars().all())


__all__ = ["BlobItem", "BlobStore", "IMAGE_LEDGER_KEY", "storage_key"]
