"""padvault - SQLAlchemy ORM models.

Database tables:
1. banks            - bank records (ordering, colors, access flags)
2. pads             - pad records, playback settings as JSON
3. blobs            - binary assets keyed by {kind}_{id}
4. quota_ledger     - cumulative image bytes
5. cached_bank_keys - per-user derived key cache
6. cached_accessible_banks - per-user granted bank ids
"""

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class BankRecord(Base):
    """Local bank record. Binary assets live in BlobRecord, not here."""

    __tablename__ = "banks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    default_color: Mapped[str] = mapped_column(String(32), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)

    # Access-control flags copied from metadata at import time
    is_admin_bank: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    transferable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    exportable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Origin identity used for duplicate blocking across devices
    source_bank_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)

    # BankMetadata as JSON string (parsed by application)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    creator_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    pads: Mapped[list["PadRecord"]] = relationship(
        back_populates="bank",
        cascade="all, delete-orphan",
        order_by="PadRecord.position",
    )


class PadRecord(Base):
    """Local pad record."""

    __tablename__ = "pads"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    bank_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("banks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Blob store keys ({kind}_{id})
    audio_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    image_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # PadSettings as JSON string (parsed by application)
    settings_json: Mapped[str] = mapped_column(Text, nullable=False)

    bank: Mapped[BankRecord] = relationship(back_populates="pads")


class BlobRecord(Base):
    """Binary asset keyed by storage key."""

    __tablename__ = "blobs"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    stored_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )


class QuotaLedger(Base):
    """Running total of bytes per quota-tracked kind (only "images" today)."""

    __tablename__ = "quota_ledger"

    kind: Mapped[str] = mapped_column(String(16), primary_key=True)
    usage_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class CachedBankKey(Base):
    """Derived key cached for offline use, per user and bank."""

    __tablename__ = "cached_bank_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    bank_id: Mapped[str] = mapped_column(String(128), nullable=False)
    derived_key: Mapped[str] = mapped_column(Text, nullable=False)
    cached_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (UniqueConstraint("user_id", "bank_id", name="uq_cached_key_user_bank"),)


class CachedAccessibleBank(Base):
    """Bank id the user was granted, cached for offline use."""

    __tablename__ = "cached_accessible_banks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    bank_id: Mapped[str] = mapped_column(String(128), nullable=False)
    cached_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("user_id", "bank_id", name="uq_accessible_user_bank"),
        Index("ix_accessible_user", "user_id"),
    )
