"""padvault - Pydantic models for banks, pads, archive documents and the API.

Field names are snake_case in Python and camelCase on the wire, so the same
models read and write bank.json / metadata.json and the HTTP payloads.
"""

from __future__ import annotations

from datetime import UTC, datetime  # noqa: I001
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr, model_validator
from pydantic.alias_generators import to_camel

from padvault.config import DEFAULT_BANK_COLOR


class TriggerMode(StrEnum):
    TOGGLE = "toggle"
    HOLD = "hold"
    STUTTER = "stutter"
    UNMUTE = "unmute"


class PlaybackMode(StrEnum):
    ONCE = "once"
    LOOP = "loop"
    STOPPER = "stopper"


class AssetKind(StrEnum):
    """Kind of binary stored for a pad."""

    AUDIO = "audio"
    IMAGE = "image"


_WIRE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _utc_now() -> datetime:
    return datetime.now(UTC)


# --- Access-control metadata ---


class BankMetadata(BaseModel):
    """Access-control facts stored beside the manifest as metadata.json.

    Missing fields are explicit defaults or None, never absent attributes.
    """

    model_config = _WIRE_CONFIG

    password: bool = Field(default=False, description="Container is password protected")
    transferable: bool = Field(default=True, description="Pads may move to other banks")
    exportable: bool | None = Field(default=None, description="Bank may be re-exported")
    title: str | None = None
    description: str | None = None
    color: str | None = None
    bank_id: str | None = Field(default=None, description="Registry id for admin banks")


# --- Pads ---


class PadSettings(BaseModel):
    """Playback configuration shared by stored pads and manifest pad records."""

    model_config = _WIRE_CONFIG

    id: str = Field(..., min_length=1)
    name: str = "Untitled Pad"
    color: str = DEFAULT_BANK_COLOR
    trigger_mode: TriggerMode = TriggerMode.TOGGLE
    playback_mode: PlaybackMode = PlaybackMode.ONCE
    volume: float = Field(default=1.0, ge=0.0, le=1.0)
    start_time_ms: float = Field(default=0.0, ge=0.0)
    end_time_ms: float = Field(default=0.0, ge=0.0)
    fade_in_ms: float = Field(default=0.0, ge=0.0)
    fade_out_ms: float = Field(default=0.0, ge=0.0)
    pitch: float = Field(default=0.0, ge=-12.0, le=12.0)
    position: int = Field(default=0, ge=0)
    shortcut_key: str | None = None
    midi_note: int | None = None
    midi_cc: int | None = Field(default=None, alias="midiCC")

    @model_validator(mode="after")
    def _check_timing(self) -> PadSettings:
        # end_time_ms == 0 means "play to the end of the source"
        if self.end_time_ms > 0:
            if self.start_time_ms >= self.end_time_ms:
                raise ValueError("start_time_ms must be before end_time_ms")
            if self.fade_in_ms + self.fade_out_ms > self.end_time_ms - self.start_time_ms:
                raise ValueError("fades exceed the play range")
        return self

    def settings_dict(self) -> dict[str, Any]:
        """Playback fields only, keyed by Python field name, JSON-ready."""
        return self.model_dump(mode="json", include=set(PadSettings.model_fields))


class Pad(PadSettings):
    """A pad as held in the local library; binaries live in the blob store."""

    audio_ref: str | None = Field(default=None, description="Blob store key of the audio")
    image_ref: str | None = Field(default=None, description="Blob store key of the image")


class ManifestPad(PadSettings):
    """A pad record inside bank.json with archive-relative asset paths."""

    audio_url: str | None = None
    image_url: str | None = None


# --- Banks ---


class Bank(BaseModel):
    """A named collection of pads, the unit of export and import."""

    model_config = _WIRE_CONFIG

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    default_color: str = DEFAULT_BANK_COLOR
    pads: list[Pad] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utc_now)
    sort_order: int = 0
    is_admin_bank: bool = False
    transferable: bool = True
    exportable: bool = True
    source_bank_id: str | None = None
    bank_metadata: BankMetadata | None = None
    creator_email: str | None = None


class ArchiveManifest(BaseModel):
    """bank.json as read from a container.

    Only ``name`` and ``pads`` are required. Pad records stay loosely typed
    here and are validated one by one during extraction, so one malformed
    pad drops that pad instead of the whole import.
    """

    model_config = _WIRE_CONFIG

    name: StrictStr = Field(..., min_length=1)
    pads: list[Any]
    id: str | None = None
    default_color: str | None = None
    created_at: datetime | None = None
    sort_order: int | None = None
    is_admin_bank: bool | None = None
    transferable: bool | None = None
    exportable: bool | None = None
    source_bank_id: str | None = None
    creator_email: str | None = None

    def to_document(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON document stored as bank.json."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# --- API models ---


class AdminExportRequest(BaseModel):
    """Request payload for admin bank export."""

    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1)
    description: str = ""
    transferable: bool = True
    add_to_database: bool = False
    allow_export: bool = False


class BankSummaryResponse(BaseModel):
    """Bank listing entry."""

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    pad_count: int
    sort_order: int
    is_admin_bank: bool
    transferable: bool
    exportable: bool
    source_bank_id: str | None = None


class ImportSuccessResponse(BaseModel):
    """Response for a successful bank import."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="success", description="Operation status")
    bank_id: str = Field(..., description="Local id of the imported bank")
    name: str
    imported_pads: int = Field(..., ge=0)
    skipped_pads: int = Field(..., ge=0)


class QuotaResponse(BaseModel):
    """Image quota usage."""

    model_config = ConfigDict(extra="forbid")

    used_bytes: int = Field(..., ge=0)
    limit_bytes: int = Field(..., ge=0)


class ErrorResponse(BaseModel):
    """Response for failed operations."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="error", description="Operation status")
    error_code: str = Field(..., description="Error taxonomy code")
    error_message: str = Field(..., description="Human-readable error description")
    login_required: bool = False


__all__ = [
    "TriggerMode",
    "PlaybackMode",
    "AssetKind",
    "BankMetadata",
    "PadSettings",
    "Pad",
    "ManifestPad",
    "Bank",
    "ArchiveManifest",
    "AdminExportRequest",
    "BankSummaryResponse",
    "ImportSuccessResponse",
    "QuotaResponse",
    "ErrorResponse",
]
