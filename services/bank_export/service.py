"""padvault - Bank export service.

Packages a local bank into a .bank container.

Per pad:
1. Load audio from the blob store
2. Probe its decoded duration and decide whether the play range cuts into it
3. Trim only when needed; the exported copy's timings become 0..new duration
4. Trim failures keep the source bytes and timings (logged only)

The stored pad is never modified. Progress: 0-60 audio, 60-80 images,
80-100 assembly and encryption.

Admin export picks exactly one policy:
- DATABASE: registry bank + derived key, creator granted access, encrypted
- SHARED_PASSWORD: allow_export=False, encrypted with the shared password
- PLAIN: allow_export=True, not encrypted
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from padvault import archive, crypto
from padvault.blob_store import BlobStore
from padvault.collaborators import IdentityProvider, UserIdentity
from padvault.config import ARCHIVE_COMPRESSION_LEVEL, SHARED_EXPORT_DISABLED_PASSWORD
from padvault.errors import AccessDeniedError, AudioDecodeError, ExportNotAllowedError
from padvault.keys import KeyService
from padvault.library import BankLibrary
from padvault.schemas import (
    AdminExportRequest,
    ArchiveManifest,
    AssetKind,
    Bank,
    BankMetadata,
    ManifestPad,
    Pad,
)
from padvault.utils.atomic_io import atomic_write_bytes
from padvault.utils.audio_meta import sniff_format
from padvault.utils.paths import asset_entry_path, export_file_path, export_filename
from padvault.utils.progress import MonotonicProgress, ProgressCallback
from services.worker_transcode.run import probe_duration_ms, trim, trim_plan

logger = logging.getLogger(__name__)


class ExportPolicy(StrEnum):
    DATABASE = "DATABASE"
    SHARED_PASSWORD = "SHARED_PASSWORD"
    PLAIN = "PLAIN"


def select_policy(add_to_database: bool, allow_export: bool) -> ExportPolicy:
    if add_to_database:
        return ExportPolicy.DATABASE
    return ExportPolicy.PLAIN if allow_export else ExportPolicy.SHARED_PASSWORD


# --- Result Types ---


@dataclass
class ExportResult:
    """A packaged bank ready to be saved or streamed."""

    filename: str
    data: bytes
    encrypted: bool
    policy: ExportPolicy | None = None
    registry_bank_id: str | None = None
    trimmed_pad_ids: list[str] = field(default_factory=list)


@dataclass
class _PackedAssets:
    pads: list[dict[str, Any]]
    assets: dict[str, bytes]
    trimmed_pad_ids: list[str]


def save_export(result: ExportResult, directory: str | Path | None = None) -> Path:
    """Atomically write an export to ``directory`` (default data/exports/)."""
    path = export_file_path(result.filename, directory)
    atomic_write_bytes(path, result.data)
    logger.info("Saved export %s (%d bytes)", path, len(result.data))
    return path


# --- Pad preparation ---


def _exported_pad_document(
    pad: Pad,
    audio_url: str | None,
    image_url: str | None,
    new_duration_ms: float | None,
) -> dict[str, Any]:
    settings = pad.settings_dict()
    if new_duration_ms is not None:
        settings["start_time_ms"] = 0.0
        settings["end_time_ms"] = new_duration_ms
        # Sample flooring can shave a fraction of a millisecond off the range
        fade_in = min(settings["fade_in_ms"], new_duration_ms)
        settings["fade_in_ms"] = fade_in
        settings["fade_out_ms"] = min(settings["fade_out_ms"], new_duration_ms - fade_in)
    exported = ManifestPad(**settings, audio_url=audio_url, image_url=image_url)
    return exported.model_dump(by_alias=True, mode="json", exclude_none=True)


def _prepare_audio(pad: Pad, source: bytes) -> tuple[bytes, float | None]:
    """Trim a pad's audio if its play range needs it.

    Returns:
        (bytes, new_duration_ms); new_duration_ms is None when the source is
        reused verbatim.
    """
    audio_format = sniff_format(source)
    duration_ms = probe_duration_ms(source, audio_format)
    if duration_ms is None:
        logger.warning("Pad %s: cannot probe audio, exporting untrimmed", pad.id)
        return source, None

    plan = trim_plan(pad, duration_ms)
    if not plan.needed:
        return source, None

    # Once either side needs it, cut the full play range
    try:
        result = trim(source, pad.start_time_ms, pad.end_time_ms, audio_format)
    except AudioDecodeError as e:
        logger.warning("Pad %s: trim failed, exporting untrimmed: %s", pad.id, e.message)
        return source, None

    logger.debug(
        "Pad %s trimmed %d -> %d bytes (%.1f ms)",
        pad.id,
        len(source),
        len(result.data),
        result.new_duration_ms,
    )
    return result.data, result.new_duration_ms


# --- Export Service ---


class BankExporter:
    """Builds .bank containers from local banks."""

    def __init__(
        self,
        blob_store: BlobStore,
        library: BankLibrary,
        key_service: KeyService,
        identity: IdentityProvider,
        compression_level: int = ARCHIVE_COMPRESSION_LEVEL,
    ):
        self.blob_store = blob_store
        self.library = library
        self.key_service = key_service
        self.identity = identity
        self.compression_level = compression_level

    async def _pack_pads(self, bank: Bank, progress: MonotonicProgress) -> _PackedAssets:
        audio_by_pad: dict[str, tuple[bytes, float | None]] = {}
        total = max(1, len(bank.pads))
        for index, pad in enumerate(bank.pads, start=1):
            source = (
                await asyncio.to_thread(self.blob_store.get, pad.audio_ref)
                if pad.audio_ref
                else None
            )
            if source:
                audio_by_pad[pad.id] = await asyncio.to_thread(_prepare_audio, pad, source)
            else:
                logger.warning("Pad %s has no stored audio", pad.id)
            progress.span(0, 60, index / total)

        images: dict[str, bytes] = {}
        for index, pad in enumerate(bank.pads, start=1):
            if pad.image_ref:
                image = await asyncio.to_thread(self.blob_store.get, pad.image_ref)
                if image:
                    images[pad.id] = image
            progress.span(60, 80, index / total)

        pads: list[dict[str, Any]] = []
        assets: dict[str, bytes] = {}
        trimmed: list[str] = []
        for pad in bank.pads:
            audio_url = image_url = None
            new_duration_ms = None
            if pad.id in audio_by_pad:
                data, new_duration_ms = audio_by_pad[pad.id]
                audio_url = asset_entry_path(AssetKind.AUDIO, pad.id)
                assets[audio_url] = data
                if new_duration_ms is not None:
                    trimmed.append(pad.id)
            if pad.id in images:
                image_url = asset_entry_path(AssetKind.IMAGE, pad.id)
                assets[image_url] = images[pad.id]
            pads.append(_exported_pad_document(pad, audio_url, image_url, new_duration_ms))

        return _PackedAssets(pads=pads, assets=assets, trimmed_pad_ids=trimmed)

    def _manifest(self, bank: Bank, pads: list[dict[str, Any]], creator_email: str | None):
        return ArchiveManifest(
            name=bank.name,
            pads=pads,
            id=bank.id,
            default_color=bank.default_color,
            created_at=bank.created_at,
            sort_order=bank.sort_order,
            is_admin_bank=bank.is_admin_bank,
            transferable=bank.transferable,
            exportable=bank.exportable,
            source_bank_id=bank.source_bank_id,
            creator_email=creator_email,
        )

    async def export_bank(
        self, bank_id: str, on_progress: ProgressCallback | None = None
    ) -> ExportResult:
        """Export a bank as an unencrypted container.

        Metadata carried by the bank (e.g. a transfer restriction) is written
        back as metadata.json, without the password flag.

        Raises:
            NotFoundError: Unknown bank.
            ExportNotAllowedError: The bank is marked non-exportable.
        """
        progress = MonotonicProgress(on_progress)
        bank = await asyncio.to_thread(self.library.get_bank, bank_id)
        if not bank.exportable:
            raise ExportNotAllowedError(bank_id)

        user = await asyncio.to_thread(self.identity.current_user)
        packed = await self._pack_pads(bank, progress)

        metadata = None
        if bank.bank_metadata is not None:
            metadata = bank.bank_metadata.model_copy(update={"password": False})
        manifest = self._manifest(bank, packed.pads, user.email if user else None)
        data = await asyncio.to_thread(
            archive.assemble, manifest, metadata, packed.assets, self.compression_level
        )
        progress.report(100)

        logger.info(
            "Exported bank %s (%d pads, %d trimmed)",
            bank.id,
            len(bank.pads),
            len(packed.trimmed_pad_ids),
        )
        return ExportResult(
            filename=export_filename(bank.name),
            data=data,
            encrypted=False,
            trimmed_pad_ids=packed.trimmed_pad_ids,
        )

    def _require_admin(self) -> UserIdentity:
        user = self.identity.current_user()
        if user is None:
            raise AccessDeniedError("Admin export requires sign-in", login_required=True)
        if not user.is_admin:
            raise AccessDeniedError("Admin only")
        return user

    def _register_bank(self, request: AdminExportRequest, bank: Bank, user: UserIdentity):
        record = self.key_service.registry.create_bank(
            request.title, request.description, user.user_id, color=bank.default_color
        )
        try:
            self.key_service.grants.grant(user.user_id, record.bank_id)
        except Exception:
            logger.warning("Could not grant creator access to %s", record.bank_id, exc_info=True)
        self.key_service.remember(user.user_id, record.bank_id, record.derived_key)
        return record

    async def export_admin_bank(
        self,
        bank_id: str,
        request: AdminExportRequest,
        on_progress: ProgressCallback | None = None,
    ) -> ExportResult:
        """Export a bank with access-control metadata under an admin policy.

        Raises:
            AccessDeniedError: No signed-in admin.
            NotFoundError: Unknown bank.
        """
        user = await asyncio.to_thread(self._require_admin)
        progress = MonotonicProgress(on_progress)
        bank = await asyncio.to_thread(self.library.get_bank, bank_id)
        policy = select_policy(request.add_to_database, request.allow_export)

        packed = await self._pack_pads(bank, progress)
        manifest = self._manifest(bank, packed.pads, None)

        registry_bank_id = None
        if policy == ExportPolicy.DATABASE:
            record = await asyncio.to_thread(self._register_bank, request, bank, user)
            registry_bank_id = record.bank_id
            key = record.derived_key
            metadata = BankMetadata(
                password=True,
                transferable=request.transferable,
                exportable=False,
                title=request.title,
                description=request.description,
                color=bank.default_color,
                bank_id=record.bank_id,
            )
        else:
            key = SHARED_EXPORT_DISABLED_PASSWORD if policy == ExportPolicy.SHARED_PASSWORD else None
            metadata = BankMetadata(
                password=not request.allow_export,
                transferable=request.transferable,
                exportable=request.allow_export,
                title=request.title,
                description=request.description,
                color=bank.default_color,
            )

        data = await asyncio.to_thread(
            archive.assemble, manifest, metadata, packed.assets, self.compression_level
        )
        progress.report(90)
        if key is not None:
            data = await asyncio.to_thread(crypto.encrypt, data, key)
        progress.report(100)

        title = request.title.strip() or bank.name or "Bank"
        logger.info("Admin export of bank %s with policy %s", bank.id, policy.value)
        return ExportResult(
            filename=export_filename(title),
            data=data,
            encrypted=key is not None,
            policy=policy,
            registry_bank_id=registry_bank_id,
            trimmed_pad_ids=packed.trimmed_pad_ids,
        )


__all__ = [
    "BankExporter",
    "ExportPolicy",
    "ExportResult",
    "save_export",
    "select_policy",
]
