"""padvault - Bank import service.

Turns a .bank file into a local bank:

    LOADING -> DECRYPT_ATTEMPT -> MANIFEST_PARSE -> METADATA_RESOLVE
            -> DEDUP_CHECK -> BATCH_EXTRACT -> COMPLETE | FAILED

- Container and access failures abort before anything is stored.
- Pads are extracted concurrently in batches of 10; each batch is committed
  with one BlobStore.store_batch call. A pad with missing or empty audio is
  dropped; zero surviving pads fails the import.
- A failure after some batches were committed deletes those blobs again, so
  a failed import leaves no state behind.
- Every step is bounded by an adaptive timeout derived from the file size.

Blocking work (SQLite, zip, Argon2, AES) runs in worker threads.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import ValidationError

from padvault import archive, crypto
from padvault.archive import ArchiveContents
from padvault.blob_store import BlobItem, BlobStore
from padvault.collaborators import IdentityProvider, UserIdentity
from padvault.config import (
    BANK_FILE_EXTENSION,
    DEFAULT_BANK_COLOR,
    IMPORT_BATCH_SIZE,
    IMPORT_HEADER_CHECK_TIMEOUT_MS,
    IMPORT_TIMEOUT_BASE_MS,
    IMPORT_TIMEOUT_MAX_MS,
    IMPORT_TIMEOUT_PER_100MB_MS,
)
from padvault.errors import (
    AccessDeniedError,
    ArchiveFormatError,
    BankVaultError,
    DecryptionError,
    DuplicateImportError,
    ImportTimeoutError,
    InvalidBankFileError,
    NoValidPadsError,
)
from padvault.keys import KeyCandidate, KeyService, iter_key_candidates, parse_bank_id_from_filename
from padvault.library import BankLibrary, new_id
from padvault.models import utc_now
from padvault.schemas import AssetKind, Bank, BankMetadata, ManifestPad, Pad
from padvault.utils.hashing import bank_duplicate_signature
from padvault.utils.paths import asset_entry_path
from padvault.utils.progress import MonotonicProgress, ProgressCallback

logger = logging.getLogger(__name__)

_HUNDRED_MIB = 100 * 1024 * 1024


class ImportState(StrEnum):
    LOADING = "LOADING"
    DECRYPT_ATTEMPT = "DECRYPT_ATTEMPT"
    MANIFEST_PARSE = "MANIFEST_PARSE"
    METADATA_RESOLVE = "METADATA_RESOLVE"
    DEDUP_CHECK = "DEDUP_CHECK"
    BATCH_EXTRACT = "BATCH_EXTRACT"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


# --- Result Types ---


@dataclass
class ImportResult:
    """Result of a successful import."""

    bank: Bank
    imported_pads: int
    skipped_pads: int
    key_source: str | None = None
    states: list[ImportState] = field(default_factory=list)


@dataclass
class _ResolvedBank:
    name: str
    default_color: str
    metadata: BankMetadata | None
    bank_id_hint: str | None
    signature: str | None


# --- Helpers ---


def adaptive_timeout_ms(size_bytes: int) -> int:
    """Per-step timeout: 60 s base plus 60 s per started 100 MiB, at most 10 min."""
    units = max(1, math.ceil(size_bytes / _HUNDRED_MIB))
    return min(IMPORT_TIMEOUT_MAX_MS, IMPORT_TIMEOUT_BASE_MS + units * IMPORT_TIMEOUT_PER_100MB_MS)


def normalize_token(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip().lower()
    return value or None


def _pad_names(pads: Iterable[Any]) -> list[str]:
    names = []
    for pad in pads:
        name = pad.get("name") if isinstance(pad, dict) else getattr(pad, "name", None)
        names.append(name if isinstance(name, str) and name else "Untitled Pad")
    return names


def existing_origin_tokens(bank: Bank) -> set[str]:
    """Identity tokens of a local bank, lowercased."""
    candidates = [
        bank.id,
        bank.source_bank_id,
        bank.bank_metadata.bank_id if bank.bank_metadata else None,
        bank_duplicate_signature(bank.name, [p.name for p in bank.pads]),
    ]
    return {token for token in map(normalize_token, candidates) if token}


def _manifest_pad(raw: Any, index: int, default_color: str) -> ManifestPad:
    """Validate a manifest pad record, applying import defaults.

    Raises:
        ValueError: The record is not an object or breaks a pad invariant.
    """
    if not isinstance(raw, dict):
        raise ValueError("pad record is not an object")
    record = {key: value for key, value in raw.items() if value is not None}
    # Falsy timing values mean "unset"
    for key in ("fadeInMs", "fadeOutMs", "startTimeMs", "endTimeMs", "pitch"):
        record[key] = record.get(key) or 0
    record.setdefault("position", index)
    record.setdefault("color", default_color)
    for key in ("midiNote", "midiCC"):
        value = record.get(key)
        if isinstance(value, bool) or not isinstance(value, int):
            record.pop(key, None)
    if not record.get("shortcutKey"):
        record.pop("shortcutKey", None)
    try:
        return ManifestPad.model_validate(record)
    except ValidationError as e:
        raise ValueError(str(e)) from e


# --- Import Service ---


class BankImporter:
    """Imports .bank containers into the local library."""

    def __init__(
        self,
        blob_store: BlobStore,
        library: BankLibrary,
        key_service: KeyService,
        identity: IdentityProvider,
        batch_size: int = IMPORT_BATCH_SIZE,
    ):
        self.blob_store = blob_store
        self.library = library
        self.key_service = key_service
        self.identity = identity
        self.batch_size = batch_size

    @asynccontextmanager
    async def _bounded(self, step: str, timeout_ms: int) -> AsyncIterator[None]:
        try:
            async with asyncio.timeout(timeout_ms / 1000):
                yield
        except ImportTimeoutError:
            raise
        except TimeoutError as e:
            raise ImportTimeoutError(step, timeout_ms) from e

    async def import_bank(
        self,
        data: bytes,
        filename: str,
        on_progress: ProgressCallback | None = None,
        allow_duplicate: bool = False,
    ) -> ImportResult:
        """Import a bank file.

        Args:
            data: Raw .bank file bytes.
            filename: Original file name (extension check and bank id hint).
            on_progress: Receives monotonic percentages 0-100.
            allow_duplicate: Skip the duplicate-origin check.

        Returns:
            ImportResult with the stored bank.

        Raises:
            InvalidBankFileError, ArchiveFormatError, DecryptionError,
            AccessDeniedError, DuplicateImportError, QuotaExceededError,
            NoValidPadsError, ImportTimeoutError.
        """
        states: list[ImportState] = []
        progress = MonotonicProgress(on_progress)

        def enter(state: ImportState) -> None:
            states.append(state)
            logger.info("Import %s: %s", filename, state.value)

        try:
            result = await self._run(data, filename, progress, allow_duplicate, enter)
        except BankVaultError as e:
            logger.warning("Import %s failed in %s: %s", filename, states[-1].value, e.message)
            states.append(ImportState.FAILED)
            raise
        enter(ImportState.COMPLETE)
        result.states = states
        return result

    async def _run(
        self,
        data: bytes,
        filename: str,
        progress: MonotonicProgress,
        allow_duplicate: bool,
        enter,
    ) -> ImportResult:
        enter(ImportState.LOADING)
        if not data:
            raise InvalidBankFileError("File is empty or not accessible")
        if not filename.lower().endswith(BANK_FILE_EXTENSION):
            raise InvalidBankFileError(f"File must have {BANK_FILE_EXTENSION} extension")
        timeout_ms = adaptive_timeout_ms(len(data))
        user = await asyncio.to_thread(self.identity.current_user)
        progress.report(10)

        enter(ImportState.DECRYPT_ATTEMPT)
        contents, candidate = await self._open_container(data, filename, user, timeout_ms, enter)

        with contents:
            progress.report(20)
            enter(ImportState.METADATA_RESOLVE)
            resolved = await self._resolve_metadata(contents, filename, user)

            enter(ImportState.DEDUP_CHECK)
            if not allow_duplicate:
                await asyncio.to_thread(self._check_duplicate, contents, resolved)
            progress.report(30)

            enter(ImportState.BATCH_EXTRACT)
            bank = await self._extract_and_store(contents, resolved, progress, timeout_ms)

        skipped = len(contents.manifest.pads) - len(bank.pads)
        progress.report(100)
        logger.info(
            "Imported bank %s (%s): %d pads, %d skipped",
            bank.id,
            bank.name,
            len(bank.pads),
            skipped,
        )
        return ImportResult(
            bank=bank,
            imported_pads=len(bank.pads),
            skipped_pads=skipped,
            key_source=candidate.source.value if candidate else None,
        )

    # --- Decrypt / parse ---

    async def _open_container(
        self,
        data: bytes,
        filename: str,
        user: UserIdentity | None,
        timeout_ms: int,
        enter,
    ) -> tuple[ArchiveContents, KeyCandidate | None]:
        if archive.looks_like_archive(data):
            enter(ImportState.MANIFEST_PARSE)
            async with self._bounded("Zip load", timeout_ms):
                contents = await asyncio.to_thread(archive.parse, data)
            return contents, None

        if not crypto.is_encrypted(data):
            raise ArchiveFormatError("not a bank archive")

        header_timeout_ms = min(timeout_ms, IMPORT_HEADER_CHECK_TIMEOUT_MS)
        candidates = iter_key_candidates(self.key_service, user, filename)
        last_error: BaseException | None = None
        parse_entered = False

        while True:
            candidate = await asyncio.to_thread(next, candidates, None)
            if candidate is None:
                break

            async with self._bounded("Header check", header_timeout_ms):
                matched = await asyncio.to_thread(crypto.quick_match, data, candidate.key)
            if not matched:
                last_error = DecryptionError(f"{candidate.source.value} key does not match")
                continue

            try:
                async with self._bounded("Decrypt", timeout_ms):
                    plain = await asyncio.to_thread(crypto.decrypt, data, candidate.key)
                if not parse_entered:
                    enter(ImportState.MANIFEST_PARSE)
                    parse_entered = True
                async with self._bounded("Zip load", timeout_ms):
                    contents = await asyncio.to_thread(archive.parse, plain)
            except (DecryptionError, ArchiveFormatError) as e:
                logger.debug("Key from %s failed: %s", candidate.source.value, e.message)
                last_error = e
                continue

            logger.info("Decrypted %s using %s key", filename, candidate.source.value)
            return contents, candidate

        reason = "no available key opens this bank file"
        if isinstance(last_error, BankVaultError):
            reason = f"{reason} ({last_error.message})"
        raise DecryptionError(reason, last_error=last_error)

    # --- Metadata ---

    async def _resolve_metadata(
        self,
        contents: ArchiveContents,
        filename: str,
        user: UserIdentity | None,
    ) -> _ResolvedBank:
        manifest = contents.manifest
        metadata = contents.metadata
        bank_id_hint = (metadata.bank_id if metadata else None) or parse_bank_id_from_filename(
            filename
        )
        if bank_id_hint and (metadata is None or not metadata.bank_id):
            base = metadata or BankMetadata()
            metadata = base.model_copy(update={"bank_id": bank_id_hint})

        name = manifest.name
        color = manifest.default_color or DEFAULT_BANK_COLOR
        resolved = None
        if bank_id_hint:
            try:
                resolved = await asyncio.to_thread(
                    self.key_service.registry.resolve_metadata, bank_id_hint
                )
            except Exception:
                logger.warning("Registry lookup failed for bank %s", bank_id_hint, exc_info=True)

        if resolved is not None:
            name = resolved.title
            metadata = metadata.model_copy(
                update={
                    "title": resolved.title,
                    "description": resolved.description,
                    "color": resolved.color or metadata.color,
                }
            )
            if resolved.color:
                color = resolved.color
        elif metadata is not None and metadata.color:
            color = metadata.color

        if metadata is not None and metadata.password and metadata.bank_id:
            if user is None:
                raise AccessDeniedError(
                    "Login required to import this bank", login_required=True
                )
            has_access = await asyncio.to_thread(
                self.key_service.grants.has_access, user.user_id, metadata.bank_id
            )
            if not has_access:
                raise AccessDeniedError(f"No access to bank {metadata.bank_id}")

        return _ResolvedBank(
            name=name,
            default_color=color,
            metadata=metadata,
            bank_id_hint=bank_id_hint,
            signature=bank_duplicate_signature(manifest.name, _pad_names(manifest.pads)),
        )

    # --- Dedup ---

    def _check_duplicate(self, contents: ArchiveContents, resolved: _ResolvedBank) -> None:
        incoming = {
            token
            for token in map(
                normalize_token,
                [contents.manifest.id, resolved.bank_id_hint, resolved.signature],
            )
            if token
        }
        if not incoming:
            return
        for bank in self.library.list_banks():
            overlap = incoming & existing_origin_tokens(bank)
            if overlap:
                raise DuplicateImportError(origin_id=sorted(overlap)[0], existing_bank_id=bank.id)

    # --- Extraction ---

    def _read_pad(
        self, contents: ArchiveContents, raw: Any, index: int, default_color: str
    ) -> tuple[Pad, list[BlobItem]] | None:
        """Extract one pad; any failure drops that pad only."""
        try:
            return self._extract_pad(contents, raw, index, default_color)
        except Exception:
            logger.exception("Skipping pad %d: extraction failed", index)
            return None

    def _extract_pad(
        self, contents: ArchiveContents, raw: Any, index: int, default_color: str
    ) -> tuple[Pad, list[BlobItem]] | None:
        try:
            source = _manifest_pad(raw, index, default_color)
        except ValueError as e:
            logger.warning("Skipping pad %d: invalid record (%s)", index, e)
            return None

        audio = contents.read_asset(asset_entry_path(AssetKind.AUDIO, source.id))
        if not audio and source.audio_url:
            audio = contents.read_asset(source.audio_url)
        if not audio:
            logger.warning("Skipping pad %r: no audio file found", source.name)
            return None

        image = contents.read_asset(asset_entry_path(AssetKind.IMAGE, source.id))
        if not image and source.image_url:
            image = contents.read_asset(source.image_url)

        pad_id = new_id()
        items = [BlobItem(pad_id, audio, AssetKind.AUDIO)]
        if image:
            items.append(BlobItem(pad_id, image, AssetKind.IMAGE))

        settings = source.settings_dict()
        settings["id"] = pad_id
        pad = Pad(
            **settings,
            audio_ref=items[0].key,
            image_ref=items[1].key if image else None,
        )
        return pad, items

    async def _extract_and_store(
        self,
        contents: ArchiveContents,
        resolved: _ResolvedBank,
        progress: MonotonicProgress,
        timeout_ms: int,
    ) -> Bank:
        raw_pads = contents.manifest.pads
        total = len(raw_pads)
        pads: list[Pad] = []
        stored_keys: list[str] = []

        try:
            for start in range(0, total, self.batch_size):
                batch = raw_pads[start : start + self.batch_size]
                async with self._bounded("Pad extraction", timeout_ms):
                    async with asyncio.TaskGroup() as tg:
                        tasks = [
                            tg.create_task(
                                asyncio.to_thread(
                                    self._read_pad,
                                    contents,
                                    raw,
                                    start + offset,
                                    resolved.default_color,
                                )
                            )
                            for offset, raw in enumerate(batch)
                        ]

                extracted = [task.result() for task in tasks if task.result() is not None]
                items = [item for _, pad_items in extracted for item in pad_items]
                if items:
                    async with self._bounded("Save batch", timeout_ms):
                        keys = await asyncio.to_thread(self.blob_store.store_batch, items)
                    stored_keys.extend(keys)
                pads.extend(pad for pad, _ in extracted)
                progress.span(30, 95, (start + len(batch)) / total)

            if not pads:
                raise NoValidPadsError(skipped=total)

            metadata = resolved.metadata
            manifest = contents.manifest
            bank = Bank(
                id=new_id(),
                name=resolved.name,
                default_color=resolved.default_color,
                pads=pads,
                created_at=manifest.created_at or utc_now(),
                sort_order=await asyncio.to_thread(self.library.next_sort_order),
                is_admin_bank=bool(metadata and metadata.password),
                transferable=metadata.transferable if metadata else True,
                exportable=(
                    metadata.exportable
                    if metadata is not None and metadata.exportable is not None
                    else True
                ),
                source_bank_id=resolved.bank_id_hint or manifest.id or resolved.signature,
                bank_metadata=metadata,
                creator_email=manifest.creator_email,
            )
            await asyncio.to_thread(self.library.insert_bank, bank)
        except BaseException:
            if stored_keys:
                logger.warning("Rolling back %d blobs from failed import", len(stored_keys))
                await asyncio.to_thread(self.blob_store.delete_many, stored_keys)
            raise
        return bank


__all__ = [
    "BankImporter",
    "ImportResult",
    "ImportState",
    "adaptive_timeout_ms",
    "existing_origin_tokens",
    "normalize_token",
]
