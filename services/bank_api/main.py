"""padvault - Bank API FastAPI application.

HTTP surface over the local bank library: import and export of .bank files,
bank listing/deletion and image quota usage.

Identity is taken from request headers set by the fronting auth proxy:
    X-User-Id, X-User-Email, X-User-Role ("admin" for admin exports)

The admin-bank registry and access grants default to in-memory
implementations; deployments replace them via override_context().

Run with:
    uvicorn services.bank_api.main:app --reload  # dev server only
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Annotated
from urllib.parse import quote

from fastapi import Depends, FastAPI, File, Form, Header, UploadFile
from fastapi.responses import JSONResponse, Response

from padvault.blob_store import BlobStore
from padvault.collaborators import (
    AccessGrants,
    AdminRegistry,
    InMemoryAccessGrants,
    InMemoryAdminRegistry,
    StaticIdentity,
    UserIdentity,
)
from padvault.errors import BankVaultError, ErrorCode, user_message
from padvault.keys import KeyService
from padvault.library import BankLibrary
from padvault.schemas import (
    AdminExportRequest,
    BankSummaryResponse,
    ErrorResponse,
    ImportSuccessResponse,
    QuotaResponse,
)
from services.bank_export.service import BankExporter, ExportResult
from services.bank_import.service import BankImporter

logger = logging.getLogger(__name__)


# --- Application Context ---


@dataclass
class AppContext:
    """Long-lived collaborators shared by all requests."""

    blob_store: BlobStore
    library: BankLibrary
    key_service: KeyService

    @classmethod
    def create(
        cls,
        blob_store: BlobStore,
        registry: AdminRegistry | None = None,
        grants: AccessGrants | None = None,
    ) -> AppContext:
        blob_store.open()
        key_service = KeyService(
            blob_store.session_factory,
            registry if registry is not None else InMemoryAdminRegistry(),
            grants if grants is not None else InMemoryAccessGrants(),
        )
        return cls(blob_store=blob_store, library=BankLibrary(blob_store), key_service=key_service)


# Module-level context (initialized on startup)
_context: AppContext | None = None


def get_context() -> AppContext:
    """Get the application context.

    Raises:
        RuntimeError: If context not initialized (app lifespan not invoked).
    """
    if _context is None:
        raise RuntimeError("App context not initialized. App lifespan not invoked?")
    return _context


def get_current_user(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_email: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str | None, Header()] = None,
) -> UserIdentity | None:
    """Dependency that builds the caller identity from proxy headers."""
    if not x_user_id:
        return None
    return UserIdentity(
        user_id=x_user_id,
        email=x_user_email,
        is_admin=(x_user_role or "").lower() == "admin",
    )


ContextDep = Annotated[AppContext, Depends(get_context)]
UserDep = Annotated[UserIdentity | None, Depends(get_current_user)]


# --- Lifespan ---


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the default blob store on startup and close it on shutdown."""
    global _context
    owns_context = _context is None
    if owns_context:
        _context = AppContext.create(BlobStore())
    yield
    if owns_context and _context is not None:
        _context.blob_store.close()
        _context = None


# --- FastAPI App ---


app = FastAPI(
    title="padvault - Bank API",
    description="Import and export of portable, optionally encrypted sampler banks.",
    version="0.1.0",
    lifespan=lifespan,
)


# --- Error Handling ---

_STATUS_BY_CODE = {
    ErrorCode.INVALID_FILE: 400,
    ErrorCode.ARCHIVE_FORMAT: 400,
    ErrorCode.NO_VALID_PADS: 400,
    ErrorCode.AUDIO_DECODE: 400,
    ErrorCode.ACCESS_DENIED: 403,
    ErrorCode.EXPORT_NOT_ALLOWED: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.DUPLICATE_IMPORT: 409,
    ErrorCode.QUOTA_EXCEEDED: 413,
    ErrorCode.DECRYPTION_FAILED: 422,
    ErrorCode.TIMEOUT: 504,
}


def error_to_status(error: BankVaultError) -> int:
    """Map an error to an HTTP status; login-required errors are 401."""
    if getattr(error, "login_required", False):
        return 401
    return _STATUS_BY_CODE.get(error.error_code, 500)


def make_error_response(error: BankVaultError) -> JSONResponse:
    """Create a JSON error response."""
    return JSONResponse(
        status_code=error_to_status(error),
        content=ErrorResponse(
            error_code=error.error_code,
            error_message=user_message(error),
            login_required=getattr(error, "login_required", False),
        ).model_dump(),
    )


def _internal_error(action: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error_code="INTERNAL_ERROR",
            error_message=f"An unexpected error occurred during {action}",
        ).model_dump(),
    )


def _file_response(result: ExportResult) -> Response:
    headers = {
        "Content-Disposition": f"attachment; filename*=UTF-8''{quote(result.filename)}",
        "X-Bank-Encrypted": "true" if result.encrypted else "false",
    }
    if result.policy is not None:
        headers["X-Export-Policy"] = result.policy.value
    if result.registry_bank_id:
        headers["X-Registry-Bank-Id"] = result.registry_bank_id
    return Response(content=result.data, media_type="application/octet-stream", headers=headers)


_ERROR_RESPONSES = {
    status: {"model": ErrorResponse} for status in (400, 401, 403, 404, 409, 413, 422, 504)
}


# --- Endpoints ---


@app.get("/health", summary="Health check")
def health_check():
    """Simple health check endpoint."""
    return {"status": "ok"}


@app.get(
    "/v1/banks",
    response_model=list[BankSummaryResponse],
    summary="List local banks",
)
def list_banks(ctx: ContextDep):
    return [
        BankSummaryResponse(
            id=bank.id,
            name=bank.name,
            pad_count=len(bank.pads),
            sort_order=bank.sort_order,
            is_admin_bank=bank.is_admin_bank,
            transferable=bank.transferable,
            exportable=bank.exportable,
            source_bank_id=bank.source_bank_id,
        )
        for bank in ctx.library.list_banks()
    ]


@app.post(
    "/v1/banks/import",
    response_model=ImportSuccessResponse,
    responses=_ERROR_RESPONSES,
    summary="Import a .bank file",
)
async def import_bank(
    ctx: ContextDep,
    user: UserDep,
    file: Annotated[UploadFile, File(description=".bank file to import")],
    allow_duplicate: Annotated[bool, Form(description="Import even if already present")] = False,
):
    """Import an uploaded bank. Encrypted banks are opened with the caller's keys."""
    data = await file.read()
    importer = BankImporter(ctx.blob_store, ctx.library, ctx.key_service, StaticIdentity(user))
    try:
        result = await importer.import_bank(
            data, file.filename or "unknown", allow_duplicate=allow_duplicate
        )
    except BankVaultError as e:
        return make_error_response(e)
    except Exception:
        logger.exception("Unexpected error during bank import")
        return _internal_error("import")

    return ImportSuccessResponse(
        bank_id=result.bank.id,
        name=result.bank.name,
        imported_pads=result.imported_pads,
        skipped_pads=result.skipped_pads,
    )


@app.get(
    "/v1/banks/{bank_id}/export",
    responses=_ERROR_RESPONSES,
    summary="Export a bank as a .bank file",
)
async def export_bank(bank_id: str, ctx: ContextDep, user: UserDep):
    exporter = BankExporter(ctx.blob_store, ctx.library, ctx.key_service, StaticIdentity(user))
    try:
        result = await exporter.export_bank(bank_id)
    except BankVaultError as e:
        return make_error_response(e)
    except Exception:
        logger.exception("Unexpected error during bank export")
        return _internal_error("export")
    return _file_response(result)


@app.post(
    "/v1/banks/{bank_id}/export/admin",
    responses=_ERROR_RESPONSES,
    summary="Export a bank with admin access-control metadata",
)
async def export_admin_bank(
    bank_id: str,
    request: AdminExportRequest,
    ctx: ContextDep,
    user: UserDep,
):
    exporter = BankExporter(ctx.blob_store, ctx.library, ctx.key_service, StaticIdentity(user))
    try:
        result = await exporter.export_admin_bank(bank_id, request)
    except BankVaultError as e:
        return make_error_response(e)
    except Exception:
        logger.exception("Unexpected error during admin bank export")
        return _internal_error("export")
    return _file_response(result)


@app.delete(
    "/v1/banks/{bank_id}",
    responses=_ERROR_RESPONSES,
    summary="Delete a bank and its stored assets",
)
def delete_bank(bank_id: str, ctx: ContextDep):
    try:
        ctx.library.delete_bank(bank_id)
    except BankVaultError as e:
        return make_error_response(e)
    return {"status": "deleted", "bank_id": bank_id}


@app.get("/v1/storage/quota", response_model=QuotaResponse, summary="Image storage usage")
def storage_quota(ctx: ContextDep):
    return QuotaResponse(
        used_bytes=ctx.blob_store.current_usage(), limit_bytes=ctx.blob_store.quota_limit
    )


# --- For testing: allow overriding the context ---


def override_context(context: AppContext | None) -> None:
    """Override the application context for testing."""
    global _context
    _context = context
