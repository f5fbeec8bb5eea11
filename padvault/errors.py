"""padvault - Error taxonomy.

Every failure surfaced by import, export or storage carries an error code.
Container-level and access-level errors abort the whole operation without
any state change. Pad-level and transcode-level failures are recovered
locally and never reach callers as exceptions.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    """Error codes for bank import/export and storage."""

    ARCHIVE_FORMAT = "ARCHIVE_FORMAT"
    DECRYPTION_FAILED = "DECRYPTION_FAILED"
    ACCESS_DENIED = "ACCESS_DENIED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    DUPLICATE_IMPORT = "DUPLICATE_IMPORT"
    AUDIO_DECODE = "AUDIO_DECODE"
    TIMEOUT = "TIMEOUT"
    INVALID_FILE = "INVALID_FILE"
    NO_VALID_PADS = "NO_VALID_PADS"
    EXPORT_NOT_ALLOWED = "EXPORT_NOT_ALLOWED"
    NOT_FOUND = "NOT_FOUND"


class BankVaultError(Exception):
    """Base exception for padvault errors."""

    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(f"{error_code}: {message}")


class ArchiveFormatError(BankVaultError):
    """Container is not a bank archive or its manifest is malformed."""

    def __init__(self, reason: str):
        super().__init__(ErrorCode.ARCHIVE_FORMAT, f"Invalid bank file: {reason}")


class DecryptionError(BankVaultError):
    """No candidate key decrypted the container.

    ``login_required`` is set when the only missing resource is a user
    identity, so callers can prompt for sign-in instead of reporting a
    generic failure. ``last_error`` keeps the last underlying failure.
    """

    def __init__(
        self,
        reason: str,
        last_error: BaseException | None = None,
        login_required: bool = False,
    ):
        self.last_error = last_error
        self.login_required = login_required
        super().__init__(ErrorCode.DECRYPTION_FAILED, f"Cannot decrypt bank file: {reason}")


class AccessDeniedError(BankVaultError):
    """User lacks a grant for a protected bank, or an admin-only call."""

    def __init__(self, reason: str, login_required: bool = False):
        self.login_required = login_required
        super().__init__(ErrorCode.ACCESS_DENIED, reason)


class QuotaExceededError(BankVaultError):
    """Image blob storage ceiling would be exceeded."""

    def __init__(self, current_usage: int, requested: int, limit: int):
        self.current_usage = current_usage
        self.requested = requested
        self.limit = limit
        super().__init__(
            ErrorCode.QUOTA_EXCEEDED,
            f"Pad image storage is full ({current_usage} + {requested} > {limit} bytes)",
        )


class DuplicateImportError(BankVaultError):
    """A bank with the same origin identity already exists locally."""

    def __init__(self, origin_id: str, existing_bank_id: str):
        self.origin_id = origin_id
        self.existing_bank_id = existing_bank_id
        super().__init__(
            ErrorCode.DUPLICATE_IMPORT,
            f"This bank is already imported (origin {origin_id}, local bank {existing_bank_id})",
        )


class AudioDecodeError(BankVaultError):
    """Audio could not be decoded or the trim range is empty."""

    def __init__(self, reason: str):
        super().__init__(ErrorCode.AUDIO_DECODE, reason)


class ImportTimeoutError(BankVaultError, TimeoutError):
    """A bounded import step exceeded its adaptive timeout."""

    def __init__(self, step: str, timeout_ms: int):
        self.step = step
        self.timeout_ms = timeout_ms
        super().__init__(
            ErrorCode.TIMEOUT, f"{step} timeout after {round(timeout_ms / 1000)}s"
        )


class InvalidBankFileError(BankVaultError):
    """Input file is empty or does not carry the .bank extension."""

    def __init__(self, reason: str):
        super().__init__(ErrorCode.INVALID_FILE, reason)


class NoValidPadsError(BankVaultError):
    """Every pad in the container was dropped during extraction."""

    def __init__(self, skipped: int):
        self.skipped = skipped
        super().__init__(
            ErrorCode.NO_VALID_PADS,
            f"No valid pads found in bank file ({skipped} skipped). "
            "The bank may be corrupted or empty.",
        )


class ExportNotAllowedError(BankVaultError):
    """Bank is marked non-exportable."""

    def __init__(self, bank_id: str):
        super().__init__(ErrorCode.EXPORT_NOT_ALLOWED, f"Export is disabled for bank {bank_id}")


class NotFoundError(BankVaultError):
    """Referenced bank or pad does not exist."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(ErrorCode.NOT_FOUND, f"{kind} not found: {identifier}")


_USER_MESSAGES = {
    ErrorCode.ARCHIVE_FORMAT: "Invalid bank file format. Please ensure you selected a valid .bank file.",
    ErrorCode.INVALID_FILE: "Invalid bank file format. Please ensure you selected a valid .bank file.",
    ErrorCode.NO_VALID_PADS: "Invalid bank file format. Please ensure you selected a valid .bank file.",
    ErrorCode.DECRYPTION_FAILED: (
        "Cannot decrypt bank file. Please ensure you have access to this bank and are signed in."
    ),
    ErrorCode.ACCESS_DENIED: "You do not have access to this bank.",
    ErrorCode.TIMEOUT: "Import timed out. The file may be too large or corrupted. Please try again.",
    ErrorCode.QUOTA_EXCEEDED: "Pad image storage is full. Delete some pad images and try again.",
    ErrorCode.DUPLICATE_IMPORT: "This bank is already imported.",
}


def user_message(error: BankVaultError) -> str:
    """Map an error to one of the small set of user-facing causes."""
    if getattr(error, "login_required", False):
        return "Please sign in to import this bank file."
    return _USER_MESSAGES.get(error.error_code, error.message)


__all__ = [
    "ErrorCode",
    "BankVaultError",
    "ArchiveFormatError",
    "DecryptionError",
    "AccessDeniedError",
    "QuotaExceededError",
    "DuplicateImportError",
    "AudioDecodeError",
    "ImportTimeoutError",
    "InvalidBankFileError",
    "NoValidPadsError",
    "ExportNotAllowedError",
    "NotFoundError",
    "user_message",
]
