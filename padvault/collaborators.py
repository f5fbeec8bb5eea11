"""padvault - External collaborator interfaces.

Identity, the admin-bank registry and access grants are owned by other
services. The core only talks to them through these protocols. In-memory
implementations are provided for tests and for running the API standalone.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from padvault.config import BANK_KEY_SECRET
from padvault.utils.hashing import sha256_bytes


@dataclass(frozen=True)
class UserIdentity:
    """The signed-in user as reported by the identity collaborator."""

    user_id: str
    email: str | None = None
    is_admin: bool = False


@dataclass(frozen=True)
class AdminBankRecord:
    """Registry entry for a database-backed admin bank."""

    bank_id: str
    title: str
    description: str
    created_by: str
    derived_key: str
    color: str | None = None


@dataclass(frozen=True)
class ResolvedBankMetadata:
    """Authoritative display fields for a registry bank."""

    title: str
    description: str = ""
    color: str | None = None


@runtime_checkable
class IdentityProvider(Protocol):
    def current_user(self) -> UserIdentity | None: ...


@runtime_checkable
class AdminRegistry(Protocol):
    def create_bank(
        self, title: str, description: str, created_by: str, color: str | None = None
    ) -> AdminBankRecord: ...

    def resolve_metadata(self, bank_id: str) -> ResolvedBankMetadata | None: ...

    def derived_key(self, bank_id: str) -> str | None: ...


@runtime_checkable
class AccessGrants(Protocol):
    def has_access(self, user_id: str, bank_id: str) -> bool: ...

    def grant(self, user_id: str, bank_id: str) -> None: ...

    def list_bank_ids(self, user_id: str) -> list[str]: ...


def derive_bank_password(bank_id: str, secret: str = BANK_KEY_SECRET) -> str:
    """Derive the registry password for a bank id.

    Returns:
        SHA256 hex digest of bank_id + secret.
    """
    return sha256_bytes(f"{bank_id}{secret}".encode("utf-8"))


# --- In-memory implementations ---


class StaticIdentity:
    """Identity provider returning a fixed (possibly absent) user."""

    def __init__(self, user: UserIdentity | None = None):
        self.user = user

    def current_user(self) -> UserIdentity | None:
        return self.user


class InMemoryAdminRegistry:
    """Admin-bank registry held in a dict."""

    def __init__(self):
        self._banks: dict[str, AdminBankRecord] = {}
        self._lock = threading.Lock()

    def create_bank(
        self, title: str, description: str, created_by: str, color: str | None = None
    ) -> AdminBankRecord:
        bank_id = str(uuid.uuid4())
        record = AdminBankRecord(
            bank_id=bank_id,
            title=title,
            description=description,
            created_by=created_by,
            derived_key=derive_bank_password(bank_id),
            color=color,
        )
        with self._lock:
            self._banks[bank_id] = record
        return record

    def resolve_metadata(self, bank_id: str) -> ResolvedBankMetadata | None:
        record = self._banks.get(bank_id)
        if record is None:
            return None
        return ResolvedBankMetadata(
            title=record.title, description=record.description, color=record.color
        )

    def derived_key(self, bank_id: str) -> str | None:
        record = self._banks.get(bank_id)
        return record.derived_key if record is not None else None


@dataclass
class InMemoryAccessGrants:
    """Access grants held as (user_id, bank_id) pairs."""

    grants: set[tuple[str, str]] = field(default_factory=set)

    def has_access(self, user_id: str, bank_id: str) -> bool:
        return (user_id, bank_id) in self.grants

    def grant(self, user_id: str, bank_id: str) -> None:
        self.grants.add((user_id, bank_id))

    def list_bank_ids(self, user_id: str) -> list[str]:
        return sorted(bank_id for uid, bank_id in self.grants if uid == user_id)


__all__ = [
    "UserIdentity",
    "AdminBankRecord",
    "ResolvedBankMetadata",
    "IdentityProvider",
    "AdminRegistry",
    "AccessGrants",
    "derive_bank_password",
    "StaticIdentity",
    "InMemoryAdminRegistry",
    "InMemoryAccessGrants",
]
