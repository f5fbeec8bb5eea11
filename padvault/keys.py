"""padvault - Derived key lookup, caching and import key candidates.

Derived keys are resolved from the access-grant and registry collaborators
and cached twice: in memory for the process, and in SQLite per user so a
device that went offline can still open banks it opened before. Both the
persisted key cache and the accessible-bank list expire after 24 hours.

iter_key_candidates() yields the ordered key sources tried on import:
shared fallback password, then (identity required) cached keys, the bank id
hinted by the file name, and every bank id the user can access.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import timedelta
from enum import StrEnum

from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from padvault.collaborators import AccessGrants, AdminRegistry, UserIdentity
from padvault.config import KEY_CACHE_TTL_SECONDS, SHARED_EXPORT_DISABLED_PASSWORD
from padvault.errors import DecryptionError
from padvault.models import CachedAccessibleBank, CachedBankKey, utc_now

logger = logging.getLogger(__name__)

_UUID_RE = re.compile(
    r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}"
)


def parse_bank_id_from_filename(filename: str) -> str | None:
    """Return the first UUID found in a file name, if any."""
    match = _UUID_RE.search(filename or "")
    return match.group(0) if match else None


class KeyService:
    """Resolves derived keys keyed by (bank_id, user_id)."""

    def __init__(
        self,
        session_factory: sessionmaker,
        registry: AdminRegistry,
        grants: AccessGrants,
        ttl_seconds: int = KEY_CACHE_TTL_SECONDS,
    ):
        self._session_factory = session_factory
        self.registry = registry
        self.grants = grants
        self.ttl = timedelta(seconds=ttl_seconds)
        self._memory: dict[tuple[str, str], str] = {}

    # --- Derived keys ---

    def get_derived_key(self, bank_id: str, user_id: str) -> str | None:
        """Get the derived key for a bank the user has been granted.

        Lookup order: memory cache, persisted cache, collaborators. When the
        collaborators fail, a persisted entry is used even if expired.
        """
        cache_key = (user_id, bank_id)
        if cache_key in self._memory:
            return self._memory[cache_key]

        cached = self._load_cached_key(user_id, bank_id, honor_ttl=True)
        if cached is not None:
            self._memory[cache_key] = cached
            return cached

        try:
            if not self.grants.has_access(user_id, bank_id):
                return None
            derived_key = self.registry.derived_key(bank_id)
        except Exception:
            logger.warning(
                "Key lookup failed for bank %s; trying offline cache", bank_id, exc_info=True
            )
            return self._load_cached_key(user_id, bank_id, honor_ttl=False)

        if derived_key is None:
            return None

        self.remember(user_id, bank_id, derived_key)
        return derived_key

    def remember(self, user_id: str, bank_id: str, derived_key: str) -> None:
        """Cache a derived key in memory and in the per-user store."""
        self._memory[(user_id, bank_id)] = derived_key
        with self._session_factory() as session, session.begin():
            stmt = select(CachedBankKey).where(
                CachedBankKey.user_id == user_id, CachedBankKey.bank_id == bank_id
            )
            row = session.execute(stmt).scalar_one_or_none()
            if row is None:
                session.add(
                    CachedBankKey(user_id=user_id, bank_id=bank_id, derived_key=derived_key)
                )
            else:
                row.derived_key = derived_key
                row.cached_at = utc_now()

    def cached_keys(self, user_id: str) -> list[str]:
        """All cached keys for a user, memory first, without duplicates."""
        keys = [key for (uid, _), key in self._memory.items() if uid == user_id]
        with self._session_factory() as session:
            stmt = select(CachedBankKey).where(CachedBankKey.user_id == user_id)
            for row in session.execute(stmt).scalars():
                if self._is_fresh(row.cached_at):
                    keys.append(row.derived_key)
        return list(dict.fromkeys(keys))

    # --- Accessible banks ---

    def list_accessible_bank_ids(self, user_id: str) -> list[str]:
        """Bank ids the user was granted; cached list when the lookup fails."""
        try:
            bank_ids = list(self.grants.list_bank_ids(user_id))
        except Exception:
            logger.warning("Accessible bank lookup failed; using cached list", exc_info=True)
            return self._load_cached_accessible(user_id)

        with self._session_factory() as session, session.begin():
            session.execute(
                delete(CachedAccessibleBank).where(CachedAccessibleBank.user_id == user_id)
            )
            for bank_id in dict.fromkeys(bank_ids):
                session.add(CachedAccessibleBank(user_id=user_id, bank_id=bank_id))
        return bank_ids

    def refresh(self, user_id: str) -> int:
        """Re-fetch accessible banks and their keys (on sign-in or start-up).

        Returns:
            Number of keys cached.
        """
        cached = 0
        for bank_id in self.list_accessible_bank_ids(user_id):
            self._memory.pop((user_id, bank_id), None)
            try:
                derived_key = self.registry.derived_key(bank_id)
            except Exception:
                logger.warning("Could not refresh key for bank %s", bank_id, exc_info=True)
                continue
            if derived_key:
                self.remember(user_id, bank_id, derived_key)
                cached += 1
        logger.info("Refreshed %d bank keys for user %s", cached, user_id)
        return cached

    def clear(self, user_id: str | None = None) -> None:
        """Forget cached keys (logout). Without a user only memory is cleared."""
        if user_id is None:
            self._memory.clear()
            return
        for cache_key in [k for k in self._memory if k[0] == user_id]:
            del self._memory[cache_key]
        with self._session_factory() as session, session.begin():
            session.execute(delete(CachedBankKey).where(CachedBankKey.user_id == user_id))
            session.execute(
                delete(CachedAccessibleBank).where(CachedAccessibleBank.user_id == user_id)
            )

    # --- Internals ---

    def _is_fresh(self, cached_at) -> bool:
        if cached_at.tzinfo is None:
            # SQLite drops tzinfo on the way back
            cached_at = cached_at.replace(tzinfo=utc_now().tzinfo)
        return utc_now() - cached_at <= self.ttl

    def _load_cached_key(self, user_id: str, bank_id: str, honor_ttl: bool) -> str | None:
        with self._session_factory() as session:
            stmt = select(CachedBankKey).where(
                CachedBankKey.user_id == user_id, CachedBankKey.bank_id == bank_id
            )
            row = session.execute(stmt).scalar_one_or_none()
            if row is None:
                return None
            if honor_ttl and not self._is_fresh(row.cached_at):
                return None
            return row.derived_key

    def _load_cached_accessible(self, user_id: str) -> list[str]:
        with self._session_factory() as session:
            stmt = select(CachedAccessibleBank).where(CachedAccessibleBank.user_id == user_id)
            return [
                row.bank_id
                for row in session.execute(stmt).scalars()
                if self._is_fresh(row.cached_at)
            ]


# --- Import key candidates ---


class KeySource(StrEnum):
    SHARED = "shared"
    CACHED = "cached"
    HINTED = "hinted"
    ACCESSIBLE = "accessible"


@dataclass(frozen=True)
class KeyCandidate:
    source: KeySource
    key: str
    bank_id: str | None = None


def iter_key_candidates(
    key_service: KeyService,
    user: UserIdentity | None,
    filename: str,
) -> Iterator[KeyCandidate]:
    """Yield decryption keys in trial order, lazily.

    The shared fallback needs no identity and comes first. Asking for more
    candidates without a signed-in user raises DecryptionError with
    login_required set. Keys already yielded are skipped.

    Raises:
        DecryptionError: If identity is needed and no user is signed in.
    """
    seen: set[str] = set()

    def fresh(candidate: KeyCandidate) -> bool:
        if candidate.key in seen:
            return False
        seen.add(candidate.key)
        return True

    shared = KeyCandidate(KeySource.SHARED, SHARED_EXPORT_DISABLED_PASSWORD)
    if fresh(shared):
        yield shared

    if user is None:
        raise DecryptionError(
            "Login required to import encrypted banks. Please sign in and try again.",
            login_required=True,
        )

    for key in key_service.cached_keys(user.user_id):
        candidate = KeyCandidate(KeySource.CACHED, key)
        if fresh(candidate):
            yield candidate

    hinted_id = parse_bank_id_from_filename(filename)
    if hinted_id:
        key = key_service.get_derived_key(hinted_id, user.user_id)
        if key:
            candidate = KeyCandidate(KeySource.HINTED, key, hinted_id)
            if fresh(candidate):
                yield candidate

    for bank_id in key_service.list_accessible_bank_ids(user.user_id):
        key = key_service.get_derived_key(bank_id, user.user_id)
        if key:
            candidate = KeyCandidate(KeySource.ACCESSIBLE, key, bank_id)
            if fresh(candidate):
                yield candidate


__all__ = [
    "KeyService",
    "KeySource",
    "KeyCandidate",
    "iter_key_candidates",
    "parse_bank_id_from_filename",
]
