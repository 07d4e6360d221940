"""
API key lifecycle: generation, validation, revocation and lookup.

Keys look like ``sk-storebridge-<plan>-<32 hex>``. Only the SHA-256 digest of a
key is stored, so a lost key cannot be recovered, only revoked and replaced.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..core.logging import get_logger
from .records import CredentialRecord, Plan, utcnow
from .store import CredentialStore

KEY_PREFIX = "sk-storebridge"
DEFAULT_QUOTA_WINDOW = timedelta(days=30)

_LOGGER = get_logger(__name__)


def hash_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class GeneratedKey:
    """A freshly generated key. ``api_key`` is shown once and never stored."""

    api_key: str
    key_id: str
    plan: Plan
    key_hash: str


@dataclass(frozen=True, slots=True)
class KeyValidation:
    valid: bool
    key_id: Optional[str] = None
    plan: Optional[Plan] = None


_INVALID = KeyValidation(valid=False)


class ApiKeyManager:
    """
    Issue and check API keys against a :class:`CredentialStore`.

    Parameters
    ----------
    store:
        Persistence for credential records.
    quota_window:
        Length of the first quota window for new keys.
    clock:
        Source of the current time (UTC); injectable for tests.
    """

    def __init__(
        self,
        store: CredentialStore,
        *,
        quota_window: timedelta = DEFAULT_QUOTA_WINDOW,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.quota_window = quota_window
        self.clock = clock

    async def generate_key(self, plan: Plan | str, *, email: Optional[str] = None, user_id: Optional[str] = None) -> GeneratedKey:
        tier = Plan(plan)
        api_key = f"{KEY_PREFIX}-{tier.value}-{secrets.token_hex(16)}"
        key_id = f"key_{secrets.token_hex(8)}"
        now = self.clock()
        record = CredentialRecord(
            key_id=key_id,
            key_hash=hash_key(api_key),
            plan=tier,
            quota_resets_at=now + self.quota_window,
            user_id=user_id,
            email=email,
            created_at=now,
        )
        await self.store.insert(record)
        _LOGGER.info("API key generated", extra={"credential_id": key_id, "plan": tier.value})
        return GeneratedKey(api_key=api_key, key_id=key_id, plan=tier, key_hash=record.key_hash)

    async def provision(
        self,
        *,
        key_id: str,
        key_hash: str,
        plan: Plan | str,
        email: Optional[str] = None,
        user_id: Optional[str] = None,
        active: bool = True,
    ) -> CredentialRecord:
        """Register a key created out-of-band, known only by its hash."""

        now = self.clock()
        record = CredentialRecord(
            key_id=key_id,
            key_hash=key_hash.lower(),
            plan=Plan(plan),
            quota_resets_at=now + self.quota_window,
            user_id=user_id,
            email=email,
            created_at=now,
            is_active=active,
        )
        await self.store.insert(record)
        return record

    async def validate_key(self, api_key: str) -> KeyValidation:
        """
        Resolve a presented key to its credential.

        Unknown and revoked keys yield the same invalid result. A successful
        validation refreshes ``last_used_at``.
        """

        if not api_key:
            return _INVALID
        found = await self.store.find_by_hash(hash_key(api_key))
        if found is None:
            return _INVALID
        async with self.store.locked(found.key_id) as record:
            if record is None or not record.is_active:
                return _INVALID
            record.last_used_at = self.clock()
            return KeyValidation(valid=True, key_id=record.key_id, plan=record.plan)

    async def revoke_key(self, key_id: str) -> bool:
        async with self.store.locked(key_id) as record:
            if record is None or not record.is_active:
                return False
            record.is_active = False
        _LOGGER.info("API key revoked", extra={"credential_id": key_id})
        return True

    async def get_key_info(self, key_id: str) -> Optional[CredentialRecord]:
        return await self.store.get(key_id)
