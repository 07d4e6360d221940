"""
Credential and usage persistence.

:class:`CredentialStore` is the narrow interface the key, quota and usage
services depend on. All access is asynchronous since a real backing store
(database, key-value service) is a suspension point. Read-modify-write of a
record goes through :meth:`CredentialStore.locked`, which serialises writers per
credential.
"""

from __future__ import annotations

import asyncio
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import replace
from typing import TYPE_CHECKING, AsyncIterator, Dict, Iterable, List, Optional, Protocol

from .records import CredentialRecord

if TYPE_CHECKING:
    from ..usage.recorder import UsageEvent


class DuplicateKeyError(ValueError):
    """Raised when inserting a record whose secret hash is already stored."""


class CredentialStore(Protocol):
    async def insert(self, record: CredentialRecord) -> None: ...

    async def get(self, key_id: str) -> Optional[CredentialRecord]: ...

    async def find_by_hash(self, key_hash: str) -> Optional[CredentialRecord]: ...

    def locked(self, key_id: str) -> AbstractAsyncContextManager[Optional[CredentialRecord]]:
        """
        Async context manager yielding the live record for ``key_id`` under an
        exclusive per-credential lock. Mutations are persisted on exit.
        """

    async def append_event(self, event: "UsageEvent") -> None: ...

    async def list_events(self, *, key_id: Optional[str] = None) -> List["UsageEvent"]: ...


class InMemoryCredentialStore(CredentialStore):
    """Process-local store. Reads return copies; only :meth:`locked` exposes the live record."""

    def __init__(self, records: Iterable[CredentialRecord] = ()) -> None:
        self._records: Dict[str, CredentialRecord] = {}
        self._by_hash: Dict[str, str] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._events: List["UsageEvent"] = []
        for record in records:
            self._add(record)

    def _add(self, record: CredentialRecord) -> None:
        existing = self._by_hash.get(record.key_hash)
        if existing is not None and existing != record.key_id:
            raise DuplicateKeyError(f"A credential with the same secret hash already exists ({existing}).")
        if record.key_id in self._records and existing is None:
            raise DuplicateKeyError(f"Credential id '{record.key_id}' already exists.")
        self._records[record.key_id] = record
        self._by_hash[record.key_hash] = record.key_id

    async def insert(self, record: CredentialRecord) -> None:
        self._add(replace(record))

    async def get(self, key_id: str) -> Optional[CredentialRecord]:
        record = self._records.get(key_id)
        return replace(record) if record is not None else None

    async def find_by_hash(self, key_hash: str) -> Optional[CredentialRecord]:
        key_id = self._by_hash.get(key_hash)
        return await self.get(key_id) if key_id is not None else None

    @asynccontextmanager
    async def locked(self, key_id: str) -> AsyncIterator[Optional[CredentialRecord]]:
        lock = self._locks.setdefault(key_id, asyncio.Lock())
        async with lock:
            yield self._records.get(key_id)

    async def append_event(self, event: "UsageEvent") -> None:
        self._events.append(event)

    async def list_events(self, *, key_id: Optional[str] = None) -> List["UsageEvent"]:
        if key_id is None:
            return list(self._events)
        return [event for event in self._events if event.credential_id == key_id]
