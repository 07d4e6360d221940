"""
Usage event recording.

One event per completed call attempt, on every path. Recording must never
change the outcome of the call it describes, so persistence failures are
logged and swallowed here.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..auth.records import utcnow
from ..auth.store import CredentialStore
from ..core.logging import get_logger

_LOGGER = get_logger(__name__)


class UsageStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class UsageEvent:
    """Immutable audit record of one call attempt."""

    event_id: str
    operation: str
    status: UsageStatus
    duration_ms: int
    created_at: datetime
    credential_id: Optional[str] = None
    store_id: Optional[str] = None
    app_id: Optional[str] = None
    payload_size: Optional[int] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        payload["created_at"] = self.created_at.isoformat()
        return payload


class UsageRecorder:
    """Append usage events to a :class:`CredentialStore`."""

    def __init__(self, store: CredentialStore, *, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self.clock = clock

    async def record_event(
        self,
        *,
        operation: str,
        status: UsageStatus,
        duration_ms: int = 0,
        credential_id: Optional[str] = None,
        store_id: Optional[str] = None,
        app_id: Optional[str] = None,
        payload_size: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> Optional[UsageEvent]:
        """Persist one event. Returns ``None`` if persistence failed."""

        event = UsageEvent(
            event_id=f"evt_{uuid.uuid4().hex}",
            operation=operation,
            status=status,
            duration_ms=max(0, int(duration_ms)),
            created_at=self.clock(),
            credential_id=credential_id,
            store_id=store_id,
            app_id=app_id,
            payload_size=payload_size,
            error_message=error_message,
        )
        try:
            await self.store.append_event(event)
        except Exception as exc:  # noqa: BLE001 - recording must not fail the call
            _LOGGER.warning(
                "Failed to record usage event",
                extra={"operation": operation, "credential_id": credential_id, "error": str(exc)},
            )
            return None
        return event

    async def list_events(self, *, credential_id: Optional[str] = None) -> List[UsageEvent]:
        return await self.store.list_events(key_id=credential_id)

    async def summarize(self, *, credential_id: Optional[str] = None) -> Dict[str, Dict[str, int]]:
        """Per-operation counts of successes and failures plus total duration."""

        summary: Dict[str, Dict[str, int]] = defaultdict(lambda: {"success": 0, "failed": 0, "duration_ms": 0})
        for event in await self.list_events(credential_id=credential_id):
            bucket = summary[event.operation]
            bucket[event.status.value] += 1
            bucket["duration_ms"] += event.duration_ms
        return dict(summary)
