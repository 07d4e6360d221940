"""
Rolling usage quotas per credential.

Each credential has two counters per window: every call counts against the
plan's call ceiling, and publish-class calls also count against the publish
ceiling. When the current time reaches ``quota_resets_at`` both counters reset
and the reset time moves forward by whole windows.

The request pipeline uses :meth:`QuotaManager.reserve` and
:meth:`QuotaManager.release`: the check and the increment happen together under
the credential's lock, and a failed call hands its slot back. Concurrent calls
on one credential therefore can never be admitted past the ceiling.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, FrozenSet, Iterable, Mapping, Optional

from ..auth.records import CredentialRecord, Plan, utcnow
from ..auth.store import CredentialStore
from ..core.logging import get_logger

UNLIMITED = -1
PUBLISH_OPERATIONS: FrozenSet[str] = frozenset({"app.upload", "app.publish"})

_LOGGER = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PlanLimits:
    """Per-window ceilings; ``-1`` means unlimited."""

    publish_limit: int
    call_limit: int


PLAN_LIMITS: Mapping[Plan, PlanLimits] = {
    Plan.FREE: PlanLimits(publish_limit=10, call_limit=1000),
    Plan.PRO: PlanLimits(publish_limit=200, call_limit=10000),
    Plan.TEAM: PlanLimits(publish_limit=500, call_limit=50000),
    Plan.ENTERPRISE: PlanLimits(publish_limit=UNLIMITED, call_limit=UNLIMITED),
}


@dataclass(frozen=True, slots=True)
class QuotaDecision:
    """
    Outcome of a quota check. Never persisted.

    ``remaining`` is the smallest allowance left among the counters that apply
    to the operation, or ``None`` when none of them is bounded.
    """

    allowed: bool
    remaining: Optional[int] = None
    reset_at: Optional[datetime] = None


def _left(limit: int, used: int) -> Optional[int]:
    if limit == UNLIMITED:
        return None
    return max(0, limit - used)


def _min_defined(*values: Optional[int]) -> Optional[int]:
    defined = [value for value in values if value is not None]
    return min(defined) if defined else None


def build_plan_limits(overrides: Optional[Mapping[str, Mapping[str, int]]] = None) -> Dict[Plan, PlanLimits]:
    """Apply ``{plan: {publish_limit, call_limit}}`` overrides to the default table."""

    limits = dict(PLAN_LIMITS)
    for plan_name, values in (overrides or {}).items():
        plan = Plan(plan_name)
        base = limits[plan]
        limits[plan] = PlanLimits(
            publish_limit=int(values.get("publish_limit", base.publish_limit)),
            call_limit=int(values.get("call_limit", base.call_limit)),
        )
    return limits


class QuotaManager:
    """
    Check, consume and roll over per-credential quotas.

    Parameters
    ----------
    store:
        Credential persistence; all mutation goes through its per-credential lock.
    window:
        Fixed quota window length.
    plan_limits:
        Ceilings per plan. Defaults to :data:`PLAN_LIMITS`.
    publish_operations:
        Operation names counted against the publish ceiling.
    clock:
        Source of the current time (UTC).
    """

    def __init__(
        self,
        store: CredentialStore,
        *,
        window: timedelta = timedelta(days=30),
        plan_limits: Optional[Mapping[Plan, PlanLimits]] = None,
        publish_operations: Iterable[str] = PUBLISH_OPERATIONS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if window <= timedelta(0):
            raise ValueError("Quota window must be positive.")
        self.store = store
        self.window = window
        self.plan_limits: Mapping[Plan, PlanLimits] = dict(plan_limits or PLAN_LIMITS)
        self.publish_operations: FrozenSet[str] = frozenset(publish_operations)
        self.clock = clock

    def limits_for(self, plan: Plan) -> PlanLimits:
        return self.plan_limits[plan]

    def is_publish_operation(self, operation: str) -> bool:
        return operation in self.publish_operations

    def _roll_over(self, record: CredentialRecord, now: datetime) -> bool:
        if now < record.quota_resets_at:
            return False
        elapsed_windows = (now - record.quota_resets_at) // self.window + 1
        record.quota_resets_at = record.quota_resets_at + self.window * elapsed_windows
        record.publish_count = 0
        record.call_count = 0
        _LOGGER.debug("Quota window rolled over", extra={"credential_id": record.key_id, "reset_at": record.quota_resets_at.isoformat()})
        return True

    def _evaluate(self, record: CredentialRecord, operation: str) -> QuotaDecision:
        limits = self.limits_for(record.plan)
        calls_left = _left(limits.call_limit, record.call_count)
        publish_left = _left(limits.publish_limit, record.publish_count) if self.is_publish_operation(operation) else None
        remaining = _min_defined(calls_left, publish_left)
        allowed = remaining is None or remaining > 0
        return QuotaDecision(allowed=allowed, remaining=remaining, reset_at=record.quota_resets_at)

    def _consume(self, record: CredentialRecord, operation: str) -> None:
        record.call_count += 1
        if self.is_publish_operation(operation):
            record.publish_count += 1

    async def reset_quotas_if_needed(self, key_id: str) -> bool:
        """Roll the window forward if it has elapsed. Returns ``True`` when a reset happened."""

        async with self.store.locked(key_id) as record:
            if record is None:
                return False
            return self._roll_over(record, self.clock())

    async def check_quota(self, key_id: str, operation: str) -> QuotaDecision:
        """Roll over if needed, then report whether ``operation`` would be admitted."""

        async with self.store.locked(key_id) as record:
            if record is None:
                return QuotaDecision(allowed=False)
            self._roll_over(record, self.clock())
            return self._evaluate(record, operation)

    async def increment_usage(self, key_id: str, operation: str) -> None:
        async with self.store.locked(key_id) as record:
            if record is None:
                return
            self._roll_over(record, self.clock())
            self._consume(record, operation)

    async def reserve(self, key_id: str, operation: str) -> QuotaDecision:
        """
        Atomically roll over, check and consume one unit of quota.

        The returned decision's ``remaining`` accounts for this call. Pair a
        granted reservation with :meth:`release` when the call fails.
        """

        async with self.store.locked(key_id) as record:
            if record is None:
                return QuotaDecision(allowed=False)
            self._roll_over(record, self.clock())
            decision = self._evaluate(record, operation)
            if not decision.allowed:
                return decision
            self._consume(record, operation)
            remaining = decision.remaining - 1 if decision.remaining is not None else None
            return QuotaDecision(allowed=True, remaining=remaining, reset_at=record.quota_resets_at)

    async def release(self, key_id: str, operation: str, reservation: QuotaDecision) -> None:
        """Refund a reservation. A no-op once the window it was taken in has ended."""

        async with self.store.locked(key_id) as record:
            if record is None or record.quota_resets_at != reservation.reset_at:
                return
            record.call_count = max(0, record.call_count - 1)
            if self.is_publish_operation(operation):
                record.publish_count = max(0, record.publish_count - 1)
