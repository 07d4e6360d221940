from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from storebridge.auth import CredentialRecord, InMemoryCredentialStore, Plan
from storebridge.usage import PLAN_LIMITS, UNLIMITED, PlanLimits, QuotaManager, build_plan_limits

WINDOW = timedelta(days=30)


def _store(clock, plan: Plan = Plan.FREE) -> InMemoryCredentialStore:
    return InMemoryCredentialStore([CredentialRecord(key_id="key_a", key_hash="h", plan=plan, quota_resets_at=clock.now + WINDOW)])


def _manager(store, clock, *, publish_limit: int = 2, call_limit: int = 100) -> QuotaManager:
    limits = dict(PLAN_LIMITS)
    limits[Plan.FREE] = PlanLimits(publish_limit=publish_limit, call_limit=call_limit)
    return QuotaManager(store, window=WINDOW, plan_limits=limits, clock=clock)


@pytest.mark.asyncio
async def test_exactly_k_sequential_publishes_admitted(clock):
    store = _store(clock)
    quota = _manager(store, clock)

    first = await quota.reserve("key_a", "app.upload")
    second = await quota.reserve("key_a", "app.upload")
    third = await quota.reserve("key_a", "app.upload")

    assert (first.allowed, first.remaining) == (True, 1)
    assert (second.allowed, second.remaining) == (True, 0)
    assert (third.allowed, third.remaining) == (False, 0)
    assert third.reset_at == clock.now + WINDOW


@pytest.mark.asyncio
async def test_concurrent_reservations_never_exceed_ceiling(clock):
    store = _store(clock)
    quota = _manager(store, clock, publish_limit=5)

    decisions = await asyncio.gather(*(quota.reserve("key_a", "app.publish") for _ in range(20)))

    assert sum(decision.allowed for decision in decisions) == 5
    assert (await store.get("key_a")).publish_count == 5


@pytest.mark.asyncio
async def test_release_refunds_within_the_same_window(clock):
    store = _store(clock)
    quota = _manager(store, clock)

    reservation = await quota.reserve("key_a", "app.upload")
    await quota.release("key_a", "app.upload", reservation)

    record = await store.get("key_a")
    assert (record.publish_count, record.call_count) == (0, 0)


@pytest.mark.asyncio
async def test_release_after_rollover_is_a_no_op(clock):
    store = _store(clock)
    quota = _manager(store, clock)

    reservation = await quota.reserve("key_a", "app.upload")
    clock.advance(WINDOW)
    await quota.reserve("key_a", "app.status")
    await quota.release("key_a", "app.upload", reservation)

    record = await store.get("key_a")
    assert (record.publish_count, record.call_count) == (0, 1)


@pytest.mark.asyncio
async def test_read_calls_do_not_touch_publish_counter(clock):
    store = _store(clock)
    quota = _manager(store, clock, publish_limit=1)

    for _ in range(3):
        assert (await quota.reserve("key_a", "app.status")).allowed

    record = await store.get("key_a")
    assert (record.publish_count, record.call_count) == (0, 3)
    assert (await quota.check_quota("key_a", "app.upload")).allowed is True


@pytest.mark.asyncio
async def test_call_ceiling_applies_to_every_operation(clock):
    store = _store(clock)
    quota = _manager(store, clock, publish_limit=10, call_limit=2)

    await quota.increment_usage("key_a", "app.status")
    await quota.increment_usage("key_a", "app.status")

    decision = await quota.check_quota("key_a", "app.upload")
    assert decision.allowed is False
    assert decision.remaining == 0


@pytest.mark.asyncio
async def test_boundary_call_sees_fresh_window(clock):
    store = _store(clock)
    quota = _manager(store, clock, publish_limit=1)
    await quota.increment_usage("key_a", "app.upload")
    assert (await quota.check_quota("key_a", "app.upload")).allowed is False

    clock.advance(WINDOW)
    decision = await quota.check_quota("key_a", "app.upload")

    assert decision.allowed is True
    assert decision.reset_at == clock.now + WINDOW


@pytest.mark.asyncio
async def test_reset_advances_by_whole_windows_and_is_idempotent(clock):
    store = _store(clock)
    quota = _manager(store, clock)
    original_reset = (await store.get("key_a")).quota_resets_at
    await quota.increment_usage("key_a", "app.upload")

    clock.advance(WINDOW * 2 + timedelta(days=3))

    assert await quota.reset_quotas_if_needed("key_a") is True
    assert await quota.reset_quotas_if_needed("key_a") is False
    record = await store.get("key_a")
    assert record.quota_resets_at == original_reset + WINDOW * 2
    assert (record.publish_count, record.call_count) == (0, 0)


@pytest.mark.asyncio
async def test_enterprise_plan_is_unbounded(clock):
    store = _store(clock, plan=Plan.ENTERPRISE)
    quota = QuotaManager(store, window=WINDOW, clock=clock)

    decision = await quota.reserve("key_a", "app.publish")

    assert decision.allowed is True
    assert decision.remaining is None


@pytest.mark.asyncio
async def test_unknown_credential_is_denied(clock, credential_store):
    quota = QuotaManager(credential_store, clock=clock)

    assert (await quota.check_quota("key_missing", "app.status")).allowed is False
    assert await quota.reset_quotas_if_needed("key_missing") is False


def test_plan_overrides_merge_with_defaults():
    limits = build_plan_limits({"free": {"publish_limit": 3}, "enterprise": {"call_limit": 5}})

    assert limits[Plan.FREE] == PlanLimits(publish_limit=3, call_limit=PLAN_LIMITS[Plan.FREE].call_limit)
    assert limits[Plan.ENTERPRISE] == PlanLimits(publish_limit=UNLIMITED, call_limit=5)
    assert limits[Plan.PRO] == PLAN_LIMITS[Plan.PRO]


def test_window_must_be_positive(credential_store):
    with pytest.raises(ValueError):
        QuotaManager(credential_store, window=timedelta(0))
