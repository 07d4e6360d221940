from __future__ import annotations

import pytest

from storebridge.adapters.rate_limit import DEFAULT_LIMITS, STORE_LIMITS, TokenBucket, create_rate_limiter


class Ticker:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_bucket_drains_and_refills():
    ticker = Ticker()
    bucket = TokenBucket(capacity=2, refill_per_second=1, clock=ticker)

    assert bucket.try_acquire() is True
    assert bucket.try_acquire() is True
    assert bucket.try_acquire() is False

    ticker.now = 1.0
    assert bucket.try_acquire() is True
    assert bucket.try_acquire() is False


def test_refill_never_exceeds_capacity():
    ticker = Ticker()
    bucket = TokenBucket(capacity=3, refill_per_second=10, clock=ticker)

    ticker.now = 60.0
    bucket.try_acquire()

    assert bucket.tokens == 2


@pytest.mark.asyncio
async def test_acquire_waits_for_a_token(monkeypatch):
    ticker = Ticker()
    bucket = TokenBucket(capacity=1, refill_per_second=2, clock=ticker)
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)
        ticker.now += delay

    monkeypatch.setattr("storebridge.adapters.rate_limit.asyncio.sleep", fake_sleep)

    await bucket.acquire()
    await bucket.acquire()

    assert sleeps == [0.5]


def test_limits_per_store():
    assert create_rate_limiter("huawei_agc").capacity == STORE_LIMITS["huawei_agc"].capacity
    assert create_rate_limiter("vivo").refill_per_second == DEFAULT_LIMITS.refill_per_second
