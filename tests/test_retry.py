from __future__ import annotations

import pytest

from storebridge.adapters.base import StoreAPIError
from storebridge.adapters.retry import RetryPolicy, is_retryable, run_with_retry


def _flaky(failures: int, *, retryable: bool = True):
    calls = {"count": 0}

    async def operation() -> str:
        calls["count"] += 1
        if calls["count"] <= failures:
            raise StoreAPIError("temporary", store_id="pgyer", code="STORE_API_ERROR", status_code=503, retryable=retryable)
        return "ok"

    return operation, calls


@pytest.mark.asyncio
async def test_retry_succeeds_when_failures_below_ceiling(fast_retry):
    operation, calls = _flaky(2)

    assert await run_with_retry(operation, "test.flaky", policy=fast_retry) == "ok"
    assert calls["count"] == 3


@pytest.mark.asyncio
async def test_retry_propagates_after_ceiling(fast_retry):
    operation, calls = _flaky(3)

    with pytest.raises(StoreAPIError) as excinfo:
        await run_with_retry(operation, "test.flaky", policy=fast_retry)

    assert calls["count"] == 3
    assert excinfo.value.code == "STORE_API_ERROR"
    assert excinfo.value.retryable is True


@pytest.mark.asyncio
async def test_non_retryable_error_is_not_repeated(fast_retry):
    operation, calls = _flaky(1, retryable=False)

    with pytest.raises(StoreAPIError):
        await run_with_retry(operation, "test.flaky", policy=fast_retry)

    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_foreign_exceptions_propagate_immediately(fast_retry):
    calls = {"count": 0}

    async def broken() -> None:
        calls["count"] += 1
        raise KeyError("missing")

    with pytest.raises(KeyError):
        await run_with_retry(broken, "test.broken", policy=fast_retry)

    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_single_attempt_policy_never_retries():
    operation, calls = _flaky(1)

    with pytest.raises(StoreAPIError):
        await run_with_retry(operation, "test.flaky", policy=RetryPolicy(max_attempts=1, base_delay=0, max_delay=0, jitter=0))

    assert calls["count"] == 1


def test_is_retryable_only_for_flagged_store_errors():
    assert is_retryable(StoreAPIError("x", store_id="vivo", code="TIMEOUT", retryable=True))
    assert not is_retryable(StoreAPIError("x", store_id="vivo", code="AUTH_EXPIRED"))
    assert not is_retryable(TimeoutError("x"))
