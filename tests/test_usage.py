from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from storebridge.usage import UsageRecorder, UsageStatus


@pytest.mark.asyncio
async def test_record_event_persists_immutable_event(credential_store, clock):
    recorder = UsageRecorder(credential_store, clock=clock)

    event = await recorder.record_event(
        operation="app.upload",
        status=UsageStatus.SUCCESS,
        duration_ms=120,
        credential_id="key_a",
        store_id="pgyer",
        app_id="demo",
        payload_size=2048,
    )

    assert event is not None
    assert event.event_id.startswith("evt_")
    assert event.created_at == clock.now
    assert await recorder.list_events() == [event]
    assert await recorder.list_events(credential_id="key_b") == []
    with pytest.raises(AttributeError):
        event.status = UsageStatus.FAILED  # type: ignore[misc]
    payload = event.to_dict()
    assert payload["status"] == "success"
    assert payload["created_at"] == clock.now.isoformat()


@pytest.mark.asyncio
async def test_negative_durations_are_clamped(credential_store):
    recorder = UsageRecorder(credential_store)

    event = await recorder.record_event(operation="app.status", status=UsageStatus.FAILED, duration_ms=-5)

    assert event.duration_ms == 0


@pytest.mark.asyncio
async def test_persistence_failure_is_swallowed(credential_store):
    credential_store.append_event = AsyncMock(side_effect=RuntimeError("disk full"))
    recorder = UsageRecorder(credential_store)

    event = await recorder.record_event(operation="app.status", status=UsageStatus.SUCCESS)

    assert event is None


@pytest.mark.asyncio
async def test_summarize_counts_per_operation(credential_store):
    recorder = UsageRecorder(credential_store)
    await recorder.record_event(operation="app.upload", status=UsageStatus.SUCCESS, duration_ms=10, credential_id="key_a")
    await recorder.record_event(operation="app.upload", status=UsageStatus.FAILED, duration_ms=5, credential_id="key_a")
    await recorder.record_event(operation="app.status", status=UsageStatus.SUCCESS, duration_ms=1)

    summary = await recorder.summarize()

    assert summary["app.upload"] == {"success": 1, "failed": 1, "duration_ms": 15}
    assert summary["app.status"] == {"success": 1, "failed": 0, "duration_ms": 1}
    assert set(await recorder.summarize(credential_id="key_a")) == {"app.upload"}
