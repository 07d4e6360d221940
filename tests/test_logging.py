from __future__ import annotations

import logging
from datetime import datetime, timezone

from storebridge.core.logging import PACKAGE_LOGGER, StructuredLogFormatter, configure_logging, get_logger, log_event
from storebridge.usage.recorder import UsageStatus


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("storebridge.test", logging.INFO, __file__, 1, "operation.success", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_orders_focus_keys_first():
    formatter = StructuredLogFormatter(use_color=False)

    line = formatter.format(_record(zeta="last", duration_ms=12.5, operation="app.upload", correlation_id="abc"))

    assert line.endswith("| correlation_id=abc operation=app.upload duration_ms=12.5 zeta=last")
    assert "| INFO | storebridge.test | operation.success" in line


def test_formatter_renders_collections_and_skips_none():
    formatter = StructuredLogFormatter(use_color=False)

    line = formatter.format(_record(params={"store": "pgyer"}, steps=["upload", "release"], empty=None))

    assert 'params={"store": "pgyer"}' in line
    assert "steps=[upload, release]" in line
    assert "empty=" not in line


def test_formatter_colourises_level_only():
    formatter = StructuredLogFormatter(use_color=True)

    line = formatter.format(_record())

    assert "\033[32mINFO\033[0m" in line


def test_log_event_merges_adapter_extras(caplog):
    logger = get_logger("storebridge.tests.logging", extra={"store_id": "huawei_agc", "ignored": None})

    with caplog.at_level(logging.INFO, logger="storebridge.tests.logging"):
        log_event(logger, "upload.start", operation="app.upload", status="start", extra={"attempt": 1, "blank": None})

    record = caplog.records[-1]
    assert record.getMessage() == "upload.start"
    assert record.store_id == "huawei_agc"
    assert record.operation == "app.upload"
    assert record.status == "start"
    assert record.attempt == 1
    assert not hasattr(record, "blank")
    assert not hasattr(record, "ignored")


def test_log_event_respects_level(caplog):
    logger = get_logger("storebridge.tests.levels")

    with caplog.at_level(logging.WARNING, logger="storebridge.tests.levels"):
        log_event(logger, "quiet", level=logging.INFO)
        log_event(logger, "loud", level=logging.ERROR)

    assert [record.getMessage() for record in caplog.records] == ["loud"]


def test_formatter_renders_enums_and_datetimes():
    formatter = StructuredLogFormatter(use_color=False)

    line = formatter.format(_record(status=UsageStatus.FAILED, reset_at=datetime(2025, 1, 1, tzinfo=timezone.utc)))

    assert "status=failed" in line
    assert "reset_at=2025-01-01T00:00:00+00:00" in line


def test_adapter_merges_call_extras_with_bound_extras(caplog):
    logger = get_logger("storebridge.tests.adapter", extra={"store_id": "vivo"})

    with caplog.at_level(logging.INFO, logger="storebridge.tests.adapter"):
        logger.info("Quota exhausted", extra={"credential_id": "key-1", "skipped": None})

    record = caplog.records[-1]
    assert record.store_id == "vivo"
    assert record.credential_id == "key-1"
    assert not hasattr(record, "skipped")


def test_configure_logging_installs_one_handler_until_forced():
    package = logging.getLogger(PACKAGE_LOGGER)

    configure_logging()
    configure_logging("DEBUG")
    named = [handler for handler in package.handlers if handler.get_name() == "storebridge.stderr"]
    assert len(named) == 1

    try:
        configure_logging("DEBUG", force=True)
        named_after = [handler for handler in package.handlers if handler.get_name() == "storebridge.stderr"]
        assert len(named_after) == 1
        assert named_after[0] is not named[0]
        assert package.level == logging.DEBUG
    finally:
        configure_logging("INFO", force=True)
