"""
Structured logging for StoreBridge.

Modules obtain loggers through :func:`get_logger`. Output goes through one
stderr handler attached to the ``storebridge`` package logger and reads::

    2025-01-01 12:00:00 | INFO | storebridge.pipeline.logging | operation.success | correlation_id=... operation=app.upload status=ok duration_ms=812

Call identity (``correlation_id``, ``operation``, ``store_id``) travels in the
extras, never in the message, so one call can be followed with a single grep.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from copy import copy
from datetime import datetime
from enum import Enum
from logging import LoggerAdapter
from typing import Any, Iterable, Mapping, MutableMapping, Optional, Sequence

PACKAGE_LOGGER = "storebridge"
DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LEVEL = "INFO"
_HANDLER_NAME = "storebridge.stderr"
_ENV_LEVEL = "STOREBRIDGE_LOG_LEVEL"
_ENV_COLOR = "STOREBRIDGE_LOG_COLOR"

# Call identity first, then outcome, then wire detail.
_FOCUS_ORDER: Sequence[str] = (
    "correlation_id",
    "operation",
    "store_id",
    "credential_id",
    "status",
    "code",
    "duration_ms",
    "attempt",
    "delay_s",
    "method",
    "url",
    "status_code",
)

_LEVEL_COLOURS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[95m",
}
_RESET = "\033[0m"

_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


def _resolve_level(level: Optional[int | str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName((level or os.getenv(_ENV_LEVEL) or DEFAULT_LEVEL).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _wants_colour(stream: Any) -> bool:
    preference = (os.getenv(_ENV_COLOR) or "auto").strip().lower()
    if preference in {"1", "true", "yes", "on"}:
        return True
    if preference in {"0", "false", "no", "off"}:
        return False
    return bool(getattr(stream, "isatty", None) and stream.isatty())


def _extras(record: logging.LogRecord) -> Iterable[tuple[str, Any]]:
    payload = {key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS and not key.startswith("_") and value is not None}
    for key in _FOCUS_ORDER:
        if key in payload:
            yield key, payload.pop(key)
    yield from sorted(payload.items())


def _render(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return json.dumps(value, ensure_ascii=False, default=str)
    if isinstance(value, (list, tuple, set, frozenset)):
        return "[" + ", ".join(_render(item) for item in value) + "]"
    if isinstance(value, float):
        return f"{value:.4g}"
    return str(value)


class StructuredLogFormatter(logging.Formatter):
    """Pipe-separated prefix followed by ``key=value`` extras in focus order."""

    def __init__(self, *, use_color: bool = False) -> None:
        super().__init__(DEFAULT_FORMAT, datefmt=DEFAULT_DATE_FORMAT)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        working = copy(record)
        if self.use_color and record.levelname in _LEVEL_COLOURS:
            working.levelname = f"{_LEVEL_COLOURS[record.levelname]}{record.levelname}{_RESET}"
        line = super().format(working)
        extras = " ".join(f"{key}={_render(value)}" for key, value in _extras(record))
        return f"{line} | {extras}" if extras else line


class StructuredAdapter(LoggerAdapter):
    """Adapter whose bound extras are merged with, not replaced by, per-call ``extra``."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        merged = dict(self.extra or {})
        merged.update({key: value for key, value in (kwargs.get("extra") or {}).items() if value is not None})
        kwargs["extra"] = merged
        return msg, kwargs


def configure_logging(level: Optional[int | str] = None, *, force: bool = False) -> None:
    """
    Attach the stderr handler to the ``storebridge`` logger.

    Parameters
    ----------
    level:
        Level name or number. Falls back to ``STOREBRIDGE_LOG_LEVEL``, then ``INFO``.
    force:
        Replace an already installed handler and reapply the level.
    """

    package = logging.getLogger(PACKAGE_LOGGER)
    installed = [handler for handler in package.handlers if handler.get_name() == _HANDLER_NAME]
    if installed and not force:
        return
    for handler in installed:
        package.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(StructuredLogFormatter(use_color=_wants_colour(handler.stream)))
    package.addHandler(handler)
    package.setLevel(_resolve_level(level))


def get_logger(name: str, *, extra: Optional[Mapping[str, object]] = None) -> StructuredAdapter:
    """
    Return a logger bound to ``extra``.

    Parameters
    ----------
    name:
        Logger namespace, usually ``__name__`` or ``module.ClassName``.
    extra:
        Fields stamped on every entry, such as ``store_id``. ``None`` values are dropped.
    """

    configure_logging()
    bound = {key: value for key, value in (extra or {}).items() if value is not None}
    return StructuredAdapter(logging.getLogger(name), bound)


def log_event(
    logger: LoggerAdapter,
    message: str,
    *,
    operation: Optional[str] = None,
    status: Optional[str] = None,
    level: int = logging.INFO,
    extra: Optional[Mapping[str, object]] = None,
) -> None:
    """Emit one step of an operation with its ``operation`` and ``status`` fields set."""

    payload: MutableMapping[str, object] = {key: value for key, value in dict(logger.extra or {}).items() if value is not None}
    payload.update({key: value for key, value in (extra or {}).items() if value is not None})
    if operation:
        payload["operation"] = operation
    if status:
        payload["status"] = status
    logger.logger.log(level, message, extra=payload or None)
