"""Correlation ids and start/success/error log entries around every call."""

from __future__ import annotations

import logging
import time
import uuid
from logging import LoggerAdapter
from typing import Any, Dict, Mapping, Optional

from ..core.logging import get_logger, log_event
from .base import API_KEY_PARAM, CallContext, Handler, OperationSpec, is_error_payload

_REDACTED = "***"


def redact_params(params: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of ``params`` safe to log: inline secrets are masked."""

    return {key: (_REDACTED if key == API_KEY_PARAM and value is not None else value) for key, value in params.items()}


class LoggingStage:
    """Outermost stage. Never alters the result or the raised exception."""

    def __init__(self, logger: Optional[LoggerAdapter] = None) -> None:
        self.logger = logger or get_logger(__name__)

    def wrap(self, spec: OperationSpec, handler: Handler) -> Handler:
        async def logged(params: Mapping[str, Any], context: CallContext) -> Dict[str, Any]:
            if context.correlation_id is None:
                context.correlation_id = uuid.uuid4().hex
            base_extra = {"correlation_id": context.correlation_id}
            log_event(self.logger, "operation.start", operation=spec.name, status="start", extra={**base_extra, "params": redact_params(params)})
            started = time.perf_counter()
            try:
                result = await handler(params, context)
            except BaseException as exc:
                log_event(
                    self.logger,
                    "operation.error",
                    operation=spec.name,
                    status="error",
                    level=logging.ERROR,
                    extra={
                        **base_extra,
                        "duration_ms": _elapsed_ms(started),
                        "code": getattr(exc, "code", None),
                        "error": f"{type(exc).__name__}: {exc}",
                    },
                )
                raise
            log_event(
                self.logger,
                "operation.success",
                operation=spec.name,
                status="rejected" if is_error_payload(result) else "ok",
                extra={
                    **base_extra,
                    "duration_ms": _elapsed_ms(started),
                    "credential_id": context.credential_id,
                    "code": result.get("code") if is_error_payload(result) else None,
                },
            )
            return result

        return logged


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
