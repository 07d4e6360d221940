"""
API key validation, quota enforcement and usage recording around a handler.

Every terminal path records exactly one usage event:

============================  =========  ===========================
path                          status     handler runs
============================  =========  ===========================
anonymous call                outcome    yes
missing key, auth required    failed     no (``UNAUTHORIZED``)
malformed or revoked key      failed     no (``UNAUTHORIZED``)
quota exhausted               failed     no (``QUOTA_EXCEEDED``)
valid key                     outcome    yes
============================  =========  ===========================

A handler that raises is recorded as failed, its quota reservation is handed
back, and the exception propagates unchanged. A handler that returns normally
is a success, whatever its payload says.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Mapping, Optional

from ..auth.keys import ApiKeyManager
from ..core.logging import get_logger
from ..usage.quota import QuotaDecision, QuotaManager
from ..usage.recorder import UsageRecorder, UsageStatus
from .base import API_KEY_PARAM, CallContext, Handler, OperationSpec, error_payload

_LOGGER = get_logger(__name__)

API_KEY_REQUIRED = "API key required"
INVALID_API_KEY = "Invalid API key"
QUOTA_EXCEEDED = "Quota exceeded"


def _optional_str(value: Any) -> Optional[str]:
    return str(value) if value not in (None, "") else None


class ApiKeyStage:
    """
    Authenticate the caller and meter the call against its plan.

    Parameters
    ----------
    keys:
        Validates presented keys.
    quota:
        Reserves and refunds quota atomically per credential.
    usage:
        Receives one usage event per call.
    fallback_api_key:
        Ambient key used when the call carries no ``api_key`` parameter.
    """

    def __init__(
        self,
        keys: ApiKeyManager,
        quota: QuotaManager,
        usage: UsageRecorder,
        *,
        fallback_api_key: Optional[str] = None,
    ) -> None:
        self.keys = keys
        self.quota = quota
        self.usage = usage
        self.fallback_api_key = fallback_api_key

    def _presented_key(self, params: Mapping[str, Any]) -> Any:
        """
        Key the call presents, or ``None`` when it presents none.

        An inline value other than ``None`` always wins, even when it is empty
        or not a string; the fallback only applies when the parameter is absent.
        """

        inline = params.get(API_KEY_PARAM)
        if inline is not None:
            return inline
        return self.fallback_api_key or None

    async def _record(
        self,
        spec: OperationSpec,
        params: Mapping[str, Any],
        context: CallContext,
        status: UsageStatus,
        *,
        duration_ms: int = 0,
        error_message: Optional[str] = None,
    ) -> None:
        await self.usage.record_event(
            operation=spec.name,
            status=status,
            duration_ms=duration_ms,
            credential_id=context.credential_id,
            store_id=_optional_str(params.get("store")),
            app_id=_optional_str(params.get("app_id")),
            payload_size=context.payload_size,
            error_message=error_message,
        )

    async def _execute(
        self,
        spec: OperationSpec,
        handler: Handler,
        params: Mapping[str, Any],
        context: CallContext,
        reservation: Optional[QuotaDecision],
    ) -> Dict[str, Any]:
        started = time.perf_counter()
        try:
            result = await handler(params, context)
        except BaseException as exc:
            duration_ms = int((time.perf_counter() - started) * 1000)
            if reservation is not None and context.credential_id is not None:
                try:
                    await self.quota.release(context.credential_id, spec.name, reservation)
                except Exception as release_exc:
                    _LOGGER.warning(
                        "Quota refund failed",
                        extra={"credential_id": context.credential_id, "operation": spec.name, "error": f"{type(release_exc).__name__}: {release_exc}"},
                    )
            await self._record(spec, params, context, UsageStatus.FAILED, duration_ms=duration_ms, error_message=str(exc) or type(exc).__name__)
            raise
        duration_ms = int((time.perf_counter() - started) * 1000)
        await self._record(spec, params, context, UsageStatus.SUCCESS, duration_ms=duration_ms)
        return result

    def wrap(self, spec: OperationSpec, handler: Handler) -> Handler:
        async def guarded(params: Mapping[str, Any], context: CallContext) -> Dict[str, Any]:
            api_key = self._presented_key(params)
            inner_params = {key: value for key, value in params.items() if key != API_KEY_PARAM}

            if api_key is None:
                if spec.requires_auth:
                    await self._record(spec, inner_params, context, UsageStatus.FAILED, error_message=API_KEY_REQUIRED)
                    return error_payload(API_KEY_REQUIRED, "UNAUTHORIZED")
                return await self._execute(spec, handler, inner_params, context, None)

            if not isinstance(api_key, str) or not api_key:
                await self._record(spec, inner_params, context, UsageStatus.FAILED, error_message=INVALID_API_KEY)
                return error_payload(INVALID_API_KEY, "UNAUTHORIZED")

            validation = await self.keys.validate_key(api_key)
            if not validation.valid or validation.key_id is None:
                await self._record(spec, inner_params, context, UsageStatus.FAILED, error_message=INVALID_API_KEY)
                return error_payload(INVALID_API_KEY, "UNAUTHORIZED")
            context.credential_id = validation.key_id

            reservation = await self.quota.reserve(validation.key_id, spec.name)
            if not reservation.allowed:
                _LOGGER.info("Quota exhausted", extra={"credential_id": validation.key_id, "operation": spec.name})
                await self._record(spec, inner_params, context, UsageStatus.FAILED, error_message=QUOTA_EXCEEDED)
                reset_at = reservation.reset_at.isoformat() if reservation.reset_at else None
                return error_payload(QUOTA_EXCEEDED, "QUOTA_EXCEEDED", remaining=0, resetAt=reset_at)

            return await self._execute(spec, handler, inner_params, context, reservation)

        return guarded
