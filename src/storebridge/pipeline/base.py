"""
Shared types for the request pipeline.

A handler takes the caller's parameter bundle and a :class:`CallContext` and
returns a JSON-ready dict. Stages wrap handlers without changing that shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Protocol

API_KEY_PARAM = "api_key"


@dataclass(slots=True)
class CallContext:
    """
    Per-call state threaded through every stage.

    Attributes
    ----------
    operation:
        Name of the operation being invoked (``app.upload``, ``store.list``...).
    correlation_id:
        Identifier shared by every log entry of this call. Set by the logging stage.
    credential_id:
        Id of the validated credential, ``None`` for anonymous calls.
    payload_size:
        Bytes sent to the backend, reported by handlers that upload artifacts.
    """

    operation: str
    correlation_id: Optional[str] = None
    credential_id: Optional[str] = None
    payload_size: Optional[int] = None


@dataclass(frozen=True, slots=True)
class OperationSpec:
    name: str
    requires_auth: bool = True
    description: str = ""


Handler = Callable[[Mapping[str, Any], CallContext], Awaitable[Dict[str, Any]]]


class Stage(Protocol):
    def wrap(self, spec: OperationSpec, handler: Handler) -> Handler:
        """Return ``handler`` wrapped with this stage's before/after/on-error behaviour."""


def error_payload(message: str, code: str, **extra: Any) -> Dict[str, Any]:
    """Structured error returned (never raised) for expected rejections."""

    payload: Dict[str, Any] = {"error": message, "code": code}
    payload.update(extra)
    return payload


def is_error_payload(payload: Mapping[str, Any]) -> bool:
    return "error" in payload and "code" in payload
