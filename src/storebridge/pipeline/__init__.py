"""Request pipeline: logging, authentication and quota stages around operation handlers."""

from .auth import ApiKeyStage
from .base import API_KEY_PARAM, CallContext, Handler, OperationSpec, Stage, error_payload, is_error_payload
from .compose import Invoker, OperationPipeline
from .logging import LoggingStage, redact_params

__all__ = [
    "API_KEY_PARAM",
    "ApiKeyStage",
    "CallContext",
    "Handler",
    "Invoker",
    "LoggingStage",
    "OperationPipeline",
    "OperationSpec",
    "Stage",
    "error_payload",
    "is_error_payload",
    "redact_params",
]
