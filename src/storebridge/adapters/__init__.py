"""
Store adapter interfaces and shared execution helpers.

Concrete adapters live in :mod:`storebridge.adapters.stores`, one module per
backend. Each pairs an HTTP client with a contract implementation that runs its
network calls through :func:`run_with_retry`.
"""

from .base import (
    AdapterError,
    AuthMethod,
    CredentialError,
    CredentialResolver,
    InvalidParamsError,
    OperationResult,
    StoreAdapter,
    StoreAPIError,
    StoreCapabilities,
    StoreNotRegisteredError,
)
from .credentials import StaticCredentialResolver
from .retry import DEFAULT_RETRY_POLICY, RetryPolicy, run_with_retry

__all__ = [
    "AdapterError",
    "AuthMethod",
    "CredentialError",
    "CredentialResolver",
    "DEFAULT_RETRY_POLICY",
    "InvalidParamsError",
    "OperationResult",
    "RetryPolicy",
    "StaticCredentialResolver",
    "StoreAdapter",
    "StoreAPIError",
    "StoreCapabilities",
    "StoreNotRegisteredError",
    "run_with_retry",
]
