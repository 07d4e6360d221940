"""
Retry execution shared by every store adapter.

The policy is backend-agnostic: it looks only at :attr:`StoreAPIError.retryable`.
Deciding whether a failure is transient happens once, where the error is built.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from logging import LoggerAdapter
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from ..core.logging import get_logger, log_event
from .base import StoreAPIError

T = TypeVar("T")

_LOGGER = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    Attempt ceiling and backoff shape.

    Delays grow as ``base_delay * 2 ** (attempt - 1)``, capped at ``max_delay``,
    plus up to ``jitter`` seconds of random spread.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0
    jitter: float = 0.5


DEFAULT_RETRY_POLICY = RetryPolicy()


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, StoreAPIError) and exc.retryable


def _log_before_sleep(label: str, logger: LoggerAdapter) -> Callable[[RetryCallState], None]:
    def _hook(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else None
        log_event(
            logger,
            "Retrying store call",
            operation=label,
            status="retrying",
            level=logging.WARNING,
            extra={
                "attempt": state.attempt_number,
                "delay_s": delay,
                "code": getattr(error, "code", None),
                "error": str(error) if error else None,
            },
        )

    return _hook


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    label: str,
    *,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    logger: Optional[LoggerAdapter] = None,
) -> T:
    """
    Execute ``operation`` and retry it while it raises a retryable store error.

    Parameters
    ----------
    operation:
        Zero-argument coroutine factory. It is invoked once per attempt.
    label:
        Operation name used in retry logs (e.g. ``pgyer.upload_build``).
    policy:
        Attempt ceiling and backoff parameters.
    logger:
        Adapter logger; retries are logged as warnings.

    Raises
    ------
    StoreAPIError
        The last error once it is non-retryable or the ceiling is reached.
        Any other exception propagates on its first occurrence.
    """

    retrying = AsyncRetrying(
        retry=retry_if_exception(is_retryable),
        wait=wait_exponential_jitter(initial=policy.base_delay, max=policy.max_delay, exp_base=2, jitter=policy.jitter),
        stop=stop_after_attempt(max(1, policy.max_attempts)),
        before_sleep=_log_before_sleep(label, logger or _LOGGER),
        reraise=True,
    )
    return await retrying(operation)
