"""Per-store token buckets that smooth outbound request rates."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Dict


@dataclass(frozen=True, slots=True)
class BucketLimits:
    capacity: int
    refill_per_second: float


STORE_LIMITS: Dict[str, BucketLimits] = {
    "google_play": BucketLimits(capacity=10, refill_per_second=10),
    "app_store": BucketLimits(capacity=10, refill_per_second=2),
    "huawei_agc": BucketLimits(capacity=5, refill_per_second=1),
}
DEFAULT_LIMITS = BucketLimits(capacity=10, refill_per_second=5)


@dataclass(slots=True)
class TokenBucket:
    """
    Classic token bucket.

    ``acquire`` waits (without blocking the event loop) until a token is
    available, so concurrent calls to one store are spread out instead of
    tripping vendor-side throttling.
    """

    capacity: int
    refill_per_second: float
    clock: Callable[[], float] = time.monotonic
    tokens: float = field(init=False)
    last_refill: float = field(init=False)
    _lock: asyncio.Lock = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.tokens = float(self.capacity)
        self.last_refill = self.clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self.clock()
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(float(self.capacity), self.tokens + elapsed * self.refill_per_second)
        self.last_refill = now

    def try_acquire(self) -> bool:
        self._refill()
        if self.tokens >= 1:
            self.tokens -= 1
            return True
        return False

    async def acquire(self) -> None:
        async with self._lock:
            while not self.try_acquire():
                await asyncio.sleep((1 - self.tokens) / self.refill_per_second)


def create_rate_limiter(store_id: str) -> TokenBucket:
    limits = STORE_LIMITS.get(store_id, DEFAULT_LIMITS)
    return TokenBucket(capacity=limits.capacity, refill_per_second=limits.refill_per_second)
