"""
api/limiter.py -- Fixed-window rate limiter for the auth endpoints.

Counters live in a limits MemoryStorage (the backend slowapi uses for
storage_uri="memory://") and are counted by limits' FixedWindowRateLimiter.
One RateLimiter instance is built in build_services(), stored on app.state and
handed to the gatekeeper's RateLimitInterceptor. A second instance would own a
second storage with isolated counters, so everything that limits must share
the injected one.

Semantics (per identifier, e.g. "auth:203.0.113.7"):
  - The first hit opens a window of window_seconds for that identifier.
  - Every hit increments the count, rejected ones included, so hammering
    during a blocked window does not shorten it.
  - A hit is allowed iff the post-increment count is <= max_requests.
  - Once the window has elapsed the count starts over.

MemoryStorage takes a per-key lock around increments and drops elapsed
windows on access and from its own background expiry timer, so there is no
sweep task to run.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from limits import RateLimitItem, RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: float


def fixed_window(max_requests: int, window_seconds: int) -> RateLimitItem:
    """max_requests per window_seconds, e.g. fixed_window(10, 900)."""
    return RateLimitItemPerSecond(max_requests, window_seconds)


class RateLimiter:
    """Shared limiter service.

    clock must read the same time base as the storage (epoch seconds from
    time.time); it is only used to turn a window end into Retry-After.
    """

    def __init__(self, storage: MemoryStorage | None = None, clock: Callable[[], float] = time.time) -> None:
        self.storage = storage if storage is not None else MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self.storage)
        self._clock = clock

    def check(self, identifier: str, window_seconds: int, max_requests: int) -> RateLimitResult:
        """Count one request for identifier and report whether it is allowed."""
        item = fixed_window(max_requests, window_seconds)
        allowed = self._strategy.hit(item, identifier)
        stats = self._strategy.get_window_stats(item, identifier)
        return RateLimitResult(allowed=allowed, remaining=stats.remaining, reset_time=stats.reset_time)

    def retry_after(self, result: RateLimitResult) -> int:
        """Whole seconds until the window of result resets (never less than 1)."""
        return max(1, math.ceil(result.reset_time - self._clock()))
