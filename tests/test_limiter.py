"""
tests/test_limiter.py -- Tests for the fixed-window RateLimiter.

Coverage:
  - Exactly max_requests allowed per window, remaining counts down
  - Rejected requests keep counting; the window does not shift
  - A new window starts once the old one has elapsed
  - Identifiers are independent
  - retry_after rounds up and never reports zero
  - Elapsed windows are dropped by the storage
  - Concurrent check() calls never over-admit and never lose a hit
"""

from __future__ import annotations

import threading

import limits.storage.memory
import pytest

from api.limiter import RateLimiter, fixed_window


class ManualClock:
    def __init__(self) -> None:
        self.t = 100.0

    def time(self) -> float:
        return self.t


@pytest.fixture
def clock(monkeypatch) -> ManualClock:
    manual = ManualClock()
    monkeypatch.setattr(limits.storage.memory, "time", manual)
    return manual


@pytest.fixture
def limiter(clock: ManualClock) -> RateLimiter:
    return RateLimiter(clock=clock.time)


def test_allows_up_to_max_then_blocks(limiter: RateLimiter) -> None:
    results = [limiter.check("auth:1.2.3.4", 60, 3) for _ in range(4)]
    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]


def test_window_is_fixed(limiter: RateLimiter, clock: ManualClock) -> None:
    first = limiter.check("k", 60, 1)
    assert first.reset_time == 160.0
    clock.t += 30
    blocked = limiter.check("k", 60, 1)
    assert blocked.allowed is False
    assert blocked.reset_time == first.reset_time


def test_new_window_after_reset_time(limiter: RateLimiter, clock: ManualClock) -> None:
    limiter.check("k", 60, 1)
    clock.t += 59.5
    assert limiter.check("k", 60, 1).allowed is False

    clock.t += 0.5
    # The window end itself belongs to the next window.
    result = limiter.check("k", 60, 1)
    assert result.allowed is True
    assert result.reset_time == clock.t + 60


def test_identifiers_are_independent(limiter: RateLimiter) -> None:
    limiter.check("a", 60, 1)
    assert limiter.check("a", 60, 1).allowed is False
    assert limiter.check("b", 60, 1).allowed is True


def test_retry_after(limiter: RateLimiter, clock: ManualClock) -> None:
    result = limiter.check("k", 900, 1)
    assert limiter.retry_after(result) == 900
    clock.t += 899.5
    assert limiter.retry_after(result) == 1
    clock.t += 10
    assert limiter.retry_after(result) == 1


def test_elapsed_window_dropped(limiter: RateLimiter, clock: ManualClock) -> None:
    limiter.check("old", 10, 5)
    clock.t += 5
    limiter.check("new", 60, 5)
    clock.t += 6

    assert limiter.storage.get(fixed_window(5, 10).key_for("old")) == 0
    assert limiter.storage.get(fixed_window(5, 60).key_for("new")) == 1
    assert limiter.check("old", 10, 5).remaining == 4


def test_separate_instances_do_not_share_counters(clock: ManualClock) -> None:
    first, second = RateLimiter(clock=clock.time), RateLimiter(clock=clock.time)
    first.check("k", 60, 1)
    assert first.check("k", 60, 1).allowed is False
    assert second.check("k", 60, 1).allowed is True


def test_concurrent_checks_never_over_admit(limiter: RateLimiter) -> None:
    allowed: list[bool] = []
    lock = threading.Lock()
    start = threading.Barrier(20)

    def worker() -> None:
        start.wait()
        for _ in range(10):
            ok = limiter.check("shared", 60, 50).allowed
            with lock:
                allowed.append(ok)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(allowed) == 200
    assert 0 < allowed.count(True) <= 50
    assert limiter.storage.get(fixed_window(50, 60).key_for("shared")) == 200
