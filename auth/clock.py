"""
auth/clock.py -- UTC time helpers shared by the store, sessions and reset flow.

Timestamps are persisted as INTEGER epoch milliseconds and handled in Python as
timezone-aware UTC datetimes. Components that depend on the current time take
a `now` callable defaulting to utcnow() so tests can drive the clock.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def from_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
