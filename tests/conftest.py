"""
tests/conftest.py -- Shared test fixtures for Packspace.

This module provides:
  - FakeClock: one controllable time source for datetimes (sessions, reset
    tokens) and epoch seconds (rate limiter and its limits MemoryStorage)
  - RecordingMailer: captures reset emails instead of sending them
  - store / settings / clock / sessions: unit-test building blocks
  - api: TestClient over the real FastAPI app with a patched lifespan

Stores use named shared-memory SQLite (file:<name>?mode=memory&cache=shared).
Requests, the gatekeeper and the bcrypt executor each touch the database from
their own threads, and a plain :memory: URL would hand every thread its own
empty database. Names carry a uuid suffix so no two fixtures share rows.

DEBUG and BCRYPT_ROUNDS must be set before any auth/core import: get_settings()
is cached on first use and password hashing reads bcrypt_rounds from it.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: set before importing anything that calls get_settings().
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import limits.storage.memory
import pytest
from fastapi.testclient import TestClient

from api.main import app, build_services
from auth.sessions import SessionManager
from auth.store import CredentialStore
from core.config import Settings

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Frozen time that only moves when a test calls advance().

    time() mirrors the time module's function so an instance can stand in for
    the module that limits.storage.memory reads the clock from.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def time(self) -> float:
        return self._now.timestamp()

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)


@dataclass
class RecordingMailer:
    sent: list[tuple[str, str]] = field(default_factory=list)
    succeed: bool = True

    def send_password_reset(self, email: str, token: str) -> bool:
        self.sent.append((email, token))
        return self.succeed


@dataclass
class ApiHarness:
    client: TestClient
    store: CredentialStore
    clock: FakeClock
    mailer: RecordingMailer
    settings: Settings


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def memory_db_url(prefix: str = "test") -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_settings(**overrides) -> Settings:
    values = {"debug": True, "bcrypt_rounds": 4}
    values.update(overrides)
    return Settings(**values)


def _patch_lifespan(store: CredentialStore, settings: Settings, mailer: RecordingMailer, clock: FakeClock):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store, fake mailer and fake clock into app.state through
    the same build_services() the real lifespan uses.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_services(app, store, settings, mailer=mailer, now=clock.now, clock=clock.time)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    s = CredentialStore(memory_db_url())
    yield s
    s.close()


@pytest.fixture
def sessions(store: CredentialStore, settings: Settings, clock: FakeClock) -> SessionManager:
    return SessionManager(store, settings, now=clock.now)


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


# ---------------------------------------------------------------------------
# API fixture -- one app per test so rate-limit counters never leak
# ---------------------------------------------------------------------------


@pytest.fixture
def api(monkeypatch) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness around a TestClient on the real app.

    Requests go through the full middleware stack (gatekeeper, logging) and
    real route handlers, backed by an isolated in-memory store.
    """
    store = CredentialStore(memory_db_url("api"))
    settings = make_settings()
    clock = FakeClock()
    monkeypatch.setattr(limits.storage.memory, "time", clock)
    mailer = RecordingMailer()

    app.router.lifespan_context = _patch_lifespan(store, settings, mailer, clock)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, store=store, clock=clock, mailer=mailer, settings=settings)

    store.close()
