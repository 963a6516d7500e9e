"""
tests/test_migrations.py -- Tests for the versioned schema migration runner.

Coverage:
  - Fresh database: every registered step runs once, in order
  - Re-running is a no-op
  - A failing step rolls back its own DDL and writes no ledger row
  - Steps after a failing one are not attempted
  - Duplicate names in a registry are rejected before anything runs
  - Upgrading a database that only has the first step applied
"""

from __future__ import annotations

import uuid

import pytest
from sqlalchemy import inspect

from auth.errors import MigrationError
from auth.migrations import MIGRATIONS, Migration, _run_statements, applied_migrations, run_migrations
from auth.store import make_engine


@pytest.fixture
def engine():
    eng = make_engine(f"sqlite:///file:migrations_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    yield eng
    eng.dispose()


def _tables(engine) -> set[str]:
    return set(inspect(engine).get_table_names())


class TestFreshDatabase:
    def test_applies_all_steps_in_order(self, engine) -> None:
        applied = run_migrations(engine)
        assert applied == [m.name for m in MIGRATIONS]
        assert [r.name for r in applied_migrations(engine)] == applied

    def test_creates_expected_tables(self, engine) -> None:
        run_migrations(engine)
        assert {"users", "sessions", "password_reset_tokens", "_migrations"} <= _tables(engine)

    def test_second_run_is_noop(self, engine) -> None:
        run_migrations(engine)
        assert run_migrations(engine) == []
        assert len(applied_migrations(engine)) == len(MIGRATIONS)

    def test_ledger_records_run_time(self, engine) -> None:
        run_migrations(engine)
        record = applied_migrations(engine)[0]
        assert record.run_at.tzinfo is not None


class TestFailure:
    def _failing(self, conn) -> None:
        _run_statements(conn, "CREATE TABLE half_done (id INTEGER PRIMARY KEY)")
        raise RuntimeError("boom")

    def test_failed_step_is_rolled_back(self, engine) -> None:
        registry = (
            Migration("001_ok", lambda c: _run_statements(c, "CREATE TABLE ok_table (id INTEGER)")),
            Migration("002_broken", self._failing),
        )
        with pytest.raises(MigrationError, match="002_broken"):
            run_migrations(engine, registry)

        tables = _tables(engine)
        assert "ok_table" in tables
        assert "half_done" not in tables
        assert [r.name for r in applied_migrations(engine)] == ["001_ok"]

    def test_later_steps_not_attempted(self, engine) -> None:
        calls: list[str] = []
        registry = (
            Migration("001_broken", self._failing),
            Migration("002_after", lambda c: calls.append("ran")),
        )
        with pytest.raises(MigrationError):
            run_migrations(engine, registry)
        assert calls == []
        assert applied_migrations(engine) == []

    def test_duplicate_names_rejected(self, engine) -> None:
        registry = (
            Migration("001_same", lambda c: None),
            Migration("001_same", lambda c: None),
        )
        with pytest.raises(MigrationError, match="Duplicate"):
            run_migrations(engine, registry)
        assert applied_migrations(engine) == []


class TestUpgrade:
    def test_existing_rows_survive_second_step(self, engine) -> None:
        """A database at step 001 gains email with an empty default."""
        run_migrations(engine, MIGRATIONS[:1])
        with engine.begin() as conn:
            conn.exec_driver_sql(
                "INSERT INTO users (id, username, password_hash, created_at) VALUES ('u1', 'old', 'h', 0)"
            )

        assert run_migrations(engine) == [MIGRATIONS[1].name]
        with engine.connect() as conn:
            email = conn.exec_driver_sql("SELECT email FROM users WHERE id = 'u1'").scalar_one()
        assert email == ""
