"""
auth/migrations.py -- Versioned schema migrations with a ledger table.

Pattern: Registry of named, ordered steps. MIGRATIONS is append-only: a new
schema change is a new entry at the end. Never rename, reorder or edit an
entry that has shipped -- the _migrations ledger records names, and a renamed
step would run a second time against a database that already has its changes.

run_migrations() is idempotent at the process level and is called from
CredentialStore.__init__ on every startup. Each pending step runs in its own
transaction together with its ledger insert, so a failing step leaves neither
its schema changes nor a ledger row behind. SQLite DDL only participates in
that transaction because make_engine() (auth/store.py) takes over BEGIN from
pysqlite.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from sqlalchemy import BigInteger, Column, Integer, MetaData, String, Table, select
from sqlalchemy.engine import Connection, Engine

from auth.clock import from_millis, to_millis, utcnow
from auth.errors import MigrationError
from auth.models import MigrationRecord

logger = logging.getLogger("packspace.migrations")

_ledger_metadata = MetaData()

_migrations = Table(
    "_migrations",
    _ledger_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
    Column("run_at", BigInteger, nullable=False),
)


@dataclass(frozen=True)
class Migration:
    name: str
    up: Callable[[Connection], None]


def _run_statements(conn: Connection, *statements: str) -> None:
    # SQLite's DBAPI executes exactly one statement per call.
    for statement in statements:
        conn.exec_driver_sql(statement)


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


def _initial_schema(conn: Connection) -> None:
    _run_statements(
        conn,
        """
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            username TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            created_at BIGINT NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS sessions (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(id),
            expires_at BIGINT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_sessions_user_id ON sessions(user_id)",
    )


def _add_email_and_reset_tokens(conn: Connection) -> None:
    # SQLite cannot ADD COLUMN ... UNIQUE, so uniqueness comes from an index.
    _run_statements(
        conn,
        "ALTER TABLE users ADD COLUMN email TEXT DEFAULT ''",
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_users_email ON users(email)",
        """
        CREATE TABLE IF NOT EXISTS password_reset_tokens (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(id),
            expires_at BIGINT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_reset_tokens_user_id ON password_reset_tokens(user_id)",
    )


MIGRATIONS: tuple[Migration, ...] = (
    Migration("001_initial_schema", _initial_schema),
    Migration("002_add_email_and_reset_tokens", _add_email_and_reset_tokens),
)


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


def run_migrations(engine: Engine, migrations: Sequence[Migration] = MIGRATIONS) -> list[str]:
    """Apply every migration not yet in the ledger, in registry order.

    Returns the names applied by this call (empty when already up to date).
    Raises MigrationError on a malformed registry or a failing step; steps
    after the failing one are not attempted.
    """
    names = [m.name for m in migrations]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise MigrationError(f"Duplicate migration names in registry: {duplicates!r}")

    _ledger_metadata.create_all(engine)
    with engine.connect() as conn:
        completed = set(conn.execute(select(_migrations.c.name)).scalars())

    applied: list[str] = []
    for migration in migrations:
        if migration.name in completed:
            continue
        logger.info("Running migration: %s", migration.name)
        try:
            with engine.begin() as conn:
                migration.up(conn)
                conn.execute(_migrations.insert().values(name=migration.name, run_at=to_millis(utcnow())))
        except Exception as exc:
            logger.error("Migration %s failed and was rolled back: %s", migration.name, exc)
            raise MigrationError(f"Migration {migration.name} failed: {exc}") from exc
        logger.info("Completed migration: %s", migration.name)
        applied.append(migration.name)
    return applied


def applied_migrations(engine: Engine) -> list[MigrationRecord]:
    """Return the ledger in the order migrations were applied."""
    _ledger_metadata.create_all(engine)
    with engine.connect() as conn:
        rows = conn.execute(select(_migrations.c.name, _migrations.c.run_at).order_by(_migrations.c.id)).fetchall()
    return [MigrationRecord(name=row.name, run_at=from_millis(row.run_at)) for row in rows]
