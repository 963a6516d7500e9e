"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_user / _row_to_session / _row_to_token are the mappers. Session
manager, reset flow and route code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Transactions:
  Single-statement writes use engine.begin(). Operations that must not
  interleave with concurrent requests -- replacing a user's reset token,
  redeeming a token -- run all their statements inside one engine.begin()
  block so either every statement lands or none does.

Schema:
  Owned by auth/migrations.py. The Table objects below mirror the migrated
  schema for query building only; create_all() is never called on them.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from pathlib import Path

from sqlalchemy import BigInteger, Column, MetaData, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError

from auth.clock import from_millis, to_millis, utcnow
from auth.errors import ConflictError
from auth.migrations import run_migrations
from auth.models import PasswordResetToken, Session, User

logger = logging.getLogger("packspace.store")

# ---------------------------------------------------------------------------
# Schema (query-building mirror of the migrated tables)
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Text, primary_key=True),
    Column("username", Text, nullable=False, unique=True),
    Column("email", Text, nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("created_at", BigInteger, nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Text, primary_key=True),
    Column("user_id", Text, nullable=False),
    Column("expires_at", BigInteger, nullable=False),
)

_reset_tokens = Table(
    "password_reset_tokens",
    _metadata,
    Column("id", Text, primary_key=True),
    Column("user_id", Text, nullable=False),
    Column("expires_at", BigInteger, nullable=False),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _configure_sqlite_connection(dbapi_conn, connection_record) -> None:
    """Per-connection SQLite setup.

    isolation_level = None stops pysqlite from issuing its own BEGIN (which it
    skips before DDL) so the "begin" listener below controls transactions and
    migrations roll back cleanly. WAL lets readers proceed during writes.
    foreign_keys is off by default in SQLite and must be enabled per connection.
    """
    dbapi_conn.isolation_level = None
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def _emit_begin(conn) -> None:
    conn.exec_driver_sql("BEGIN")


def make_engine(db_url: str) -> Engine:
    """Create an Engine with transactional DDL and WAL enabled for SQLite."""
    url = make_url(db_url)
    connect_args: dict = {}
    if url.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
        database = url.database or ""
        if database and database != ":memory:" and not database.startswith("file:"):
            Path(database).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(db_url, connect_args=connect_args)
    if url.get_backend_name() == "sqlite":
        event.listen(engine, "connect", _configure_sqlite_connection)
        event.listen(engine, "begin", _emit_begin)
    return engine


def _conflicting_field(exc: IntegrityError) -> str | None:
    # SQLite reports "UNIQUE constraint failed: users.email"; other drivers
    # name the constraint or index, which also contains the column name.
    message = str(exc.orig).lower()
    if "email" in message:
        return "email"
    if "username" in message:
        return "username"
    return None


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for User, Session and PasswordResetToken rows.

    Usage:
        store = CredentialStore("sqlite:///data/packspace.db")
        user = store.create_user("alice", "alice@example.com", hash_password("..."))
        store.find_user_by_username("alice")
        store.close()

    Construction applies pending migrations before returning, so a store
    instance is always backed by an up-to-date schema.
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)
        applied = run_migrations(self.engine)
        if applied:
            logger.info("Applied %d migration(s): %s", len(applied), ", ".join(applied))

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, username: str, email: str, password_hash: str) -> User:
        """Insert a new user and return it.

        Raises ConflictError with field="username" or field="email" when the
        value is already taken. The check is the UNIQUE constraint itself, so
        two concurrent registrations cannot both succeed.
        """
        user = User(
            id=secrets.token_hex(8),
            username=username,
            email=email,
            password_hash=password_hash,
            created_at=utcnow(),
        )
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user.id,
                        username=user.username,
                        email=user.email,
                        password_hash=user.password_hash,
                        created_at=to_millis(user.created_at),
                    )
                )
        except IntegrityError as exc:
            field = _conflicting_field(exc)
            if field == "email":
                raise ConflictError("Email already exists", field="email") from exc
            if field == "username":
                raise ConflictError("Username already exists", field="username") from exc
            raise
        return user

    def find_user_by_username(self, username: str) -> User | None:
        """Exact, case-sensitive username lookup."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_user_by_email(self, email: str) -> User | None:
        """Lookup by the normalized (lowercase) email. Callers normalize first."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_password_hash(self, user_id: str, password_hash: str) -> bool:
        """Overwrite the stored hash. Returns False if the user does not exist."""
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(password_hash=password_hash))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def insert_session(self, session: Session) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    expires_at=to_millis(session.expires_at),
                )
            )

    def get_session_and_user(self, session_id: str) -> tuple[Session | None, User | None]:
        """Fetch a session and its owner in one query. (None, None) if unknown."""
        query = (
            select(
                _sessions.c.id.label("session_id"),
                _sessions.c.expires_at,
                _users,
            )
            .select_from(_sessions.join(_users, _sessions.c.user_id == _users.c.id))
            .where(_sessions.c.id == session_id)
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        if row is None:
            return None, None
        session = Session(id=row.session_id, user_id=row.id, expires_at=from_millis(row.expires_at))
        return session, _row_to_user(row)

    def update_session_expiry(self, session_id: str, expires_at: datetime) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update().where(_sessions.c.id == session_id).values(expires_at=to_millis(expires_at))
            )
        return result.rowcount > 0

    def delete_session(self, session_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
        return result.rowcount > 0

    def delete_user_sessions(self, user_id: str) -> int:
        """Delete every session of a user. Returns the number removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
        return result.rowcount

    def delete_expired_sessions(self, now: datetime) -> int:
        """Bulk-remove sessions whose expiry has passed. Returns the number removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= to_millis(now)))
        return result.rowcount

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    def replace_reset_token(self, token: PasswordResetToken) -> None:
        """Make token the only reset token for its user.

        Delete and insert share one transaction so two concurrent reset
        requests for the same user cannot leave two live tokens behind.
        """
        with self.engine.begin() as conn:
            conn.execute(_reset_tokens.delete().where(_reset_tokens.c.user_id == token.user_id))
            conn.execute(
                _reset_tokens.insert().values(
                    id=token.id,
                    user_id=token.user_id,
                    expires_at=to_millis(token.expires_at),
                )
            )

    def get_reset_token(self, token_id: str) -> PasswordResetToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_reset_tokens.select().where(_reset_tokens.c.id == token_id)).fetchone()
        return _row_to_token(row) if row is not None else None

    def delete_reset_token(self, token_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_reset_tokens.delete().where(_reset_tokens.c.id == token_id))
        return result.rowcount > 0

    def redeem_reset_token(self, token_id: str, user_id: str, password_hash: str) -> bool:
        """Consume a reset token and rewrite the owner's password hash atomically.

        The token delete runs first and its rowcount decides the outcome: when
        two requests race on the same token only one deletes the row, and the
        loser returns False without touching the password.
        """
        with self.engine.begin() as conn:
            deleted = conn.execute(
                _reset_tokens.delete().where((_reset_tokens.c.id == token_id) & (_reset_tokens.c.user_id == user_id))
            )
            if deleted.rowcount == 0:
                return False
            conn.execute(_users.update().where(_users.c.id == user_id).values(password_hash=password_hash))
        return True

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception:
            logger.exception("Credential store ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email or "",
        password_hash=row.password_hash,
        created_at=from_millis(row.created_at),
    )


def _row_to_token(row) -> PasswordResetToken:
    return PasswordResetToken(id=row.id, user_id=row.user_id, expires_at=from_millis(row.expires_at))
