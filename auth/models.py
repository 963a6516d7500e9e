"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store, session manager and reset flow do the work.

All datetimes are timezone-aware UTC. The store converts to and from epoch
milliseconds at the SQL boundary.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


@dataclass
class User:
    """A registered account.

    password_hash is the bcrypt output, never the raw password. It is the only
    field this package rewrites after creation (on password reset).
    """

    id: str
    username: str
    email: str
    password_hash: str
    created_at: datetime


@dataclass
class Session:
    """Server-side session row plus the transient freshness flag.

    fresh is not persisted: it is True right after creation or sliding renewal
    and tells the caller the cookie must be (re)written.
    """

    id: str
    user_id: str
    expires_at: datetime
    fresh: bool = False


@dataclass
class PasswordResetToken:
    """Single-use, time-boxed credential. id is the secret sent by email."""

    id: str
    user_id: str
    expires_at: datetime


@dataclass
class MigrationRecord:
    """One row of the append-only _migrations ledger."""

    name: str
    run_at: datetime


class SessionStatus(str, Enum):
    """Outcome of validating a session cookie.

    RENEWED: expiry was extended -- re-issue the cookie.
    VALID:   session is live and unchanged -- leave the cookie alone.
    EXPIRED: unknown, expired or deleted -- clear the cookie.
    """

    RENEWED = "renewed"
    VALID = "valid"
    EXPIRED = "expired"


@dataclass
class SessionValidation:
    status: SessionStatus
    session: Session | None = None
    user: User | None = None

    @property
    def authenticated(self) -> bool:
        return self.status is not SessionStatus.EXPIRED


@dataclass
class SessionCookie:
    """Everything needed to write the session cookie onto a response.

    max_age of 0 is a blank cookie: the browser drops it immediately. expires
    mirrors the session expiry for clients that ignore Max-Age.
    """

    name: str
    value: str
    max_age: int
    secure: bool
    expires: datetime | None = None
    httponly: bool = True
    samesite: str = "lax"
    path: str = "/"

    def apply(self, response) -> None:
        """Write this cookie onto a Starlette/FastAPI response."""
        response.set_cookie(
            self.name,
            value=self.value,
            max_age=self.max_age,
            expires=self.expires,
            path=self.path,
            secure=self.secure,
            httponly=self.httponly,
            samesite=self.samesite,
        )
