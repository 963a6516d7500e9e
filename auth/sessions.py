"""
auth/sessions.py -- Server-side session lifecycle and cookie policy.

State machine per session:

    created --> fresh --> stale --> expired | invalidated
                  ^         |
                  +---------+  (validated inside the renewal window)

validate_session() reports the transition as a SessionStatus so the caller
cannot misread it:
  RENEWED -- expires_at was pushed forward; write a new cookie.
  VALID   -- still live, nothing changed; leave the cookie alone.
  EXPIRED -- unknown or past expiry (the row is deleted); clear the cookie.

The cookie value is the session id itself: 160 random bits from secrets, with
no structure to parse or forge. Every lookup goes through the store, so
deleting the row revokes the cookie immediately.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from auth.clock import utcnow
from auth.models import Session, SessionCookie, SessionStatus, SessionValidation
from auth.store import CredentialStore
from core.config import Settings

logger = logging.getLogger("packspace.sessions")


def generate_session_id() -> str:
    return secrets.token_hex(20)


class SessionManager:
    """Create, validate, renew and invalidate sessions.

    Usage:
        sessions = SessionManager(store, settings)
        session, cookie = sessions.create_session(user.id)
        result = sessions.validate_session(cookie.value)
        if result.status is SessionStatus.RENEWED: ...
    """

    def __init__(
        self,
        store: CredentialStore,
        settings: Settings,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._settings = settings
        self._now = now
        self.lifetime = timedelta(seconds=settings.session_lifetime_seconds)
        self.renewal_threshold = timedelta(seconds=settings.session_renewal_seconds)

    @property
    def cookie_name(self) -> str:
        return self._settings.session_cookie_name

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_session(self, user_id: str) -> tuple[Session, SessionCookie]:
        session = Session(
            id=generate_session_id(),
            user_id=user_id,
            expires_at=self._now() + self.lifetime,
            fresh=True,
        )
        self._store.insert_session(session)
        logger.info("Session created for user %s", user_id)
        return session, self.session_cookie(session)

    def validate_session(self, session_id: str) -> SessionValidation:
        """Resolve a cookie value to a session and user, sliding expiry if due."""
        if not session_id:
            return SessionValidation(SessionStatus.EXPIRED)
        session, user = self._store.get_session_and_user(session_id)
        if session is None or user is None:
            return SessionValidation(SessionStatus.EXPIRED)

        now = self._now()
        if session.expires_at <= now:
            self._store.delete_session(session.id)
            logger.info("Expired session removed for user %s", session.user_id)
            return SessionValidation(SessionStatus.EXPIRED)

        if session.expires_at - now < self.renewal_threshold:
            session.expires_at = now + self.lifetime
            session.fresh = True
            if not self._store.update_session_expiry(session.id, session.expires_at):
                # Deleted (logout, reset) between the read and the renewal.
                return SessionValidation(SessionStatus.EXPIRED)
            return SessionValidation(SessionStatus.RENEWED, session, user)

        session.fresh = False
        return SessionValidation(SessionStatus.VALID, session, user)

    def invalidate_session(self, session_id: str) -> bool:
        return self._store.delete_session(session_id)

    def invalidate_all_sessions_for_user(self, user_id: str) -> int:
        removed = self._store.delete_user_sessions(user_id)
        logger.info("Invalidated %d session(s) for user %s", removed, user_id)
        return removed

    def delete_expired_sessions(self) -> int:
        return self._store.delete_expired_sessions(self._now())

    # ------------------------------------------------------------------
    # Cookie policy
    # ------------------------------------------------------------------

    def session_cookie(self, session: Session) -> SessionCookie:
        """Cookie carrying the session id, expiring together with the session."""
        max_age = max(0, int((session.expires_at - self._now()).total_seconds()))
        return SessionCookie(
            name=self.cookie_name,
            value=session.id,
            max_age=max_age,
            secure=bool(self._settings.secure_cookies),
            expires=session.expires_at,
        )

    def blank_cookie(self) -> SessionCookie:
        """Empty cookie with Max-Age=0 -- tells the browser to drop the session."""
        return SessionCookie(
            name=self.cookie_name,
            value="",
            max_age=0,
            secure=bool(self._settings.secure_cookies),
        )

    def cookie_for(self, validation: SessionValidation) -> SessionCookie | None:
        """Return the cookie a validation result requires, or None to leave it untouched."""
        if validation.status is SessionStatus.RENEWED and validation.session is not None:
            return self.session_cookie(validation.session)
        if validation.status is SessionStatus.EXPIRED:
            return self.blank_cookie()
        return None
