"""
auth/reset.py -- Password reset token protocol.

request_reset(email)
    Touches nothing. Returns a ResetRequestJob that, when run, looks the email
    up, issues a token for the matching user (replacing any previous one) and
    mails it. The HTTP layer sends one fixed response and runs the job only
    after it, so the request path does the same work for every email.

redeem_reset(token, new_password)
    Single use in every outcome: a successful redemption deletes the token in
    the same transaction that rewrites the password hash; an expired token is
    deleted before the error is raised. Success invalidates every existing
    session of the user and starts a new one.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from auth.clock import utcnow
from auth.errors import TokenExpiredOrInvalidError, ValidationError
from auth.models import PasswordResetToken, Session, SessionCookie, User
from auth.passwords import hash_password
from auth.sessions import SessionManager
from auth.store import CredentialStore
from auth.validation import normalize_email, validate_password
from core.config import Settings

logger = logging.getLogger("packspace.reset")

EXPIRED_MESSAGE = "This reset link has expired. Please request a new one."
INVALID_MESSAGE = "Invalid or expired reset link. Please request a new one."


def generate_reset_token() -> str:
    # 32 bytes = 256 bits of entropy, URL-safe for the emailed link.
    return secrets.token_urlsafe(32)


@dataclass
class ResetRequestJob:
    """Deferred forgot-password work. Call run() off the request path."""

    flow: PasswordResetFlow
    email: str

    def run(self) -> bool:
        """Issue and mail a token. Returns False when nothing was delivered."""
        issued = self.flow.issue_reset_token(self.email)
        if issued is None:
            return False
        user, token = issued
        sent = self.flow.mailer.send_password_reset(user.email, token.id)
        if not sent:
            logger.error("Password reset email could not be delivered")
        return sent


@dataclass
class ResetResult:
    user_id: str
    session: Session
    cookie: SessionCookie


class PasswordResetFlow:
    def __init__(
        self,
        store: CredentialStore,
        sessions: SessionManager,
        mailer,
        settings: Settings,
        now: Callable[[], datetime] = utcnow,
        hasher: Callable[[str], str] = hash_password,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self.mailer = mailer
        self._now = now
        self._hasher = hasher
        self.token_lifetime = timedelta(seconds=settings.reset_token_lifetime_seconds)

    def request_reset(self, email: str | None) -> ResetRequestJob:
        """Return the job for a forgot-password request. Does no I/O."""
        return ResetRequestJob(flow=self, email=normalize_email(email))

    def issue_reset_token(self, email: str) -> tuple[User, PasswordResetToken] | None:
        """Issue a reset token if email belongs to an account, else None."""
        normalized = normalize_email(email)
        if not normalized:
            return None

        user = self._store.find_user_by_email(normalized)
        if user is None:
            return None

        token = PasswordResetToken(
            id=generate_reset_token(),
            user_id=user.id,
            expires_at=self._now() + self.token_lifetime,
        )
        self._store.replace_reset_token(token)
        logger.info("Password reset token issued for user %s", user.id)
        return user, token

    def redeem_reset(self, token: str | None, new_password: str | None) -> ResetResult:
        """Consume token and set new_password. Runs bcrypt; call off the event loop."""
        token_id = (token or "").strip()
        if not token_id:
            raise ValidationError("Invalid or missing reset token", field="token")
        password = validate_password(new_password)

        record = self._store.get_reset_token(token_id)
        if record is None:
            raise TokenExpiredOrInvalidError(INVALID_MESSAGE)

        if record.expires_at < self._now():
            self._store.delete_reset_token(record.id)
            logger.info("Expired reset token removed for user %s", record.user_id)
            raise TokenExpiredOrInvalidError(EXPIRED_MESSAGE)

        password_hash = self._hasher(password)
        if not self._store.redeem_reset_token(record.id, record.user_id, password_hash):
            # Another request consumed the token while this one was hashing.
            raise TokenExpiredOrInvalidError(INVALID_MESSAGE)

        self._sessions.invalidate_all_sessions_for_user(record.user_id)
        session, cookie = self._sessions.create_session(record.user_id)
        logger.info("Password reset completed for user %s", record.user_id)
        return ResetResult(user_id=record.user_id, session=session, cookie=cookie)
