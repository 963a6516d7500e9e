"""
auth/errors.py -- Error taxonomy for the authentication core.

Every rejection this package produces is one of these classes. Each carries
the HTTP status and machine-readable code it maps to, so the API layer can
render all of them through a single exception handler without a lookup table.

Messages are user-facing. Classes that guard against account enumeration
(AuthenticationError, TokenExpiredOrInvalidError) default to deliberately
generic wording; do not interpolate usernames or emails into them.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    status_code: int = 400
    code: str = "bad_request"
    default_message: str = "Bad request."

    def __init__(self, message: str | None = None, field: str | None = None) -> None:
        self.message = message or self.default_message
        self.field = field
        super().__init__(self.message)


class ValidationError(AuthError):
    code = "validation_error"
    default_message = "Invalid input."


class AuthenticationError(AuthError):
    code = "bad_credentials"
    default_message = "Invalid username or password"


class ConflictError(AuthError):
    """A username or email is already taken. field names the column that collided."""

    code = "conflict"
    default_message = "Account already exists"


class NotAuthenticatedError(AuthError):
    status_code = 401
    code = "unauthorized"
    default_message = "No active session"


class ForbiddenOriginError(AuthError):
    status_code = 403
    code = "forbidden_origin"
    default_message = "Invalid request origin"


class RateLimitedError(AuthError):
    status_code = 429
    code = "rate_limited"
    default_message = "Too many requests. Please try again later."

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class TokenExpiredOrInvalidError(AuthError):
    code = "invalid_token"
    default_message = "Invalid or expired reset link. Please request a new one."


class StoreError(AuthError):
    status_code = 500
    code = "internal_error"
    default_message = "An error occurred. Please try again."


class MigrationError(Exception):
    """A schema migration failed or the registry is malformed.

    Not an AuthError: it is raised at startup, before any request exists, and
    must stop the process rather than be rendered to a client.
    """
