"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Identity is resolved once per request by the gatekeeper middleware
(api/gatekeeper.py SessionInterceptor), which stores a RequestContext on
request.state.auth. These helpers only read that context; they never touch
the cookie or the store themselves.

try_get_current_user() is the soft variant (returns None when anonymous).
get_current_user() wraps it and raises NotAuthenticatedError (401).
get_current_session() does the same for the Session row.

Layer rule: auth/dependencies.py may import from fastapi (for Request)
because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import NotAuthenticatedError
from auth.models import Session, User


def try_get_current_user(request: Request) -> User | None:
    """Return the authenticated User, or None for anonymous requests. Never raises."""
    ctx = getattr(request.state, "auth", None)
    return ctx.user if ctx is not None else None


def get_current_user(request: Request) -> User:
    """Require authentication. Raises NotAuthenticatedError (401) if anonymous.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise NotAuthenticatedError()
    return user


def get_current_session(request: Request) -> Session:
    """Require a live session. Raises NotAuthenticatedError (401) if there is none."""
    ctx = getattr(request.state, "auth", None)
    if ctx is None or ctx.session is None:
        raise NotAuthenticatedError()
    return ctx.session
