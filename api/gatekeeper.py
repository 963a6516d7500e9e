"""
api/gatekeeper.py -- Per-request interceptor pipeline.

Pattern: Chain of Responsibility as an explicit, ordered list. Each
interceptor is a callable (request, ctx) -> Response | None:
  - return None to let the request continue (optionally after mutating ctx);
  - return a Response, or raise an AuthError, to reject it.
Gatekeeper.intercept() walks the list and stops at the first rejection, so
ordering and short-circuiting can be tested without an ASGI stack.

Default order (build_gatekeeper):
  1. RateLimitInterceptor -- auth-sensitive path prefixes only
  2. OriginInterceptor    -- state-changing methods only
  3. SessionInterceptor   -- resolves the session cookie into ctx

Gatekeeper.finalize() runs on every response -- handler output and
rejections alike -- writing the cookie the session interceptor queued and
adding the defensive headers the response does not already carry.

The api/main.py middleware is the only caller; it stores ctx on
request.state.auth for auth/dependencies.py.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from urllib.parse import urlsplit

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address

from api.limiter import RateLimiter
from api.models import ErrorDetail, ErrorResponse
from auth.errors import AuthError, ForbiddenOriginError, RateLimitedError
from auth.models import Session, SessionCookie, User
from auth.sessions import SessionManager
from core.config import Settings

logger = logging.getLogger("packspace.gatekeeper")

SECURITY_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
}

STATE_CHANGING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


@dataclass
class RequestContext:
    """Identity resolved for one request, plus the cookie to write back."""

    user: User | None = None
    session: Session | None = None
    cookie: SessionCookie | None = None


Interceptor = Callable[[Request, RequestContext], Response | None]


def render_error(exc: AuthError) -> JSONResponse:
    """Render any AuthError in the standard error envelope."""
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=exc.code, message=exc.message, field=exc.field),
        ).model_dump(exclude_none=True),
    )
    if isinstance(exc, RateLimitedError):
        response.headers["Retry-After"] = str(exc.retry_after)
        response.headers["X-RateLimit-Remaining"] = "0"
    return response


def client_identity(request: Request, trust_forwarded_for: bool = False) -> str:
    """Network identity used as the rate-limit key.

    X-Forwarded-For is client-controlled unless a proxy overwrites it, so it is
    only honoured when the deployment says so.
    """
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "").split(",")[0].strip()
        if forwarded:
            return forwarded
    return get_remote_address(request) or "unknown"


# ---------------------------------------------------------------------------
# Interceptors
# ---------------------------------------------------------------------------


class RateLimitInterceptor:
    def __init__(
        self,
        limiter: RateLimiter,
        paths: Iterable[str],
        window_seconds: int,
        max_requests: int,
        trust_forwarded_for: bool = False,
    ) -> None:
        self._limiter = limiter
        self._paths = tuple(paths)
        self._window_seconds = window_seconds
        self._max_requests = max_requests
        self._trust_forwarded_for = trust_forwarded_for

    def __call__(self, request: Request, ctx: RequestContext) -> Response | None:
        if not request.url.path.startswith(self._paths):
            return None
        key = f"auth:{client_identity(request, self._trust_forwarded_for)}"
        result = self._limiter.check(key, self._window_seconds, self._max_requests)
        if not result.allowed:
            logger.warning("Rate limit exceeded for %s on %s", key, request.url.path)
            raise RateLimitedError(self._limiter.retry_after(result))
        return None


class OriginInterceptor:
    """Reject cross-origin state-changing requests.

    Only an Origin header that is present and names a foreign host is
    rejected; browsers omit Origin on some same-origin requests, so absence
    is allowed. Hostnames are compared without ports. "Origin: null" (sandboxed
    frames, some redirects) has no hostname and is rejected.
    """

    def __init__(self, trusted_hosts: Iterable[str] = ()) -> None:
        self._trusted_hosts = frozenset(h.lower() for h in trusted_hosts)

    def __call__(self, request: Request, ctx: RequestContext) -> Response | None:
        if request.method not in STATE_CHANGING_METHODS:
            return None
        origin = request.headers.get("origin")
        if not origin:
            return None
        host = request.headers.get("host", "")
        expected_host = _hostname(f"//{host}") if host else None
        if not expected_host:
            return None
        origin_host = _hostname(origin)
        if origin_host == expected_host or (origin_host is not None and origin_host in self._trusted_hosts):
            return None
        logger.warning("Rejected %s %s from origin %r", request.method, request.url.path, origin)
        raise ForbiddenOriginError()


class SessionInterceptor:
    def __init__(self, sessions: SessionManager) -> None:
        self._sessions = sessions

    def __call__(self, request: Request, ctx: RequestContext) -> Response | None:
        session_id = request.cookies.get(self._sessions.cookie_name)
        if not session_id:
            return None
        validation = self._sessions.validate_session(session_id)
        ctx.user = validation.user
        ctx.session = validation.session
        ctx.cookie = self._sessions.cookie_for(validation)
        return None


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


class Gatekeeper:
    def __init__(self, interceptors: Sequence[Interceptor]) -> None:
        self.interceptors: tuple[Interceptor, ...] = tuple(interceptors)

    def intercept(self, request: Request, ctx: RequestContext) -> Response | None:
        """Run interceptors in order. Returns the first rejection, or None to proceed."""
        for interceptor in self.interceptors:
            try:
                response = interceptor(request, ctx)
            except AuthError as exc:
                return render_error(exc)
            if response is not None:
                return response
        return None

    def finalize(self, response: Response, ctx: RequestContext) -> Response:
        """Write the queued session cookie and security headers onto response.

        A handler that set the session cookie itself (login, logout, reset)
        has the final word; the queued cookie only fills in when it did not.
        """
        if ctx.cookie is not None and not _sets_cookie(response, ctx.cookie.name):
            ctx.cookie.apply(response)
        for name, value in SECURITY_HEADERS.items():
            if name not in response.headers:
                response.headers[name] = value
        return response


def _hostname(url: str) -> str | None:
    try:
        return urlsplit(url).hostname
    except ValueError:
        return None


def _sets_cookie(response: Response, name: str) -> bool:
    prefix = f"{name}="
    return any(value.startswith(prefix) for value in response.headers.getlist("set-cookie"))


def build_gatekeeper(settings: Settings, limiter: RateLimiter, sessions: SessionManager) -> Gatekeeper:
    return Gatekeeper(
        [
            RateLimitInterceptor(
                limiter,
                paths=settings.rate_limited_paths,
                window_seconds=settings.auth_rate_limit_window_seconds,
                max_requests=settings.auth_rate_limit_max,
                trust_forwarded_for=settings.trust_forwarded_for,
            ),
            OriginInterceptor(settings.trusted_origin_hosts),
            SessionInterceptor(sessions),
        ]
    )
