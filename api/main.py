"""
api/main.py -- FastAPI application entry point for Packspace.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. log_requests -- access log line with latency for every response
  2. gatekeeper   -- rate limit -> origin check -> session attachment, then
                     cookie + security headers on the way out (api/gatekeeper.py)

Lifespan handles startup (credential store + migrations, services) and
shutdown (stop hashing workers, close the store) symmetrically. A failing
migration raises out of startup and the server never begins accepting
requests.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from api.gatekeeper import RequestContext, build_gatekeeper, render_error
from api.limiter import RateLimiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from auth.clock import utcnow
from auth.errors import AuthError, StoreError
from auth.passwords import configure_hashing, shutdown_hash_executor
from auth.reset import PasswordResetFlow
from auth.sessions import SessionManager
from auth.store import CredentialStore
from core.config import Settings, get_settings
from core.mailer import build_mailer

__version__ = "0.3.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("packspace.api")

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def build_services(
    app: FastAPI,
    store: CredentialStore,
    settings: Settings,
    mailer=None,
    now: Callable[[], datetime] = utcnow,
    clock: Callable[[], float] = time.time,
) -> None:
    """Construct every request-time service once and attach it to app.state.

    The rate limiter is created here and handed to the gatekeeper explicitly;
    nothing else builds one. bcrypt cost and hashing workers come from the
    same settings. Tests call this with in-memory stores, fake mailers and
    controllable clocks.
    """
    configure_hashing(settings.bcrypt_rounds, settings.hash_workers)
    sessions = SessionManager(store, settings, now=now)
    limiter = RateLimiter(clock=clock)
    app.state.settings = settings
    app.state.credential_store = store
    app.state.sessions = sessions
    app.state.rate_limiter = limiter
    app.state.reset_flow = PasswordResetFlow(
        store,
        sessions,
        mailer if mailer is not None else build_mailer(settings),
        settings,
        now=now,
    )
    app.state.gatekeeper = build_gatekeeper(settings, limiter, sessions)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Credential store first -- its constructor applies migrations, and
         nothing may touch the database before they finish.
      2. Services second -- they all hold the store.
    """
    settings = get_settings()
    logger.info("Packspace API starting up")
    store = CredentialStore(settings.database_url)
    build_services(app, store, settings)
    logger.info("Auth initialized (secure_cookies=%s)", settings.secure_cookies)

    yield

    shutdown_hash_executor()
    store.close()
    logger.info("Packspace API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Packspace API",
    description="Account registration, login sessions and password recovery.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Gatekeeper middleware
#
# Registered before log_requests so it sits inside it: rejections produced
# here (429, 403) still get an access log line.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def gatekeeper(request: Request, call_next):
    gate = request.app.state.gatekeeper
    ctx = RequestContext()
    # Session validation reads and may write the store; keep it off the loop.
    rejection = await run_in_threadpool(gate.intercept, request, ctx)
    request.state.auth = ctx
    response = rejection if rejection is not None else await call_next(request)
    return gate.finalize(response, ctx)


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render the auth error taxonomy (400/401/403/429 and StoreError 500)."""
    if exc.status_code >= 500:
        logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc)
    return render_error(exc)


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Database failures inside a handler become StoreError (500); the cause stays in the log."""
    logger.exception("Credential store error on %s %s", request.method, request.url.path)
    return render_error(StoreError())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (404, 405, ...)."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the server log only, never to the response body.
    Hashing failures and store errors raised outside a handler end up here.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred. Please try again.",
            )
        ).model_dump(exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Not under a rate-limited prefix -- health checks from load balancers and
# monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version and database reachability."""
    store: CredentialStore = request.app.state.credential_store
    database = "ok" if store.ping() else "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=__version__,
        components={"app": "ok", "database": database},
    )
