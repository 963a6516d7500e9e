"""
api/routes/auth.py -- Authentication REST endpoints.

Routes (form-encoded bodies):
  POST /api/auth/register         -- create account; sets session cookie
  POST /api/auth/login            -- password login; sets session cookie
  POST /api/auth/logout           -- ends the current session; blank cookie
  POST /api/auth/forgot-password  -- issue reset token; always the same 200
  POST /api/auth/reset-password   -- redeem reset token; sets new session cookie
  GET  /api/auth/me               -- current identity (requires session)

Security:
  Rate limiting, origin checks and session resolution happen in the
  gatekeeper middleware before any handler here runs.
  authenticate_async() provides timing equalization -- use it, never inline
  find_user_by_username() + verify_password().
  forgot-password returns one fixed body and defers the account lookup, the
  token write and the mail to a background task, so the request path does
  the same work whether or not the email has an account.
  Cache-Control: no-store on every response that sets a session cookie.

Errors: handlers raise AuthError subclasses; api/main.py renders them.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Form, Request
from fastapi.responses import JSONResponse

from api.models import MeResponse, MessageResponse
from auth.dependencies import get_current_session, get_current_user
from auth.errors import AuthenticationError
from auth.models import Session, SessionCookie, User
from auth.passwords import authenticate_async, hash_password_async, run_in_hash_executor
from auth.reset import PasswordResetFlow
from auth.sessions import SessionManager
from auth.store import CredentialStore
from auth.validation import validate_email, validate_password, validate_username

logger = logging.getLogger("packspace.routes.auth")

FORGOT_PASSWORD_MESSAGE = "If an account exists with this email, you will receive a password reset link."

router = APIRouter()


def _message(message: str, cookie: SessionCookie | None = None) -> JSONResponse:
    resp = JSONResponse(status_code=200, content=MessageResponse(message=message).model_dump())
    if cookie is not None:
        cookie.apply(resp)
        resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=MessageResponse)
async def register(
    request: Request,
    username: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
) -> JSONResponse:
    """Create an account and log it in.

    Validation runs before hashing so malformed input never costs a bcrypt
    round. Uniqueness is decided by the store's UNIQUE constraints and
    surfaces as ConflictError naming the field that collided.
    """
    username = validate_username(username)
    email = validate_email(email)
    password = validate_password(password)

    store: CredentialStore = request.app.state.credential_store
    sessions: SessionManager = request.app.state.sessions

    password_hash = await hash_password_async(password)
    user = store.create_user(username, email, password_hash)
    _session, cookie = sessions.create_session(user.id)
    logger.info("Registered user %s", user.id)
    return _message("Registration successful", cookie)


@router.post("/auth/login", response_model=MessageResponse)
async def login(
    request: Request,
    username: str = Form(""),
    password: str = Form(""),
) -> JSONResponse:
    """Authenticate with username and password; set the session cookie.

    Missing fields, unknown usernames and wrong passwords all produce the same
    AuthenticationError so the response never confirms that an account exists.
    """
    username = username.strip()
    password = password.strip()
    if not username or not password:
        raise AuthenticationError()

    store: CredentialStore = request.app.state.credential_store
    sessions: SessionManager = request.app.state.sessions

    user = await authenticate_async(store, username, password)
    if user is None:
        logger.info("Failed login attempt")
        raise AuthenticationError()

    _session, cookie = sessions.create_session(user.id)
    return _message("Login successful", cookie)


@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(
    request: Request,
    background_tasks: BackgroundTasks,
    email: str = Form(""),
) -> JSONResponse:
    """Start password recovery. The response is identical for every input."""
    flow: PasswordResetFlow = request.app.state.reset_flow
    background_tasks.add_task(flow.request_reset(email).run)
    return _message(FORGOT_PASSWORD_MESSAGE)


@router.post("/auth/reset-password", response_model=MessageResponse)
async def reset_password(
    request: Request,
    token: str = Form(""),
    password: str = Form(""),
) -> JSONResponse:
    """Redeem a reset token, set the new password and start a fresh session.

    The whole redemption runs on the hashing executor: it hashes the new
    password between the token lookup and the atomic redeem.
    """
    flow: PasswordResetFlow = request.app.state.reset_flow
    result = await run_in_hash_executor(flow.redeem_reset, token, password)
    return _message("Password reset successful. You are now logged in.", result.cookie)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    session: Session = Depends(get_current_session),
) -> JSONResponse:
    """Delete the current session and clear the cookie."""
    sessions: SessionManager = request.app.state.sessions
    sessions.invalidate_session(session.id)
    return _message("Logout successful", sessions.blank_cookie())


@router.get("/auth/me", response_model=MeResponse)
async def me(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_current_session),
) -> MeResponse:
    """Return identity information for the current session."""
    return MeResponse(
        user_id=current_user.id,
        username=current_user.username,
        email=current_user.email,
        session_expires_at=session.expires_at.isoformat(),
    )
