"""
auth/passwords.py -- Password hashing and credential verification.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). bcrypt is the right
       choice for low-entropy secrets because its cost factor makes
       brute-force expensive. Cost is Settings.bcrypt_rounds (12 in
       production; tests lower it to 4), applied by configure_hashing()
       from the settings the app is wired with.

  72-byte limit: bcrypt only reads the first 72 bytes of its input and
       bcrypt >= 5 raises instead of truncating. The validation policy allows
       up to 255 characters, so both hash and verify truncate the UTF-8 bytes
       explicitly and agree on what was hashed.

  Timing equalization: _dummy_hash() enables constant-work login so response
       time does not reveal whether a username exists.

  Executor: hashing is CPU-bound. Async handlers await hash_password_async /
       authenticate_async, which run bcrypt on a dedicated ThreadPoolExecutor
       sized by Settings.hash_workers. A burst of logins then queues behind
       its own workers instead of occupying the event loop or the shared
       Starlette threadpool that serves every other request.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache
from typing import TYPE_CHECKING, TypeVar

import bcrypt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import CredentialStore

logger = logging.getLogger("packspace.passwords")

_BCRYPT_MAX_BYTES = 72

T = TypeVar("T")

_executor: ThreadPoolExecutor | None = None
# Set by configure_hashing(); None falls back to get_settings().
_rounds: int | None = None
_workers: int | None = None


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def configure_hashing(rounds: int, workers: int) -> None:
    """Use rounds and workers from now on.

    Called by build_services() with the wired Settings. The dummy hash and any
    running executor were built under the previous values and are replaced.
    """
    global _rounds, _workers
    _rounds, _workers = rounds, workers
    _dummy_hash.cache_clear()
    shutdown_hash_executor()


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    rounds = _rounds if _rounds is not None else get_settings().bcrypt_rounds
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(_encode(plain), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash is a data problem, not a login failure the user
    can fix -- it is logged and treated as a mismatch.
    """
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    # Computed lazily so importing this module does not pay for a bcrypt
    # round, and so the cost matches the configured bcrypt_rounds.
    return hash_password("packspace_timing_dummy")


def authenticate_user(store: CredentialStore, username: str, password: str) -> User | None:
    """Authenticate a username/password pair with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown username: bcrypt runs against the dummy hash (same cost)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure. Callers must map None to
    one generic error so the two failure causes stay indistinguishable.
    """
    user = store.find_user_by_username(username)
    if user is None:
        verify_password(password, _dummy_hash())
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


# ---------------------------------------------------------------------------
# Dedicated executor
# ---------------------------------------------------------------------------


def get_hash_executor() -> ThreadPoolExecutor:
    global _executor
    if _executor is None:
        workers = _workers if _workers is not None else get_settings().hash_workers
        _executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bcrypt")
    return _executor


def shutdown_hash_executor() -> None:
    """Stop the hashing workers. Called from the API lifespan on shutdown."""
    global _executor
    if _executor is not None:
        _executor.shutdown(wait=True)
        _executor = None


async def run_in_hash_executor(fn: Callable[..., T], *args) -> T:
    """Await fn(*args) on the hashing workers. Exceptions propagate to the caller."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(get_hash_executor(), fn, *args)


async def hash_password_async(plain: str) -> str:
    return await run_in_hash_executor(hash_password, plain)


async def authenticate_async(store: CredentialStore, username: str, password: str) -> User | None:
    return await run_in_hash_executor(authenticate_user, store, username, password)
