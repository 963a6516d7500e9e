"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Packspace happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. database_url -> DATABASE_URL). Type coercion and validation are
      built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Used to derive the Secure cookie flag from
      DEBUG and to reject session windows that could never renew.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("packspace.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'data' / 'packspace.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL
    app_url: str = "http://localhost:4321"

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_cookie_name: str = "auth_session"
    # None means "follow DEBUG": Secure outside development.
    secure_cookies: bool | None = None
    session_lifetime_seconds: int = 30 * 24 * 3600
    # Validation inside this window of the expiry slides the session forward.
    session_renewal_seconds: int = 15 * 24 * 3600

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    reset_token_lifetime_seconds: int = 3600
    resend_api_key: str = ""
    resend_from_email: str = "noreply@updates.packspace.co.uk"

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    hash_workers: int = 4

    # ------------------------------------------------------------------
    # Rate limiting and request gatekeeping
    # ------------------------------------------------------------------

    auth_rate_limit_max: int = 10
    auth_rate_limit_window_seconds: int = 15 * 60
    rate_limited_paths: list[str] = ["/api/auth/login", "/api/auth/register"]
    # Only enable behind a reverse proxy that overwrites X-Forwarded-For.
    trust_forwarded_for: bool = False
    trusted_origin_hosts: list[str] = ["localhost"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_policy(self) -> "Settings":
        """Resolve derived defaults and reject self-contradictory policy.

        secure_cookies: unset means Secure in production (DEBUG=false) and
            plain in development so cookies work over http://localhost.

        session_renewal_seconds must be shorter than the lifetime, otherwise
            every validation would renew and the cookie would be rewritten on
            every request.
        """
        if self.secure_cookies is None:
            self.secure_cookies = not self.debug
            if self.debug:
                logger.warning("WARNING: DEBUG mode -- session cookies are sent without the Secure flag.")
        if self.session_lifetime_seconds <= 0:
            raise ValueError("SESSION_LIFETIME_SECONDS must be positive.")
        if not 0 < self.session_renewal_seconds < self.session_lifetime_seconds:
            raise ValueError("SESSION_RENEWAL_SECONDS must be positive and shorter than SESSION_LIFETIME_SECONDS.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if self.auth_rate_limit_max < 1 or self.auth_rate_limit_window_seconds < 1:
            raise ValueError("Rate limit max and window must both be at least 1.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings()
    directly, except tests that need an isolated instance.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
