"""
mailer.py -- Outbound password-reset email delivery.

Two transports behind one duck-typed interface (send_password_reset):
  ResendMailer -- POSTs to the Resend HTTP API. Used when RESEND_API_KEY is set.
  LogMailer    -- development fallback. Logs the reset link in DEBUG mode so a
                  developer can click through without an email account; in
                  production it refuses and reports failure.

Delivery never raises. A failed send is logged and reported as False: the
forgot-password response is the same either way, and the user can simply
request another link.
"""

import html
import logging
from urllib.parse import quote

import requests

from core.config import Settings

logger = logging.getLogger("packspace.mailer")

RESEND_API = "https://api.resend.com/emails"

_SUBJECT = "Reset your password"

_TEXT_BODY = """Password Reset Request

You requested to reset your password. Visit the link below to set a new password:

{url}

This link will expire in 1 hour.

If you didn't request this, you can safely ignore this email."""

_HTML_BODY = """<h1>Password Reset Request</h1>
<p>You requested to reset your password. Click the link below to set a new password:</p>
<p><a href="{url}">Reset Password</a></p>
<p>This link will expire in 1 hour.</p>
<p>If you didn't request this, you can safely ignore this email.</p>"""

# Module-level session shared across sends for connection pooling.
# max_redirects=3 -- a fixed, known API endpoint never needs more.
_session = requests.Session()
_session.max_redirects = 3


def reset_url(app_url: str, token: str) -> str:
    return f"{app_url.rstrip('/')}/reset-password?token={quote(token, safe='')}"


class ResendMailer:
    def __init__(self, api_key: str, from_email: str, app_url: str) -> None:
        self._api_key = api_key
        self._from_email = from_email
        self._app_url = app_url

    def send_password_reset(self, email: str, token: str) -> bool:
        url = reset_url(self._app_url, token)
        payload = {
            "from": self._from_email,
            "to": [email],
            "subject": _SUBJECT,
            "html": _HTML_BODY.format(url=html.escape(url, quote=True)),
            "text": _TEXT_BODY.format(url=url),
        }
        try:
            resp = _session.post(
                RESEND_API,
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=10,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error("Failed to send password reset email: %s", e)
            return False
        return True


class LogMailer:
    def __init__(self, app_url: str, debug: bool) -> None:
        self._app_url = app_url
        self._debug = debug

    def send_password_reset(self, email: str, token: str) -> bool:
        if not self._debug:
            logger.error("No mail transport configured (RESEND_API_KEY unset); reset email not sent")
            return False
        logger.warning("DEBUG mail transport -- password reset link for %s: %s", email, reset_url(self._app_url, token))
        return True


def build_mailer(settings: Settings):
    """Return the transport selected by configuration."""
    if settings.resend_api_key:
        return ResendMailer(settings.resend_api_key, settings.resend_from_email, settings.app_url)
    return LogMailer(settings.app_url, settings.debug)
