"""
auth/validation.py -- Input policy for usernames, emails and passwords.

Each validator returns the normalized value or raises ValidationError with a
field-specific, user-facing message. Registration and password reset share
one password policy: 12-255 characters after trimming surrounding whitespace.
Login trims the same way so a password that passed registration verifies.
"""

from __future__ import annotations

import re

from auth.errors import ValidationError

USERNAME_MIN = 3
USERNAME_MAX = 31
PASSWORD_MIN = 12
PASSWORD_MAX = 255

_USERNAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def validate_username(username: str | None) -> str:
    value = (username or "").strip()
    if len(value) < USERNAME_MIN:
        raise ValidationError(f"Username must be at least {USERNAME_MIN} characters", field="username")
    if len(value) > USERNAME_MAX:
        raise ValidationError(f"Username must be at most {USERNAME_MAX} characters", field="username")
    if not _USERNAME_RE.match(value):
        raise ValidationError(
            "Username can only contain letters, numbers, hyphens, and underscores",
            field="username",
        )
    return value


def validate_email(email: str | None) -> str:
    value = normalize_email(email)
    if not value:
        raise ValidationError("Email is required", field="email")
    if not _EMAIL_RE.match(value):
        raise ValidationError("Invalid email address", field="email")
    return value


def validate_password(password: str | None) -> str:
    value = (password or "").strip()
    if len(value) < PASSWORD_MIN:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN} characters", field="password")
    if len(value) > PASSWORD_MAX:
        raise ValidationError(f"Password must be at most {PASSWORD_MAX} characters", field="password")
    return value
