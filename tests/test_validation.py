"""
tests/test_validation.py -- Tests for input validation policy.
"""

from __future__ import annotations

import pytest

from auth.errors import ValidationError
from auth.validation import normalize_email, validate_email, validate_password, validate_username


class TestUsername:
    @pytest.mark.parametrize("name", ["abc", "alice_01", "a-b-c", "x" * 31])
    def test_accepts(self, name: str) -> None:
        assert validate_username(name) == name

    def test_trims(self) -> None:
        assert validate_username("  alice  ") == "alice"

    @pytest.mark.parametrize(
        "name, fragment",
        [
            ("ab", "at least 3"),
            ("x" * 32, "at most 31"),
            ("al ice", "letters, numbers"),
            ("alice!", "letters, numbers"),
            ("", "at least 3"),
            (None, "at least 3"),
        ],
    )
    def test_rejects(self, name, fragment: str) -> None:
        with pytest.raises(ValidationError, match=fragment) as exc_info:
            validate_username(name)
        assert exc_info.value.field == "username"


class TestEmail:
    def test_normalizes(self) -> None:
        assert validate_email("  Alice@Example.COM ") == "alice@example.com"
        assert normalize_email(None) == ""

    def test_required(self) -> None:
        with pytest.raises(ValidationError, match="Email is required"):
            validate_email("   ")

    @pytest.mark.parametrize("value", ["alice", "alice@", "@example.com", "a b@example.com", "alice@example"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ValidationError, match="Invalid email address") as exc_info:
            validate_email(value)
        assert exc_info.value.field == "email"


class TestPassword:
    def test_accepts_and_trims(self) -> None:
        assert validate_password("  twelve chars  ") == "twelve chars"

    def test_too_short(self) -> None:
        with pytest.raises(ValidationError, match="at least 12"):
            validate_password("short")

    def test_whitespace_does_not_count(self) -> None:
        with pytest.raises(ValidationError, match="at least 12"):
            validate_password("   elevenchar   ")

    def test_too_long(self) -> None:
        with pytest.raises(ValidationError, match="at most 255") as exc_info:
            validate_password("x" * 256)
        assert exc_info.value.field == "password"
