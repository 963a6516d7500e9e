"""
tests/test_sessions.py -- Tests for SessionManager.

Coverage:
  - Creation: fresh session, cookie attributes, lifetime-based expiry
  - Validation outside the renewal window: VALID, nothing written
  - Validation inside the renewal window: RENEWED, expiry slides forward
  - Expiry and unknown ids: EXPIRED, row removed, blank cookie
  - Invalidation of one session and of all sessions for a user
"""

from __future__ import annotations

from datetime import timedelta

from auth.models import SessionStatus
from auth.sessions import SessionManager, generate_session_id
from core.config import Settings

DAY = 24 * 3600


def _user_id(store, name: str = "alice") -> str:
    return store.create_user(name, f"{name}@example.com", "hash").id


def test_session_ids_are_random_hex() -> None:
    a, b = generate_session_id(), generate_session_id()
    assert a != b
    assert len(a) == 40
    int(a, 16)


class TestCreate:
    def test_create_session(self, store, sessions: SessionManager, clock) -> None:
        session, cookie = sessions.create_session(_user_id(store))
        assert session.fresh is True
        assert session.expires_at == clock.now() + timedelta(days=30)
        assert cookie.name == "auth_session"
        assert cookie.value == session.id
        assert cookie.max_age == 30 * DAY
        assert cookie.expires == session.expires_at
        assert cookie.httponly is True
        assert cookie.samesite == "lax"
        assert cookie.path == "/"
        # DEBUG settings: cookies work over plain http in development.
        assert cookie.secure is False

    def test_secure_outside_debug(self, store, clock) -> None:
        manager = SessionManager(store, Settings(debug=False, bcrypt_rounds=4), now=clock.now)
        _, cookie = manager.create_session(_user_id(store))
        assert cookie.secure is True
        assert manager.blank_cookie().secure is True

    def test_explicit_secure_setting_wins(self, store, clock) -> None:
        manager = SessionManager(store, Settings(debug=True, secure_cookies=True, bcrypt_rounds=4), now=clock.now)
        _, cookie = manager.create_session(_user_id(store))
        assert cookie.secure is True


class TestValidate:
    def test_valid_outside_renewal_window(self, store, sessions: SessionManager, clock) -> None:
        session, _ = sessions.create_session(_user_id(store))
        clock.advance(10 * DAY)

        result = sessions.validate_session(session.id)
        assert result.status is SessionStatus.VALID
        assert result.authenticated is True
        assert result.session.fresh is False
        assert result.session.expires_at == session.expires_at
        assert result.user.username == "alice"
        assert sessions.cookie_for(result) is None

    def test_renewed_inside_window(self, store, sessions: SessionManager, clock) -> None:
        session, _ = sessions.create_session(_user_id(store))
        clock.advance(16 * DAY)

        result = sessions.validate_session(session.id)
        assert result.status is SessionStatus.RENEWED
        assert result.session.fresh is True
        assert result.session.expires_at == clock.now() + timedelta(days=30)

        stored, _ = store.get_session_and_user(session.id)
        assert stored.expires_at == clock.now() + timedelta(days=30)

        cookie = sessions.cookie_for(result)
        assert cookie.value == session.id
        assert cookie.max_age == 30 * DAY

    def test_renewal_restarts_the_window(self, store, sessions: SessionManager, clock) -> None:
        session, _ = sessions.create_session(_user_id(store))
        clock.advance(16 * DAY)
        sessions.validate_session(session.id)
        clock.advance(1 * DAY)
        assert sessions.validate_session(session.id).status is SessionStatus.VALID

    def test_expired_session_deleted(self, store, sessions: SessionManager, clock) -> None:
        session, _ = sessions.create_session(_user_id(store))
        clock.advance(30 * DAY)

        result = sessions.validate_session(session.id)
        assert result.status is SessionStatus.EXPIRED
        assert result.authenticated is False
        assert result.user is None
        assert store.get_session_and_user(session.id) == (None, None)

        cookie = sessions.cookie_for(result)
        assert cookie.value == ""
        assert cookie.max_age == 0

    def test_renewal_of_concurrently_deleted_session(self, store, sessions: SessionManager, clock, monkeypatch) -> None:
        session, _ = sessions.create_session(_user_id(store))
        clock.advance(16 * DAY)
        real_update = store.update_session_expiry

        def logout_first(session_id, expires_at):
            store.delete_session(session_id)
            return real_update(session_id, expires_at)

        monkeypatch.setattr(store, "update_session_expiry", logout_first)

        result = sessions.validate_session(session.id)
        assert result.status is SessionStatus.EXPIRED
        assert result.user is None
        assert sessions.cookie_for(result).max_age == 0
        assert store.get_session_and_user(session.id) == (None, None)

    def test_unknown_and_empty_ids(self, sessions: SessionManager) -> None:
        assert sessions.validate_session("does-not-exist").status is SessionStatus.EXPIRED
        assert sessions.validate_session("").status is SessionStatus.EXPIRED


class TestInvalidate:
    def test_invalidate_session(self, store, sessions: SessionManager) -> None:
        session, _ = sessions.create_session(_user_id(store))
        assert sessions.invalidate_session(session.id) is True
        assert sessions.validate_session(session.id).status is SessionStatus.EXPIRED

    def test_invalidate_all_for_user(self, store, sessions: SessionManager) -> None:
        alice, bob = _user_id(store, "alice"), _user_id(store, "bob")
        s1, _ = sessions.create_session(alice)
        s2, _ = sessions.create_session(alice)
        s3, _ = sessions.create_session(bob)

        assert sessions.invalidate_all_sessions_for_user(alice) == 2
        assert sessions.validate_session(s1.id).status is SessionStatus.EXPIRED
        assert sessions.validate_session(s2.id).status is SessionStatus.EXPIRED
        assert sessions.validate_session(s3.id).authenticated is True

    def test_delete_expired_sessions(self, store, sessions: SessionManager, clock) -> None:
        user_id = _user_id(store)
        old, _ = sessions.create_session(user_id)
        clock.advance(31 * DAY)
        new, _ = sessions.create_session(user_id)

        assert sessions.delete_expired_sessions() == 1
        assert store.get_session_and_user(old.id) == (None, None)
        assert store.get_session_and_user(new.id)[0] is not None
