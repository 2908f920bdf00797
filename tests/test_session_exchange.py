"""
tests/test_session_exchange.py -- Unit tests for auth/sessions.py.

Covers:
  - create() persists a digest-only, short-lived token
  - redeem() returns a credential pair exactly once
  - expired, unknown and empty tokens; suspended user after creation
"""

from __future__ import annotations

import pytest

from auth.errors import ForbiddenError, InvalidSessionTokenError, UpstreamError
from auth.models import AccountStatus
from auth.sessions import SessionExchange


@pytest.fixture
def sessions(directory, issuer) -> SessionExchange:
    return SessionExchange(directory, issuer, ttl_seconds=120)


class TestSessionExchange:
    def test_redeem_once(self, sessions, directory, issuer, make_user) -> None:
        uid = make_user()
        token = sessions.create(uid)
        result = sessions.redeem(token)
        assert result.user.user_id == uid
        assert issuer.verify_access(result.access_token).subject == uid
        assert directory.validate_refresh_token(result.refresh_token).valid

        with pytest.raises(InvalidSessionTokenError):
            sessions.redeem(token)

    def test_tokens_are_unique(self, sessions, make_user) -> None:
        uid = make_user()
        assert len({sessions.create(uid) for _ in range(5)}) == 5

    def test_expired(self, directory, issuer, make_user) -> None:
        uid = make_user()
        expired = SessionExchange(directory, issuer, ttl_seconds=-1)
        token = expired.create(uid)
        with pytest.raises(InvalidSessionTokenError):
            expired.redeem(token)

    @pytest.mark.parametrize("token", ["", "never-issued"])
    def test_unknown(self, sessions, token) -> None:
        with pytest.raises(InvalidSessionTokenError):
            sessions.redeem(token)

    def test_suspended_between_create_and_redeem(self, sessions, directory, make_user) -> None:
        uid = make_user()
        token = sessions.create(uid)
        directory.set_account_status(uid, AccountStatus.SUSPENDED)
        with pytest.raises(ForbiddenError):
            sessions.redeem(token)
        # The claim already happened; reactivation does not revive the token.
        directory.set_account_status(uid, AccountStatus.ACTIVE)
        with pytest.raises(InvalidSessionTokenError):
            sessions.redeem(token)

    def test_create_for_unknown_user(self, sessions) -> None:
        with pytest.raises(UpstreamError):
            sessions.create("missing")
