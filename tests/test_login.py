"""
tests/test_login.py -- Unit tests for auth/login.py (LoginService).

Covers:
  - password login happy path, identical failure for wrong password and
    unknown email, lockout after repeated failures
  - status gate before anything is minted (suspended / banned)
  - Google login: new user, returning user, invalid token, not configured
  - refresh with and without rotation; revoked/unknown tokens
  - logout everywhere vs. logout one device

The directory fixture locks accounts after 3 failed attempts.
"""

from __future__ import annotations

import pytest

from auth.errors import (
    AccountLockedError,
    AuthenticationError,
    ForbiddenError,
    InvalidRefreshError,
    UpstreamError,
)
from auth.login import LoginService
from auth.models import AccountStatus
from core.config import get_settings

from conftest import TEST_PASSWORD, FakeIdentityProvider


@pytest.fixture
def google() -> FakeIdentityProvider:
    provider = FakeIdentityProvider()
    provider.register("google-token-1", subject="g-sub-1", email="marta@example.com", name="Marta López")
    return provider


@pytest.fixture
def service(directory, issuer, google) -> LoginService:
    return LoginService(
        directory,
        issuer,
        identity_provider=google,
        google_client_id=get_settings().google_client_id,
    )


def _active_refresh_count(directory, user_id: str) -> int:
    # Revoking is the only way the directory reports how many are live.
    return directory.revoke_refresh_tokens(user_id).revoked_count


class TestPasswordLogin:
    def test_success(self, service, directory, issuer, make_user) -> None:
        uid = make_user(roles=["guest", "host"])
        result = service.login("ana@example.com", TEST_PASSWORD)
        assert result.user.user_id == uid
        assert result.user.roles == ["guest", "host"]
        assert not result.is_new_user
        assert issuer.verify_access(result.access_token).subject == uid
        assert directory.validate_refresh_token(result.refresh_token).valid

    def test_email_is_case_insensitive(self, service, make_user) -> None:
        make_user()
        assert service.login("ANA@Example.com", TEST_PASSWORD).user.email == "ana@example.com"

    def test_wrong_password_and_unknown_email_look_the_same(self, service, make_user) -> None:
        make_user()
        with pytest.raises(AuthenticationError) as wrong:
            service.login("ana@example.com", "not-the-password")
        with pytest.raises(AuthenticationError) as unknown:
            service.login("ghost@example.com", TEST_PASSWORD)
        assert type(wrong.value) is type(unknown.value) is AuthenticationError
        assert wrong.value.message == unknown.value.message
        assert wrong.value.detail == unknown.value.detail == {}

    def test_lockout_after_repeated_failures(self, service, make_user) -> None:
        make_user()
        for _ in range(2):
            with pytest.raises(AuthenticationError) as exc_info:
                service.login("ana@example.com", "wrong")
            assert not isinstance(exc_info.value, AccountLockedError)
        with pytest.raises(AccountLockedError) as locked:
            service.login("ana@example.com", "wrong")
        assert 1 <= locked.value.minutes_remaining <= 15

        # The right password does not get through a lock.
        with pytest.raises(AccountLockedError):
            service.login("ana@example.com", TEST_PASSWORD)

    def test_failed_attempts_reset_on_success(self, service, directory, make_user) -> None:
        uid = make_user()
        for _ in range(2):
            with pytest.raises(AuthenticationError):
                service.login("ana@example.com", "wrong")
        service.login("ana@example.com", TEST_PASSWORD)
        assert directory.get_user(uid).failed_login_attempts == 0

    @pytest.mark.parametrize(
        "status, reason",
        [
            (AccountStatus.SUSPENDED, "account suspended"),
            (AccountStatus.DELETED, "account deleted"),
            (AccountStatus.BANNED, "account banned"),
        ],
    )
    def test_inactive_account_is_forbidden(self, service, directory, make_user, status, reason) -> None:
        uid = make_user(account_status=status)
        with pytest.raises(ForbiddenError) as exc_info:
            service.login("ana@example.com", TEST_PASSWORD)
        assert exc_info.value.reason == reason
        assert _active_refresh_count(directory, uid) == 0

    def test_oauth_only_account_cannot_use_password(self, service, directory) -> None:
        directory.login_with_provider("google", "g-sub-9", "oauth@example.com", "O Auth", None)
        with pytest.raises(AuthenticationError):
            service.login("oauth@example.com", "anything")


class TestGoogleLogin:
    def test_new_user(self, service, directory) -> None:
        result = service.login_with_google("google-token-1")
        assert result.is_new_user
        user = directory.get_user(result.user.user_id)
        assert user.email == "marta@example.com"
        assert user.first_name == "Marta" and user.last_name == "López"
        assert user.is_email_verified

    def test_returning_user(self, service) -> None:
        first = service.login_with_google("google-token-1")
        second = service.login_with_google("google-token-1")
        assert not second.is_new_user
        assert second.user.user_id == first.user.user_id

    def test_links_existing_password_account(self, service, make_user) -> None:
        uid = make_user("marta@example.com")
        result = service.login_with_google("google-token-1")
        assert result.user.user_id == uid and not result.is_new_user

    def test_invalid_token(self, service) -> None:
        with pytest.raises(AuthenticationError):
            service.login_with_google("forged")

    def test_banned_user(self, service, directory, make_user) -> None:
        uid = make_user("marta@example.com", account_status=AccountStatus.BANNED)
        with pytest.raises(ForbiddenError) as exc_info:
            service.login_with_google("google-token-1")
        assert exc_info.value.reason == "account banned"
        assert _active_refresh_count(directory, uid) == 0

    def test_not_configured(self, directory, issuer, google) -> None:
        service = LoginService(directory, issuer, identity_provider=google, google_client_id="")
        with pytest.raises(UpstreamError):
            service.login_with_google("google-token-1")


class TestRefresh:
    def test_refresh_returns_new_access(self, service, issuer, make_user) -> None:
        uid = make_user()
        pair = service.login("ana@example.com", TEST_PASSWORD)
        result = service.refresh(pair.refresh_token)
        assert issuer.verify_access(result.access_token).subject == uid
        assert result.refresh_token is None

    @pytest.mark.parametrize("token", ["", "never-issued"])
    def test_unknown_token(self, service, token) -> None:
        with pytest.raises(InvalidRefreshError):
            service.refresh(token)

    def test_revoked_token(self, service, make_user) -> None:
        uid = make_user()
        pair = service.login("ana@example.com", TEST_PASSWORD)
        service.logout(uid)
        with pytest.raises(InvalidRefreshError):
            service.refresh(pair.refresh_token)

    def test_suspended_after_login(self, service, directory, make_user) -> None:
        uid = make_user()
        pair = service.login("ana@example.com", TEST_PASSWORD)
        directory.set_account_status(uid, AccountStatus.SUSPENDED)
        with pytest.raises(ForbiddenError):
            service.refresh(pair.refresh_token)

    def test_rotation(self, directory, issuer, make_user) -> None:
        make_user()
        service = LoginService(directory, issuer, rotate_refresh_tokens=True)
        pair = service.login("ana@example.com", TEST_PASSWORD)
        rotated = service.refresh(pair.refresh_token)
        assert rotated.refresh_token and rotated.refresh_token != pair.refresh_token
        assert not directory.validate_refresh_token(pair.refresh_token).valid
        assert directory.validate_refresh_token(rotated.refresh_token).valid
        with pytest.raises(InvalidRefreshError):
            service.refresh(pair.refresh_token)


class TestLogout:
    def test_logout_everywhere(self, service, directory, make_user) -> None:
        uid = make_user()
        a = service.login("ana@example.com", TEST_PASSWORD)
        b = service.login("ana@example.com", TEST_PASSWORD)
        assert service.logout(uid) == 2
        assert not directory.validate_refresh_token(a.refresh_token).valid
        assert not directory.validate_refresh_token(b.refresh_token).valid

    def test_logout_one_device(self, service, directory, make_user) -> None:
        uid = make_user()
        a = service.login("ana@example.com", TEST_PASSWORD)
        b = service.login("ana@example.com", TEST_PASSWORD)
        assert service.logout_device(uid, a.refresh_token) == 1
        assert not directory.validate_refresh_token(a.refresh_token).valid
        assert directory.validate_refresh_token(b.refresh_token).valid

    def test_logout_device_ignores_foreign_token(self, service, directory, make_user) -> None:
        make_user()
        other = make_user("other@example.com")
        pair = service.login("ana@example.com", TEST_PASSWORD)
        assert service.logout_device(other, pair.refresh_token) == 0
        assert directory.validate_refresh_token(pair.refresh_token).valid
