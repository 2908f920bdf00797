"""
auth/login.py -- Login orchestrators: password, Google, refresh, logout.

Every path that ends in a credential pair has the same shape:

    establish identity -> Account Status Gate -> CredentialIssuer.issue_pair

and nothing is minted or persisted before the gate has passed.

Password login [C1]:
  1. Look up the stored hash by email.
  2. bcrypt-compare. An unknown email (or an OAuth-only account) is compared
     against _DUMMY_HASH so response time does not reveal registration.
  3. On mismatch, report the attempt to the directory with the failure
     sentinel so it counts toward lockout; raise the generic 401.
  4. On match, report the stored hash. The directory answers with the user,
     a lock, or an error.

Refresh:
  The directory is the sole authority on refresh token validity. Not found,
  expired and revoked all surface as the same InvalidRefreshError; the log
  line carries the internal reason. With ROTATE_REFRESH_TOKENS the new token
  is persisted first and the old one revoked second, so a failed revocation
  leaves the user with two valid tokens rather than none.

Layer rule: no imports from api/, kyc/, or notify/.
"""

from __future__ import annotations

import logging
import math
import time

from auth.errors import AccountLockedError, AuthenticationError, InvalidRefreshError, UpstreamError
from auth.models import LoginResult, RefreshResult, User
from auth.oauth import IdentityProvider
from auth.status import gate
from auth.store import UserDirectory
from auth.tokens import _DUMMY_HASH, INVALID_VERIFIER_SENTINEL, CredentialIssuer, verify_password
from core.redaction import mask_email, token_prefix

logger = logging.getLogger("rentalauth.auth.login")

DEFAULT_LOCK_MINUTES = 15


def _minutes_remaining(locked_until: int | None) -> int:
    if not locked_until:
        return DEFAULT_LOCK_MINUTES
    return max(1, math.ceil((locked_until - time.time()) / 60))


class LoginService:
    def __init__(
        self,
        directory: UserDirectory,
        issuer: CredentialIssuer,
        *,
        identity_provider: IdentityProvider | None = None,
        google_client_id: str = "",
        rotate_refresh_tokens: bool = False,
    ) -> None:
        self._directory = directory
        self._issuer = issuer
        self._identity_provider = identity_provider
        self._google_client_id = google_client_id
        self._rotate = rotate_refresh_tokens

    # ------------------------------------------------------------------
    # Password
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> LoginResult:
        """Authenticate with email + password. Raises on any failure."""
        logger.info("Login attempt for %s", mask_email(email))
        lookup = self._directory.find_credential_by_email(email)

        if lookup is None or lookup.hashed_password is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            verify_password(password, _DUMMY_HASH)
            self._record_attempt(email, INVALID_VERIFIER_SENTINEL)
            raise AuthenticationError()

        if not verify_password(password, lookup.hashed_password):
            self._record_attempt(email, INVALID_VERIFIER_SENTINEL)
            raise AuthenticationError()

        user = self._record_attempt(email, lookup.hashed_password)
        if user is None:
            raise AuthenticationError()

        gate(user.account_status)
        result = self._issuer.issue_pair(self._directory, user)
        logger.info("Login succeeded for %s", mask_email(email))
        return result

    def _record_attempt(self, email: str, verifier: str) -> User | None:
        """Report an attempt to the directory. Raises AccountLockedError if locked."""
        attempt = self._directory.validate_login_attempt(email, verifier)
        if attempt.is_locked:
            minutes = _minutes_remaining(attempt.locked_until)
            logger.warning("Login refused for %s: account locked (%d min)", mask_email(email), minutes)
            raise AccountLockedError(minutes)
        if attempt.error:
            logger.info("Login failed for %s: %s", mask_email(email), attempt.error)
            return None
        return attempt.user

    # ------------------------------------------------------------------
    # Google
    # ------------------------------------------------------------------

    def login_with_google(self, id_token: str) -> LoginResult:
        """Verify a Google ID token and sign the mapped local user in."""
        if self._identity_provider is None or not self._google_client_id:
            logger.error("Google login requested but GOOGLE_CLIENT_ID is not configured")
            raise UpstreamError()

        identity = self._identity_provider.verify_id_token(id_token, self._google_client_id)
        provider_login = self._directory.login_with_provider(
            self._identity_provider.name,
            identity.subject,
            identity.email,
            identity.name,
            identity.picture,
        )
        if provider_login.error or not provider_login.user_id:
            logger.warning("Provider login failed for %s: %s", mask_email(identity.email), provider_login.error)
            raise AuthenticationError()

        user = self._directory.get_user(provider_login.user_id)
        if user is None:
            logger.error("Provider login returned unknown user %s", provider_login.user_id)
            raise UpstreamError()

        gate(user.account_status)
        result = self._issuer.issue_pair(self._directory, user, is_new_user=provider_login.is_new_user)
        logger.info("Google login succeeded for %s (new user: %s)", mask_email(identity.email), provider_login.is_new_user)
        return result

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> RefreshResult:
        """Exchange a valid refresh token for a new access token."""
        if not refresh_token:
            raise InvalidRefreshError()
        validation = self._directory.validate_refresh_token(refresh_token)
        if not validation.valid or not validation.user_id:
            logger.info("Refresh rejected for %s: %s", token_prefix(refresh_token), validation.error)
            raise InvalidRefreshError()

        user = validation.user or self._directory.get_user(validation.user_id)
        if user is None:
            logger.info("Refresh rejected for %s: user %s missing", token_prefix(refresh_token), validation.user_id)
            raise InvalidRefreshError()

        gate(user.account_status)
        access = self._issuer.issue_access(validation.user_id, user.email, user.roles)

        if not self._rotate:
            return RefreshResult(access_token=access, expires_in=self._issuer.access_ttl_seconds)

        new_refresh = self._issuer.issue_refresh(self._directory, validation.user_id)
        try:
            revoked = self._directory.revoke_refresh_tokens(validation.user_id, refresh_token)
            if revoked.error:
                logger.warning("Old refresh token %s not revoked: %s", token_prefix(refresh_token), revoked.error)
        except UpstreamError:
            logger.warning("Old refresh token %s not revoked: directory unavailable", token_prefix(refresh_token))
        return RefreshResult(
            access_token=access,
            expires_in=self._issuer.access_ttl_seconds,
            refresh_token=new_refresh,
        )

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, user_id: str) -> int:
        """Revoke every refresh token of user_id. Returns the count revoked."""
        result = self._directory.revoke_refresh_tokens(user_id, None)
        if result.error:
            logger.error("Logout failed for user %s: %s", user_id, result.error)
            raise UpstreamError()
        logger.info("Logged out user %s from all devices (%d tokens)", user_id, result.revoked_count)
        return result.revoked_count

    def logout_device(self, user_id: str, refresh_token: str) -> int:
        """Revoke a single refresh token owned by user_id."""
        result = self._directory.revoke_refresh_tokens(user_id, refresh_token)
        if result.error:
            logger.error("Device logout failed for user %s: %s", user_id, result.error)
            raise UpstreamError()
        logger.info("Logged out user %s from one device (%s)", user_id, token_prefix(refresh_token))
        return result.revoked_count
