"""
auth/sessions.py -- One-time session-exchange tokens.

After a user clicks the email verification link the backend redirects the
browser to the frontend with a short-lived session token in the URL. The
frontend immediately trades it for a real access + refresh pair via
POST /auth/exchange-session. The token:

  - is random (secrets.token_urlsafe, 256 bits) and stored only as a digest
  - lives SESSION_EXCHANGE_TTL_SECONDS (default 120 s)
  - can be redeemed exactly once, enforced by the directory's atomic claim

The claim happens before any credential is minted; the status gate runs on
the claimed user, so a user suspended between verification and exchange
gets a 403, not a session.
"""

from __future__ import annotations

import logging
import secrets
import time

from auth.errors import InvalidSessionTokenError, UpstreamError
from auth.models import LoginResult
from auth.results import Err
from auth.status import gate
from auth.store import UserDirectory
from auth.tokens import CredentialIssuer
from core.redaction import token_prefix

logger = logging.getLogger("rentalauth.auth.sessions")


class SessionExchange:
    def __init__(self, directory: UserDirectory, issuer: CredentialIssuer, ttl_seconds: int = 120) -> None:
        self._directory = directory
        self._issuer = issuer
        self.ttl_seconds = ttl_seconds

    def create(self, user_id: str) -> str:
        """Issue and persist a new exchange token for user_id."""
        token = secrets.token_urlsafe(32)
        result = self._directory.create_session_exchange(user_id, token, int(time.time()) + self.ttl_seconds)
        if isinstance(result, Err):
            logger.error("Could not create session exchange for user %s: %s", user_id, result.message)
            raise UpstreamError()
        return token

    def redeem(self, token: str) -> LoginResult:
        """Trade a session-exchange token for a credential pair, once."""
        if not token:
            raise InvalidSessionTokenError()
        claim = self._directory.claim_session_exchange(token)
        if isinstance(claim, Err):
            logger.info("Session exchange %s rejected: %s", token_prefix(token), claim.kind)
            raise InvalidSessionTokenError()

        user = self._directory.get_user(claim.value)
        if user is None:
            logger.warning("Session exchange %s claimed for missing user %s", token_prefix(token), claim.value)
            raise InvalidSessionTokenError()
        gate(user.account_status)
        return self._issuer.issue_pair(self._directory, user)
