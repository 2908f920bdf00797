"""
auth/tokens.py -- Access/refresh credential issuance and password hashing.

Security design decisions:
  Access tokens: python-jose with HS256. Tokens are signed with SECRET_KEY and
       carry sub (user id), email, roles, iat, exp and typ="access". They are
       validated offline (signature + expiry) and never stored. Verification
       returns None on any failure -- the route layer turns that into a 401.

  Refresh tokens: uuid4 strings (122 random bits). Issuance delegates
       persistence to the User Directory, which is the sole source of truth
       for revocation. If the directory reports an error the token is NOT
       returned -- a client must never hold a refresh token the store does
       not know about.

  Passwords: bcrypt used directly. The _DUMMY_HASH constant enables timing
       equalization in the login orchestrator so response time does not
       reveal whether an email is registered [C1].

  SECRET_KEY: sourced from core.config.get_settings(). The Settings class
       validates the key at startup: dev mode (DEBUG=true) auto-generates a
       random key with a warning; production mode refuses to start without one.
       Short keys (<32 chars) are rejected with ValueError [M6].

Layer rule: no imports from api/, kyc/, or notify/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.errors import UpstreamError
from auth.models import AccessClaims, LoginResult, UserSummary
from core.config import get_settings
from core.redaction import token_prefix

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserDirectory

logger = logging.getLogger("rentalauth.auth.tokens")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
_ACCESS_TYPE = "access"

# Passed to validate_login_attempt() whenever the supplied password did not
# match, so the directory records a failed attempt. Not a valid bcrypt hash.
INVALID_VERIFIER_SENTINEL = "invalid_hash_attempt"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt. The API layer
    caps passwords at 72 characters (Pydantic field) to stay below that.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("rentalauth_timing_dummy")


# ---------------------------------------------------------------------------
# Credential Issuer
# ---------------------------------------------------------------------------


class CredentialIssuer:
    """Mints signed access tokens and directory-backed refresh tokens."""

    def __init__(
        self,
        secret_key: str,
        access_ttl_seconds: int = 900,
        refresh_ttl_days: int = 90,
    ) -> None:
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self._secret_key = secret_key
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_days * 86400

    def issue_access(self, subject: str, email: str, roles: list[str]) -> str:
        """Encode a signed access token. Pure: no I/O."""
        now = int(time.time())
        payload = {
            "sub": subject,
            "email": email,
            "roles": [r.lower() for r in roles],
            "iat": now,
            "exp": now + self.access_ttl_seconds,
            "typ": _ACCESS_TYPE,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify_access(self, token: str) -> AccessClaims | None:
        """Decode and verify an access token. Returns None on any failure.

        jose checks the signature and exp; the claim shape is checked here.
        """
        if not token:
            return None
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError:
            return None
        if payload.get("typ") != _ACCESS_TYPE:
            return None
        subject = payload.get("sub")
        roles = payload.get("roles")
        if not isinstance(subject, str) or not subject or not isinstance(roles, list):
            return None
        try:
            return AccessClaims(
                subject=subject,
                email=str(payload.get("email", "")),
                roles=[str(r) for r in roles],
                issued_at=int(payload["iat"]),
                expires_at=int(payload["exp"]),
            )
        except (KeyError, TypeError, ValueError):
            return None

    def issue_refresh(self, directory: UserDirectory, user_id: str) -> str:
        """Create and persist a refresh token for user_id.

        Raises UpstreamError if the directory could not store it.
        """
        token = str(uuid.uuid4())
        expires_at = int(time.time()) + self.refresh_ttl_seconds
        try:
            result = directory.create_refresh_token(user_id, token, expires_at)
        except UpstreamError:
            raise
        except Exception as exc:
            logger.error("Refresh token persistence failed for user %s: %s", user_id, exc)
            raise UpstreamError() from None
        if result.error:
            logger.error("Directory rejected refresh token %s for user %s: %s", token_prefix(token), user_id, result.error)
            raise UpstreamError()
        return token

    def issue_pair(self, directory: UserDirectory, user: User, *, is_new_user: bool = False) -> LoginResult:
        """Mint an access + refresh pair for a user that already passed the gate.

        Everything that can fail without side effects (signing, building the
        response) happens before the refresh token is persisted.
        """
        access = self.issue_access(user.id or "", user.email, user.roles)
        summary = UserSummary.from_user(user)
        refresh = self.issue_refresh(directory, user.id or "")
        return LoginResult(
            access_token=access,
            refresh_token=refresh,
            expires_in=self.access_ttl_seconds,
            user=summary,
            is_new_user=is_new_user,
        )
