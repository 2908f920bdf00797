"""
auth/oauth.py -- Server-side verification of Google ID tokens.

The client (web or mobile) completes Google Sign-In on its own and posts the
resulting ID token to POST /auth/google. Nothing the client sends besides
that token is trusted: subject, email, name and picture are read from the
verified claims only.

Verification uses Authlib's JOSE implementation:
  - signature (RS256) against Google's published JWKS
  - iss is https://accounts.google.com (or the bare host form Google also uses)
  - aud equals GOOGLE_CLIENT_ID
  - exp in the future

The JWKS is fetched with requests and cached for JWKS_CACHE_SECONDS. A token
signed with a kid the cache does not know triggers one re-fetch (Google
rotates keys roughly daily). The kid is read from the unverified header with
python-jose before any key lookup, so a malformed token never reaches the
network.

Security notes:
  [H1] Email verification is mandatory. verify_id_token() rejects tokens
       whose email_verified claim is not true. An unverified address could be
       a victim's email attached to an attacker's Google account.

  Error mapping: any token defect -> AuthenticationError (generic message).
  Failure to reach Google -> UpstreamError. Library exceptions never escape.

Layer rule: no imports from api/, kyc/, or notify/.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Protocol

import requests
from authlib.jose import JsonWebKey, JsonWebToken
from authlib.jose.errors import JoseError
from jose import JWTError, jwt

from auth.errors import AuthenticationError, UpstreamError
from auth.models import ProviderIdentity

logger = logging.getLogger("rentalauth.auth.oauth")

GOOGLE_CERTS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ("https://accounts.google.com", "accounts.google.com")
JWKS_CACHE_SECONDS = 3600
_HTTP_TIMEOUT = 5


def _has_key(key_set, kid: str) -> bool:
    try:
        key_set.find_by_kid(kid)
    except ValueError:
        return False
    return True


class IdentityProvider(Protocol):
    """Verifies a third-party ID token and returns its trusted claims."""

    name: str

    def verify_id_token(self, id_token: str, audience: str) -> ProviderIdentity: ...


class GoogleIdentityProvider:
    name = "google"

    def __init__(self, certs_url: str = GOOGLE_CERTS_URL, session: requests.Session | None = None) -> None:
        self._certs_url = certs_url
        self._session = session or requests.Session()
        self._jwt = JsonWebToken(["RS256"])
        self._keys = None
        self._fetched_at = 0.0
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # JWKS cache
    # ------------------------------------------------------------------

    def _fetch_keys(self):
        try:
            resp = self._session.get(self._certs_url, timeout=_HTTP_TIMEOUT)
            resp.raise_for_status()
            return JsonWebKey.import_key_set(resp.json())
        except (requests.RequestException, ValueError, JoseError) as exc:
            logger.error("Could not load Google signing keys: %s", exc)
            raise UpstreamError() from None

    def _key_set(self, force: bool = False):
        # The fetch runs outside the lock; the lock only guards the swap.
        with self._lock:
            keys, fetched_at = self._keys, self._fetched_at
        if not force and keys is not None and time.monotonic() - fetched_at <= JWKS_CACHE_SECONDS:
            return keys
        key_set = self._fetch_keys()
        with self._lock:
            self._keys = key_set
            self._fetched_at = time.monotonic()
        return key_set

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def _decode(self, id_token: str, audience: str, key_set):
        claims = self._jwt.decode(
            id_token,
            key_set,
            claims_options={
                "iss": {"essential": True, "values": list(GOOGLE_ISSUERS)},
                "aud": {"essential": True, "value": audience},
                "exp": {"essential": True},
                "sub": {"essential": True},
            },
        )
        claims.validate(leeway=30)
        return claims

    def verify_id_token(self, id_token: str, audience: str) -> ProviderIdentity:
        if not id_token or not audience:
            raise AuthenticationError()
        try:
            kid = jwt.get_unverified_header(id_token).get("kid")
        except JWTError:
            logger.warning("Google ID token rejected: malformed header")
            raise AuthenticationError("Invalid or expired Google token.") from None
        key_set = self._key_set()
        if isinstance(kid, str) and not _has_key(key_set, kid):
            # Google rotated its keys since the last fetch.
            logger.info("Google ID token signed with unknown key %s -- refreshing JWKS", kid)
            key_set = self._key_set(force=True)
            if not _has_key(key_set, kid):
                logger.warning("Google ID token rejected: key %s not in JWKS", kid)
                raise AuthenticationError("Invalid or expired Google token.")
        try:
            claims = self._decode(id_token, audience, key_set)
        except (JoseError, ValueError) as exc:
            logger.warning("Google ID token rejected: %s", type(exc).__name__)
            raise AuthenticationError("Invalid or expired Google token.") from None

        email = claims.get("email")
        if not email or claims.get("email_verified") not in (True, "true"):
            logger.warning("Google ID token rejected: email missing or not verified")
            raise AuthenticationError("Invalid or expired Google token.")

        return ProviderIdentity(
            subject=str(claims["sub"]),
            email=email,
            email_verified=True,
            name=claims.get("name") or "",
            picture=claims.get("picture"),
            issuer=claims["iss"],
            audience=audience,
            expiry=int(claims["exp"]),
        )
