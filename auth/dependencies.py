"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens are accepted from the Authorization: Bearer <token> header
only. Verification is local (signature + expiry); no directory round trip.

try_get_current_principal() is the soft variant (returns None on failure).
get_current_principal() wraps it and raises AuthenticationError (401).
get_current_user() additionally loads the user and re-runs the Account Status
Gate, for endpoints that must see a suspension before the access token
expires.

Layer rule: no imports from api/, kyc/, or notify/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import AuthenticationError
from auth.models import AccessClaims, User
from auth.status import gate
from auth.tokens import CredentialIssuer


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def try_get_current_principal(request: Request) -> AccessClaims | None:
    """Return the verified access claims, or None. Never raises."""
    token = _bearer_token(request)
    if not token:
        return None
    issuer: CredentialIssuer = request.app.state.issuer
    return issuer.verify_access(token)


def get_current_principal(request: Request) -> AccessClaims:
    """Require a valid access token.

    Use as a FastAPI dependency:
        @router.post("/auth/logout")
        def route(principal: AccessClaims = Depends(get_current_principal)): ...
    """
    claims = try_get_current_principal(request)
    if claims is None:
        raise AuthenticationError("Authentication required.")
    return claims


def get_current_user(request: Request) -> User:
    """Require a valid access token for an existing, ACTIVE account."""
    claims = get_current_principal(request)
    user = request.app.state.directory.get_user(claims.subject)
    if user is None:
        raise AuthenticationError("Authentication required.")
    gate(user.account_status)
    return user
