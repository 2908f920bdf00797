"""
auth/errors.py -- Error taxonomy for the authentication core.

Every failure that leaves auth/ or kyc/ is one of these classes. Library
exceptions (jose, cryptography, authlib, requests, SQLAlchemy) are caught at
the point they occur and re-raised as one of these, so the API layer maps a
closed set of types to HTTP responses.

Each class carries:
  status_code -- HTTP status the API layer returns
  code        -- stable machine-readable error code
  message     -- public message; never includes internal detail

AuthenticationError messages are deliberately generic: "wrong password",
"unknown email", "revoked token" and "expired token" all look the same to the
client. AuthorizationError is the exception -- the user is already
identified, so the specific reason (suspended / deleted / banned) is returned.

Layer rule: no imports from api/, kyc/, or notify/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all errors surfaced by the auth core."""

    status_code: int = 400
    code: str = "bad_request"
    default_message: str = "The request could not be processed."

    def __init__(self, message: str | None = None, *, detail: dict | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail or {}
        super().__init__(self.message)


class ValidationError(AuthError):
    """Malformed input or wrong shape. detail carries field-level errors."""

    status_code = 422
    code = "validation_error"
    default_message = "Request validation failed."


class AuthenticationError(AuthError):
    status_code = 401
    code = "unauthorized"
    default_message = "Invalid credentials."


class InvalidRefreshError(AuthenticationError):
    code = "invalid_refresh_token"
    default_message = "Refresh token is invalid or expired. Please sign in again."


class InvalidSessionTokenError(AuthenticationError):
    code = "invalid_session_token"
    default_message = "Session token is invalid or has already been used."


class InvalidResetLinkError(AuthenticationError):
    code = "invalid_reset_link"
    default_message = "The recovery link is invalid, expired or already used. Request a new one."


class AccountLockedError(AuthenticationError):
    """Too many failed attempts. minutes_remaining is informational."""

    code = "account_locked"
    default_message = "Account locked after repeated failed attempts."

    def __init__(self, minutes_remaining: int) -> None:
        self.minutes_remaining = minutes_remaining
        super().__init__(
            f"Account locked after repeated failed attempts. Try again in {minutes_remaining} minutes.",
            detail={"minutes_remaining": minutes_remaining},
        )


class WebhookSignatureError(AuthenticationError):
    code = "invalid_signature"
    default_message = "Webhook signature verification failed."


class AuthorizationError(AuthError):
    """The caller is identified but not allowed. reason is shown to the user."""

    status_code = 403
    code = "forbidden"
    default_message = "Access denied."

    def __init__(self, reason: str, message: str | None = None) -> None:
        self.reason = reason
        super().__init__(message or reason, detail={"reason": reason})


class ForbiddenError(AuthorizationError):
    """Raised by the account status gate."""

    code = "account_not_active"


class DecryptionError(AuthError):
    """Tampered, truncated or wrong-key encrypted token.

    The message never says which -- distinguishing tamper from wrong key
    would give an attacker a decryption oracle.
    """

    status_code = 400
    code = "invalid_link"
    default_message = "The link is invalid. Request a new one."


class ConflictError(AuthError):
    status_code = 409
    code = "conflict"
    default_message = "The resource already exists."


class UpstreamError(AuthError):
    """User Directory, identity provider or another dependency failed."""

    status_code = 503
    code = "upstream_unavailable"
    default_message = "Service temporarily unavailable. Please try again."
