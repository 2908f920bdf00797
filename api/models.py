"""
API request and response models for the rental auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

import re
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from auth.models import LoginResult, UserSummary

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# bcrypt only reads the first 72 bytes; longer passwords are refused rather
# than silently truncated.
PASSWORD_MAX_LENGTH = 72

_PASSWORD_RULES = (
    (re.compile(r"[a-z]"), "a lowercase letter"),
    (re.compile(r"[A-Z]"), "an uppercase letter"),
    (re.compile(r"\d"), "a digit"),
)


def check_password_policy(value: str) -> str:
    """At least 8 characters with a lowercase letter, an uppercase letter and a digit."""
    if len(value) < 8:
        raise ValueError("Password must be at least 8 characters long.")
    if len(value.encode("utf-8")) > PASSWORD_MAX_LENGTH:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_LENGTH} bytes.")
    missing = [label for pattern, label in _PASSWORD_RULES if not pattern.search(value)]
    if missing:
        raise ValueError(f"Password must include {', '.join(missing)}.")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    # No policy check on login: legacy passwords must still be accepted.
    password: str = Field(min_length=1, max_length=255)


class GoogleLoginRequest(BaseModel):
    id_token: str = Field(min_length=1, max_length=8192)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=64)


class LogoutDeviceRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=64)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    password: str
    date_of_birth: Optional[date] = None
    # 1=male, 2=female, 3=other, 4=prefer not to say
    gender: Optional[int] = Field(default=None, ge=1, le=4)

    @field_validator("password")
    @classmethod
    def password_policy(cls, v: str) -> str:
        return check_password_policy(v)


class ExchangeSessionRequest(BaseModel):
    session_token: str = Field(min_length=1, max_length=128)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=2048)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_policy(cls, v: str) -> str:
        return check_password_policy(v)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """User block returned with a token pair and by GET /auth/me."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    first_name: str
    last_name: str
    display_name: Optional[str]
    profile_image_url: Optional[str]
    roles: list[str]
    is_email_verified: bool
    is_identity_verified: bool
    account_status: int

    @classmethod
    def from_summary(cls, summary: UserSummary) -> "UserResponse":
        return cls(
            user_id=summary.user_id,
            email=summary.email,
            first_name=summary.first_name,
            last_name=summary.last_name,
            display_name=summary.display_name,
            profile_image_url=summary.profile_image_url,
            roles=list(summary.roles),
            is_email_verified=summary.is_email_verified,
            is_identity_verified=summary.is_identity_verified,
            account_status=summary.account_status,
        )


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse
    is_new_user: bool = False

    @classmethod
    def from_result(cls, result: LoginResult) -> "LoginResponse":
        """Factory Method: the mapping lives with the output model, not in routes."""
        return cls(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            expires_in=result.expires_in,
            user=UserResponse.from_summary(result.user),
            is_new_user=result.is_new_user,
        )


class RefreshResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    # Present only when refresh-token rotation is enabled.
    refresh_token: Optional[str] = None


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str


class WebhookResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    processed: bool
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[dict | str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = {}
