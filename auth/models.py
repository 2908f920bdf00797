"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
services do the work; these types own the shape. Every User Directory call
returns one of the explicit result types below rather than an open dict, so a
directory implementation cannot silently drop or rename a field.

Directory result types follow one convention: an optional human-readable
`error` string. None means success. The core never shows these strings to a
client -- classify_directory_error() maps them to a small set of kinds.

Layer rule: no imports from api/, kyc/, or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum


class AccountStatus(IntEnum):
    """Account lifecycle state. Values are the directory's numeric codes."""

    ACTIVE = 1
    SUSPENDED = 2
    DELETED = 3
    BANNED = 4

    @classmethod
    def parse(cls, value: object) -> AccountStatus | None:
        """Parse an int, numeric string or case-insensitive name.

        Returns None for anything unrecognised -- callers must fail closed.
        """
        if isinstance(value, AccountStatus):
            return value
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                return None
        if isinstance(value, str):
            text = value.strip()
            if text.isdigit():
                return cls.parse(int(text))
            return cls.__members__.get(text.upper())
        return None


DEFAULT_ROLES: tuple[str, ...] = ("guest",)


def parse_roles(raw: str | list[str] | None) -> list[str]:
    """Normalize a comma-separated role string (or list) to lowercase names.

    An empty value yields the default guest role.
    """
    if not raw:
        return list(DEFAULT_ROLES)
    items = raw.split(",") if isinstance(raw, str) else raw
    roles = [r.strip().lower() for r in items if r and r.strip()]
    return roles or list(DEFAULT_ROLES)


@dataclass
class User:
    """A marketplace account as seen by the auth core.

    hashed_password is None for Google-only users. roles is always a list;
    the store serializes it as a comma-separated string.
    """

    email: str
    id: str | None = None
    hashed_password: str | None = None
    first_name: str = ""
    last_name: str = ""
    display_name: str | None = None
    profile_image_url: str | None = None
    roles: list[str] = field(default_factory=lambda: list(DEFAULT_ROLES))
    account_status: int = AccountStatus.ACTIVE
    is_email_verified: bool = False
    is_identity_verified: bool = False
    identity_verification_status: str | None = None
    kyc_session_id: str | None = None
    google_subject: str | None = None
    failed_login_attempts: int = 0
    locked_until: int | None = None  # epoch seconds
    created_at: str | None = None
    last_login_at: str | None = None


@dataclass(frozen=True)
class UserSummary:
    """The user block returned alongside a token pair."""

    user_id: str
    email: str
    first_name: str
    last_name: str
    display_name: str | None
    profile_image_url: str | None
    roles: list[str]
    is_email_verified: bool
    is_identity_verified: bool
    account_status: int

    @classmethod
    def from_user(cls, user: User) -> UserSummary:
        return cls(
            user_id=user.id or "",
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            display_name=user.display_name,
            profile_image_url=user.profile_image_url,
            roles=list(user.roles),
            is_email_verified=user.is_email_verified,
            is_identity_verified=user.is_identity_verified,
            account_status=int(user.account_status),
        )


@dataclass(frozen=True)
class AccessClaims:
    """Verified claims of an access credential."""

    subject: str
    email: str
    roles: list[str]
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    refresh_token: str
    expires_in: int
    user: UserSummary
    is_new_user: bool = False


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    expires_in: int
    # Only set when refresh-token rotation is enabled.
    refresh_token: str | None = None


# ---------------------------------------------------------------------------
# User Directory result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CredentialLookup:
    user_id: str
    hashed_password: str | None


@dataclass(frozen=True)
class LoginAttempt:
    user: User | None = None
    is_locked: bool = False
    locked_until: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class RefreshTokenCreated:
    token_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class RefreshValidation:
    valid: bool
    user_id: str | None = None
    user: User | None = None  # snapshot with roles + status, saves a round trip
    error: str | None = None


@dataclass(frozen=True)
class RevokeResult:
    revoked_count: int = 0
    error: str | None = None


@dataclass(frozen=True)
class ResetRecordCreated:
    found: bool
    first_name: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class ResetConsumed:
    user_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class ProviderLogin:
    user_id: str | None = None
    is_new_user: bool = False
    error: str | None = None


@dataclass(frozen=True)
class PendingRegistrationCreated:
    registration_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class EmailVerified:
    user: User | None = None
    error: str | None = None


@dataclass(frozen=True)
class KycUpdate:
    updated: bool
    user_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class ProviderIdentity:
    """Verified claims from a third-party ID token. Never client-supplied."""

    subject: str
    email: str
    email_verified: bool
    name: str
    picture: str | None
    issuer: str
    audience: str
    expiry: int


# ---------------------------------------------------------------------------
# Directory error classification
# ---------------------------------------------------------------------------

_ERROR_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("locked", ("locked", "bloquead")),
    ("expired", ("expired", "expirad")),
    ("used", ("used", "usado", "revoked", "revocad")),
    ("duplicate", ("already exists", "already registered", "duplicate", "ya existe", "duplicado", "registrado")),
    ("not_found", ("not found", "no encontrado", "no existe", "invalid", "inválido")),
)


def classify_directory_error(message: str | None) -> str:
    """Map a directory error string to one of: locked, expired, used,
    duplicate, not_found, unknown. None or "" maps to "unknown".
    """
    if not message:
        return "unknown"
    lowered = message.lower()
    for kind, keywords in _ERROR_KEYWORDS:
        if any(k in lowered for k in keywords):
            return kind
    return "unknown"
