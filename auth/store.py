"""
auth/store.py -- User Directory: the persistence boundary of the auth core.

UserDirectory is the contract the orchestrators depend on. Every call returns
one of the explicit result dataclasses from auth/models.py; failures the
caller is expected to handle are reported as a human-readable `error` string
(or an Err), never as an exception. classify_directory_error() turns those
strings into a small set of kinds.

SqlUserDirectory is the SQLAlchemy Core implementation used for development
and tests. Pattern: Repository + Data Mapper. _row_to_user is the mapper;
service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  [S1] Refresh, reset, verification and session-exchange tokens are stored as
       SHA-256 digests. A leaked database does not yield usable tokens. Plain
       SHA-256 (no key) is enough: every token carries >= 122 random bits.

  [S2] One-time tokens are claimed with a single conditional UPDATE
       (... WHERE redeemed_at IS NULL AND expires_at > :now). The row count
       decides the winner, so two concurrent redemptions can never both
       succeed. No read-then-write window.

  [S3] Database failures (SQLAlchemyError) are logged with detail and raised
       as UpstreamError. Raw driver exceptions never leave this module.

Timestamps: token expiry columns hold integer epoch seconds so comparisons
are plain integer comparisons in SQL. Audit columns (created_at, ...) are ISO
8601 strings, matching the rest of the schema.

Layer rule: no imports from api/, kyc/, or notify/.
"""

from __future__ import annotations

import functools
import hashlib
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, and_, create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.errors import UpstreamError
from auth.models import (
    AccountStatus,
    CredentialLookup,
    EmailVerified,
    KycUpdate,
    LoginAttempt,
    PendingRegistrationCreated,
    ProviderLogin,
    RefreshTokenCreated,
    RefreshValidation,
    ResetConsumed,
    ResetRecordCreated,
    RevokeResult,
    User,
    parse_roles,
)
from auth.results import Err, Ok, Result
from core.config import get_settings
from core.redaction import mask_email

logger = logging.getLogger("rentalauth.auth.store")

# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class UserDirectory(Protocol):
    """Operations the auth core needs from the user store."""

    def find_credential_by_email(self, email: str) -> CredentialLookup | None: ...

    def validate_login_attempt(self, email: str, verifier: str) -> LoginAttempt: ...

    def create_refresh_token(self, user_id: str, token: str, expires_at: int) -> RefreshTokenCreated: ...

    def validate_refresh_token(self, token: str) -> RefreshValidation: ...

    def revoke_refresh_tokens(self, user_id: str, token: str | None = None) -> RevokeResult: ...

    def get_account_status(self, user_id: str) -> int | None: ...

    def get_user(self, user_id: str) -> User | None: ...

    def create_password_reset_record(self, email: str, token: str, expires_at: int) -> ResetRecordCreated: ...

    def consume_password_reset_record(self, token: str, new_password_hash: str) -> ResetConsumed: ...

    def login_with_provider(
        self, provider: str, subject: str, email: str, name: str, picture: str | None
    ) -> ProviderLogin: ...

    def create_pending_registration(
        self,
        email: str,
        first_name: str,
        last_name: str,
        hashed_password: str,
        token: str,
        expires_at: int,
        date_of_birth: str | None = None,
        gender: int | None = None,
    ) -> PendingRegistrationCreated: ...

    def verify_email_token(self, token: str) -> EmailVerified: ...

    def create_session_exchange(self, user_id: str, token: str, expires_at: int) -> Result[str]: ...

    def claim_session_exchange(self, token: str) -> Result[str]: ...

    def update_identity_verification(
        self,
        session_id: str,
        vendor_data: str | None,
        is_verified: bool,
        status: str,
        decision_json: str | None,
    ) -> KycUpdate: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lowercased
    Column("hashed_password", Text),  # NULL for Google-only users
    Column("first_name", String(100), nullable=False, server_default=""),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("display_name", String(200)),
    Column("profile_image_url", Text),
    Column("roles", String(255), nullable=False, server_default="guest"),  # comma-separated
    Column("account_status", Integer, nullable=False, server_default="1"),
    Column("is_email_verified", Integer, nullable=False, server_default="0"),
    Column("is_identity_verified", Integer, nullable=False, server_default="0"),
    Column("identity_verification_status", String(50)),
    Column("identity_verification_data", Text),  # provider decision, JSON
    Column("kyc_session_id", String(100)),
    Column("oauth_provider", String(30)),
    Column("oauth_subject", Text),
    Column("date_of_birth", String(10)),
    Column("gender", Integer),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("locked_until", Integer),  # epoch seconds
    Column("created_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("expires_at", Integer, nullable=False),
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("revoked_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_password_resets = Table(
    "password_resets",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("expires_at", Integer, nullable=False),
    Column("used", Integer, nullable=False, server_default="0"),
    Column("used_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_pending_registrations = Table(
    "pending_registrations",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("date_of_birth", String(10)),
    Column("gender", Integer),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("expires_at", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_session_exchanges = Table(
    "session_exchanges",
    _metadata,
    Column("token_hash", String(64), primary_key=True),
    Column("user_id", String(36), nullable=False),
    Column("expires_at", Integer, nullable=False),
    Column("redeemed_at", String(32)),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _now() -> int:
    return int(time.time())


def token_digest(token: str) -> str:
    """SHA-256 hex digest used as the stored form of every bearer token [S1]."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _split_name(name: str) -> tuple[str, str]:
    parts = (name or "").strip().split(" ", 1)
    first = parts[0] if parts else ""
    last = parts[1].strip() if len(parts) > 1 else ""
    return first, last


def _guarded(method):
    """Translate SQLAlchemyError into UpstreamError [S3]."""

    @functools.wraps(method)
    def wrapper(*args, **kwargs):
        try:
            return method(*args, **kwargs)
        except SQLAlchemyError as exc:
            logger.error("User directory error in %s: %s", method.__name__, exc)
            raise UpstreamError() from None

    return wrapper


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SqlUserDirectory:
    """SQLAlchemy Core implementation of UserDirectory.

    Usage:
        directory = SqlUserDirectory("sqlite:///rentalauth.db")
        uid = directory.create_user(User(email="ana@example.com", hashed_password=hash_password("S3cret!!")))
        lookup = directory.find_credential_by_email("ana@example.com")
        directory.close()
    """

    def __init__(
        self,
        db_url: str | None = None,
        *,
        max_failed_logins: int | None = None,
        lockout_minutes: int | None = None,
    ) -> None:
        settings = get_settings()
        db_url = db_url or settings.database_url
        self.max_failed_logins = max_failed_logins or settings.max_failed_logins
        self.lockout_seconds = (lockout_minutes or settings.lockout_minutes) * 60
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User records
    # ------------------------------------------------------------------

    @_guarded
    def create_user(self, user: User) -> str:
        """Insert a user and return its id.

        A duplicate email surfaces as UpstreamError (IntegrityError underneath).
        Used for seeding accounts; the login flows insert their own rows.
        """
        user_id = user.id or str(uuid.uuid4())
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=_normalize_email(user.email),
                    hashed_password=user.hashed_password,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    display_name=user.display_name,
                    profile_image_url=user.profile_image_url,
                    roles=",".join(parse_roles(user.roles)),
                    account_status=int(user.account_status),
                    is_email_verified=1 if user.is_email_verified else 0,
                    is_identity_verified=1 if user.is_identity_verified else 0,
                    identity_verification_status=user.identity_verification_status,
                    kyc_session_id=user.kyc_session_id,
                    oauth_provider="google" if user.google_subject else None,
                    oauth_subject=user.google_subject,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return user_id

    @_guarded
    def get_user(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    @_guarded
    def get_user_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == _normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    @_guarded
    def get_account_status(self, user_id: str) -> int | None:
        with self.engine.connect() as conn:
            return conn.execute(
                select(_users.c.account_status).where(_users.c.id == user_id)
            ).scalar()

    @_guarded
    def set_account_status(self, user_id: str, status: int) -> bool:
        """Administrative status change. Returns False if user_id is unknown."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(account_status=int(status)))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Password login
    # ------------------------------------------------------------------

    @_guarded
    def find_credential_by_email(self, email: str) -> CredentialLookup | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_users.c.id, _users.c.hashed_password)
                .where(_users.c.email == _normalize_email(email))
            ).fetchone()
        if row is None:
            return None
        return CredentialLookup(user_id=row.id, hashed_password=row.hashed_password)

    @_guarded
    def validate_login_attempt(self, email: str, verifier: str) -> LoginAttempt:
        """Record a login attempt.

        verifier is the stored hash when the caller's bcrypt check succeeded,
        or any other value (the failure sentinel) when it did not. Failures
        increment the counter; reaching max_failed_logins locks the account
        for lockout_seconds. A success clears the counter and stamps
        last_login_at.
        """
        now = _now()
        with self.engine.begin() as conn:
            row = conn.execute(_users.select().where(_users.c.email == _normalize_email(email))).fetchone()
            if row is None:
                return LoginAttempt(error="User not found")
            if row.locked_until and row.locked_until > now:
                return LoginAttempt(user=_row_to_user(row), is_locked=True, locked_until=row.locked_until)

            if row.hashed_password is None or verifier != row.hashed_password:
                attempts = (row.failed_login_attempts or 0) + 1
                if attempts >= self.max_failed_logins:
                    locked_until = now + self.lockout_seconds
                    conn.execute(
                        _users.update()
                        .where(_users.c.id == row.id)
                        .values(failed_login_attempts=0, locked_until=locked_until)
                    )
                    logger.warning("Account %s locked after %d failed logins", mask_email(row.email), attempts)
                    return LoginAttempt(user=_row_to_user(row), is_locked=True, locked_until=locked_until)
                conn.execute(_users.update().where(_users.c.id == row.id).values(failed_login_attempts=attempts))
                return LoginAttempt(error="Invalid credentials")

            conn.execute(
                _users.update()
                .where(_users.c.id == row.id)
                .values(failed_login_attempts=0, locked_until=None, last_login_at=_now_iso())
            )
            row = conn.execute(_users.select().where(_users.c.id == row.id)).fetchone()
        return LoginAttempt(user=_row_to_user(row))

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    @_guarded
    def create_refresh_token(self, user_id: str, token: str, expires_at: int) -> RefreshTokenCreated:
        with self.engine.begin() as conn:
            exists = conn.execute(
                select(_users.c.id).where(_users.c.id == user_id)
            ).scalar()
            if exists is None:
                return RefreshTokenCreated(error="User not found")
            result = conn.execute(
                _refresh_tokens.insert().values(
                    user_id=user_id,
                    token_hash=token_digest(token),
                    expires_at=expires_at,
                    revoked=0,
                    created_at=_now_iso(),
                )
            )
        return RefreshTokenCreated(token_id=str(result.inserted_primary_key[0]))

    @_guarded
    def validate_refresh_token(self, token: str) -> RefreshValidation:
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(_refresh_tokens.c.token_hash == token_digest(token))
            ).fetchone()
            if row is None:
                return RefreshValidation(valid=False, error="Refresh token not found")
            if row.revoked:
                return RefreshValidation(valid=False, user_id=row.user_id, error="Refresh token revoked")
            if row.expires_at <= _now():
                return RefreshValidation(valid=False, user_id=row.user_id, error="Refresh token expired")
            user_row = conn.execute(_users.select().where(_users.c.id == row.user_id)).fetchone()
        if user_row is None:
            return RefreshValidation(valid=False, user_id=row.user_id, error="User not found")
        return RefreshValidation(valid=True, user_id=row.user_id, user=_row_to_user(user_row))

    @_guarded
    def revoke_refresh_tokens(self, user_id: str, token: str | None = None) -> RevokeResult:
        """Revoke one token (token given) or every active token of user_id."""
        condition = and_(_refresh_tokens.c.user_id == user_id, _refresh_tokens.c.revoked == 0)
        if token is not None:
            condition = and_(condition, _refresh_tokens.c.token_hash == token_digest(token))
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.update().where(condition).values(revoked=1, revoked_at=_now_iso()))
            conn.commit()
        return RevokeResult(revoked_count=result.rowcount)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    @_guarded
    def create_password_reset_record(self, email: str, token: str, expires_at: int) -> ResetRecordCreated:
        """Store a reset record for email. Older unused records are retired."""
        with self.engine.begin() as conn:
            row = conn.execute(_users.select().where(_users.c.email == _normalize_email(email))).fetchone()
            if row is None:
                return ResetRecordCreated(found=False)
            conn.execute(
                _password_resets.update()
                .where(and_(_password_resets.c.user_id == row.id, _password_resets.c.used == 0))
                .values(used=1, used_at=_now_iso())
            )
            conn.execute(
                _password_resets.insert().values(
                    user_id=row.id,
                    token_hash=token_digest(token),
                    expires_at=expires_at,
                    used=0,
                    created_at=_now_iso(),
                )
            )
        return ResetRecordCreated(found=True, first_name=row.first_name)

    @_guarded
    def consume_password_reset_record(self, token: str, new_password_hash: str) -> ResetConsumed:
        """Atomically mark the record used and set the new password [S2]."""
        digest = token_digest(token)
        with self.engine.begin() as conn:
            claimed = conn.execute(
                _password_resets.update()
                .where(
                    and_(
                        _password_resets.c.token_hash == digest,
                        _password_resets.c.used == 0,
                        _password_resets.c.expires_at > _now(),
                    )
                )
                .values(used=1, used_at=_now_iso())
            )
            row = conn.execute(_password_resets.select().where(_password_resets.c.token_hash == digest)).fetchone()
            if claimed.rowcount != 1:
                if row is None:
                    return ResetConsumed(error="Reset token not found")
                if row.used:
                    return ResetConsumed(error="Reset token already used")
                return ResetConsumed(error="Reset token expired")
            conn.execute(
                _users.update()
                .where(_users.c.id == row.user_id)
                .values(hashed_password=new_password_hash, failed_login_attempts=0, locked_until=None)
            )
        return ResetConsumed(user_id=row.user_id)

    # ------------------------------------------------------------------
    # Third-party identity
    # ------------------------------------------------------------------

    @_guarded
    def login_with_provider(
        self, provider: str, subject: str, email: str, name: str, picture: str | None
    ) -> ProviderLogin:
        """Map a verified provider identity to a local user, creating one if needed.

        Lookup order: (provider, subject) link, then email. An existing
        email-matched account is linked on first provider login.
        """
        email = _normalize_email(email)
        with self.engine.begin() as conn:
            row = conn.execute(
                _users.select().where(and_(_users.c.oauth_provider == provider, _users.c.oauth_subject == subject))
            ).fetchone()
            if row is None:
                row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
                if row is not None:
                    if row.oauth_subject and row.oauth_subject != subject:
                        return ProviderLogin(error="Email already linked to another account")
                    conn.execute(
                        _users.update()
                        .where(_users.c.id == row.id)
                        .values(oauth_provider=provider, oauth_subject=subject, is_email_verified=1)
                    )
            if row is not None:
                conn.execute(_users.update().where(_users.c.id == row.id).values(last_login_at=_now_iso()))
                return ProviderLogin(user_id=row.id, is_new_user=False)

            user_id = str(uuid.uuid4())
            first, last = _split_name(name)
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=email,
                    hashed_password=None,
                    first_name=first,
                    last_name=last,
                    display_name=name or None,
                    profile_image_url=picture,
                    roles="guest",
                    account_status=int(AccountStatus.ACTIVE),
                    is_email_verified=1,
                    oauth_provider=provider,
                    oauth_subject=subject,
                    created_at=_now_iso(),
                    last_login_at=_now_iso(),
                )
            )
        logger.info("Created user %s from %s login", mask_email(email), provider)
        return ProviderLogin(user_id=user_id, is_new_user=True)

    # ------------------------------------------------------------------
    # Registration and email verification
    # ------------------------------------------------------------------

    @_guarded
    def create_pending_registration(
        self,
        email: str,
        first_name: str,
        last_name: str,
        hashed_password: str,
        token: str,
        expires_at: int,
        date_of_birth: str | None = None,
        gender: int | None = None,
    ) -> PendingRegistrationCreated:
        """Store a registration awaiting email verification.

        A repeated registration for the same email replaces the earlier
        pending record, which invalidates its verification link.
        """
        email = _normalize_email(email)
        registration_id = str(uuid.uuid4())
        with self.engine.begin() as conn:
            taken = conn.execute(
                select(_users.c.id).where(_users.c.email == email)
            ).scalar()
            if taken is not None:
                return PendingRegistrationCreated(error="Email already registered")
            conn.execute(_pending_registrations.delete().where(_pending_registrations.c.email == email))
            conn.execute(
                _pending_registrations.insert().values(
                    id=registration_id,
                    email=email,
                    first_name=first_name,
                    last_name=last_name,
                    hashed_password=hashed_password,
                    date_of_birth=date_of_birth,
                    gender=gender,
                    token_hash=token_digest(token),
                    expires_at=expires_at,
                    created_at=_now_iso(),
                )
            )
        return PendingRegistrationCreated(registration_id=registration_id)

    @_guarded
    def verify_email_token(self, token: str) -> EmailVerified:
        """Promote a pending registration to a verified user."""
        digest = token_digest(token)
        with self.engine.begin() as conn:
            pending = conn.execute(
                _pending_registrations.select().where(_pending_registrations.c.token_hash == digest)
            ).fetchone()
            if pending is None:
                return EmailVerified(error="Verification token not found")
            # Delete first so a concurrent verification of the same token loses.
            deleted = conn.execute(
                _pending_registrations.delete().where(_pending_registrations.c.token_hash == digest)
            )
            if deleted.rowcount != 1:
                return EmailVerified(error="Verification token already used")
            if pending.expires_at <= _now():
                return EmailVerified(error="Verification token expired")
            taken = conn.execute(
                select(_users.c.id).where(_users.c.email == pending.email)
            ).scalar()
            if taken is not None:
                return EmailVerified(error="Email already registered")
            user_id = str(uuid.uuid4())
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=pending.email,
                    hashed_password=pending.hashed_password,
                    first_name=pending.first_name,
                    last_name=pending.last_name,
                    display_name=f"{pending.first_name} {pending.last_name}".strip(),
                    roles="guest",
                    account_status=int(AccountStatus.ACTIVE),
                    is_email_verified=1,
                    date_of_birth=pending.date_of_birth,
                    gender=pending.gender,
                    created_at=_now_iso(),
                )
            )
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return EmailVerified(user=_row_to_user(row))

    # ------------------------------------------------------------------
    # Session exchange
    # ------------------------------------------------------------------

    @_guarded
    def create_session_exchange(self, user_id: str, token: str, expires_at: int) -> Result[str]:
        with self.engine.begin() as conn:
            exists = conn.execute(
                select(_users.c.id).where(_users.c.id == user_id)
            ).scalar()
            if exists is None:
                return Err("not_found", "User not found")
            conn.execute(
                _session_exchanges.insert().values(
                    token_hash=token_digest(token),
                    user_id=user_id,
                    expires_at=expires_at,
                    created_at=_now_iso(),
                )
            )
        return Ok(user_id)

    @_guarded
    def claim_session_exchange(self, token: str) -> Result[str]:
        """Redeem a session-exchange token exactly once [S2].

        Returns Ok(user_id) for the single winning caller, otherwise
        Err("not_found" | "used" | "expired").
        """
        digest = token_digest(token)
        with self.engine.begin() as conn:
            claimed = conn.execute(
                _session_exchanges.update()
                .where(
                    and_(
                        _session_exchanges.c.token_hash == digest,
                        _session_exchanges.c.redeemed_at.is_(None),
                        _session_exchanges.c.expires_at > _now(),
                    )
                )
                .values(redeemed_at=_now_iso())
            )
            row = conn.execute(
                _session_exchanges.select().where(_session_exchanges.c.token_hash == digest)
            ).fetchone()
        if claimed.rowcount == 1:
            return Ok(row.user_id)
        if row is None:
            return Err("not_found", "Session token not found")
        if row.redeemed_at is not None:
            return Err("used", "Session token already used")
        return Err("expired", "Session token expired")

    # ------------------------------------------------------------------
    # Identity verification (KYC)
    # ------------------------------------------------------------------

    @_guarded
    def update_identity_verification(
        self,
        session_id: str,
        vendor_data: str | None,
        is_verified: bool,
        status: str,
        decision_json: str | None,
    ) -> KycUpdate:
        """Apply a final KYC decision.

        The user is found by kyc_session_id, falling back to vendor_data
        (our user id, echoed back by the provider) for sessions created
        before the id was stored.
        """
        with self.engine.begin() as conn:
            row = conn.execute(_users.select().where(_users.c.kyc_session_id == session_id)).fetchone()
            if row is None and vendor_data:
                row = conn.execute(_users.select().where(_users.c.id == vendor_data)).fetchone()
            if row is None:
                return KycUpdate(updated=False, error="Verification session not found")
            conn.execute(
                _users.update()
                .where(_users.c.id == row.id)
                .values(
                    kyc_session_id=session_id,
                    is_identity_verified=1 if is_verified else 0,
                    identity_verification_status=status,
                    identity_verification_data=decision_json,
                )
            )
        return KycUpdate(updated=True, user_id=row.id)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError as exc:
            logger.warning("Directory ping failed: %s", exc)
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        display_name=row.display_name,
        profile_image_url=row.profile_image_url,
        roles=parse_roles(row.roles),
        account_status=row.account_status,
        is_email_verified=bool(row.is_email_verified),
        is_identity_verified=bool(row.is_identity_verified),
        identity_verification_status=row.identity_verification_status,
        kyc_session_id=row.kyc_session_id,
        google_subject=row.oauth_subject if row.oauth_provider == "google" else None,
        failed_login_attempts=row.failed_login_attempts or 0,
        locked_until=row.locked_until,
        created_at=row.created_at,
        last_login_at=row.last_login_at,
    )
