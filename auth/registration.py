"""
auth/registration.py -- Sign-up with email verification.

register() stores a pending registration (password already bcrypt-hashed)
and mails a verification link. No user row exists until the link is opened.

verify_email() promotes the pending record to a verified, active user and
creates a one-time session-exchange token so the frontend can sign the user
in without asking for the password again:

    GET  /auth/verify-email?token=...   -> 302 {FRONTEND_URL}/verif-email?status=success&session=...
    POST /auth/exchange-session          -> access + refresh pair

Layer rule: no imports from api/ or kyc/.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from urllib.parse import quote

from auth.errors import ConflictError, UpstreamError, ValidationError
from auth.models import LoginResult, classify_directory_error
from auth.sessions import SessionExchange
from auth.store import UserDirectory
from auth.tokens import hash_password
from core.redaction import mask_email
from notify.mailer import MailDispatcher, verification_message

logger = logging.getLogger("rentalauth.auth.registration")

REGISTER_MESSAGE = "Registration received. Check your email to confirm your account."

_VERIFY_ERROR_MESSAGES = {
    "expired": "The verification link has expired. Please register again.",
    "not_found": "The verification link is invalid or has already been used.",
    "used": "The verification link is invalid or has already been used.",
    "duplicate": "This email is already registered. Try signing in.",
}
_VERIFY_FALLBACK_MESSAGE = "We could not verify your email. Please try again."


@dataclass(frozen=True)
class VerificationOutcome:
    """Result of opening a verification link. Exactly one field is set."""

    session_token: str | None = None
    error_message: str | None = None


class RegistrationService:
    def __init__(
        self,
        directory: UserDirectory,
        mailer: MailDispatcher,
        sessions: SessionExchange,
        *,
        backend_url: str,
        ttl_hours: int = 24,
    ) -> None:
        self._directory = directory
        self._mailer = mailer
        self._sessions = sessions
        self._backend_url = backend_url.rstrip("/")
        self.ttl_hours = ttl_hours

    def register(
        self,
        email: str,
        first_name: str,
        last_name: str,
        password: str,
        date_of_birth: str | None = None,
        gender: int | None = None,
    ) -> str:
        """Create a pending registration and send the verification mail.

        Raises ConflictError if the email already belongs to a user.
        """
        if gender is not None and not 1 <= gender <= 4:
            raise ValidationError(detail={"gender": "must be between 1 and 4"})

        token = str(uuid.uuid4())
        expires_at = int(time.time()) + self.ttl_hours * 3600
        created = self._directory.create_pending_registration(
            email,
            first_name.strip(),
            last_name.strip(),
            hash_password(password),
            token,
            expires_at,
            date_of_birth=date_of_birth,
            gender=gender,
        )
        if created.error:
            if classify_directory_error(created.error) == "duplicate":
                logger.info("Registration refused for %s: already registered", mask_email(email))
                raise ConflictError("This email is already registered.")
            logger.error("Pending registration failed for %s: %s", mask_email(email), created.error)
            raise UpstreamError()

        verify_url = f"{self._backend_url}/api/v1/auth/verify-email?token={quote(token, safe='')}"
        subject, body = verification_message(first_name.strip(), verify_url, self.ttl_hours)
        self._mailer.dispatch(email, subject, body)
        logger.info("Pending registration created for %s", mask_email(email))
        return REGISTER_MESSAGE

    def verify_email(self, token: str) -> VerificationOutcome:
        """Promote the pending registration behind token. Never raises for bad links."""
        if not token:
            return VerificationOutcome(error_message=_VERIFY_ERROR_MESSAGES["not_found"])

        verified = self._directory.verify_email_token(token)
        if verified.error or verified.user is None:
            kind = classify_directory_error(verified.error)
            logger.info("Email verification failed: %s (%s)", kind, verified.error)
            return VerificationOutcome(error_message=_VERIFY_ERROR_MESSAGES.get(kind, _VERIFY_FALLBACK_MESSAGE))

        user = verified.user
        logger.info("Email verified for %s", mask_email(user.email))
        try:
            session_token = self._sessions.create(user.id or "")
        except UpstreamError:
            # The account exists; the user can still sign in with the password.
            return VerificationOutcome(error_message="Your email is verified. Please sign in.")
        return VerificationOutcome(session_token=session_token)

    def exchange(self, session_token: str) -> LoginResult:
        return self._sessions.redeem(session_token)
