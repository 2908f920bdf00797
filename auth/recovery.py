"""
auth/recovery.py -- Password recovery via encrypted email links.

request_reset(email):
  Always returns GENERIC_RESET_MESSAGE, whether or not the email is
  registered and whether or not anything below fails. When the directory
  knows the email it stores a reset record (uuid4, PASSWORD_RESET_TTL_MINUTES)
  and the mailer sends FRONTEND_URL/forgot-password?token=<encrypted>, where
  the encrypted payload is {"token", "email", "exp" (epoch ms)}.

reset_password(encrypted_token, new_password):
  1. decrypt_payload            -> DecryptionError (400 "invalid link")
  2. payload shape + embedded exp -> InvalidResetLinkError
  3. consume_password_reset_record (directory checks its own expiry, the
     used flag, and sets the new hash atomically) -> InvalidResetLinkError
  4. revoke every refresh token of the user

Both expiry checks must pass. A token whose embedded exp is still in the
future but whose record has expired is rejected, and vice versa.

Layer rule: no imports from api/ or kyc/.
"""

from __future__ import annotations

import logging
import time
import uuid
from urllib.parse import quote

from auth.cipher import decrypt_payload, encrypt_payload
from auth.errors import InvalidResetLinkError, UpstreamError
from auth.models import classify_directory_error
from auth.store import UserDirectory
from auth.tokens import hash_password
from core.redaction import mask_email
from notify.mailer import MailDispatcher, password_reset_message

logger = logging.getLogger("rentalauth.auth.recovery")

GENERIC_RESET_MESSAGE = (
    "If the email is registered, you will receive a message with instructions to reset your password."
)
RESET_SUCCESS_MESSAGE = "Your password has been reset. You can now sign in."


class PasswordRecoveryService:
    def __init__(
        self,
        directory: UserDirectory,
        mailer: MailDispatcher,
        *,
        encryption_key: str,
        frontend_url: str,
        ttl_minutes: int = 30,
    ) -> None:
        self._directory = directory
        self._mailer = mailer
        self._encryption_key = encryption_key
        self._frontend_url = frontend_url.rstrip("/")
        self.ttl_minutes = ttl_minutes

    def request_reset(self, email: str) -> str:
        logger.info("Password reset requested for %s", mask_email(email))
        try:
            self._start_reset(email)
        except Exception:
            # The response must not depend on what happened here.
            logger.exception("Password reset request failed for %s", mask_email(email))
        return GENERIC_RESET_MESSAGE

    def _start_reset(self, email: str) -> None:
        reset_token = str(uuid.uuid4())
        expires_at = int(time.time()) + self.ttl_minutes * 60
        record = self._directory.create_password_reset_record(email, reset_token, expires_at)
        if record.error:
            logger.error("Directory could not store reset record for %s: %s", mask_email(email), record.error)
            return
        if not record.found:
            logger.info("Reset requested for unknown email %s (generic response sent)", mask_email(email))
            return

        payload = {"token": reset_token, "email": email, "exp": expires_at * 1000}
        encrypted = encrypt_payload(payload, self._encryption_key, url_safe=True)
        reset_url = f"{self._frontend_url}/forgot-password?token={quote(encrypted, safe='')}"
        subject, body = password_reset_message(record.first_name, reset_url, self.ttl_minutes)
        self._mailer.dispatch(email, subject, body)

    def reset_password(self, encrypted_token: str, new_password: str) -> str:
        payload = decrypt_payload(encrypted_token, self._encryption_key, url_safe=True)

        if not isinstance(payload, dict):
            raise InvalidResetLinkError()
        token = payload.get("token")
        exp = payload.get("exp")
        if not isinstance(token, str) or not token or not isinstance(exp, (int, float)) or isinstance(exp, bool):
            logger.warning("Reset payload has unexpected shape")
            raise InvalidResetLinkError()
        if time.time() * 1000 > exp:
            logger.info("Reset link expired for %s", mask_email(payload.get("email")))
            raise InvalidResetLinkError()

        consumed = self._directory.consume_password_reset_record(token, hash_password(new_password))
        if consumed.error or not consumed.user_id:
            kind = classify_directory_error(consumed.error)
            if kind in ("expired", "used", "not_found"):
                logger.info("Reset rejected for %s: %s", mask_email(payload.get("email")), kind)
                raise InvalidResetLinkError()
            logger.error("Reset failed for %s: %s", mask_email(payload.get("email")), consumed.error)
            raise UpstreamError()

        revoked = self._directory.revoke_refresh_tokens(consumed.user_id, None)
        if revoked.error:
            logger.error("Could not revoke sessions after reset for user %s: %s", consumed.user_id, revoked.error)
        logger.info("Password reset for user %s (%d sessions revoked)", consumed.user_id, revoked.revoked_count)
        return RESET_SUCCESS_MESSAGE
