"""
notify/mailer.py -- Detached transactional mail dispatch over SMTP.

Auth flows never wait on mail delivery. dispatch() hands the message to a
small ThreadPoolExecutor and returns immediately; a done-callback logs the
outcome. A slow or unreachable SMTP server therefore cannot stall a request
or leak timing information (forgot-password answers in the same time whether
or not a mail is sent).

Unconfigured SMTP (empty SMTP_HOST): nothing is sent. With DEBUG=true the
message body is logged so the verification and reset links are usable
locally; otherwise only the subject and the redacted recipient are logged,
since the body carries live links.

Layer rule: no imports from api/, auth/, or kyc/.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from concurrent.futures import Future, ThreadPoolExecutor
from email.message import EmailMessage
from typing import Protocol

from core.config import Settings
from core.redaction import mask_email

logger = logging.getLogger("rentalauth.notify.mailer")

_SMTP_TIMEOUT = 30


class MailDispatcher(Protocol):
    def dispatch(self, to: str, subject: str, body: str) -> None: ...


class SmtpMailer:
    """MailDispatcher that sends plain-text mail on a background thread.

    Usage:
        mailer = SmtpMailer.from_settings(get_settings())
        mailer.dispatch("ana@example.com", "Subject", "Body")
        mailer.shutdown()
    """

    def __init__(
        self,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_use_tls: bool = True,
        from_email: str = "",
        from_name: str = "Pool & Chill",
        max_workers: int = 2,
        log_body: bool = False,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.log_body = log_body
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="mailer")

    @classmethod
    def from_settings(cls, settings: Settings) -> SmtpMailer:
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.mail_from,
            from_name=settings.mail_from_name,
            log_body=settings.debug,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def dispatch(self, to: str, subject: str, body: str) -> None:
        """Queue a message for delivery. Never raises, never blocks on SMTP."""
        future = self._executor.submit(self._send, to, subject, body)
        future.add_done_callback(lambda f: _log_outcome(f, to, subject))

    def _send(self, to: str, subject: str, body: str) -> bool:
        if not self.is_configured:
            if self.log_body:
                logger.info("Mail (dev mode) to %s -- %s\n%s", mask_email(to), subject, body)
            else:
                logger.warning("SMTP not configured; mail to %s (%s) not sent", mask_email(to), subject)
            return False

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to
        msg.set_content(body)

        context = ssl.create_default_context()
        if self.smtp_use_tls:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=_SMTP_TIMEOUT) as server:
                server.starttls(context=context)
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)
        else:
            with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=_SMTP_TIMEOUT) as server:
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)
        return True

    def shutdown(self) -> None:
        """Wait for queued messages, then stop the worker threads."""
        self._executor.shutdown(wait=True)


def _log_outcome(future: Future, to: str, subject: str) -> None:
    exc = future.exception()
    if exc is None and future.result():
        logger.info("Mail sent to %s (%s)", mask_email(to), subject)
    elif exc is not None:
        logger.error("Mail to %s failed (%s): %s: %s", mask_email(to), subject, type(exc).__name__, exc)


# ---------------------------------------------------------------------------
# Message bodies (plain text)
# ---------------------------------------------------------------------------


def password_reset_message(first_name: str | None, reset_url: str, ttl_minutes: int) -> tuple[str, str]:
    subject = "Reset your Pool & Chill password"
    body = (
        f"Hi {first_name or 'there'},\n\n"
        "We received a request to reset your password. Open the link below to choose a new one:\n\n"
        f"{reset_url}\n\n"
        f"The link expires in {ttl_minutes} minutes and can be used once.\n"
        "If you did not request this, you can ignore this email.\n"
    )
    return subject, body


def verification_message(first_name: str, verify_url: str, ttl_hours: int) -> tuple[str, str]:
    subject = "Confirm your Pool & Chill account"
    body = (
        f"Hi {first_name},\n\n"
        "Thanks for signing up. Confirm your email address to activate your account:\n\n"
        f"{verify_url}\n\n"
        f"The link expires in {ttl_hours} hours.\n"
    )
    return subject, body
