"""
api/state.py -- Service wiring for app.state.

Every service handle is built here from injected collaborators and hung on
app.state. Route handlers read them from request.app.state; nothing in the
service layer is a module-level global.

The production lifespan (api/main.py) and the test lifespan (tests/conftest.py)
both call wire_services(); tests pass an in-memory directory and fakes for
the mailer and the identity provider.
"""

from __future__ import annotations

from fastapi import FastAPI

from auth.login import LoginService
from auth.oauth import IdentityProvider
from auth.recovery import PasswordRecoveryService
from auth.registration import RegistrationService
from auth.sessions import SessionExchange
from auth.store import UserDirectory
from auth.tokens import CredentialIssuer
from core.config import Settings
from kyc.webhook import KycWebhookProcessor
from notify.mailer import MailDispatcher


def wire_services(
    app: FastAPI,
    settings: Settings,
    *,
    directory: UserDirectory,
    mailer: MailDispatcher,
    identity_provider: IdentityProvider | None,
) -> None:
    issuer = CredentialIssuer(
        settings.secret_key,
        access_ttl_seconds=settings.access_token_ttl_seconds,
        refresh_ttl_days=settings.refresh_token_ttl_days,
    )
    sessions = SessionExchange(directory, issuer, ttl_seconds=settings.session_exchange_ttl_seconds)

    app.state.directory = directory
    app.state.mailer = mailer
    app.state.issuer = issuer
    app.state.sessions = sessions
    app.state.login_service = LoginService(
        directory,
        issuer,
        identity_provider=identity_provider,
        google_client_id=settings.google_client_id,
        rotate_refresh_tokens=settings.rotate_refresh_tokens,
    )
    app.state.registration_service = RegistrationService(
        directory,
        mailer,
        sessions,
        backend_url=settings.backend_url,
        ttl_hours=settings.email_verification_ttl_hours,
    )
    app.state.recovery_service = PasswordRecoveryService(
        directory,
        mailer,
        encryption_key=settings.encryption_key,
        frontend_url=settings.frontend_url,
        ttl_minutes=settings.password_reset_ttl_minutes,
    )
    app.state.kyc_processor = KycWebhookProcessor(
        directory,
        settings.kyc_webhook_secret,
        tolerance=settings.webhook_tolerance_seconds,
    )
