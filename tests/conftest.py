"""
tests/conftest.py -- Shared test fixtures for the rental auth test suite.

This module provides:
  - RecordingMailer / FakeIdentityProvider: in-process stand-ins for SMTP
    and Google, so no test touches the network
  - directory: an isolated SqlUserDirectory per test
  - make_user: factory that seeds an account with a known password
  - _patch_lifespan(): wires test collaborators into app.state through
    wire_services(), bypassing the real startup
  - api_client: TestClient over the real app with a seeded account

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any api/auth/core import:
get_settings() is cached on first call and several modules read it at
import time (bcrypt rounds, rate limits, frontend URL).
"""

from __future__ import annotations

import os
import re
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from urllib.parse import parse_qs, urlparse

# CRITICAL: Set env before any auth/core import so get_settings() can
# auto-generate SECRET_KEY / ENCRYPTION_KEY in dev mode instead of raising.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("KYC_WEBHOOK_SECRET", "test-kyc-webhook-secret")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client.apps.googleusercontent.com")
os.environ.setdefault("FRONTEND_URL", "http://frontend.test")
os.environ.setdefault("BACKEND_URL", "http://backend.test")
for _limit in ("LOGIN_RATE_LIMIT", "TOKEN_RATE_LIMIT", "RECOVERY_RATE_LIMIT", "WEBHOOK_RATE_LIMIT"):
    os.environ.setdefault(_limit, "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from api.state import wire_services
from auth.errors import AuthenticationError
from auth.models import AccountStatus, ProviderIdentity, User
from auth.store import SqlUserDirectory
from auth.tokens import CredentialIssuer, hash_password
from core.config import get_settings

TEST_PASSWORD = "Sup3rSecret"

_URL_RE = re.compile(r"https?://\S+")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SentMail:
    to: str
    subject: str
    body: str

    @property
    def link(self) -> str:
        match = _URL_RE.search(self.body)
        assert match, f"no link in mail body: {self.body!r}"
        return match.group(0)

    @property
    def link_token(self) -> str:
        """The ?token= query parameter of the link, URL-decoded."""
        return parse_qs(urlparse(self.link).query)["token"][0]


@dataclass
class RecordingMailer:
    """MailDispatcher that keeps messages in memory."""

    sent: list[SentMail] = field(default_factory=list)

    def dispatch(self, to: str, subject: str, body: str) -> None:
        self.sent.append(SentMail(to, subject, body))

    def last_to(self, email: str) -> SentMail:
        matches = [m for m in self.sent if m.to == email]
        assert matches, f"no mail sent to {email}"
        return matches[-1]


class FakeIdentityProvider:
    """IdentityProvider that accepts only the ID tokens registered on it."""

    name = "google"

    def __init__(self) -> None:
        self.identities: dict[str, ProviderIdentity] = {}

    def register(self, id_token: str, *, subject: str, email: str, name: str = "Test User") -> None:
        self.identities[id_token] = ProviderIdentity(
            subject=subject,
            email=email,
            email_verified=True,
            name=name,
            picture="https://example.com/avatar.png",
            issuer="https://accounts.google.com",
            audience=get_settings().google_client_id,
            expiry=0,
        )

    def verify_id_token(self, id_token: str, audience: str) -> ProviderIdentity:
        identity = self.identities.get(id_token)
        if identity is None or audience != identity.audience:
            raise AuthenticationError("Invalid or expired Google token.")
        return identity


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_directory(db_suffix: str) -> SqlUserDirectory:
    """Create an isolated named shared-memory directory.

    Args:
        db_suffix: Unique string appended to the DB name so tests and test
                   modules never share state.
    """
    url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    return SqlUserDirectory(url, max_failed_logins=3, lockout_minutes=15)


def _seed_user(directory: SqlUserDirectory, email: str, password: str = TEST_PASSWORD, **overrides) -> str:
    user = User(
        email=email,
        hashed_password=hash_password(password),
        first_name=overrides.pop("first_name", "Ana"),
        last_name=overrides.pop("last_name", "Reyes"),
        is_email_verified=overrides.pop("is_email_verified", True),
        **overrides,
    )
    return directory.create_user(user)


@pytest.fixture
def directory() -> Generator[SqlUserDirectory, None, None]:
    d = _make_directory(uuid.uuid4().hex)
    yield d
    d.close()


@pytest.fixture
def make_user(directory):
    """Return a factory: make_user(email, password=TEST_PASSWORD, **fields) -> user id."""

    def factory(email: str = "ana@example.com", password: str = TEST_PASSWORD, **overrides) -> str:
        return _seed_user(directory, email, password, **overrides)

    return factory


@pytest.fixture
def issuer() -> CredentialIssuer:
    return CredentialIssuer(get_settings().secret_key)


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


# ---------------------------------------------------------------------------
# App fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    """Collaborators wired into app.state for one test module."""

    directory: SqlUserDirectory
    mailer: RecordingMailer
    identity_provider: FakeIdentityProvider
    user_id: str
    email: str = "guest@example.com"
    password: str = TEST_PASSWORD
    suspended_email: str = "suspended@example.com"


def _patch_lifespan(directory, mailer, identity_provider):
    """Return an async context manager that replaces the real lifespan.

    Same wiring as production (wire_services), with the test directory and
    in-process fakes instead of SMTP and Google.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(
            app,
            get_settings(),
            directory=directory,
            mailer=mailer,
            identity_provider=identity_provider,
        )
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, ApiHarness], None, None]:
    """Yield (client, harness) for API integration tests.

    One active account (harness.email / harness.password) and one suspended
    account (harness.suspended_email, same password) exist before the
    client starts.
    """
    directory = _make_directory(f"{request.module.__name__.rsplit('.', 1)[-1]}_{uuid.uuid4().hex[:8]}")
    mailer = RecordingMailer()
    identity_provider = FakeIdentityProvider()

    uid = _seed_user(directory, "guest@example.com", roles=["guest", "host"])
    _seed_user(directory, "suspended@example.com", account_status=AccountStatus.SUSPENDED)

    app.router.lifespan_context = _patch_lifespan(directory, mailer, identity_provider)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, ApiHarness(directory=directory, mailer=mailer, identity_provider=identity_provider, user_id=uid)

    directory.close()
