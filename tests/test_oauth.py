"""
tests/test_oauth.py -- Unit tests for auth/oauth.py (GoogleIdentityProvider).

Tokens are signed locally with a generated RSA key and the JWKS is served by
an in-memory session, so the real Authlib verification path runs without
network access.

Covers:
  - valid token -> ProviderIdentity from verified claims only
  - wrong audience / issuer, expired, unverified email, foreign signature
  - JWKS caching and the single re-fetch on an unknown kid
  - JWKS endpoint unreachable -> UpstreamError
  - malformed tokens are rejected before any JWKS request
  - a slow JWKS refresh does not block readers of the cached key set
"""

from __future__ import annotations

import threading
import time

import pytest
import requests
from authlib.jose import JsonWebKey
from authlib.jose import jwt as authlib_jwt

from auth.errors import AuthenticationError, UpstreamError
from auth.oauth import GoogleIdentityProvider

CLIENT_ID = "test-client.apps.googleusercontent.com"


def _rsa_key():
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


def _jwks(*entries) -> dict:
    keys = []
    for kid, key in entries:
        public = dict(key.as_dict(is_private=False))
        public.update({"kid": kid, "alg": "RS256", "use": "sig"})
        keys.append(public)
    return {"keys": keys}


class FakeResponse:
    def __init__(self, payload: dict) -> None:
        self._payload = payload

    def raise_for_status(self) -> None:
        return None

    def json(self) -> dict:
        return self._payload


class FakeSession:
    """Serves the given JWKS documents in order; the last one repeats."""

    def __init__(self, *documents: dict) -> None:
        self.documents = list(documents)
        self.calls = 0

    def get(self, url: str, timeout: int) -> FakeResponse:
        index = min(self.calls, len(self.documents) - 1)
        self.calls += 1
        return FakeResponse(self.documents[index])


class DownSession:
    def get(self, url: str, timeout: int):
        raise requests.ConnectionError("no route to host")


@pytest.fixture(scope="module")
def signing_key():
    return _rsa_key()


def _id_token(key, kid: str = "k1", **overrides) -> str:
    now = int(time.time())
    claims = {
        "iss": "https://accounts.google.com",
        "aud": CLIENT_ID,
        "sub": "google-sub-123",
        "email": "marta@example.com",
        "email_verified": True,
        "name": "Marta López",
        "picture": "https://example.com/marta.png",
        "iat": now,
        "exp": now + 600,
    }
    claims.update(overrides)
    token = authlib_jwt.encode({"alg": "RS256", "kid": kid}, claims, key)
    return token.decode("ascii") if isinstance(token, bytes) else token


class TestVerification:
    def test_valid_token(self, signing_key) -> None:
        provider = GoogleIdentityProvider(session=FakeSession(_jwks(("k1", signing_key))))
        identity = provider.verify_id_token(_id_token(signing_key), CLIENT_ID)
        assert identity.subject == "google-sub-123"
        assert identity.email == "marta@example.com"
        assert identity.email_verified
        assert identity.name == "Marta López"
        assert identity.picture == "https://example.com/marta.png"
        assert identity.audience == CLIENT_ID

    def test_bare_issuer_accepted(self, signing_key) -> None:
        provider = GoogleIdentityProvider(session=FakeSession(_jwks(("k1", signing_key))))
        token = _id_token(signing_key, iss="accounts.google.com")
        assert provider.verify_id_token(token, CLIENT_ID).issuer == "accounts.google.com"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"aud": "someone-else.apps.googleusercontent.com"},
            {"iss": "https://evil.example.com"},
            {"exp": int(time.time()) - 120},
            {"email_verified": False},
            {"email": None},
        ],
        ids=["audience", "issuer", "expired", "unverified-email", "no-email"],
    )
    def test_rejected_claims(self, signing_key, overrides) -> None:
        provider = GoogleIdentityProvider(session=FakeSession(_jwks(("k1", signing_key))))
        with pytest.raises(AuthenticationError):
            provider.verify_id_token(_id_token(signing_key, **overrides), CLIENT_ID)

    def test_foreign_signature_with_known_kid(self, signing_key) -> None:
        provider = GoogleIdentityProvider(session=FakeSession(_jwks(("k1", signing_key))))
        with pytest.raises(AuthenticationError):
            provider.verify_id_token(_id_token(_rsa_key(), kid="k1"), CLIENT_ID)

    @pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b.c"])
    def test_garbage(self, signing_key, token) -> None:
        provider = GoogleIdentityProvider(session=FakeSession(_jwks(("k1", signing_key))))
        with pytest.raises(AuthenticationError):
            provider.verify_id_token(token, CLIENT_ID)

    def test_empty_audience(self, signing_key) -> None:
        provider = GoogleIdentityProvider(session=FakeSession(_jwks(("k1", signing_key))))
        with pytest.raises(AuthenticationError):
            provider.verify_id_token(_id_token(signing_key), "")


class TestKeySet:
    def test_keys_are_cached(self, signing_key) -> None:
        session = FakeSession(_jwks(("k1", signing_key)))
        provider = GoogleIdentityProvider(session=session)
        provider.verify_id_token(_id_token(signing_key), CLIENT_ID)
        provider.verify_id_token(_id_token(signing_key), CLIENT_ID)
        assert session.calls == 1

    def test_unknown_kid_triggers_one_refetch(self, signing_key) -> None:
        old_key = _rsa_key()
        session = FakeSession(_jwks(("old", old_key)), _jwks(("old", old_key), ("k1", signing_key)))
        provider = GoogleIdentityProvider(session=session)
        identity = provider.verify_id_token(_id_token(signing_key), CLIENT_ID)
        assert identity.subject == "google-sub-123"
        assert session.calls == 2

    def test_kid_still_unknown_after_refetch(self, signing_key) -> None:
        session = FakeSession(_jwks(("old", _rsa_key())))
        provider = GoogleIdentityProvider(session=session)
        with pytest.raises(AuthenticationError):
            provider.verify_id_token(_id_token(signing_key, kid="k1"), CLIENT_ID)
        assert session.calls == 2

    def test_jwks_unreachable(self, signing_key) -> None:
        provider = GoogleIdentityProvider(session=DownSession())
        with pytest.raises(UpstreamError):
            provider.verify_id_token(_id_token(signing_key), CLIENT_ID)

    def test_malformed_header_skips_jwks(self) -> None:
        provider = GoogleIdentityProvider(session=DownSession())
        with pytest.raises(AuthenticationError):
            provider.verify_id_token("not-a-jwt", CLIENT_ID)


class BlockingSession(FakeSession):
    """Answers the first request at once and holds every later one until released."""

    def __init__(self, document: dict) -> None:
        super().__init__(document)
        self.release = threading.Event()
        self.waiting = threading.Event()

    def get(self, url: str, timeout: int) -> FakeResponse:
        if self.calls:
            self.waiting.set()
            self.release.wait(5)
        return super().get(url, timeout)


class TestRefreshConcurrency:
    def test_cached_reads_do_not_wait_for_refresh(self, signing_key) -> None:
        session = BlockingSession(_jwks(("k1", signing_key)))
        provider = GoogleIdentityProvider(session=session)
        provider.verify_id_token(_id_token(signing_key), CLIENT_ID)

        refresher = threading.Thread(target=provider._key_set, kwargs={"force": True})
        refresher.start()
        assert session.waiting.wait(5)

        results = []
        reader = threading.Thread(
            target=lambda: results.append(provider.verify_id_token(_id_token(signing_key), CLIENT_ID))
        )
        reader.start()
        reader.join(2)
        try:
            assert not reader.is_alive()
            assert results[0].subject == "google-sub-123"
        finally:
            session.release.set()
            refresher.join(5)
            reader.join(5)
