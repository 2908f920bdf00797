"""
tests/test_cipher.py -- Unit tests for auth/cipher.py.

Covers:
  - round trip for both encodings; fresh salt/nonce per call
  - every tamper position, including the final character, is rejected
  - wrong key, truncated, empty and garbage input all raise the same error
  - non-JSON plaintext under a valid tag is still a DecryptionError
"""

from __future__ import annotations

import os

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from auth.cipher import (
    NONCE_BYTES,
    SALT_BYTES,
    _derive_key,
    _encode,
    decrypt_payload,
    encrypt_payload,
)
from auth.errors import DecryptionError

SECRET = "cipher-test-secret-0123456789abcdef"
PAYLOAD = {"token": "0b6a2f1e-5d0c-4d8f-9a4e-2b7f3c1d9e8a", "email": "ana@example.com", "exp": 1893456000000}


def _flip(token: str, index: int) -> str:
    replacement = "A" if token[index] != "A" else "B"
    return token[:index] + replacement + token[index + 1 :]


class TestRoundTrip:
    def test_url_safe_round_trip(self) -> None:
        token = encrypt_payload(PAYLOAD, SECRET)
        assert decrypt_payload(token, SECRET) == PAYLOAD

    def test_standard_round_trip(self) -> None:
        token = encrypt_payload(PAYLOAD, SECRET, url_safe=False)
        assert decrypt_payload(token, SECRET, url_safe=False) == PAYLOAD

    def test_url_safe_alphabet_has_no_padding(self) -> None:
        for _ in range(10):
            token = encrypt_payload(PAYLOAD, SECRET)
            assert not set(token) & {"+", "/", "="}

    def test_same_payload_encrypts_differently(self) -> None:
        assert encrypt_payload(PAYLOAD, SECRET) != encrypt_payload(PAYLOAD, SECRET)

    def test_unicode_payload(self) -> None:
        payload = {"name": "José Núñez", "city": "Cancún"}
        assert decrypt_payload(encrypt_payload(payload, SECRET), SECRET) == payload

    def test_empty_secret_refused_on_encrypt(self) -> None:
        with pytest.raises(ValueError):
            encrypt_payload(PAYLOAD, "")


class TestTamperDetection:
    def test_last_character_changed(self) -> None:
        token = encrypt_payload(PAYLOAD, SECRET)
        with pytest.raises(DecryptionError):
            decrypt_payload(_flip(token, len(token) - 1), SECRET)

    def test_every_position_changed(self) -> None:
        token = encrypt_payload({"t": "x"}, SECRET)
        for i in range(len(token)):
            with pytest.raises(DecryptionError):
                decrypt_payload(_flip(token, i), SECRET)

    def test_wrong_key(self) -> None:
        token = encrypt_payload(PAYLOAD, SECRET)
        with pytest.raises(DecryptionError):
            decrypt_payload(token, SECRET + "x")

    def test_truncated(self) -> None:
        token = encrypt_payload(PAYLOAD, SECRET)
        with pytest.raises(DecryptionError):
            decrypt_payload(token[:20], SECRET)

    def test_appended_character(self) -> None:
        token = encrypt_payload(PAYLOAD, SECRET)
        with pytest.raises(DecryptionError):
            decrypt_payload(token + "A", SECRET)

    @pytest.mark.parametrize("token", ["", "not base64 at all!", "====", "é"])
    def test_garbage(self, token: str) -> None:
        with pytest.raises(DecryptionError):
            decrypt_payload(token, SECRET)

    def test_error_message_is_generic(self) -> None:
        token = encrypt_payload(PAYLOAD, SECRET)
        messages = set()
        for bad in (token[:20], _flip(token, 5)):
            with pytest.raises(DecryptionError) as exc_info:
                decrypt_payload(bad, SECRET)
            messages.add(exc_info.value.message)
        with pytest.raises(DecryptionError) as exc_info:
            decrypt_payload(token, SECRET + "x")
        messages.add(exc_info.value.message)
        assert len(messages) == 1

    def test_non_json_plaintext(self) -> None:
        salt, nonce = os.urandom(SALT_BYTES), os.urandom(NONCE_BYTES)
        sealed = AESGCM(_derive_key(SECRET, salt)).encrypt(nonce, b"\xff not json", None)
        token = _encode(salt + nonce + sealed, url_safe=True)
        with pytest.raises(DecryptionError):
            decrypt_payload(token, SECRET)
