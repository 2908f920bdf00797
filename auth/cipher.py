"""
auth/cipher.py -- Authenticated encryption of small JSON payloads.

Used for the password-reset token carried in email links: the link itself is
opaque to the recipient and any modification is detected before the payload
is trusted.

Layout (one layout for every channel):

    salt (16) | nonce (12) | ciphertext (n) | tag (16)

  Key:    PBKDF2-HMAC-SHA256(secret, salt, 100 000 iterations) -> 32 bytes
  Cipher: AES-256-GCM (cryptography's AESGCM; it appends the tag itself)

A fresh salt and nonce come from os.urandom on every call, so encrypting the
same payload twice yields different tokens.

Encodings:
  url_safe=True  -- base64url without padding (query-string safe)
  url_safe=False -- standard base64 with padding

Security notes:
  [C2] Every failure mode -- bad encoding, short buffer, tag mismatch, wrong
       key, non-JSON plaintext -- raises the same DecryptionError with the
       same generic message. No decryption oracle.

  [C3] Decoding is canonical: the decoded bytes must re-encode to exactly the
       input string. base64 ignores the low bits of the last character, so
       without this check a changed final character could decode to the same
       bytes and a "tampered" link would still be accepted.

Layer rule: no imports from api/, kyc/, or notify/.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from auth.errors import DecryptionError

logger = logging.getLogger("rentalauth.cipher")

SALT_BYTES = 16
NONCE_BYTES = 12
TAG_BYTES = 16
KEY_BYTES = 32
KDF_ITERATIONS = 100_000

_MIN_TOKEN_BYTES = SALT_BYTES + NONCE_BYTES + TAG_BYTES + 1


def _derive_key(secret: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_BYTES,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(secret.encode("utf-8"))


# ---------------------------------------------------------------------------
# Encoding helpers
# ---------------------------------------------------------------------------


def _encode(raw: bytes, url_safe: bool) -> str:
    if url_safe:
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")
    return base64.b64encode(raw).decode("ascii")


def _decode(token: str, url_safe: bool) -> bytes:
    """Decode token strictly. Raises ValueError on any non-canonical input [C3]."""
    if url_safe:
        padded = token + "=" * (-len(token) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        # urlsafe_b64decode has no validate flag; reject stray characters
        # and non-canonical trailing bits by re-encoding.
    else:
        raw = base64.b64decode(token.encode("ascii"), validate=True)
    if _encode(raw, url_safe) != token:
        raise ValueError("non-canonical encoding")
    return raw


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def encrypt_payload(payload: Any, secret: str, *, url_safe: bool = True) -> str:
    """Serialize payload as JSON, encrypt it, and return the encoded token.

    Raises ValueError if secret is empty. Payload must be JSON-serializable.
    """
    if not secret:
        raise ValueError("encryption secret must not be empty")
    plaintext = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    salt = os.urandom(SALT_BYTES)
    nonce = os.urandom(NONCE_BYTES)
    sealed = AESGCM(_derive_key(secret, salt)).encrypt(nonce, plaintext, None)
    return _encode(salt + nonce + sealed, url_safe)


def decrypt_payload(token: str, secret: str, *, url_safe: bool = True) -> Any:
    """Decrypt a token produced by encrypt_payload() and return the payload.

    Raises DecryptionError on any failure [C2].
    """
    if not token or not secret:
        raise DecryptionError()
    try:
        raw = _decode(token, url_safe)
        if len(raw) < _MIN_TOKEN_BYTES:
            raise ValueError("token too short")
        salt = raw[:SALT_BYTES]
        nonce = raw[SALT_BYTES : SALT_BYTES + NONCE_BYTES]
        sealed = raw[SALT_BYTES + NONCE_BYTES :]
        plaintext = AESGCM(_derive_key(secret, salt)).decrypt(nonce, sealed, None)
        return json.loads(plaintext.decode("utf-8"))
    except (InvalidTag, ValueError, binascii.Error, UnicodeError) as exc:
        # json.JSONDecodeError is a ValueError subclass.
        logger.info("Payload decryption failed: %s", type(exc).__name__)
        raise DecryptionError() from None
