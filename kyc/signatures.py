"""
kyc/signatures.py -- HMAC verification of inbound KYC provider webhooks.

The provider signs each call with a shared secret and sends one or both of
two signatures:

  X-Signature-V2     HMAC-SHA256 over the canonical JSON of the body:
                     keys sorted at every level, integral floats written as
                     ints, compact separators, non-ASCII kept as-is.
  X-Signature-Simple HMAC-SHA256 over "timestamp:session_id:status:webhook_type"
                     taken from the body (empty string for a missing field).

Either one matching is enough. X-Timestamp is mandatory and must lie within
the replay window (default 300 s either side of now) regardless of whether a
signature matches.

Security notes:
  [H3] All digest comparisons use hmac.compare_digest.
  [H4] An empty secret rejects every call. A misconfigured deployment must
       not accept unsigned webhooks.
  [H5] verify_webhook() never raises. Any unexpected exception while
       computing or comparing signatures is logged and counts as a rejection.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping

logger = logging.getLogger("rentalauth.kyc.signatures")

DEFAULT_TOLERANCE_SECONDS = 300

TIMESTAMP_HEADER = "X-Timestamp"
SIGNATURE_V2_HEADER = "X-Signature-V2"
SIGNATURE_SIMPLE_HEADER = "X-Signature-Simple"


@dataclass(frozen=True)
class WebhookHeaders:
    timestamp: str | None
    signature_v2: str | None = None
    signature_simple: str | None = None

    @classmethod
    def from_mapping(cls, headers: Mapping[str, str]) -> WebhookHeaders:
        """Build from any header mapping. Starlette's Headers is case-insensitive."""
        return cls(
            timestamp=headers.get(TIMESTAMP_HEADER),
            signature_v2=headers.get(SIGNATURE_V2_HEADER),
            signature_simple=headers.get(SIGNATURE_SIMPLE_HEADER),
        )


# ---------------------------------------------------------------------------
# Canonicalization
# ---------------------------------------------------------------------------


def canonicalize(value: Any) -> Any:
    """Return value with dict keys sorted recursively and 1.0 -> 1."""
    if isinstance(value, dict):
        return {str(k): canonicalize(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def canonical_json(body: Any) -> str:
    return json.dumps(
        canonicalize(body),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def _hmac_hex(secret: str, message: str) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def _field(body: Mapping[str, Any], key: str) -> str:
    value = body.get(key)
    return "" if value is None else str(canonicalize(value))


def simple_message(body: Mapping[str, Any]) -> str:
    return ":".join(
        (
            _field(body, "timestamp"),
            _field(body, "session_id"),
            _field(body, "status"),
            _field(body, "webhook_type"),
        )
    )


def sign_v2(body: Any, secret: str) -> str:
    """Return the hex V2 signature for body."""
    return _hmac_hex(secret, canonical_json(body))


def sign_simple(body: Mapping[str, Any], secret: str) -> str:
    """Return the hex Simple signature for body."""
    return _hmac_hex(secret, simple_message(body))


def _matches(expected: str, supplied: str | None) -> bool:
    if not supplied:
        return False
    return hmac.compare_digest(expected.encode("ascii"), supplied.strip().lower().encode("ascii"))


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


def verify_webhook(
    body: Any,
    headers: WebhookHeaders,
    secret: str,
    *,
    now: float | None = None,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
) -> bool:
    """Return True if the webhook is fresh and at least one signature matches."""
    if not secret:
        logger.error("KYC webhook secret is not configured -- rejecting webhook")
        return False
    if not headers.signature_v2 and not headers.signature_simple:
        logger.warning("Webhook rejected: no signature header")
        return False
    if not headers.timestamp:
        logger.warning("Webhook rejected: missing timestamp header")
        return False

    try:
        timestamp = int(headers.timestamp.strip())
    except ValueError:
        logger.warning("Webhook rejected: non-integer timestamp header")
        return False

    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance:
        logger.warning("Webhook rejected: timestamp outside %ds window (skew=%ds)", tolerance, int(current - timestamp))
        return False

    try:
        if headers.signature_v2 and _matches(sign_v2(body, secret), headers.signature_v2):
            return True
        if headers.signature_simple and isinstance(body, Mapping):
            if _matches(sign_simple(body, secret), headers.signature_simple):
                return True
    except Exception:
        # Non-ASCII signature header, unserializable body, ...
        logger.warning("Webhook rejected: error while comparing signatures", exc_info=True)
        return False

    logger.warning("Webhook rejected: signature mismatch")
    return False
