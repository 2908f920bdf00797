"""
kyc/webhook.py -- Processing of identity-verification (KYC) webhooks.

Order of operations is fixed:
  1. verify_webhook()  -- on failure raise WebhookSignatureError; the body is
                          not parsed any further and nothing is written.
  2. envelope shape    -- session_id and status must be non-empty strings.
  3. final statuses    -- "Approved" / "Declined" update the user's
                          verification state via the User Directory. Every
                          other status (In Progress, In Review, ...) is
                          acknowledged and logged only.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from auth.errors import UpstreamError, ValidationError, WebhookSignatureError
from auth.models import classify_directory_error
from auth.store import UserDirectory
from kyc.signatures import DEFAULT_TOLERANCE_SECONDS, WebhookHeaders, verify_webhook

logger = logging.getLogger("rentalauth.kyc.webhook")

APPROVED = "Approved"
DECLINED = "Declined"
FINAL_STATUSES = (APPROVED, DECLINED)


@dataclass(frozen=True)
class WebhookEnvelope:
    session_id: str
    status: str
    vendor_data: str | None = None
    webhook_type: str | None = None
    timestamp: int | None = None
    created_at: int | None = None
    workflow_id: str | None = None
    decision: dict | None = None
    metadata: dict | None = None

    @classmethod
    def from_body(cls, body: Any) -> WebhookEnvelope:
        if not isinstance(body, dict):
            raise ValidationError(detail={"body": "must be a JSON object"})
        errors = {}
        for key in ("session_id", "status"):
            if not isinstance(body.get(key), str) or not body[key].strip():
                errors[key] = "required"
        for key in ("decision", "metadata"):
            if body.get(key) is not None and not isinstance(body[key], dict):
                errors[key] = "must be an object"
        if errors:
            raise ValidationError(detail=errors)
        vendor_data = body.get("vendor_data")
        return cls(
            session_id=body["session_id"].strip(),
            status=body["status"].strip(),
            vendor_data=str(vendor_data) if vendor_data is not None else None,
            webhook_type=body.get("webhook_type"),
            timestamp=body.get("timestamp"),
            created_at=body.get("created_at"),
            workflow_id=body.get("workflow_id"),
            decision=body.get("decision"),
            metadata=body.get("metadata"),
        )


@dataclass(frozen=True)
class WebhookOutcome:
    processed: bool
    message: str


class KycWebhookProcessor:
    def __init__(self, directory: UserDirectory, secret: str, tolerance: int = DEFAULT_TOLERANCE_SECONDS) -> None:
        self._directory = directory
        self._secret = secret
        self._tolerance = tolerance

    def handle(self, body: Any, headers: WebhookHeaders) -> WebhookOutcome:
        if not verify_webhook(body, headers, self._secret, tolerance=self._tolerance):
            raise WebhookSignatureError()

        envelope = WebhookEnvelope.from_body(body)
        logger.info("KYC webhook received -- session %s, status %s", envelope.session_id, envelope.status)

        if envelope.status not in FINAL_STATUSES:
            logger.info("KYC session %s in intermediate status %s", envelope.session_id, envelope.status)
            return WebhookOutcome(processed=False, message="Webhook acknowledged (intermediate status).")

        is_verified = envelope.status == APPROVED
        decision_json = json.dumps(envelope.decision, ensure_ascii=False) if envelope.decision else None
        update = self._directory.update_identity_verification(
            envelope.session_id,
            envelope.vendor_data,
            is_verified,
            envelope.status,
            decision_json,
        )
        if update.error or not update.updated:
            if classify_directory_error(update.error) == "not_found":
                # Acknowledged so the provider does not retry.
                logger.warning("KYC webhook for unknown session %s", envelope.session_id)
                return WebhookOutcome(processed=False, message="Webhook acknowledged (unknown session).")
            logger.error("KYC update failed for session %s: %s", envelope.session_id, update.error)
            raise UpstreamError()

        logger.info("KYC session %s applied to user %s (verified: %s)", envelope.session_id, update.user_id, is_verified)
        return WebhookOutcome(processed=True, message="Webhook processed.")
