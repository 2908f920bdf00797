"""
api/routes/v1/kyc.py -- Inbound identity-verification webhook.

Route:
  POST /api/v1/kyc/webhook -- called by the KYC provider, never by browsers

The body is taken as parsed JSON (not a Pydantic model): the V2 signature is
computed over the canonical form of exactly what the provider sent, so no
field may be dropped, renamed or coerced before verification.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Request

from api.limiter import limiter
from api.models import WebhookResponse
from core.config import get_settings
from kyc.signatures import WebhookHeaders

_settings = get_settings()

router = APIRouter()


@limiter.limit(_settings.webhook_rate_limit)
@router.post("/kyc/webhook", response_model=WebhookResponse)
def kyc_webhook(request: Request, body: dict[str, Any] = Body(...)) -> WebhookResponse:
    """Verify and apply a KYC status notification. Bad signature -> 401."""
    headers = WebhookHeaders.from_mapping(request.headers)
    outcome = request.app.state.kyc_processor.handle(body, headers)
    return WebhookResponse(processed=outcome.processed, message=outcome.message)
