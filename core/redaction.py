"""
core/redaction.py -- Helpers that keep PII and live secrets out of log lines.

Tokens are logged by an 8-character prefix only; enough to correlate two log
lines for the same request, useless for replaying the token.
"""

from __future__ import annotations


def mask_email(email: str | None) -> str:
    """Return ``jo***@example.com`` style redaction of an email address."""
    if not email or "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def token_prefix(token: str | None) -> str:
    if not token:
        return "<empty>"
    return f"{token[:8]}..."
