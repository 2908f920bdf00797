"""
auth/status.py -- Account Status Gate.

Every path that mints a credential (password login, Google login, refresh,
session exchange) passes the user's status through gate() first. Only ACTIVE
passes. Unknown or missing values fail closed with "invalid account state".

The reason string is shown to the user: by the time the gate runs the caller
has already proven who they are, so "account suspended" leaks nothing.
"""

from __future__ import annotations

from auth.errors import ForbiddenError
from auth.models import AccountStatus
from auth.results import Err, Ok, Result

_REASONS = {
    AccountStatus.SUSPENDED: "account suspended",
    AccountStatus.DELETED: "account deleted",
    AccountStatus.BANNED: "account banned",
}
INVALID_STATE_REASON = "invalid account state"


def check_account_status(status: object) -> Result[AccountStatus]:
    """Return Ok(ACTIVE) or Err("forbidden", reason)."""
    parsed = AccountStatus.parse(status)
    if parsed is None:
        return Err("forbidden", INVALID_STATE_REASON)
    if parsed is AccountStatus.ACTIVE:
        return Ok(parsed)
    return Err("forbidden", _REASONS[parsed])


def gate(status: object) -> AccountStatus:
    """Raise ForbiddenError unless status is ACTIVE."""
    result = check_account_status(status)
    if isinstance(result, Err):
        raise ForbiddenError(result.message)
    return result.value
