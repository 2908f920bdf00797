"""
auth/results.py -- Tagged result type for expected, non-exceptional outcomes.

Validation steps whose failure is a normal status rather than a fault (token
already redeemed, account suspended, link expired) return Ok(value) or
Err(kind, message). Orchestrators decide which exception, if any, a given
Err becomes at the service boundary.

    result = directory.claim_session_exchange(token)
    if isinstance(result, Err):
        raise InvalidSessionTokenError()
    user_id = result.value
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: str  # "expired", "not_found", "used", "locked", "forbidden", ...
    message: str = ""

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]
