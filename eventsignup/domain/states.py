"""Registration lifecycle.

A registration row carries its state in three columns (``is_waitlist``,
``cancelled_at``, ``waitlist_promoted_at``). The helpers here are the only
place that decides which column values a transition writes, so stores never
assemble those combinations by hand.

    waitlisted --promote--> confirmed
    waitlisted --cancel---> cancelled
    confirmed  --cancel---> cancelled

``cancelled`` is terminal.
"""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Protocol


class RegistrationState(str, enum.Enum):
    CONFIRMED = "confirmed"
    WAITLISTED = "waitlisted"
    CANCELLED = "cancelled"


class IllegalTransition(Exception):
    """Raised when a transition is requested from a state that does not allow it."""

    def __init__(self, current: RegistrationState, action: str) -> None:
        super().__init__(f"cannot {action} a {current.value} registration")
        self.current = current
        self.action = action


class _StateColumns(Protocol):
    is_waitlist: bool
    cancelled_at: datetime | None


def state_of(row: _StateColumns) -> RegistrationState:
    if row.cancelled_at is not None:
        return RegistrationState.CANCELLED
    if row.is_waitlist:
        return RegistrationState.WAITLISTED
    return RegistrationState.CONFIRMED


# ---- creation ----
def confirmed_entry() -> dict[str, Any]:
    return {"is_waitlist": False, "waitlist_joined_at": None}


def waitlist_entry(now: datetime) -> dict[str, Any]:
    return {"is_waitlist": True, "waitlist_joined_at": now}


# ---- transitions ----
def promote(row: _StateColumns, *, now: datetime, cancel_token_hash: str) -> dict[str, Any]:
    """Column values that move a waitlisted row to confirmed.

    The cancellation token is always rotated on promotion.
    """
    current = state_of(row)
    if current is not RegistrationState.WAITLISTED:
        raise IllegalTransition(current, "promote")
    return {
        "is_waitlist": False,
        "waitlist_promoted_at": now,
        "cancel_token_hash": cancel_token_hash,
        "cancel_token_issued_at": now,
    }


def cancel(row: _StateColumns, *, now: datetime) -> dict[str, Any]:
    current = state_of(row)
    if current is RegistrationState.CANCELLED:
        raise IllegalTransition(current, "cancel")
    return {"cancelled_at": now}


def apply(row: Any, values: dict[str, Any]) -> None:
    for key, value in values.items():
        setattr(row, key, value)
