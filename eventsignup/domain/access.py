"""Early-access windows.

Registration opens to everyone at the event's public release date. Before
that, two windows reach backwards from the release date:

    |-- FLINTA window (flinta_early_days) ------------------|
                      |-- member window (member_early_days) |
    ------------------------------------------------------- release -->

Both windows are half-open, ``[start, release)``. FLINTA attestation admits a
caller inside either window; membership admits inside the member window only.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional


class AccessTier(str, enum.Enum):
    PUBLIC = "public"
    MEMBER_EARLY = "member_early"
    FLINTA_EARLY = "flinta_early"
    CLOSED = "closed"


MEMBER_ONLY = "Member early access only."
FLINTA_ONLY = "FLINTA early access only."
NOT_OPEN = "Registration and waitlist are not open yet."
FLINTA_EVENT = "This event is FLINTA only."


@dataclass(frozen=True)
class AccessDecision:
    tier: AccessTier
    reason: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.tier is not AccessTier.CLOSED


def parse_release_date(value: object) -> Optional[datetime]:
    """Lenient ISO-8601 parse; anything unusable counts as "no release date".

    Naive values are taken as UTC.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _in_window(now: datetime, release: datetime, days_before: float) -> bool:
    start = release - timedelta(days=days_before)
    return start <= now < release


def evaluate(
    now: datetime,
    release_date: Optional[datetime],
    *,
    member_early_days: float,
    flinta_early_days: float,
    is_member: bool,
    flinta_attested: bool,
) -> AccessDecision:
    if release_date is None or now >= release_date:
        return AccessDecision(AccessTier.PUBLIC)

    in_member = _in_window(now, release_date, member_early_days)
    in_flinta = _in_window(now, release_date, flinta_early_days)

    # attestation is the stronger override and opens either window
    if in_member:
        if flinta_attested:
            return AccessDecision(AccessTier.FLINTA_EARLY)
        if is_member:
            return AccessDecision(AccessTier.MEMBER_EARLY)
        return AccessDecision(AccessTier.CLOSED, MEMBER_ONLY)
    if in_flinta:
        if flinta_attested:
            return AccessDecision(AccessTier.FLINTA_EARLY)
        return AccessDecision(AccessTier.CLOSED, FLINTA_ONLY)
    return AccessDecision(AccessTier.CLOSED, NOT_OPEN)


def flinta_only_gate(is_flinta_only: bool, flinta_attested: bool) -> Optional[str]:
    """Event-level restriction, independent of timing."""
    if is_flinta_only and not flinta_attested:
        return FLINTA_EVENT
    return None
