from __future__ import annotations
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request

from ...config import get_settings
from ...domain.errors import Unauthorized, ValidationFailed
from ...domain.schemas.registration import WaitlistReportOut, WaitlistRowOut, parse_event_id
from ...services.rate_limit import RateLimiter, enforce
from ...services.registration_engine import RegistrationEngine
from ..deps import get_engine, get_rate_limiter

router = APIRouter(tags=["admin"])
S = get_settings()


@router.get("/waitlist-report", response_model=WaitlistReportOut)
async def waitlist_report(
    request: Request,
    event_id: Optional[str] = Query(default=None, alias="eventId"),
    ride_level: Optional[str] = Query(default=None, alias="rideLevel"),
    x_waitlist_secret: Optional[str] = Header(default=None),
    limiter: RateLimiter = Depends(get_rate_limiter),
    engine: RegistrationEngine = Depends(get_engine),
):
    """Current waitlist rows in promotion order, for organizers."""
    await enforce(limiter, request, "waitlist-report", window_ms=S.RL_WINDOW_MS, limit=S.RL_REPORT_MAX)
    expected = S.WAITLIST_REPORT_SECRET
    if not expected or not x_waitlist_secret or not secrets.compare_digest(x_waitlist_secret, expected):
        raise Unauthorized("Unauthorized.")

    eid = None
    if event_id is not None:
        eid = parse_event_id(event_id)
        if eid is None:
            raise ValidationFailed("Missing or invalid eventId.")

    rows = await engine.waitlist(event_id=eid, ride_level=(ride_level or "").strip() or None)
    out = [
        WaitlistRowOut(
            id=r.id,
            event_id=r.event_id,
            ride_level=r.ride_level,
            waitlist_joined_at=r.waitlist_joined_at,
            user_id=r.user_id,
            email=r.email,
        )
        for r in rows
    ]
    return WaitlistReportOut(total=len(out), rows=out)
