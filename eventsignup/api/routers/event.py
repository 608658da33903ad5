from __future__ import annotations
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, Request

from ...auth.deps import authenticated_caller, bearer_token, guest_caller
from ...clients.bot_check import TurnstileVerifier
from ...clients.content import ContentSource
from ...clients.identity import IdentityProvider
from ...config import get_settings
from ...domain.errors import ValidationFailed
from ...domain.schemas.registration import (
    CancelIn,
    CancelOut,
    CapacityOut,
    SignupIn,
    SignupOut,
    parse_body,
    parse_event_id,
)
from ...services.notifications import NotificationDispatcher, deliver
from ...services.rate_limit import RateLimiter, enforce
from ...services.registration_engine import RegistrationEngine, SignupRequest
from ..deps import (
    get_bot_verifier,
    get_content,
    get_dispatcher,
    get_engine,
    get_identity,
    get_rate_limiter,
)

router = APIRouter(tags=["event"])
S = get_settings()


async def _json_body(request: Request) -> tuple[Optional[dict[str, Any]], Optional[str]]:
    """(body, error); the error is raised by the caller once the request has been rate limited."""
    try:
        body = await request.json()
    except ValueError:
        return None, "Invalid JSON body."
    if not isinstance(body, dict):
        return None, "Invalid request body."
    return body, None


def _schedule(background: BackgroundTasks, notices, dispatcher: NotificationDispatcher, content: ContentSource) -> None:
    for notice in notices:
        background.add_task(deliver, notice, dispatcher, content)


@router.get("/event", response_model=CapacityOut)
async def event_capacity(
    request: Request,
    event_id: Optional[str] = Query(default=None, alias="eventId"),
    limiter: RateLimiter = Depends(get_rate_limiter),
    engine: RegistrationEngine = Depends(get_engine),
):
    await enforce(limiter, request, "event-capacity", window_ms=S.RL_WINDOW_MS, limit=S.RL_CAPACITY_MAX)
    eid = parse_event_id(event_id)
    if eid is None:
        raise ValidationFailed("Missing or invalid eventId.")
    counts = await engine.confirmed_counts(eid)
    return CapacityOut(event_id=eid, total=sum(counts.values()), counts=counts)


@router.post("/event")
async def event_action(
    request: Request,
    background: BackgroundTasks,
    authorization: Optional[str] = Header(default=None),
    limiter: RateLimiter = Depends(get_rate_limiter),
    engine: RegistrationEngine = Depends(get_engine),
    identity: IdentityProvider = Depends(get_identity),
    verifier: TurnstileVerifier = Depends(get_bot_verifier),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    content: ContentSource = Depends(get_content),
):
    body, body_error = await _json_body(request)
    action = body.get("action") if body is not None else None
    bearer = bearer_token(authorization)

    if action == "signup":
        ip = await enforce(limiter, request, "event-signup", window_ms=S.RL_WINDOW_MS, limit=S.RL_SIGNUP_MAX)
        data: SignupIn = parse_body(SignupIn, body)
        if bearer:
            caller = await authenticated_caller(identity, bearer)
        else:
            caller = await guest_caller(
                verifier, email=data.email, turnstile_token=data.turnstile_token, client_ip=ip
            )
        result = await engine.signup(
            caller,
            SignupRequest(
                event_id=data.event_id,
                ride_level=data.ride_level,
                first_name=data.first_name,
                last_name=data.last_name,
                flinta_attested=data.flinta_attested,
                event_type=data.event_type,
                event_title=data.event_title,
            ),
        )
        _schedule(background, [result.notice], dispatcher, content)
        return SignupOut(waitlisted=result.waitlisted)

    if action == "cancel":
        action_key = "event-cancel-auth" if bearer else "event-cancel"
        await enforce(limiter, request, action_key, window_ms=S.RL_WINDOW_MS, limit=S.RL_CANCEL_MAX)
        cancel_in: CancelIn = parse_body(CancelIn, body)
        if bearer:
            user = await identity.get_user_from_token(bearer)
            event_id, ride_level = cancel_in.require_selector()
            result = await engine.cancel_for_user(user.id, event_id, ride_level)
        else:
            result = await engine.cancel_by_token(cancel_in.require_token())
        _schedule(background, result.notices, dispatcher, content)
        return CancelOut()

    # unreadable bodies and unknown actions still count against a bucket before being rejected
    await enforce(limiter, request, "event-invalid", window_ms=S.RL_WINDOW_MS, limit=S.RL_SIGNUP_MAX)
    raise ValidationFailed(body_error or "Invalid action. Use signup or cancel.")
