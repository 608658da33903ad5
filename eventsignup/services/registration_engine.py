# eventsignup/services/registration_engine.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from ..config import Settings
from ..domain.access import evaluate, flinta_only_gate, parse_release_date
from ..domain.capacity import capacity_for
from ..domain.errors import Conflict, Forbidden, InternalError, NotFound
from ..domain.states import RegistrationState
from ..models import Registration
from ..observability.metrics import CANCELLED, PROMOTED, SIGNUPS
from ..repos.registrations import (
    ByToken,
    ByUser,
    CancelSelector,
    DuplicateRegistration,
    NewRegistration,
    RegistrationStore,
)
from . import tokens
from .notifications import Notice, NoticeKind

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Caller:
    """Who is signing up: an authenticated user or a guest (user_id None)."""

    email: str
    user_id: Optional[uuid.UUID] = None
    is_member: bool = False


@dataclass(frozen=True)
class SignupRequest:
    event_id: int
    ride_level: str
    first_name: str
    last_name: str
    flinta_attested: bool = False
    event_type: str = "ride"
    event_title: Optional[str] = None


@dataclass(frozen=True)
class SignupResult:
    registration: Registration
    notice: Notice

    @property
    def waitlisted(self) -> bool:
        return self.registration.state is RegistrationState.WAITLISTED


@dataclass(frozen=True)
class CancelResult:
    cancelled: Registration
    promoted: Optional[Registration] = None
    notices: list[Notice] = field(default_factory=list)


class RegistrationEngine:
    """Signup and cancellation rules on top of a RegistrationStore.

    Emails are not sent from here: results carry ``Notice`` objects that the
    caller schedules after the response, once the store write is durable.
    """

    def __init__(
        self,
        store: RegistrationStore,
        content,
        *,
        settings: Settings,
        clock: Callable[[], datetime] = _now_utc,
        issue_token: Callable[[], tokens.IssuedToken] = tokens.issue,
    ) -> None:
        self._store = store
        self._content = content
        self._settings = settings
        self._clock = clock
        self._issue_token = issue_token

    # ---- capacity ----
    async def confirmed_counts(self, event_id: int) -> dict[str, int]:
        try:
            return await self._store.confirmed_counts(event_id)
        except SQLAlchemyError:
            logger.exception("capacity_query_failed", extra={"event_id": event_id})
            raise InternalError("Failed to load capacity.")

    # ---- signup ----
    async def signup(self, caller: Caller, req: SignupRequest) -> SignupResult:
        """Register ``caller`` for one level of an event.

        Checks run in a fixed order and the first failure wins: event exists,
        FLINTA-only gate, access window, then duplicate and capacity (the last
        two atomically inside the store).
        """
        access = await self._content.fetch_event_access_data(req.event_id)
        if access is None:
            raise NotFound("Event not found.")

        reason = flinta_only_gate(access.is_flinta_only, req.flinta_attested)
        if reason:
            raise Forbidden(reason)

        now = self._clock()
        decision = evaluate(
            now,
            parse_release_date(access.public_release_date),
            member_early_days=self._settings.MEMBER_EARLY_DAYS,
            flinta_early_days=self._settings.FLINTA_EARLY_DAYS,
            is_member=caller.is_member,
            flinta_attested=req.flinta_attested,
        )
        if not decision.allowed:
            raise Forbidden(decision.reason)

        capacity = capacity_for(req.ride_level, access, places_per_guide=self._settings.PLACES_PER_GUIDE)
        token = self._issue_token()
        new = NewRegistration(
            event_id=req.event_id,
            ride_level=req.ride_level,
            event_type=req.event_type,
            user_id=caller.user_id,
            email=caller.email,
            first_name=req.first_name,
            last_name=req.last_name,
            cancel_token_hash=token.hash,
        )
        try:
            reg = await self._store.insert(new, capacity=capacity, now=now)
        except DuplicateRegistration as e:
            if e.existing_state is RegistrationState.WAITLISTED:
                raise Conflict("You are already on the waitlist.")
            raise Conflict("You are already registered for this level.")
        except SQLAlchemyError:
            logger.exception(
                "signup_store_failed",
                extra={"event_id": req.event_id, "ride_level": req.ride_level},
            )
            raise InternalError("Failed to save signup.")

        waitlisted = reg.state is RegistrationState.WAITLISTED
        SIGNUPS.labels(ride_level=req.ride_level, outcome=reg.state.value).inc()
        logger.info(
            "signup",
            extra={
                "event_id": req.event_id,
                "ride_level": req.ride_level,
                "registration_id": str(reg.id),
                "waitlisted": waitlisted,
                "tier": decision.tier.value,
                "capacity": capacity,
            },
        )
        notice = Notice(
            kind=NoticeKind.WAITLISTED if waitlisted else NoticeKind.CONFIRMED,
            to=reg.email,
            event_id=reg.event_id,
            ride_level=reg.ride_level,
            cancel_token=token.raw,
            event_title=req.event_title or self._settings.DEFAULT_EVENT_TITLE,
        )
        return SignupResult(registration=reg, notice=notice)

    # ---- cancel ----
    async def cancel_for_user(self, user_id: uuid.UUID, event_id: int, ride_level: str) -> CancelResult:
        return await self._cancel(
            ByUser(user_id=user_id, event_id=event_id, ride_level=ride_level),
            mode="auth",
            not_found="Registration not found or already cancelled.",
        )

    async def cancel_by_token(self, raw_token: str) -> CancelResult:
        return await self._cancel(
            ByToken(token_hash=tokens.verify(raw_token)),
            mode="token",
            not_found="Cancellation link is invalid or already used.",
        )

    async def _cancel(self, selector: CancelSelector, *, mode: str, not_found: str) -> CancelResult:
        now = self._clock()
        # minted up front; only used if a waitlisted row gets promoted
        fresh = self._issue_token()
        try:
            outcome = await self._store.cancel(selector, now=now, promotion_token_hash=fresh.hash)
        except SQLAlchemyError:
            logger.exception("cancel_store_failed", extra={"mode": mode})
            raise InternalError("Failed to cancel registration.")

        if outcome.cancelled is None:
            raise NotFound(not_found)

        cancelled = outcome.cancelled
        CANCELLED.labels(mode=mode).inc()
        logger.info(
            "cancelled",
            extra={
                "mode": mode,
                "registration_id": str(cancelled.id),
                "event_id": cancelled.event_id,
                "ride_level": cancelled.ride_level,
            },
        )

        notices: list[Notice] = []
        promoted = outcome.promoted
        if promoted is not None:
            PROMOTED.labels(ride_level=promoted.ride_level).inc()
            logger.info(
                "waitlist_promoted",
                extra={
                    "registration_id": str(promoted.id),
                    "event_id": promoted.event_id,
                    "ride_level": promoted.ride_level,
                },
            )
            notices.append(
                Notice(
                    kind=NoticeKind.PROMOTED,
                    to=promoted.email,
                    event_id=promoted.event_id,
                    ride_level=promoted.ride_level,
                    cancel_token=fresh.raw,
                )
            )
        return CancelResult(cancelled=cancelled, promoted=promoted, notices=notices)

    # ---- reporting ----
    async def waitlist(self, *, event_id: Optional[int] = None, ride_level: Optional[str] = None) -> Sequence[Registration]:
        try:
            return await self._store.waitlist(event_id=event_id, ride_level=ride_level)
        except SQLAlchemyError:
            logger.exception("waitlist_query_failed", extra={"event_id": event_id})
            raise InternalError("Failed to load waitlist.")
