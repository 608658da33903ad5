from __future__ import annotations

import asyncio
import uuid
from datetime import datetime
from typing import Optional, Sequence

from ..domain import states
from ..domain.states import RegistrationState
from ..models import Registration
from .registrations import ByToken, CancelOutcome, CancelSelector, DuplicateRegistration, NewRegistration


class MemoryRegistrationStore:
    """Process-local store for development and tests.

    Every write runs under one lock, which gives the same per-level atomicity
    as the advisory lock in the SQL store (and then some).
    """

    def __init__(self) -> None:
        self._rows: dict[uuid.UUID, Registration] = {}
        self._lock = asyncio.Lock()

    @property
    def rows(self) -> list[Registration]:
        return list(self._rows.values())

    def _active(self, event_id: int, ride_level: str) -> list[Registration]:
        return [
            r for r in self._rows.values()
            if r.event_id == event_id and r.ride_level == ride_level and r.cancelled_at is None
        ]

    async def confirmed_counts(self, event_id: int) -> dict[str, int]:
        counts: dict[str, int] = {}
        for r in self._rows.values():
            if r.event_id == event_id and r.state is RegistrationState.CONFIRMED:
                counts[r.ride_level] = counts.get(r.ride_level, 0) + 1
        return counts

    async def insert(self, new: NewRegistration, *, capacity: Optional[int], now: datetime) -> Registration:
        async with self._lock:
            active = self._active(new.event_id, new.ride_level)
            for r in active:
                same = r.user_id == new.user_id if new.user_id is not None else (r.user_id is None and r.email == new.email)
                if same:
                    raise DuplicateRegistration(r.state)

            confirmed = sum(1 for r in active if not r.is_waitlist)
            waitlisted = capacity is not None and confirmed >= capacity
            reg = Registration(
                id=uuid.uuid4(),
                event_id=new.event_id,
                ride_level=new.ride_level,
                event_type=new.event_type,
                user_id=new.user_id,
                email=new.email,
                first_name=new.first_name,
                last_name=new.last_name,
                cancel_token_hash=new.cancel_token_hash,
                cancel_token_issued_at=now,
                waitlist_promoted_at=None,
                cancelled_at=None,
                created_at=now,
                **(states.waitlist_entry(now) if waitlisted else states.confirmed_entry()),
            )
            self._rows[reg.id] = reg
            return reg

    def _find(self, selector: CancelSelector) -> Optional[Registration]:
        for r in self._rows.values():
            if r.cancelled_at is not None:
                continue
            if isinstance(selector, ByToken):
                if r.cancel_token_hash == selector.token_hash:
                    return r
            elif (r.user_id, r.event_id, r.ride_level) == (selector.user_id, selector.event_id, selector.ride_level):
                return r
        return None

    async def cancel(
        self, selector: CancelSelector, *, now: datetime, promotion_token_hash: str
    ) -> CancelOutcome:
        async with self._lock:
            target = self._find(selector)
            if target is None:
                return CancelOutcome(cancelled=None)
            held_seat = target.state is RegistrationState.CONFIRMED
            states.apply(target, states.cancel(target, now=now))
            if not held_seat:
                return CancelOutcome(cancelled=target)

            queue = sorted(
                (r for r in self._active(target.event_id, target.ride_level) if r.is_waitlist),
                key=lambda r: (r.waitlist_joined_at, r.created_at),
            )
            if not queue:
                return CancelOutcome(cancelled=target)
            head = queue[0]
            states.apply(head, states.promote(head, now=now, cancel_token_hash=promotion_token_hash))
            return CancelOutcome(cancelled=target, promoted=head)

    async def waitlist(self, *, event_id: Optional[int] = None, ride_level: Optional[str] = None) -> Sequence[Registration]:
        rows = [
            r for r in self._rows.values()
            if r.state is RegistrationState.WAITLISTED
            and (event_id is None or r.event_id == event_id)
            and (not ride_level or r.ride_level == ride_level)
        ]
        return sorted(rows, key=lambda r: r.waitlist_joined_at)
