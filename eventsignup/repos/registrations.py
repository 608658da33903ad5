from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, Sequence, Union

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..domain import states
from ..domain.states import RegistrationState
from ..models import Registration
from ..services.tx import lock_event_level


@dataclass(frozen=True)
class NewRegistration:
    event_id: int
    ride_level: str
    email: str
    first_name: str
    last_name: str
    cancel_token_hash: str
    user_id: Optional[uuid.UUID] = None
    event_type: str = "ride"


@dataclass(frozen=True)
class ByToken:
    token_hash: str


@dataclass(frozen=True)
class ByUser:
    user_id: uuid.UUID
    event_id: int
    ride_level: str


CancelSelector = Union[ByToken, ByUser]


@dataclass(frozen=True)
class CancelOutcome:
    cancelled: Optional[Registration]
    promoted: Optional[Registration] = None


class DuplicateRegistration(Exception):
    def __init__(self, existing_state: RegistrationState) -> None:
        super().__init__(f"active registration exists ({existing_state.value})")
        self.existing_state = existing_state


class RegistrationStore(Protocol):
    async def confirmed_counts(self, event_id: int) -> dict[str, int]: ...

    async def insert(self, new: NewRegistration, *, capacity: Optional[int], now: datetime) -> Registration:
        """Insert as confirmed or waitlisted depending on ``capacity``.

        Duplicate check, confirmed count and insert are atomic per
        (event, level). Raises DuplicateRegistration.
        """
        ...

    async def cancel(
        self, selector: CancelSelector, *, now: datetime, promotion_token_hash: str
    ) -> CancelOutcome:
        """Cancel one active row; if it held a confirmed seat, promote the
        earliest-joined waitlisted row of the same level using
        ``promotion_token_hash`` as its new cancellation hash.
        """
        ...

    async def waitlist(self, *, event_id: Optional[int] = None, ride_level: Optional[str] = None) -> Sequence[Registration]: ...


def _identity_filter(event_id: int, ride_level: str, *, user_id: Optional[uuid.UUID], email: str):
    base = [
        Registration.event_id == event_id,
        Registration.ride_level == ride_level,
        Registration.cancelled_at.is_(None),
    ]
    if user_id is not None:
        base.append(Registration.user_id == user_id)
    else:
        base.extend([Registration.user_id.is_(None), Registration.email == email])
    return base


class SqlRegistrationStore:
    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    async def confirmed_counts(self, event_id: int) -> dict[str, int]:
        async with self._sessions() as db:
            rows = await db.execute(
                select(Registration.ride_level, func.count())
                .where(
                    Registration.event_id == event_id,
                    Registration.is_waitlist.is_(False),
                    Registration.cancelled_at.is_(None),
                )
                .group_by(Registration.ride_level)
            )
            return {level: int(n) for level, n in rows.all()}

    async def _active_state(self, db: AsyncSession, new: NewRegistration) -> Optional[RegistrationState]:
        row = await db.execute(
            select(Registration.is_waitlist).where(
                *_identity_filter(new.event_id, new.ride_level, user_id=new.user_id, email=new.email)
            ).limit(1)
        )
        is_waitlist = row.scalar_one_or_none()
        if is_waitlist is None:
            return None
        return RegistrationState.WAITLISTED if is_waitlist else RegistrationState.CONFIRMED

    async def insert(self, new: NewRegistration, *, capacity: Optional[int], now: datetime) -> Registration:
        try:
            async with self._sessions() as db:
                async with db.begin():
                    await lock_event_level(db, new.event_id, new.ride_level)

                    existing = await self._active_state(db, new)
                    if existing is not None:
                        raise DuplicateRegistration(existing)

                    waitlisted = False
                    if capacity is not None:
                        taken = await db.execute(
                            select(func.count()).select_from(Registration).where(
                                Registration.event_id == new.event_id,
                                Registration.ride_level == new.ride_level,
                                Registration.is_waitlist.is_(False),
                                Registration.cancelled_at.is_(None),
                            )
                        )
                        waitlisted = int(taken.scalar_one()) >= capacity

                    reg = Registration(
                        event_id=new.event_id,
                        ride_level=new.ride_level,
                        event_type=new.event_type,
                        user_id=new.user_id,
                        email=new.email,
                        first_name=new.first_name,
                        last_name=new.last_name,
                        cancel_token_hash=new.cancel_token_hash,
                        cancel_token_issued_at=now,
                        created_at=now,
                        **(states.waitlist_entry(now) if waitlisted else states.confirmed_entry()),
                    )
                    db.add(reg)
                    await db.flush()
                return reg
        except IntegrityError:
            # unique-index backstop, e.g. a row written outside the level lock
            async with self._sessions() as db:
                existing = await self._active_state(db, new)
            if existing is None:
                raise
            raise DuplicateRegistration(existing)

    async def _locate(self, db: AsyncSession, selector: CancelSelector) -> Optional[tuple[uuid.UUID, int, str]]:
        q = select(Registration.id, Registration.event_id, Registration.ride_level).where(
            Registration.cancelled_at.is_(None)
        )
        if isinstance(selector, ByToken):
            q = q.where(Registration.cancel_token_hash == selector.token_hash)
        else:
            q = q.where(
                Registration.user_id == selector.user_id,
                Registration.event_id == selector.event_id,
                Registration.ride_level == selector.ride_level,
            )
        row = (await db.execute(q.limit(1))).first()
        return tuple(row) if row else None

    async def _promote_next(
        self, db: AsyncSession, *, event_id: int, ride_level: str, now: datetime, token_hash: str
    ) -> Optional[Registration]:
        head = (
            await db.execute(
                select(Registration)
                .where(
                    Registration.event_id == event_id,
                    Registration.ride_level == ride_level,
                    Registration.is_waitlist.is_(True),
                    Registration.cancelled_at.is_(None),
                )
                .order_by(Registration.waitlist_joined_at.asc(), Registration.created_at.asc())
                .limit(1)
                .with_for_update(skip_locked=True)
            )
        ).scalar_one_or_none()
        if head is None:
            return None
        states.apply(head, states.promote(head, now=now, cancel_token_hash=token_hash))
        await db.flush()
        return head

    async def cancel(
        self, selector: CancelSelector, *, now: datetime, promotion_token_hash: str
    ) -> CancelOutcome:
        async with self._sessions() as db:
            async with db.begin():
                located = await self._locate(db, selector)
                if located is None:
                    return CancelOutcome(cancelled=None)
                reg_id, event_id, ride_level = located

                await lock_event_level(db, event_id, ride_level)

                # re-read under the lock; a concurrent cancel may have won
                target = (
                    await db.execute(
                        select(Registration)
                        .where(Registration.id == reg_id, Registration.cancelled_at.is_(None))
                        .with_for_update()
                        .execution_options(populate_existing=True)
                    )
                ).scalar_one_or_none()
                if target is None:
                    return CancelOutcome(cancelled=None)

                held_seat = target.state is RegistrationState.CONFIRMED
                states.apply(target, states.cancel(target, now=now))
                await db.flush()

                promoted = None
                if held_seat:
                    promoted = await self._promote_next(
                        db, event_id=event_id, ride_level=ride_level, now=now, token_hash=promotion_token_hash
                    )
            return CancelOutcome(cancelled=target, promoted=promoted)

    async def waitlist(self, *, event_id: Optional[int] = None, ride_level: Optional[str] = None) -> Sequence[Registration]:
        q = select(Registration).where(Registration.is_waitlist.is_(True), Registration.cancelled_at.is_(None))
        if event_id is not None:
            q = q.where(Registration.event_id == event_id)
        if ride_level:
            q = q.where(Registration.ride_level == ride_level)
        async with self._sessions() as db:
            rows = await db.execute(q.order_by(Registration.waitlist_joined_at.asc()))
            return list(rows.scalars().all())
