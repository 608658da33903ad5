from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import CheckConstraint, Index, UniqueConstraint
from sqlalchemy.dialects import postgresql as pg
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .domain.states import RegistrationState, state_of


# ---------- Base & naming ----------
class Base(DeclarativeBase):
    # Keep index/constraint names stable for cleaner migrations
    metadata = sa.MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "ck": "ck_%(table_name)s_%(constraint_name)s",
            "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
            "pk": "pk_%(table_name)s",
        }
    )


# ---------- REGISTRATIONS ----------
class Registration(Base):
    __tablename__ = "registrations"

    id: Mapped[uuid.UUID] = mapped_column(pg.UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # events live in the content source; no local FK
    event_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    ride_level: Mapped[str] = mapped_column(sa.Text, nullable=False)
    event_type: Mapped[str] = mapped_column(
        sa.Text, nullable=False, default="ride", server_default=sa.text("'ride'")
    )

    # set only for authenticated signups; email is the identity for guests
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(pg.UUID(as_uuid=True), nullable=True)
    email: Mapped[str] = mapped_column(sa.Text, nullable=False)  # stored lower-cased
    first_name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    last_name: Mapped[str] = mapped_column(sa.Text, nullable=False)

    is_waitlist: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.text("false")
    )
    waitlist_joined_at: Mapped[Optional[datetime]] = mapped_column(pg.TIMESTAMP(timezone=True), nullable=True)
    waitlist_promoted_at: Mapped[Optional[datetime]] = mapped_column(pg.TIMESTAMP(timezone=True), nullable=True)

    # sha256 hex of the emailed token; the raw token is never stored
    cancel_token_hash: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    cancel_token_issued_at: Mapped[datetime] = mapped_column(
        pg.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(pg.TIMESTAMP(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        pg.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")
    )

    __table_args__ = (
        UniqueConstraint("cancel_token_hash", name="uq_registrations_cancel_token_hash"),
        CheckConstraint("email <> ''", name="registrations_email_present"),
        CheckConstraint(
            "(NOT is_waitlist) OR waitlist_joined_at IS NOT NULL",
            name="registrations_waitlist_joined",
        ),
        # One active row per identity and level; cancelled rows allow re-signup
        Index(
            "uq_reg_active_user",
            "event_id",
            "ride_level",
            "user_id",
            unique=True,
            postgresql_where=sa.text("cancelled_at IS NULL AND user_id IS NOT NULL"),
        ),
        Index(
            "uq_reg_active_guest",
            "event_id",
            "ride_level",
            "email",
            unique=True,
            postgresql_where=sa.text("cancelled_at IS NULL AND user_id IS NULL"),
        ),
        Index("ix_reg_event_level_active", "event_id", "ride_level", "is_waitlist", "cancelled_at"),
        Index(
            "ix_reg_waitlist_queue",
            "event_id",
            "ride_level",
            "waitlist_joined_at",
            postgresql_where=sa.text("is_waitlist AND cancelled_at IS NULL"),
        ),
    )

    @property
    def state(self) -> RegistrationState:
        return state_of(self)
