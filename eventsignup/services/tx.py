from __future__ import annotations
import zlib

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession


def _level_key(ride_level: str) -> int:
    # pg advisory locks take two int4 keys; fold the level name into a signed int32
    v = zlib.crc32(ride_level.encode("utf-8"))
    return v - (1 << 32) if v >= (1 << 31) else v


async def lock_event_level(db: AsyncSession, event_id: int, ride_level: str) -> None:
    """
    Serialize writers for one (event, level) until the current transaction ends.
    Signups, cancellations and promotions for the same level queue up here, so
    count-then-insert and select-then-promote see a stable picture.
    """
    await db.execute(select(func.pg_advisory_xact_lock(event_id, _level_key(ride_level))))
