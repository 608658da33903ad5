import os

# settings are read once at import time; pin the process-local backends first
os.environ.setdefault("ENV", "test")
os.environ.setdefault("REGISTRATION_STORE", "memory")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("WAITLIST_REPORT_SECRET", "test-report-secret")
os.environ.setdefault("AUTH_JWT_SECRET", "test-jwt-secret-with-enough-bytes-for-hs256")

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from eventsignup.clients.identity import AuthUser, Profile
from eventsignup.config import get_settings
from eventsignup.domain.capacity import EventAccessData
from eventsignup.domain.errors import Unauthorized, UpstreamUnavailable
from eventsignup.repos.registrations_memory import MemoryRegistrationStore
from eventsignup.services.registration_engine import Caller, RegistrationEngine, SignupRequest

T0 = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


# ---------- fakes ----------
class Clock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw) -> None:
        self.now += timedelta(**kw)


class FakeContent:
    def __init__(self, events: Optional[dict] = None, titles: Optional[dict] = None, fail: bool = False):
        self.events = events if events is not None else {}
        self.titles = titles or {}
        self.fail = fail
        self.title_lookups: list[int] = []

    async def fetch_event_access_data(self, event_id: int):
        if self.fail:
            raise UpstreamUnavailable("Unable to verify event access window.")
        return self.events.get(event_id)

    async def fetch_event_title(self, event_id: int) -> str:
        self.title_lookups.append(event_id)
        return self.titles.get(event_id, "Kandie Gang Event")

    async def aclose(self) -> None:
        pass


class FakeDispatcher:
    enabled = True

    def __init__(self):
        self.sent: list[dict] = []

    async def send(self, kind, to, event_title, ride_level, raw_token) -> bool:
        self.sent.append(
            {"kind": kind, "to": to, "title": event_title, "ride_level": ride_level, "token": raw_token}
        )
        return True

    async def aclose(self) -> None:
        pass


class FakeIdentity:
    """Bearer tokens map straight to users: {token: (AuthUser, Profile)}."""

    def __init__(self, users: Optional[dict] = None):
        self.users = users or {}

    async def get_user_from_token(self, bearer: str) -> AuthUser:
        if bearer not in self.users:
            raise Unauthorized("Invalid or expired token.")
        return self.users[bearer][0]

    async def get_profile(self, user_id: uuid.UUID) -> Profile:
        for user, profile in self.users.values():
            if user.id == user_id:
                return profile
        return Profile(is_member=False, email=None)

    async def aclose(self) -> None:
        pass


class FakeVerifier:
    def __init__(self, enabled: bool = False, ok: bool = True):
        self.enabled = enabled
        self.ok = ok

    async def verify(self, token, client_ip) -> bool:
        return self.ok and bool(token)

    async def aclose(self) -> None:
        pass


class FakeRedis:
    """INCR/PTTL/PEXPIRE subset of redis.asyncio used by the rate limiter."""

    def __init__(self, fail: bool = False, fail_expire: bool = False):
        self.counts: dict[str, int] = {}
        self.expiries: dict[str, int] = {}
        self.fail = fail
        self.fail_expire = fail_expire
        self.expire_calls = 0

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        return FakePipeline(self)

    async def incr(self, key: str) -> int:
        if self.fail:
            raise ConnectionError("redis down")
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    async def pttl(self, key: str) -> int:
        if key not in self.counts:
            return -2
        return self.expiries.get(key, -1)

    async def pexpire(self, key: str, ms: int) -> bool:
        if self.fail_expire:
            raise ConnectionError("redis went away")
        self.expire_calls += 1
        self.expiries[key] = ms
        return True


class FakePipeline:
    def __init__(self, redis: FakeRedis):
        self._redis = redis
        self._queued: list = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self._queued.clear()

    def incr(self, key: str):
        self._queued.append(("incr", key))
        return self

    def pttl(self, key: str):
        self._queued.append(("pttl", key))
        return self

    async def execute(self) -> list:
        return [await getattr(self._redis, name)(key) for name, key in self._queued]


# ---------- helpers ----------
def ride_event(
    *,
    guides: Optional[dict] = None,
    release: Optional[str] = None,
    flinta_only: bool = False,
    workshop_capacity: Optional[int] = None,
) -> EventAccessData:
    return EventAccessData(
        public_release_date=release,
        is_flinta_only=flinta_only,
        workshop_capacity=workshop_capacity,
        guide_counts=guides or {},
    )


def guest(email: str) -> Caller:
    return Caller(email=email)


def member(email: str, user_id: Optional[uuid.UUID] = None, is_member: bool = True) -> Caller:
    return Caller(email=email, user_id=user_id or uuid.uuid4(), is_member=is_member)


def signup_req(event_id: int = 1, level: str = "level1", **kw) -> SignupRequest:
    kw.setdefault("first_name", "Kim")
    kw.setdefault("last_name", "Rider")
    return SignupRequest(event_id=event_id, ride_level=level, **kw)


def mk_engine(store, content, clock) -> RegistrationEngine:
    return RegistrationEngine(store, content, settings=get_settings(), clock=clock)


# ---------- fixtures ----------
@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store():
    return MemoryRegistrationStore()


@pytest.fixture
def content():
    # event 1: one guide on level1 (7 places), nothing on level2, workshop of 2
    # event 2: FLINTA only
    return FakeContent(
        events={
            1: ride_event(guides={"level1": 1}, workshop_capacity=2),
            2: ride_event(guides={"level1": 2}, flinta_only=True),
        },
        titles={1: "Sunday Coffee Ride"},
    )


@pytest.fixture
def engine(store, content, clock):
    return mk_engine(store, content, clock)
