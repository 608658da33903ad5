import asyncio

import pytest
from fastapi.testclient import TestClient

from eventsignup.api import deps
from eventsignup.main import app
from eventsignup.services.rate_limit import LocalRateLimitStore, RateLimiter
from tests.conftest import guest, mk_engine, signup_req

SECRET = {"X-Waitlist-Secret": "test-report-secret"}


@pytest.fixture
def engine(store, content, clock):
    return mk_engine(store, content, clock)


@pytest.fixture
def api(engine):
    app.dependency_overrides.update(
        {
            deps.get_engine: lambda: engine,
            deps.get_rate_limiter: lambda: RateLimiter(LocalRateLimitStore()),
        }
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


def _fill(engine, clock, n):
    async def run():
        for i in range(n):
            await engine.signup(guest(f"w{i}@example.com"), signup_req(level="workshop"))
            clock.advance(minutes=1)

    asyncio.run(run())


def test_requires_secret(api):
    assert api.get("/waitlist-report").status_code == 401
    r = api.get("/waitlist-report", headers={"X-Waitlist-Secret": "wrong"})
    assert r.status_code == 401
    assert r.json() == {"error": "Unauthorized."}


def test_report_lists_queue_in_order(api, engine, clock):
    _fill(engine, clock, 5)
    r = api.get("/waitlist-report", params={"eventId": "1", "rideLevel": "workshop"}, headers=SECRET)
    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 3
    assert [row["email"] for row in body["rows"]] == ["w2@example.com", "w3@example.com", "w4@example.com"]
    assert all(row["ride_level"] == "workshop" for row in body["rows"])


def test_report_filters(api, engine, clock):
    _fill(engine, clock, 3)
    r = api.get("/waitlist-report", params={"eventId": "2"}, headers=SECRET)
    assert r.json() == {"total": 0, "rows": []}
    r = api.get("/waitlist-report", params={"eventId": "x"}, headers=SECRET)
    assert r.status_code == 400


def test_health_without_shared_backends(api):
    r = api.get("/health")
    assert r.json() == {"status": "ok", "dependencies": {}}
    assert api.get("/health/readiness").json() == {"ready": True}
