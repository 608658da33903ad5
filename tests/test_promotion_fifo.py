import pytest

from eventsignup.domain.errors import NotFound
from eventsignup.domain.states import RegistrationState
from eventsignup.services import tokens
from eventsignup.services.notifications import NoticeKind, deliver
from tests.conftest import FakeDispatcher, guest, signup_req

pytestmark = pytest.mark.asyncio


async def _fill_workshop(engine, clock, emails):
    """Event 1's workshop has 2 places; later emails queue in order."""
    out = {}
    for email in emails:
        out[email] = await engine.signup(guest(email), signup_req(level="workshop"))
        clock.advance(minutes=1)
    return out


async def test_waitlist_promotion_strict_fifo(engine, clock):
    res = await _fill_workshop(engine, clock, ["a@example.com", "b@example.com", "c@example.com", "d@example.com"])
    assert [r.waitlisted for r in res.values()] == [False, False, True, True]

    out = await engine.cancel_by_token(res["a@example.com"].notice.cancel_token)
    assert out.promoted is not None
    assert out.promoted.email == "c@example.com"
    assert out.promoted.state is RegistrationState.CONFIRMED
    assert out.promoted.waitlist_promoted_at == clock.now

    waiting = await engine.waitlist(event_id=1, ride_level="workshop")
    assert [r.email for r in waiting] == ["d@example.com"]
    assert await engine.confirmed_counts(1) == {"workshop": 2}


async def test_promotion_rotates_cancel_token(engine, clock):
    res = await _fill_workshop(engine, clock, ["a@example.com", "b@example.com", "c@example.com", "d@example.com"])
    out = await engine.cancel_by_token(res["b@example.com"].notice.cancel_token)
    (notice,) = out.notices
    assert notice.kind is NoticeKind.PROMOTED
    assert notice.to == "c@example.com"
    assert out.promoted.cancel_token_hash == tokens.hash_token(notice.cancel_token)

    # the link from the waitlist email is dead now
    with pytest.raises(NotFound):
        await engine.cancel_by_token(res["c@example.com"].notice.cancel_token)

    # the promotion link works and moves the queue again
    nxt = await engine.cancel_by_token(notice.cancel_token)
    assert nxt.promoted.email == "d@example.com"


async def test_cancelling_waitlisted_row_promotes_nobody(engine, clock):
    res = await _fill_workshop(engine, clock, ["a@example.com", "b@example.com", "c@example.com", "d@example.com"])
    out = await engine.cancel_by_token(res["c@example.com"].notice.cancel_token)
    assert out.cancelled.state is RegistrationState.CANCELLED
    assert out.promoted is None and out.notices == []
    assert [r.email for r in await engine.waitlist(event_id=1)] == ["d@example.com"]


async def test_cancel_with_empty_waitlist(engine, clock):
    res = await _fill_workshop(engine, clock, ["a@example.com"])
    out = await engine.cancel_by_token(res["a@example.com"].notice.cancel_token)
    assert out.promoted is None
    assert await engine.confirmed_counts(1) == {}


async def test_promotion_email_goes_to_promoted_person(engine, clock, content):
    res = await _fill_workshop(engine, clock, ["a@example.com", "b@example.com", "c@example.com"])
    out = await engine.cancel_by_token(res["a@example.com"].notice.cancel_token)

    dispatcher = FakeDispatcher()
    for notice in out.notices:
        await deliver(notice, dispatcher, content)

    (sent,) = dispatcher.sent
    assert sent["to"] == "c@example.com"
    assert sent["kind"] is NoticeKind.PROMOTED
    # the cancel request carries no title, so it is looked up
    assert sent["title"] == "Sunday Coffee Ride"
    assert content.title_lookups == [1]
