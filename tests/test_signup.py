import pytest

from eventsignup.domain.access import FLINTA_EVENT, MEMBER_ONLY, NOT_OPEN
from eventsignup.domain.errors import Conflict, Forbidden, NotFound, UpstreamUnavailable
from eventsignup.domain.states import RegistrationState
from eventsignup.services import tokens
from eventsignup.services.notifications import NoticeKind
from tests.conftest import FakeContent, guest, member, mk_engine, ride_event, signup_req

pytestmark = pytest.mark.asyncio


async def test_signup_under_capacity_is_confirmed(engine, store):
    res = await engine.signup(guest("ana@example.com"), signup_req())
    assert not res.waitlisted
    assert res.registration.state is RegistrationState.CONFIRMED
    assert res.notice.kind is NoticeKind.CONFIRMED
    assert res.notice.to == "ana@example.com"
    # only the hash is persisted
    assert store.rows[0].cancel_token_hash == tokens.hash_token(res.notice.cancel_token)
    assert res.notice.cancel_token not in {r.cancel_token_hash for r in store.rows}


async def test_notice_uses_supplied_title_or_default(engine):
    res = await engine.signup(guest("a@example.com"), signup_req(event_title="Gravel Loop"))
    assert res.notice.event_title == "Gravel Loop"
    res = await engine.signup(guest("b@example.com"), signup_req())
    assert res.notice.event_title == "Kandie Gang Event"


async def test_full_level_goes_to_waitlist(engine):
    for i in range(7):
        assert not (await engine.signup(guest(f"c{i}@example.com"), signup_req())).waitlisted
    res = await engine.signup(guest("late@example.com"), signup_req())
    assert res.waitlisted
    assert res.registration.waitlist_joined_at is not None
    assert res.notice.kind is NoticeKind.WAITLISTED
    assert await engine.confirmed_counts(1) == {"level1": 7}


async def test_level_without_guides_waitlists_everyone(engine):
    res = await engine.signup(guest("a@example.com"), signup_req(level="level2"))
    assert res.waitlisted


async def test_uncapped_workshop(store, clock):
    content = FakeContent(events={5: ride_event(workshop_capacity=None)})
    engine = mk_engine(store, content, clock)
    for i in range(30):
        assert not (await engine.signup(guest(f"w{i}@example.com"), signup_req(event_id=5, level="workshop"))).waitlisted


async def test_duplicate_signup_messages(engine):
    await engine.signup(guest("dup@example.com"), signup_req(level="workshop"))
    with pytest.raises(Conflict) as e:
        await engine.signup(guest("dup@example.com"), signup_req(level="workshop"))
    assert e.value.message == "You are already registered for this level."

    await engine.signup(guest("w1@example.com"), signup_req(level="workshop"))
    await engine.signup(guest("wl@example.com"), signup_req(level="workshop"))
    with pytest.raises(Conflict) as e:
        await engine.signup(guest("wl@example.com"), signup_req(level="workshop"))
    assert e.value.message == "You are already on the waitlist."


async def test_member_duplicate_is_by_user_id(engine):
    caller = member("m@example.com")
    await engine.signup(caller, signup_req())
    with pytest.raises(Conflict):
        await engine.signup(caller, signup_req())
    # a guest signup with the same address is a different identity
    await engine.signup(guest("m@example.com"), signup_req())


async def test_same_person_other_level_is_fine(engine):
    await engine.signup(guest("two@example.com"), signup_req(level="level1"))
    res = await engine.signup(guest("two@example.com"), signup_req(level="workshop"))
    assert not res.waitlisted


async def test_signup_again_after_cancel(engine):
    res = await engine.signup(guest("back@example.com"), signup_req())
    await engine.cancel_by_token(res.notice.cancel_token)
    again = await engine.signup(guest("back@example.com"), signup_req())
    assert again.registration.state is RegistrationState.CONFIRMED


async def test_unknown_event(engine):
    with pytest.raises(NotFound) as e:
        await engine.signup(guest("a@example.com"), signup_req(event_id=404))
    assert e.value.message == "Event not found."


async def test_flinta_only_event(engine):
    with pytest.raises(Forbidden) as e:
        await engine.signup(guest("a@example.com"), signup_req(event_id=2))
    assert e.value.message == FLINTA_EVENT
    res = await engine.signup(guest("a@example.com"), signup_req(event_id=2, flinta_attested=True))
    assert not res.waitlisted


async def test_content_outage_is_upstream_error(store, clock):
    engine = mk_engine(store, FakeContent(fail=True), clock)
    with pytest.raises(UpstreamUnavailable):
        await engine.signup(guest("a@example.com"), signup_req())
    assert store.rows == []


async def test_access_windows_apply(store, clock):
    # release is 36h after the fixed clock: inside the member window only
    content = FakeContent(events={3: ride_event(guides={"level1": 1}, release="2026-06-03T00:00:00Z")})
    engine = mk_engine(store, content, clock)

    with pytest.raises(Forbidden) as e:
        await engine.signup(guest("a@example.com"), signup_req(event_id=3))
    assert e.value.message == MEMBER_ONLY

    res = await engine.signup(member("m@example.com"), signup_req(event_id=3))
    assert not res.waitlisted
    res = await engine.signup(guest("f@example.com"), signup_req(event_id=3, flinta_attested=True))
    assert not res.waitlisted

    clock.advance(days=-5)
    with pytest.raises(Forbidden) as e:
        await engine.signup(member("m2@example.com"), signup_req(event_id=3, flinta_attested=True))
    assert e.value.message == NOT_OPEN
