import logging

import pytest

from guildbank.coordination import InMemoryKeyValueStore, SessionStore
from guildbank.domain.exceptions import SessionUnavailable
from guildbank.testing import FrozenClock, UnavailableKeyValueStore


@pytest.fixture()
def clock():
    return FrozenClock()


@pytest.fixture()
def store(clock):
    return InMemoryKeyValueStore(monotonic=clock.monotonic)


@pytest.fixture()
def sessions(store, clock):
    return SessionStore(store, clock=clock)


@pytest.mark.asyncio()
async def test_session_round_trip_and_expiry(sessions, clock):
    state = {"hand": ["A", "K"], "bet": 50}
    assert await sessions.put_session("blackjack", "m1", state, ttl_seconds=30)
    assert await sessions.get_session("blackjack", "m1") == state
    assert await sessions.require_session("blackjack", "m1") == state

    clock.advance(seconds=30)
    assert await sessions.get_session("blackjack", "m1") is None
    with pytest.raises(SessionUnavailable):
        await sessions.require_session("blackjack", "m1")


@pytest.mark.asyncio()
async def test_session_ttl_is_floored_to_one_second(sessions, clock):
    await sessions.put_session("dice", "m1", {"roll": 3}, ttl_seconds=0)
    assert await sessions.get_session("dice", "m1") == {"roll": 3}
    clock.advance(seconds=1)
    assert await sessions.get_session("dice", "m1") is None


@pytest.mark.asyncio()
async def test_corrupt_session_reads_as_absent(sessions, store):
    await store.set(sessions.session_key("slots", "m1"), "{not json", 30)
    assert await sessions.get_session("slots", "m1") is None


@pytest.mark.asyncio()
async def test_delete_session(sessions):
    await sessions.put_session("slots", "m1", [1, 2, 3])
    await sessions.delete_session("slots", "m1")
    assert await sessions.get_session("slots", "m1") is None


@pytest.mark.asyncio()
async def test_cooldown_reservation_is_create_if_absent(sessions, clock):
    expires_at = clock.now_ms + 90_000
    first = await sessions.reserve_cooldown("u1", "g1", "work", expires_at)
    assert first.reserved

    clock.advance(seconds=30)
    second = await sessions.reserve_cooldown("u1", "g1", "work", clock.now_ms + 90_000)
    assert not second.reserved
    assert second.remaining_seconds == pytest.approx(60)
    assert await sessions.get_cooldown_remaining("u1", "g1", "work") == pytest.approx(60)

    await sessions.clear_cooldown("u1", "g1", "work")
    assert await sessions.get_cooldown_remaining("u1", "g1", "work") == 0
    assert (await sessions.reserve_cooldown("u1", "g1", "work", clock.now_ms + 1000)).reserved


@pytest.mark.asyncio()
async def test_cooldowns_are_per_command_and_account(sessions, clock):
    expires_at = clock.now_ms + 10_000
    assert (await sessions.reserve_cooldown("u1", "g1", "work", expires_at)).reserved
    assert (await sessions.reserve_cooldown("u1", "g1", "crime", expires_at)).reserved
    assert (await sessions.reserve_cooldown("u2", "g1", "work", expires_at)).reserved
    assert (await sessions.reserve_cooldown("u1", "g2", "work", expires_at)).reserved


@pytest.mark.asyncio()
async def test_set_cooldown_overwrites(sessions, clock):
    await sessions.set_cooldown("u1", "g1", "daily", clock.now_ms + 5_000)
    await sessions.set_cooldown("u1", "g1", "daily", clock.now_ms + 20_000)
    assert await sessions.get_cooldown_remaining("u1", "g1", "daily") == pytest.approx(20)


@pytest.mark.asyncio()
async def test_sessions_degrade_when_store_is_down(clock):
    sessions = SessionStore(UnavailableKeyValueStore(), clock=clock)
    assert not await sessions.put_session("slots", "m1", {})
    assert await sessions.get_session("slots", "m1") is None
    await sessions.delete_session("slots", "m1")

    reservation = await sessions.reserve_cooldown("u1", "g1", "work", clock.now_ms + 1000)
    assert not reservation.reserved
    assert not reservation.store_available
    assert await sessions.get_cooldown_remaining("u1", "g1", "work") == 0


@pytest.mark.asyncio()
async def test_unserializable_session_is_refused(sessions, caplog):
    with caplog.at_level(logging.WARNING, logger="guildbank.coordination.sessions"):
        assert not await sessions.put_session("blackjack", "m1", {"deck": {1, 2, 3}}, 30)
    assert await sessions.get_session("blackjack", "m1") is None
    assert "not JSON serializable" in caplog.text
