import asyncio
import logging

import pytest

from guildbank.coordination import InMemoryKeyValueStore, LockService, StartupLock
from guildbank.testing import FrozenClock, UnavailableKeyValueStore


@pytest.fixture()
def clock():
    return FrozenClock()


@pytest.fixture()
def locks(clock):
    return LockService(InMemoryKeyValueStore(monotonic=clock.monotonic), clock=clock)


@pytest.mark.asyncio()
async def test_startup_lock_acquires_and_releases(locks):
    lock = StartupLock(locks, key="bot-login", ttl_seconds=30, poll_seconds=0.1)
    async with lock:
        assert lock.held
        assert lock.refresh_interval == 10
        assert not (await locks.acquire_owned_lock("bot-login")).acquired
    assert not lock.held
    assert (await locks.acquire_owned_lock("bot-login")).acquired


@pytest.mark.asyncio()
async def test_startup_lock_waits_for_current_holder(locks):
    holder = await locks.acquire_owned_lock("bot-login", ttl_seconds=30)
    waiter = StartupLock(locks, poll_seconds=0.1)
    task = asyncio.create_task(waiter.acquire())

    await asyncio.sleep(0.25)
    assert not task.done()

    await locks.release_owned_lock("bot-login", holder.token)
    await asyncio.wait_for(task, timeout=2)
    assert waiter.held
    await waiter.release()


@pytest.mark.asyncio()
async def test_refresh_keeps_lock_alive(locks, clock):
    lock = StartupLock(locks, ttl_seconds=30)
    await lock.acquire()
    clock.advance(seconds=25)
    assert await lock.refresh()
    clock.advance(seconds=25)
    assert not (await locks.acquire_owned_lock("bot-login")).acquired
    await lock.release()


@pytest.mark.asyncio()
async def test_refresh_detects_lost_ownership(locks, clock):
    lock = StartupLock(locks, ttl_seconds=5)
    await lock.acquire()
    clock.advance(seconds=6)
    intruder = await locks.acquire_owned_lock("bot-login", ttl_seconds=30)
    assert intruder.acquired

    assert not await lock.refresh()
    assert not lock.held
    await lock.release()
    assert not (await locks.acquire_owned_lock("bot-login")).acquired


@pytest.mark.asyncio()
async def test_refresh_tolerates_store_outage():
    healthy = LockService(InMemoryKeyValueStore())
    lock = StartupLock(healthy, ttl_seconds=30)
    await lock.acquire()
    lock._locks = LockService(UnavailableKeyValueStore())
    assert await lock.refresh()
    assert lock.held
    lock._locks = healthy
    await lock.release()


def test_ttl_and_poll_are_floored(locks):
    lock = StartupLock(locks, ttl_seconds=1, poll_seconds=0)
    assert lock.ttl_seconds == 5
    assert lock.poll_seconds == 0.1


@pytest.mark.asyncio()
async def test_release_frees_lock_after_refresh_task_crashed(locks, monkeypatch, caplog):
    lock = StartupLock(locks, ttl_seconds=30)
    monkeypatch.setattr(StartupLock, "refresh_interval", property(lambda self: 0))

    async def crash():
        raise RuntimeError("refresh crashed")

    monkeypatch.setattr(lock, "refresh", crash)
    await lock.acquire()
    await asyncio.sleep(0.01)
    assert lock._task.done()

    with caplog.at_level(logging.ERROR, logger="guildbank.coordination.startup"):
        await lock.release()
    assert not lock.held
    assert "refresh task for 'bot-login' failed" in caplog.text
    assert (await locks.acquire_owned_lock("bot-login")).acquired
