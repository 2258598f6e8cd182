"""Process-lifetime lock used to keep a single instance logged in."""

from __future__ import annotations

import asyncio
import logging

from .locks import LockService
from .store import KeyValueStoreUnavailable

logger = logging.getLogger(__name__)

MIN_TTL_SECONDS = 5
MIN_POLL_SECONDS = 0.1


class StartupLock:
    """Owned lock held for the whole process lifetime.

    ``acquire`` waits until the key is free, then a background task extends
    the expiry every ``ttl / 3`` seconds. If another owner takes the key the
    task stops and :attr:`held` turns false.
    """

    def __init__(
        self,
        locks: LockService,
        *,
        key: str = "bot-login",
        ttl_seconds: float = 30,
        poll_seconds: float = 1.0,
    ) -> None:
        self._locks = locks
        self.key = key
        self.ttl_seconds = max(MIN_TTL_SECONDS, int(ttl_seconds))
        self.poll_seconds = max(MIN_POLL_SECONDS, float(poll_seconds))
        self._token: str | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def held(self) -> bool:
        return self._token is not None

    @property
    def refresh_interval(self) -> float:
        return max(1.0, self.ttl_seconds / 3)

    async def acquire(self) -> None:
        if self.held:
            return
        logged_wait = False
        while True:
            result = await self._locks.acquire_owned_lock(self.key, self.ttl_seconds)
            if result.acquired:
                self._token = result.token
                self._task = asyncio.get_running_loop().create_task(self._refresh_loop())
                logger.info("Acquired startup lock '%s' (ttl=%ss)", self.key, self.ttl_seconds)
                return
            if not logged_wait:
                logger.info("Startup lock '%s' already held; waiting for release", self.key)
                logged_wait = True
            await asyncio.sleep(self.poll_seconds)

    async def refresh(self) -> bool:
        """Extend the lock once. Returns false only when ownership is lost."""
        token = self._token
        if token is None:
            return False
        try:
            refreshed = await self._locks.store.compare_and_expire(
                self._locks.lock_key(self.key), token, self.ttl_seconds
            )
        except KeyValueStoreUnavailable as exc:
            logger.warning("Failed to refresh startup lock '%s': %s", self.key, exc)
            return True
        if not refreshed:
            logger.warning("Lost startup lock ownership for '%s' while running", self.key)
            self._token = None
        return refreshed

    async def release(self) -> None:
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Startup lock refresh task for '%s' failed", self.key)
        token, self._token = self._token, None
        if token is None:
            return
        if await self._locks.release_owned_lock(self.key, token):
            logger.info("Released startup lock '%s'", self.key)

    async def __aenter__(self) -> "StartupLock":
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.release()

    async def _refresh_loop(self) -> None:
        while self.held:
            await asyncio.sleep(self.refresh_interval)
            if not await self.refresh():
                return
