"""Read cache for committed account snapshots."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from .storage.base import AccountRecord

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _CacheEntry:
    record: AccountRecord
    stored_at: float


class AccountCache:
    """TTL cache owned by a ledger instance.

    Entries are refreshed after every committed transaction, so a hit is the
    last state this process wrote or read. The sweep task only drops stale
    entries; correctness never depends on it.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 60,
        sweep_seconds: float = 300,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._sweep_seconds = sweep_seconds
        self._monotonic = monotonic
        self._entries: dict[tuple[str, str], _CacheEntry] = {}
        self._task: asyncio.Task[None] | None = None

    def get(self, user_id: str, community_id: str) -> AccountRecord | None:
        key = (user_id, community_id)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._monotonic() - entry.stored_at > self._ttl:
            self._entries.pop(key, None)
            return None
        return entry.record.clone()

    def put(self, record: AccountRecord) -> None:
        self._entries[record.key] = _CacheEntry(record=record.clone(), stored_at=self._monotonic())

    def invalidate(self, user_id: str, community_id: str) -> None:
        self._entries.pop((user_id, community_id), None)

    def clear(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        now = self._monotonic()
        stale = [key for key, entry in self._entries.items() if now - entry.stored_at > self._ttl]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug("Cleaned %s expired account cache entries", len(stale))
        return len(stale)

    def stats(self) -> dict[str, float]:
        return {"size": len(self._entries), "ttl": self._ttl}

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._entries.clear()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_seconds)
            self.sweep()
