"""In-memory storage backend for guildbank."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, DefaultDict, Deque, Sequence

from .base import (
    AccountDefaults,
    AccountRecord,
    AccountStore,
    AccountTransaction,
    CommunityStats,
    HistoryEntry,
    HistoryQuery,
    HistoryStats,
)


class InMemoryAccountTransaction(AccountTransaction):
    """Stages copies of locked records; the store applies them on commit."""

    def __init__(self, store: "InMemoryAccountStore") -> None:
        self._store = store
        self._held: list[asyncio.Lock] = []
        self._locked: dict[tuple[str, str], AccountRecord] = {}
        self.staged: dict[tuple[str, str], AccountRecord] = {}
        self.history: list[HistoryEntry] = []

    async def lock(self, user_id: str, community_id: str) -> AccountRecord:
        key = (user_id, community_id)
        if key in self._locked:
            return self._locked[key].clone()
        row_lock = self._store._row_locks[key]
        await row_lock.acquire()
        self._held.append(row_lock)
        current = self._store._records.get(key)
        if current is None:
            current = self._store._new_record(user_id, community_id)
            self.staged[key] = current
        self._locked[key] = current
        return current.clone()

    async def save(self, record: AccountRecord) -> None:
        if record.key not in self._locked:
            raise RuntimeError(f"Account {record.key} was saved without being locked")
        self.staged[record.key] = record.clone()

    async def add_history(self, entry: HistoryEntry) -> None:
        self.history.append(entry)

    def release(self) -> None:
        while self._held:
            self._held.pop().release()


class InMemoryAccountStore(AccountStore):
    def __init__(self, defaults: AccountDefaults | None = None, *, history_maxlen: int = 5000) -> None:
        self._defaults = defaults or AccountDefaults()
        self._records: dict[tuple[str, str], AccountRecord] = {}
        self._row_locks: DefaultDict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)
        self._history: Deque[HistoryEntry] = deque(maxlen=history_maxlen)

    def _new_record(self, user_id: str, community_id: str) -> AccountRecord:
        return AccountRecord(
            user_id=user_id,
            community_id=community_id,
            wallet=self._defaults.wallet,
            bank_max=self._defaults.bank_max,
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryAccountTransaction]:
        tx = InMemoryAccountTransaction(self)
        try:
            yield tx
            for key, record in tx.staged.items():
                self._records[key] = record
            self._history.extend(tx.history)
        finally:
            tx.release()

    async def top_accounts(
        self, community_id: str, limit: int = 10, offset: int = 0
    ) -> Sequence[AccountRecord]:
        rows = [r for r in self._records.values() if r.community_id == community_id]
        rows.sort(key=lambda r: (r.wallet, r.last_grow_at), reverse=True)
        return [r.clone() for r in rows[offset : offset + limit]]

    async def rank(self, user_id: str, community_id: str) -> int:
        own = self._records.get((user_id, community_id))
        wallet = own.wallet if own else 0
        richer = sum(
            1 for r in self._records.values() if r.community_id == community_id and r.wallet > wallet
        )
        return richer + 1

    async def recent_history(
        self, user_id: str, community_id: str, limit: int = 10
    ) -> Sequence[HistoryEntry]:
        filtered = [
            entry
            for entry in reversed(self._history)
            if entry.user_id == user_id and entry.community_id == community_id
        ]
        return filtered[:limit]

    async def search_history(self, query: HistoryQuery) -> Sequence[HistoryEntry]:
        matched = [entry for entry in reversed(self._history) if query.matches(entry)]
        return matched[: query.limit]

    async def history_stats(
        self,
        community_id: str,
        user_id: str | None = None,
        since: datetime | None = None,
    ) -> HistoryStats:
        stats = HistoryStats()
        users: set[str] = set()
        for entry in self._history:
            if entry.community_id != community_id:
                continue
            if user_id is not None and entry.user_id != user_id:
                continue
            if since is not None and entry.created_at < since:
                continue
            stats.entries += 1
            if entry.amount > 0:
                stats.total_gained += entry.amount
            else:
                stats.total_lost += entry.amount
            stats.total_volume += abs(entry.amount)
            if entry.item_id is not None:
                stats.item_uses += 1
            stats.type_counts[entry.type] = stats.type_counts.get(entry.type, 0) + 1
            users.add(entry.user_id)
        stats.accounts = len(users)
        return stats

    async def community_stats(self, community_id: str, rich_threshold: int) -> CommunityStats:
        wallets = [r.wallet for r in self._records.values() if r.community_id == community_id]
        if not wallets:
            return CommunityStats()
        return CommunityStats(
            total_accounts=len(wallets),
            total_balance=sum(wallets),
            max_balance=max(wallets),
            min_balance=min(wallets),
            rich_accounts=sum(1 for wallet in wallets if wallet > rich_threshold),
        )

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._row_locks.clear()

    def dump_history(self) -> list[HistoryEntry]:
        return list(self._history)
