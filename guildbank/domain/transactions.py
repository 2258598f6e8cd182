"""Single-transaction scaffolding shared by the ledger services."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

from ..cache import AccountCache
from ..config import GuildBankConfig
from ..retry import retry_transient
from ..storage.base import AccountRecord, AccountStore, AccountTransaction, HistoryEntry
from .events import LOAN_DELINQUENT, LOAN_PAID, EventBus
from .loans import LedgerEvent, normalize

T = TypeVar("T")
Clock = Callable[[], int]


def system_clock() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


class TransactionScope:
    """State for one ledger transaction.

    ``account`` locks, loads and normalizes a row. Services mutate copies and
    hand them back through ``update``; nothing reaches the store until the
    operation returns without raising.
    """

    def __init__(self, tx: AccountTransaction, now_ms: int) -> None:
        self._tx = tx
        self.now_ms = now_ms
        self.created_at = datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc)
        self._loaded: dict[tuple[str, str], AccountRecord] = {}
        self._current: dict[tuple[str, str], AccountRecord] = {}
        self._history: list[HistoryEntry] = []
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def account(self, user_id: str, community_id: str) -> AccountRecord:
        key = (user_id, community_id)
        if key in self._current:
            return self._current[key].clone()
        loaded = await self._tx.lock(user_id, community_id)
        self._loaded[key] = loaded
        normalized, events = normalize(loaded, self.now_ms)
        self._current[key] = normalized
        self._record_events(normalized, events)
        return normalized.clone()

    def update(self, record: AccountRecord) -> None:
        if record.key not in self._current:
            raise RuntimeError(f"Account {record.key} was not loaded in this transaction")
        self._current[record.key] = record.clone()

    def record(
        self, account: AccountRecord, entry_type: str, amount: int, *, item_id: int | None = None
    ) -> None:
        self._history.append(
            HistoryEntry(
                user_id=account.user_id,
                community_id=account.community_id,
                type=entry_type,
                amount=amount,
                created_at=self.created_at,
                item_id=item_id,
            )
        )

    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        self.events.append((event_name, payload))

    def accounts(self) -> list[AccountRecord]:
        return [record.clone() for record in self._current.values()]

    async def flush(self) -> None:
        for key, record in self._current.items():
            if record != self._loaded[key]:
                await self._tx.save(record)
        for entry in self._history:
            await self._tx.add_history(entry)

    def _record_events(self, account: AccountRecord, events: list[LedgerEvent]) -> None:
        for event in events:
            self.record(account, event.type, event.amount)
            payload = {
                "user_id": account.user_id,
                "community_id": account.community_id,
                "amount": event.amount,
            }
            if event.type == "loan-delinquent":
                self.publish(LOAN_DELINQUENT, payload)
            elif event.type == "loan-paid-off":
                self.publish(LOAN_PAID, payload)


class LedgerBase:
    """Runs operations inside retried, normalized account transactions."""

    def __init__(
        self,
        store: AccountStore,
        config: GuildBankConfig,
        *,
        cache: AccountCache | None = None,
        event_bus: EventBus | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._config = config
        self._cache = cache or AccountCache(
            ttl_seconds=config.economy.cache_ttl_seconds,
            sweep_seconds=config.economy.cache_sweep_seconds,
        )
        self._events = event_bus or EventBus()
        self._clock = clock or system_clock

    @property
    def cache(self) -> AccountCache:
        return self._cache

    def now_ms(self) -> int:
        return self._clock()

    async def _transact(self, label: str, operation: Callable[[TransactionScope], Awaitable[T]]) -> T:
        async def attempt() -> tuple[T, TransactionScope]:
            async with self._store.transaction() as tx:
                scope = TransactionScope(tx, self._clock())
                result = await operation(scope)
                await scope.flush()
            return result, scope

        result, scope = await retry_transient(label, attempt, self._config.retry)
        for record in scope.accounts():
            self._cache.put(record)
        for event_name, payload in scope.events:
            await self._events.publish(event_name, payload)
        return result
