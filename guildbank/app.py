"""Top level application object wiring the ledger and coordination layers."""

from __future__ import annotations

import logging
from typing import Any

from .config import GuildBankConfig
from .domain.bank import BankService
from .domain.events import EventBus
from .domain.ledger import LedgerService
from .domain.transactions import Clock, system_clock
from .cache import AccountCache
from .coordination import InMemoryKeyValueStore, KeyValueStore, LockService, RedisKeyValueStore, SessionStore, StartupLock
from .storage.base import AccountDefaults, AccountStore
from .storage.memory import InMemoryAccountStore
from .storage.sqlalchemy import SQLAlchemyDatabase

logger = logging.getLogger(__name__)


class LedgerApp:
    """Central dependency container used by command handlers."""

    def __init__(
        self,
        config: GuildBankConfig | None = None,
        *,
        account_store: AccountStore | None = None,
        key_value_store: KeyValueStore | None = None,
        event_bus: EventBus | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or GuildBankConfig()
        self.event_bus = event_bus or EventBus()
        self.clock = clock or system_clock
        self.cache = AccountCache(
            ttl_seconds=self.config.economy.cache_ttl_seconds,
            sweep_seconds=self.config.economy.cache_sweep_seconds,
        )

        self._database: SQLAlchemyDatabase | None = None
        self.account_store = self._wire_storage(account_store)
        self.key_value_store = self._wire_coordination(key_value_store)

        services = dict(cache=self.cache, event_bus=self.event_bus, clock=self.clock)
        self.ledger = LedgerService(self.account_store, self.config, **services)
        self.bank = BankService(self.account_store, self.config, **services)
        self.locks = LockService(self.key_value_store, self.config.coordination, clock=self.clock)
        self.sessions = SessionStore(self.key_value_store, self.config.coordination, clock=self.clock)

    def _account_defaults(self) -> AccountDefaults:
        return AccountDefaults(
            wallet=self.config.economy.default_balance,
            bank_max=self.config.bank.default_max,
        )

    def _wire_storage(self, account_store: AccountStore | None) -> AccountStore:
        if account_store:
            return account_store

        backend = self.config.storage.backend
        if backend == "memory":
            return InMemoryAccountStore(self._account_defaults())
        if backend == "sqlalchemy":
            dsn = self.config.storage.resolve_dsn()
            if not dsn:
                raise ValueError("SQLAlchemy backend requires a DSN")
            storage = SQLAlchemyDatabase(dsn, echo=self.config.storage.echo_sql)
            self._database = storage
            return storage.account_store(self._account_defaults())
        raise ValueError(f"Unsupported storage backend {backend}")

    def _wire_coordination(self, key_value_store: KeyValueStore | None) -> KeyValueStore:
        if key_value_store:
            return key_value_store

        backend = self.config.coordination.backend
        if backend == "memory":
            return InMemoryKeyValueStore()
        if backend == "redis":
            return RedisKeyValueStore(self.config.coordination.redis_url)
        raise ValueError(f"Unsupported coordination backend {backend}")

    def startup_lock(self) -> StartupLock:
        coordination = self.config.coordination
        return StartupLock(
            self.locks,
            key=coordination.startup_lock_key,
            ttl_seconds=coordination.startup_lock_ttl_seconds,
            poll_seconds=coordination.startup_lock_poll_seconds,
        )

    def snapshot(self) -> dict[str, Any]:
        """Plain-dict view of the active configuration."""
        return {
            "storage": self.config.storage.backend,
            "coordination": self.config.coordination.backend,
            "loan_options": [option.option_id for option in self.config.loans.options],
            "bank_default_max": self.config.bank.default_max,
            "cache": self.cache.stats(),
        }

    async def init_backend(self) -> None:
        """Create the ledger tables when running against SQL."""
        if self._database:
            await self._database.init_models()

    async def start(self) -> None:
        await self.init_backend()
        self.cache.start()
        logger.info(
            "Ledger started (storage=%s, coordination=%s)",
            self.config.storage.backend,
            self.config.coordination.backend,
        )

    async def health(self) -> dict[str, bool]:
        return {
            "storage": await self.account_store.ping(),
            "coordination": await self.key_value_store.ping(),
        }

    async def close(self) -> None:
        await self.cache.stop()
        await self.key_value_store.close()
        await self.account_store.close()
        logger.info("Ledger closed")
