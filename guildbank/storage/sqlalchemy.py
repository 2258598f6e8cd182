"""SQLAlchemy storage backend for guildbank."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Sequence

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    case,
    func,
    select,
    text,
)
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..domain.exceptions import TransientStoreError
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

logger = logging.getLogger(__name__)

# SQLite only auto-increments INTEGER PRIMARY KEY columns.
_HistoryId = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass


class AccountTable(Base):
    __tablename__ = "guildbank_accounts"
    __table_args__ = (
        CheckConstraint("wallet >= 0", name="chk_guildbank_wallet_non_negative"),
        Index("ix_guildbank_accounts_community_wallet", "community_id", "wallet"),
    )

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    community_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    wallet: Mapped[int] = mapped_column(BigInteger, default=0)
    last_grow_at: Mapped[int] = mapped_column(BigInteger, default=0)
    data: Mapped[dict] = mapped_column(JSON, default=dict)


class HistoryTable(Base):
    __tablename__ = "guildbank_history"
    __table_args__ = (
        Index("ix_guildbank_history_account", "community_id", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(_HistoryId, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64))
    community_id: Mapped[str] = mapped_column(String(64))
    type: Mapped[str] = mapped_column(String(64))
    item_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    amount: Mapped[int] = mapped_column(BigInteger, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError):
        return bool(exc.connection_invalidated)
    return isinstance(exc, (ConnectionError, TimeoutError))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_entry(row: HistoryTable) -> HistoryEntry:
    return HistoryEntry(
        user_id=row.user_id,
        community_id=row.community_id,
        type=row.type,
        amount=int(row.amount),
        created_at=_as_utc(row.created_at),
        item_id=row.item_id,
    )


class SQLAlchemyDatabase:
    """Engine and session factory shared by the SQLAlchemy stores."""

    def __init__(self, dsn: str, *, echo: bool = False) -> None:
        self._engine = create_async_engine(dsn, echo=echo, pool_pre_ping=True)
        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def init_models(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    def account_store(self, defaults: AccountDefaults | None = None) -> "AsyncSQLAlchemyAccountStore":
        return AsyncSQLAlchemyAccountStore(
            self._session_factory,
            dialect=self._engine.dialect.name,
            defaults=defaults,
            engine=self._engine,
        )

    async def dispose(self) -> None:
        await self._engine.dispose()


class AsyncSQLAlchemyAccountTransaction(AccountTransaction):
    def __init__(self, session: AsyncSession, *, dialect: str, defaults: AccountDefaults) -> None:
        self._session = session
        self._dialect = dialect
        self._defaults = defaults
        self._rows: dict[tuple[str, str], AccountTable] = {}

    async def lock(self, user_id: str, community_id: str) -> AccountRecord:
        key = (user_id, community_id)
        row = self._rows.get(key)
        if row is None:
            await self._insert_if_absent(user_id, community_id)
            stmt = (
                select(AccountTable)
                .where(AccountTable.user_id == user_id, AccountTable.community_id == community_id)
                .with_for_update()
            )
            row = (await self._session.execute(stmt)).scalar_one()
            self._rows[key] = row
        record = AccountRecord(
            user_id=row.user_id,
            community_id=row.community_id,
            wallet=int(row.wallet),
            last_grow_at=int(row.last_grow_at or 0),
        )
        record.apply_extension(row.data, bank_floor=self._defaults.bank_max)
        return record

    async def save(self, record: AccountRecord) -> None:
        row = self._rows.get(record.key)
        if row is None:
            raise RuntimeError(f"Account {record.key} was saved without being locked")
        row.wallet = record.wallet
        row.last_grow_at = record.last_grow_at
        row.data = record.extension()
        await self._session.flush()

    async def add_history(self, entry: HistoryEntry) -> None:
        self._session.add(
            HistoryTable(
                user_id=entry.user_id,
                community_id=entry.community_id,
                type=entry.type,
                item_id=entry.item_id,
                amount=entry.amount,
                created_at=entry.created_at,
            )
        )

    async def _insert_if_absent(self, user_id: str, community_id: str) -> None:
        values = {
            "user_id": user_id,
            "community_id": community_id,
            "wallet": self._defaults.wallet,
            "last_grow_at": 0,
            "data": {},
        }
        if self._dialect in {"postgresql", "sqlite"}:
            if self._dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            else:
                from sqlalchemy.dialects.sqlite import insert
            stmt = insert(AccountTable).values(**values).on_conflict_do_nothing(
                index_elements=["user_id", "community_id"]
            )
            await self._session.execute(stmt)
            return
        existing = await self._session.get(AccountTable, (user_id, community_id))
        if existing is None:
            self._session.add(AccountTable(**values))
            await self._session.flush()


class AsyncSQLAlchemyAccountStore(AccountStore):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        dialect: str,
        defaults: AccountDefaults | None = None,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._dialect = dialect
        self._defaults = defaults or AccountDefaults()
        self._engine = engine

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSQLAlchemyAccountTransaction]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield AsyncSQLAlchemyAccountTransaction(
                        session, dialect=self._dialect, defaults=self._defaults
                    )
        except Exception as exc:
            if is_transient_error(exc):
                raise TransientStoreError(f"Relational store unavailable: {exc}") from exc
            raise

    async def top_accounts(
        self, community_id: str, limit: int = 10, offset: int = 0
    ) -> Sequence[AccountRecord]:
        async with self._session_factory() as session:
            stmt = (
                select(AccountTable)
                .where(AccountTable.community_id == community_id)
                .order_by(AccountTable.wallet.desc(), AccountTable.last_grow_at.desc())
                .limit(limit)
                .offset(offset)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [self._to_record(row) for row in rows]

    async def rank(self, user_id: str, community_id: str) -> int:
        async with self._session_factory() as session:
            own = (
                select(func.coalesce(func.max(AccountTable.wallet), 0))
                .where(AccountTable.user_id == user_id, AccountTable.community_id == community_id)
                .scalar_subquery()
            )
            stmt = select(func.count()).select_from(AccountTable).where(
                AccountTable.community_id == community_id, AccountTable.wallet > own
            )
            richer = (await session.execute(stmt)).scalar_one()
            return int(richer) + 1

    async def recent_history(
        self, user_id: str, community_id: str, limit: int = 10
    ) -> Sequence[HistoryEntry]:
        async with self._session_factory() as session:
            stmt = (
                select(HistoryTable)
                .where(HistoryTable.user_id == user_id, HistoryTable.community_id == community_id)
                .order_by(HistoryTable.created_at.desc(), HistoryTable.id.desc())
                .limit(limit)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_entry(row) for row in rows]

    async def search_history(self, query: HistoryQuery) -> Sequence[HistoryEntry]:
        stmt = select(HistoryTable)
        if query.user_id is not None:
            stmt = stmt.where(HistoryTable.user_id == query.user_id)
        if query.community_id is not None:
            stmt = stmt.where(HistoryTable.community_id == query.community_id)
        if query.type is not None:
            stmt = stmt.where(HistoryTable.type == query.type)
        if query.item_id is not None:
            stmt = stmt.where(HistoryTable.item_id == query.item_id)
        if query.created_from is not None:
            stmt = stmt.where(HistoryTable.created_at >= _as_utc(query.created_from))
        if query.created_to is not None:
            stmt = stmt.where(HistoryTable.created_at <= _as_utc(query.created_to))
        stmt = stmt.order_by(HistoryTable.created_at.desc(), HistoryTable.id.desc()).limit(query.limit)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_entry(row) for row in rows]

    async def history_stats(
        self,
        community_id: str,
        user_id: str | None = None,
        since: datetime | None = None,
    ) -> HistoryStats:
        conditions = [HistoryTable.community_id == community_id]
        if user_id is not None:
            conditions.append(HistoryTable.user_id == user_id)
        if since is not None:
            conditions.append(HistoryTable.created_at >= _as_utc(since))

        amount = HistoryTable.amount
        totals = (
            select(
                func.count(),
                func.coalesce(func.sum(case((amount > 0, amount), else_=0)), 0),
                func.coalesce(func.sum(case((amount < 0, amount), else_=0)), 0),
                func.coalesce(func.sum(func.abs(amount)), 0),
                func.count(HistoryTable.item_id),
                func.count(func.distinct(HistoryTable.user_id)),
            )
            .select_from(HistoryTable)
            .where(*conditions)
        )
        by_type = (
            select(HistoryTable.type, func.count())
            .where(*conditions)
            .group_by(HistoryTable.type)
        )
        async with self._session_factory() as session:
            entries, gained, lost, volume, item_uses, accounts = (await session.execute(totals)).one()
            type_counts = {
                entry_type: int(count) for entry_type, count in (await session.execute(by_type)).all()
            }
        return HistoryStats(
            entries=int(entries),
            total_gained=int(gained),
            total_lost=int(lost),
            total_volume=int(volume),
            item_uses=int(item_uses),
            accounts=int(accounts),
            type_counts=type_counts,
        )

    async def community_stats(self, community_id: str, rich_threshold: int) -> CommunityStats:
        wallet = AccountTable.wallet
        stmt = (
            select(
                func.count(),
                func.coalesce(func.sum(wallet), 0),
                func.coalesce(func.max(wallet), 0),
                func.coalesce(func.min(wallet), 0),
                func.coalesce(func.sum(case((wallet > rich_threshold, 1), else_=0)), 0),
            )
            .select_from(AccountTable)
            .where(AccountTable.community_id == community_id)
        )
        async with self._session_factory() as session:
            total, balance, highest, lowest, rich = (await session.execute(stmt)).one()
        return CommunityStats(
            total_accounts=int(total),
            total_balance=int(balance),
            max_balance=int(highest),
            min_balance=int(lowest),
            rich_accounts=int(rich),
        )

    async def ping(self) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as exc:
            if not is_transient_error(exc):
                raise
            logger.warning("Relational store ping failed: %s", exc)
            return False

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    def _to_record(self, row: AccountTable) -> AccountRecord:
        record = AccountRecord(
            user_id=row.user_id,
            community_id=row.community_id,
            wallet=int(row.wallet),
            last_grow_at=int(row.last_grow_at or 0),
        )
        record.apply_extension(row.data, bank_floor=self._defaults.bank_max)
        return record
