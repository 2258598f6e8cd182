"""Storage abstractions used by the guildbank services."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, AsyncContextManager, Mapping, Protocol, Sequence

RESERVED_EXTENSION_KEYS = frozenset({"bank", "loan"})


class LoanStatus(str, Enum):
    ACTIVE = "active"
    DELINQUENT = "delinquent"


@dataclass(slots=True)
class LoanRecord:
    option_id: str
    status: LoanStatus
    principal: int
    debt: int
    interest_rate_bps: int
    overdue_penalty_bps: int
    due_at: int
    taken_at: int
    defaulted_at: int | None = None
    near_due_notified_at: int | None = None
    overdue_notified_at: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "option_id": self.option_id,
            "status": self.status.value,
            "principal": self.principal,
            "debt": self.debt,
            "interest_rate_bps": self.interest_rate_bps,
            "overdue_penalty_bps": self.overdue_penalty_bps,
            "due_at": self.due_at,
            "taken_at": self.taken_at,
            "defaulted_at": self.defaulted_at,
            "near_due_notified_at": self.near_due_notified_at,
            "overdue_notified_at": self.overdue_notified_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LoanRecord":
        def optional(name: str) -> int | None:
            value = data.get(name)
            return int(value) if value is not None else None

        return cls(
            option_id=str(data.get("option_id", "")),
            status=LoanStatus(data.get("status", LoanStatus.ACTIVE.value)),
            principal=int(data.get("principal", 0)),
            debt=int(data.get("debt", 0)),
            interest_rate_bps=int(data.get("interest_rate_bps", 0)),
            overdue_penalty_bps=int(data.get("overdue_penalty_bps", 0)),
            due_at=int(data.get("due_at", 0)),
            taken_at=int(data.get("taken_at", 0)),
            defaulted_at=optional("defaulted_at"),
            near_due_notified_at=optional("near_due_notified_at"),
            overdue_notified_at=optional("overdue_notified_at"),
        )


@dataclass(slots=True)
class AccountRecord:
    user_id: str
    community_id: str
    wallet: int = 0
    bank_balance: int = 0
    bank_max: int = 0
    loan: LoanRecord | None = None
    last_grow_at: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str]:
        return (self.user_id, self.community_id)

    def clone(self) -> "AccountRecord":
        return replace(
            self,
            loan=replace(self.loan) if self.loan else None,
            extra=dict(self.extra),
        )

    def extension(self) -> dict[str, Any]:
        """Serialize the JSON side column: typed bank/loan plus the open map."""
        data = {k: v for k, v in self.extra.items() if k not in RESERVED_EXTENSION_KEYS}
        data["bank"] = {"balance": self.bank_balance, "max": self.bank_max}
        if self.loan is not None:
            data["loan"] = self.loan.to_dict()
        return data

    def apply_extension(self, data: Mapping[str, Any] | None, *, bank_floor: int) -> None:
        data = dict(data or {})
        bank = data.pop("bank", None) or {}
        loan = data.pop("loan", None)
        self.bank_balance = max(0, int(bank.get("balance", 0)))
        self.bank_max = max(bank_floor, int(bank.get("max", bank_floor)))
        self.loan = LoanRecord.from_dict(loan) if loan else None
        self.extra = data


@dataclass(slots=True)
class AccountDefaults:
    """Values used when an account row is created implicitly."""

    wallet: int = 0
    bank_max: int = 0


@dataclass(slots=True)
class HistoryEntry:
    user_id: str
    community_id: str
    type: str
    amount: int
    created_at: datetime
    item_id: int | None = None


@dataclass(slots=True)
class CommunityStats:
    """Wallet aggregates for one community."""

    total_accounts: int = 0
    total_balance: int = 0
    max_balance: int = 0
    min_balance: int = 0
    rich_accounts: int = 0

    @property
    def average_balance(self) -> float:
        return self.total_balance / self.total_accounts if self.total_accounts else 0.0


@dataclass(slots=True)
class HistoryStats:
    entries: int = 0
    total_gained: int = 0
    total_lost: int = 0
    total_volume: int = 0
    item_uses: int = 0
    accounts: int = 0
    type_counts: dict[str, int] = field(default_factory=dict)

    def count(self, entry_type: str) -> int:
        return self.type_counts.get(entry_type, 0)


@dataclass(slots=True)
class HistoryQuery:
    """Filters for :meth:`AccountStore.search_history`; unset fields match anything."""

    user_id: str | None = None
    community_id: str | None = None
    type: str | None = None
    item_id: int | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    limit: int = 50

    def matches(self, entry: HistoryEntry) -> bool:
        if self.user_id is not None and entry.user_id != self.user_id:
            return False
        if self.community_id is not None and entry.community_id != self.community_id:
            return False
        if self.type is not None and entry.type != self.type:
            return False
        if self.item_id is not None and entry.item_id != self.item_id:
            return False
        if self.created_from is not None and entry.created_at < self.created_from:
            return False
        if self.created_to is not None and entry.created_at > self.created_to:
            return False
        return True


class AccountTransaction(Protocol):
    """Single unit of work holding row locks until it ends."""

    async def lock(self, user_id: str, community_id: str) -> AccountRecord:
        ...

    async def save(self, record: AccountRecord) -> None:
        ...

    async def add_history(self, entry: HistoryEntry) -> None:
        ...


class AccountStore(Protocol):
    def transaction(self) -> AsyncContextManager[AccountTransaction]:
        ...

    async def top_accounts(
        self, community_id: str, limit: int = 10, offset: int = 0
    ) -> Sequence[AccountRecord]:
        ...

    async def rank(self, user_id: str, community_id: str) -> int:
        ...

    async def recent_history(
        self, user_id: str, community_id: str, limit: int = 10
    ) -> Sequence[HistoryEntry]:
        ...

    async def search_history(self, query: HistoryQuery) -> Sequence[HistoryEntry]:
        """Newest first, at most ``query.limit`` entries."""
        ...

    async def history_stats(
        self,
        community_id: str,
        user_id: str | None = None,
        since: datetime | None = None,
    ) -> HistoryStats:
        ...

    async def community_stats(self, community_id: str, rich_threshold: int) -> CommunityStats:
        ...

    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        ...
