"""Account balances and the loan desk."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Sequence

from ..config import LoanOption
from ..storage.base import (
    RESERVED_EXTENSION_KEYS,
    AccountRecord,
    CommunityStats,
    HistoryEntry,
    HistoryQuery,
    HistoryStats,
    LoanRecord,
    LoanStatus,
)
from .amounts import ensure_range, parse_positive, to_amount
from .events import BALANCE_UPDATED, LOAN_PAID, LOAN_TAKEN
from .exceptions import (
    LoanAlreadyActive,
    LoanOptionInvalid,
    MinimumBalanceViolation,
    NoActiveLoan,
    NoFundsAvailable,
)
from .loans import (
    MS_PER_DAY,
    MS_PER_HOUR,
    LoanReminder,
    apply_payment,
    collect,
    collection_events,
    loan_snapshot,
    open_loan,
    pending_reminders,
)
from .transactions import LedgerBase, TransactionScope

logger = logging.getLogger(__name__)

MAX_LEADERBOARD_LIMIT = 100
MAX_HISTORY_LIMIT = 500
LAST_DAILY_KEY = "last_daily_at"


@dataclass(slots=True)
class LoanResult:
    loan: LoanRecord
    wallet_balance: int


@dataclass(slots=True)
class LoanPayment:
    paid: int
    loan: LoanRecord | None
    wallet_balance: int
    bank_balance: int

    @property
    def has_loan(self) -> bool:
        return self.loan is not None


@dataclass(slots=True)
class LoanState:
    loan: LoanRecord | None
    wallet_balance: int
    bank_balance: int

    @property
    def has_loan(self) -> bool:
        return self.loan is not None

    @property
    def total_balance(self) -> int:
        return self.wallet_balance + self.bank_balance


@dataclass(slots=True)
class GrowStatus:
    can_grow: bool
    last_grow_at: int
    hours_since_last_grow: float
    hours_until_next: float


@dataclass(slots=True)
class DailyStatus:
    can_claim: bool
    last_claim_at: int
    seconds_until_next: float


class LedgerService(LedgerBase):
    """Wallet balance operations and the loan lifecycle."""

    async def get_account(self, user_id: str, community_id: str) -> AccountRecord:
        """Load the account, creating and normalizing it as a side effect."""

        async def op(scope: TransactionScope) -> AccountRecord:
            return await scope.account(user_id, community_id)

        return await self._transact("get_account", op)

    async def get_cached_account(self, user_id: str, community_id: str) -> AccountRecord:
        cached = self._cache.get(user_id, community_id)
        if cached is not None:
            return cached
        return await self.get_account(user_id, community_id)

    async def get_balance(self, user_id: str, community_id: str) -> int:
        account = await self.get_account(user_id, community_id)
        return account.wallet

    async def update_balance(
        self,
        user_id: str,
        community_id: str,
        delta: Any,
        reason: str = "update",
        *,
        item_id: int | None = None,
    ) -> int:
        """Apply ``delta`` to the wallet and return the new wallet balance.

        While the loan is delinquent, gains pay the debt first and losses are
        added to the debt instead of the wallet.
        """
        amount = to_amount(delta, "Amount")
        minimum = self._config.economy.min_balance

        async def op(scope: TransactionScope) -> int:
            account = await scope.account(user_id, community_id)
            loan = account.loan
            if loan is not None and loan.status is LoanStatus.DELINQUENT:
                updated = self._apply_delinquent_delta(scope, account, loan, amount, reason, item_id)
            else:
                proposed = account.wallet + amount
                if proposed < minimum:
                    raise MinimumBalanceViolation(account.wallet, amount, minimum)
                updated = account.clone()
                updated.wallet = ensure_range(proposed, "Wallet balance")
                scope.record(updated, reason, amount, item_id=item_id)
            scope.update(updated)
            scope.publish(
                BALANCE_UPDATED,
                {
                    "user_id": user_id,
                    "community_id": community_id,
                    "amount": amount,
                    "reason": reason,
                    "balance": updated.wallet,
                },
            )
            return updated.wallet

        balance = await self._transact("update_balance", op)
        logger.info(
            "Balance update: %s:%s %+d = %s (%s)", user_id, community_id, amount, balance, reason
        )
        return balance

    def _apply_delinquent_delta(
        self,
        scope: TransactionScope,
        account: AccountRecord,
        loan: LoanRecord,
        amount: int,
        reason: str,
        item_id: int | None,
    ) -> AccountRecord:
        scope.record(account, reason, amount, item_id=item_id)
        if amount > 0:
            repaid = min(amount, loan.debt)
            updated = apply_payment(account, repaid)
            updated.wallet = ensure_range(updated.wallet + amount - repaid, "Wallet balance")
            scope.record(updated, "loan-auto-collect", -repaid)
            if updated.loan is None:
                scope.record(updated, "loan-paid-off", 0)
                scope.publish(
                    LOAN_PAID,
                    {"user_id": account.user_id, "community_id": account.community_id, "amount": repaid},
                )
            return updated
        if amount < 0:
            updated = account.clone()
            updated.loan = replace(loan, debt=ensure_range(loan.debt - amount, "Loan debt"))
            scope.record(updated, "loan-debt-added", -amount)
            return updated
        return account

    async def set_balance(self, user_id: str, community_id: str, amount: Any) -> int:
        """Overwrite the wallet. Administrative paths only."""
        requested = to_amount(amount, "Balance")
        final = max(self._config.economy.min_balance, requested)

        async def op(scope: TransactionScope) -> int:
            account = await scope.account(user_id, community_id)
            updated = account.clone()
            updated.wallet = final
            scope.record(updated, "admin-set-balance", final - account.wallet)
            scope.update(updated)
            return final

        balance = await self._transact("set_balance", op)
        logger.info("Set balance for %s:%s to %s", user_id, community_id, balance)
        return balance

    # Loans

    def get_loan_options(self) -> list[LoanOption]:
        return list(self._config.loans.options)

    async def take_loan(self, user_id: str, community_id: str, option_id: str) -> LoanResult:
        option = self._config.loans.find(option_id)
        if option is None:
            raise LoanOptionInvalid(f"Unknown loan option '{option_id}'")

        async def op(scope: TransactionScope) -> LoanResult:
            account = await scope.account(user_id, community_id)
            if account.loan is not None:
                raise LoanAlreadyActive(
                    f"An {account.loan.status.value} loan must be repaid before taking another"
                )
            updated, loan = open_loan(
                account,
                option,
                scope.now_ms,
                overdue_penalty_bps=self._config.loans.overdue_penalty_bps,
            )
            scope.record(updated, "loan-take", option.amount)
            scope.update(updated)
            scope.publish(
                LOAN_TAKEN,
                {
                    "user_id": user_id,
                    "community_id": community_id,
                    "option_id": option.option_id,
                    "debt": loan.debt,
                    "due_at": loan.due_at,
                },
            )
            return LoanResult(loan=replace(loan), wallet_balance=updated.wallet)

        result = await self._transact("take_loan", op)
        logger.info(
            "Loan taken: %s:%s option=%s debt=%s", user_id, community_id, option.option_id, result.loan.debt
        )
        return result

    async def pay_loan(self, user_id: str, community_id: str, amount: Any = None) -> LoanPayment:
        """Pay toward the loan from wallet, then bank. ``None`` pays all that is affordable."""
        requested = parse_positive(amount, "Payment amount") if amount is not None else None

        async def op(scope: TransactionScope) -> LoanPayment:
            account = await scope.account(user_id, community_id)
            if account.loan is None:
                raise NoActiveLoan("There is no loan to pay")
            if account.wallet <= 0 and account.bank_balance <= 0:
                raise NoFundsAvailable("Wallet and bank are both empty")
            debt = account.loan.debt
            target = min(requested, debt) if requested is not None else debt
            updated, collection = collect(account, target)
            for event in collection_events(collection, prefix="loan-payment"):
                scope.record(updated, event.type, event.amount)
            updated = apply_payment(updated, collection.total)
            if updated.loan is None:
                scope.record(updated, "loan-paid-off", 0)
                scope.publish(
                    LOAN_PAID,
                    {"user_id": user_id, "community_id": community_id, "amount": collection.total},
                )
            scope.update(updated)
            return LoanPayment(
                paid=collection.total,
                loan=loan_snapshot(updated.loan),
                wallet_balance=updated.wallet,
                bank_balance=updated.bank_balance,
            )

        payment = await self._transact("pay_loan", op)
        logger.info("Loan payment: %s:%s paid=%s", user_id, community_id, payment.paid)
        return payment

    async def get_loan_state(self, user_id: str, community_id: str) -> LoanState:
        account = await self.get_account(user_id, community_id)
        return LoanState(
            loan=loan_snapshot(account.loan),
            wallet_balance=account.wallet,
            bank_balance=account.bank_balance,
        )

    async def consume_loan_reminder_events(
        self, user_id: str, community_id: str
    ) -> list[LoanReminder]:
        """Return near-due and overdue reminders, each at most once per loan."""

        async def op(scope: TransactionScope) -> list[LoanReminder]:
            account = await scope.account(user_id, community_id)
            updated, reminders = pending_reminders(account, scope.now_ms, self._config.loans)
            if reminders:
                scope.update(updated)
            return reminders

        return await self._transact("consume_loan_reminder_events", op)

    # Grow timer

    async def can_grow(self, user_id: str, community_id: str) -> GrowStatus:
        account = await self.get_account(user_id, community_id)
        interval = self._config.economy.grow_interval_hours
        hours_since = (self.now_ms() - account.last_grow_at) / MS_PER_HOUR
        return GrowStatus(
            can_grow=hours_since >= interval,
            last_grow_at=account.last_grow_at,
            hours_since_last_grow=hours_since,
            hours_until_next=max(0.0, interval - hours_since),
        )

    async def mark_grown(self, user_id: str, community_id: str, at_ms: int | None = None) -> int:
        async def op(scope: TransactionScope) -> int:
            account = await scope.account(user_id, community_id)
            updated = account.clone()
            updated.last_grow_at = at_ms if at_ms is not None else scope.now_ms
            scope.update(updated)
            return updated.last_grow_at

        return await self._transact("mark_grown", op)

    # Daily claim timer, kept under an extension key

    async def get_last_daily(self, user_id: str, community_id: str) -> int:
        """Epoch ms of the last daily claim, 0 when never claimed."""
        account = await self.get_account(user_id, community_id)
        return int(account.extra.get(LAST_DAILY_KEY) or 0)

    async def can_claim_daily(self, user_id: str, community_id: str) -> DailyStatus:
        last = await self.get_last_daily(user_id, community_id)
        ready_at = last + self._config.economy.daily_cooldown_seconds * 1000
        remaining_ms = max(0, ready_at - self.now_ms())
        return DailyStatus(
            can_claim=remaining_ms == 0,
            last_claim_at=last,
            seconds_until_next=remaining_ms / 1000,
        )

    async def mark_daily_claimed(
        self, user_id: str, community_id: str, at_ms: int | None = None
    ) -> int:
        async def op(scope: TransactionScope) -> int:
            account = await scope.account(user_id, community_id)
            updated = account.clone()
            updated.extra[LAST_DAILY_KEY] = at_ms if at_ms is not None else scope.now_ms
            scope.update(updated)
            return updated.extra[LAST_DAILY_KEY]

        return await self._transact("mark_daily_claimed", op)

    # Extension keys owned by other features

    async def get_extra(self, user_id: str, community_id: str, key: str) -> Any:
        account = await self.get_cached_account(user_id, community_id)
        return account.extra.get(key)

    async def set_extra(self, user_id: str, community_id: str, key: str, value: Any) -> None:
        if key in RESERVED_EXTENSION_KEYS:
            raise ValueError(f"Extension key '{key}' is reserved")

        async def op(scope: TransactionScope) -> None:
            account = await scope.account(user_id, community_id)
            updated = account.clone()
            if value is None:
                updated.extra.pop(key, None)
            else:
                updated.extra[key] = value
            scope.update(updated)

        await self._transact("set_extra", op)

    # Read-only queries; these do not normalize loans.

    async def get_top_accounts(
        self, community_id: str, limit: int = 10, offset: int = 0
    ) -> Sequence[AccountRecord]:
        limit = max(1, min(limit, MAX_LEADERBOARD_LIMIT))
        offset = max(0, offset)
        return await self._store.top_accounts(community_id, limit=limit, offset=offset)

    async def get_rank(self, user_id: str, community_id: str) -> int:
        return await self._store.rank(user_id, community_id)

    async def recent_history(
        self, user_id: str, community_id: str, limit: int = 10
    ) -> Sequence[HistoryEntry]:
        return await self._store.recent_history(user_id, community_id, limit=limit)

    async def search_history(self, query: HistoryQuery) -> Sequence[HistoryEntry]:
        limit = max(1, min(query.limit, MAX_HISTORY_LIMIT))
        return await self._store.search_history(replace(query, limit=limit))

    async def get_history_stats(
        self, user_id: str, community_id: str, *, since: datetime | None = None
    ) -> HistoryStats:
        return await self._store.history_stats(community_id, user_id=user_id, since=since)

    async def get_community_activity(self, community_id: str, *, days: float = 30) -> HistoryStats:
        """History aggregates for every account in the community over the last ``days``."""
        since_ms = self.now_ms() - int(days * MS_PER_DAY)
        since = datetime.fromtimestamp(since_ms / 1000, tz=timezone.utc)
        return await self._store.history_stats(community_id, since=since)

    async def get_community_stats(self, community_id: str) -> CommunityStats:
        return await self._store.community_stats(community_id, self._config.economy.rich_threshold)

    def invalidate_cache(self, user_id: str, community_id: str) -> None:
        self._cache.invalidate(user_id, community_id)

    def cache_stats(self) -> dict[str, float]:
        return self._cache.stats()
