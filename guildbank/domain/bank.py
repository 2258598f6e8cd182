"""Transfers between accounts and the wallet/bank split."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..storage.base import AccountRecord, LoanStatus
from .amounts import bps_of, ensure_range, parse_positive
from .events import BANK_EXPANDED, TRANSFER_COMPLETED
from .exceptions import BankCapacityExceeded, InsufficientBalance, InvalidAmount, TransferBlocked
from .transactions import LedgerBase, TransactionScope

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TransferResult:
    amount: int
    sender_balance: int
    recipient_balance: int


@dataclass(slots=True)
class BankData:
    wallet: int
    bank_balance: int
    bank_max: int

    @property
    def available_space(self) -> int:
        return max(0, self.bank_max - self.bank_balance)

    @property
    def total(self) -> int:
        return self.wallet + self.bank_balance


@dataclass(slots=True)
class BankUpgrade:
    previous_max: int
    new_max: int
    quantity: int

    @property
    def increase(self) -> int:
        return self.new_max - self.previous_max


def _bank_data(account: AccountRecord) -> BankData:
    return BankData(wallet=account.wallet, bank_balance=account.bank_balance, bank_max=account.bank_max)


class BankService(LedgerBase):
    """Multi-account operations built on the ledger transaction."""

    async def transfer(
        self,
        from_user: str,
        to_user: str,
        community_id: str,
        amount: Any,
        reason: str = "transfer",
    ) -> TransferResult:
        """Move ``amount`` from one wallet to another in a single transaction.

        Rows are locked sender first, then recipient. Either party holding a
        loan blocks the transfer.
        """
        value = parse_positive(amount, "Transfer amount")
        if from_user == to_user:
            raise TransferBlocked("Cannot transfer to the same account")

        async def op(scope: TransactionScope) -> TransferResult:
            sender = await scope.account(from_user, community_id)
            recipient = await scope.account(to_user, community_id)
            if sender.loan is not None:
                raise TransferBlocked("Sender has an outstanding loan")
            if recipient.loan is not None:
                raise TransferBlocked("Recipient has an outstanding loan")
            if sender.wallet < value:
                raise InsufficientBalance(sender.wallet, value)

            sender.wallet -= value
            recipient.wallet = ensure_range(recipient.wallet + value, "Wallet balance")
            scope.record(sender, f"{reason}-out", -value)
            scope.record(recipient, f"{reason}-in", value)
            scope.update(sender)
            scope.update(recipient)
            scope.publish(
                TRANSFER_COMPLETED,
                {
                    "from_user": from_user,
                    "to_user": to_user,
                    "community_id": community_id,
                    "amount": value,
                },
            )
            return TransferResult(
                amount=value,
                sender_balance=sender.wallet,
                recipient_balance=recipient.wallet,
            )

        result = await self._transact("transfer", op)
        logger.info(
            "Transfer: %s -> %s in %s amount=%s (%s)", from_user, to_user, community_id, value, reason
        )
        return result

    async def get_bank_data(self, user_id: str, community_id: str) -> BankData:
        async def op(scope: TransactionScope) -> BankData:
            return _bank_data(await scope.account(user_id, community_id))

        return await self._transact("get_bank_data", op)

    async def deposit(self, user_id: str, community_id: str, amount: Any) -> BankData:
        value = parse_positive(amount, "Deposit amount")

        async def op(scope: TransactionScope) -> BankData:
            account = await scope.account(user_id, community_id)
            self._ensure_not_delinquent(account)
            if account.wallet < value:
                raise InsufficientBalance(account.wallet, value)
            if account.bank_balance + value > account.bank_max:
                raise BankCapacityExceeded(account.bank_balance, value, account.bank_max)
            account.wallet -= value
            account.bank_balance += value
            scope.record(account, "bank-deposit", value)
            scope.update(account)
            return _bank_data(account)

        data = await self._transact("deposit", op)
        logger.info("Deposit: %s:%s amount=%s", user_id, community_id, value)
        return data

    async def withdraw(self, user_id: str, community_id: str, amount: Any) -> BankData:
        value = parse_positive(amount, "Withdraw amount")

        async def op(scope: TransactionScope) -> BankData:
            account = await scope.account(user_id, community_id)
            self._ensure_not_delinquent(account)
            if account.bank_balance < value:
                raise InsufficientBalance(account.bank_balance, value, source="bank")
            account.bank_balance -= value
            account.wallet = ensure_range(account.wallet + value, "Wallet balance")
            scope.record(account, "bank-withdraw", value)
            scope.update(account)
            return _bank_data(account)

        data = await self._transact("withdraw", op)
        logger.info("Withdraw: %s:%s amount=%s", user_id, community_id, value)
        return data

    def capacity_increase(self, bank_max: int, level: int) -> int:
        """Increase granted by one bank note at the given ``bank_max``."""
        bank = self._config.bank
        return max(bank.min_increase, bps_of(bank_max, bank.current_max_bps) + level * bank.per_level_bonus)

    async def expand_bank_capacity(
        self, user_id: str, community_id: str, quantity: Any, level: int
    ) -> BankUpgrade:
        count = parse_positive(quantity, "Quantity")
        limit = self._config.bank.max_notes_per_use
        if count > limit:
            raise InvalidAmount("Quantity", f"Quantity must be at most {limit}")
        level = max(0, int(level))

        async def op(scope: TransactionScope) -> BankUpgrade:
            account = await scope.account(user_id, community_id)
            previous = account.bank_max
            for _ in range(count):
                account.bank_max = ensure_range(
                    account.bank_max + self.capacity_increase(account.bank_max, level),
                    "Bank capacity",
                )
            scope.record(account, "bank-expand", account.bank_max - previous)
            scope.update(account)
            scope.publish(
                BANK_EXPANDED,
                {
                    "user_id": user_id,
                    "community_id": community_id,
                    "previous_max": previous,
                    "new_max": account.bank_max,
                },
            )
            return BankUpgrade(previous_max=previous, new_max=account.bank_max, quantity=count)

        upgrade = await self._transact("expand_bank_capacity", op)
        logger.info(
            "Bank expanded: %s:%s %s -> %s (x%s)",
            user_id,
            community_id,
            upgrade.previous_max,
            upgrade.new_max,
            count,
        )
        return upgrade

    @staticmethod
    def _ensure_not_delinquent(account: AccountRecord) -> None:
        if account.loan is not None and account.loan.status is LoanStatus.DELINQUENT:
            raise TransferBlocked("Bank access is frozen while a loan is delinquent")
