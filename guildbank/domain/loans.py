"""Loan state machine.

Loans are never advanced by a timer. Every ledger transaction calls
:func:`normalize` on the locked account first, so an overdue loan turns
delinquent the next time anything touches the account. All functions here
are pure: they take the current time explicitly and return new records.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from ..config import LoanConfig, LoanOption
from ..storage.base import AccountRecord, LoanRecord, LoanStatus
from .amounts import bps_of, ensure_range

MS_PER_DAY = 86_400_000
MS_PER_HOUR = 3_600_000


@dataclass(frozen=True, slots=True)
class LedgerEvent:
    """A balance or loan-state change that must be written to history."""

    type: str
    amount: int


class ReminderKind(str, Enum):
    NEAR_DUE = "near_due"
    OVERDUE = "overdue"


@dataclass(frozen=True, slots=True)
class LoanReminder:
    kind: ReminderKind
    debt: int
    due_at: int


@dataclass(frozen=True, slots=True)
class Collection:
    from_wallet: int
    from_bank: int

    @property
    def total(self) -> int:
        return self.from_wallet + self.from_bank


def collect(account: AccountRecord, limit: int) -> tuple[AccountRecord, Collection]:
    """Draw up to ``limit`` from wallet first, then bank."""
    limit = max(0, limit)
    from_wallet = min(max(0, account.wallet), limit)
    from_bank = min(max(0, account.bank_balance), limit - from_wallet)
    updated = account.clone()
    updated.wallet -= from_wallet
    updated.bank_balance -= from_bank
    return updated, Collection(from_wallet=from_wallet, from_bank=from_bank)


def apply_payment(account: AccountRecord, paid: int) -> AccountRecord:
    """Reduce the loan debt by ``paid``; a cleared debt removes the loan."""
    loan = account.loan
    if loan is None or paid <= 0:
        return account
    updated = account.clone()
    remaining = loan.debt - paid
    updated.loan = replace(loan, debt=remaining) if remaining > 0 else None
    return updated


def collection_events(collection: Collection, prefix: str = "loan-collect") -> list[LedgerEvent]:
    events: list[LedgerEvent] = []
    if collection.from_wallet:
        events.append(LedgerEvent(f"{prefix}-wallet", -collection.from_wallet))
    if collection.from_bank:
        events.append(LedgerEvent(f"{prefix}-bank", -collection.from_bank))
    return events


def normalize(account: AccountRecord, now_ms: int) -> tuple[AccountRecord, list[LedgerEvent]]:
    """Return the account with its loan status brought up to ``now_ms``."""
    loan = account.loan
    if loan is None:
        return account, []
    if loan.debt <= 0:
        cleared = account.clone()
        cleared.loan = None
        return cleared, [LedgerEvent("loan-cleared", 0)]
    if loan.status is not LoanStatus.ACTIVE or now_ms <= loan.due_at:
        return account, []

    penalty = bps_of(loan.debt, loan.overdue_penalty_bps)
    delinquent = replace(
        loan,
        status=LoanStatus.DELINQUENT,
        debt=ensure_range(loan.debt + penalty, "Loan debt"),
        defaulted_at=now_ms,
    )
    updated = account.clone()
    updated.loan = delinquent
    events = [LedgerEvent("loan-delinquent", penalty)]

    updated, collection = collect(updated, delinquent.debt)
    events.extend(collection_events(collection))
    updated = apply_payment(updated, collection.total)
    if updated.loan is None:
        events.append(LedgerEvent("loan-paid-off", 0))
    return updated, events


def open_loan(
    account: AccountRecord, option: LoanOption, now_ms: int, *, overdue_penalty_bps: int
) -> tuple[AccountRecord, LoanRecord]:
    """Credit the principal and attach the new loan; returns both."""
    interest = bps_of(option.amount, option.interest_bps)
    loan = LoanRecord(
        option_id=option.option_id,
        status=LoanStatus.ACTIVE,
        principal=option.amount,
        debt=ensure_range(option.amount + interest, "Loan debt"),
        interest_rate_bps=option.interest_bps,
        overdue_penalty_bps=overdue_penalty_bps,
        due_at=now_ms + int(option.duration_days * MS_PER_DAY),
        taken_at=now_ms,
    )
    updated = account.clone()
    updated.wallet = ensure_range(account.wallet + option.amount, "Wallet balance")
    updated.loan = loan
    return updated, loan


def pending_reminders(
    account: AccountRecord, now_ms: int, config: LoanConfig
) -> tuple[AccountRecord, list[LoanReminder]]:
    """Return reminders not yet delivered and mark them as notified."""
    loan = account.loan
    if loan is None:
        return account, []
    reminders: list[LoanReminder] = []
    notified = replace(loan)
    window = int(config.near_due_window_hours * MS_PER_HOUR)
    if (
        loan.status is LoanStatus.ACTIVE
        and loan.near_due_notified_at is None
        and loan.due_at - now_ms <= window
    ):
        reminders.append(LoanReminder(ReminderKind.NEAR_DUE, loan.debt, loan.due_at))
        notified.near_due_notified_at = now_ms
    if loan.status is LoanStatus.DELINQUENT and loan.overdue_notified_at is None:
        reminders.append(LoanReminder(ReminderKind.OVERDUE, loan.debt, loan.due_at))
        notified.overdue_notified_at = now_ms
    if not reminders:
        return account, []
    updated = account.clone()
    updated.loan = notified
    return updated, reminders


def loan_snapshot(loan: LoanRecord | None) -> LoanRecord | None:
    return replace(loan) if loan else None
