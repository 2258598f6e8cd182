"""Domain models and services."""

from .amounts import ensure_range, format_amount, parse_positive, to_amount
from .bank import BankData, BankService, BankUpgrade, TransferResult
from .events import EventBus
from .exceptions import (
    AmountNotPositive,
    AmountOutOfRange,
    BankCapacityExceeded,
    ErrorCode,
    GuildBankError,
    InsufficientBalance,
    InvalidAmount,
    LoanAlreadyActive,
    LoanOptionInvalid,
    LockUnavailable,
    MinimumBalanceViolation,
    NoActiveLoan,
    NoFundsAvailable,
    SessionUnavailable,
    TransferBlocked,
    TransientStoreError,
)
from .ledger import DailyStatus, GrowStatus, LedgerService, LoanPayment, LoanResult, LoanState
from .loans import LoanReminder, ReminderKind, normalize
from .transactions import system_clock

__all__ = [
    "ensure_range",
    "format_amount",
    "parse_positive",
    "to_amount",
    "BankData",
    "BankService",
    "BankUpgrade",
    "TransferResult",
    "EventBus",
    "AmountNotPositive",
    "AmountOutOfRange",
    "BankCapacityExceeded",
    "ErrorCode",
    "GuildBankError",
    "InsufficientBalance",
    "InvalidAmount",
    "LoanAlreadyActive",
    "LoanOptionInvalid",
    "LockUnavailable",
    "MinimumBalanceViolation",
    "NoActiveLoan",
    "NoFundsAvailable",
    "SessionUnavailable",
    "TransferBlocked",
    "TransientStoreError",
    "DailyStatus",
    "GrowStatus",
    "LedgerService",
    "LoanPayment",
    "LoanResult",
    "LoanState",
    "LoanReminder",
    "ReminderKind",
    "normalize",
    "system_clock",
]
