"""Exceptions raised by guildbank services."""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    INVALID_AMOUNT = "invalid_amount"
    AMOUNT_OUT_OF_RANGE = "amount_out_of_range"
    AMOUNT_NOT_POSITIVE = "amount_not_positive"
    MINIMUM_BALANCE_VIOLATION = "minimum_balance_violation"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    TRANSFER_BLOCKED = "transfer_blocked"
    BANK_CAPACITY_EXCEEDED = "bank_capacity_exceeded"
    LOAN_ALREADY_ACTIVE = "loan_already_active"
    LOAN_OPTION_INVALID = "loan_option_invalid"
    NO_ACTIVE_LOAN = "no_active_loan"
    NO_FUNDS_AVAILABLE = "no_funds_available"
    TRANSIENT_STORE_ERROR = "transient_store_error"
    LOCK_UNAVAILABLE = "lock_unavailable"
    SESSION_UNAVAILABLE = "session_unavailable"


class GuildBankError(RuntimeError):
    """Base class for domain exceptions.

    Every subclass carries a stable ``code`` so callers can branch on it
    instead of matching message text.
    """

    code: ErrorCode

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class InvalidAmount(GuildBankError):
    """Raised when a value cannot be read as an integer amount."""

    code = ErrorCode.INVALID_AMOUNT

    def __init__(self, label: str, detail: str | None = None) -> None:
        super().__init__(detail or f"{label} must be an integer")
        self.label = label


class AmountOutOfRange(InvalidAmount):
    """Raised when an amount does not fit a signed 64-bit column."""

    code = ErrorCode.AMOUNT_OUT_OF_RANGE

    def __init__(self, label: str) -> None:
        super().__init__(label, f"{label} is out of the 64-bit integer range")


class AmountNotPositive(InvalidAmount):
    code = ErrorCode.AMOUNT_NOT_POSITIVE

    def __init__(self, label: str) -> None:
        super().__init__(label, f"{label} must be greater than 0")


class MinimumBalanceViolation(GuildBankError):
    """Raised when a wallet change would go below the configured minimum."""

    code = ErrorCode.MINIMUM_BALANCE_VIOLATION

    def __init__(self, current: int, delta: int, minimum: int) -> None:
        super().__init__(
            "Transaction would violate minimum balance. "
            f"Current: {current}, Change: {delta}, Resulting: {current + delta}, Minimum: {minimum}"
        )
        self.current = current
        self.delta = delta
        self.minimum = minimum


class InsufficientBalance(GuildBankError):
    code = ErrorCode.INSUFFICIENT_BALANCE

    def __init__(self, available: int, required: int, *, source: str = "wallet") -> None:
        super().__init__(f"Insufficient {source} balance: {available} < {required}")
        self.available = available
        self.required = required
        self.source = source


class TransferBlocked(GuildBankError):
    """Raised when an outstanding loan locks funds in place."""

    code = ErrorCode.TRANSFER_BLOCKED


class BankCapacityExceeded(GuildBankError):
    code = ErrorCode.BANK_CAPACITY_EXCEEDED

    def __init__(self, bank_balance: int, amount: int, bank_max: int) -> None:
        super().__init__(
            f"Bank capacity exceeded: {bank_balance} + {amount} > {bank_max}"
        )
        self.bank_balance = bank_balance
        self.amount = amount
        self.bank_max = bank_max


class LoanAlreadyActive(GuildBankError):
    code = ErrorCode.LOAN_ALREADY_ACTIVE


class LoanOptionInvalid(GuildBankError):
    code = ErrorCode.LOAN_OPTION_INVALID


class NoActiveLoan(GuildBankError):
    code = ErrorCode.NO_ACTIVE_LOAN


class NoFundsAvailable(GuildBankError):
    code = ErrorCode.NO_FUNDS_AVAILABLE


class TransientStoreError(GuildBankError):
    """Raised when the relational store is unreachable after all retries."""

    code = ErrorCode.TRANSIENT_STORE_ERROR


class LockUnavailable(GuildBankError):
    """Raised when a coordination lock could not be taken.

    Callers must fail safe: refund any stake already taken and report
    unavailability.
    """

    code = ErrorCode.LOCK_UNAVAILABLE


class SessionUnavailable(GuildBankError):
    code = ErrorCode.SESSION_UNAVAILABLE
