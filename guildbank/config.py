"""Configuration models for guildbank."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Literal, Sequence


StorageBackend = Literal["memory", "sqlalchemy"]
CoordinationBackend = Literal["memory", "redis"]

_TRUTHY = {"1", "true", "yes"}


@dataclass(slots=True)
class StorageConfig:
    """Configure where accounts and history are persisted."""

    backend: StorageBackend = "memory"
    dsn: str | None = None
    echo_sql: bool = False

    def resolve_dsn(self) -> str | None:
        if self.dsn:
            return self.dsn
        if self.backend == "sqlalchemy":
            return "sqlite+aiosqlite:///./guildbank.db"
        return None


@dataclass(slots=True)
class CoordinationConfig:
    """Shared keyed store used for locks, sessions and cooldowns."""

    backend: CoordinationBackend = "memory"
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = ""
    lock_ttl_seconds: int = 10
    exclusive_session_ttl_seconds: int = 60
    startup_lock_key: str = "bot-login"
    startup_lock_ttl_seconds: int = 30
    startup_lock_poll_seconds: float = 1.0


@dataclass(slots=True)
class EconomyConfig:
    default_balance: int = 0
    min_balance: int = 0
    grow_interval_hours: float = 12
    daily_cooldown_seconds: int = 86_400
    rich_threshold: int = 10_000
    cache_ttl_seconds: float = 60
    cache_sweep_seconds: float = 300


@dataclass(slots=True)
class BankConfig:
    """Bank storage floor and bank note upgrade formula."""

    default_max: int = 5000
    min_increase: int = 1000
    current_max_bps: int = 1000
    per_level_bonus: int = 250
    max_notes_per_use: int = 1000


@dataclass(frozen=True, slots=True)
class LoanOption:
    option_id: str
    amount: int
    duration_days: float
    interest_bps: int


DEFAULT_LOAN_OPTIONS: tuple[LoanOption, ...] = (
    LoanOption(option_id="starter", amount=500, duration_days=1, interest_bps=1000),
    LoanOption(option_id="standard", amount=5000, duration_days=3, interest_bps=1500),
    LoanOption(option_id="premium", amount=25000, duration_days=7, interest_bps=2500),
)


@dataclass(slots=True)
class LoanConfig:
    options: Sequence[LoanOption] = field(default_factory=lambda: DEFAULT_LOAN_OPTIONS)
    overdue_penalty_bps: int = 1000
    near_due_window_hours: float = 12

    def find(self, option_id: str) -> LoanOption | None:
        key = option_id.strip().lower()
        for option in self.options:
            if option.option_id == key:
                return option
        return None


@dataclass(slots=True)
class RetryConfig:
    """Exponential backoff for transient relational store failures."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 5.0
    exponential_base: float = 2.0
    jitter: bool = True


@dataclass(slots=True)
class GuildBankConfig:
    """Top-level configuration container."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    coordination: CoordinationConfig = field(default_factory=CoordinationConfig)
    economy: EconomyConfig = field(default_factory=EconomyConfig)
    bank: BankConfig = field(default_factory=BankConfig)
    loans: LoanConfig = field(default_factory=LoanConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)

    @classmethod
    def from_env(cls) -> "GuildBankConfig":
        """Create config from environment variables prefixed with GUILDBANK_."""
        prefix = "GUILDBANK_"

        def env(name: str, default: str) -> str:
            return os.getenv(f"{prefix}{name}", default)

        storage = StorageConfig(
            backend=env("STORAGE_BACKEND", "memory"),  # type: ignore[arg-type]
            dsn=os.getenv(f"{prefix}STORAGE_DSN"),
            echo_sql=env("STORAGE_ECHO_SQL", "false").lower() in _TRUTHY,
        )

        coordination = CoordinationConfig(
            backend=env("COORDINATION_BACKEND", "memory"),  # type: ignore[arg-type]
            redis_url=os.getenv("REDIS_URL") or env("REDIS_URL", "redis://localhost:6379/0"),
            key_prefix=env("KEY_PREFIX", ""),
            lock_ttl_seconds=int(env("LOCK_TTL", "10")),
            exclusive_session_ttl_seconds=int(env("EXCLUSIVE_SESSION_TTL", "60")),
            startup_lock_key=env("STARTUP_LOCK_KEY", "bot-login") or "bot-login",
            startup_lock_ttl_seconds=int(env("STARTUP_LOCK_TTL", "30")),
            startup_lock_poll_seconds=float(env("STARTUP_LOCK_POLL", "1.0")),
        )

        economy = EconomyConfig(
            default_balance=int(env("DEFAULT_BALANCE", "0")),
            min_balance=int(env("MIN_BALANCE", "0")),
            grow_interval_hours=float(env("GROW_INTERVAL_HOURS", "12")),
            daily_cooldown_seconds=int(env("DAILY_COOLDOWN_SECONDS", "86400")),
            rich_threshold=int(env("RICH_THRESHOLD", "10000")),
            cache_ttl_seconds=float(env("CACHE_TTL", "60")),
            cache_sweep_seconds=float(env("CACHE_SWEEP", "300")),
        )

        bank = BankConfig(
            default_max=int(env("BANK_DEFAULT_MAX", "5000")),
            min_increase=int(env("BANK_MIN_INCREASE", "1000")),
            current_max_bps=int(env("BANK_CURRENT_MAX_BPS", "1000")),
            per_level_bonus=int(env("BANK_PER_LEVEL_BONUS", "250")),
            max_notes_per_use=int(env("BANK_MAX_NOTES_PER_USE", "1000")),
        )

        raw_options = os.getenv(f"{prefix}LOAN_OPTIONS")
        loans = LoanConfig(
            options=_parse_loan_options(raw_options) if raw_options else DEFAULT_LOAN_OPTIONS,
            overdue_penalty_bps=int(env("LOAN_OVERDUE_PENALTY_BPS", "1000")),
            near_due_window_hours=float(env("LOAN_NEAR_DUE_HOURS", "12")),
        )

        retry = RetryConfig(
            max_attempts=int(env("RETRY_MAX_ATTEMPTS", "3")),
            base_delay=float(env("RETRY_BASE_DELAY", "0.5")),
            max_delay=float(env("RETRY_MAX_DELAY", "5.0")),
        )

        return cls(
            storage=storage,
            coordination=coordination,
            economy=economy,
            bank=bank,
            loans=loans,
            retry=retry,
        )


def _parse_loan_options(raw: str) -> tuple[LoanOption, ...]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid JSON for GUILDBANK_LOAN_OPTIONS") from exc
    if not isinstance(data, list):
        raise ValueError("GUILDBANK_LOAN_OPTIONS must be a JSON array")
    options = []
    for item in data:
        if not isinstance(item, dict):
            raise ValueError("Each loan option must be a JSON object")
        options.append(
            LoanOption(
                option_id=str(item["id"]).strip().lower(),
                amount=int(item["amount"]),
                duration_days=float(item.get("durationDays", 1)),
                interest_bps=int(item.get("interestBps", 0)),
            )
        )
    return tuple(options)
