"""Validation utilities for guildbank configuration."""

from __future__ import annotations

from .config import GuildBankConfig
from .domain.amounts import BIGINT_MAX


def validate_config(config: GuildBankConfig) -> list[str]:
    """Return list of validation errors discovered in the configuration."""
    errors: list[str] = []

    storage = config.storage
    if storage.backend not in ("memory", "sqlalchemy"):
        errors.append(f"Unsupported storage backend '{storage.backend}'.")
    if storage.backend == "sqlalchemy":
        dsn = storage.resolve_dsn() or ""
        if "+" not in dsn.split("://", 1)[0]:
            errors.append(f"Storage DSN '{dsn}' must name an async driver (e.g. postgresql+asyncpg).")

    coordination = config.coordination
    if coordination.backend not in ("memory", "redis"):
        errors.append(f"Unsupported coordination backend '{coordination.backend}'.")
    if coordination.backend == "redis" and not coordination.redis_url.startswith(
        ("redis://", "rediss://", "unix://")
    ):
        errors.append(f"Redis URL '{coordination.redis_url}' is not a redis:// URL.")
    if coordination.lock_ttl_seconds < 1:
        errors.append("Coordination 'lock_ttl_seconds' must be at least 1.")
    if coordination.exclusive_session_ttl_seconds < 1:
        errors.append("Coordination 'exclusive_session_ttl_seconds' must be at least 1.")
    if not coordination.startup_lock_key:
        errors.append("Coordination 'startup_lock_key' cannot be empty.")

    economy = config.economy
    if economy.min_balance < 0:
        errors.append("Economy 'min_balance' cannot be negative.")
    if economy.default_balance < economy.min_balance:
        errors.append("Economy 'default_balance' cannot be below 'min_balance'.")
    if economy.grow_interval_hours < 0:
        errors.append("Economy 'grow_interval_hours' cannot be negative.")
    if economy.daily_cooldown_seconds < 0:
        errors.append("Economy 'daily_cooldown_seconds' cannot be negative.")
    if economy.cache_ttl_seconds <= 0:
        errors.append("Economy 'cache_ttl_seconds' must be positive.")
    if economy.cache_sweep_seconds <= 0:
        errors.append("Economy 'cache_sweep_seconds' must be positive.")

    bank = config.bank
    if bank.default_max < 0 or bank.default_max > BIGINT_MAX:
        errors.append(f"Bank 'default_max' has invalid value '{bank.default_max}'.")
    if bank.min_increase <= 0:
        errors.append("Bank 'min_increase' must be positive.")
    if bank.current_max_bps < 0:
        errors.append("Bank 'current_max_bps' cannot be negative.")
    if bank.per_level_bonus < 0:
        errors.append("Bank 'per_level_bonus' cannot be negative.")
    if bank.max_notes_per_use <= 0:
        errors.append("Bank 'max_notes_per_use' must be positive.")

    loans = config.loans
    if not loans.options:
        errors.append("No loan options configured.")
    seen: set[str] = set()
    for option in loans.options:
        if option.option_id in seen:
            errors.append(f"Loan option '{option.option_id}' is defined more than once.")
        seen.add(option.option_id)
        if not option.option_id:
            errors.append("Loan option id cannot be empty.")
        if option.amount <= 0:
            errors.append(f"Loan option '{option.option_id}' has non-positive amount '{option.amount}'.")
        if option.duration_days <= 0:
            errors.append(
                f"Loan option '{option.option_id}' has non-positive duration '{option.duration_days}'."
            )
        if option.interest_bps < 0:
            errors.append(f"Loan option '{option.option_id}' has negative interest '{option.interest_bps}'.")
    if loans.overdue_penalty_bps < 0:
        errors.append("Loan 'overdue_penalty_bps' cannot be negative.")
    if loans.near_due_window_hours < 0:
        errors.append("Loan 'near_due_window_hours' cannot be negative.")

    retry = config.retry
    if retry.max_attempts < 1:
        errors.append("Retry 'max_attempts' must be at least 1.")
    if retry.base_delay < 0 or retry.max_delay < retry.base_delay:
        errors.append("Retry delays must satisfy 0 <= base_delay <= max_delay.")

    return errors


__all__ = ["validate_config"]
