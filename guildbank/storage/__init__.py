"""Storage backends for guildbank."""

from .base import (
    AccountDefaults,
    AccountRecord,
    AccountStore,
    AccountTransaction,
    CommunityStats,
    HistoryEntry,
    HistoryQuery,
    HistoryStats,
    LoanRecord,
    LoanStatus,
)
from .memory import InMemoryAccountStore
from .sqlalchemy import SQLAlchemyDatabase

__all__ = [
    "AccountDefaults",
    "AccountRecord",
    "AccountStore",
    "AccountTransaction",
    "CommunityStats",
    "HistoryEntry",
    "HistoryQuery",
    "HistoryStats",
    "LoanRecord",
    "LoanStatus",
    "InMemoryAccountStore",
    "SQLAlchemyDatabase",
]
