"""Distributed coordination: locks, sessions and cooldowns."""

from .locks import ExclusiveSession, ExclusiveSessionResult, LockService, OwnedLock
from .sessions import CooldownReservation, SessionStore
from .startup import StartupLock
from .store import InMemoryKeyValueStore, KeyValueStore, KeyValueStoreUnavailable, RedisKeyValueStore

__all__ = [
    "CooldownReservation",
    "ExclusiveSession",
    "ExclusiveSessionResult",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "KeyValueStoreUnavailable",
    "LockService",
    "OwnedLock",
    "RedisKeyValueStore",
    "SessionStore",
    "StartupLock",
]
