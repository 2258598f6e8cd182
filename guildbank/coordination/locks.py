"""Cooperative locks over the shared keyed store.

Every operation fails closed: when the store is unreachable an acquire
reports "not acquired" and a release or refresh reports ``False``. A lock
outage is never treated as lock success.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable

from ..config import CoordinationConfig
from ..domain.exceptions import LockUnavailable
from .store import KeyValueStore, KeyValueStoreUnavailable, ttl_floor

logger = logging.getLogger(__name__)

LOCK_PREFIX = "deploy_lock:"
EXCLUSIVE_PREFIX = "exclusive_session:"


@dataclass(frozen=True, slots=True)
class OwnedLock:
    acquired: bool
    token: str | None = None


@dataclass(frozen=True, slots=True)
class ExclusiveSession:
    command_name: str
    expires_at: int
    token: str | None = None


@dataclass(frozen=True, slots=True)
class ExclusiveSessionResult:
    """Outcome of an exclusive session attempt.

    On contention ``session`` describes the holder when it can be read.
    """

    acquired: bool
    session: ExclusiveSession | None = None


def _parse_exclusive(raw: str | None) -> ExclusiveSession | None:
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or not data.get("command_name"):
        return None
    try:
        expires_at = int(data["expires_at"])
    except (KeyError, TypeError, ValueError):
        return None
    return ExclusiveSession(
        command_name=str(data["command_name"]),
        expires_at=expires_at,
        token=data.get("token"),
    )


class LockService:
    def __init__(
        self,
        store: KeyValueStore,
        config: CoordinationConfig | None = None,
        *,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._store = store
        self._config = config or CoordinationConfig()
        self._clock = clock or (lambda: int(time.time() * 1000))

    @property
    def store(self) -> KeyValueStore:
        return self._store

    def lock_key(self, key: str) -> str:
        return f"{self._config.key_prefix}{LOCK_PREFIX}{key}"

    def exclusive_key(self, user_id: str, community_id: str) -> str:
        return f"{self._config.key_prefix}{EXCLUSIVE_PREFIX}{community_id}:{user_id}"

    async def acquire_lock(self, key: str, ttl_seconds: float | None = None) -> bool:
        """Write a sentinel if absent. The lock is never released by owner, it expires."""
        if not key or not isinstance(key, str):
            return False
        ttl = ttl_floor(ttl_seconds, self._config.lock_ttl_seconds)
        try:
            existing = await self._store.put_if_absent(self.lock_key(key), "1", ttl)
        except KeyValueStoreUnavailable as exc:
            logger.warning("Lock check for '%s' failed; skipping event processing: %s", key, exc)
            return False
        return existing is None

    async def release_lock(self, key: str) -> None:
        try:
            await self._store.delete(self.lock_key(key))
        except KeyValueStoreUnavailable as exc:
            logger.warning("Failed to release lock '%s': %s", key, exc)

    async def acquire_owned_lock(self, key: str, ttl_seconds: float | None = None) -> OwnedLock:
        if not key or not isinstance(key, str):
            return OwnedLock(acquired=False)
        ttl = ttl_floor(ttl_seconds, self._config.lock_ttl_seconds)
        token = uuid.uuid4().hex
        try:
            existing = await self._store.put_if_absent(self.lock_key(key), token, ttl)
        except KeyValueStoreUnavailable as exc:
            logger.warning("Failed to acquire owned lock '%s': %s", key, exc)
            return OwnedLock(acquired=False)
        if existing is not None:
            return OwnedLock(acquired=False)
        return OwnedLock(acquired=True, token=token)

    async def release_owned_lock(self, key: str, token: str) -> bool:
        """Delete the lock only while ``token`` still owns it."""
        try:
            return await self._store.compare_and_delete(self.lock_key(key), token)
        except KeyValueStoreUnavailable as exc:
            logger.warning("Failed to release owned lock '%s': %s", key, exc)
            return False

    async def refresh_owned_lock(self, key: str, token: str, ttl_seconds: float | None = None) -> bool:
        ttl = ttl_floor(ttl_seconds, self._config.lock_ttl_seconds)
        try:
            return await self._store.compare_and_expire(self.lock_key(key), token, ttl)
        except KeyValueStoreUnavailable as exc:
            logger.warning("Failed to refresh owned lock '%s': %s", key, exc)
            return False

    # Exclusive sessions: one running interactive command per account.

    async def acquire_exclusive_session(
        self,
        user_id: str,
        community_id: str,
        command_name: str,
        ttl_seconds: float | None = None,
    ) -> ExclusiveSessionResult:
        ttl = ttl_floor(ttl_seconds, self._config.exclusive_session_ttl_seconds)
        session = ExclusiveSession(
            command_name=command_name,
            expires_at=self._clock() + ttl * 1000,
            token=uuid.uuid4().hex,
        )
        payload = json.dumps(
            {
                "command_name": session.command_name,
                "expires_at": session.expires_at,
                "token": session.token,
            }
        )
        key = self.exclusive_key(user_id, community_id)
        try:
            existing = await self._store.put_if_absent(key, payload, ttl)
        except KeyValueStoreUnavailable as exc:
            logger.warning(
                "Failed to acquire exclusive session for %s:%s (%s): %s",
                user_id,
                community_id,
                command_name,
                exc,
            )
            return ExclusiveSessionResult(acquired=False)
        if existing is not None:
            return ExclusiveSessionResult(acquired=False, session=_parse_exclusive(existing))
        return ExclusiveSessionResult(acquired=True, session=session)

    async def get_exclusive_session(self, user_id: str, community_id: str) -> ExclusiveSession | None:
        try:
            raw = await self._store.get(self.exclusive_key(user_id, community_id))
        except KeyValueStoreUnavailable as exc:
            logger.warning("Failed to get exclusive session for %s:%s: %s", user_id, community_id, exc)
            return None
        return _parse_exclusive(raw)

    async def release_exclusive_session(
        self, user_id: str, community_id: str, token: str | None = None
    ) -> bool:
        """Release the session; with ``token`` only the owner's session is removed."""
        key = self.exclusive_key(user_id, community_id)
        try:
            if token is None:
                await self._store.delete(key)
                return True
            raw = await self._store.get(key)
            current = _parse_exclusive(raw)
            if raw is None or current is None or current.token != token:
                return False
            return await self._store.compare_and_delete(key, raw)
        except KeyValueStoreUnavailable as exc:
            logger.warning(
                "Failed to release exclusive session for %s:%s: %s", user_id, community_id, exc
            )
            return False

    @asynccontextmanager
    async def exclusive_session(
        self,
        user_id: str,
        community_id: str,
        command_name: str,
        ttl_seconds: float | None = None,
    ) -> AsyncIterator[ExclusiveSession]:
        """Hold the account's exclusive session for the body of the block.

        Raises :class:`LockUnavailable` when another command holds it or the
        store is unreachable.
        """
        result = await self.acquire_exclusive_session(user_id, community_id, command_name, ttl_seconds)
        if not result.acquired or result.session is None:
            holder = result.session.command_name if result.session else None
            detail = (
                f"Command '{holder}' is already running for this account"
                if holder
                else "Exclusive session is unavailable"
            )
            raise LockUnavailable(detail)
        try:
            yield result.session
        finally:
            await self.release_exclusive_session(user_id, community_id, result.session.token)
