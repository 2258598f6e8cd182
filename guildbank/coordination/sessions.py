"""Resumable command sessions and cooldown reservations."""

from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable

from ..config import CoordinationConfig
from ..domain.exceptions import SessionUnavailable
from .store import KeyValueStore, KeyValueStoreUnavailable, ttl_floor

logger = logging.getLogger(__name__)

SESSION_PREFIX = "command_session:"
COOLDOWN_PREFIX = "command_cooldown:"
DEFAULT_SESSION_TTL = 30


@dataclass(frozen=True, slots=True)
class CooldownReservation:
    """Result of :meth:`SessionStore.reserve_cooldown`.

    ``remaining_seconds`` is the time left on the existing reservation when
    ``reserved`` is false. ``store_available`` is false when the keyed store
    could not be reached; the reservation is then refused.
    """

    reserved: bool
    remaining_seconds: float = 0.0
    store_available: bool = True


class SessionStore:
    def __init__(
        self,
        store: KeyValueStore,
        config: CoordinationConfig | None = None,
        *,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._store = store
        self._prefix = (config or CoordinationConfig()).key_prefix
        self._clock = clock or (lambda: int(time.time() * 1000))

    def session_key(self, session_type: str, message_id: str) -> str:
        return f"{self._prefix}{SESSION_PREFIX}{session_type}:{message_id}"

    def cooldown_key(self, user_id: str, community_id: str, command_name: str) -> str:
        return f"{self._prefix}{COOLDOWN_PREFIX}{community_id}:{user_id}:{command_name}"

    async def put_session(
        self,
        session_type: str,
        message_id: str,
        data: Any,
        ttl_seconds: float | None = DEFAULT_SESSION_TTL,
    ) -> bool:
        ttl = ttl_floor(ttl_seconds, DEFAULT_SESSION_TTL)
        try:
            payload = json.dumps(data)
        except (TypeError, ValueError) as exc:
            logger.warning(
                "Command session %s:%s is not JSON serializable: %s", session_type, message_id, exc
            )
            return False
        try:
            await self._store.set(self.session_key(session_type, message_id), payload, ttl)
        except KeyValueStoreUnavailable as exc:
            logger.warning("Failed to set command session %s:%s: %s", session_type, message_id, exc)
            return False
        return True

    async def get_session(self, session_type: str, message_id: str) -> Any | None:
        try:
            raw = await self._store.get(self.session_key(session_type, message_id))
        except KeyValueStoreUnavailable as exc:
            logger.warning("Failed to read command session %s:%s: %s", session_type, message_id, exc)
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding corrupt command session %s:%s", session_type, message_id)
            return None

    async def require_session(self, session_type: str, message_id: str) -> Any:
        data = await self.get_session(session_type, message_id)
        if data is None:
            raise SessionUnavailable(f"Session {session_type}:{message_id} expired or is unavailable")
        return data

    async def delete_session(self, session_type: str, message_id: str) -> None:
        try:
            await self._store.delete(self.session_key(session_type, message_id))
        except KeyValueStoreUnavailable as exc:
            logger.warning("Failed to delete command session %s:%s: %s", session_type, message_id, exc)

    async def reserve_cooldown(
        self, user_id: str, community_id: str, command_name: str, expires_at: int
    ) -> CooldownReservation:
        """Claim the cooldown unless one is already running.

        ``expires_at`` is epoch milliseconds. The write is create-if-absent, so
        two racing invocations cannot both pass.
        """
        now = self._clock()
        ttl = max(1, math.ceil((expires_at - now) / 1000))
        key = self.cooldown_key(user_id, community_id, command_name)
        try:
            existing = await self._store.put_if_absent(key, str(int(expires_at)), ttl)
        except KeyValueStoreUnavailable as exc:
            logger.warning(
                "Failed to reserve cooldown %s for %s:%s: %s", command_name, user_id, community_id, exc
            )
            return CooldownReservation(reserved=False, store_available=False)
        if existing is None:
            return CooldownReservation(reserved=True)
        return CooldownReservation(reserved=False, remaining_seconds=self._remaining(existing, now))

    async def set_cooldown(
        self, user_id: str, community_id: str, command_name: str, expires_at: int
    ) -> None:
        now = self._clock()
        ttl = max(1, math.ceil((expires_at - now) / 1000))
        try:
            await self._store.set(
                self.cooldown_key(user_id, community_id, command_name), str(int(expires_at)), ttl
            )
        except KeyValueStoreUnavailable as exc:
            logger.warning(
                "Failed to set cooldown %s for %s:%s: %s", command_name, user_id, community_id, exc
            )

    async def clear_cooldown(self, user_id: str, community_id: str, command_name: str) -> None:
        try:
            await self._store.delete(self.cooldown_key(user_id, community_id, command_name))
        except KeyValueStoreUnavailable as exc:
            logger.warning(
                "Failed to clear cooldown %s for %s:%s: %s", command_name, user_id, community_id, exc
            )

    async def get_cooldown_remaining(self, user_id: str, community_id: str, command_name: str) -> float:
        try:
            raw = await self._store.get(self.cooldown_key(user_id, community_id, command_name))
        except KeyValueStoreUnavailable as exc:
            logger.warning(
                "Failed to get cooldown %s for %s:%s: %s", command_name, user_id, community_id, exc
            )
            return 0.0
        if not raw:
            return 0.0
        return self._remaining(raw, self._clock())

    @staticmethod
    def _remaining(raw: str, now: int) -> float:
        try:
            expires_at = int(raw)
        except ValueError:
            return 0.0
        return max(0.0, (expires_at - now) / 1000)
