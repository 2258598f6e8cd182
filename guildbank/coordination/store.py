"""Shared keyed stores with expiry and atomic conditional writes."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from redis import asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class KeyValueStoreUnavailable(RuntimeError):
    """Raised by a keyed store when the backend cannot be reached."""


def ttl_floor(ttl_seconds: float | None, default: int) -> int:
    """Whole seconds, never below one."""
    try:
        value = int(ttl_seconds) if ttl_seconds is not None else default
    except (TypeError, ValueError):
        value = default
    return max(1, value)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    async def put_if_absent(self, key: str, value: str, ttl_seconds: int) -> str | None:
        """Write only if ``key`` is absent; return the existing value on contention."""
        ...

    async def delete(self, key: str) -> None:
        ...

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        ...

    async def compare_and_expire(self, key: str, expected: str, ttl_seconds: int) -> bool:
        ...

    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        ...


@dataclass(slots=True)
class _Item:
    value: str
    expires_at: float


class InMemoryKeyValueStore:
    """Process-local keyed store for tests and single-process deployments."""

    def __init__(self, *, monotonic: Callable[[], float] = time.monotonic) -> None:
        self._monotonic = monotonic
        self._items: dict[str, _Item] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> _Item | None:
        item = self._items.get(key)
        if item is None:
            return None
        if self._monotonic() >= item.expires_at:
            del self._items[key]
            return None
        return item

    async def get(self, key: str) -> str | None:
        item = self._live(key)
        return item.value if item else None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._items[key] = _Item(value, self._monotonic() + ttl_seconds)

    async def put_if_absent(self, key: str, value: str, ttl_seconds: int) -> str | None:
        async with self._lock:
            existing = self._live(key)
            if existing is not None:
                return existing.value
            self._items[key] = _Item(value, self._monotonic() + ttl_seconds)
            return None

    async def delete(self, key: str) -> None:
        self._items.pop(key, None)

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        async with self._lock:
            item = self._live(key)
            if item is None or item.value != expected:
                return False
            del self._items[key]
            return True

    async def compare_and_expire(self, key: str, expected: str, ttl_seconds: int) -> bool:
        async with self._lock:
            item = self._live(key)
            if item is None or item.value != expected:
                return False
            item.expires_at = self._monotonic() + ttl_seconds
            return True

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._items.clear()


_PUT_IF_ABSENT = """
local existing = redis.call("GET", KEYS[1])
if existing then
  return existing
end
redis.call("SET", KEYS[1], ARGV[1], "EX", tonumber(ARGV[2]))
return false
"""

_COMPARE_AND_DELETE = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
  return redis.call("DEL", KEYS[1])
else
  return 0
end
"""

_COMPARE_AND_EXPIRE = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
  return redis.call("EXPIRE", KEYS[1], tonumber(ARGV[2]))
else
  return 0
end
"""


# Stand-in for a stored value that is not valid UTF-8; it never equals a
# token, a JSON document or an integer written by this package.
UNDECODABLE = "\ufffd"


def _text(value: bytes | str | None) -> str | None:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class RedisKeyValueStore:
    """Keyed store on Redis; conditional writes run as Lua scripts.

    Replies are decoded here. Bytes that are not UTF-8 read back as
    :data:`UNDECODABLE`.
    """

    def __init__(self, url: str, *, client: aioredis.Redis | None = None) -> None:
        self._client = client or aioredis.Redis.from_url(url)
        self._put_if_absent = self._client.register_script(_PUT_IF_ABSENT)
        self._compare_and_delete = self._client.register_script(_COMPARE_AND_DELETE)
        self._compare_and_expire = self._client.register_script(_COMPARE_AND_EXPIRE)

    async def get(self, key: str) -> str | None:
        try:
            return _text(await self._client.get(key))
        except UnicodeDecodeError:
            logger.warning("Value at '%s' is not valid UTF-8", key)
            return UNDECODABLE
        except RedisError as exc:
            raise KeyValueStoreUnavailable(str(exc)) from exc

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._client.set(key, value, ex=ttl_seconds)
        except RedisError as exc:
            raise KeyValueStoreUnavailable(str(exc)) from exc

    async def put_if_absent(self, key: str, value: str, ttl_seconds: int) -> str | None:
        try:
            return _text(await self._put_if_absent(keys=[key], args=[value, ttl_seconds]))
        except UnicodeDecodeError:
            logger.warning("Value at '%s' is not valid UTF-8", key)
            return UNDECODABLE
        except RedisError as exc:
            raise KeyValueStoreUnavailable(str(exc)) from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as exc:
            raise KeyValueStoreUnavailable(str(exc)) from exc

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        try:
            result = await self._compare_and_delete(keys=[key], args=[expected])
        except RedisError as exc:
            raise KeyValueStoreUnavailable(str(exc)) from exc
        return int(result) == 1

    async def compare_and_expire(self, key: str, expected: str, ttl_seconds: int) -> bool:
        try:
            result = await self._compare_and_expire(keys=[key], args=[expected, ttl_seconds])
        except RedisError as exc:
            raise KeyValueStoreUnavailable(str(exc)) from exc
        return int(result) == 1

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as exc:
            logger.warning("Redis ping failed: %s", exc)
            return False

    async def close(self) -> None:
        await self._client.aclose()
