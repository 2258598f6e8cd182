"""Keyed store doubles for outage scenarios."""

from __future__ import annotations

from ..coordination.store import InMemoryKeyValueStore, KeyValueStoreUnavailable


class UnavailableKeyValueStore(InMemoryKeyValueStore):
    """Keyed store whose backend is down: every data call raises."""

    def __init__(self, message: str = "connection refused") -> None:
        super().__init__()
        self.message = message

    def _fail(self) -> KeyValueStoreUnavailable:
        return KeyValueStoreUnavailable(self.message)

    async def get(self, key: str) -> str | None:
        raise self._fail()

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        raise self._fail()

    async def put_if_absent(self, key: str, value: str, ttl_seconds: int) -> str | None:
        raise self._fail()

    async def delete(self, key: str) -> None:
        raise self._fail()

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        raise self._fail()

    async def compare_and_expire(self, key: str, expected: str, ttl_seconds: int) -> bool:
        raise self._fail()

    async def ping(self) -> bool:
        return False
