"""Pytest fixtures for guildbank."""

from __future__ import annotations

import pytest

from ..app import LedgerApp
from ..config import GuildBankConfig, RetryConfig
from ..coordination import InMemoryKeyValueStore
from .clock import FrozenClock


@pytest.fixture()
def frozen_clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def memory_app(frozen_clock: FrozenClock) -> LedgerApp:
    return app_fixture(clock=frozen_clock)


def app_fixture(clock: FrozenClock | None = None, **kwargs) -> LedgerApp:
    """Helper for ad-hoc tests where pytest is not available."""
    clock = clock or FrozenClock()
    kwargs.setdefault("retry", RetryConfig(max_attempts=3, base_delay=0, max_delay=0, jitter=False))
    config = GuildBankConfig(**kwargs)
    return LedgerApp(
        config,
        key_value_store=InMemoryKeyValueStore(monotonic=clock.monotonic),
        clock=clock,
    )
