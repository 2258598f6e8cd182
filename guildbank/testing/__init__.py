"""Testing utilities for guildbank."""

from .clock import FrozenClock
from .factory import AccountFactory
from .fixtures import app_fixture, frozen_clock, memory_app
from .loans import LoanFixtures
from .stores import UnavailableKeyValueStore

__all__ = [
    "AccountFactory",
    "FrozenClock",
    "LoanFixtures",
    "UnavailableKeyValueStore",
    "app_fixture",
    "frozen_clock",
    "memory_app",
]
