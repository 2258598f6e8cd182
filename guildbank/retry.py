"""Exponential backoff for transient relational store failures."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .config import RetryConfig
from .domain.exceptions import TransientStoreError

T = TypeVar("T")

logger = logging.getLogger(__name__)


def calculate_delay(attempt: int, config: RetryConfig, *, rng: random.Random | None = None) -> float:
    delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    delay = min(delay, config.max_delay)
    if config.jitter:
        delay *= 0.5 + (rng or random).random() * 0.5
    return delay


async def retry_transient(
    label: str,
    func: Callable[[], Awaitable[T]],
    config: RetryConfig,
) -> T:
    """Run ``func`` again on ``TransientStoreError``; anything else propagates at once."""
    attempt = 0
    while True:
        attempt += 1
        try:
            return await func()
        except TransientStoreError as exc:
            if attempt >= config.max_attempts:
                logger.error(
                    "Ledger operation '%s' failed after %s attempts: %s", label, attempt, exc
                )
                raise
            delay = calculate_delay(attempt, config)
            logger.warning(
                "Ledger operation '%s' hit a transient store error (attempt %s/%s); retrying in %.2f s.",
                label,
                attempt,
                config.max_attempts,
                delay,
            )
            await asyncio.sleep(delay)
