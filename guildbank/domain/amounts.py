"""Integer money parsing, range checks and formatting."""

from __future__ import annotations

import math
import re
from decimal import Decimal, InvalidOperation
from typing import Any

from .exceptions import AmountNotPositive, AmountOutOfRange, InvalidAmount

BIGINT_MAX = (1 << 63) - 1
BIGINT_MIN = -(1 << 63)
# Largest integer a float represents exactly.
FLOAT_EXACT_MAX = 1 << 53
BPS_SCALE = 10_000

_INTEGER_RE = re.compile(r"-?[0-9]+")


def ensure_range(value: int, label: str = "Value") -> int:
    if value < BIGINT_MIN or value > BIGINT_MAX:
        raise AmountOutOfRange(label)
    return value


def to_amount(value: Any, label: str = "Value") -> int:
    """Return ``value`` as a range-checked ``int`` or raise ``InvalidAmount``."""
    if isinstance(value, bool):
        raise InvalidAmount(label, f"{label} must be an integer, not a boolean")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            raise InvalidAmount(label)
        if abs(value) > FLOAT_EXACT_MAX:
            raise InvalidAmount(label, f"{label} exceeds the exact float integer range")
        parsed = int(value)
    elif isinstance(value, Decimal):
        try:
            if not value.is_finite() or value != value.to_integral_value():
                raise InvalidAmount(label)
        except InvalidOperation as exc:
            raise InvalidAmount(label) from exc
        parsed = int(value)
    elif isinstance(value, str):
        text = value.strip()
        if not _INTEGER_RE.fullmatch(text):
            raise InvalidAmount(label)
        parsed = int(text)
    else:
        raise InvalidAmount(
            label, f"{label} must be an integer, integral number or integer string"
        )
    return ensure_range(parsed, label)


def parse_positive(value: Any, label: str = "Amount") -> int:
    parsed = to_amount(value, label)
    if parsed <= 0:
        raise AmountNotPositive(label)
    return parsed


def format_amount(value: Any) -> str:
    return str(to_amount(value, "Money"))


def bps_of(value: int, bps: int) -> int:
    """Floor of ``value * bps / 10000``."""
    return (value * bps) // BPS_SCALE
