from decimal import Decimal

import pytest

from guildbank.domain.amounts import BIGINT_MAX, BIGINT_MIN, bps_of, ensure_range, format_amount, parse_positive, to_amount
from guildbank.domain.exceptions import AmountNotPositive, AmountOutOfRange, ErrorCode, InvalidAmount


@pytest.mark.parametrize(
    "raw, expected",
    [
        (42, 42),
        (-7, -7),
        (12.0, 12),
        (Decimal("900"), 900),
        ("  1500 ", 1500),
        ("-3", -3),
        (str(BIGINT_MAX), BIGINT_MAX),
    ],
)
def test_to_amount_accepts_integral_values(raw, expected):
    assert to_amount(raw, "Amount") == expected


@pytest.mark.parametrize(
    "raw",
    [1.5, float("nan"), float("inf"), "12a", "", "1e3", "\u0661\u0662\u0663", "\uff15", "12\n3", None, True, [1]],
)
def test_to_amount_rejects_non_integers(raw):
    with pytest.raises(InvalidAmount) as excinfo:
        to_amount(raw, "Bet")
    assert "Bet" in excinfo.value.detail


def test_to_amount_rejects_unsafe_floats():
    with pytest.raises(InvalidAmount):
        to_amount(float(2**60), "Amount")


def test_range_is_signed_64_bit():
    assert ensure_range(BIGINT_MIN) == BIGINT_MIN
    with pytest.raises(AmountOutOfRange) as excinfo:
        to_amount(str(BIGINT_MAX + 1), "Wallet")
    assert excinfo.value.code is ErrorCode.AMOUNT_OUT_OF_RANGE
    assert isinstance(excinfo.value, InvalidAmount)


def test_parse_positive():
    assert parse_positive("10") == 10
    with pytest.raises(AmountNotPositive):
        parse_positive(0)
    with pytest.raises(AmountNotPositive):
        parse_positive("-5", "Deposit")


def test_bps_floors_and_format():
    assert bps_of(550, 1000) == 55
    assert bps_of(999, 1) == 0
    assert format_amount(" 77 ") == "77"
