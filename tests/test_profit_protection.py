"""Tests for guaranteed-profit stop prices."""

from decimal import Decimal

import pytest

from futures_risk.exceptions import ValidationError, ValidationReason
from futures_risk.models import Direction, PositionRecord
from futures_risk.profit_protection import (
    break_even_stop_price,
    compute_stop_price,
    stop_price_for_position,
    suggest_protection_amount,
)


def test_long_stop_price():
    """Test entry + target / qty for a long position."""
    price = compute_stop_price('long', 100, 2, 50, 20, current_price=120)
    assert price == Decimal('110')


def test_target_exceeds_unrealized():
    """Test that a target above the unrealized profit is rejected."""
    with pytest.raises(ValidationError) as exc_info:
        compute_stop_price('long', 100, 2, 50, 55, current_price=120)

    assert exc_info.value.reason is ValidationReason.TARGET_EXCEEDS_UNREALIZED
    assert exc_info.value.price == Decimal('127.5')


def test_target_equal_to_unrealized_rejected():
    """Test that target must be strictly below unrealized profit."""
    with pytest.raises(ValidationError) as exc_info:
        compute_stop_price('long', 100, 2, 50, 50, current_price=200)

    assert exc_info.value.reason is ValidationReason.TARGET_EXCEEDS_UNREALIZED


def test_long_stop_not_below_current_price():
    """Test that a long stop at or above the current price is rejected."""
    with pytest.raises(ValidationError) as exc_info:
        compute_stop_price('long', 100, 2, 50, 20, current_price=105)

    assert exc_info.value.reason is ValidationReason.STOP_PRICE_NOT_PROTECTIVE
    assert exc_info.value.price == Decimal('110')

    with pytest.raises(ValidationError):
        compute_stop_price('long', 100, 2, 50, 20, current_price=110)


def test_short_stop_price():
    """Test entry - target / qty for a short position."""
    price = compute_stop_price(Direction.SHORT, 100, 4, 80, 20, current_price=80)
    assert price == Decimal('95')


def test_short_stop_not_above_current_price():
    """Test that a short stop at or below the current price is rejected."""
    with pytest.raises(ValidationError) as exc_info:
        compute_stop_price('short', 100, 4, 80, 20, current_price=96)

    assert exc_info.value.reason is ValidationReason.STOP_PRICE_NOT_PROTECTIVE


@pytest.mark.parametrize('target', [0, -5])
def test_non_positive_target(target):
    """Test that target must be greater than zero, checked first."""
    with pytest.raises(ValidationError) as exc_info:
        compute_stop_price('long', 100, 2, 50, target, current_price=120)

    assert exc_info.value.reason is ValidationReason.NON_POSITIVE_TARGET


def test_non_positive_quantity():
    """Test that quantity must be positive."""
    with pytest.raises(ValidationError) as exc_info:
        compute_stop_price('long', 100, 0, 50, 20, current_price=120)

    assert exc_info.value.reason is ValidationReason.NON_POSITIVE_QUANTITY


@pytest.mark.parametrize('direction', ['flat', 'sideways', None])
def test_invalid_direction(direction):
    """Test that only long and short are accepted."""
    with pytest.raises(ValidationError) as exc_info:
        compute_stop_price(direction, 100, 2, 50, 20, current_price=120)

    assert exc_info.value.reason is ValidationReason.INVALID_DIRECTION


def test_default_rounding_four_decimals():
    """Test that prices are rounded to four decimals by default."""
    # 100 + 10 / 3 = 103.33333...
    price = compute_stop_price('long', 100, 3, 50, 10, current_price=120)
    assert price == Decimal('103.3333')

    # 100 + 10 / 6 = 101.666666...
    price = compute_stop_price('long', 100, 6, 50, 10, current_price=120)
    assert price == Decimal('101.6667')


def test_midpoint_rounds_half_to_even():
    """Test that an exact midpoint goes to the even fourth decimal."""
    # 100 + 0.0001 / 2 = 100.00005
    price = compute_stop_price('long', 100, 2, 50, Decimal('0.0001'), current_price=120)
    assert price == Decimal('100.0000')

    # 100 + 0.0003 / 2 = 100.00015
    price = compute_stop_price('long', 100, 2, 50, Decimal('0.0003'), current_price=120)
    assert price == Decimal('100.0002')


def test_repeated_calls_return_equal_prices():
    """Test that the calculation is idempotent."""
    args = ('short', '3000', '2', '200', '150', '2900')

    first = compute_stop_price(*args)
    second = compute_stop_price(*args)

    assert first == second == Decimal('2925.0000')


def test_custom_price_decimals():
    """Test configurable rounding."""
    price = compute_stop_price('long', 100, 3, 50, 10, current_price=120, price_decimals=1)
    assert price == Decimal('103.3')


def test_float_inputs():
    """Test that float inputs behave like their decimal literals."""
    price = compute_stop_price('long', 0.3, 0.1, 1.0, 0.01, current_price=0.5)
    assert price == Decimal('0.4')


def test_stop_price_for_position():
    """Test that direction, size and prices come from the position."""
    position = PositionRecord(symbol='BTCUSDT', qty='-0.5', entry_price='50000',
                              mark_price='48000', leverage=10, unrealized_profit='1000')

    # 50000 - 400 / 0.5
    assert stop_price_for_position(position, 400) == Decimal('49200')


def test_stop_price_for_flat_position():
    """Test that a flat position cannot be protected."""
    position = PositionRecord(symbol='BTCUSDT', qty='0', entry_price='0', mark_price='48000')

    with pytest.raises(ValidationError) as exc_info:
        stop_price_for_position(position, 10)

    assert exc_info.value.reason is ValidationReason.NON_POSITIVE_QUANTITY


def test_break_even_stop_price():
    """Test that break-even is the entry price."""
    position = PositionRecord(symbol='ETHUSDT', qty='2', entry_price='3000', mark_price='3100')
    assert break_even_stop_price(position) == Decimal('3000')


@pytest.mark.parametrize('unrealized,expected', [
    ('200', Decimal('100.00')),
    ('33.335', Decimal('16.67')),
    ('0', Decimal('0')),
    ('-50', Decimal('0')),
])
def test_suggest_protection_amount(unrealized, expected):
    """Test half of the unrealized profit, zero when losing."""
    assert suggest_protection_amount(unrealized) == expected


def test_error_message_includes_reason():
    """Test that the reason code shows in the error text."""
    with pytest.raises(ValidationError, match=r'\[target_exceeds_unrealized\]'):
        compute_stop_price('long', 100, 2, 50, 55, current_price=120)
