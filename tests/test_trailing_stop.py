"""Tests for trailing-stop allocation."""

from decimal import Decimal

import pytest

from futures_risk.exceptions import ValidationError, ValidationReason
from futures_risk.models import (
    CoexistMode,
    OrderSide,
    PositionRecord,
    ReplaceMode,
    SmartLayeringMode,
    TrailingStopConfig,
    TrailingStopModeName,
)
from futures_risk.rounding import step_size_rounder
from futures_risk.trailing_stop import (
    callback_rate_from_stop,
    clamp_callback_rate,
    default_callback_rate,
    is_eligible,
    plan_trailing_stops,
    smart_callback_rate,
)


def _position(symbol='BTCUSDT', qty='10', unrealized='50', entry='100', mark='105'):
    return PositionRecord(symbol=symbol, qty=qty, entry_price=entry, mark_price=mark,
                          leverage=10, unrealized_profit=unrealized)


def test_coexist_split():
    """Test that coexist trails the allocated share and leaves the rest."""
    config = TrailingStopConfig(mode=CoexistMode(allocation_ratio='0.3'))
    [plan] = plan_trailing_stops([_position()], config)

    assert plan.trailing_qty == Decimal('3')
    assert plan.fixed_qty == Decimal('7')
    assert plan.mode is TrailingStopModeName.COEXIST
    assert plan.closing_side is OrderSide.SELL
    assert plan.supersedes_existing_stops is False


def test_smart_layering_split():
    """Test fixed and trailing parts of a layered plan."""
    config = TrailingStopConfig(mode=SmartLayeringMode(fixed_ratio='0.7', trailing_ratio='0.3'))
    [plan] = plan_trailing_stops([_position()], config)

    assert plan.fixed_qty == Decimal('7')
    assert plan.trailing_qty == Decimal('3')
    assert plan.supersedes_existing_stops is True


def test_replace_trails_everything():
    """Test that replace trails the full size of a short position."""
    config = TrailingStopConfig(mode=ReplaceMode(), callback_rate='2.5')
    [plan] = plan_trailing_stops([_position(qty='-4')], config)

    assert plan.trailing_qty == Decimal('4')
    assert plan.fixed_qty is None
    assert plan.callback_rate == Decimal('2.5')
    assert plan.closing_side is OrderSide.BUY
    assert plan.supersedes_existing_stops is True


def test_ratios_not_summing_to_one():
    """Test that layered ratios summing to 0.95 reject the whole request."""
    config = TrailingStopConfig(mode=SmartLayeringMode(fixed_ratio='0.65', trailing_ratio='0.3'))

    with pytest.raises(ValidationError) as exc_info:
        plan_trailing_stops([_position(), _position('ETHUSDT')], config)

    assert exc_info.value.reason is ValidationReason.INVALID_CONFIG


def test_ratio_sum_tolerance():
    """Test that small deviations from 1.0 are accepted."""
    config = TrailingStopConfig(mode=SmartLayeringMode(fixed_ratio='0.7005', trailing_ratio='0.3'))
    assert len(plan_trailing_stops([_position()], config)) == 1


@pytest.mark.parametrize('mode', [ReplaceMode(), CoexistMode(), SmartLayeringMode()])
def test_callback_rate_out_of_range(mode):
    """Test that callback rate 15 is rejected for every mode."""
    config = TrailingStopConfig(mode=mode, callback_rate=15)

    with pytest.raises(ValidationError) as exc_info:
        plan_trailing_stops([_position()], config)

    assert exc_info.value.reason is ValidationReason.INVALID_CONFIG


@pytest.mark.parametrize('rate', ['0.1', '10.0'])
def test_callback_rate_bounds_inclusive(rate):
    """Test the ends of the callback range."""
    config = TrailingStopConfig(callback_rate=rate)
    assert len(plan_trailing_stops([_position()], config)) == 1


@pytest.mark.parametrize('ratio', ['0', '0.005', '1.5'])
def test_allocation_ratio_out_of_range(ratio):
    """Test coexist allocation bounds."""
    config = TrailingStopConfig(mode=CoexistMode(allocation_ratio=ratio))

    with pytest.raises(ValidationError):
        plan_trailing_stops([_position()], config)


def test_only_profitable_filter():
    """Test that losing and flat positions are skipped."""
    positions = [
        _position('BTCUSDT', unrealized='50'),
        _position('ETHUSDT', unrealized='-20'),
        _position('SOLUSDT', unrealized='0'),
        _position('ADAUSDT', qty='0'),
    ]

    plans = plan_trailing_stops(positions, TrailingStopConfig())
    assert [p.symbol for p in plans] == ['BTCUSDT']

    plans = plan_trailing_stops(positions, TrailingStopConfig(only_for_profitable_positions=False))
    assert [p.symbol for p in plans] == ['BTCUSDT', 'ETHUSDT', 'SOLUSDT']


def test_is_eligible():
    assert is_eligible(_position(unrealized='-1'), only_profitable=False)
    assert not is_eligible(_position(unrealized='-1'), only_profitable=True)
    assert not is_eligible(_position(qty='0'), only_profitable=False)


def test_duplicate_symbols_produce_duplicate_plans():
    """Test that input order is kept and duplicates are not merged."""
    positions = [_position('BTCUSDT', qty='1'), _position('ETHUSDT'), _position('BTCUSDT', qty='2')]
    plans = plan_trailing_stops(positions, TrailingStopConfig(mode=ReplaceMode()))

    assert [(p.symbol, p.trailing_qty) for p in plans] == [
        ('BTCUSDT', Decimal('1')), ('ETHUSDT', Decimal('10')), ('BTCUSDT', Decimal('2'))
    ]


def test_planning_is_idempotent():
    """Test that repeated calls give equal plans."""
    positions = [_position(), _position('ETHUSDT', qty='-3')]
    config = TrailingStopConfig(mode=CoexistMode(allocation_ratio='0.45'),
                                only_for_profitable_positions=False)

    assert plan_trailing_stops(positions, config) == plan_trailing_stops(positions, config)


def test_empty_positions():
    assert plan_trailing_stops([], TrailingStopConfig()) == []
    assert plan_trailing_stops(None, TrailingStopConfig()) == []


def test_coexist_with_lot_rounding():
    """Test that the trailing part is floored to the lot and the rest stays fixed."""
    rounder = step_size_rounder({'BTCUSDT': Decimal('0.001')})
    config = TrailingStopConfig(mode=CoexistMode(allocation_ratio='0.3'))
    [plan] = plan_trailing_stops([_position(qty='0.015')], config, round_qty=rounder)

    assert plan.trailing_qty == Decimal('0.004')
    assert plan.fixed_qty == Decimal('0.011')
    assert plan.protected_qty == Decimal('0.015')


def test_smart_layering_with_lot_rounding():
    """Test that layered parts are each floored and never exceed the position."""
    rounder = step_size_rounder({'BTCUSDT': Decimal('0.001')})
    config = TrailingStopConfig(mode=SmartLayeringMode())
    [plan] = plan_trailing_stops([_position(qty='0.015')], config, round_qty=rounder)

    assert plan.fixed_qty == Decimal('0.010')
    assert plan.trailing_qty == Decimal('0.004')
    assert plan.protected_qty <= Decimal('0.015')


def test_protected_qty_never_exceeds_position():
    """Test the sum invariant across modes without rounding."""
    positions = [_position(qty=q) for q in ('1', '0.333', '-7.77', '12345.6789')]
    for mode in (ReplaceMode(), CoexistMode(allocation_ratio='0.37'), SmartLayeringMode()):
        config = TrailingStopConfig(mode=mode)
        for position, plan in zip(positions, plan_trailing_stops(positions, config)):
            assert plan.protected_qty <= abs(position.qty)
            assert plan.trailing_qty >= 0


@pytest.mark.parametrize('rate,expected', [
    ('0.05', Decimal('0.1')),
    ('3', Decimal('3')),
    ('12', Decimal('10.0')),
])
def test_clamp_callback_rate(rate, expected):
    assert clamp_callback_rate(rate) == expected


def test_callback_rate_from_stop():
    """Test conversion of an existing stop into a callback rate."""
    assert callback_rate_from_stop(100, 97, is_long=True) == Decimal('3')
    assert callback_rate_from_stop(100, 104, is_long=False) == Decimal('4')
    # Stop 20% away is clamped to the exchange maximum
    assert callback_rate_from_stop(100, 80, is_long=True) == Decimal('10.0')
    assert callback_rate_from_stop(0, 80, is_long=True) == 0


@pytest.mark.parametrize('unrealized,expected', [
    ('150', Decimal('1.0')),
    ('60', Decimal('1.5')),
    ('30', Decimal('2.0')),
    ('10', Decimal('2.5')),
])
def test_default_callback_rate(unrealized, expected):
    """Test tighter trails for larger profits (cost basis 1000)."""
    assert default_callback_rate(_position(unrealized=unrealized)) == expected


@pytest.mark.parametrize('unrealized,expected', [
    ('200', Decimal('3.0')),
    ('110', Decimal('2.5')),
    ('60', Decimal('2.0')),
    ('25', Decimal('1.5')),
    ('5', Decimal('1.0')),
])
def test_smart_callback_rate(unrealized, expected):
    """Test wider trails for larger profits (notional 1000)."""
    position = _position(unrealized=unrealized, mark='100')
    assert smart_callback_rate(position) == expected
