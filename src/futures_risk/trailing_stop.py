"""Trailing-stop allocation.

Splits each eligible position between a trailing stop and, depending on the
mode, a fixed stop. The planner only computes quantities; placing or cancelling
orders is left to the caller.
"""

import logging
from decimal import Decimal
from typing import Iterable, List, Optional

from .exceptions import ValidationError, ValidationReason
from .models import (
    ZERO,
    CoexistMode,
    PositionRecord,
    ReplaceMode,
    SmartLayeringMode,
    TrailingStopConfig,
    TrailingStopPlan,
    to_decimal,
)
from .rounding import Rounder, identity_rounder

logger = logging.getLogger(__name__)

# Exchange limits for TRAILING_STOP_MARKET callback rate (percent)
MIN_CALLBACK_RATE = Decimal("0.1")
MAX_CALLBACK_RATE = Decimal("10.0")

MIN_ALLOCATION_RATIO = Decimal("0.01")
MAX_ALLOCATION_RATIO = Decimal("1.0")
RATIO_SUM_TOLERANCE = Decimal("0.001")


def validate_trailing_config(config: TrailingStopConfig) -> None:
    """Check a trailing-stop configuration against exchange limits.

    Raises:
        ValidationError: INVALID_CONFIG describing the first violation
    """
    rate = config.callback_rate
    if not MIN_CALLBACK_RATE <= rate <= MAX_CALLBACK_RATE:
        raise ValidationError(
            ValidationReason.INVALID_CONFIG,
            f"callback_rate must be between {MIN_CALLBACK_RATE} and {MAX_CALLBACK_RATE}, got {rate}"
        )

    mode = config.mode
    if isinstance(mode, SmartLayeringMode):
        if mode.fixed_ratio <= 0 or mode.trailing_ratio <= 0:
            raise ValidationError(
                ValidationReason.INVALID_CONFIG,
                "fixed and trailing stop ratios must both be positive"
            )
        ratio_sum = mode.fixed_ratio + mode.trailing_ratio
        if abs(ratio_sum - 1) > RATIO_SUM_TOLERANCE:
            raise ValidationError(
                ValidationReason.INVALID_CONFIG,
                f"fixed and trailing stop ratios must sum to 1.0, got {ratio_sum}"
            )
    elif isinstance(mode, CoexistMode):
        ratio = mode.allocation_ratio
        if not MIN_ALLOCATION_RATIO <= ratio <= MAX_ALLOCATION_RATIO:
            raise ValidationError(
                ValidationReason.INVALID_CONFIG,
                f"allocation_ratio must be between {MIN_ALLOCATION_RATIO} and "
                f"{MAX_ALLOCATION_RATIO}, got {ratio}"
            )
    elif not isinstance(mode, ReplaceMode):
        raise ValidationError(
            ValidationReason.INVALID_CONFIG,
            f"Unknown trailing stop mode: {mode!r}"
        )


def is_eligible(position: PositionRecord, only_profitable: bool) -> bool:
    if position.qty == 0:
        return False
    if only_profitable and not position.is_profitable:
        return False
    return True


def _plan_for_position(
    position: PositionRecord,
    config: TrailingStopConfig,
    round_qty: Rounder
) -> TrailingStopPlan:
    mode = config.mode
    total = abs(position.qty)
    fixed_qty: Optional[Decimal] = None

    if isinstance(mode, ReplaceMode):
        trailing_qty = total
        supersedes = True
    elif isinstance(mode, CoexistMode):
        trailing_qty = round_qty(position.symbol, total * mode.allocation_ratio)
        # Remainder stays under the existing static stop
        fixed_qty = total - trailing_qty
        supersedes = False
    else:
        trailing_qty = round_qty(position.symbol, total * mode.trailing_ratio)
        fixed_qty = round_qty(position.symbol, total * mode.fixed_ratio)
        supersedes = True

    return TrailingStopPlan(
        symbol=position.symbol,
        trailing_qty=trailing_qty,
        fixed_qty=fixed_qty,
        callback_rate=config.callback_rate,
        mode=mode.name,
        closing_side=position.closing_side,
        supersedes_existing_stops=supersedes,
    )


def plan_trailing_stops(
    positions: Optional[Iterable[PositionRecord]],
    config: TrailingStopConfig,
    round_qty: Optional[Rounder] = None
) -> List[TrailingStopPlan]:
    """Plan trailing-stop quantities for every eligible position.

    The configuration is validated first; if it is invalid nothing is
    planned for any position. Flat positions, and unprofitable ones when
    only_for_profitable_positions is set, are skipped. Output order follows
    input order and duplicate symbols produce duplicate plans.

    Args:
        positions: Position snapshots
        config: Trailing-stop configuration
        round_qty: Per-instrument lot rounder (symbol, qty) -> qty;
            defaults to no rounding

    Returns:
        List of TrailingStopPlan

    Raises:
        ValidationError: INVALID_CONFIG when the configuration is out of range
    """
    validate_trailing_config(config)
    round_qty = round_qty or identity_rounder

    plans = []
    skipped = 0
    for position in positions or ():
        if not is_eligible(position, config.only_for_profitable_positions):
            skipped += 1
            logger.debug(
                f"Skipping {position.symbol}: qty={position.qty}, "
                f"unrealized={position.unrealized_profit}"
            )
            continue
        plans.append(_plan_for_position(position, config, round_qty))

    logger.info(
        f"Planned {len(plans)} trailing stops ({config.mode.name.value} mode), "
        f"{skipped} positions skipped"
    )

    return plans


def clamp_callback_rate(rate) -> Decimal:
    rate = to_decimal(rate)
    return max(MIN_CALLBACK_RATE, min(MAX_CALLBACK_RATE, rate))


def callback_rate_from_stop(entry_price, stop_price, is_long: bool) -> Decimal:
    """Callback rate equivalent to an existing static stop.

    Used when converting a stop order into a trailing stop: the distance
    between entry and stop, as a percent of entry, clamped to the exchange
    range.

    Returns:
        Callback rate in percent, or 0 if either price is non-positive
    """
    entry_price = to_decimal(entry_price)
    stop_price = to_decimal(stop_price)
    if entry_price <= 0 or stop_price <= 0:
        return ZERO

    if is_long:
        ratio = (entry_price - stop_price) / entry_price * 100
    else:
        ratio = (stop_price - entry_price) / entry_price * 100

    return clamp_callback_rate(ratio)


def default_callback_rate(position: PositionRecord) -> Decimal:
    """Callback rate for a position with no static stop to convert.

    The more profit is already made, the tighter the trail.
    """
    cost = abs(position.qty) * position.entry_price
    if cost <= 0:
        return Decimal("2.5")

    profit_ratio = abs(position.unrealized_profit) / cost * 100
    if profit_ratio > 10:
        return Decimal("1.0")
    if profit_ratio > 5:
        return Decimal("1.5")
    if profit_ratio > 2:
        return Decimal("2.0")
    return Decimal("2.5")


def smart_callback_rate(
    position: PositionRecord,
    min_rate=Decimal("1.0"),
    max_rate=MAX_CALLBACK_RATE
) -> Decimal:
    """Callback rate for layered mode, widening as profit on notional grows."""
    notional = position.notional
    profit_pct = position.unrealized_profit / notional * 100 if notional > 0 else ZERO

    if profit_pct >= 15:
        return min(to_decimal(max_rate), Decimal("3.0"))
    if profit_pct >= 10:
        return Decimal("2.5")
    if profit_pct >= 5:
        return Decimal("2.0")
    if profit_pct >= 2:
        return Decimal("1.5")
    return max(to_decimal(min_rate), Decimal("1.0"))
