"""Guaranteed-profit stop prices.

Given how much of the current unrealized profit the user wants to lock in,
derive the stop price that realizes exactly that amount when hit.
"""

import logging
from decimal import Decimal
from typing import Union

from .exceptions import ValidationError, ValidationReason
from .models import ZERO, Direction, PositionRecord, to_decimal
from .rounding import DEFAULT_PRICE_DECIMALS, round_price

logger = logging.getLogger(__name__)

SUGGESTED_PROTECTION_SHARE = Decimal("0.5")


def _parse_direction(direction: Union[Direction, str]) -> Direction:
    try:
        parsed = Direction(str(getattr(direction, 'value', direction)).lower())
    except ValueError:
        parsed = None
    if parsed is None or parsed is Direction.FLAT:
        raise ValidationError(
            ValidationReason.INVALID_DIRECTION,
            f"Direction must be 'long' or 'short', got {direction!r}"
        )
    return parsed


def compute_stop_price(
    direction: Union[Direction, str],
    entry_price,
    quantity,
    unrealized_profit,
    target_profit,
    current_price,
    price_decimals: int = DEFAULT_PRICE_DECIMALS
) -> Decimal:
    """Stop price that locks in target_profit on the whole position.

    Long: entry + target / quantity. Short: entry - target / quantity.
    The result is rounded half to even to price_decimals places.

    Checks run in this order and the first failure is raised:
    target must be positive, target must be below the current unrealized
    profit, and the stop must sit on the protective side of the current
    price (below it for a long, above it for a short).

    Args:
        direction: Position direction (Direction or 'long'/'short')
        entry_price: Average entry price
        quantity: Absolute position size, must be > 0
        unrealized_profit: Current unrealized profit
        target_profit: Profit to lock in
        current_price: Current mark price
        price_decimals: Fractional digits of the result

    Returns:
        Rounded stop price

    Raises:
        ValidationError: With the failing reason; price is attached when it
            could be computed
    """
    side = _parse_direction(direction)
    entry_price = to_decimal(entry_price)
    quantity = to_decimal(quantity)
    unrealized_profit = to_decimal(unrealized_profit)
    target_profit = to_decimal(target_profit)
    current_price = to_decimal(current_price)

    if quantity <= 0:
        raise ValidationError(
            ValidationReason.NON_POSITIVE_QUANTITY,
            f"Quantity must be positive, got {quantity}"
        )

    offset = target_profit / quantity
    raw_price = entry_price + offset if side is Direction.LONG else entry_price - offset
    price = round_price(raw_price, price_decimals)

    logger.debug(
        f"Profit stop: {side.value} entry={entry_price} qty={quantity} "
        f"target={target_profit} -> {price}"
    )

    if target_profit <= 0:
        raise ValidationError(
            ValidationReason.NON_POSITIVE_TARGET,
            f"Target profit must be greater than 0, got {target_profit}",
            price=price
        )

    if target_profit >= unrealized_profit:
        raise ValidationError(
            ValidationReason.TARGET_EXCEEDS_UNREALIZED,
            f"Target profit {target_profit} must be less than unrealized profit {unrealized_profit}",
            price=price
        )

    if side is Direction.LONG and price >= current_price:
        raise ValidationError(
            ValidationReason.STOP_PRICE_NOT_PROTECTIVE,
            f"Long stop price {price} must be below current price {current_price}",
            price=price
        )

    if side is Direction.SHORT and price <= current_price:
        raise ValidationError(
            ValidationReason.STOP_PRICE_NOT_PROTECTIVE,
            f"Short stop price {price} must be above current price {current_price}",
            price=price
        )

    return price


def stop_price_for_position(
    position: PositionRecord,
    target_profit,
    price_decimals: int = DEFAULT_PRICE_DECIMALS
) -> Decimal:
    """compute_stop_price with direction, size, profit and price taken from a position."""
    if position.qty == 0:
        raise ValidationError(
            ValidationReason.NON_POSITIVE_QUANTITY,
            f"{position.symbol} has no open quantity"
        )

    return compute_stop_price(
        direction=position.direction,
        entry_price=position.entry_price,
        quantity=abs(position.qty),
        unrealized_profit=position.unrealized_profit,
        target_profit=target_profit,
        current_price=position.mark_price,
        price_decimals=price_decimals,
    )


def break_even_stop_price(position: PositionRecord) -> Decimal:
    """Stop price at which the position closes flat: its entry price."""
    if position.qty == 0:
        raise ValidationError(
            ValidationReason.NON_POSITIVE_QUANTITY,
            f"{position.symbol} has no open quantity"
        )
    return position.entry_price


def suggest_protection_amount(unrealized_profit) -> Decimal:
    """Half of the unrealized profit, to 2 decimals; 0 when not in profit."""
    unrealized_profit = to_decimal(unrealized_profit)
    if unrealized_profit <= 0:
        return ZERO
    return round_price(unrealized_profit * SUGGESTED_PROTECTION_SHARE, 2)
