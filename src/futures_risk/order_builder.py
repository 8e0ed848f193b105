"""Translate plans into reduce-only order requests.

The request dicts use the exchange's field names so an order-submission layer
can post them as-is. Final lot/tick rounding happens here through the rounders
the caller supplies.
"""

import logging
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP
from typing import Dict, List, Optional

from .exceptions import ValidationError, ValidationReason
from .models import (
    ZERO,
    OrderSide,
    PositionRecord,
    TrailingStopModeName,
    TrailingStopPlan,
    to_decimal,
)
from .rounding import Rounder, identity_rounder, tick_size_rounder

logger = logging.getLogger(__name__)

STOP_MARKET = "STOP_MARKET"
TRAILING_STOP_MARKET = "TRAILING_STOP_MARKET"
WORKING_TYPE = "CONTRACT_PRICE"

# Default distance of a freshly placed fixed stop from the mark price
DEFAULT_FIXED_STOP_DISTANCE = Decimal("0.05")


def default_fixed_stop_price(position: PositionRecord) -> Decimal:
    """Fixed stop 5% beyond the mark price on the losing side."""
    if position.qty > 0:
        return position.mark_price * (1 - DEFAULT_FIXED_STOP_DISTANCE)
    return position.mark_price * (1 + DEFAULT_FIXED_STOP_DISTANCE)


def _base_order(position: PositionRecord, order_type: str, quantity: Decimal) -> Dict:
    return {
        "symbol": position.symbol,
        "side": position.closing_side.value,
        "type": order_type,
        "quantity": quantity,
        "stopPrice": None,
        "callbackRate": None,
        "reduceOnly": True,
        "positionSide": position.position_side,
        "workingType": WORKING_TYPE,
    }


def build_order_requests(
    position: PositionRecord,
    plan: TrailingStopPlan,
    fixed_stop_price=None,
    round_qty: Optional[Rounder] = None,
    round_price: Optional[Rounder] = None
) -> Dict:
    """Build the one or two orders that carry out a trailing-stop plan.

    SmartLayering places a new fixed STOP_MARKET for fixed_qty. Coexist keeps
    its fixed part under the prior static stop, so only the trailing order is
    emitted. Every mode gets a TRAILING_STOP_MARKET for trailing_qty.

    Args:
        position: The position the plan was computed for
        plan: Output of plan_trailing_stops
        fixed_stop_price: Trigger price of the fixed stop; defaults to 5%
            beyond the mark price
        round_qty: Lot rounder (symbol, qty) -> qty
        round_price: Tick rounder (symbol, price) -> price

    Returns:
        Dict with symbol, cancel_existing_stops flag and the list of orders

    Raises:
        ValidationError: If the plan does not belong to the position
    """
    if position.symbol != plan.symbol or position.closing_side is None:
        raise ValidationError(
            ValidationReason.INVALID_CONFIG,
            f"Plan for {plan.symbol} does not match position {position.symbol} "
            f"(qty={position.qty})"
        )

    round_qty = round_qty or identity_rounder
    round_price = round_price or tick_size_rounder({})

    orders: List[Dict] = []

    if plan.mode is TrailingStopModeName.SMART_LAYERING and plan.fixed_qty:
        quantity = round_qty(position.symbol, plan.fixed_qty)
        if quantity > 0:
            stop_price = to_decimal(fixed_stop_price) if fixed_stop_price is not None \
                else default_fixed_stop_price(position)
            order = _base_order(position, STOP_MARKET, quantity)
            order["stopPrice"] = round_price(position.symbol, stop_price)
            orders.append(order)
        else:
            logger.warning(f"{position.symbol}: fixed stop quantity rounds to zero, skipped")

    trailing_qty = round_qty(position.symbol, plan.trailing_qty)
    if trailing_qty > 0:
        order = _base_order(position, TRAILING_STOP_MARKET, trailing_qty)
        # Exchange accepts one decimal place
        order["callbackRate"] = plan.callback_rate.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
        orders.append(order)
    else:
        logger.warning(f"{position.symbol}: trailing stop quantity rounds to zero, skipped")

    logger.info(
        f"{position.symbol}: {len(orders)} order(s) for {plan.mode.value} plan "
        f"(cancel existing stops: {plan.supersedes_existing_stops})"
    )

    return {
        "symbol": position.symbol,
        "cancel_existing_stops": plan.supersedes_existing_stops,
        "orders": orders,
    }


def build_profit_protection_order(
    position: PositionRecord,
    stop_price,
    round_qty: Optional[Rounder] = None,
    round_price: Optional[Rounder] = None
) -> Dict:
    """Single STOP_MARKET order closing the whole position at stop_price.

    The price is moved onto the tick in the direction that keeps the locked-in
    profit (up for a long, down for a short), then checked again against the
    mark price so the emitted trigger is still on the protective side.

    Args:
        position: Open position to protect
        stop_price: Output of compute_stop_price / stop_price_for_position
        round_qty: Lot rounder (symbol, qty) -> qty
        round_price: Rounder from tick_size_rounder; it must accept the
            rounding keyword

    Raises:
        ValidationError: NON_POSITIVE_QUANTITY for a flat or sub-lot position,
            STOP_PRICE_NOT_PROTECTIVE when the tick-aligned price crosses the
            mark price
    """
    if position.closing_side is None:
        raise ValidationError(
            ValidationReason.NON_POSITIVE_QUANTITY,
            f"{position.symbol} has no open quantity"
        )

    round_qty = round_qty or identity_rounder
    round_price = round_price or tick_size_rounder({})

    quantity = round_qty(position.symbol, abs(position.qty))
    if quantity <= ZERO:
        raise ValidationError(
            ValidationReason.NON_POSITIVE_QUANTITY,
            f"{position.symbol}: quantity rounds to zero"
        )

    is_long = position.closing_side is OrderSide.SELL
    price = round_price(
        position.symbol, to_decimal(stop_price),
        rounding=ROUND_CEILING if is_long else ROUND_FLOOR
    )

    if (is_long and price >= position.mark_price) or (not is_long and price <= position.mark_price):
        raise ValidationError(
            ValidationReason.STOP_PRICE_NOT_PROTECTIVE,
            f"{position.symbol}: stop price {price} on the tick is not "
            f"{'below' if is_long else 'above'} current price {position.mark_price}",
            price=price
        )

    order = _base_order(position, STOP_MARKET, quantity)
    order["stopPrice"] = price
    return order
