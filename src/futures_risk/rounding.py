"""Lot and tick rounding for order quantities and prices.

Exchange precision is never hardcoded here: callers pass per-symbol step and
tick sizes (usually from the exchange's symbol filters) and get back a rounding
function with the (symbol, value) -> Decimal signature the planners expect.
"""

import logging
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN
from typing import Callable, Dict, Mapping, Optional

from .models import to_decimal

logger = logging.getLogger(__name__)

Rounder = Callable[[str, Decimal], Decimal]

DEFAULT_PRICE_DECIMALS = 4


def decimal_places(value: Decimal) -> int:
    """Number of significant fractional digits, e.g. 0.0010 -> 3."""
    normalized = to_decimal(value).normalize()
    exponent = normalized.as_tuple().exponent
    return max(0, -exponent)


def round_to_step(quantity: Decimal, step_size: Decimal) -> Decimal:
    """Floor a quantity to a multiple of the lot step.

    Always rounds down so a reduce-only order never asks for more than is held.
    A non-positive step leaves the quantity unchanged.
    """
    quantity = to_decimal(quantity)
    step_size = to_decimal(step_size)
    if step_size <= 0:
        return quantity
    steps = (quantity / step_size).to_integral_value(rounding=ROUND_DOWN)
    return (steps * step_size).quantize(Decimal(1).scaleb(-decimal_places(step_size)))


def round_to_tick(price: Decimal, tick_size: Decimal, rounding: str = ROUND_DOWN) -> Decimal:
    """Round a price to a multiple of the tick size, flooring by default.

    Falls back to DEFAULT_PRICE_DECIMALS places when no usable tick is known.
    """
    price = to_decimal(price)
    tick_size = to_decimal(tick_size)
    if tick_size <= 0:
        return round_price(price, DEFAULT_PRICE_DECIMALS)
    steps = (price / tick_size).to_integral_value(rounding=rounding)
    places = decimal_places(tick_size)
    return (steps * tick_size).quantize(Decimal(1).scaleb(-places))


def round_price(
    price: Decimal,
    decimals: int = DEFAULT_PRICE_DECIMALS,
    rounding: str = ROUND_HALF_EVEN
) -> Decimal:
    """Round to a fixed number of fractional digits, half to even by default."""
    if decimals < 0:
        raise ValueError("decimals cannot be negative")
    return to_decimal(price).quantize(Decimal(1).scaleb(-decimals), rounding=rounding)


def step_size_rounder(
    step_sizes: Mapping[str, Decimal],
    default_step: Optional[Decimal] = None
) -> Rounder:
    """Build a quantity rounder from a symbol -> step size table.

    Args:
        step_sizes: Lot step per symbol
        default_step: Step used for symbols missing from the table;
            None leaves their quantities unrounded

    Returns:
        Function (symbol, qty) -> rounded qty
    """
    table: Dict[str, Decimal] = {
        symbol.upper(): to_decimal(step) for symbol, step in step_sizes.items()
    }
    fallback = to_decimal(default_step) if default_step is not None else None

    def _round(symbol: str, qty: Decimal) -> Decimal:
        step = table.get(symbol.upper(), fallback)
        if step is None:
            logger.debug(f"No step size for {symbol}, quantity left unrounded")
            return to_decimal(qty)
        return round_to_step(qty, step)

    return _round


def tick_size_rounder(
    tick_sizes: Mapping[str, Decimal],
    default_decimals: int = DEFAULT_PRICE_DECIMALS
) -> Rounder:
    """Build a price rounder from a symbol -> tick size table.

    Symbols without a tick size are rounded to default_decimals places.
    The returned function floors to the tick (half-even for the decimal
    fallback) unless a decimal rounding mode is passed, e.g. ROUND_CEILING
    to round a long's profit stop up.
    """
    table: Dict[str, Decimal] = {
        symbol.upper(): to_decimal(tick) for symbol, tick in tick_sizes.items()
    }

    def _round(symbol: str, price: Decimal, rounding: Optional[str] = None) -> Decimal:
        tick = table.get(symbol.upper())
        if tick is None:
            return round_price(price, default_decimals, rounding or ROUND_HALF_EVEN)
        return round_to_tick(price, tick, rounding or ROUND_DOWN)

    return _round


def identity_rounder(symbol: str, value: Decimal) -> Decimal:
    """Leave values untouched (ideal, un-rounded split)."""
    return to_decimal(value)
