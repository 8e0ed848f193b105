"""Portfolio risk aggregation.

Turns position and account snapshots into margin, market-value and leverage
figures. Every function here is pure: inputs are read, never stored or changed.
"""

import logging
from decimal import Decimal, ROUND_CEILING
from typing import Dict, Iterable, Optional

from .exceptions import ValidationError, ValidationReason
from .models import (
    ZERO,
    AccountSnapshot,
    AggregateRiskMetrics,
    OrderSide,
    PositionRecord,
    to_decimal,
)
from .rounding import Rounder

logger = logging.getLogger(__name__)

# Margin utilization thresholds (percent) for risk levels
RISK_LEVELS = (
    (Decimal("30"), "LOW"),
    (Decimal("60"), "MEDIUM"),
    (Decimal("80"), "HIGH"),
)
EXTREME_RISK = "EXTREME"
MARGIN_WARNING_PCT = Decimal("80")
MARGIN_DIFF_TOLERANCE = Decimal("0.01")


def resolve_position_margin(position: PositionRecord) -> Decimal:
    """Margin backing a single position.

    The exchange-reported isolated margin wins when it is positive; otherwise
    the margin is computed as notional / leverage (0 when leverage <= 0).
    """
    reported = position.isolated_margin
    computed = position.required_margin

    if reported > 0:
        if computed > 0 and abs(reported - computed) > MARGIN_DIFF_TOLERANCE:
            logger.debug(
                f"{position.symbol}: reported margin {reported} differs from "
                f"computed {computed} by {abs(reported - computed)}"
            )
        logger.debug(f"{position.symbol}: margin={reported} (reported)")
        return reported

    logger.debug(f"{position.symbol}: margin={computed} (computed, leverage={position.leverage}x)")
    return computed


def compute_aggregate_risk(
    positions: Optional[Iterable[PositionRecord]],
    equity
) -> AggregateRiskMetrics:
    """Aggregate margin and market value across all open positions.

    Flat positions are ignored. An empty or missing position list yields all
    zeros rather than an error.

    Args:
        positions: Position snapshots (may be None)
        equity: Account equity (margin balance including unrealized PnL)

    Returns:
        Fresh AggregateRiskMetrics
    """
    equity = to_decimal(equity, ZERO)

    margin_used = ZERO
    long_value = ZERO
    short_value = ZERO
    count = 0

    for position in positions or ():
        if position.qty == 0:
            continue

        count += 1
        margin_used += resolve_position_margin(position)

        if position.qty > 0:
            long_value += position.notional
        else:
            short_value += position.notional

    total_value = long_value + short_value
    overall_leverage = total_value / equity if equity > 0 else ZERO

    metrics = AggregateRiskMetrics(
        actual_margin_used=margin_used,
        total_market_value=total_value,
        long_market_value=long_value,
        short_market_value=short_value,
        net_market_value=long_value - short_value,
        overall_leverage=overall_leverage,
        position_count=count,
    )

    logger.debug(
        f"Aggregated {count} positions: margin={margin_used}, total={total_value}, "
        f"long={long_value}, short={short_value}, leverage={overall_leverage}"
    )

    return metrics


def available_risk_capital(account: AccountSnapshot) -> Decimal:
    """Share of equity available as risk capital (equity / N).

    Raises:
        ValidationError: If the divisor is not a positive integer
    """
    if account.risk_capital_divisor <= 0:
        raise ValidationError(
            ValidationReason.INVALID_CONFIG,
            f"risk_capital_divisor must be positive, got {account.risk_capital_divisor}"
        )
    return account.equity / Decimal(account.risk_capital_divisor)


def max_risk_capital(available_balance, risk_fraction=Decimal("0.1")) -> Decimal:
    """Maximum risk capital, rounded up to a whole unit.

    Args:
        available_balance: Free balance
        risk_fraction: Fraction of the balance to risk (0.1 = 10%)
    """
    max_risk = to_decimal(available_balance) * to_decimal(risk_fraction)
    return max_risk.to_integral_value(rounding=ROUND_CEILING)


def stop_loss_price(current_price, stop_loss_pct, side) -> Decimal:
    """Stop price a given percentage away from the current price.

    A BUY (long entry) stops below the price, a SELL (short entry) above it.
    Non-positive inputs give 0.
    """
    current_price = to_decimal(current_price)
    stop_loss_pct = to_decimal(stop_loss_pct)
    if current_price <= 0 or stop_loss_pct <= 0:
        return ZERO

    if OrderSide(str(getattr(side, 'value', side)).upper()) is OrderSide.BUY:
        return current_price * (1 - stop_loss_pct / 100)
    return current_price * (1 + stop_loss_pct / 100)


def quantity_from_loss(
    stop_loss_amount,
    current_price,
    stop_loss_pct,
    symbol: str = "",
    round_qty: Optional[Rounder] = None
) -> Decimal:
    """Size a position so that hitting the stop loses stop_loss_amount.

    quantity = amount / (pct / 100 * price)

    Args:
        stop_loss_amount: Money to risk
        current_price: Entry reference price
        stop_loss_pct: Stop distance in percent
        symbol: Instrument, passed to round_qty
        round_qty: Optional lot rounder

    Returns:
        Quantity (0 if any input is non-positive)
    """
    amount = to_decimal(stop_loss_amount)
    price = to_decimal(current_price)
    pct = to_decimal(stop_loss_pct)

    if amount <= 0 or price <= 0 or pct <= 0:
        logger.warning(
            f"Invalid loss-based sizing inputs: amount={amount}, price={price}, pct={pct}"
        )
        return ZERO

    quantity = amount / (pct / 100 * price)
    if round_qty is not None:
        quantity = round_qty(symbol, quantity)

    logger.info(f"Loss-based sizing: amount={amount}, price={price}, pct={pct}% -> qty={quantity}")
    return quantity


def max_position_size(
    available_balance,
    current_price,
    stop_loss_pct,
    risk_fraction=Decimal("0.02")
) -> Decimal:
    """Largest position whose stop-out loses at most risk_fraction of the balance."""
    price = to_decimal(current_price)
    pct = to_decimal(stop_loss_pct)
    if price <= 0 or pct <= 0:
        return ZERO

    max_risk = max_risk_capital(available_balance, risk_fraction)
    return max_risk / (price * (pct / 100))


def classify_risk_level(margin_utilization_pct: Decimal) -> str:
    for threshold, level in RISK_LEVELS:
        if margin_utilization_pct < threshold:
            return level
    return EXTREME_RISK


def analyze_portfolio_risk(
    positions: Optional[Iterable[PositionRecord]],
    account: AccountSnapshot
) -> Dict:
    """Summarize portfolio risk for display.

    Margin utilization is measured against the wallet balance when the
    snapshot carries one, otherwise against equity.

    Args:
        positions: Position snapshots
        account: Account snapshot

    Returns:
        Dict with metrics, margin_utilization_pct, pnl_pct, risk_level and
        position_count
    """
    positions = list(positions or ())
    metrics = compute_aggregate_risk(positions, account.equity)

    base = account.wallet_balance if account.wallet_balance is not None else account.equity
    if account.unrealized_profit is not None:
        unrealized = account.unrealized_profit
    else:
        unrealized = sum((p.unrealized_profit for p in positions if p.qty != 0), ZERO)

    if base > 0:
        utilization = metrics.actual_margin_used / base * 100
        pnl_pct = unrealized / base * 100
    else:
        utilization = ZERO
        pnl_pct = ZERO

    risk_level = classify_risk_level(utilization)

    logger.info(
        f"Portfolio risk: {risk_level}, margin utilization {utilization:.1f}%, "
        f"unrealized {pnl_pct:.2f}%, {metrics.position_count} positions"
    )
    if utilization > MARGIN_WARNING_PCT:
        logger.warning("Margin utilization above 80%, consider lowering leverage or reducing positions")

    return {
        'metrics': metrics,
        'margin_utilization_pct': utilization,
        'pnl_pct': pnl_pct,
        'risk_level': risk_level,
        'position_count': metrics.position_count,
        'available_risk_capital': available_risk_capital(account),
    }
