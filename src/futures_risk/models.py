"""Value types shared by the risk, profit-protection and trailing-stop modules.

Snapshots are immutable and owned by the caller. Everything numeric is held as
Decimal so that portfolio sums do not drift.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional, Union

from .exceptions import DataError

ZERO = Decimal("0")


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Decimal:
    """Convert a number-like value to Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1"), not its binary
    approximation.

    Args:
        value: int, float, str or Decimal
        default: Returned when value is None or an empty string

    Returns:
        Decimal value

    Raises:
        DataError: If the value cannot be parsed and no default is given
    """
    if isinstance(value, Decimal):
        return value
    if value is None or value == "":
        if default is not None:
            return default
        raise DataError("Missing numeric value")
    if isinstance(value, bool):
        raise DataError(f"Expected a number, got {value!r}")
    try:
        result = Decimal(str(value).strip())
    except InvalidOperation:
        raise DataError(f"Invalid numeric value: {value!r}")
    if not result.is_finite():
        raise DataError(f"Non-finite numeric value: {value!r}")
    return result


class Direction(str, Enum):
    """Position direction derived from the sign of the quantity."""
    LONG = "long"
    SHORT = "short"
    FLAT = "flat"


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class TrailingStopModeName(str, Enum):
    """Trailing-stop allocation modes."""
    REPLACE = "replace"
    COEXIST = "coexist"
    SMART_LAYERING = "smart_layering"


class ConditionalOrderStatus(str, Enum):
    """Conditional order lifecycle. TRIGGERED and CANCELLED are terminal."""
    PENDING = "pending"
    TRIGGERED = "triggered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ConditionalOrderStatus.PENDING


class OrderCategory(str, Enum):
    """Whether a conditional order adds to or closes a position."""
    OPEN = "open"
    CLOSE = "close"


@dataclass(frozen=True)
class PositionRecord:
    """One futures position as reported by the exchange."""
    symbol: str
    qty: Decimal
    entry_price: Decimal
    mark_price: Decimal
    leverage: int = 0
    isolated_margin: Decimal = ZERO  # 0 means "not reported"
    unrealized_profit: Decimal = ZERO
    position_side: str = "BOTH"

    def __post_init__(self):
        for name in ('qty', 'entry_price', 'mark_price', 'isolated_margin', 'unrealized_profit'):
            object.__setattr__(self, name, to_decimal(getattr(self, name), ZERO))
        try:
            leverage = int(self.leverage or 0)
        except (TypeError, ValueError):
            raise DataError(f"Invalid leverage for {self.symbol}: {self.leverage!r}")
        object.__setattr__(self, 'leverage', leverage)

    @property
    def notional(self) -> Decimal:
        return abs(self.qty) * self.mark_price

    @property
    def required_margin(self) -> Decimal:
        if self.leverage <= 0:
            return ZERO
        return self.notional / Decimal(self.leverage)

    @property
    def direction(self) -> Direction:
        if self.qty > 0:
            return Direction.LONG
        if self.qty < 0:
            return Direction.SHORT
        return Direction.FLAT

    @property
    def closing_side(self) -> Optional[OrderSide]:
        """Side of a reduce-only order that closes this position."""
        if self.qty > 0:
            return OrderSide.SELL
        if self.qty < 0:
            return OrderSide.BUY
        return None

    @property
    def is_profitable(self) -> bool:
        return self.unrealized_profit > 0

    @property
    def pnl_percent(self) -> Decimal:
        cost = abs(self.qty) * self.entry_price
        if self.entry_price <= 0 or cost == 0:
            return ZERO
        return self.unrealized_profit / cost * 100

    @property
    def profit_rate(self) -> Decimal:
        """Unrealized profit as a percentage of required margin."""
        margin = self.required_margin
        if margin <= 0:
            return ZERO
        return self.unrealized_profit / margin * 100


@dataclass(frozen=True)
class AccountSnapshot:
    """Account balances at one polling instant."""
    equity: Decimal
    available_balance: Decimal = ZERO
    risk_capital_divisor: int = 1
    wallet_balance: Optional[Decimal] = None
    unrealized_profit: Optional[Decimal] = None

    def __post_init__(self):
        object.__setattr__(self, 'equity', to_decimal(self.equity, ZERO))
        object.__setattr__(self, 'available_balance', to_decimal(self.available_balance, ZERO))
        if self.wallet_balance is not None:
            object.__setattr__(self, 'wallet_balance', to_decimal(self.wallet_balance))
        if self.unrealized_profit is not None:
            object.__setattr__(self, 'unrealized_profit', to_decimal(self.unrealized_profit))
        object.__setattr__(self, 'risk_capital_divisor', int(self.risk_capital_divisor))


@dataclass(frozen=True)
class AggregateRiskMetrics:
    """Portfolio-wide risk figures, recomputed on every call."""
    actual_margin_used: Decimal = ZERO
    total_market_value: Decimal = ZERO
    long_market_value: Decimal = ZERO
    short_market_value: Decimal = ZERO
    net_market_value: Decimal = ZERO
    overall_leverage: Decimal = ZERO
    position_count: int = 0


# Trailing-stop modes. Each mode carries only the parameters it uses.

@dataclass(frozen=True)
class ReplaceMode:
    """Trail the whole position; any static stop is superseded."""

    @property
    def name(self) -> TrailingStopModeName:
        return TrailingStopModeName.REPLACE


@dataclass(frozen=True)
class CoexistMode:
    """Trail a share of the position next to the existing static stop."""
    allocation_ratio: Decimal = Decimal("0.3")

    def __post_init__(self):
        object.__setattr__(self, 'allocation_ratio', to_decimal(self.allocation_ratio))

    @property
    def name(self) -> TrailingStopModeName:
        return TrailingStopModeName.COEXIST


@dataclass(frozen=True)
class SmartLayeringMode:
    """Split the position into a fresh fixed stop and a trailing stop."""
    fixed_ratio: Decimal = Decimal("0.7")
    trailing_ratio: Decimal = Decimal("0.3")

    def __post_init__(self):
        object.__setattr__(self, 'fixed_ratio', to_decimal(self.fixed_ratio))
        object.__setattr__(self, 'trailing_ratio', to_decimal(self.trailing_ratio))

    @property
    def name(self) -> TrailingStopModeName:
        return TrailingStopModeName.SMART_LAYERING


TrailingStopMode = Union[ReplaceMode, CoexistMode, SmartLayeringMode]


@dataclass(frozen=True)
class TrailingStopConfig:
    mode: TrailingStopMode = field(default_factory=CoexistMode)
    callback_rate: Decimal = Decimal("1.0")  # percent
    only_for_profitable_positions: bool = True

    def __post_init__(self):
        object.__setattr__(self, 'callback_rate', to_decimal(self.callback_rate))


@dataclass(frozen=True)
class TrailingStopPlan:
    """Quantities to protect for one position."""
    symbol: str
    trailing_qty: Decimal
    fixed_qty: Optional[Decimal]
    callback_rate: Decimal
    mode: TrailingStopModeName
    closing_side: OrderSide
    supersedes_existing_stops: bool = False

    @property
    def protected_qty(self) -> Decimal:
        return self.trailing_qty + (self.fixed_qty if self.fixed_qty is not None else ZERO)


@dataclass
class ConditionalOrderRecord:
    """A stop-style order tracked from submission until it triggers or is cancelled.

    Mutable on purpose; only ConditionalOrderRegistry changes it.
    """
    client_id: str
    symbol: str
    order_type: str
    side: OrderSide
    stop_price: Decimal
    quantity: Decimal
    price: Optional[Decimal] = None
    status: ConditionalOrderStatus = ConditionalOrderStatus.PENDING
    order_id: Optional[int] = None  # assigned by the exchange on submission
    working_type: str = "CONTRACT_PRICE"
    category: OrderCategory = OrderCategory.OPEN
    description: str = ""
    created_at: datetime = field(default_factory=datetime.now)
    closed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def position_from_dict(data: Dict[str, Any]) -> PositionRecord:
    """Build a PositionRecord from an exchange payload or a YAML entry.

    Accepts the exchange's camelCase keys (positionAmt, unRealizedProfit, ...)
    as well as snake_case.

    Raises:
        DataError: If symbol or a numeric field is missing or malformed
    """
    if not isinstance(data, dict):
        raise DataError(f"Position entry must be a mapping, got {type(data).__name__}")

    symbol = _pick(data, 'symbol')
    if not symbol or not isinstance(symbol, str):
        raise DataError("Position entry is missing 'symbol'")

    try:
        leverage = int(_pick(data, 'leverage', default=0))
    except (TypeError, ValueError):
        raise DataError(f"Invalid leverage for {symbol}: {data.get('leverage')!r}")

    return PositionRecord(
        symbol=symbol.upper().strip(),
        qty=to_decimal(_pick(data, 'qty', 'positionAmt', 'position_amt')),
        entry_price=to_decimal(_pick(data, 'entry_price', 'entryPrice'), ZERO),
        mark_price=to_decimal(_pick(data, 'mark_price', 'markPrice'), ZERO),
        leverage=leverage,
        isolated_margin=to_decimal(_pick(data, 'isolated_margin', 'isolatedMargin'), ZERO),
        unrealized_profit=to_decimal(
            _pick(data, 'unrealized_profit', 'unRealizedProfit', 'unrealizedProfit'), ZERO
        ),
        position_side=str(_pick(data, 'position_side', 'positionSide', default='BOTH')),
    )


def account_from_dict(data: Dict[str, Any], risk_capital_divisor: int = 1) -> AccountSnapshot:
    """Build an AccountSnapshot from an exchange payload or a YAML entry.

    Equity is the margin balance (wallet balance plus unrealized PnL).

    Raises:
        DataError: If equity is missing or malformed
    """
    if not isinstance(data, dict):
        raise DataError(f"Account entry must be a mapping, got {type(data).__name__}")

    equity = _pick(data, 'equity', 'totalMarginBalance', 'total_margin_balance')
    if equity is None:
        raise DataError("Account entry is missing 'equity' / 'totalMarginBalance'")

    wallet = _pick(data, 'wallet_balance', 'totalWalletBalance')
    unrealized = _pick(data, 'unrealized_profit', 'totalUnrealizedProfit')
    divisor = _pick(data, 'risk_capital_divisor', 'riskCapitalTimes', default=risk_capital_divisor)
    try:
        divisor = int(divisor)
    except (TypeError, ValueError):
        raise DataError(f"Invalid risk_capital_divisor: {divisor!r}")

    return AccountSnapshot(
        equity=to_decimal(equity),
        available_balance=to_decimal(_pick(data, 'available_balance', 'availableBalance'), ZERO),
        risk_capital_divisor=divisor,
        wallet_balance=to_decimal(wallet) if wallet is not None else None,
        unrealized_profit=to_decimal(unrealized) if unrealized is not None else None,
    )
