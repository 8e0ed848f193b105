"""Configuration validation and normalization for futures-risk."""

import logging
from decimal import Decimal
from typing import Any, Dict

from .exceptions import ConfigError, DataError
from .models import (
    CoexistMode,
    ReplaceMode,
    SmartLayeringMode,
    TrailingStopConfig,
    TrailingStopModeName,
    to_decimal,
)
from .rounding import DEFAULT_PRICE_DECIMALS, Rounder, step_size_rounder, tick_size_rounder

logger = logging.getLogger(__name__)

MODE_ALIASES = {
    'replace': TrailingStopModeName.REPLACE,
    'coexist': TrailingStopModeName.COEXIST,
    'smart_layering': TrailingStopModeName.SMART_LAYERING,
    'smartlayering': TrailingStopModeName.SMART_LAYERING,
    'layering': TrailingStopModeName.SMART_LAYERING,
}


def _number(section: Dict[str, Any], key: str, section_name: str) -> Decimal:
    try:
        return to_decimal(section[key])
    except DataError:
        raise ConfigError(f"{section_name}.{key} must be a number, got {section[key]!r}")


def validate_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate and normalize the configuration.

    Checks required sections, validates ranges of the user-facing
    (percent-based) settings and fills in defaults.

    Args:
        config: Raw configuration dictionary

    Returns:
        Validated and normalized configuration

    Raises:
        ConfigError: If configuration is invalid
    """
    if not isinstance(config, dict):
        raise ConfigError("Configuration must be a mapping")

    # Check required top-level sections
    required_sections = ['account', 'trailing_stop']
    for section in required_sections:
        if section not in config:
            raise ConfigError(f"Missing required configuration section: {section}")

    config = _validate_account(config)
    config = _validate_trailing_stop(config)
    config = _validate_precision(config)
    config = _validate_profit_protection(config)

    return config


def _validate_account(config: Dict[str, Any]) -> Dict[str, Any]:
    """Validate account settings."""
    account = config['account'] or {}
    config['account'] = account

    if 'risk_capital_divisor' not in account:
        account['risk_capital_divisor'] = 1

    divisor = account['risk_capital_divisor']
    if isinstance(divisor, bool) or not isinstance(divisor, int) or divisor < 1:
        raise ConfigError("risk_capital_divisor must be a positive integer")

    return config


def _validate_trailing_stop(config: Dict[str, Any]) -> Dict[str, Any]:
    """Validate trailing stop settings (percent units)."""
    ts = config['trailing_stop'] or {}
    config['trailing_stop'] = ts

    raw_mode = str(ts.get('mode', 'coexist')).lower().strip().replace('-', '_').replace(' ', '_')
    if raw_mode not in MODE_ALIASES:
        raise ConfigError(
            f"Invalid trailing stop mode: {ts.get('mode')}. "
            f"Must be one of ['replace', 'coexist', 'smart_layering']"
        )
    ts['mode'] = MODE_ALIASES[raw_mode].value

    # Defaults match the trading tool's initial settings
    ts.setdefault('allocation_pct', 30)
    ts.setdefault('fixed_stop_pct', 70)
    ts.setdefault('trailing_stop_pct', 30)
    ts.setdefault('callback_rate', 1.0)
    ts.setdefault('only_profitable', True)

    callback_rate = _number(ts, 'callback_rate', 'trailing_stop')
    if not Decimal("0.1") <= callback_rate <= Decimal("10.0"):
        raise ConfigError("callback_rate must be between 0.1 and 10.0 percent")
    rounded = callback_rate.quantize(Decimal("0.1"))
    if rounded != callback_rate:
        logger.info(f"Rounded callback_rate from {callback_rate} to {rounded} (one decimal)")
    ts['callback_rate'] = rounded

    allocation = _number(ts, 'allocation_pct', 'trailing_stop')
    if not 1 <= allocation <= 100:
        raise ConfigError("allocation_pct must be between 1 and 100")
    ts['allocation_pct'] = allocation

    fixed = _number(ts, 'fixed_stop_pct', 'trailing_stop')
    trailing = _number(ts, 'trailing_stop_pct', 'trailing_stop')
    if fixed <= 0 or trailing <= 0:
        raise ConfigError("fixed_stop_pct and trailing_stop_pct must be positive")
    if ts['mode'] == TrailingStopModeName.SMART_LAYERING.value and abs(fixed + trailing - 100) > Decimal("0.1"):
        raise ConfigError(
            f"fixed_stop_pct + trailing_stop_pct must equal 100, got {fixed + trailing}"
        )
    ts['fixed_stop_pct'] = fixed
    ts['trailing_stop_pct'] = trailing

    if not isinstance(ts['only_profitable'], bool):
        raise ConfigError("only_profitable must be true or false")

    return config


def _validate_precision(config: Dict[str, Any]) -> Dict[str, Any]:
    """Validate per-symbol lot and tick sizes."""
    precision = config.get('precision') or {}
    config['precision'] = precision

    symbols = precision.get('symbols') or {}
    if not isinstance(symbols, dict):
        raise ConfigError("precision.symbols must be a mapping of symbol to sizes")

    normalized = {}
    for symbol, sizes in symbols.items():
        if not isinstance(sizes, dict):
            raise ConfigError(f"precision for {symbol} must be a mapping")
        entry = {}
        for key in ('step_size', 'tick_size'):
            if key in sizes:
                value = _number(sizes, key, f"precision.{symbol}")
                if value <= 0:
                    raise ConfigError(f"precision.{symbol}.{key} must be positive")
                entry[key] = value
        normalized[str(symbol).upper()] = entry

    precision['symbols'] = normalized
    logger.debug(f"Loaded precision for {len(normalized)} symbols")

    return config


def _validate_profit_protection(config: Dict[str, Any]) -> Dict[str, Any]:
    """Validate guaranteed-profit stop settings."""
    pp = config.get('profit_protection') or {}
    config['profit_protection'] = pp

    if 'price_decimals' not in pp:
        pp['price_decimals'] = DEFAULT_PRICE_DECIMALS

    decimals = pp['price_decimals']
    if isinstance(decimals, bool) or not isinstance(decimals, int) or not 0 <= decimals <= 12:
        raise ConfigError("profit_protection.price_decimals must be an integer between 0 and 12")

    return config


def trailing_config_from_settings(config: Dict[str, Any]) -> TrailingStopConfig:
    """Convert the validated percent-based section into a TrailingStopConfig."""
    ts = config['trailing_stop']
    mode_name = TrailingStopModeName(ts['mode'])

    if mode_name is TrailingStopModeName.REPLACE:
        mode = ReplaceMode()
    elif mode_name is TrailingStopModeName.COEXIST:
        mode = CoexistMode(allocation_ratio=ts['allocation_pct'] / 100)
    else:
        mode = SmartLayeringMode(
            fixed_ratio=ts['fixed_stop_pct'] / 100,
            trailing_ratio=ts['trailing_stop_pct'] / 100,
        )

    return TrailingStopConfig(
        mode=mode,
        callback_rate=ts['callback_rate'],
        only_for_profitable_positions=ts['only_profitable'],
    )


def rounders_from_settings(config: Dict[str, Any]) -> Dict[str, Rounder]:
    """Lot and tick rounders built from the validated precision section."""
    symbols = config['precision']['symbols']
    steps = {s: sizes['step_size'] for s, sizes in symbols.items() if 'step_size' in sizes}
    ticks = {s: sizes['tick_size'] for s, sizes in symbols.items() if 'tick_size' in sizes}
    return {
        'qty': step_size_rounder(steps),
        'price': tick_size_rounder(ticks, config['profit_protection']['price_decimals']),
    }
