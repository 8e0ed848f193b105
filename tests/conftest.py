"""Shared fixtures for futures-risk tests."""

from decimal import Decimal

import pytest

from futures_risk.models import AccountSnapshot, PositionRecord


@pytest.fixture
def scenario_positions():
    """BTC long, ETH short and a flat ADA position."""
    return [
        PositionRecord(symbol='BTCUSDT', qty='0.1', entry_price='48000', mark_price='50000',
                       leverage=10, unrealized_profit='200'),
        PositionRecord(symbol='ETHUSDT', qty='-2', entry_price='3100', mark_price='3000',
                       leverage=5, isolated_margin='1210.5', unrealized_profit='200'),
        PositionRecord(symbol='ADAUSDT', qty='0', entry_price='0', mark_price='0.45',
                       leverage=20),
    ]


@pytest.fixture
def account():
    return AccountSnapshot(
        equity=Decimal('10000'),
        available_balance=Decimal('7500'),
        risk_capital_divisor=5,
        wallet_balance=Decimal('9600'),
        unrealized_profit=Decimal('400'),
    )
