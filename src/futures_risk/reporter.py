"""Reporting module for displaying and exporting risk metrics and stop plans."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List

import pandas as pd
from rich.console import Console
from rich.table import Table

from .models import PositionRecord, TrailingStopPlan
from .risk_aggregator import resolve_position_margin

logger = logging.getLogger(__name__)

RISK_LEVEL_STYLES = {
    'LOW': 'green',
    'MEDIUM': 'yellow',
    'HIGH': 'red',
    'EXTREME': 'bold red',
}


def _fmt(value: Any, places: int = 2) -> str:
    if value is None:
        return '-'
    if isinstance(value, Decimal):
        return f"{value:,.{places}f}"
    return str(value)


def positions_frame(positions: Iterable[PositionRecord]) -> pd.DataFrame:
    """Per-position breakdown of the figures that feed the aggregate metrics.

    Numeric values are kept as strings so CSV export keeps full Decimal
    precision.
    """
    rows = []
    for position in positions:
        if position.qty == 0:
            continue
        rows.append({
            'symbol': position.symbol,
            'direction': position.direction.value,
            'qty': str(position.qty),
            'mark_price': str(position.mark_price),
            'notional': str(position.notional),
            'leverage': position.leverage,
            'margin': str(resolve_position_margin(position)),
            'margin_source': 'reported' if position.isolated_margin > 0 else 'computed',
            'unrealized_profit': str(position.unrealized_profit),
        })
    return pd.DataFrame(rows, columns=[
        'symbol', 'direction', 'qty', 'mark_price', 'notional', 'leverage',
        'margin', 'margin_source', 'unrealized_profit'
    ])


def plans_frame(plans: Iterable[TrailingStopPlan]) -> pd.DataFrame:
    """Trailing-stop plans as a DataFrame."""
    rows = [{
        'symbol': plan.symbol,
        'mode': plan.mode.value,
        'side': plan.closing_side.value,
        'trailing_qty': str(plan.trailing_qty),
        'fixed_qty': str(plan.fixed_qty) if plan.fixed_qty is not None else '',
        'callback_rate': str(plan.callback_rate),
        'cancel_existing_stops': plan.supersedes_existing_stops,
    } for plan in plans]
    return pd.DataFrame(rows, columns=[
        'symbol', 'mode', 'side', 'trailing_qty', 'fixed_qty',
        'callback_rate', 'cancel_existing_stops'
    ])


class Reporter:
    """
    Handles result display and export functionality.

    This class is responsible for:
    - Displaying risk metrics, plans and order requests in the console
    - Exporting tables to CSV
    """

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def display_risk(self, analysis: Dict[str, Any]) -> None:
        """
        Display aggregate risk metrics.

        Args:
            analysis: Output of analyze_portfolio_risk
        """
        metrics = analysis['metrics']
        level = analysis['risk_level']
        style = RISK_LEVEL_STYLES.get(level, 'white')

        table = Table(title="Portfolio Risk", show_header=True, header_style="bold cyan")
        table.add_column("Metric", style="cyan", no_wrap=True)
        table.add_column("Value", justify="right")

        table.add_row("Margin used", _fmt(metrics.actual_margin_used))
        table.add_row("Total market value", _fmt(metrics.total_market_value))
        table.add_row("Long market value", _fmt(metrics.long_market_value))
        table.add_row("Short market value", _fmt(metrics.short_market_value))
        table.add_row("Net market value", _fmt(metrics.net_market_value))
        table.add_row("Overall leverage", f"{_fmt(metrics.overall_leverage)}x")
        table.add_row("Available risk capital", _fmt(analysis['available_risk_capital']))
        table.add_row("Margin utilization", f"{_fmt(analysis['margin_utilization_pct'], 1)}%")
        table.add_row("Unrealized PnL", f"{_fmt(analysis['pnl_pct'])}%")
        table.add_row("Open positions", str(analysis['position_count']))
        table.add_row("Risk level", f"[{style}]{level}[/{style}]")

        self.console.print(table)

    def display_plans(self, plans: List[TrailingStopPlan]) -> None:
        """Display trailing-stop plans."""
        if not plans:
            self.console.print("[yellow]No eligible positions for trailing stops[/yellow]")
            return

        table = Table(title="Trailing Stop Plans", show_header=True, header_style="bold cyan")
        table.add_column("Symbol", style="cyan", no_wrap=True)
        table.add_column("Mode")
        table.add_column("Side")
        table.add_column("Trailing Qty", justify="right", style="green")
        table.add_column("Fixed Qty", justify="right")
        table.add_column("Callback %", justify="right")
        table.add_column("Cancel Stops")

        for plan in plans:
            table.add_row(
                plan.symbol,
                plan.mode.value,
                plan.closing_side.value,
                str(plan.trailing_qty),
                str(plan.fixed_qty) if plan.fixed_qty is not None else '-',
                str(plan.callback_rate),
                'yes' if plan.supersedes_existing_stops else 'no',
            )

        self.console.print(table)

    def display_orders(self, requests: List[Dict[str, Any]]) -> None:
        """Display the reduce-only order requests built from plans."""
        table = Table(title="Order Requests", show_header=True, header_style="bold cyan")
        table.add_column("Symbol", style="cyan", no_wrap=True)
        table.add_column("Type")
        table.add_column("Side")
        table.add_column("Qty", justify="right")
        table.add_column("Stop Price", justify="right")
        table.add_column("Callback %", justify="right")

        for request in requests:
            for order in request['orders']:
                table.add_row(
                    order['symbol'],
                    order['type'],
                    order['side'],
                    str(order['quantity']),
                    _fmt(order['stopPrice'], 4) if order['stopPrice'] is not None else '-',
                    str(order['callbackRate']) if order['callbackRate'] is not None else '-',
                )

        self.console.print(table)

    def csv_export(self, df: pd.DataFrame, filepath: str) -> None:
        """
        Export a table to CSV with full precision.

        Args:
            df: DataFrame to export
            filepath: Path for the CSV file
        """
        if df.empty:
            logger.warning("No rows to export")
            return

        df.to_csv(filepath, index=False)
        logger.info(f"Exported {len(df)} rows to {filepath}")
        self.console.print(f"\n[green]✓ Exported to {filepath}[/green]")
