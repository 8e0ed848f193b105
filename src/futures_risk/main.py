"""Main CLI entry point for futures-risk."""

import sys
import logging
from typing import Optional, Tuple, List

import yaml
import typer
from rich.console import Console
from rich.markup import escape
from dotenv import load_dotenv

# Relative imports for package
from .config_validator import (
    validate_config,
    trailing_config_from_settings,
    rounders_from_settings,
)
from .models import (
    AccountSnapshot,
    PositionRecord,
    account_from_dict,
    position_from_dict,
    to_decimal,
)
from .order_builder import build_order_requests, build_profit_protection_order
from .profit_protection import stop_price_for_position, suggest_protection_amount
from .reporter import Reporter, positions_frame, plans_frame
from .risk_aggregator import analyze_portfolio_risk
from .trailing_stop import is_eligible, plan_trailing_stops
from .exceptions import (
    ExceptionMapper,
    ConfigError,
    DataError,
    ValidationError,
    EXIT_CONFIG_ERROR,
    EXIT_DATA_ERROR,
    EXIT_VALIDATION_ERROR,
)

# Load environment variables
load_dotenv()

# Initialize Typer app
app = typer.Typer(
    name="futures-risk",
    help="Risk metrics and trailing-stop planning for leveraged futures positions.",
    add_completion=False
)

# Initialize console for output
console = Console()


# Configure logging
def setup_logging(debug: bool = False):
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def _read_yaml(filepath: str, error_cls) -> dict:
    try:
        with open(filepath, 'r') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise error_cls(f"File not found: {filepath}")
    except yaml.YAMLError as e:
        raise error_cls(f"Invalid YAML in {filepath}: {e}")
    return data or {}


def load_config(filepath: str) -> dict:
    """
    Load and validate configuration file.

    Args:
        filepath: Path to configuration YAML file

    Returns:
        Validated configuration dictionary

    Raises:
        ConfigError: If configuration is invalid
    """
    config = _read_yaml(filepath, ConfigError)

    # Validate and normalize configuration
    config = validate_config(config)

    return config


def load_snapshot(filepath: str, risk_capital_divisor: int = 1) -> Tuple[AccountSnapshot, List[PositionRecord]]:
    """
    Load an account/positions snapshot file.

    The file holds an 'account' mapping and a 'positions' list, using either
    exchange field names or snake_case.

    Raises:
        DataError: If the snapshot is malformed
    """
    data = _read_yaml(filepath, DataError)
    if not isinstance(data, dict) or 'account' not in data:
        raise DataError(f"Snapshot {filepath} is missing the 'account' section")

    positions = data.get('positions') or []
    if not isinstance(positions, list):
        raise DataError("Snapshot 'positions' must be a list")

    account = account_from_dict(data['account'], risk_capital_divisor)
    return account, [position_from_dict(p) for p in positions]


def _handle_error(e: Exception, debug: bool):
    """Print an error and exit with the mapped exit code."""
    if isinstance(e, ConfigError):
        console.print(f"\n[red]Configuration error: {escape(str(e))}[/red]")
        sys.exit(EXIT_CONFIG_ERROR)

    if isinstance(e, DataError):
        console.print(f"\n[red]Data error: {escape(str(e))}[/red]")
        sys.exit(EXIT_DATA_ERROR)

    if isinstance(e, ValidationError):
        console.print(f"\n[red]Validation error: {escape(str(e))}[/red]")
        sys.exit(EXIT_VALIDATION_ERROR)

    exit_code = ExceptionMapper.map_to_exit_code(e)
    if debug:
        # In debug mode, show full traceback
        console.print_exception()
    else:
        console.print(f"\n[red]Error: {escape(str(e))}[/red]")
        console.print(f"[dim]Exit code: {exit_code}[/dim]")
        console.print("[dim]Run with --debug for more details[/dim]")
    sys.exit(exit_code)


@app.command()
def risk(
    snapshot_file: str = typer.Argument(..., help="Account/positions snapshot (YAML)"),
    config_file: Optional[str] = typer.Option(
        None,
        "--config-file", "-c",
        help="Path to configuration file"
    ),
    csv: Optional[str] = typer.Option(
        None,
        "--csv",
        help="Export per-position breakdown to CSV"
    ),
    debug: bool = typer.Option(
        False,
        "--debug", "-d",
        help="Enable debug logging"
    )
):
    """
    Show aggregate margin, market value and leverage for a snapshot.
    """
    setup_logging(debug)

    try:
        divisor = 1
        if config_file:
            config = load_config(config_file)
            divisor = config['account']['risk_capital_divisor']

        account, positions = load_snapshot(snapshot_file, divisor)
        analysis = analyze_portfolio_risk(positions, account)

        reporter = Reporter(console)
        reporter.display_risk(analysis)

        if csv:
            reporter.csv_export(positions_frame(positions), csv)

    except Exception as e:
        _handle_error(e, debug)


@app.command()
def plan(
    snapshot_file: str = typer.Argument(..., help="Account/positions snapshot (YAML)"),
    config_file: str = typer.Option(
        "config.yaml",
        "--config-file", "-c",
        help="Path to configuration file"
    ),
    csv: Optional[str] = typer.Option(
        None,
        "--csv",
        help="Export plans to CSV"
    ),
    debug: bool = typer.Option(
        False,
        "--debug", "-d",
        help="Enable debug logging"
    )
):
    """
    Plan trailing stops for the positions in a snapshot.
    """
    setup_logging(debug)

    try:
        config = load_config(config_file)
        _, positions = load_snapshot(snapshot_file, config['account']['risk_capital_divisor'])

        trailing_config = trailing_config_from_settings(config)
        rounders = rounders_from_settings(config)

        plans = plan_trailing_stops(positions, trailing_config, round_qty=rounders['qty'])

        # Plans come back in the same order as the eligible positions
        eligible = [
            p for p in positions
            if is_eligible(p, trailing_config.only_for_profitable_positions)
        ]
        requests = [
            build_order_requests(
                position, p,
                round_qty=rounders['qty'],
                round_price=rounders['price']
            )
            for position, p in zip(eligible, plans)
        ]

        reporter = Reporter(console)
        reporter.display_plans(plans)
        if requests:
            reporter.display_orders(requests)

        if csv:
            reporter.csv_export(plans_frame(plans), csv)

    except Exception as e:
        _handle_error(e, debug)


@app.command("profit-stop")
def profit_stop(
    snapshot_file: str = typer.Argument(..., help="Account/positions snapshot (YAML)"),
    symbol: str = typer.Option(..., "--symbol", "-s", help="Position to protect"),
    target: Optional[str] = typer.Option(
        None,
        "--target", "-t",
        help="Profit to lock in (defaults to half the unrealized profit)"
    ),
    config_file: Optional[str] = typer.Option(
        None,
        "--config-file", "-c",
        help="Path to configuration file"
    ),
    debug: bool = typer.Option(
        False,
        "--debug", "-d",
        help="Enable debug logging"
    )
):
    """
    Compute a guaranteed-profit stop price for one position.
    """
    setup_logging(debug)

    try:
        price_decimals = 4
        round_price = None
        round_qty = None
        if config_file:
            config = load_config(config_file)
            price_decimals = config['profit_protection']['price_decimals']
            rounders = rounders_from_settings(config)
            round_price = rounders['price']
            round_qty = rounders['qty']

        _, positions = load_snapshot(snapshot_file)
        matches = [p for p in positions if p.symbol == symbol.upper() and p.qty != 0]
        if not matches:
            raise DataError(f"No open position for {symbol.upper()}")
        position = matches[0]

        if target is None:
            target_profit = suggest_protection_amount(position.unrealized_profit)
            console.print(f"[dim]Using suggested target: {target_profit}[/dim]")
        else:
            target_profit = to_decimal(target)

        stop_price = stop_price_for_position(position, target_profit, price_decimals)
        order = build_profit_protection_order(
            position, stop_price, round_qty=round_qty, round_price=round_price
        )

        console.print(f"\n[bold]{position.symbol}[/bold] {position.direction.value} "
                      f"x{abs(position.qty)} @ entry {position.entry_price}")
        console.print(f"  • Current price: {position.mark_price}")
        console.print(f"  • Unrealized profit: {position.unrealized_profit}")
        console.print(f"  • Locked-in profit: {target_profit}")
        console.print(f"  • [green]Stop price: {order['stopPrice']}[/green] "
                      f"({order['side']} {order['type']} reduce-only)")

    except Exception as e:
        _handle_error(e, debug)


@app.command()
def version():
    """Show version information."""
    from . import __version__
    console.print(f"futures-risk v{__version__}")


if __name__ == "__main__":
    app()
