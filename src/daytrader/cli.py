"""
Command-line interface for the daytrader engine.
"""

import asyncio
import logging
import signal
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .backtesting import BacktestEngine, DayTradingBacktestStrategy, GridSearchOptimizer, load_bars, parse_grid_option
from .config import Config
from .exceptions import DaytraderError
from .logger import configure_logging
from .models.backtest import BacktestResult
from .runner import build_paper_engine, load_quotes, run_until_stopped
from .trading import TradingStateMachine


def _load_config(path: Optional[Path]) -> Config:
    if path is None:
        return Config.load_from_env()
    if path.suffix.lower() in (".yaml", ".yml", ".json"):
        return Config.load_from_file(str(path))
    return Config.load_from_env(str(path))


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(f"Expected YYYY-MM-DD, got {value!r}")


@click.group()
@click.version_option(version=__version__, prog_name="daytrader")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (.yaml, .json or .env)"
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging"
)
@click.pass_context
def main(ctx: click.Context, config: Optional[Path], verbose: bool) -> None:
    """
    Daytrader: quorum-driven single-position day trading engine.

    Aggregates opinions from several signal sources, trades one position per
    day under strict risk rules, and backtests the same rules offline.
    """
    ctx.ensure_object(dict)

    try:
        ctx.obj["config"] = _load_config(config)
    except DaytraderError as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)

    if verbose:
        ctx.obj["config"].logging.level = "DEBUG"

    configure_logging(ctx.obj["config"].logging)
    ctx.obj["logger"] = logging.getLogger("daytrader.cli")


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show trading configuration."""
    config: Config = ctx.obj["config"]
    console = Console()

    mode = "paper" if config.trading.paper_trading else "LIVE"
    console.print(Panel(
        f"Trading enabled: {config.trading.enabled}\n"
        f"Mode: {mode}\n"
        f"Confirm before trade: {config.trading.confirm_before_trade}",
        title=f"daytrader {__version__}",
    ))

    schedule = Table(title="Schedule", show_header=True, header_style="bold magenta")
    schedule.add_column("Setting", style="cyan")
    schedule.add_column("Value", style="green")
    schedule.add_row("Timezone", config.schedule.timezone)
    schedule.add_row("Buy time", config.schedule.buy_time)
    schedule.add_row("Monitoring from", config.schedule.sell_check_start)
    schedule.add_row("Check interval", f"{config.schedule.sell_check_interval:.0f}s")
    schedule.add_row("Forced close", config.schedule.force_close_time)
    console.print(schedule)

    risk = config.risk_management
    risk_table = Table(title="Risk Management", show_header=True, header_style="bold magenta")
    risk_table.add_column("Rule", style="cyan")
    risk_table.add_column("Value", style="green")
    risk_table.add_row("Stop loss", f"{float(risk.stop_loss) * 100:.1f}%")
    risk_table.add_row("Emergency stop loss", f"{float(risk.emergency_stop_loss) * 100:.1f}%")
    risk_table.add_row("Take profit", f"{float(risk.take_profit) * 100:.1f}%")
    risk_table.add_row("Take profit override", f"{float(risk.take_profit_override) * 100:.1f}%")
    risk_table.add_row("Max position size", f"${risk.max_position_size:,.2f}")
    risk_table.add_row("Max daily trades", str(risk.max_daily_trades))
    console.print(risk_table)

    ratios = ", ".join(f"{n}:{r:.2f}" for n, r in sorted(config.signals.quorum_ratios.items()))
    console.print(
        f"Quorum ratios: {ratios} (default {config.signals.default_ratio:.2f}), "
        f"min sources {config.signals.min_sources}, timeout {config.signals.timeout:.0f}s"
    )
    ctx.obj["logger"].info("Status command executed")


def _print_result(console: Console, result: BacktestResult, title: str = "Backtest Summary") -> None:
    perf = result.performance
    risk = result.risk_metrics
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Strategy", result.strategy_name)
    table.add_row("Symbols", ", ".join(result.symbols))
    table.add_row("Start Date", str(result.start_date))
    table.add_row("End Date", str(result.end_date))
    table.add_row("Initial Capital", f"${result.initial_capital:,.2f}")
    table.add_row("Final Capital", f"${result.final_capital:,.2f}")
    table.add_row("Total Return (%)", f"{perf.total_return_percent:.2f}%")
    table.add_row("Annualized Return (%)", f"{perf.annualized_return * 100:.2f}%")
    table.add_row("Max Drawdown (%)", f"{perf.max_drawdown_percent:.2f}%")
    table.add_row("Sharpe Ratio", f"{perf.sharpe_ratio:.2f}")
    table.add_row("Sortino Ratio", f"{perf.sortino_ratio:.2f}")
    table.add_row("Win Rate (%)", f"{perf.win_rate:.2f}")
    table.add_row("Profit Factor", f"{perf.profit_factor:.2f}")
    table.add_row("Total Trades", str(perf.total_trades))
    table.add_row("VaR 95%", f"{risk.var_95 * 100:.2f}%")
    table.add_row("CVaR 95%", f"{risk.cvar_95 * 100:.2f}%")
    console.print(table)


@main.command()
@click.option("--bars", "bar_files", multiple=True, required=True, type=click.Path(exists=True), help="CSV file(s) of daily bars")
@click.option("--start-date", default=None, help="Backtest start date (YYYY-MM-DD)")
@click.option("--end-date", default=None, help="Backtest end date (YYYY-MM-DD)")
@click.option("--initial-capital", default=None, type=float, help="Initial capital for backtest")
@click.option("--output-path", default=None, help="Directory to save the JSON result")
@click.pass_context
def backtest(
    ctx: click.Context,
    bar_files: Tuple[str, ...],
    start_date: Optional[str],
    end_date: Optional[str],
    initial_capital: Optional[float],
    output_path: Optional[str],
) -> None:
    """Replay the day trading rules over historical bars and print a summary."""
    config: Config = ctx.obj["config"]
    console = Console()

    backtest_config = config.backtest
    if initial_capital is not None:
        backtest_config = backtest_config.model_copy(update={"initial_capital": Decimal(str(initial_capital))})

    try:
        bars = load_bars(bar_files)
        engine = BacktestEngine(backtest_config, output_path=output_path)
        strategy = DayTradingBacktestStrategy(risk=config.risk_management, signals=config.signals)
        result = asyncio.run(engine.run_backtest(
            strategy, bars, start_date=_parse_date(start_date), end_date=_parse_date(end_date)
        ))
    except DaytraderError as e:
        console.print(f"[red]Backtest failed: {e}[/red]")
        sys.exit(1)

    _print_result(console, result)
    analysis = engine.analyze_performance(result)
    console.print(Panel("\n".join(analysis["recommendations"]), title="Recommendations", style="yellow"))

    if output_path or backtest_config.output_path:
        saved = engine.save_result(result)
        console.print(Panel(f"Backtest ID: {result.backtest_id}\nSaved at: {saved}", title="Result Info", style="green"))


@main.command()
@click.option("--bars", "bar_files", multiple=True, required=True, type=click.Path(exists=True), help="CSV file(s) of daily bars")
@click.option("--param", "params", multiple=True, required=True, help="Grid axis as name=v1,v2,... (repeatable)")
@click.option("--start-date", default=None, help="Backtest start date (YYYY-MM-DD)")
@click.option("--end-date", default=None, help="Backtest end date (YYYY-MM-DD)")
@click.pass_context
def optimize(
    ctx: click.Context,
    bar_files: Tuple[str, ...],
    params: Tuple[str, ...],
    start_date: Optional[str],
    end_date: Optional[str],
) -> None:
    """Grid-search strategy parameters by total return."""
    config: Config = ctx.obj["config"]
    console = Console()

    try:
        grid = parse_grid_option(params)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--param")

    try:
        bars = load_bars(bar_files)
        optimizer = GridSearchOptimizer(
            BacktestEngine(config.backtest),
            DayTradingBacktestStrategy(risk=config.risk_management, signals=config.signals),
            bars,
            grid,
            start_date=_parse_date(start_date),
            end_date=_parse_date(end_date),
        )
        result = optimizer.optimize()
    except (DaytraderError, ValueError) as e:
        console.print(f"[red]Optimization failed: {e}[/red]")
        sys.exit(1)

    sweep = Table(title="Parameter Sweep", show_header=True, header_style="bold magenta")
    sweep.add_column("#", style="cyan")
    for name in grid:
        sweep.add_column(name)
    sweep.add_column("Return (%)", style="green")
    for entry in result.parameter_sweep:
        outcome = (
            f"{entry.performance.performance.total_return_percent:.2f}"
            if entry.performance is not None else f"[red]{entry.error}[/red]"
        )
        marker = "*" if entry.iteration == result.best_iteration else ""
        sweep.add_row(f"{entry.iteration}{marker}", *[str(entry.parameters.get(n)) for n in grid], outcome)
    console.print(sweep)

    _print_result(console, result.best_performance, title="Best Result")
    best = ", ".join(f"{k}={v}" for k, v in result.best_parameters.items())
    console.print(Panel(best, title=f"Best Parameters (iteration {result.best_iteration})", style="green"))


def _paper_engine(ctx: click.Context, quotes_file: Path, console: Console) -> TradingStateMachine:
    config: Config = ctx.obj["config"]
    if not config.trading.paper_trading:
        console.print("[red]Only paper trading is available from the command line (trading.paper_trading = false)[/red]")
        sys.exit(1)
    try:
        quotes, sectors = load_quotes(quotes_file)
    except DaytraderError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    return build_paper_engine(config, quotes, sectors, console=console)


async def _run_scheduler(machine: TradingStateMachine, duration: Optional[float]) -> bool:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_stop(signum, frame):
        loop.call_soon_threadsafe(stop_event.set)

    previous = {sig: signal.signal(sig, request_stop) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        return await run_until_stopped(machine, stop_event, duration)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


async def _test_run(machine: TradingStateMachine, pause: float) -> str:
    try:
        return await machine.test_run(pause=pause)
    finally:
        await machine.stop()


@main.command()
@click.option("--quotes", "quotes_file", required=True, type=click.Path(exists=True, path_type=Path), help="JSON/YAML quotes for the paper market")
@click.option("--duration", default=None, type=float, help="Stop after this many seconds (default: until interrupted)")
@click.pass_context
def run(ctx: click.Context, quotes_file: Path, duration: Optional[float]) -> None:
    """Run the paper trading scheduler until interrupted."""
    config: Config = ctx.obj["config"]
    console = Console()
    machine = _paper_engine(ctx, quotes_file, console)

    console.print(Panel(
        f"Buy at {config.schedule.buy_time}, monitoring from {config.schedule.sell_check_start}, "
        f"forced close at {config.schedule.force_close_time} ({config.schedule.timezone})\n"
        "Press Ctrl+C to stop",
        title="Paper Trading",
        style="blue",
    ))

    if not asyncio.run(_run_scheduler(machine, duration)):
        console.print("[yellow]Scheduler did not start: automated trading is disabled (trading.enabled = false)[/yellow]")
        sys.exit(1)

    console.print(Panel(machine.generate_daily_report(), title="Session Report", style="green"))


@main.command("test-run")
@click.option("--quotes", "quotes_file", required=True, type=click.Path(exists=True, path_type=Path), help="JSON/YAML quotes for the paper market")
@click.option("--pause", default=5.0, type=float, help="Seconds between the buy phase and the monitoring tick")
@click.pass_context
def paper_test_run(ctx: click.Context, quotes_file: Path, pause: float) -> None:
    """Run one buy phase and one monitoring tick now against the paper market."""
    console = Console()
    machine = _paper_engine(ctx, quotes_file, console)

    report = asyncio.run(_test_run(machine, pause))
    console.print(Panel(report, title="Test Run", style="green"))


if __name__ == "__main__":
    main()
