"""
Paper trading runner.

Builds the live engine from a Config: quote heuristic sources behind the
resilience wrapper, the quorum aggregator, an in-memory market seeded from a
quotes file, the paper broker and a console notification sink, all sharing
one event bus.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml
from pydantic import ValidationError
from rich.console import Console

from .config import Config
from .events import EventBus
from .exceptions import MarketDataError
from .market import InMemoryMarketDataProvider, PaperBrokerGateway
from .models.trading import MarketData
from .notifications import ConsoleNotificationSink
from .signal_manager import SignalAggregator
from .signal_sources import QuoteSignalSource, ResilientSignalSource
from .trading import TradingStateMachine

logger = logging.getLogger(__name__)

# Quote heuristics that differ in how much volume counts as heavy trading
QUOTE_SOURCE_VOLUMES = {
    "quote_light_volume": 1_000_000,
    "quote_heuristic": 2_000_000,
    "quote_heavy_volume": 5_000_000,
}


def load_quotes(path: Path) -> Tuple[List[MarketData], Dict[str, str]]:
    """
    Read a quotes file for the in-memory market.

    The file is JSON or YAML holding either a list of quotes or a mapping
    with `quotes` and an optional `sectors` table (symbol -> sector).
    """
    path = Path(path)
    try:
        with open(path, "r") as f:
            if path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise MarketDataError(f"Cannot read quotes file {path}: {e}") from e

    if isinstance(data, list):
        data = {"quotes": data}
    if not isinstance(data, dict) or not data.get("quotes"):
        raise MarketDataError(f"Quotes file {path} holds no quotes")

    try:
        quotes = [MarketData.model_validate(item) for item in data["quotes"]]
    except ValidationError as e:
        raise MarketDataError(f"Invalid quote in {path}: {e}") from e

    sectors = {str(k): str(v) for k, v in (data.get("sectors") or {}).items()}
    return quotes, sectors


def build_paper_engine(
    config: Config,
    quotes: List[MarketData],
    sectors: Optional[Dict[str, str]] = None,
    console: Optional[Console] = None,
) -> TradingStateMachine:
    """Wire a TradingStateMachine against the in-memory market and paper broker."""
    bus = EventBus()
    market = InMemoryMarketDataProvider(quotes, sectors=sectors)
    broker = PaperBrokerGateway(
        market,
        slippage_rate=config.backtest.slippage,
        commission_rate=config.backtest.commission,
    )

    sources = [
        ResilientSignalSource.from_config(
            QuoteSignalSource(market, name=name, reference_volume=volume),
            config.signals,
            event_bus=bus,
        )
        for name, volume in QUOTE_SOURCE_VOLUMES.items()
    ]
    aggregator = SignalAggregator(sources, config.signals, event_bus=bus)

    ConsoleNotificationSink(config.notification, console=console).attach(bus)

    logger.info(f"Paper engine ready: {len(quotes)} quotes, {len(sources)} signal sources")
    return TradingStateMachine(config, aggregator, market, broker, event_bus=bus)


async def run_until_stopped(
    machine: TradingStateMachine,
    stop_event: asyncio.Event,
    duration: Optional[float] = None,
) -> bool:
    """
    Start the scheduler and keep it running until `stop_event` is set.

    With a duration the run also ends after that many seconds. Returns False
    when the scheduler refused to start.
    """
    if not await machine.start():
        return False

    try:
        if duration is None:
            await stop_event.wait()
        else:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=duration)
            except asyncio.TimeoutError:
                logger.info(f"Run duration of {duration:.0f}s elapsed")
    finally:
        await machine.stop()
    return True
