"""
Exception hierarchy for the daytrader engine.

Source-level faults (timeouts, open circuits) are absorbed by the aggregator.
Phase-level faults (screening, buying, selling) are caught by the trading
state machine and published as error events. Configuration faults are fatal
and raised at construction time.
"""

from typing import Optional


class DaytraderError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(DaytraderError):
    """Invalid or inconsistent configuration."""


class InsufficientSources(DaytraderError):
    """Fewer than the minimum number of sources produced a valid signal."""

    def __init__(self, symbol: str, received: int, required: int):
        self.symbol = symbol
        self.received = received
        self.required = required
        super().__init__(
            f"Insufficient signal sources for {symbol}: {received}/{required}"
        )


class SourceTimeout(DaytraderError):
    """A signal source did not answer within the aggregation timeout."""

    def __init__(self, source: str, timeout: float):
        self.source = source
        self.timeout = timeout
        super().__init__(f"{source} timed out after {timeout:.1f}s")


class SourceCircuitOpen(DaytraderError):
    """A signal source is disabled after repeated consecutive failures."""

    def __init__(self, source: str, retry_in: Optional[float] = None):
        self.source = source
        self.retry_in = retry_in
        message = f"{source} service is disabled due to errors"
        if retry_in is not None:
            message += f" (re-enabled in {retry_in:.0f}s)"
        super().__init__(message)


class MarketDataError(DaytraderError):
    """Market data could not be retrieved for a symbol."""


class BrokerOrderFailure(DaytraderError):
    """The broker gateway rejected or failed to fill an order."""

    def __init__(self, message: str, symbol: Optional[str] = None):
        self.symbol = symbol
        super().__init__(message)


class BacktestError(DaytraderError):
    """A backtest run could not be completed."""
