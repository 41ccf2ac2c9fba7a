"""
Pytest configuration and fixtures for daytrader tests.
"""

import logging
import os
import tempfile
from datetime import date, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Callable, Generator, List, Optional
from unittest.mock import patch
from zoneinfo import ZoneInfo

import pytest

from daytrader.config import (
    Config,
    LoggingConfig,
    RiskManagementConfig,
    SignalConfig,
    TradingConfig,
)
from daytrader.models.backtest import Bar
from daytrader.models.signals import SignalAction, TradingSignal

NEW_YORK = ZoneInfo("America/New_York")


class FixedSignalProvider:
    """Signal provider whose vote, availability and failures are set by the test."""

    def __init__(self, name: str, action: SignalAction = SignalAction.HOLD, confidence: float = 70.0):
        self.name = name
        self.action = action
        self.confidence = confidence
        self.available = True
        self.error: Optional[Exception] = None
        self.calls = 0

    async def is_available(self) -> bool:
        return self.available

    async def get_signal(self, symbol: str) -> TradingSignal:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return TradingSignal(
            source=self.name,
            symbol=symbol,
            signal=self.action,
            confidence=self.confidence,
            reason="fixed",
        )


class FakeNow:
    """Settable wall clock for the trading state machine."""

    def __init__(self, current: datetime):
        self.current = current

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def reset_package_logger() -> Generator[None, None, None]:
    """Undo handlers installed by configure_logging (e.g. from CLI invocations)."""
    yield
    package_logger = logging.getLogger("daytrader")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def mock_env_vars() -> Generator[dict, None, None]:
    """Mock environment variables for testing."""
    test_env = {
        "BUY_TIME": "10:30",
        "FORCE_CLOSE_TIME": "15:30",
        "TRADING_TIMEZONE": "America/Chicago",
        "STOP_LOSS": "-0.04",
        "MAX_DAILY_TRADES": "2",
        "TRADING_ENABLED": "true",
        "QUORUM_RATIOS": "3:0.5,4:0.75",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, test_env, clear=False):
        yield test_env


@pytest.fixture
def risk_config() -> RiskManagementConfig:
    """Stop -3%, emergency -8%, take profit +5%, override +7%, $10,000 budget."""
    return RiskManagementConfig(
        stop_loss=Decimal("-0.03"),
        emergency_stop_loss=Decimal("-0.08"),
        take_profit=Decimal("0.05"),
        take_profit_override=Decimal("0.07"),
        max_position_size=Decimal("10000"),
        max_daily_trades=1,
    )


@pytest.fixture
def test_config(risk_config: RiskManagementConfig) -> Config:
    """Trading enabled, orders placed without confirmation, no log files."""
    return Config(
        trading=TradingConfig(enabled=True, paper_trading=True, confirm_before_trade=False),
        risk_management=risk_config,
        signals=SignalConfig(min_sources=2, timeout=5.0),
        logging=LoggingConfig(file_path=None, console_output=False),
    )


@pytest.fixture
def fake_now() -> FakeNow:
    """Monday 2026-10-19 11:00 New York, two hours before monitoring starts."""
    return FakeNow(datetime(2026, 10, 19, 11, 0, tzinfo=NEW_YORK))


@pytest.fixture
def make_providers() -> Callable[..., List[FixedSignalProvider]]:
    """Factory: make_providers(BUY, BUY, HOLD) -> one provider per vote."""

    def factory(*actions: SignalAction) -> List[FixedSignalProvider]:
        return [FixedSignalProvider(f"source_{i}", action) for i, action in enumerate(actions)]

    return factory


@pytest.fixture
def make_bars() -> Callable[..., List[Bar]]:
    """Factory for a daily bar series with fixed OHLC values."""

    def factory(
        symbol: str = "AAPL",
        days: int = 30,
        open_: str = "100",
        high: str = "100",
        low: str = "100",
        close: str = "100",
        volume: int = 1000,
        start: date = date(2026, 1, 5),
    ) -> List[Bar]:
        return [
            Bar(
                symbol=symbol,
                date=start + timedelta(days=i),
                open=Decimal(open_),
                high=Decimal(high),
                low=Decimal(low),
                close=Decimal(close),
                volume=volume,
            )
            for i in range(days)
        ]

    return factory
