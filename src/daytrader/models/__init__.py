"""
Data models for the daytrader engine.

Organized by domain:
- signals: per-source opinions and quorum consensus
- trading: market data, orders, the open position and trade history
- backtest: historical bars, trades and performance statistics
"""

from .signals import AggregatedSignal, SignalAction, TradingSignal
from .trading import (
    MarketData,
    OrderHandle,
    OrderRequest,
    OrderSide,
    OrderStatus,
    OrderType,
    Position,
    ScreeningCriteria,
    TradeAction,
    TradeHistoryRecord,
)
from .backtest import (
    BacktestResult,
    BacktestTrade,
    Bar,
    DailyReturn,
    ExitReason,
    MonthlyReturn,
    OptimizationResult,
    ParameterSweepEntry,
    PerformanceMetrics,
    RiskMetrics,
)

__all__ = [
    # Signals
    "AggregatedSignal",
    "SignalAction",
    "TradingSignal",
    # Trading
    "MarketData",
    "OrderHandle",
    "OrderRequest",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "Position",
    "ScreeningCriteria",
    "TradeAction",
    "TradeHistoryRecord",
    # Backtest
    "BacktestResult",
    "BacktestTrade",
    "Bar",
    "DailyReturn",
    "ExitReason",
    "MonthlyReturn",
    "OptimizationResult",
    "ParameterSweepEntry",
    "PerformanceMetrics",
    "RiskMetrics",
]
