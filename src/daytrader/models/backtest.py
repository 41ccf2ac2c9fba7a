"""
Backtesting Models

Historical bars, per-trade records and the aggregate performance/risk
statistics produced by one backtest run, plus the optimizer's sweep records.
All result models are frozen once the run completes.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class Bar(BaseModel):
    """One daily OHLCV bar."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    date: date
    open: Decimal = Field(..., gt=Decimal("0"))
    high: Decimal = Field(..., gt=Decimal("0"))
    low: Decimal = Field(..., gt=Decimal("0"))
    close: Decimal = Field(..., gt=Decimal("0"))
    volume: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _validate_range(self) -> "Bar":
        if self.low > self.high:
            raise ValueError(f"{self.symbol} {self.date}: low {self.low} above high {self.high}")
        return self


class ExitReason(str, Enum):
    """Why a backtest position was closed."""
    EMERGENCY_STOP_LOSS = "EMERGENCY_STOP_LOSS"
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"
    SIGNAL = "SIGNAL"
    FORCED_CLOSE = "FORCED_CLOSE"
    END_OF_PERIOD = "END_OF_PERIOD"


class BacktestTrade(BaseModel):
    """A completed round trip (entry and exit) with costs applied."""

    model_config = ConfigDict(frozen=True)

    trade_id: str
    symbol: str
    quantity: int
    entry_price: Decimal
    exit_price: Decimal
    entry_date: date
    exit_date: date
    pnl: Decimal = Field(..., description="Gross P&L before costs")
    commission: Decimal
    slippage: Decimal
    net_pnl: Decimal
    exit_reason: ExitReason
    strategy: str

    @computed_field
    @property
    def net_pnl_percent(self) -> float:
        cost_basis = self.entry_price * self.quantity
        if cost_basis == 0:
            return 0.0
        return float(self.net_pnl / cost_basis * 100)

    @property
    def holding_days(self) -> int:
        return (self.exit_date - self.entry_date).days


class DailyReturn(BaseModel):
    """Portfolio valuation at the end of one simulated day."""

    model_config = ConfigDict(frozen=True)

    date: date
    daily_return: float = Field(..., description="Return versus the previous day's value")
    cumulative_return: float = Field(..., description="Portfolio value minus initial capital")
    cumulative_return_percent: float
    portfolio_value: float
    drawdown: float = Field(..., ge=0.0, description="Distance below running peak")
    drawdown_percent: float = Field(..., ge=0.0)


class MonthlyReturn(BaseModel):
    """Month-level roll-up of the daily returns."""

    model_config = ConfigDict(frozen=True)

    month: str
    monthly_return: float
    monthly_return_percent: float
    portfolio_value: float


class PerformanceMetrics(BaseModel):
    """Return and trade statistics."""

    model_config = ConfigDict(frozen=True)

    total_return: float = 0.0
    total_return_percent: float = 0.0
    annualized_return: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    average_holding_days: float = 0.0


class RiskMetrics(BaseModel):
    """Distributional risk measures from the empirical daily returns."""

    model_config = ConfigDict(frozen=True)

    volatility: float = 0.0
    downside_volatility: float = 0.0
    var_95: float = 0.0
    var_99: float = 0.0
    cvar_95: float = 0.0
    cvar_99: float = 0.0


class BacktestResult(BaseModel):
    """Everything produced by one backtest run."""

    model_config = ConfigDict(frozen=True)

    backtest_id: str
    strategy_name: str
    symbols: List[str]
    start_date: date
    end_date: date
    initial_capital: Decimal = Field(..., gt=Decimal("0"))
    final_capital: Decimal
    performance: PerformanceMetrics
    risk_metrics: RiskMetrics
    trades: List[BacktestTrade] = Field(default_factory=list)
    daily_returns: List[DailyReturn] = Field(default_factory=list)
    monthly_returns: List[MonthlyReturn] = Field(default_factory=list)
    parameters_used: Dict[str, Any] = Field(default_factory=dict)
    run_timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @computed_field
    @property
    def net_pnl(self) -> Decimal:
        return self.final_capital - self.initial_capital

    @property
    def equity_curve(self) -> List[float]:
        return [d.portfolio_value for d in self.daily_returns]


class ParameterSweepEntry(BaseModel):
    """One optimizer iteration."""

    model_config = ConfigDict(frozen=True)

    iteration: int
    parameters: Dict[str, Any]
    performance: Optional[BacktestResult] = None
    error: Optional[str] = None


class OptimizationResult(BaseModel):
    """Best parameter set plus the full sweep for inspection."""

    model_config = ConfigDict(frozen=True)

    best_parameters: Dict[str, Any]
    best_performance: BacktestResult
    parameter_sweep: List[ParameterSweepEntry]
    optimization_method: str = "GRID_SEARCH"
    total_iterations: int
    best_iteration: int
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
