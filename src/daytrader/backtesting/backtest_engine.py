"""
Backtest engine.

Replays a BacktestStrategy day by day over historical bars against a
SyntheticPortfolio, then computes performance and risk statistics. Results
can be persisted as JSON.
"""

import asyncio
import logging
import os
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..config import BacktestConfig
from ..exceptions import BacktestError
from ..models.backtest import BacktestResult, Bar, DailyReturn, ExitReason
from .metrics import (
    calculate_monthly_returns,
    calculate_performance_metrics,
    calculate_risk_metrics,
    generate_recommendations,
)
from .portfolio import SyntheticPortfolio
from .strategy import BacktestStrategy

logger = logging.getLogger(__name__)


class BacktestEngine:
    """
    Runs historical simulations and produces BacktestResult objects.

    The same engine instance can run any number of backtests; all per-run
    state lives in the portfolio and the strategy (which is reset first).
    """

    def __init__(self, config: Optional[BacktestConfig] = None, output_path: Optional[str] = None):
        self.config = config or BacktestConfig()
        self.output_path = output_path or self.config.output_path
        self.default_output_path = "backtest_results/"
        self.is_running = False

    async def run_backtest(
        self,
        strategy: BacktestStrategy,
        bars: Dict[str, Sequence[Bar]],
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        save: bool = False,
    ) -> BacktestResult:
        """
        Simulate `strategy` over `bars` between start_date and end_date inclusive.

        Args:
            strategy: Decision logic driven once per trading day
            bars: Daily bars keyed by symbol
            start_date: First simulated day (default: first bar)
            end_date: Last simulated day (default: last bar)
            save: Persist the result as JSON under the output path

        Returns:
            BacktestResult with trades, daily/monthly returns and metrics
        """
        series = {sym: sorted(s, key=lambda b: b.date) for sym, s in bars.items() if s}
        if not series:
            raise BacktestError("No historical bars supplied")

        all_dates = sorted({b.date for s in series.values() for b in s})
        start = start_date or all_dates[0]
        end = end_date or all_dates[-1]
        if start > end:
            raise BacktestError(f"start_date {start} is after end_date {end}")
        trading_days = [d for d in all_dates if start <= d <= end]
        if not trading_days:
            raise BacktestError(f"No bars between {start} and {end}")

        initial_capital = self.config.initial_capital
        portfolio = SyntheticPortfolio(
            initial_capital,
            commission_rate=self.config.commission,
            slippage_rate=self.config.slippage,
            strategy_name=strategy.name,
        )
        strategy.reset()

        logger.info(
            f"Backtest {strategy.name}: {len(series)} symbols, {trading_days[0]} to {trading_days[-1]} "
            f"({len(trading_days)} days), capital {initial_capital}"
        )

        self.is_running = True
        try:
            daily_returns = await self._simulate(strategy, series, trading_days, portfolio)
        finally:
            self.is_running = False

        initial = float(initial_capital)
        performance = calculate_performance_metrics(
            portfolio.trades, daily_returns, initial, self.config.periods_per_year
        )
        result = BacktestResult(
            backtest_id=str(uuid.uuid4()),
            strategy_name=strategy.name,
            symbols=sorted(series),
            start_date=trading_days[0],
            end_date=trading_days[-1],
            initial_capital=initial_capital,
            final_capital=portfolio.cash,
            performance=performance,
            risk_metrics=calculate_risk_metrics(daily_returns, self.config.periods_per_year),
            trades=portfolio.trades,
            daily_returns=daily_returns,
            monthly_returns=calculate_monthly_returns(daily_returns, initial),
            parameters_used={
                **strategy.get_parameters(),
                "initial_capital": str(initial_capital),
                "commission": str(self.config.commission),
                "slippage": str(self.config.slippage),
            },
        )

        logger.info(
            f"Backtest complete: {performance.total_trades} trades, "
            f"return {performance.total_return_percent:.2f}%, Sharpe {performance.sharpe_ratio:.2f}"
        )

        if save:
            self.save_result(result)
        return result

    async def _simulate(
        self,
        strategy: BacktestStrategy,
        series: Dict[str, List[Bar]],
        trading_days: List[date],
        portfolio: SyntheticPortfolio,
    ) -> List[DailyReturn]:
        # Position of each day's bar inside its symbol's series
        index = {sym: {b.date: i for i, b in enumerate(s)} for sym, s in series.items()}
        last_close: Dict[str, Decimal] = {}

        daily_returns: List[DailyReturn] = []
        previous_value = portfolio.initial_capital
        peak = portfolio.initial_capital

        for n, day in enumerate(trading_days):
            bars_today = {sym: series[sym][pos[day]] for sym, pos in index.items() if day in pos}
            history = {sym: self._history_before(series[sym], index[sym], day) for sym in series}

            signals = strategy.generate_signals(day, history, portfolio)
            strategy.execute_orders(day, signals, bars_today, portfolio)
            strategy.rebalance(day, bars_today, portfolio)

            for sym, bar in bars_today.items():
                last_close[sym] = bar.close

            if n == len(trading_days) - 1:
                for sym in list(portfolio.positions):
                    price = last_close.get(sym, portfolio.positions[sym].entry_price)
                    portfolio.close_position(sym, price, day, ExitReason.END_OF_PERIOD)

            value = portfolio.market_value(last_close)
            peak = max(peak, value)
            drawdown = peak - value
            initial = portfolio.initial_capital
            daily_returns.append(DailyReturn(
                date=day,
                daily_return=float((value - previous_value) / previous_value) if previous_value else 0.0,
                cumulative_return=float(value - initial),
                cumulative_return_percent=float((value - initial) / initial * 100),
                portfolio_value=float(value),
                drawdown=float(drawdown),
                drawdown_percent=float(drawdown / peak * 100) if peak else 0.0,
            ))
            previous_value = value

            # Let other tasks run during long simulations
            await asyncio.sleep(0)

        return daily_returns

    @staticmethod
    def _history_before(series: List[Bar], positions: Dict[date, int], day: date) -> List[Bar]:
        i = positions.get(day)
        if i is not None:
            return series[:i]
        return [b for b in series if b.date < day]

    def analyze_performance(self, result: BacktestResult) -> Dict[str, Any]:
        """Summary, risk and trade breakdowns plus improvement recommendations."""
        perf = result.performance
        risk = result.risk_metrics
        return {
            "summary": {
                "total_return": perf.total_return_percent,
                "sharpe_ratio": perf.sharpe_ratio,
                "max_drawdown": perf.max_drawdown_percent,
                "win_rate": perf.win_rate,
                "total_trades": perf.total_trades,
            },
            "risk_analysis": {
                "volatility": risk.volatility,
                "var_95": risk.var_95,
                "var_99": risk.var_99,
                "cvar_95": risk.cvar_95,
                "cvar_99": risk.cvar_99,
            },
            "trade_analysis": {
                "average_win": perf.average_win,
                "average_loss": perf.average_loss,
                "profit_factor": perf.profit_factor,
                "largest_win": perf.largest_win,
                "largest_loss": perf.largest_loss,
            },
            "recommendations": generate_recommendations(result),
        }

    def save_result(self, result: BacktestResult, output_path: Optional[str] = None) -> Path:
        """Write the result as JSON and return the file path."""
        output_dir = output_path or self.output_path or self.default_output_path
        os.makedirs(output_dir, exist_ok=True)
        ts = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        filename = f"backtest_{result.strategy_name}_{ts}_{result.backtest_id[:8]}.json"
        file_path = Path(output_dir) / filename
        with open(file_path, "w", encoding="utf-8") as f:
            f.write(result.model_dump_json(indent=2))
        logger.info(f"BacktestResult saved to {file_path}")
        return file_path

    @staticmethod
    def load_result(path: str) -> BacktestResult:
        with open(path, "r", encoding="utf-8") as f:
            return BacktestResult.model_validate_json(f.read())
