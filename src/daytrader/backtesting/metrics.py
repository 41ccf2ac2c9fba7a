"""
Performance and risk statistics for backtest results.

Returns are simple daily returns of portfolio value. Ratios are annualised
with `periods_per_year`; a return series without variance yields ratios of
zero rather than NaN or infinity.
"""

import math
import statistics
from collections import OrderedDict
from typing import Dict, List, Sequence

from ..models.backtest import (
    BacktestResult,
    BacktestTrade,
    DailyReturn,
    MonthlyReturn,
    PerformanceMetrics,
    RiskMetrics,
)


def value_at_risk(returns: Sequence[float], tail: float) -> float:
    """Empirical VaR: the return at index floor(n * tail) of the sorted series."""
    if not returns:
        return 0.0
    ordered = sorted(returns)
    index = min(math.floor(len(ordered) * tail), len(ordered) - 1)
    return ordered[index]


def conditional_value_at_risk(returns: Sequence[float], tail: float) -> float:
    """Mean of the sorted returns up to and including the VaR index."""
    if not returns:
        return 0.0
    ordered = sorted(returns)
    index = min(math.floor(len(ordered) * tail), len(ordered) - 1)
    worst = ordered[:index + 1]
    return sum(worst) / len(worst)


def calculate_performance_metrics(
    trades: Sequence[BacktestTrade],
    daily_returns: Sequence[DailyReturn],
    initial_capital: float,
    periods_per_year: int = 252,
) -> PerformanceMetrics:
    net = [float(t.net_pnl) for t in trades]
    wins = [p for p in net if p > 0]
    losses = [p for p in net if p < 0]

    total_return = daily_returns[-1].cumulative_return if daily_returns else 0.0
    total_return_percent = total_return / initial_capital * 100 if initial_capital else 0.0

    days = len(daily_returns)
    growth = 1 + total_return_percent / 100
    annualized_return = growth ** (periods_per_year / days) - 1 if days and growth > 0 else 0.0

    returns = [d.daily_return for d in daily_returns]
    sharpe = 0.0
    sortino = 0.0
    if len(returns) > 1:
        mean = statistics.fmean(returns)
        stdev = statistics.pstdev(returns)
        if stdev > 0:
            sharpe = mean / stdev * math.sqrt(periods_per_year)
        downside = _downside_deviation(returns)
        if downside > 0:
            sortino = mean / downside * math.sqrt(periods_per_year)

    max_drawdown = max((d.drawdown for d in daily_returns), default=0.0)
    max_drawdown_percent = max((d.drawdown_percent for d in daily_returns), default=0.0)
    calmar = annualized_return / (max_drawdown_percent / 100) if max_drawdown_percent > 0 else 0.0

    gross_loss = abs(sum(losses))
    profit_factor = sum(wins) / gross_loss if gross_loss > 0 else 0.0

    return PerformanceMetrics(
        total_return=total_return,
        total_return_percent=total_return_percent,
        annualized_return=annualized_return,
        sharpe_ratio=sharpe,
        sortino_ratio=sortino,
        calmar_ratio=calmar,
        max_drawdown=max_drawdown,
        max_drawdown_percent=max_drawdown_percent,
        win_rate=len(wins) / len(net) * 100 if net else 0.0,
        profit_factor=profit_factor,
        average_win=statistics.fmean(wins) if wins else 0.0,
        average_loss=statistics.fmean(losses) if losses else 0.0,
        largest_win=max(wins, default=0.0),
        largest_loss=min(losses, default=0.0),
        total_trades=len(net),
        winning_trades=len(wins),
        losing_trades=len(losses),
        average_holding_days=statistics.fmean([t.holding_days for t in trades]) if trades else 0.0,
    )


def _downside_deviation(returns: Sequence[float]) -> float:
    negative = [r for r in returns if r < 0]
    if not negative:
        return 0.0
    return math.sqrt(sum(r * r for r in negative) / len(negative))


def calculate_risk_metrics(daily_returns: Sequence[DailyReturn], periods_per_year: int = 252) -> RiskMetrics:
    returns = [d.daily_return for d in daily_returns]
    if not returns:
        return RiskMetrics()

    scale = math.sqrt(periods_per_year)
    return RiskMetrics(
        volatility=statistics.pstdev(returns) * scale if len(returns) > 1 else 0.0,
        downside_volatility=_downside_deviation(returns) * scale,
        var_95=value_at_risk(returns, 0.05),
        var_99=value_at_risk(returns, 0.01),
        cvar_95=conditional_value_at_risk(returns, 0.05),
        cvar_99=conditional_value_at_risk(returns, 0.01),
    )


def calculate_monthly_returns(daily_returns: Sequence[DailyReturn], initial_capital: float) -> List[MonthlyReturn]:
    """Month-over-month change in portfolio value, first month measured from the initial capital."""
    months: Dict[str, DailyReturn] = OrderedDict()
    for d in daily_returns:
        months[d.date.strftime("%Y-%m")] = d

    results = []
    previous_value = initial_capital
    for month, last_day in months.items():
        change = last_day.portfolio_value - previous_value
        results.append(MonthlyReturn(
            month=month,
            monthly_return=change,
            monthly_return_percent=change / previous_value * 100 if previous_value else 0.0,
            portfolio_value=last_day.portfolio_value,
        ))
        previous_value = last_day.portfolio_value
    return results


def generate_recommendations(result: BacktestResult) -> List[str]:
    perf = result.performance
    recommendations = []

    if perf.sharpe_ratio < 1:
        recommendations.append("Sharpe ratio is low; improve risk-adjusted returns.")
    if perf.max_drawdown_percent > 20:
        recommendations.append("Maximum drawdown is too large; tighten risk management.")
    if perf.win_rate < 50:
        recommendations.append("Win rate is low; review entry conditions.")
    if perf.profit_factor < 1.5:
        recommendations.append("Profit factor is low; rebalance stop-loss and take-profit levels.")

    if not recommendations:
        recommendations.append("Strategy performance is good; keep the current settings.")
    return recommendations
