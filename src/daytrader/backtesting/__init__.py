"""
Backtesting: historical replay of the day trading rules and parameter search.
"""

from .backtest_engine import BacktestEngine
from .data import load_bars, load_bars_csv
from .optimizer import GridSearchOptimizer, parse_grid_option
from .portfolio import SyntheticPortfolio
from .strategy import BacktestStrategy, DayTradingBacktestStrategy
from .voters import BarVoter, VoterSettings, default_voters

__all__ = [
    "BacktestEngine",
    "load_bars",
    "load_bars_csv",
    "GridSearchOptimizer",
    "parse_grid_option",
    "SyntheticPortfolio",
    "BacktestStrategy",
    "DayTradingBacktestStrategy",
    "BarVoter",
    "VoterSettings",
    "default_voters",
]
