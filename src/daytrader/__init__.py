"""
Daytrader: quorum-driven day trading engine

Aggregates BUY/HOLD/SELL opinions from several unreliable signal sources,
trades a single intraday position under time-of-day gates and risk
thresholds, and replays the same rules over historical data.
"""

__version__ = "0.1.0"
__author__ = "Daytrader Team"
__description__ = "Quorum-driven day trading engine"

# Package-level imports for convenience
from .config import Config
from .logger import configure_logging

__all__ = ["Config", "configure_logging", "__version__"]
