"""
Backtest strategies.

The engine drives a BacktestStrategy once per trading day:

1. generate_signals: opinions computed from bars before the day
2. execute_orders: entries at the day's open
3. rebalance: exits during the day and position housekeeping

DayTradingBacktestStrategy replays the live rules on daily bars. A panel of
bar voters goes through the same QuorumPolicy as live signal sources, entries
use the same position-size rule and daily trade cap, and exits use the same
evaluate_exit priority against the bar's low and high. Anything still open
is closed at the bar's close.

When the high reaches the take-profit threshold the voters are asked again
with the day's bar appended to their history, standing in for the live
re-aggregation at that moment. A daily bar only exists once the day is over,
so this confirmation sees the close: a look-ahead the live engine does not
have. Entries never see the day's bar.
"""

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from ..config import RiskManagementConfig, SignalConfig
from ..models.backtest import BacktestTrade, Bar, ExitReason
from ..models.signals import AggregatedSignal
from ..signal_manager.aggregator import QuorumPolicy
from ..trading.risk import evaluate_exit, position_size, take_profit_confirmed
from .portfolio import SyntheticPortfolio
from .voters import BarVoter, VoterSettings, default_voters

logger = logging.getLogger(__name__)

RISK_PARAMETERS = {
    "stop_loss",
    "emergency_stop_loss",
    "take_profit",
    "take_profit_override",
    "max_position_size",
    "max_daily_trades",
}


class BacktestStrategy(ABC):
    """Day-by-day decision logic driven by the BacktestEngine."""

    name: str = "strategy"

    def reset(self) -> None:
        """Clear per-run state before a new backtest."""

    @abstractmethod
    def generate_signals(
        self,
        day: date,
        history: Dict[str, Sequence[Bar]],
        portfolio: SyntheticPortfolio,
    ) -> List[AggregatedSignal]:
        """Consensus per symbol from bars strictly before `day`."""

    @abstractmethod
    def execute_orders(
        self,
        day: date,
        signals: List[AggregatedSignal],
        bars: Dict[str, Bar],
        portfolio: SyntheticPortfolio,
    ) -> List[BacktestTrade]:
        """Open positions for `day`. Returns trades closed while doing so."""

    def rebalance(self, day: date, bars: Dict[str, Bar], portfolio: SyntheticPortfolio) -> List[BacktestTrade]:
        """Adjust or close positions during `day`."""
        return []

    def get_parameters(self) -> Dict[str, Any]:
        return {}


class DayTradingBacktestStrategy(BacktestStrategy):
    """Quorum entry at the open, risk-rule exits intraday, flat by the close."""

    name = "day_trading_quorum"

    def __init__(
        self,
        risk: Optional[RiskManagementConfig] = None,
        signals: Optional[SignalConfig] = None,
        voter_settings: Optional[VoterSettings] = None,
        voters: Optional[List[BarVoter]] = None,
    ):
        self.risk = risk or RiskManagementConfig()
        self.signal_config = signals or SignalConfig()
        self.policy = QuorumPolicy.from_config(self.signal_config)
        self.voter_settings = voter_settings or VoterSettings()
        self._custom_voters = voters is not None
        self.voters = voters if voters is not None else default_voters(self.voter_settings)

        self._entries: Dict[date, int] = defaultdict(int)
        self._history: Dict[str, Sequence[Bar]] = {}

    def reset(self) -> None:
        self._entries.clear()
        self._history = {}

    def with_parameters(self, **params: Any) -> "DayTradingBacktestStrategy":
        """
        Copy of this strategy with some parameters replaced.

        Risk thresholds and voter settings are both accepted; unknown names
        raise ValueError. The combined settings are re-validated.
        """
        risk_changes = {}
        voter_changes = {}
        for key, value in params.items():
            if key in RISK_PARAMETERS:
                risk_changes[key] = value if key == "max_daily_trades" else Decimal(str(value))
            elif key in VoterSettings.model_fields:
                voter_changes[key] = value
            else:
                raise ValueError(f"Unknown strategy parameter: {key}")

        risk = RiskManagementConfig.model_validate({**self.risk.model_dump(), **risk_changes})
        settings = VoterSettings.model_validate({**self.voter_settings.model_dump(), **voter_changes})
        return DayTradingBacktestStrategy(
            risk=risk,
            signals=self.signal_config,
            voter_settings=settings,
            voters=self.voters if self._custom_voters else None,
        )

    def get_parameters(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {key: str(value) for key, value in self.risk.model_dump().items()}
        params.update(self.voter_settings.model_dump())
        params["voters"] = [v.name for v in self.voters]
        return params

    def generate_signals(self, day, history, portfolio):
        self._history = history
        results = []
        for symbol, past in history.items():
            consensus = self._tally(symbol, past, day)
            if consensus is not None:
                results.append(consensus)
        return results

    def _tally(self, symbol: str, past: Sequence[Bar], day: date) -> Optional[AggregatedSignal]:
        votes = [voter.vote(symbol, past, day) for voter in self.voters]
        valid = [v for v in votes if v is not None]
        if len(valid) < self.signal_config.min_sources:
            return None
        return self.policy.tally(symbol, valid)

    def execute_orders(self, day, signals, bars, portfolio):
        if portfolio.positions:
            return []
        if self._entries[day] >= self.risk.max_daily_trades:
            return []

        candidates = sorted(
            (s for s in signals if s.should_buy and s.symbol in bars),
            key=lambda s: (-s.buy_percentage, s.symbol),
        )
        if not candidates:
            return []

        best = candidates[0]
        price = bars[best.symbol].open
        quantity = min(
            position_size(price, self.risk.max_position_size),
            portfolio.affordable_quantity(price),
        )
        if quantity <= 0:
            logger.debug(f"{day} {best.symbol}: price {price} too high for position budget")
            return []

        portfolio.open_position(best.symbol, quantity, price, day)
        self._entries[day] += 1
        return []

    def rebalance(self, day, bars, portfolio):
        closed = []
        for symbol, lot in list(portfolio.positions.items()):
            bar = bars.get(symbol)
            if bar is None:
                continue

            exit_price, reason = self._intraday_exit(symbol, lot.entry_price, bar)
            if exit_price is None:
                exit_price, reason = bar.close, ExitReason.FORCED_CLOSE
            closed.append(portfolio.close_position(symbol, exit_price, day, reason))
        return closed

    def _intraday_exit(self, symbol: str, entry: Decimal, bar: Bar):
        risk = self.risk

        low_trigger = evaluate_exit((bar.low - entry) / entry, risk)
        if low_trigger == ExitReason.EMERGENCY_STOP_LOSS:
            return entry * (1 + risk.emergency_stop_loss), low_trigger
        if low_trigger == ExitReason.STOP_LOSS:
            return entry * (1 + risk.stop_loss), low_trigger

        high_rate = (bar.high - entry) / entry
        if evaluate_exit(high_rate, risk) == ExitReason.TAKE_PROFIT:
            # Re-vote with the day's bar in view
            consensus = self._tally(symbol, list(self._history.get(symbol, ())) + [bar], bar.date)
            should_sell = consensus.should_sell if consensus is not None else False
            if take_profit_confirmed(high_rate, risk, should_sell):
                target = risk.take_profit if should_sell else risk.take_profit_override
                return entry * (1 + target), ExitReason.TAKE_PROFIT

        return None, None
