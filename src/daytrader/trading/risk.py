"""
Risk rules shared by live trading and the backtest.

Exit checks run in strict priority: emergency stop, stop loss, take profit.
A take-profit hit is only a candidate exit; it is confirmed by sell consensus
or by the profit rate reaching the override ceiling.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from ..config import RiskManagementConfig
from ..models.backtest import ExitReason
from ..models.trading import TradeAction, TradeHistoryRecord


def evaluate_exit(profit_rate: Decimal, thresholds: RiskManagementConfig) -> Optional[ExitReason]:
    """
    Classify a profit rate against the risk thresholds.

    Returns EMERGENCY_STOP_LOSS or STOP_LOSS for unconditional exits,
    TAKE_PROFIT when the profit target is reached (needs confirmation via
    `take_profit_confirmed`) and None when the position should be held.
    """
    if profit_rate <= thresholds.emergency_stop_loss:
        return ExitReason.EMERGENCY_STOP_LOSS
    if profit_rate <= thresholds.stop_loss:
        return ExitReason.STOP_LOSS
    if profit_rate >= thresholds.take_profit:
        return ExitReason.TAKE_PROFIT
    return None


def take_profit_confirmed(profit_rate: Decimal, thresholds: RiskManagementConfig, should_sell: bool) -> bool:
    return should_sell or profit_rate >= thresholds.take_profit_override


def position_size(price: Decimal, max_position_size: Decimal) -> int:
    """Whole shares affordable within the position budget."""
    if price <= 0:
        return 0
    return int(max_position_size // price)


def count_daily_buys(history: Iterable[TradeHistoryRecord], day: date, tz: ZoneInfo) -> int:
    """BUY records whose timestamp falls on `day` in `tz`."""
    return sum(
        1 for record in history
        if record.action == TradeAction.BUY and record.date.astimezone(tz).date() == day
    )


def format_rate(rate: Decimal) -> str:
    return f"{float(rate) * 100:+.2f}%"
