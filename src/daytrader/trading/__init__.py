"""
Live trading: daily triggers, risk rules and the trading state machine.
"""

from .clock import DailyTrigger, WEEKDAYS
from .risk import count_daily_buys, evaluate_exit, position_size, take_profit_confirmed
from .scheduler import SchedulerState, TradingStateMachine

__all__ = [
    "DailyTrigger",
    "WEEKDAYS",
    "count_daily_buys",
    "evaluate_exit",
    "position_size",
    "take_profit_confirmed",
    "SchedulerState",
    "TradingStateMachine",
]
