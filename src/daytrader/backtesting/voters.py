"""
Bar voters.

Historical stand-ins for live signal sources: each voter looks at the bars
strictly before the trading day and returns a BUY/HOLD/SELL TradingSignal,
or None when it does not have enough history. A flat price series makes
every voter return HOLD.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field, model_validator

from ..models.backtest import Bar
from ..models.signals import SignalAction, TradingSignal


class VoterSettings(BaseModel):
    """Tunable parameters of the default voter panel."""

    momentum_lookback: int = Field(default=5, ge=1)
    momentum_threshold: float = Field(default=0.02, ge=0.0)
    short_window: int = Field(default=5, ge=1)
    long_window: int = Field(default=20, ge=2)
    volume_window: int = Field(default=20, ge=1)
    volume_ratio: float = Field(default=1.5, gt=0.0)
    rsi_period: int = Field(default=14, ge=2)
    rsi_oversold: float = Field(default=30.0, ge=0.0, le=100.0)
    rsi_overbought: float = Field(default=70.0, ge=0.0, le=100.0)

    @model_validator(mode="after")
    def _validate_windows(self) -> "VoterSettings":
        if self.short_window >= self.long_window:
            raise ValueError("short_window must be smaller than long_window")
        if self.rsi_oversold >= self.rsi_overbought:
            raise ValueError("rsi_oversold must be below rsi_overbought")
        return self


class BarVoter(ABC):
    """Produces one opinion per symbol per day from past bars."""

    name: str = "bar_voter"

    @abstractmethod
    def vote(self, symbol: str, history: Sequence[Bar], day: date) -> Optional[TradingSignal]:
        """Opinion for trading on `day` given bars before it."""

    def _signal(self, symbol: str, day: date, action: SignalAction, confidence: float, reason: str) -> TradingSignal:
        return TradingSignal(
            source=self.name,
            symbol=symbol,
            signal=action,
            confidence=max(0.0, min(confidence, 100.0)),
            reason=reason,
            timestamp=datetime.combine(day, time(0, 0), tzinfo=timezone.utc),
        )


def _mean(values: Sequence[Decimal]) -> Decimal:
    return sum(values, Decimal("0")) / len(values)


class MomentumVoter(BarVoter):
    """Close-to-close change over a lookback window."""

    name = "momentum"

    def __init__(self, lookback: int = 5, threshold: float = 0.02):
        self.lookback = lookback
        self.threshold = Decimal(str(threshold))

    def vote(self, symbol, history, day):
        if len(history) < self.lookback + 1:
            return None
        past = history[-1 - self.lookback].close
        change = history[-1].close / past - 1
        if change > self.threshold:
            return self._signal(symbol, day, SignalAction.BUY, 60 + float(change) * 500, f"momentum {change:+.2%}")
        if change < -self.threshold:
            return self._signal(symbol, day, SignalAction.SELL, 60 + float(-change) * 500, f"momentum {change:+.2%}")
        return self._signal(symbol, day, SignalAction.HOLD, 50, f"flat momentum {change:+.2%}")


class MovingAverageCrossVoter(BarVoter):
    """Short versus long simple moving average of closes."""

    name = "ma_cross"

    def __init__(self, short_window: int = 5, long_window: int = 20):
        self.short_window = short_window
        self.long_window = long_window

    def vote(self, symbol, history, day):
        if len(history) < self.long_window:
            return None
        closes = [b.close for b in history[-self.long_window:]]
        short = _mean(closes[-self.short_window:])
        long = _mean(closes)
        spread = (short - long) / long
        if spread > 0:
            return self._signal(symbol, day, SignalAction.BUY, 55 + float(spread) * 1000, "short MA above long MA")
        if spread < 0:
            return self._signal(symbol, day, SignalAction.SELL, 55 + float(-spread) * 1000, "short MA below long MA")
        return self._signal(symbol, day, SignalAction.HOLD, 50, "moving averages equal")


class VolumeSurgeVoter(BarVoter):
    """Follows the direction of the last bar when its volume surges."""

    name = "volume_surge"

    def __init__(self, window: int = 20, ratio: float = 1.5):
        self.window = window
        self.ratio = Decimal(str(ratio))

    def vote(self, symbol, history, day):
        if len(history) < self.window + 1:
            return None
        last, prev = history[-1], history[-2]
        average = _mean([Decimal(b.volume) for b in history[-1 - self.window:-1]])
        if average <= 0 or Decimal(last.volume) < average * self.ratio:
            return self._signal(symbol, day, SignalAction.HOLD, 50, "normal volume")
        if last.close > prev.close:
            return self._signal(symbol, day, SignalAction.BUY, 70, "volume surge on up day")
        if last.close < prev.close:
            return self._signal(symbol, day, SignalAction.SELL, 70, "volume surge on down day")
        return self._signal(symbol, day, SignalAction.HOLD, 50, "volume surge without direction")


class RangePositionVoter(BarVoter):
    """Where the last close sits inside its bar's range."""

    name = "range_position"

    def vote(self, symbol, history, day):
        if not history:
            return None
        last = history[-1]
        if last.high == last.low:
            return self._signal(symbol, day, SignalAction.HOLD, 50, "no range")
        position = (last.close - last.low) / (last.high - last.low)
        if position > Decimal("0.8"):
            return self._signal(symbol, day, SignalAction.SELL, 60, "closed near high")
        if position < Decimal("0.2"):
            return self._signal(symbol, day, SignalAction.BUY, 60, "closed near low")
        return self._signal(symbol, day, SignalAction.HOLD, 50, "closed mid-range")


class RsiVoter(BarVoter):
    """Relative strength index mean reversion."""

    name = "rsi"

    def __init__(self, period: int = 14, oversold: float = 30.0, overbought: float = 70.0):
        self.period = period
        self.oversold = oversold
        self.overbought = overbought

    def vote(self, symbol, history, day):
        if len(history) < self.period + 1:
            return None
        closes = [b.close for b in history[-self.period - 1:]]
        changes = [b - a for a, b in zip(closes, closes[1:])]
        gains = sum((c for c in changes if c > 0), Decimal("0"))
        losses = sum((-c for c in changes if c < 0), Decimal("0"))
        if gains == 0 and losses == 0:
            return self._signal(symbol, day, SignalAction.HOLD, 50, "RSI neutral (no movement)")
        rsi = 100.0 if losses == 0 else 100.0 - 100.0 / (1.0 + float(gains / losses))
        if rsi < self.oversold:
            return self._signal(symbol, day, SignalAction.BUY, 60 + (self.oversold - rsi), f"RSI {rsi:.1f} oversold")
        if rsi > self.overbought:
            return self._signal(symbol, day, SignalAction.SELL, 60 + (rsi - self.overbought), f"RSI {rsi:.1f} overbought")
        return self._signal(symbol, day, SignalAction.HOLD, 50, f"RSI {rsi:.1f}")


def default_voters(settings: Optional[VoterSettings] = None) -> List[BarVoter]:
    s = settings or VoterSettings()
    return [
        MomentumVoter(s.momentum_lookback, s.momentum_threshold),
        MovingAverageCrossVoter(s.short_window, s.long_window),
        VolumeSurgeVoter(s.volume_window, s.volume_ratio),
        RangePositionVoter(),
        RsiVoter(s.rsi_period, s.rsi_oversold, s.rsi_overbought),
    ]
