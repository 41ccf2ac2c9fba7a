"""
Signal Models

Pydantic models for per-source opinions and their quorum consensus:
- TradingSignal: one source's BUY/HOLD/SELL opinion for a symbol
- AggregatedSignal: vote tally and consensus decision across sources
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field, computed_field


class SignalAction(str, Enum):
    """Opinion emitted by a signal source."""
    BUY = "BUY"
    HOLD = "HOLD"
    SELL = "SELL"


class TradingSignal(BaseModel):
    """
    A single source's opinion about a symbol.

    Immutable once returned by a source so that cached copies can be shared
    between aggregation rounds.
    """

    model_config = ConfigDict(frozen=True)

    source: str = Field(..., description="Signal source name")
    symbol: str = Field(..., description="Ticker symbol")
    signal: SignalAction = Field(..., description="BUY, HOLD or SELL")
    confidence: float = Field(..., ge=0.0, le=100.0, description="Confidence 0-100")
    reason: str = Field(default="", description="Human readable justification")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AggregatedSignal(BaseModel):
    """Vote tally across sources for one symbol. Recomputed on every aggregation."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    buy_signals: int = Field(..., ge=0)
    hold_signals: int = Field(..., ge=0)
    sell_signals: int = Field(..., ge=0)
    total_sources: int = Field(..., ge=1)
    buy_percentage: float = Field(..., ge=0.0, le=100.0)
    required_votes: int = Field(..., ge=1)
    should_buy: bool
    should_sell: bool
    signals: List[TradingSignal] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @computed_field
    @property
    def sell_percentage(self) -> float:
        return self.sell_signals / self.total_sources * 100.0
