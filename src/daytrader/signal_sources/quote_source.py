"""
Quote-driven signal source.

Scores a live quote on four heuristics (day change, volume versus a reference
average, position inside the day's range, gap versus previous close) and
votes BUY or SELL only when one side leads by more than one point.
"""

from decimal import Decimal
from typing import List, Tuple

from ..market.base import MarketDataProvider
from ..models.signals import SignalAction, TradingSignal
from ..models.trading import MarketData
from .base import SignalSource


class QuoteSignalSource(SignalSource):
    """Heuristic opinion computed from a MarketDataProvider quote."""

    def __init__(
        self,
        market_data: MarketDataProvider,
        name: str = "quote_heuristic",
        reference_volume: int = 2_000_000,
    ):
        self.market_data = market_data
        self.name = name
        self.reference_volume = reference_volume

    async def fetch_signal(self, symbol: str) -> TradingSignal:
        quote = await self.market_data.get_market_data(symbol)
        action, confidence, reason = self.analyze_quote(quote)
        return TradingSignal(
            source=self.name,
            symbol=quote.symbol,
            signal=action,
            confidence=confidence,
            reason=reason,
        )

    def analyze_quote(self, quote: MarketData) -> Tuple[SignalAction, float, str]:
        reasons: List[str] = []
        buy_score = 0
        sell_score = 0

        change = quote.change_percent
        if change is not None:
            if change > 2:
                buy_score += 2
                reasons.append(f"strong uptrend (+{change:.2f}%)")
            elif change > 0:
                buy_score += 1
                reasons.append(f"uptrend (+{change:.2f}%)")
            elif change < -2:
                sell_score += 2
                reasons.append(f"strong downtrend ({change:.2f}%)")
            elif change < 0:
                sell_score += 1
                reasons.append(f"downtrend ({change:.2f}%)")

        if quote.volume > self.reference_volume * 1.5:
            buy_score += 1
            reasons.append(f"high volume ({quote.volume / 1_000_000:.1f}M)")
        elif quote.volume < self.reference_volume * 0.5:
            sell_score += 1
            reasons.append(f"low volume ({quote.volume / 1_000_000:.1f}M)")

        if quote.high is not None and quote.low is not None and quote.high > quote.low:
            position = (quote.price - quote.low) / (quote.high - quote.low)
            if position > Decimal("0.8"):
                sell_score += 1
                reasons.append("trading near day high")
            elif position < Decimal("0.2"):
                buy_score += 1
                reasons.append("trading near day low")

        if quote.open is not None and quote.previous_close:
            gap = (quote.open - quote.previous_close) / quote.previous_close * 100
            if gap > 1:
                buy_score += 1
                reasons.append(f"gap up (+{gap:.2f}%)")
            elif gap < -1:
                sell_score += 1
                reasons.append(f"gap down ({gap:.2f}%)")

        if buy_score > sell_score + 1:
            action, confidence = SignalAction.BUY, min(60 + buy_score * 10, 95)
        elif sell_score > buy_score + 1:
            action, confidence = SignalAction.SELL, min(60 + sell_score * 10, 95)
        else:
            action, confidence = SignalAction.HOLD, 50

        return action, float(confidence), ", ".join(reasons) or "neutral market"
