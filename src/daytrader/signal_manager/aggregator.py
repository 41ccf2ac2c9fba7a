"""
Signal Aggregation Engine

Collects BUY/HOLD/SELL opinions from every registered source for a symbol and
turns them into a quorum decision. The quorum is a sparse table of vote
ratios keyed by the exact number of sources that answered:

    required_votes = ceil(total_sources * ratio(total_sources))

The same threshold gates both should_buy and should_sell.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from ..config import SignalConfig
from ..events import EventBus, EventType
from ..exceptions import InsufficientSources, SourceTimeout
from ..models.signals import AggregatedSignal, SignalAction, TradingSignal


class SignalProvider(Protocol):
    """What the aggregator needs from a source (normally a ResilientSignalSource)."""

    name: str

    async def get_signal(self, symbol: str) -> TradingSignal: ...

    async def is_available(self) -> bool: ...


@dataclass
class QuorumPolicy:
    """Vote threshold lookup keyed by the number of responding sources."""
    ratios: Dict[int, float] = field(default_factory=lambda: {3: 0.67, 4: 0.75, 5: 0.80, 6: 0.67})
    default_ratio: float = 0.67

    @classmethod
    def from_config(cls, config: SignalConfig) -> "QuorumPolicy":
        return cls(ratios=dict(config.quorum_ratios), default_ratio=config.default_ratio)

    def ratio_for(self, total_sources: int) -> float:
        return self.ratios.get(total_sources, self.default_ratio)

    def required_votes(self, total_sources: int) -> int:
        return math.ceil(total_sources * self.ratio_for(total_sources))

    def tally(self, symbol: str, signals: Sequence[TradingSignal]) -> AggregatedSignal:
        """Count votes and apply the quorum. `signals` must not be empty."""
        total = len(signals)
        buy = sum(1 for s in signals if s.signal == SignalAction.BUY)
        hold = sum(1 for s in signals if s.signal == SignalAction.HOLD)
        sell = sum(1 for s in signals if s.signal == SignalAction.SELL)
        required = self.required_votes(total)

        return AggregatedSignal(
            symbol=symbol,
            buy_signals=buy,
            hold_signals=hold,
            sell_signals=sell,
            total_sources=total,
            buy_percentage=buy / total * 100.0,
            required_votes=required,
            should_buy=buy >= required,
            should_sell=sell >= required,
            signals=list(signals),
        )


class SignalAggregator:
    """Fans out to all sources and computes the quorum consensus per symbol."""

    def __init__(
        self,
        sources: Sequence[SignalProvider],
        config: Optional[SignalConfig] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.sources: List[SignalProvider] = list(sources)
        self.config = config or SignalConfig()
        self.policy = QuorumPolicy.from_config(self.config)
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)

        self.aggregations_completed = 0
        self.aggregations_failed = 0

        self.logger.info(f"Signal aggregator initialized with {len(self.sources)} sources")

    async def aggregate_signals(self, symbol: str) -> AggregatedSignal:
        """Query every available source concurrently and apply the quorum."""
        self.logger.info(f"Aggregating signals for {symbol}")

        responses = await asyncio.gather(*(self._query_source(source, symbol) for source in self.sources))
        valid = [signal for signal in responses if signal is not None]

        if len(valid) < self.config.min_sources:
            self.aggregations_failed += 1
            error = InsufficientSources(symbol, len(valid), self.config.min_sources)
            self.logger.error(str(error))
            raise error

        result = self.policy.tally(symbol, valid)
        self.aggregations_completed += 1

        self.logger.info(
            f"{symbol}: BUY {result.buy_signals}/{result.total_sources} "
            f"({result.buy_percentage:.1f}%), HOLD {result.hold_signals}, SELL {result.sell_signals}, "
            f"required {result.required_votes} "
            f"({self.policy.ratio_for(result.total_sources) * 100:.0f}%) -> "
            f"buy={result.should_buy} sell={result.should_sell}"
        )

        if self.event_bus is not None:
            await self.event_bus.publish(EventType.SIGNALS_AGGREGATED, symbol=symbol, result=result)
        return result

    async def _query_source(self, source: SignalProvider, symbol: str) -> Optional[TradingSignal]:
        """One source, one attempt. Any failure contributes nothing this round."""
        try:
            if not await source.is_available():
                self.logger.warning(f"{source.name} is disabled, skipping")
                return None

            try:
                signal = await asyncio.wait_for(source.get_signal(symbol), timeout=self.config.timeout)
            except asyncio.TimeoutError:
                raise SourceTimeout(source.name, self.config.timeout)

            self.logger.info(f"{source.name}: {signal.signal.value} ({signal.confidence:.0f}%)")
            return signal

        except Exception as e:
            self.logger.warning(f"{source.name} failed for {symbol}: {e}")
            return None

    async def aggregate_multiple_signals(self, symbols: Sequence[str]) -> List[AggregatedSignal]:
        """Aggregate each symbol in turn, omitting symbols that could not be aggregated."""
        self.logger.info(f"Aggregating signals for {len(symbols)} symbols")
        results = []
        for symbol in symbols:
            try:
                results.append(await self.aggregate_signals(symbol))
            except Exception as e:
                self.logger.warning(f"Skipping {symbol}: {e}")
        return results

    def filter_buy_recommendations(self, signals: Sequence[AggregatedSignal]) -> List[AggregatedSignal]:
        return sorted(
            (s for s in signals if s.should_buy),
            key=lambda s: s.buy_percentage,
            reverse=True,
        )

    def filter_sell_recommendations(self, signals: Sequence[AggregatedSignal]) -> List[AggregatedSignal]:
        return sorted(
            (s for s in signals if s.should_sell),
            key=lambda s: s.sell_signals,
            reverse=True,
        )

    def select_best_buy_candidate(self, signals: Sequence[AggregatedSignal]) -> Optional[AggregatedSignal]:
        """Highest buy percentage among buy-consensus symbols, or None."""
        recommendations = self.filter_buy_recommendations(signals)
        if not recommendations:
            self.logger.info("No buy recommendations")
            return None

        best = recommendations[0]
        self.logger.info(f"Best candidate: {best.symbol} (buy {best.buy_percentage:.1f}%)")
        return best

    async def get_stats(self) -> Dict[str, Any]:
        active = 0
        for source in self.sources:
            if await source.is_available():
                active += 1
        return {
            "total_sources": len(self.sources),
            "active_sources": active,
            "aggregations_completed": self.aggregations_completed,
            "aggregations_failed": self.aggregations_failed,
            "config": self.config.model_dump(),
        }

    def update_config(self, **changes: Any) -> SignalConfig:
        """Replace selected signal settings; the new config is validated as a whole."""
        self.config = SignalConfig.model_validate({**self.config.model_dump(), **changes})
        self.policy = QuorumPolicy.from_config(self.config)
        self.logger.info(f"Signal aggregator config updated: {changes}")
        return self.config
