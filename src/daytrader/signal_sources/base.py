"""
Signal source contract.

A signal source is one independent opinion provider (an analyst feed, a
screener, a technical model...). It answers a single question: BUY, HOLD or
SELL for a symbol, with a confidence. Sources are unreliable by assumption;
callers wrap them in a ResilientSignalSource.
"""

from abc import ABC, abstractmethod

from ..models.signals import TradingSignal


class SignalSource(ABC):
    """Raw opinion provider. Implementations raise on any failure."""

    name: str = "signal_source"

    @abstractmethod
    async def fetch_signal(self, symbol: str) -> TradingSignal:
        """Fetch one opinion for `symbol`."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"
