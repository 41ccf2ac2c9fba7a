"""
Market-facing collaborator contracts.

The trading state machine only talks to the market through these two
interfaces. Concrete brokers and data vendors live outside this package;
`daytrader.market.paper` provides in-memory versions for paper trading and
tests.
"""

from abc import ABC, abstractmethod
from typing import List

from ..models.trading import MarketData, OrderHandle, OrderRequest, ScreeningCriteria


class MarketDataProvider(ABC):
    """Quotes and universe screening."""

    @abstractmethod
    async def get_market_data(self, symbol: str) -> MarketData:
        """Latest quote for `symbol`. Raises MarketDataError when unavailable."""

    @abstractmethod
    async def screen_stocks(self, criteria: ScreeningCriteria) -> List[str]:
        """Symbols passing the screening criteria, best candidates first."""


class BrokerGateway(ABC):
    """Order routing. Market orders fill synchronously."""

    @abstractmethod
    async def place_order(self, order: OrderRequest) -> OrderHandle:
        """Submit `order`. Raises BrokerOrderFailure when it cannot be filled."""
