"""
Market data and broker collaborators.
"""

from .base import BrokerGateway, MarketDataProvider
from .paper import InMemoryMarketDataProvider, PaperBrokerGateway

__all__ = [
    "BrokerGateway",
    "MarketDataProvider",
    "InMemoryMarketDataProvider",
    "PaperBrokerGateway",
]
