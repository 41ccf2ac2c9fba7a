"""
Paper trading collaborators.

InMemoryMarketDataProvider serves quotes from a dictionary that callers (or a
replay loop) update. PaperBrokerGateway fills market orders immediately at
the current quote with slippage and a proportional commission.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from uuid import uuid4

from ..exceptions import BrokerOrderFailure, MarketDataError
from ..models.trading import (
    MarketData,
    OrderHandle,
    OrderRequest,
    OrderSide,
    OrderStatus,
    ScreeningCriteria,
)
from .base import BrokerGateway, MarketDataProvider

logger = logging.getLogger(__name__)


class InMemoryMarketDataProvider(MarketDataProvider):
    """Quote store with simple price/volume/sector screening."""

    def __init__(self, quotes: Optional[Iterable[MarketData]] = None, sectors: Optional[Dict[str, str]] = None):
        self._quotes: Dict[str, MarketData] = {}
        self.sectors: Dict[str, str] = dict(sectors or {})
        for quote in quotes or []:
            self.update_quote(quote)

    def update_quote(self, quote: MarketData) -> None:
        self._quotes[quote.symbol] = quote

    def set_price(self, symbol: str, price: Decimal) -> MarketData:
        """Move the last price of a known symbol, keeping the rest of the quote."""
        if symbol not in self._quotes:
            raise MarketDataError(f"Unknown symbol: {symbol}")
        quote = self._quotes[symbol].model_copy(update={"price": Decimal(str(price))})
        self._quotes[symbol] = quote
        return quote

    @property
    def symbols(self) -> List[str]:
        return list(self._quotes)

    async def get_market_data(self, symbol: str) -> MarketData:
        quote = self._quotes.get(symbol)
        if quote is None:
            raise MarketDataError(f"No market data for {symbol}")
        return quote

    async def screen_stocks(self, criteria: ScreeningCriteria) -> List[str]:
        excluded = set(criteria.exclude_sectors)
        passing = [
            q for q in self._quotes.values()
            if criteria.min_price <= q.price <= criteria.max_price
            and q.volume >= criteria.min_volume
            and self.sectors.get(q.symbol) not in excluded
        ]
        passing.sort(key=lambda q: q.volume, reverse=True)
        return [q.symbol for q in passing]


class PaperBrokerGateway(BrokerGateway):
    """Immediate-fill broker simulation backed by a MarketDataProvider."""

    def __init__(
        self,
        market_data: MarketDataProvider,
        slippage_rate: Decimal = Decimal("0"),
        commission_rate: Decimal = Decimal("0"),
    ):
        self.market_data = market_data
        self.slippage_rate = Decimal(str(slippage_rate))
        self.commission_rate = Decimal(str(commission_rate))
        self.holdings: Dict[str, int] = {}
        self.orders: List[OrderHandle] = []
        self.fees_paid = Decimal("0")

    async def place_order(self, order: OrderRequest) -> OrderHandle:
        try:
            quote = await self.market_data.get_market_data(order.symbol)
        except MarketDataError as e:
            raise BrokerOrderFailure(f"Cannot price order: {e}", symbol=order.symbol) from e

        held = self.holdings.get(order.symbol, 0)
        if order.side == OrderSide.SELL and order.quantity > held:
            raise BrokerOrderFailure(
                f"Cannot sell {order.quantity} {order.symbol}: only {held} held",
                symbol=order.symbol,
            )

        if order.side == OrderSide.BUY:
            fill_price = quote.price * (Decimal("1") + self.slippage_rate)
            self.holdings[order.symbol] = held + order.quantity
        else:
            fill_price = quote.price * (Decimal("1") - self.slippage_rate)
            remaining = held - order.quantity
            if remaining:
                self.holdings[order.symbol] = remaining
            else:
                self.holdings.pop(order.symbol, None)

        commission = fill_price * order.quantity * self.commission_rate
        self.fees_paid += commission

        handle = OrderHandle(
            order_id=str(uuid4()),
            symbol=order.symbol,
            side=order.side,
            quantity=order.quantity,
            status=OrderStatus.FILLED,
            fill_price=fill_price,
            commission=commission,
        )
        self.orders.append(handle)
        logger.info(f"PAPER FILL: {order.side.value} {order.quantity} {order.symbol} @ ${fill_price:,.2f}")
        return handle
