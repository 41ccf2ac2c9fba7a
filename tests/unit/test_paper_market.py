"""
Unit tests for the in-memory market data provider, paper broker and quote signal source.
"""

from decimal import Decimal

import pytest

from daytrader.exceptions import BrokerOrderFailure, MarketDataError
from daytrader.market import InMemoryMarketDataProvider, PaperBrokerGateway
from daytrader.models.signals import SignalAction
from daytrader.models.trading import MarketData, OrderRequest, OrderSide, OrderStatus, ScreeningCriteria
from daytrader.signal_sources import QuoteSignalSource


@pytest.fixture
def market():
    return InMemoryMarketDataProvider(
        [
            MarketData(symbol="AAPL", price=Decimal("180"), volume=50_000_000),
            MarketData(symbol="MSFT", price=Decimal("410"), volume=20_000_000),
            MarketData(symbol="PENNY", price=Decimal("2"), volume=90_000_000),
            MarketData(symbol="THIN", price=Decimal("50"), volume=1_000),
            MarketData(symbol="XOM", price=Decimal("110"), volume=15_000_000),
        ],
        sectors={"XOM": "Energy", "AAPL": "Technology", "MSFT": "Technology"},
    )


class TestInMemoryMarketDataProvider:
    """Test quotes and screening."""

    @pytest.mark.asyncio
    async def test_get_market_data(self, market):
        quote = await market.get_market_data("AAPL")

        assert quote.price == Decimal("180")

    @pytest.mark.asyncio
    async def test_unknown_symbol_raises(self, market):
        with pytest.raises(MarketDataError):
            await market.get_market_data("NOPE")
        with pytest.raises(MarketDataError):
            market.set_price("NOPE", Decimal("1"))

    @pytest.mark.asyncio
    async def test_screening_filters_and_orders_by_volume(self, market):
        criteria = ScreeningCriteria(min_price=Decimal("10"), max_price=Decimal("500"), min_volume=1_000_000)

        assert await market.screen_stocks(criteria) == ["AAPL", "MSFT", "XOM"]

    @pytest.mark.asyncio
    async def test_screening_excludes_sectors(self, market):
        criteria = ScreeningCriteria(
            min_price=Decimal("10"),
            max_price=Decimal("500"),
            min_volume=1_000_000,
            exclude_sectors=["Energy"],
        )

        assert await market.screen_stocks(criteria) == ["AAPL", "MSFT"]

    def test_set_price_keeps_rest_of_quote(self, market):
        quote = market.set_price("AAPL", Decimal("181.5"))

        assert quote.price == Decimal("181.5")
        assert quote.volume == 50_000_000


class TestPaperBrokerGateway:
    """Test immediate fills with costs."""

    @pytest.mark.asyncio
    async def test_buy_fills_with_slippage_and_commission(self, market):
        broker = PaperBrokerGateway(market, slippage_rate=Decimal("0.001"), commission_rate=Decimal("0.0005"))

        handle = await broker.place_order(OrderRequest(symbol="AAPL", side=OrderSide.BUY, quantity=10))

        assert handle.status == OrderStatus.FILLED
        assert handle.fill_price == Decimal("180.180")
        assert handle.commission == Decimal("180.180") * 10 * Decimal("0.0005")
        assert broker.holdings == {"AAPL": 10}
        assert handle.order_id

    @pytest.mark.asyncio
    async def test_sell_reduces_holdings(self, market):
        broker = PaperBrokerGateway(market, slippage_rate=Decimal("0.001"))
        await broker.place_order(OrderRequest(symbol="AAPL", side=OrderSide.BUY, quantity=10))

        handle = await broker.place_order(OrderRequest(symbol="AAPL", side=OrderSide.SELL, quantity=10))

        assert handle.fill_price == Decimal("179.820")
        assert broker.holdings == {}
        assert len(broker.orders) == 2

    @pytest.mark.asyncio
    async def test_cannot_sell_more_than_held(self, market):
        broker = PaperBrokerGateway(market)

        with pytest.raises(BrokerOrderFailure):
            await broker.place_order(OrderRequest(symbol="AAPL", side=OrderSide.SELL, quantity=1))

    @pytest.mark.asyncio
    async def test_unpriced_symbol_fails(self, market):
        broker = PaperBrokerGateway(market)

        with pytest.raises(BrokerOrderFailure) as exc_info:
            await broker.place_order(OrderRequest(symbol="NOPE", side=OrderSide.BUY, quantity=1))

        assert exc_info.value.symbol == "NOPE"


class TestQuoteSignalSource:
    """Test the quote heuristic."""

    @pytest.mark.asyncio
    async def test_bullish_quote_votes_buy(self):
        market = InMemoryMarketDataProvider([MarketData(
            symbol="AAPL",
            price=Decimal("103"),
            previous_close=Decimal("100"),
            open=Decimal("102"),
            high=Decimal("110"),
            low=Decimal("100"),
            volume=4_000_000,
        )])
        source = QuoteSignalSource(market)

        signal = await source.fetch_signal("AAPL")

        assert signal.source == "quote_heuristic"
        assert signal.signal == SignalAction.BUY
        assert signal.confidence == 95.0
        assert "strong uptrend" in signal.reason
        assert "gap up" in signal.reason

    @pytest.mark.asyncio
    async def test_bearish_quote_votes_sell(self):
        market = InMemoryMarketDataProvider([MarketData(
            symbol="AAPL",
            price=Decimal("97"),
            previous_close=Decimal("100"),
            volume=500_000,
        )])

        signal = await QuoteSignalSource(market, name="quotes").fetch_signal("AAPL")

        assert signal.source == "quotes"
        assert signal.signal == SignalAction.SELL
        assert signal.confidence == 90.0

    def test_neutral_quote_holds(self):
        source = QuoteSignalSource(InMemoryMarketDataProvider())
        quote = MarketData(symbol="AAPL", price=Decimal("100"), volume=2_000_000)

        action, confidence, reason = source.analyze_quote(quote)

        assert action == SignalAction.HOLD
        assert confidence == 50.0
        assert reason == "neutral market"

    @pytest.mark.asyncio
    async def test_market_data_failure_propagates(self):
        source = QuoteSignalSource(InMemoryMarketDataProvider())

        with pytest.raises(MarketDataError):
            await source.fetch_signal("AAPL")
