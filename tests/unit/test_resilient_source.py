"""
Unit tests for ResilientSignalSource: caching, rate limiting and the circuit breaker.
"""

from typing import List

import pytest

from daytrader.config import SignalConfig
from daytrader.events import EventBus, EventType
from daytrader.exceptions import SourceCircuitOpen
from daytrader.models.signals import SignalAction, TradingSignal
from daytrader.signal_sources import ResilientSignalSource, SignalSource


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FlakySource(SignalSource):
    name = "flaky"

    def __init__(self):
        self.fail = False
        self.fetches = 0

    async def fetch_signal(self, symbol: str) -> TradingSignal:
        self.fetches += 1
        if self.fail:
            raise ConnectionError("upstream unavailable")
        return TradingSignal(source=self.name, symbol=symbol, signal=SignalAction.BUY, confidence=80.0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def source():
    return FlakySource()


def make_resilient(source, clock, bus=None, **kwargs):
    options = dict(cache_ttl=300.0, rate_limit_interval=0.0, max_consecutive_errors=3, cooldown=86400.0)
    options.update(kwargs)
    return ResilientSignalSource(source, event_bus=bus, clock=clock, sleep=clock.sleep, **options)


class TestCache:
    """Test TTL caching keyed by source and symbol."""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_fetch(self, source, clock):
        resilient = make_resilient(source, clock)

        first = await resilient.get_signal("AAPL")
        second = await resilient.get_signal("AAPL")

        assert first == second
        assert source.fetches == 1
        assert resilient.cache_hits == 1

    @pytest.mark.asyncio
    async def test_cache_is_per_symbol(self, source, clock):
        resilient = make_resilient(source, clock)

        await resilient.get_signal("AAPL")
        await resilient.get_signal("MSFT")

        assert source.fetches == 2
        assert resilient.stats()["cache_size"] == 2

    @pytest.mark.asyncio
    async def test_cache_expires_after_ttl(self, source, clock):
        resilient = make_resilient(source, clock, cache_ttl=300.0)

        await resilient.get_signal("AAPL")
        clock.now += 300.0
        await resilient.get_signal("AAPL")

        assert source.fetches == 2

    @pytest.mark.asyncio
    async def test_clear_cache(self, source, clock):
        resilient = make_resilient(source, clock)

        await resilient.get_signal("AAPL")
        resilient.clear_cache()
        await resilient.get_signal("AAPL")

        assert source.fetches == 2


class TestRateLimit:
    """Test minimum spacing between fetch starts."""

    @pytest.mark.asyncio
    async def test_consecutive_fetches_are_spaced(self, source, clock):
        resilient = make_resilient(source, clock, cache_ttl=0.0, rate_limit_interval=1.0)

        await resilient.get_signal("AAPL")
        await resilient.get_signal("MSFT")
        await resilient.get_signal("NVDA")

        assert clock.sleeps == [1.0, 1.0]
        assert source.fetches == 3

    @pytest.mark.asyncio
    async def test_no_wait_once_interval_has_passed(self, source, clock):
        resilient = make_resilient(source, clock, cache_ttl=0.0, rate_limit_interval=1.0)

        await resilient.get_signal("AAPL")
        clock.now += 5.0
        await resilient.get_signal("MSFT")

        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_cache_hits_are_not_rate_limited(self, source, clock):
        resilient = make_resilient(source, clock, rate_limit_interval=1.0)

        await resilient.get_signal("AAPL")
        await resilient.get_signal("AAPL")

        assert clock.sleeps == []


class TestCircuitBreaker:
    """Test disabling after consecutive failures and re-enabling after cooldown."""

    @pytest.mark.asyncio
    async def test_errors_propagate_and_are_counted(self, source, clock):
        resilient = make_resilient(source, clock)
        source.fail = True

        with pytest.raises(ConnectionError):
            await resilient.get_signal("AAPL")

        assert resilient.consecutive_errors == 1
        assert await resilient.is_available() is True

    @pytest.mark.asyncio
    async def test_three_failures_disable_source(self, source, clock):
        bus = EventBus()
        resilient = make_resilient(source, clock, bus=bus)
        source.fail = True

        for _ in range(3):
            with pytest.raises(ConnectionError):
                await resilient.get_signal("AAPL")

        assert resilient.disabled is True
        assert await resilient.is_available() is False
        with pytest.raises(SourceCircuitOpen):
            await resilient.get_signal("AAPL")
        assert source.fetches == 3
        assert len(bus.events_of(EventType.SERVICE_DISABLED)) == 1

    @pytest.mark.asyncio
    async def test_source_stays_disabled_until_cooldown(self, source, clock):
        bus = EventBus()
        resilient = make_resilient(source, clock, bus=bus, cooldown=86400.0)
        source.fail = True
        for _ in range(3):
            with pytest.raises(ConnectionError):
                await resilient.get_signal("AAPL")
        source.fail = False

        clock.now += 86399.0
        assert await resilient.is_available() is False

        clock.now += 1.0
        assert await resilient.is_available() is True
        assert resilient.consecutive_errors == 0
        assert len(bus.events_of(EventType.SERVICE_ENABLED)) == 1

        signal = await resilient.get_signal("AAPL")
        assert signal.signal == SignalAction.BUY

    @pytest.mark.asyncio
    async def test_success_resets_error_count(self, source, clock):
        resilient = make_resilient(source, clock, cache_ttl=0.0)

        source.fail = True
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await resilient.get_signal("AAPL")
        source.fail = False
        await resilient.get_signal("AAPL")

        assert resilient.consecutive_errors == 0
        source.fail = True
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await resilient.get_signal("AAPL")
        assert resilient.disabled is False

    @pytest.mark.asyncio
    async def test_reset_reenables_immediately(self, source, clock):
        resilient = make_resilient(source, clock)
        source.fail = True
        for _ in range(3):
            with pytest.raises(ConnectionError):
                await resilient.get_signal("AAPL")

        resilient.reset()

        assert await resilient.is_available() is True
        assert resilient.consecutive_errors == 0

    @pytest.mark.asyncio
    async def test_successful_fetch_publishes_event(self, source, clock):
        bus = EventBus()
        resilient = make_resilient(source, clock, bus=bus)

        await resilient.get_signal("AAPL")
        await resilient.get_signal("AAPL")

        fetched = bus.events_of(EventType.SIGNAL_FETCHED)
        assert len(fetched) == 1
        assert fetched[0].payload["source"] == "flaky"

    def test_from_config(self, source):
        config = SignalConfig(cache_ttl=60.0, rate_limit_interval=2.0, max_consecutive_errors=5, cooldown=3600.0)

        resilient = ResilientSignalSource.from_config(source, config)

        assert resilient.name == "flaky"
        assert resilient.cache_ttl == 60.0
        assert resilient.rate_limit_interval == 2.0
        assert resilient.max_consecutive_errors == 5
        assert resilient.cooldown == 3600.0
