"""
Resilience wrapper for signal sources.

ResilientSignalSource adds three behaviours around a raw SignalSource:

- a TTL cache keyed by (source, symbol); a hit never touches the source
- a rate limiter that serialises fetches with a minimum spacing between starts
- a circuit breaker that disables the source after consecutive failures and
  re-enables it once the cooldown has elapsed

Failures are counted and then re-raised; no default signal is substituted.
Time comes from an injectable monotonic clock so cooldowns can be tested
without waiting.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from ..config import SignalConfig
from ..events import EventBus, EventType
from ..exceptions import SourceCircuitOpen
from ..models.signals import TradingSignal
from .base import SignalSource

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[Any]]


class ResilientSignalSource:
    """Cached, rate-limited, circuit-broken view of a SignalSource."""

    def __init__(
        self,
        source: SignalSource,
        cache_ttl: float = 300.0,
        rate_limit_interval: float = 1.0,
        max_consecutive_errors: int = 3,
        cooldown: float = 24 * 60 * 60.0,
        event_bus: Optional[EventBus] = None,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.source = source
        self.cache_ttl = cache_ttl
        self.rate_limit_interval = rate_limit_interval
        self.max_consecutive_errors = max_consecutive_errors
        self.cooldown = cooldown
        self.event_bus = event_bus
        self._clock = clock
        self._sleep = sleep

        self._cache: Dict[Tuple[str, str], Tuple[TradingSignal, float]] = {}
        self._lock = asyncio.Lock()
        self._last_call_started: Optional[float] = None

        self._consecutive_errors = 0
        self._disabled_at: Optional[float] = None

        self.total_fetches = 0
        self.total_errors = 0
        self.cache_hits = 0

    @classmethod
    def from_config(
        cls,
        source: SignalSource,
        config: SignalConfig,
        event_bus: Optional[EventBus] = None,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> "ResilientSignalSource":
        return cls(
            source,
            cache_ttl=config.cache_ttl,
            rate_limit_interval=config.rate_limit_interval,
            max_consecutive_errors=config.max_consecutive_errors,
            cooldown=config.cooldown,
            event_bus=event_bus,
            clock=clock,
            sleep=sleep,
        )

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def consecutive_errors(self) -> int:
        return self._consecutive_errors

    @property
    def disabled(self) -> bool:
        return self._disabled_at is not None

    async def is_available(self) -> bool:
        await self._maybe_reenable()
        return not self.disabled

    async def get_signal(self, symbol: str) -> TradingSignal:
        """Return a cached signal or fetch a fresh one through the limiter."""
        await self._maybe_reenable()
        if self.disabled:
            raise SourceCircuitOpen(self.name, retry_in=self._retry_in())

        cache_key = (self.name, symbol)
        cached = self._cache.get(cache_key)
        if cached is not None:
            signal, stored_at = cached
            if self._clock() - stored_at < self.cache_ttl:
                self.cache_hits += 1
                logger.debug(f"Cache hit: {self.name}/{symbol}")
                return signal
            del self._cache[cache_key]

        try:
            signal = await self._rate_limited_fetch(symbol)
        except Exception as e:
            await self._record_failure(e)
            raise

        self._cache[cache_key] = (signal, self._clock())
        self._consecutive_errors = 0
        await self._publish(EventType.SIGNAL_FETCHED, source=self.name, symbol=symbol, signal=signal)
        return signal

    async def _rate_limited_fetch(self, symbol: str) -> TradingSignal:
        async with self._lock:
            if self._last_call_started is not None:
                wait = self._last_call_started + self.rate_limit_interval - self._clock()
                if wait > 0:
                    await self._sleep(wait)
            self._last_call_started = self._clock()
            self.total_fetches += 1
            return await self.source.fetch_signal(symbol)

    async def _record_failure(self, error: Exception) -> None:
        self._consecutive_errors += 1
        self.total_errors += 1
        logger.error(f"Error in {self.name}: {error}")

        if self._consecutive_errors >= self.max_consecutive_errors and not self.disabled:
            self._disabled_at = self._clock()
            logger.error(
                f"{self.name} service disabled due to {self._consecutive_errors} consecutive errors"
            )
            await self._publish(EventType.SERVICE_DISABLED, source=self.name)

    async def _maybe_reenable(self) -> None:
        if self._disabled_at is None:
            return
        if self._clock() - self._disabled_at >= self.cooldown:
            self._disabled_at = None
            self._consecutive_errors = 0
            logger.info(f"{self.name} service re-enabled")
            await self._publish(EventType.SERVICE_ENABLED, source=self.name)

    def _retry_in(self) -> Optional[float]:
        if self._disabled_at is None:
            return None
        return max(0.0, self._disabled_at + self.cooldown - self._clock())

    async def _publish(self, event_type: EventType, **payload: Any) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(event_type, **payload)

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info(f"Cache cleared for {self.name}")

    def reset(self) -> None:
        """Re-enable the source, zero the error count and drop cached signals."""
        self._disabled_at = None
        self._consecutive_errors = 0
        self.clear_cache()
        logger.info(f"{self.name} service reset")

    def stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "disabled": self.disabled,
            "consecutive_errors": self._consecutive_errors,
            "total_fetches": self.total_fetches,
            "total_errors": self.total_errors,
            "cache_hits": self.cache_hits,
            "cache_size": len(self._cache),
            "retry_in": self._retry_in(),
        }
