"""
Publish/subscribe event channel.

Engine components publish lifecycle and trading events on an EventBus;
notification sinks and tests subscribe to the event types they care about.
Handlers may be plain callables or coroutine functions. A failing handler is
logged and counted but never interrupts the publisher.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Events published by the engine."""
    STARTED = "started"
    STOPPED = "stopped"
    BUY_SIGNAL_GENERATED = "buy_signal_generated"
    BUY_EXECUTED = "buy_executed"
    SELL_EXECUTED = "sell_executed"
    ERROR = "error"
    SIGNAL_FETCHED = "signal_fetched"
    SIGNALS_AGGREGATED = "signals_aggregated"
    SERVICE_DISABLED = "service_disabled"
    SERVICE_ENABLED = "service_enabled"


class Event(BaseModel):
    """A published event with its payload."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    type: EventType
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


EventHandlerFunc = Callable[[Event], Any]


class EventHandler:
    """Wraps a subscriber callable with call and error counters."""

    def __init__(self, handler_func: EventHandlerFunc):
        self.handler_func = handler_func
        self.call_count = 0
        self.errors = 0
        self.last_called: Optional[datetime] = None

    async def handle(self, event: Event) -> bool:
        try:
            self.call_count += 1
            self.last_called = datetime.now(timezone.utc)

            result = self.handler_func(event)
            if asyncio.iscoroutine(result):
                await result
            return True

        except Exception as e:
            self.errors += 1
            logger.error(f"Error in event handler for {event.type.value}: {e}", exc_info=True)
            return False


class EventBus:
    """In-process event channel keyed by EventType."""

    def __init__(self):
        self._handlers: Dict[EventType, List[EventHandler]] = defaultdict(list)
        self.published_count = 0
        self.history: List[Event] = []
        self.max_history = 1000

    def subscribe(self, event_type: EventType, handler: EventHandlerFunc) -> EventHandler:
        """Register a handler for one event type."""
        wrapped = EventHandler(handler)
        self._handlers[event_type].append(wrapped)
        logger.debug(f"Subscribed {getattr(handler, '__name__', handler)!s} to {event_type.value}")
        return wrapped

    def unsubscribe(self, event_type: EventType, handler: EventHandlerFunc) -> bool:
        """Remove a previously registered handler. Returns False if it was not registered."""
        handlers = self._handlers.get(event_type, [])
        for wrapped in handlers:
            if wrapped.handler_func is handler:
                handlers.remove(wrapped)
                return True
        return False

    async def publish(self, event_type: EventType, **payload: Any) -> Event:
        """Deliver an event to every subscriber of its type, in subscription order."""
        event = Event(type=event_type, payload=payload)
        self.published_count += 1
        self.history.append(event)
        if len(self.history) > self.max_history:
            self.history.pop(0)

        for wrapped in list(self._handlers.get(event_type, [])):
            await wrapped.handle(event)
        return event

    def events_of(self, event_type: EventType) -> List[Event]:
        return [e for e in self.history if e.type == event_type]

    def handler_count(self, event_type: EventType) -> int:
        return len(self._handlers.get(event_type, []))
