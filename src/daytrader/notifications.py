"""
Notification sinks.

A sink attaches to an EventBus and turns BUY_EXECUTED, SELL_EXECUTED and
ERROR events into user-facing messages. The console sink renders them with
rich; chat or e-mail delivery implements the same `notify` hook.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from rich.console import Console
from rich.panel import Panel

from .config import NotificationConfig
from .events import Event, EventBus, EventType

logger = logging.getLogger(__name__)


class NotificationSink(ABC):
    """Receives trading events worth telling a human about."""

    def __init__(self, config: Optional[NotificationConfig] = None):
        self.config = config or NotificationConfig()
        self.sent_count = 0

    def attach(self, bus: EventBus) -> None:
        """Subscribe to the events enabled in the notification config."""
        if not self.config.enabled:
            logger.info("Notifications disabled; sink not attached")
            return
        if self.config.on_buy:
            bus.subscribe(EventType.BUY_EXECUTED, self._on_event)
        if self.config.on_sell:
            bus.subscribe(EventType.SELL_EXECUTED, self._on_event)
        if self.config.on_error:
            bus.subscribe(EventType.ERROR, self._on_event)

    async def _on_event(self, event: Event) -> None:
        await self.notify(event)
        self.sent_count += 1

    @abstractmethod
    async def notify(self, event: Event) -> None:
        """Deliver one event."""


def format_event(event: Event) -> str:
    """One-line human readable summary of a trading event."""
    p = event.payload
    if event.type == EventType.BUY_EXECUTED:
        return f"BUY {p.get('quantity')} {p.get('symbol')} @ {p.get('price')}"
    if event.type == EventType.SELL_EXECUTED:
        rate = p.get("profit_rate")
        rate_text = f"{float(rate) * 100:+.2f}%" if rate is not None else "n/a"
        return (
            f"SELL {p.get('quantity')} {p.get('symbol')} @ {p.get('price')} "
            f"({rate_text}, {p.get('reason', '')})"
        )
    if event.type == EventType.ERROR:
        return f"ERROR in {p.get('phase', 'unknown')}: {p.get('error')}"
    return f"{event.type.value}: {p}"


class ConsoleNotificationSink(NotificationSink):
    """Prints notifications as rich panels."""

    STYLES = {
        EventType.BUY_EXECUTED: ("Buy executed", "green"),
        EventType.SELL_EXECUTED: ("Sell executed", "cyan"),
        EventType.ERROR: ("Trading error", "red"),
    }

    def __init__(self, config: Optional[NotificationConfig] = None, console: Optional[Console] = None):
        super().__init__(config)
        self.console = console or Console()

    async def notify(self, event: Event) -> None:
        title, style = self.STYLES.get(event.type, (event.type.value, "white"))
        self.console.print(Panel(format_event(event), title=title, style=style))
