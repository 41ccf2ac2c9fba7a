"""
Trading Operation Models

This module contains Pydantic models for live trading operations:
- MarketData / ScreeningCriteria: what the market-data provider returns and accepts
- OrderRequest / OrderHandle: market orders sent to and acknowledged by the broker
- Position: the single open position with running P&L
- TradeHistoryRecord: append-only log of executed orders
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class OrderSide(str, Enum):
    """Order side enumeration."""
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    """Order type enumeration."""
    MARKET = "market"
    LIMIT = "limit"


class OrderStatus(str, Enum):
    """Order status enumeration."""
    FILLED = "filled"
    REJECTED = "rejected"


class TradeAction(str, Enum):
    """Action recorded in the trade history."""
    BUY = "BUY"
    SELL = "SELL"


class MarketData(BaseModel):
    """Quote snapshot for a symbol."""

    symbol: str
    price: Decimal = Field(..., gt=Decimal("0"))
    bid: Optional[Decimal] = None
    ask: Optional[Decimal] = None
    volume: int = Field(default=0, ge=0)
    high: Optional[Decimal] = None
    low: Optional[Decimal] = None
    open: Optional[Decimal] = None
    previous_close: Optional[Decimal] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def change_percent(self) -> Optional[Decimal]:
        """Percent change versus previous close, if known."""
        if not self.previous_close:
            return None
        return (self.price - self.previous_close) / self.previous_close * Decimal("100")


class ScreeningCriteria(BaseModel):
    """Bounds used to filter the tradable universe."""

    min_price: Decimal
    max_price: Decimal
    min_volume: int
    exclude_sectors: List[str] = Field(default_factory=list)


class OrderRequest(BaseModel):
    """Order sent to the broker gateway."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    side: OrderSide
    quantity: int = Field(..., gt=0)
    order_type: OrderType = Field(default=OrderType.MARKET)


class OrderHandle(BaseModel):
    """Broker acknowledgement. Market orders are filled synchronously."""

    order_id: str
    symbol: str
    side: OrderSide
    quantity: int
    status: OrderStatus = Field(default=OrderStatus.FILLED)
    fill_price: Optional[Decimal] = None
    commission: Decimal = Field(default=Decimal("0"))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Position(BaseModel):
    """
    The single open long position.

    Created by a successful buy, re-priced on every monitoring tick and
    discarded by a successful sell.
    """

    model_config = ConfigDict(validate_assignment=True)

    symbol: str
    quantity: int = Field(..., gt=0)
    entry_price: Decimal = Field(..., gt=Decimal("0"))
    entry_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    current_price: Decimal = Field(..., gt=Decimal("0"))
    profit_rate: Decimal = Field(default=Decimal("0"))
    profit_amount: Decimal = Field(default=Decimal("0"))

    @computed_field
    @property
    def notional_value(self) -> Decimal:
        return self.current_price * self.quantity

    def update_price(self, new_price: Decimal) -> None:
        """Re-price the position and recompute P&L."""
        self.current_price = new_price
        self.profit_rate = (new_price - self.entry_price) / self.entry_price
        self.profit_amount = (new_price - self.entry_price) * self.quantity


class TradeHistoryRecord(BaseModel):
    """One executed order. The history is append-only."""

    model_config = ConfigDict(frozen=True)

    date: datetime
    symbol: str
    action: TradeAction
    quantity: int
    price: Decimal
    profit_rate: Optional[Decimal] = None
    profit_amount: Optional[Decimal] = None
    reason: str = ""
