"""
Synthetic portfolio for backtests.

Fills happen at the reference price; slippage and commission are charged as
cash amounts proportional to notional, on entry and on exit. A closed round
trip becomes one BacktestTrade.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from ..exceptions import BacktestError
from ..models.backtest import BacktestTrade, ExitReason

logger = logging.getLogger(__name__)


@dataclass
class OpenLot:
    """An open long position inside the backtest."""
    symbol: str
    quantity: int
    entry_price: Decimal
    entry_date: date
    entry_commission: Decimal
    entry_slippage: Decimal

    def rate_at(self, price: Decimal) -> Decimal:
        return (price - self.entry_price) / self.entry_price


class SyntheticPortfolio:
    """Cash plus open lots with a trade log."""

    def __init__(
        self,
        initial_capital: Decimal,
        commission_rate: Decimal = Decimal("0"),
        slippage_rate: Decimal = Decimal("0"),
        strategy_name: str = "",
    ):
        self.initial_capital = Decimal(initial_capital)
        self.cash = Decimal(initial_capital)
        self.commission_rate = Decimal(commission_rate)
        self.slippage_rate = Decimal(slippage_rate)
        self.strategy_name = strategy_name
        self.positions: Dict[str, OpenLot] = {}
        self.trades: List[BacktestTrade] = []
        self._trade_seq = 0

    def _costs(self, price: Decimal, quantity: int) -> Tuple[Decimal, Decimal]:
        notional = price * quantity
        return notional * self.commission_rate, notional * self.slippage_rate

    def affordable_quantity(self, price: Decimal, budget: Optional[Decimal] = None) -> int:
        """Whole shares purchasable with `budget` (default: all cash) including entry costs."""
        available = self.cash if budget is None else min(budget, self.cash)
        if price <= 0 or available <= 0:
            return 0
        unit_cost = price * (Decimal("1") + self.commission_rate + self.slippage_rate)
        return int(available // unit_cost)

    def open_position(self, symbol: str, quantity: int, price: Decimal, day: date) -> OpenLot:
        if symbol in self.positions:
            raise BacktestError(f"Position already open for {symbol}")
        if quantity <= 0:
            raise BacktestError(f"Invalid quantity {quantity} for {symbol}")

        commission, slippage = self._costs(price, quantity)
        total = price * quantity + commission + slippage
        if total > self.cash:
            raise BacktestError(f"Insufficient cash for {quantity} {symbol}: {total} > {self.cash}")

        self.cash -= total
        lot = OpenLot(
            symbol=symbol,
            quantity=quantity,
            entry_price=price,
            entry_date=day,
            entry_commission=commission,
            entry_slippage=slippage,
        )
        self.positions[symbol] = lot
        logger.debug(f"{day} OPEN {quantity} {symbol} @ {price}")
        return lot

    def close_position(self, symbol: str, price: Decimal, day: date, reason: ExitReason) -> BacktestTrade:
        lot = self.positions.pop(symbol, None)
        if lot is None:
            raise BacktestError(f"No open position for {symbol}")

        commission, slippage = self._costs(price, lot.quantity)
        self.cash += price * lot.quantity - commission - slippage

        total_commission = lot.entry_commission + commission
        total_slippage = lot.entry_slippage + slippage
        pnl = (price - lot.entry_price) * lot.quantity

        self._trade_seq += 1
        trade = BacktestTrade(
            trade_id=f"T{self._trade_seq:05d}",
            symbol=symbol,
            quantity=lot.quantity,
            entry_price=lot.entry_price,
            exit_price=price,
            entry_date=lot.entry_date,
            exit_date=day,
            pnl=pnl,
            commission=total_commission,
            slippage=total_slippage,
            net_pnl=pnl - total_commission - total_slippage,
            exit_reason=reason,
            strategy=self.strategy_name,
        )
        self.trades.append(trade)
        logger.debug(f"{day} CLOSE {lot.quantity} {symbol} @ {price} ({reason.value}) net {trade.net_pnl:.2f}")
        return trade

    def market_value(self, prices: Dict[str, Decimal]) -> Decimal:
        """Cash plus open lots marked at `prices` (entry price when a symbol has no quote)."""
        holdings = sum(
            (lot.quantity * prices.get(sym, lot.entry_price) for sym, lot in self.positions.items()),
            Decimal("0"),
        )
        return self.cash + holdings
