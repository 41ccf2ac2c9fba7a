"""
Day Trading State Machine

Drives one trading day through calendar-gated phases:

    IDLE -> SCREENING -> SIGNAL_COLLECTION -> BUYING -> MONITORING -> SELLING -> IDLE

and MONITORING -> SELLING at the forced close time. At most one position is
open at any time. The position is only written by the buying and selling
steps, which run strictly in sequence on the event loop. A sell claims the
position before its order goes out, so the monitoring task and the forced
close never both sell it.

Phase failures are caught, logged, published as ERROR events and the machine
returns to the state it was in before the phase started.
"""

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config import Config
from ..events import EventBus, EventType
from ..exceptions import BrokerOrderFailure
from ..logger import get_trading_adapter
from ..market.base import BrokerGateway, MarketDataProvider
from ..models.backtest import ExitReason
from ..models.signals import AggregatedSignal
from ..models.trading import (
    OrderRequest,
    OrderSide,
    OrderStatus,
    Position,
    ScreeningCriteria,
    TradeAction,
    TradeHistoryRecord,
)
from ..signal_manager.aggregator import SignalAggregator
from .clock import DailyTrigger, seconds_until_time_today
from .risk import count_daily_buys, evaluate_exit, format_rate, position_size, take_profit_confirmed

Sleeper = Callable[[float], Awaitable[Any]]


class SchedulerState(str, Enum):
    """Phases of the trading day."""
    IDLE = "IDLE"
    SCREENING = "SCREENING"
    SIGNAL_COLLECTION = "SIGNAL_COLLECTION"
    BUYING = "BUYING"
    MONITORING = "MONITORING"
    SELLING = "SELLING"


class TradingStateMachine:
    """Single-position intraday trading scheduler."""

    def __init__(
        self,
        config: Config,
        aggregator: SignalAggregator,
        market_data: MarketDataProvider,
        broker: BrokerGateway,
        event_bus: Optional[EventBus] = None,
        now: Optional[Callable[[], datetime]] = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.config = config
        self.aggregator = aggregator
        self.market_data = market_data
        self.broker = broker
        self.event_bus = event_bus or EventBus()
        self.tz = config.schedule.tz
        self._now = now or (lambda: datetime.now(self.tz))
        self._sleep = sleep
        self.logger = logging.getLogger(__name__)

        self.state = SchedulerState.IDLE
        self.is_running = False
        self.current_position: Optional[Position] = None
        self.trade_history: List[TradeHistoryRecord] = []

        self.buy_trigger = DailyTrigger(config.schedule.buy_at, self.tz)
        self.force_close_trigger = DailyTrigger(config.schedule.force_close_at, self.tz)

        self._buy_task: Optional[asyncio.Task] = None
        self._force_close_task: Optional[asyncio.Task] = None
        self._monitor_task: Optional[asyncio.Task] = None
        # Set while a sell order is in flight; a second seller backs off
        self._selling = False
        # Bumped on stop; phases started under an older generation drop their results
        self._generation = 0

    # Lifecycle

    async def start(self) -> bool:
        """Schedule the daily buy and forced-close triggers."""
        if self.is_running:
            self.logger.warning("Scheduler is already running")
            return False

        if not self.config.trading.enabled:
            self.logger.warning("Automated trading is disabled (trading.enabled = false)")
            return False

        mode = "paper trading" if self.config.trading.paper_trading else "LIVE trading"
        self.logger.info(f"Starting day trading scheduler ({mode}, timezone {self.config.schedule.timezone})")

        self.is_running = True
        self._buy_task = asyncio.create_task(
            self._run_daily(self.buy_trigger, self.run_buy_phase, "buy phase")
        )
        self._force_close_task = asyncio.create_task(
            self._run_daily(self.force_close_trigger, self.force_close, "forced close")
        )

        self.logger.info(
            f"Buy at {self.config.schedule.buy_time}, monitoring from {self.config.schedule.sell_check_start}, "
            f"forced close at {self.config.schedule.force_close_time}"
        )
        await self.event_bus.publish(EventType.STARTED)
        return True

    async def stop(self) -> None:
        """Cancel all triggers and monitoring; in-flight phase results are discarded."""
        was_running = self.is_running
        self.is_running = False
        self._generation += 1

        for task in (self._buy_task, self._force_close_task, self._monitor_task):
            await self._cancel_task(task)
        self._buy_task = self._force_close_task = self._monitor_task = None

        if self.current_position is None:
            self.state = SchedulerState.IDLE

        if not was_running:
            self.logger.warning("Scheduler is not running")
            return

        self.logger.info("Scheduler stopped")
        await self.event_bus.publish(EventType.STOPPED)

    async def _cancel_task(self, task: Optional[asyncio.Task]) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run_daily(self, trigger: DailyTrigger, action: Callable[[], Awaitable[Any]], label: str) -> None:
        last_fire: Optional[datetime] = None
        while self.is_running:
            now = self._now()
            reference = max(now, last_fire) if last_fire is not None else now
            fire_at = trigger.next_fire(reference)
            self.logger.info(f"Next {label} at {fire_at.isoformat()}")
            await self._sleep(max(0.0, (fire_at - now).total_seconds()))
            if not self.is_running:
                break
            last_fire = fire_at
            try:
                await action()
            except Exception as e:
                self.logger.error(f"Unhandled error in {label}: {e}", exc_info=True)

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation

    # Buying

    async def run_buy_phase(self) -> Optional[Position]:
        """
        Screen, collect signals, pick the best candidate and buy it.

        Returns the new position, or None when the day is skipped.
        """
        log = get_trading_adapter(self.logger, phase="BUY")
        log.info("========== Buy phase ==========")

        if self.current_position is not None:
            log.info(f"Already holding {self.current_position.symbol}, skipping buy")
            return None

        today = self._now().astimezone(self.tz).date()
        buys_today = count_daily_buys(self.trade_history, today, self.tz)
        if buys_today >= self.config.risk_management.max_daily_trades:
            log.info(f"Daily trade limit reached ({self.config.risk_management.max_daily_trades})")
            return None

        previous_state = self.state
        generation = self._generation
        try:
            self.state = SchedulerState.SCREENING
            candidates = await self._screen_candidates()
            if self._is_stale(generation):
                return self._discard("screening", "scheduler stopped")
            if not candidates:
                log.info("No screening candidates, skipping today")
                self.state = SchedulerState.IDLE
                return None
            log.info(f"Candidates: {', '.join(candidates)}")

            self.state = SchedulerState.SIGNAL_COLLECTION
            signals = await self.aggregator.aggregate_multiple_signals(candidates)
            if self._is_stale(generation):
                return self._discard("signal collection", "scheduler stopped")

            best = self.aggregator.select_best_buy_candidate(signals)
            if best is None:
                log.info("No buy consensus, skipping today")
                self.state = SchedulerState.IDLE
                return None

            log.info(
                f"Best candidate {best.symbol}: {best.buy_signals}/{best.total_sources} sources "
                f"({best.buy_percentage:.1f}%)"
            )

            if self.config.trading.confirm_before_trade:
                log.info("confirm_before_trade is enabled, not placing the order")
                self.state = SchedulerState.IDLE
                await self.event_bus.publish(
                    EventType.BUY_SIGNAL_GENERATED, symbol=best.symbol, signal=best
                )
                return None

            self.state = SchedulerState.BUYING
            position = await self._execute_buy(best, generation)
            if position is None:
                if not self._is_stale(generation):
                    self.state = SchedulerState.IDLE
                return None

            self.state = SchedulerState.MONITORING
            if self._is_stale(generation):
                log.warning(f"Scheduler stopped while buying; holding {position.symbol} without monitoring")
                return position
            self._start_monitoring()
            return position

        except Exception as e:
            self.state = previous_state
            log.error(f"Buy phase failed: {e}", exc_info=True)
            await self._publish_error("buy", e)
            return None

    async def _screen_candidates(self) -> List[str]:
        screening = self.config.screening
        criteria = ScreeningCriteria(
            min_price=screening.min_price,
            max_price=screening.max_price,
            min_volume=screening.min_volume,
            exclude_sectors=screening.exclude_sectors,
        )
        candidates = await self.market_data.screen_stocks(criteria)
        return list(candidates)[:screening.candidate_count]

    async def _execute_buy(self, signal: AggregatedSignal, generation: int) -> Optional[Position]:
        log = get_trading_adapter(self.logger, phase="BUYING", symbol=signal.symbol)

        quote = await self.market_data.get_market_data(signal.symbol)
        if self._is_stale(generation):
            return self._discard("quote", "scheduler stopped")

        price = quote.price
        quantity = position_size(price, self.config.risk_management.max_position_size)
        if quantity <= 0:
            log.warning(
                f"Price ${price:,.2f} exceeds max position size "
                f"${self.config.risk_management.max_position_size:,.2f}, skipping buy"
            )
            return None

        log.info(f"Buying {quantity} @ ${price:,.2f} (${price * quantity:,.2f})")
        handle = await self.broker.place_order(
            OrderRequest(symbol=signal.symbol, side=OrderSide.BUY, quantity=quantity)
        )
        if handle.status != OrderStatus.FILLED:
            raise BrokerOrderFailure(f"Buy order {handle.order_id} not filled: {handle.status.value}", symbol=signal.symbol)

        now = self._now()
        position = Position(
            symbol=signal.symbol,
            quantity=quantity,
            entry_price=price,
            entry_time=now,
            current_price=price,
        )
        self.current_position = position
        self.trade_history.append(TradeHistoryRecord(
            date=now,
            symbol=signal.symbol,
            action=TradeAction.BUY,
            quantity=quantity,
            price=price,
            reason=f"Signal consensus: {signal.buy_signals}/{signal.total_sources} sources recommend",
        ))

        log.info(f"Bought {quantity} {signal.symbol} @ ${price:,.2f} (order {handle.order_id})")
        await self.event_bus.publish(
            EventType.BUY_EXECUTED,
            symbol=signal.symbol,
            quantity=quantity,
            price=price,
            order_id=handle.order_id,
            position=position,
        )
        return position

    # Monitoring

    def _start_monitoring(self) -> None:
        if self._monitor_task is not None and not self._monitor_task.done():
            self._monitor_task.cancel()
        self._monitor_task = asyncio.create_task(self._monitor_loop())

    async def _monitor_loop(self) -> None:
        schedule = self.config.schedule
        wait = seconds_until_time_today(self._now(), schedule.sell_check_at, self.tz)
        if wait > 0:
            self.logger.info(f"Monitoring starts at {schedule.sell_check_start}")
            await self._sleep(wait)

        self.logger.info("Monitoring position")
        while self.current_position is not None:
            await self.run_monitor_tick()
            if self.current_position is None:
                break
            await self._sleep(schedule.sell_check_interval)

    def _stop_monitoring(self) -> None:
        task = self._monitor_task
        self._monitor_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def run_monitor_tick(self) -> Optional[TradeHistoryRecord]:
        """
        Re-price the open position and apply the exit rules once.

        Returns the SELL record when the position was closed.
        """
        position = self.current_position
        if position is None:
            return None

        log = get_trading_adapter(self.logger, phase="MONITOR", symbol=position.symbol)
        previous_state = self.state
        generation = self._generation
        risk = self.config.risk_management
        try:
            quote = await self.market_data.get_market_data(position.symbol)
            if self._is_stale(generation):
                return self._discard("monitoring quote", "scheduler stopped")
            if self.current_position is not position:
                return self._discard("monitoring quote", "position already closed")

            position.update_price(quote.price)
            rate = position.profit_rate
            log.debug(f"${quote.price:,.2f} ({format_rate(rate)})")

            trigger = evaluate_exit(rate, risk)
            if trigger == ExitReason.EMERGENCY_STOP_LOSS:
                log.error(f"Emergency stop loss triggered ({format_rate(rate)})")
                return await self.execute_sell(f"emergency stop loss ({format_rate(rate)})")

            if trigger == ExitReason.STOP_LOSS:
                log.warning(f"Stop loss triggered ({format_rate(rate)})")
                return await self.execute_sell(f"stop loss ({format_rate(rate)})")

            if trigger == ExitReason.TAKE_PROFIT:
                log.info(f"Take profit reached ({format_rate(rate)}), checking sell consensus")
                consensus = await self.aggregator.aggregate_signals(position.symbol)
                if self._is_stale(generation):
                    return self._discard("sell consensus", "scheduler stopped")
                if self.current_position is not position:
                    return self._discard("sell consensus", "position already closed")

                log.info(f"Sell votes {consensus.sell_signals}/{consensus.total_sources}")
                if take_profit_confirmed(rate, risk, consensus.should_sell):
                    return await self.execute_sell(f"take profit ({format_rate(rate)})")
                log.info("Holding: insufficient sell consensus")

            return None

        except Exception as e:
            self.state = previous_state
            log.error(f"Monitoring tick failed: {e}", exc_info=True)
            await self._publish_error("monitoring", e)
            return None

    # Selling

    async def force_close(self) -> Optional[TradeHistoryRecord]:
        """Unconditionally sell any open position. A no-op without one; never retried."""
        log = get_trading_adapter(self.logger, phase="FORCE_CLOSE")
        log.info("========== Forced close ==========")

        position = self.current_position
        if position is None:
            log.info("No open position")
            return None
        if self._selling:
            log.info(f"Sell of {position.symbol} already in progress")
            return None

        previous_state = self.state
        try:
            try:
                quote = await self.market_data.get_market_data(position.symbol)
            except Exception as e:
                log.warning(f"Could not refresh {position.symbol} before forced close, using last price: {e}")
            else:
                if self.current_position is not position or self._selling:
                    log.info(f"{position.symbol} was sold while refreshing the quote")
                    return None
                position.update_price(quote.price)

            log.warning(f"Market close: force-selling {position.symbol}")
            return await self.execute_sell("forced close (market close)")

        except Exception as e:
            self.state = previous_state
            log.error(f"Forced close failed: {e}", exc_info=True)
            await self._publish_error("force_close", e)
            return None

    async def execute_sell(self, reason: str) -> Optional[TradeHistoryRecord]:
        """Sell the full position at market. Order failures propagate to the caller."""
        position = self.current_position
        if position is None:
            self.logger.warning("No position to sell")
            return None

        log = get_trading_adapter(self.logger, phase="SELLING", symbol=position.symbol)
        if self._selling:
            log.info(f"Sell already in progress, ignoring '{reason}'")
            return None

        self._selling = True
        self.state = SchedulerState.SELLING
        log.info(
            f"Selling {position.quantity} ({reason}): entry ${position.entry_price:,.2f}, "
            f"now ${position.current_price:,.2f}, {format_rate(position.profit_rate)} "
            f"(${position.profit_amount:,.2f})"
        )

        try:
            handle = await self.broker.place_order(
                OrderRequest(symbol=position.symbol, side=OrderSide.SELL, quantity=position.quantity)
            )
        finally:
            self._selling = False
        if handle.status != OrderStatus.FILLED:
            raise BrokerOrderFailure(f"Sell order {handle.order_id} not filled: {handle.status.value}", symbol=position.symbol)

        record = TradeHistoryRecord(
            date=self._now(),
            symbol=position.symbol,
            action=TradeAction.SELL,
            quantity=position.quantity,
            price=position.current_price,
            profit_rate=position.profit_rate,
            profit_amount=position.profit_amount,
            reason=reason,
        )
        self.trade_history.append(record)
        self.current_position = None
        self.state = SchedulerState.IDLE
        self._stop_monitoring()

        log.info(f"Sold {record.quantity} {record.symbol} (order {handle.order_id})")
        await self.event_bus.publish(
            EventType.SELL_EXECUTED,
            symbol=record.symbol,
            quantity=record.quantity,
            price=record.price,
            profit_rate=record.profit_rate,
            profit_amount=record.profit_amount,
            reason=reason,
            order_id=handle.order_id,
        )
        return record

    # Helpers

    def _discard(self, what: str, reason: str) -> None:
        self.logger.info(f"Discarding {what} result: {reason}")
        self.state = SchedulerState.MONITORING if self.current_position else SchedulerState.IDLE
        return None

    async def _publish_error(self, phase: str, error: Exception) -> None:
        await self.event_bus.publish(EventType.ERROR, phase=phase, error=str(error), exception=error)

    # Reporting

    def get_current_position(self) -> Optional[Position]:
        return self.current_position

    def get_trade_history(self) -> List[TradeHistoryRecord]:
        return list(self.trade_history)

    def _today_records(self) -> List[TradeHistoryRecord]:
        today = self._now().astimezone(self.tz).date()
        return [r for r in self.trade_history if r.date.astimezone(self.tz).date() == today]

    def get_today_stats(self) -> Dict[str, Any]:
        """Win/loss statistics over today's closed trades."""
        sells = [r for r in self._today_records() if r.action == TradeAction.SELL]
        wins = sum(1 for r in sells if (r.profit_rate or 0) > 0)
        losses = sum(1 for r in sells if (r.profit_rate or 0) < 0)
        total_profit = sum((r.profit_amount or Decimal("0") for r in sells), Decimal("0"))
        return {
            "trades": len(sells),
            "wins": wins,
            "losses": losses,
            "total_profit": total_profit,
            "win_rate": wins / len(sells) * 100.0 if sells else 0.0,
        }

    def generate_daily_report(self) -> str:
        stats = self.get_today_stats()
        lines = [
            "========== Daily Report ==========",
            f"Date: {self._now().astimezone(self.tz).date().isoformat()}",
            "",
            "[Statistics]",
            f"Trades: {stats['trades']}",
            f"Wins: {stats['wins']}",
            f"Losses: {stats['losses']}",
            f"Win rate: {stats['win_rate']:.1f}%",
            f"Total P&L: ${stats['total_profit']:,.2f}",
            "",
            "[Trades]",
        ]
        for i, record in enumerate(self._today_records(), 1):
            lines.append(f"{i}. {record.action.value} {record.symbol} x {record.quantity} @ ${record.price:,.2f}")
            lines.append(f"   Reason: {record.reason}")
            if record.profit_rate is not None:
                lines.append(f"   P&L: {format_rate(record.profit_rate)} (${record.profit_amount:,.2f})")
        lines.append("==================================")
        return "\n".join(lines)

    def get_status(self) -> Dict[str, Any]:
        now = self._now()
        position = self.current_position
        return {
            "running": self.is_running,
            "state": self.state.value,
            "position": position.model_dump() if position else None,
            "trades_today": len(self._today_records()),
            "next_buy": self.buy_trigger.next_fire(now).isoformat(),
            "next_force_close": self.force_close_trigger.next_fire(now).isoformat(),
        }

    async def test_run(self, pause: float = 5.0) -> str:
        """Run a buy phase and one monitoring tick immediately, then report."""
        self.logger.info("Test run")
        await self.run_buy_phase()
        await self._sleep(pause)
        await self.run_monitor_tick()
        report = self.generate_daily_report()
        self.logger.info("\n" + report)
        return report
