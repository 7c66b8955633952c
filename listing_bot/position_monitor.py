"""Background monitor that reconciles bracket fills with local trades."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from listing_bot.database import Database
from listing_bot.models import OrderStatus, TerminalTransition, TradeRecord, TradeStatus
from listing_bot.state import TradingState
from listing_bot.trade_rules import profit_loss_percent, resolve_fill
from listing_bot.venue_client import VenueGateway


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class MonitorReport:
    checked: int = 0
    skipped: int = 0
    closed: dict[int, TradeStatus] = field(default_factory=dict)
    failed: list[int] = field(default_factory=list)


class PositionMonitor:
    def __init__(
        self,
        database: Database,
        venue: VenueGateway,
        state: TradingState,
        logger: Any | None = None,
        mode: str | None = None,
        poll_interval_sec: float = 10,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.database = database
        self.venue = venue
        self.state = state
        self.logger = logger
        self.mode = mode
        self.poll_interval_sec = poll_interval_sec
        self.clock = clock

    async def restore(self) -> int:
        """Reseed the active set from the store so memory and disk agree after a restart."""
        trades = await self.database.list_active_trades(self.mode)
        await self.state.reseed(trades)
        if hasattr(self.venue, "restore_orders"):
            orders = await self.venue.restore_orders(trades)
            if orders:
                self._info("PositionMonitor: re-registered {} resting paper orders", orders)
        self._info("PositionMonitor: restored {} active trades", len(trades))
        return len(trades)

    async def run_loop(self) -> None:
        while True:
            started = self.clock()
            try:
                await self.check_once()
            except Exception as exc:  # noqa: BLE001
                self._error("PositionMonitor tick error: {}", exc)
            elapsed = (self.clock() - started).total_seconds()
            if elapsed > self.poll_interval_sec:
                self._warning("PositionMonitor tick took {:.2f}s (> poll interval)", elapsed)
            await asyncio.sleep(self.poll_interval_sec)

    async def check_once(self) -> MonitorReport:
        report = MonitorReport()
        for trade in self.state.active_trades():
            if not await self.state.claim(trade.id):
                report.skipped += 1
                continue
            report.checked += 1
            try:
                reason = await self._check_trade(trade)
                if reason is not None:
                    report.closed[trade.id] = reason
            except Exception as exc:  # noqa: BLE001
                report.failed.append(trade.id)
                self._error("PositionMonitor: check failed trade_id={} symbol={} err={}", trade.id, trade.symbol, exc)
            finally:
                await self.state.release(trade.id)
        return report

    async def _check_trade(self, trade: TradeRecord) -> TradeStatus | None:
        tp_status, sl_status = await self._fetch_statuses(trade)
        reason = resolve_fill(tp_status.status, sl_status.status)
        if reason is None:
            return None
        filled = tp_status if reason == TradeStatus.FILLED_TP else sl_status
        await self._close(trade, reason, filled)
        return reason

    async def _fetch_statuses(self, trade: TradeRecord) -> tuple[OrderStatus, OrderStatus]:
        results = await asyncio.gather(
            self.venue.get_order_status(trade.symbol, trade.tp_order_id),
            self.venue.get_order_status(trade.symbol, trade.sl_order_id),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return results[0], results[1]

    async def _close(self, trade: TradeRecord, reason: TradeStatus, filled: OrderStatus) -> None:
        if reason == TradeStatus.FILLED_TP:
            sibling_id, fallback_price = trade.sl_order_id, trade.take_profit_price
        else:
            sibling_id, fallback_price = trade.tp_order_id, trade.stop_loss_price

        cancelled = await self.venue.cancel_order(trade.symbol, sibling_id)
        if not cancelled:
            self._warning("PositionMonitor: sibling order={} not cancelled trade_id={}", sibling_id, trade.id)

        exit_price = filled.price if filled.price > 0 else fallback_price
        transition = TerminalTransition(
            reason=reason,
            exit_price=exit_price,
            exit_time=self.clock(),
            profit_loss_percent=profit_loss_percent(trade.entry_price, exit_price),
        )
        applied = await self.database.mark_trade_terminal(trade.id, transition)
        if not applied:
            self._info("PositionMonitor: trade_id={} was already terminal in store", trade.id)
        await self.state.remove_trade(trade.id)
        self._info(
            "PositionMonitor: closed trade_id={} symbol={} reason={} exit_price={} pnl={:.2f}%",
            trade.id,
            trade.symbol,
            reason.value,
            exit_price,
            transition.profit_loss_percent,
        )

    def _info(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "info"):
            self.logger.info(message, *args)

    def _warning(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "warning"):
            self.logger.warning(message, *args)
        elif self.logger is not None and hasattr(self.logger, "info"):
            self.logger.info(message, *args)

    def _error(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "error"):
            self.logger.error(message, *args)
