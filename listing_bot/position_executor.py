"""Position executor: market entry, bracket placement, trade persistence."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from listing_bot.config import TradingConfig
from listing_bot.database import Database
from listing_bot.errors import BracketPlacementError, VenueError
from listing_bot.models import MarketFill, TradeRecord
from listing_bot.state import TradingState
from listing_bot.trade_rules import compute_bracket, order_quantity
from listing_bot.venue_client import VenueGateway


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PositionExecutor:
    """Opens one position per accepted symbol and hands it to the monitor."""

    def __init__(
        self,
        params: TradingConfig,
        database: Database,
        venue: VenueGateway,
        state: TradingState,
        logger: Any,
        mode: str,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.params = params
        self.database = database
        self.venue = venue
        self.state = state
        self.logger = logger
        self.mode = mode
        self.clock = clock

    async def open_position(self, symbol: str) -> TradeRecord:
        entry_time = self.clock()
        last_price = await self.venue.get_price(symbol)
        qty = order_quantity(self.params.buy_amount_usdt, last_price)

        fill = await self.venue.market_buy(symbol, qty)
        await self.state.arm_cooldown(symbol, entry_time)
        self.logger.info(
            "PositionExecutor: bought symbol={} qty={} price={} order_id={}",
            symbol,
            fill.executed_qty,
            fill.price,
            fill.order_id,
        )

        bracket = compute_bracket(
            fill.price,
            self.params.take_profit_pct,
            self.params.stop_loss_pct,
            self.params.fee_rate,
        )
        tp_result, sl_result = await asyncio.gather(
            self.venue.place_take_profit(symbol, fill.executed_qty, bracket.take_profit),
            self.venue.place_stop_loss(symbol, fill.executed_qty, bracket.stop_loss, bracket.stop_loss),
            return_exceptions=True,
        )
        failures = [r for r in (tp_result, sl_result) if isinstance(r, BaseException)]
        if failures:
            await self._handle_bracket_failure(symbol, fill, tp_result, sl_result, failures[0])

        trade = TradeRecord(
            id=None,
            mode=self.mode,
            symbol=symbol,
            entry_price=fill.price,
            quantity=fill.executed_qty,
            entry_time=entry_time,
            take_profit_price=bracket.take_profit,
            stop_loss_price=bracket.stop_loss,
            entry_order_id=fill.order_id,
            tp_order_id=str(tp_result),
            sl_order_id=str(sl_result),
        )
        try:
            trade.id = await self.database.insert_trade(trade)
        except Exception as exc:
            self.logger.error(
                "PositionExecutor: trade not persisted symbol={} entry_order={} tp_order={} sl_order={} err={}",
                symbol,
                fill.order_id,
                trade.tp_order_id,
                trade.sl_order_id,
                exc,
            )
            await self._abandon_position(symbol, fill, [trade.tp_order_id, trade.sl_order_id])
            raise
        await self.state.add_trade(trade)
        self.logger.info(
            "PositionExecutor: trade id={} open symbol={} tp={} sl={}",
            trade.id,
            symbol,
            bracket.take_profit,
            bracket.stop_loss,
        )
        return trade

    async def _handle_bracket_failure(
        self,
        symbol: str,
        fill: MarketFill,
        tp_result: str | BaseException,
        sl_result: str | BaseException,
        cause: BaseException,
    ) -> None:
        self.logger.error("PositionExecutor: bracket placement failed symbol={} err={}", symbol, cause)
        placed = [r for r in (tp_result, sl_result) if not isinstance(r, BaseException)]
        unwound = await self._abandon_position(symbol, fill, placed)
        raise BracketPlacementError(symbol, fill.executed_qty, unwound, cause)

    async def _abandon_position(self, symbol: str, fill: MarketFill, order_ids: list[str]) -> bool:
        """Cancel resting exit orders, then unwind or flag the fill. True if unwound."""
        for order_id in order_ids:
            try:
                cancelled = await self.venue.cancel_order(symbol, order_id)
                self.logger.info("PositionExecutor: cancel order={} ack={}", order_id, cancelled)
            except VenueError as exc:
                self.logger.error("PositionExecutor: cancel order={} failed err={}", order_id, exc)

        unwound = False
        if self.params.unwind_on_bracket_failure:
            try:
                exit_fill = await self.venue.market_sell(symbol, fill.executed_qty)
                unwound = True
                self.logger.warning(
                    "PositionExecutor: unwound symbol={} qty={} exit_price={}",
                    symbol,
                    exit_fill.executed_qty,
                    exit_fill.price,
                )
            except VenueError as exc:
                self.logger.error("PositionExecutor: unwind failed symbol={} err={}", symbol, exc)
        if not unwound:
            self.logger.error(
                "PositionExecutor: MANUAL REPAIR symbol={} qty={} entry_price={} entry_order={} is unprotected",
                symbol,
                fill.executed_qty,
                fill.price,
                fill.order_id,
            )
        return unwound
