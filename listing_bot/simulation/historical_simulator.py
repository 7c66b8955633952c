"""Historical replay of listing events through the live gate and exit rules."""

from __future__ import annotations

import math
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from listing_bot.config import TradingConfig
from listing_bot.database import Database
from listing_bot.entry_gate import decide_entry
from listing_bot.models import ListingEvent, SimulationResult, TerminalTransition, TradeRecord, TradeStatus
from listing_bot.simulation.metrics import best_and_worst, compute_metrics
from listing_bot.state import CooldownBook
from listing_bot.trade_rules import compute_bracket, order_quantity, profit_loss_percent, resolve_price

SIM_MODE = "simulation"

CHECKPOINTS: tuple[tuple[timedelta, str], ...] = (
    (timedelta(hours=1), "price_1h"),
    (timedelta(hours=24), "price_24h"),
    (timedelta(hours=48), "price_48h"),
)


class ReplaySession:
    """One deterministic pass over a listing dataset with a virtual clock.

    The gate is ``decide_entry`` and exits go through ``resolve_price``, the
    same functions the live scanner and monitor use. Prices between recorded
    checkpoints are not modelled; whatever is still open after the last event
    is force-closed at its own entry price.
    """

    def __init__(self, params: TradingConfig, initial_balance: float, logger: Any | None = None) -> None:
        self.params = params
        self.initial_balance = initial_balance
        self.balance = initial_balance
        self.logger = logger
        self.cooldowns = CooldownBook(params.cooldown_sec)
        self.open: dict[int, TradeRecord] = {}
        self.closed: list[TradeRecord] = []
        self.now: datetime | None = None
        self._seq = 0

    def run(self, events: Sequence[ListingEvent]) -> list[TradeRecord]:
        for event in sorted(events, key=lambda e: (e.listing_time, e.symbol)):
            self.now = event.listing_time
            self._on_listing(event)
            for offset, field_name in CHECKPOINTS:
                self.now = event.listing_time + offset
                price = getattr(event, field_name)
                if price is None:
                    continue
                self._check_exits(event.symbol, price)
        self._force_close_all()
        return self.closed

    def _on_listing(self, event: ListingEvent) -> None:
        liquidity = event.liquidity_usdt if event.liquidity_usdt is not None else math.inf
        decision = decide_entry(
            symbol=event.symbol,
            now=self.now,
            cooldowns=self.cooldowns,
            active_count=len(self.open),
            balance=self.balance,
            liquidity=liquidity,
            params=self.params,
        )
        if not decision.allowed:
            self._debug("[SIM] skip {} reason={}", event.symbol, decision.reason)
            return
        if event.initial_price <= 0:
            self._debug("[SIM] skip {} reason=no_initial_price", event.symbol)
            return

        self._seq += 1
        seq = self._seq
        entry_price = event.initial_price
        qty = order_quantity(self.params.buy_amount_usdt, entry_price)
        bracket = compute_bracket(entry_price, self.params.take_profit_pct, self.params.stop_loss_pct, self.params.fee_rate)
        self.cooldowns.arm(event.symbol, self.now)
        self.balance -= qty * entry_price
        self.open[seq] = TradeRecord(
            id=seq,
            mode=SIM_MODE,
            symbol=event.symbol,
            entry_price=entry_price,
            quantity=qty,
            entry_time=self.now,
            take_profit_price=bracket.take_profit,
            stop_loss_price=bracket.stop_loss,
            entry_order_id=f"SIM-BUY-{seq}",
            tp_order_id=f"SIM-TP-{seq}",
            sl_order_id=f"SIM-SL-{seq}",
        )
        self._debug("[SIM] bought {} at {}", event.symbol, entry_price)

    def _check_exits(self, symbol: str, price: float) -> None:
        for trade in list(self.open.values()):
            if trade.symbol != symbol:
                continue
            reason = resolve_price(price, trade.bracket)
            if reason is not None:
                self._close(trade, reason, price)

    def _force_close_all(self) -> None:
        for trade in list(self.open.values()):
            self._close(trade, TradeStatus.FILLED_FORCE, trade.entry_price)

    def _close(self, trade: TradeRecord, reason: TradeStatus, exit_price: float) -> None:
        transition = TerminalTransition(
            reason=reason,
            exit_price=exit_price,
            exit_time=self.now,
            profit_loss_percent=profit_loss_percent(trade.entry_price, exit_price),
        )
        closed = trade.close(transition)
        del self.open[trade.id]
        self.closed.append(closed)
        self.balance += exit_price * closed.quantity
        self._debug(
            "[SIM] closed {} at {} ({}) pnl={:.2f}%",
            closed.symbol,
            exit_price,
            reason.value,
            transition.profit_loss_percent,
        )

    def _debug(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "debug"):
            self.logger.debug(message, *args)


@dataclass(slots=True)
class SweepResult:
    results: list[SimulationResult]
    best: SimulationResult | None


class HistoricalSimulator:
    def __init__(self, database: Database | None = None, logger: Any | None = None) -> None:
        self.database = database
        self.logger = logger

    async def load_events(self, start_time: datetime, end_time: datetime) -> list[ListingEvent]:
        if self.database is None:
            raise RuntimeError("HistoricalSimulator has no database to load events from")
        events = await self.database.get_listing_events(start_time, end_time)
        self._info("Loaded {} historical listings between {} and {}", len(events), start_time, end_time)
        return events

    def run(
        self,
        events: Sequence[ListingEvent],
        params: TradingConfig,
        initial_balance: float,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        run_id: str | None = None,
    ) -> SimulationResult:
        session = ReplaySession(params, initial_balance, logger=self.logger)
        trades = session.run(events)
        metrics = compute_metrics(trades, initial_balance, session.balance)
        best, worst = best_and_worst(trades)
        return SimulationResult(
            run_id=run_id or f"sim_{uuid.uuid4().hex[:12]}",
            created_at=datetime.now(UTC),
            parameters={**params.model_dump(), "initial_balance": initial_balance},
            start_time=start_time,
            end_time=end_time,
            metrics=metrics,
            best_trade=best,
            worst_trade=worst,
            trades=tuple(trades),
        )

    async def run_and_save(
        self,
        params: TradingConfig,
        initial_balance: float,
        start_time: datetime,
        end_time: datetime,
    ) -> SimulationResult:
        events = await self.load_events(start_time, end_time)
        result = self.run(events, params, initial_balance, start_time=start_time, end_time=end_time)
        await self.database.insert_simulation_run(result)
        self._log_result(result)
        return result

    async def run_parameter_sweep(
        self,
        parameter_sets: Sequence[TradingConfig],
        initial_balance: float,
        start_time: datetime,
        end_time: datetime,
    ) -> SweepResult:
        results = [
            await self.run_and_save(params, initial_balance, start_time, end_time)
            for params in parameter_sets
        ]
        best = max(results, key=lambda r: r.metrics.total_return) if results else None
        if best is not None:
            self._info(
                "Best parameters: TP={}% SL={}% buy={} expected return={:.2f}%",
                best.parameters["take_profit_pct"] * 100,
                best.parameters["stop_loss_pct"] * 100,
                best.parameters["buy_amount_usdt"],
                best.metrics.total_return,
            )
        return SweepResult(results=results, best=best)

    def _log_result(self, result: SimulationResult) -> None:
        metrics = result.metrics
        self._info(
            "Simulation {}: TP={}% SL={}% trades={} win_rate={:.2f}% return={:.2f}% max_dd={:.2f}% sharpe={:.3f}",
            result.run_id,
            result.parameters["take_profit_pct"] * 100,
            result.parameters["stop_loss_pct"] * 100,
            metrics.total_trades,
            metrics.win_rate,
            metrics.total_return,
            metrics.max_drawdown,
            metrics.sharpe_ratio,
        )

    def _info(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "info"):
            self.logger.info(message, *args)
