import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from listing_bot.errors import PersistenceError, VenueError
from listing_bot.models import OrderStatus, TradeStatus
from listing_bot.position_executor import PositionExecutor
from listing_bot.position_monitor import PositionMonitor
from listing_bot.venue_client import CANCELED, SpotVenueClient


@pytest.fixture
def executor(params, database, venue, state, logger, clock):
    for symbol in ("AUSDT", "BUSDT"):
        venue.paper.list_symbol(symbol, price=1.0)
    return PositionExecutor(params, database, venue, state, logger, mode="paper", clock=clock)


@pytest.fixture
def monitor(database, venue, state, logger, clock):
    return PositionMonitor(database, venue, state, logger=logger, mode="paper", clock=clock)


async def test_take_profit_fill_closes_trade_and_cancels_stop(executor, monitor, database, venue, state, clock):
    trade = await executor.open_position("AUSDT")
    await venue.paper.apply_market_price("AUSDT", 1.25)
    clock.now += timedelta(hours=3)

    report = await monitor.check_once()

    assert report.closed == {trade.id: TradeStatus.FILLED_TP}
    stored = await database.get_trade(trade.id)
    assert stored.status == TradeStatus.FILLED_TP
    assert stored.exit_price == pytest.approx(1.202)
    assert stored.profit_loss_percent == pytest.approx(20.2)
    assert stored.exit_time == clock.now
    assert venue.paper.get_order(trade.sl_order_id).status == CANCELED
    assert state.active_count() == 0


async def test_stop_loss_fill_closes_trade(executor, monitor, database, venue):
    trade = await executor.open_position("AUSDT")
    await venue.paper.apply_market_price("AUSDT", 0.8)

    report = await monitor.check_once()

    assert report.closed == {trade.id: TradeStatus.FILLED_SL}
    stored = await database.get_trade(trade.id)
    assert stored.exit_price == pytest.approx(0.848)
    assert venue.paper.get_order(trade.tp_order_id).status == CANCELED


async def test_both_legs_filled_resolves_to_take_profit(executor, monitor, database, venue, monkeypatch):
    trade = await executor.open_position("AUSDT")
    monkeypatch.setattr(venue, "get_order_status", AsyncMock(return_value=OrderStatus("FILLED", 0.0)))

    report = await monitor.check_once()

    assert report.closed == {trade.id: TradeStatus.FILLED_TP}
    stored = await database.get_trade(trade.id)
    # zero fill price falls back to the bracket level
    assert stored.exit_price == pytest.approx(trade.take_profit_price)


async def test_unfilled_trade_stays_open(executor, monitor, state):
    await executor.open_position("AUSDT")

    report = await monitor.check_once()

    assert report.checked == 1
    assert report.closed == {}
    assert state.active_count() == 1


async def test_failure_on_one_trade_does_not_block_others(executor, monitor, venue, monkeypatch):
    broken = await executor.open_position("AUSDT")
    healthy = await executor.open_position("BUSDT")
    await venue.paper.apply_market_price("BUSDT", 1.25)
    real_status = venue.get_order_status

    async def flaky_status(symbol, order_id):
        if symbol == "AUSDT":
            raise VenueError("timeout")
        return await real_status(symbol, order_id)

    monkeypatch.setattr(venue, "get_order_status", flaky_status)

    report = await monitor.check_once()

    assert report.failed == [broken.id]
    assert report.closed == {healthy.id: TradeStatus.FILLED_TP}


async def test_trade_stays_active_when_terminal_write_fails(executor, monitor, database, venue, state, monkeypatch):
    trade = await executor.open_position("AUSDT")
    await venue.paper.apply_market_price("AUSDT", 1.25)
    monkeypatch.setattr(database, "mark_trade_terminal", AsyncMock(side_effect=PersistenceError("locked")))

    report = await monitor.check_once()

    assert report.failed == [trade.id]
    assert state.get(trade.id) is not None
    assert await state.claim(trade.id)


async def test_claimed_trade_is_skipped(executor, monitor, venue, state):
    trade = await executor.open_position("AUSDT")
    await venue.paper.apply_market_price("AUSDT", 1.25)
    await state.claim(trade.id)

    report = await monitor.check_once()

    assert report.skipped == 1
    assert report.closed == {}


async def test_restore_reseeds_from_store(executor, database, venue, state, logger, clock):
    trade = await executor.open_position("AUSDT")
    fresh_state = type(state)(cooldown_sec=3600)
    monitor = PositionMonitor(database, venue, fresh_state, logger=logger, mode="paper", clock=clock)

    restored = await monitor.restore()

    assert restored == 1
    assert fresh_state.get(trade.id).symbol == "AUSDT"


async def test_restart_restores_paper_orders(executor, database, state, logger, clock):
    trade = await executor.open_position("AUSDT")
    restarted = SpotVenueClient(mode="paper")
    monitor = PositionMonitor(database, restarted, type(state)(cooldown_sec=3600), logger=logger, mode="paper", clock=clock)

    await monitor.restore()
    await restarted.paper.apply_market_price("AUSDT", 0.8)
    report = await monitor.check_once()

    assert report.failed == []
    assert report.closed == {trade.id: TradeStatus.FILLED_SL}


async def test_overlapping_ticks_close_a_trade_once(executor, monitor, database, venue, monkeypatch):
    trade = await executor.open_position("AUSDT")
    await venue.paper.apply_market_price("AUSDT", 1.25)
    mark = AsyncMock(wraps=database.mark_trade_terminal)
    monkeypatch.setattr(database, "mark_trade_terminal", mark)

    first, second = await asyncio.gather(monitor.check_once(), monitor.check_once())

    closed = {**first.closed, **second.closed}
    assert closed == {trade.id: TradeStatus.FILLED_TP}
    assert len(first.closed) + len(second.closed) == 1
    assert first.skipped + second.skipped == 1
    assert mark.await_count == 1
