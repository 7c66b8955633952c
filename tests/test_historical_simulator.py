from datetime import timedelta

import pytest

from listing_bot.models import ListingEvent, TradeStatus
from listing_bot.simulation.historical_simulator import HistoricalSimulator, ReplaySession
from tests.conftest import T0


def _event(symbol, price_1h=None, price_24h=None, price_48h=None, offset_hours=0, liquidity=None):
    return ListingEvent(
        symbol=symbol,
        listing_time=T0 + timedelta(hours=offset_hours),
        initial_price=1.0,
        price_1h=price_1h,
        price_24h=price_24h,
        price_48h=price_48h,
        liquidity_usdt=liquidity,
    )


@pytest.fixture
def sim_params(params):
    return params.model_copy(update={"fee_rate": 0.0, "take_profit_pct": 0.2, "stop_loss_pct": 0.15, "min_liquidity_usdt": 0})


def test_take_profit_checkpoint_closes_at_recorded_price(sim_params):
    result = HistoricalSimulator().run([_event("AUSDT", price_1h=1.25)], sim_params, 1000.0)

    (trade,) = result.trades
    assert trade.status == TradeStatus.FILLED_TP
    assert trade.exit_price == 1.25
    assert trade.profit_loss_percent == pytest.approx(25.0)
    assert trade.exit_time == T0 + timedelta(hours=1)
    assert result.metrics.final_balance == pytest.approx(1025.0)
    assert result.metrics.total_return == pytest.approx(2.5)


def test_stop_loss_checkpoint(sim_params):
    result = HistoricalSimulator().run([_event("AUSDT", price_24h=0.80)], sim_params, 1000.0)

    (trade,) = result.trades
    assert trade.status == TradeStatus.FILLED_SL
    assert trade.profit_loss_percent == pytest.approx(-20.0)
    assert result.metrics.losing_trades == 1


def test_untouched_trade_is_force_closed_at_entry(sim_params):
    result = HistoricalSimulator().run([_event("AUSDT", 1.05, 1.1, 0.95)], sim_params, 1000.0)

    (trade,) = result.trades
    assert trade.status == TradeStatus.FILLED_FORCE
    assert trade.exit_price == trade.entry_price
    assert trade.profit_loss_percent == 0.0
    assert result.metrics.final_balance == pytest.approx(1000.0)


def test_fee_compensation_applies_in_replay(params):
    # 1.20 clears a plain 20% target but not the fee-widened 20.2%
    result = HistoricalSimulator().run([_event("AUSDT", price_1h=1.20)], params.model_copy(update={"min_liquidity_usdt": 0}), 1000.0)

    assert result.trades[0].status == TradeStatus.FILLED_FORCE


def test_replay_uses_the_live_gate(sim_params):
    params = sim_params.model_copy(update={"max_open_trades": 1, "min_liquidity_usdt": 500})
    events = [
        _event("AUSDT"),
        _event("BUSDT", offset_hours=0),
        _event("CUSDT", offset_hours=1, liquidity=100.0),
    ]

    result = HistoricalSimulator().run(events, params, 1000.0)

    assert [t.symbol for t in result.trades] == ["AUSDT"]


def test_balance_limits_entries(sim_params):
    events = [_event(f"S{i}USDT", offset_hours=i) for i in range(3)]

    result = HistoricalSimulator().run(events, sim_params, 150.0)

    assert result.metrics.total_trades == 1


def test_checkpoints_only_touch_same_symbol(sim_params):
    events = [_event("AUSDT"), _event("BUSDT", price_1h=2.0, offset_hours=0)]

    session = ReplaySession(sim_params, 1000.0)
    trades = session.run(events)

    by_symbol = {t.symbol: t.status for t in trades}
    assert by_symbol == {"AUSDT": TradeStatus.FILLED_FORCE, "BUSDT": TradeStatus.FILLED_TP}


def test_replay_is_deterministic(sim_params):
    events = [
        _event("CUSDT", 1.3, offset_hours=5),
        _event("AUSDT", 0.7, offset_hours=1),
        _event("BUSDT", None, 1.1, 1.4, offset_hours=1),
    ]
    simulator = HistoricalSimulator()

    first = simulator.run(events, sim_params, 1000.0)
    second = simulator.run(list(reversed(events)), sim_params, 1000.0)

    assert first.metrics == second.metrics
    assert [(t.symbol, t.status, t.entry_order_id) for t in first.trades] == [
        (t.symbol, t.status, t.entry_order_id) for t in second.trades
    ]
    assert first.trades[0].entry_order_id == "SIM-BUY-1"


async def test_parameter_sweep_persists_runs_and_picks_best(sim_params, database, logger):
    await database.save_listing_event(_event("AUSDT", price_1h=1.25))
    conservative = sim_params
    greedy = sim_params.model_copy(update={"take_profit_pct": 0.5})
    simulator = HistoricalSimulator(database=database, logger=logger)

    sweep = await simulator.run_parameter_sweep(
        [greedy, conservative], 1000.0, T0 - timedelta(days=1), T0 + timedelta(days=1)
    )

    assert len(sweep.results) == 2
    assert sweep.best.parameters["take_profit_pct"] == 0.2
    runs = await database.list_simulation_runs()
    assert len(runs) == 2
    assert {r.total_trades for r in runs} == {1}


@pytest.mark.parametrize(
    ("prices", "status", "pnl"),
    [
        ((1.25, None, None), TradeStatus.FILLED_TP, 25.0),
        ((None, 0.80, None), TradeStatus.FILLED_SL, -20.0),
        ((1.1, 0.9, 1.0), TradeStatus.FILLED_FORCE, 0.0),
    ],
)
def test_checkpoint_outcomes_with_default_fee(params, prices, status, pnl):
    live_params = params.model_copy(update={"min_liquidity_usdt": 0})
    assert live_params.fee_rate == 0.001

    result = HistoricalSimulator().run([_event("AUSDT", *prices)], live_params, 1000.0)

    (trade,) = result.trades
    assert trade.status == status
    assert trade.profit_loss_percent == pytest.approx(pnl)
    assert trade.take_profit_price == pytest.approx(1.202)
    assert trade.stop_loss_price == pytest.approx(0.848)
