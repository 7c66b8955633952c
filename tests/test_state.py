from datetime import timedelta

import pytest

from listing_bot.models import TradeRecord
from listing_bot.state import CooldownBook, TradingState
from tests.conftest import T0


def _trade(trade_id, symbol="NEWUSDT"):
    return TradeRecord(
        id=trade_id,
        mode="paper",
        symbol=symbol,
        entry_price=1.0,
        quantity=100.0,
        entry_time=T0,
        take_profit_price=1.202,
        stop_loss_price=0.848,
        entry_order_id="B",
        tp_order_id="TP",
        sl_order_id="SL",
    )


def test_cooldown_window_is_half_open():
    book = CooldownBook(3600)
    expiry = book.arm("NEWUSDT", T0)

    assert expiry == T0 + timedelta(hours=1)
    assert book.is_active("NEWUSDT", T0)
    assert book.is_active("NEWUSDT", expiry - timedelta(seconds=1))
    assert not book.is_active("NEWUSDT", expiry)
    assert not book.is_active("OTHERUSDT", T0)


def test_cooldown_arm_purges_expired_entries():
    book = CooldownBook(60)
    book.arm("AUSDT", T0)
    book.arm("BUSDT", T0 + timedelta(minutes=5))

    assert len(book) == 1
    assert book.expiry("AUSDT") is None


async def test_claim_is_exclusive_until_release(state):
    await state.add_trade(_trade(1))

    assert await state.claim(1)
    assert not await state.claim(1)
    await state.release(1)
    assert await state.claim(1)


async def test_claim_unknown_trade_fails(state):
    assert not await state.claim(42)


async def test_remove_trade_drops_claim(state):
    await state.add_trade(_trade(1))
    await state.claim(1)

    removed = await state.remove_trade(1)

    assert removed.id == 1
    assert state.active_count() == 0
    assert await state.remove_trade(1) is None


async def test_add_trade_requires_persisted_id(state):
    with pytest.raises(ValueError):
        await state.add_trade(_trade(None))


async def test_reseed_replaces_active_set(state):
    await state.add_trade(_trade(1))
    await state.reseed([_trade(2), _trade(3)])

    assert sorted(t.id for t in state.active_trades()) == [2, 3]
    assert state.get(1) is None
