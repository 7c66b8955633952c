import pytest

from listing_bot.models import Bracket, TradeStatus
from listing_bot.trade_rules import (
    compute_bracket,
    is_filled,
    order_quantity,
    profit_loss_percent,
    resolve_fill,
    resolve_price,
)


def test_bracket_is_widened_by_round_trip_fee():
    bracket = compute_bracket(100.0, 0.20, 0.15, 0.001)

    assert bracket.take_profit == pytest.approx(120.2)
    assert bracket.stop_loss == pytest.approx(84.8)


def test_bracket_without_fee_matches_raw_percentages():
    bracket = compute_bracket(2.0, 0.5, 0.1, 0.0)

    assert bracket == Bracket(take_profit=3.0, stop_loss=1.8)


def test_bracket_rounds_to_eight_decimals():
    bracket = compute_bracket(0.000012345678, 0.2, 0.15, 0.001)

    assert bracket.take_profit == round(bracket.take_profit, 8)
    assert bracket.stop_loss == round(bracket.stop_loss, 8)


def test_bracket_rejects_non_positive_entry():
    with pytest.raises(ValueError):
        compute_bracket(0.0, 0.2, 0.15, 0.001)


@pytest.mark.parametrize(
    ("tp_status", "sl_status", "expected"),
    [
        ("FILLED", "NEW", TradeStatus.FILLED_TP),
        ("NEW", "FILLED", TradeStatus.FILLED_SL),
        ("FILLED", "FILLED", TradeStatus.FILLED_TP),
        ("NEW", "NEW", None),
        ("PARTIALLY_FILLED", "CANCELED", None),
    ],
)
def test_resolve_fill_prefers_take_profit(tp_status, sl_status, expected):
    assert resolve_fill(tp_status, sl_status) == expected


def test_resolve_price_crossings():
    bracket = Bracket(take_profit=120.0, stop_loss=85.0)

    assert resolve_price(120.0, bracket) == TradeStatus.FILLED_TP
    assert resolve_price(85.0, bracket) == TradeStatus.FILLED_SL
    assert resolve_price(100.0, bracket) is None


def test_resolve_price_tie_break_on_degenerate_bracket():
    # one observed price crossing both levels resolves to take-profit
    assert resolve_price(100.0, Bracket(take_profit=100.0, stop_loss=100.0)) == TradeStatus.FILLED_TP


def test_is_filled_is_case_insensitive():
    assert is_filled("filled")
    assert not is_filled(None)
    assert not is_filled("")


def test_profit_loss_percent():
    assert profit_loss_percent(1.0, 1.25) == pytest.approx(25.0)
    assert profit_loss_percent(1.0, 0.8) == pytest.approx(-20.0)
    assert profit_loss_percent(0.0, 1.0) == 0.0


def test_order_quantity():
    assert order_quantity(100, 4) == 25
    with pytest.raises(ValueError):
        order_quantity(100, 0)
