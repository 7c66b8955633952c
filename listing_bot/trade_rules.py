"""Exit and bracket rules used verbatim by both the live monitor and the simulator."""

from __future__ import annotations

from listing_bot.models import Bracket, TradeStatus

PRICE_DECIMALS = 8
QTY_DECIMALS = 8

FILLED = "FILLED"


def compute_bracket(entry_price: float, take_profit_pct: float, stop_loss_pct: float, fee_rate: float) -> Bracket:
    """Symmetric bracket around the entry, widened on both sides by the round-trip fee."""
    if entry_price <= 0:
        raise ValueError(f"entry price must be positive, got {entry_price}")
    fee_adjustment = 2 * fee_rate
    take_profit = entry_price * (1 + take_profit_pct + fee_adjustment)
    stop_loss = entry_price * (1 - stop_loss_pct - fee_adjustment)
    return Bracket(
        take_profit=round(take_profit, PRICE_DECIMALS),
        stop_loss=round(stop_loss, PRICE_DECIMALS),
    )


def resolve_exit(take_profit_hit: bool, stop_loss_hit: bool) -> TradeStatus | None:
    """Pick the terminal reason. Take-profit wins when both fire in the same observation."""
    if take_profit_hit:
        return TradeStatus.FILLED_TP
    if stop_loss_hit:
        return TradeStatus.FILLED_SL
    return None


def resolve_fill(tp_status: str | None, sl_status: str | None) -> TradeStatus | None:
    return resolve_exit(is_filled(tp_status), is_filled(sl_status))


def resolve_price(price: float, bracket: Bracket) -> TradeStatus | None:
    return resolve_exit(price >= bracket.take_profit, price <= bracket.stop_loss)


def is_filled(status: str | None) -> bool:
    return bool(status) and str(status).upper() == FILLED


def profit_loss_percent(entry_price: float, exit_price: float) -> float:
    if entry_price <= 0:
        return 0.0
    return (exit_price - entry_price) / entry_price * 100.0


def order_quantity(amount: float, price: float) -> float:
    if price <= 0:
        raise ValueError(f"price must be positive, got {price}")
    return round(amount / price, QTY_DECIMALS)
