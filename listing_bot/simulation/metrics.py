"""Aggregate statistics for a replay run."""

from __future__ import annotations

import statistics
from collections.abc import Sequence

from listing_bot.models import TERMINAL_STATUSES, SimulationMetrics, TradeRecord, TradeSummary


def max_drawdown(trades: Sequence[TradeRecord], initial_balance: float) -> float:
    """Largest peak-to-trough balance drop in percent, walking trades in close order."""
    peak = initial_balance
    balance = initial_balance
    worst = 0.0
    for trade in trades:
        if trade.status not in TERMINAL_STATUSES or trade.exit_price is None:
            continue
        balance += (trade.exit_price - trade.entry_price) * trade.quantity
        peak = max(peak, balance)
        if peak > 0:
            worst = max(worst, (peak - balance) / peak * 100.0)
    return worst


def sharpe_ratio(returns: Sequence[float]) -> float:
    """mean / population stdev of per-trade returns; 0 without trades or variance."""
    if not returns or len(set(returns)) == 1:
        return 0.0
    stdev = statistics.pstdev(returns)
    if stdev == 0:
        return 0.0
    return statistics.fmean(returns) / stdev


def summarize(trade: TradeRecord) -> TradeSummary:
    return TradeSummary(
        symbol=trade.symbol,
        profit_loss_percent=trade.profit_loss_percent or 0.0,
        hold_time_sec=trade.hold_time_sec(),
    )


def best_and_worst(trades: Sequence[TradeRecord]) -> tuple[TradeSummary | None, TradeSummary | None]:
    if not trades:
        return None, None
    best = max(trades, key=lambda t: t.profit_loss_percent or 0.0)
    worst = min(trades, key=lambda t: t.profit_loss_percent or 0.0)
    return summarize(best), summarize(worst)


def compute_metrics(trades: Sequence[TradeRecord], initial_balance: float, final_balance: float) -> SimulationMetrics:
    returns = [t.profit_loss_percent or 0.0 for t in trades]
    wins = [r for r in returns if r > 0]
    losses = [r for r in returns if r <= 0]
    total = len(returns)
    return SimulationMetrics(
        total_trades=total,
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=(len(wins) / total * 100.0) if total else 0.0,
        total_return=(final_balance - initial_balance) / initial_balance * 100.0,
        avg_win=statistics.fmean(wins) if wins else 0.0,
        avg_loss=statistics.fmean(abs(r) for r in losses) if losses else 0.0,
        max_drawdown=max_drawdown(trades, initial_balance),
        sharpe_ratio=sharpe_ratio(returns),
        final_balance=final_balance,
    )
