"""Domain models shared by the live engine and the simulator."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any

from listing_bot.errors import TradeStateError


class TradeStatus(StrEnum):
    OPEN = "OPEN"
    FILLED_TP = "FILLED_TP"
    FILLED_SL = "FILLED_SL"
    FILLED_FORCE = "FILLED_FORCE"


TERMINAL_STATUSES = frozenset({TradeStatus.FILLED_TP, TradeStatus.FILLED_SL, TradeStatus.FILLED_FORCE})


@dataclass(frozen=True, slots=True)
class Bracket:
    take_profit: float
    stop_loss: float


@dataclass(frozen=True, slots=True)
class TerminalTransition:
    """The only allowed change to a trade: OPEN -> one terminal status."""

    reason: TradeStatus
    exit_price: float
    exit_time: datetime
    profit_loss_percent: float

    def __post_init__(self) -> None:
        if self.reason not in TERMINAL_STATUSES:
            raise TradeStateError(f"{self.reason} is not a terminal status")


@dataclass(slots=True)
class TradeRecord:
    id: int | None
    mode: str
    symbol: str
    entry_price: float
    quantity: float
    entry_time: datetime
    take_profit_price: float
    stop_loss_price: float
    entry_order_id: str
    tp_order_id: str
    sl_order_id: str
    status: TradeStatus = TradeStatus.OPEN
    exit_price: float | None = None
    exit_time: datetime | None = None
    profit_loss_percent: float | None = None

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN

    @property
    def bracket(self) -> Bracket:
        return Bracket(take_profit=self.take_profit_price, stop_loss=self.stop_loss_price)

    def hold_time_sec(self) -> float | None:
        if self.exit_time is None:
            return None
        return (self.exit_time - self.entry_time).total_seconds()

    def close(self, transition: TerminalTransition) -> "TradeRecord":
        if not self.is_open:
            raise TradeStateError(f"trade {self.id} {self.symbol} already {self.status}")
        return replace(
            self,
            status=transition.reason,
            exit_price=transition.exit_price,
            exit_time=transition.exit_time,
            profit_loss_percent=transition.profit_loss_percent,
        )


@dataclass(frozen=True, slots=True)
class ListingEvent:
    symbol: str
    listing_time: datetime
    initial_price: float
    price_1h: float | None = None
    price_24h: float | None = None
    price_48h: float | None = None
    max_price_48h: float | None = None
    min_price_48h: float | None = None
    volume_48h: float | None = None
    liquidity_usdt: float | None = None
    category: str | None = None


@dataclass(frozen=True, slots=True)
class TradeSummary:
    symbol: str
    profit_loss_percent: float
    hold_time_sec: float | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "profit_loss_percent": self.profit_loss_percent,
            "hold_time_sec": self.hold_time_sec,
        }


@dataclass(frozen=True, slots=True)
class SimulationMetrics:
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    total_return: float
    avg_win: float
    avg_loss: float
    max_drawdown: float
    sharpe_ratio: float
    final_balance: float


@dataclass(frozen=True, slots=True)
class SimulationResult:
    run_id: str
    created_at: datetime
    parameters: dict[str, Any]
    start_time: datetime | None
    end_time: datetime | None
    metrics: SimulationMetrics
    best_trade: TradeSummary | None
    worst_trade: TradeSummary | None
    trades: tuple[TradeRecord, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class MarketFill:
    order_id: str
    price: float
    executed_qty: float


@dataclass(frozen=True, slots=True)
class OrderStatus:
    status: str
    price: float


@dataclass(frozen=True, slots=True)
class Kline:
    open_time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float
