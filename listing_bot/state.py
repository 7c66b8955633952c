"""In-process trading state owned by the scanner/executor/monitor trio."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

from listing_bot.models import TradeRecord


class CooldownBook:
    """symbol -> expiry. Armed at entry time, independent of trade outcome."""

    def __init__(self, duration_sec: int) -> None:
        self.duration = timedelta(seconds=duration_sec)
        self._expiry: dict[str, datetime] = {}

    def arm(self, symbol: str, now: datetime) -> datetime:
        self.purge(now)
        expiry = now + self.duration
        self._expiry[symbol] = expiry
        return expiry

    def is_active(self, symbol: str, now: datetime) -> bool:
        expiry = self._expiry.get(symbol)
        return expiry is not None and now < expiry

    def expiry(self, symbol: str) -> datetime | None:
        return self._expiry.get(symbol)

    def purge(self, now: datetime) -> None:
        for symbol in [s for s, expiry in self._expiry.items() if now >= expiry]:
            del self._expiry[symbol]

    def __len__(self) -> int:
        return len(self._expiry)


class TradingState:
    """Active positions, in-flight claims and cooldowns.

    Every mutation goes through ``self._lock`` so the scanner and the monitor
    can run on independent timers without double-adding or double-removing.
    """

    def __init__(self, cooldown_sec: int) -> None:
        self.cooldowns = CooldownBook(cooldown_sec)
        self._active: dict[int, TradeRecord] = {}
        self._claimed: set[int] = set()
        self._lock = asyncio.Lock()

    async def reseed(self, trades: list[TradeRecord]) -> None:
        async with self._lock:
            self._active = {trade.id: trade for trade in trades if trade.id is not None and trade.is_open}
            self._claimed.clear()

    async def add_trade(self, trade: TradeRecord) -> None:
        if trade.id is None:
            raise ValueError("only persisted trades can become active")
        async with self._lock:
            self._active[trade.id] = trade

    async def remove_trade(self, trade_id: int) -> TradeRecord | None:
        async with self._lock:
            self._claimed.discard(trade_id)
            return self._active.pop(trade_id, None)

    async def claim(self, trade_id: int) -> bool:
        """Mark a trade as being processed. False if absent or already claimed."""
        async with self._lock:
            if trade_id not in self._active or trade_id in self._claimed:
                return False
            self._claimed.add(trade_id)
            return True

    async def release(self, trade_id: int) -> None:
        async with self._lock:
            self._claimed.discard(trade_id)

    async def arm_cooldown(self, symbol: str, now: datetime) -> datetime:
        async with self._lock:
            return self.cooldowns.arm(symbol, now)

    def in_cooldown(self, symbol: str, now: datetime) -> bool:
        return self.cooldowns.is_active(symbol, now)

    def active_count(self) -> int:
        return len(self._active)

    def active_trades(self) -> list[TradeRecord]:
        return list(self._active.values())

    def get(self, trade_id: int) -> TradeRecord | None:
        return self._active.get(trade_id)
