"""Entry gate: ordered accept/reject checks for a newly listed symbol."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from listing_bot.config import TradingConfig
from listing_bot.state import CooldownBook, TradingState
from listing_bot.venue_client import VenueGateway

REASON_OK = "ok"
REASON_COOLDOWN = "cooldown"
REASON_MAX_POSITIONS = "max_positions"
REASON_BALANCE = "insufficient_balance"
REASON_LIQUIDITY = "low_liquidity"


@dataclass(frozen=True, slots=True)
class GateDecision:
    allowed: bool
    reason: str


ACCEPT = GateDecision(True, REASON_OK)


def check_cooldown(symbol: str, cooldowns: CooldownBook, now: datetime) -> GateDecision:
    if cooldowns.is_active(symbol, now):
        return GateDecision(False, REASON_COOLDOWN)
    return ACCEPT


def check_capacity(active_count: int, params: TradingConfig) -> GateDecision:
    if active_count >= params.max_open_trades:
        return GateDecision(False, REASON_MAX_POSITIONS)
    return ACCEPT


def check_balance(balance: float, params: TradingConfig) -> GateDecision:
    if balance < params.buy_amount_usdt:
        return GateDecision(False, REASON_BALANCE)
    return ACCEPT


def check_liquidity(liquidity: float, params: TradingConfig) -> GateDecision:
    if liquidity < params.min_liquidity_usdt:
        return GateDecision(False, REASON_LIQUIDITY)
    return ACCEPT


def decide_entry(
    symbol: str,
    now: datetime,
    cooldowns: CooldownBook,
    active_count: int,
    balance: float,
    liquidity: float,
    params: TradingConfig,
) -> GateDecision:
    """Pure gate over already-known inputs. First failing check wins."""
    for decision in (
        check_cooldown(symbol, cooldowns, now),
        check_capacity(active_count, params),
        check_balance(balance, params),
        check_liquidity(liquidity, params),
    ):
        if not decision.allowed:
            return decision
    return ACCEPT


class EntryGate:
    """Live gate. Same checks as ``decide_entry`` but only queries the venue when needed."""

    def __init__(self, params: TradingConfig, venue: VenueGateway, logger: Any) -> None:
        self.params = params
        self.venue = venue
        self.logger = logger

    async def evaluate(self, symbol: str, state: TradingState, now: datetime) -> GateDecision:
        decision = check_cooldown(symbol, state.cooldowns, now)
        if decision.allowed:
            decision = check_capacity(state.active_count(), self.params)
        if decision.allowed:
            balance = await self.venue.get_available_balance(self.params.quote_asset)
            decision = check_balance(balance, self.params)
        if decision.allowed:
            liquidity = await self.venue.get_liquidity(symbol)
            decision = check_liquidity(liquidity, self.params)

        if decision.allowed:
            self.logger.info("EntryGate: accept symbol={}", symbol)
        else:
            self.logger.info("EntryGate: reject symbol={} reason={}", symbol, decision.reason)
        return decision
