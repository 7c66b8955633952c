"""Listing scanner: diff tradable symbols against the stored baseline."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from listing_bot.database import Database
from listing_bot.entry_gate import EntryGate
from listing_bot.errors import PersistenceError, VenueError
from listing_bot.position_executor import PositionExecutor
from listing_bot.state import TradingState
from listing_bot.venue_client import VenueGateway


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class ScanReport:
    new_symbols: list[str] = field(default_factory=list)
    accepted: list[str] = field(default_factory=list)
    rejected: dict[str, str] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)
    baseline_updated: bool = False
    bootstrapped: bool = False


class ListingScanner:
    """Detects new listings and feeds them one by one through gate and executor."""

    def __init__(
        self,
        database: Database,
        venue: VenueGateway,
        state: TradingState,
        gate: EntryGate,
        executor: PositionExecutor,
        logger: Any,
        scan_interval_sec: float = 60,
        bootstrap_baseline: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.database = database
        self.venue = venue
        self.state = state
        self.gate = gate
        self.executor = executor
        self.logger = logger
        self.scan_interval_sec = scan_interval_sec
        self.bootstrap_baseline = bootstrap_baseline
        self.clock = clock
        self._entry_lock = asyncio.Lock()

    async def run_loop(self) -> None:
        while True:
            try:
                await self.scan_once()
            except Exception as exc:  # noqa: BLE001
                self.logger.error("ListingScanner loop error: {}", exc)
            await asyncio.sleep(self.scan_interval_sec)

    async def scan_once(self) -> ScanReport:
        report = ScanReport()
        try:
            current = set(await self.venue.query_tradable_symbols())
        except VenueError as exc:
            self.logger.error("ListingScanner: symbol query failed, skipping tick err={}", exc)
            return report
        try:
            known = await self.database.get_known_symbols()
        except PersistenceError as exc:
            self.logger.error("ListingScanner: baseline read failed, skipping tick err={}", exc)
            return report

        if not known and self.bootstrap_baseline:
            await self.database.set_known_symbols(current)
            report.baseline_updated = True
            report.bootstrapped = True
            self.logger.info("ListingScanner: seeded empty baseline with {} symbols", len(current))
            return report

        report.new_symbols = sorted(current - known)
        if report.new_symbols:
            self.logger.info("ListingScanner: new listings detected {}", ", ".join(report.new_symbols))

        for symbol in report.new_symbols:
            await self._handle_new_listing(symbol, report)

        await self.database.set_known_symbols(current)
        report.baseline_updated = True
        return report

    async def _handle_new_listing(self, symbol: str, report: ScanReport) -> None:
        async with self._entry_lock:
            try:
                decision = await self.gate.evaluate(symbol, self.state, self.clock())
                if not decision.allowed:
                    report.rejected[symbol] = decision.reason
                    return
                await self.executor.open_position(symbol)
                report.accepted.append(symbol)
            except Exception as exc:  # noqa: BLE001
                report.failed[symbol] = str(exc)
                self.logger.error("ListingScanner: failed to handle symbol={} err={}", symbol, exc)
