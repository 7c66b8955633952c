"""Build historical listing events from the first 48 hourly candles."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from listing_bot.config import ListingSeedConfig
from listing_bot.database import Database
from listing_bot.errors import PersistenceError, VenueError
from listing_bot.models import Kline, ListingEvent
from listing_bot.venue_client import VenueGateway

WINDOW_HOURS = 48


def build_listing_event(seed: ListingSeedConfig, klines: Sequence[Kline]) -> ListingEvent | None:
    """Summarize candles into a replayable event; ``None`` when there is no data.

    The first candle fixes both the listing time and the entry price (its
    open time and open). The 1h/24h/48h checkpoints are the
    closes of candles 0, 23 and 47 when present.
    """
    if not klines:
        return None
    candles = list(klines)[:WINDOW_HOURS]

    def close_at(index: int) -> float | None:
        return candles[index].close if len(candles) > index else None

    return ListingEvent(
        symbol=seed.symbol,
        listing_time=candles[0].open_time,
        initial_price=candles[0].open,
        price_1h=close_at(0),
        price_24h=close_at(23),
        price_48h=close_at(47),
        max_price_48h=max(k.high for k in candles),
        min_price_48h=min(k.low for k in candles),
        volume_48h=sum(k.volume for k in candles),
        category=seed.category,
    )


@dataclass(slots=True)
class CollectReport:
    saved: list[str] = field(default_factory=list)
    empty: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


class ListingDataCollector:
    def __init__(self, database: Database, venue: VenueGateway, logger: Any) -> None:
        self.database = database
        self.venue = venue
        self.logger = logger

    async def collect(self, seeds: Sequence[ListingSeedConfig]) -> CollectReport:
        report = CollectReport()
        self.logger.info("Collecting data for {} listings", len(seeds))
        for seed in seeds:
            try:
                event = await self.collect_one(seed)
            except (VenueError, PersistenceError) as exc:
                report.failed[seed.symbol] = str(exc)
                self.logger.error("Failed to collect data for {}: {}", seed.symbol, exc)
                continue
            if event is None:
                report.empty.append(seed.symbol)
            else:
                report.saved.append(seed.symbol)
        return report

    async def collect_one(self, seed: ListingSeedConfig) -> ListingEvent | None:
        klines = await self.venue.get_hourly_klines(seed.symbol, seed.listing_time(), WINDOW_HOURS)
        event = build_listing_event(seed, klines)
        if event is None:
            self.logger.warning("No candles found for {}", seed.symbol)
            return None
        await self.database.save_listing_event(event)
        max_gain = (event.max_price_48h / event.initial_price - 1) * 100 if event.initial_price > 0 else 0.0
        self.logger.info("Collected data for {}: {:+.0f}% max gain", seed.symbol, max_gain)
        return event
