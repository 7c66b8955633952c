"""Application entrypoint.

Usage: ``python -m listing_bot.main [config.yml]``
"""

from __future__ import annotations

import asyncio
import contextlib
import sys
from pathlib import Path

from loguru import logger as bootstrap_logger

from listing_bot.config import AppConfig, load_config
from listing_bot.database import Database
from listing_bot.entry_gate import EntryGate
from listing_bot.errors import ConfigValidationError, PersistenceError
from listing_bot.listing_scanner import ListingScanner
from listing_bot.logger import setup_logger
from listing_bot.position_executor import PositionExecutor
from listing_bot.position_monitor import PositionMonitor
from listing_bot.simulation.run_simulation import run_simulation
from listing_bot.state import TradingState
from listing_bot.venue_client import SpotVenueClient


def build_components(config: AppConfig, database: Database, logger) -> tuple[ListingScanner, PositionMonitor]:
    venue = SpotVenueClient(
        mode=config.mode,
        api_key=config.binance.api_key,
        api_secret=config.binance.api_secret,
        testnet=config.binance.testnet,
        quote_asset=config.trading.quote_asset,
        logger=logger,
        live_market_data=config.paper.live_market_data,
        paper_balance=config.paper.balance_usdt,
    )
    state = TradingState(cooldown_sec=config.trading.cooldown_sec)
    gate = EntryGate(params=config.trading, venue=venue, logger=logger)
    executor = PositionExecutor(
        params=config.trading,
        database=database,
        venue=venue,
        state=state,
        logger=logger,
        mode=config.mode,
    )
    monitor = PositionMonitor(
        database=database,
        venue=venue,
        state=state,
        logger=logger,
        mode=config.mode,
        poll_interval_sec=config.scanner.poll_interval_sec,
    )
    scanner = ListingScanner(
        database=database,
        venue=venue,
        state=state,
        gate=gate,
        executor=executor,
        logger=logger,
        scan_interval_sec=config.scanner.scan_interval_sec,
        bootstrap_baseline=config.scanner.bootstrap_baseline,
    )
    return scanner, monitor


async def log_trade_history(database: Database, mode: str, logger) -> int:
    closed = await database.list_closed_trades(mode)
    if not closed:
        logger.info("History: no closed trades for mode={}", mode)
        return 0
    wins = sum(1 for t in closed if (t.profit_loss_percent or 0.0) > 0)
    logger.info(
        "History: mode={} closed_trades={} wins={} summed_pnl={:.2f}% last_exit={}",
        mode,
        len(closed),
        wins,
        sum(t.profit_loss_percent or 0.0 for t in closed),
        closed[-1].exit_time,
    )
    return len(closed)


async def _trade(config: AppConfig, database: Database, logger) -> int:
    scanner, monitor = build_components(config, database, logger)
    try:
        await monitor.restore()
        await log_trade_history(database, config.mode, logger)
    except PersistenceError as exc:
        logger.error("Recovery failed, not starting loops: {}", exc)
        return 1

    scanner_task = asyncio.create_task(scanner.run_loop(), name="listing-scanner")
    monitor_task = asyncio.create_task(monitor.run_loop(), name="position-monitor")
    tasks = [scanner_task, monitor_task]
    logger.info(
        "Bot started mode={} scan_interval={}s poll_interval={}s",
        config.mode,
        config.scanner.scan_interval_sec,
        config.scanner.poll_interval_sec,
    )

    try:
        while True:
            await asyncio.sleep(1)
            for task in tasks:
                if task.done() and not task.cancelled() and (exc := task.exception()) is not None:
                    logger.error("Task {} crashed: {}", task.get_name(), exc)
                    return 1
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Shutdown requested by user")
    finally:
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
    return 0


async def run(config_path: str | Path = "config.yml") -> int:
    config_path = Path(config_path).resolve()
    try:
        config = load_config(config_path)
    except (ConfigValidationError, FileNotFoundError) as exc:
        bootstrap_logger.error("Configuration error: {}", exc)
        return 1

    db_path, log_dir = config.storage.resolve(config_path.parent)
    logger = setup_logger(log_dir, mode=config.mode)
    database = Database(db_path)
    try:
        await database.init_db()
        logger.info("Database initialized at {}", db_path)
        if config.mode == "simulation":
            await run_simulation(config, database, logger)
            return 0
        return await _trade(config, database, logger)
    except PersistenceError as exc:
        logger.error("Storage error: {}", exc)
        return 1
    finally:
        await database.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(run(sys.argv[1] if len(sys.argv) > 1 else "config.yml")))
