"""Replay stored listings for every configured parameter set.

Usage: ``python -m listing_bot.simulation.run_simulation [config.yml]``
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

from listing_bot.binance_client_real import BinanceSpotClientReal
from listing_bot.config import AppConfig, load_config
from listing_bot.database import Database, SimulationRunRecord
from listing_bot.errors import ConfigValidationError
from listing_bot.logger import setup_logger
from listing_bot.simulation.data_collector import ListingDataCollector
from listing_bot.simulation.historical_simulator import HistoricalSimulator, SweepResult


async def run_simulation(config: AppConfig, database: Database, logger) -> SweepResult:
    sim = config.simulation
    if sim is None:
        raise ConfigValidationError("simulation section is required to run a replay")

    if sim.listings:
        # klines are a public endpoint, empty keys are fine here
        venue = BinanceSpotClientReal(
            api_key=config.binance.api_key,
            api_secret=config.binance.api_secret,
            testnet=config.binance.testnet,
            quote_asset=config.trading.quote_asset,
            logger=logger,
        )
        collector = ListingDataCollector(database=database, venue=venue, logger=logger)
        await collector.collect(sim.listings)

    simulator = HistoricalSimulator(database=database, logger=logger)
    logger.info("Starting simulation runs: {} parameter sets", len(config.parameter_sets()))
    sweep = await simulator.run_parameter_sweep(
        config.parameter_sets(),
        initial_balance=sim.initial_balance,
        start_time=sim.start_time(),
        end_time=sim.end_time(),
    )
    await log_sweep_summary(database, len(sweep.results), logger)
    return sweep


async def log_sweep_summary(database: Database, count: int, logger) -> list[SimulationRunRecord]:
    """Log the runs just stored, best total return first."""
    if count <= 0:
        return []
    runs = await database.list_simulation_runs(limit=count)
    ranked = sorted(runs, key=lambda r: r.total_return, reverse=True)
    for rank, run in enumerate(ranked, start=1):
        logger.info(
            "#{} {} TP={} SL={} trades={} win_rate={:.2f}% return={:.2f}% max_dd={:.2f}% sharpe={:.3f}",
            rank,
            run.run_id,
            run.parameters.get("take_profit_pct"),
            run.parameters.get("stop_loss_pct"),
            run.total_trades,
            run.win_rate,
            run.total_return,
            run.max_drawdown,
            run.sharpe_ratio,
        )
    return ranked


async def main(config_path: str | Path = "config.yml") -> int:
    config_path = Path(config_path).resolve()
    try:
        config = load_config(config_path)
    except (ConfigValidationError, FileNotFoundError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    db_path, log_dir = config.storage.resolve(config_path.parent)
    logger = setup_logger(log_dir, mode="simulation")
    database = Database(db_path)
    try:
        await database.init_db()
        await run_simulation(config, database, logger)
    except ConfigValidationError as exc:
        logger.error("Configuration error: {}", exc)
        return 1
    finally:
        await database.close()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "config.yml")))
