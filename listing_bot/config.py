"""Configuration loading and validation."""

from __future__ import annotations

import os
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from listing_bot.errors import ConfigValidationError


class BinanceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    api_key: str = ""
    api_secret: str = ""
    testnet: bool = False


class TradingConfig(BaseModel):
    """Parameters shared by the live engine and the simulator.

    Percent-like values are fractions: ``take_profit_pct=0.20`` means +20%.
    """

    model_config = ConfigDict(extra="forbid")

    quote_asset: str = "USDT"
    buy_amount_usdt: float = Field(gt=0)
    max_open_trades: int = Field(ge=1)
    take_profit_pct: float = Field(gt=0, le=10)
    stop_loss_pct: float = Field(gt=0, lt=1)
    fee_rate: float = Field(default=0.001, ge=0, lt=0.1)
    min_liquidity_usdt: float = Field(default=0.0, ge=0)
    cooldown_sec: int = Field(default=3600, ge=0)
    unwind_on_bracket_failure: bool = True


class ScannerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    scan_interval_sec: int = Field(default=60, ge=1)
    poll_interval_sec: int = Field(default=10, ge=1)
    bootstrap_baseline: bool = True


class ListingSeedConfig(BaseModel):
    """A past listing whose first 48 hourly candles should be collected."""

    model_config = ConfigDict(extra="forbid")

    symbol: str = Field(min_length=1)
    listing_date: date
    category: str | None = None

    def listing_time(self) -> datetime:
        return datetime.combine(self.listing_date, datetime.min.time(), tzinfo=UTC)


class SimulationConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start_date: date
    end_date: date
    initial_balance: float = Field(default=1000.0, gt=0)
    parameter_sets: list[dict[str, Any]] = Field(default_factory=list)
    listings: list[ListingSeedConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_range(self) -> "SimulationConfig":
        if self.start_date >= self.end_date:
            raise ValueError(f"start_date {self.start_date} must be before end_date {self.end_date}")
        today = datetime.now(UTC).date()
        if self.end_date > today:
            raise ValueError(f"end_date {self.end_date} is in the future")
        return self

    def start_time(self) -> datetime:
        return datetime.combine(self.start_date, datetime.min.time(), tzinfo=UTC)

    def end_time(self) -> datetime:
        return datetime.combine(self.end_date, datetime.max.time(), tzinfo=UTC)


class PaperConfig(BaseModel):
    """Paper mode: simulated orders and balance against real market data."""

    model_config = ConfigDict(extra="forbid")

    balance_usdt: float = Field(default=10000.0, gt=0)
    live_market_data: bool = True


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    db_path: str = "data/bot.db"
    log_dir: str = "logs"

    def resolve(self, base_dir: Path) -> tuple[str | Path, Path]:
        """Storage locations with relative paths anchored at the config directory."""
        db_path: str | Path = self.db_path
        if self.db_path != ":memory:" and not Path(self.db_path).is_absolute():
            db_path = base_dir / self.db_path
        log_dir = Path(self.log_dir)
        if not log_dir.is_absolute():
            log_dir = base_dir / log_dir
        return db_path, log_dir


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mode: str = Field(pattern=r"^(paper|live|simulation)$")
    binance: BinanceConfig = Field(default_factory=BinanceConfig)
    trading: TradingConfig
    scanner: ScannerConfig = Field(default_factory=ScannerConfig)
    simulation: SimulationConfig | None = None
    paper: PaperConfig = Field(default_factory=PaperConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @model_validator(mode="after")
    def _check_mode(self) -> "AppConfig":
        if self.mode == "simulation" and self.simulation is None:
            raise ValueError("mode=simulation requires a 'simulation' section")
        if self.simulation is not None:
            for overrides in self.simulation.parameter_sets:
                TradingConfig.model_validate({**self.trading.model_dump(), **overrides})
        return self

    def parameter_sets(self) -> list[TradingConfig]:
        """Trading parameters to replay: every override set, or the base section alone."""
        if self.simulation is None or not self.simulation.parameter_sets:
            return [self.trading]
        base = self.trading.model_dump()
        return [TradingConfig.model_validate({**base, **overrides}) for overrides in self.simulation.parameter_sets]


def load_config(path: str | Path = "config.yml") -> AppConfig:
    """Load configuration from YAML file, apply .env credentials and validate schema."""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file '{config_path}' not found. Copy config.yml.example to config.yml first."
        )

    load_dotenv(config_path.parent / ".env")

    with config_path.open("r", encoding="utf-8") as fh:
        raw_data = yaml.safe_load(fh) or {}
    if not isinstance(raw_data, dict):
        raise ConfigValidationError(f"Invalid config '{config_path}': top level must be a mapping")

    binance = dict(raw_data.get("binance") or {})
    binance["api_key"] = binance.get("api_key") or os.getenv("BINANCE_API_KEY", "")
    binance["api_secret"] = binance.get("api_secret") or os.getenv("BINANCE_API_SECRET", "")
    raw_data["binance"] = binance

    try:
        config = AppConfig.model_validate(raw_data)
    except ValidationError as exc:
        raise ConfigValidationError(f"Invalid config '{config_path}': {exc}") from exc

    if config.mode == "live" and (not config.binance.api_key or not config.binance.api_secret):
        raise ConfigValidationError("Live mode requires binance.api_key and binance.api_secret")
    return config
