from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from listing_bot.config import TradingConfig
from listing_bot.database import Database
from listing_bot.state import TradingState
from listing_bot.venue_client import SpotVenueClient

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def params() -> TradingConfig:
    return TradingConfig(
        buy_amount_usdt=100,
        max_open_trades=3,
        take_profit_pct=0.20,
        stop_loss_pct=0.15,
        fee_rate=0.001,
        min_liquidity_usdt=1000,
        cooldown_sec=3600,
    )


@pytest.fixture
def logger() -> MagicMock:
    return MagicMock()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def database(tmp_path):
    db = Database(tmp_path / "bot.db")
    await db.init_db()
    yield db
    await db.close()


@pytest.fixture
def venue() -> SpotVenueClient:
    return SpotVenueClient(mode="paper")


@pytest.fixture
def state(params) -> TradingState:
    return TradingState(cooldown_sec=params.cooldown_sec)
