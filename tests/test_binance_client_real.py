import hashlib
import hmac
import io
from unittest.mock import AsyncMock
from urllib.error import HTTPError, URLError
from urllib.parse import parse_qsl

import pytest
from loguru import logger as loguru_logger

from listing_bot import binance_client_real
from listing_bot.binance_client_real import BinanceSpotClientReal
from listing_bot.binance_sign import build_query, signed_query
from listing_bot.errors import TransientVenueError, VenueError


def test_build_query_drops_none_and_keeps_order():
    assert build_query({"symbol": "NEWUSDT", "price": None, "side": "SELL"}) == "symbol=NEWUSDT&side=SELL"


def test_signed_query_signature_matches_manual_hmac():
    query = signed_query({"symbol": "NEWUSDT"}, "secret")
    payload, signature = query.rsplit("&signature=", 1)

    expected = hmac.new(b"secret", payload.encode(), hashlib.sha256).hexdigest()
    assert signature == expected
    assert dict(parse_qsl(payload))["recvWindow"] == "5000"


@pytest.fixture
def client():
    return BinanceSpotClientReal(api_key="key", api_secret="secret")


EXCHANGE_INFO = {
    "symbols": [
        {
            "symbol": "NEWUSDT",
            "status": "TRADING",
            "quoteAsset": "USDT",
            "filters": [
                {"filterType": "LOT_SIZE", "stepSize": "0.01"},
                {"filterType": "PRICE_FILTER", "tickSize": "0.0001"},
            ],
        },
        {"symbol": "OLDUSDT", "status": "BREAK", "quoteAsset": "USDT", "filters": []},
        {"symbol": "NEWBTC", "status": "TRADING", "quoteAsset": "BTC", "filters": []},
    ]
}


async def test_tradable_symbols_filter_status_and_quote(client, monkeypatch):
    monkeypatch.setattr(client, "_request", AsyncMock(return_value=EXCHANGE_INFO))

    assert await client.query_tradable_symbols() == ["NEWUSDT"]


async def test_liquidity_sums_top_bid_notional(client, monkeypatch):
    bids = [["2.0", "10"], ["1.9", "10"], ["1.8", "10"], ["1.7", "10"], ["1.6", "10"], ["1.5", "1000"]]
    monkeypatch.setattr(client, "_request", AsyncMock(return_value={"bids": bids}))

    assert await client.get_liquidity("NEWUSDT") == pytest.approx(90.0)


async def test_take_profit_is_formatted_to_exchange_filters(client, monkeypatch):
    monkeypatch.setattr(client, "_request", AsyncMock(return_value=EXCHANGE_INFO))
    signed = AsyncMock(return_value={"orderId": 77})
    monkeypatch.setattr(client, "_signed_request", signed)

    order_id = await client.place_take_profit("NEWUSDT", 12.3456, 1.23456789)

    assert order_id == "77"
    params = signed.await_args.args[2]
    assert params["quantity"] == "12.34"
    assert params["price"] == "1.2345"
    assert params["type"] == "LIMIT"


async def test_market_buy_reads_average_fill(client, monkeypatch):
    monkeypatch.setattr(client, "_request", AsyncMock(return_value=EXCHANGE_INFO))
    monkeypatch.setattr(
        client,
        "_signed_request",
        AsyncMock(return_value={"orderId": 1, "executedQty": "50", "cummulativeQuoteQty": "60"}),
    )

    fill = await client.market_buy("NEWUSDT", 50)

    assert fill.price == pytest.approx(1.2)
    assert fill.executed_qty == 50


async def test_cancel_returns_false_when_venue_refuses(client, monkeypatch):
    monkeypatch.setattr(client, "_signed_request", AsyncMock(side_effect=VenueError("Unknown order")))

    assert await client.cancel_order("NEWUSDT", "1") is False


async def test_default_logger_renders_cancel_failure(client, monkeypatch):
    messages: list[str] = []
    sink_id = loguru_logger.add(lambda message: messages.append(str(message)), format="{message}")
    monkeypatch.setattr(client, "_signed_request", AsyncMock(side_effect=VenueError("Unknown order")))
    try:
        await client.cancel_order("NEWUSDT", "1")
    finally:
        loguru_logger.remove(sink_id)

    assert any("[cancel_order]: Unknown order" in m for m in messages)


async def test_cancel_propagates_transient_errors(client, monkeypatch):
    monkeypatch.setattr(client, "_signed_request", AsyncMock(side_effect=TransientVenueError("429")))

    with pytest.raises(TransientVenueError):
        await client.cancel_order("NEWUSDT", "1")


@pytest.mark.parametrize(("code", "error"), [(429, TransientVenueError), (503, TransientVenueError), (400, VenueError)])
def test_http_errors_are_classified(client, monkeypatch, code, error):
    def fake_urlopen(req, timeout):
        raise HTTPError(req.full_url, code, "err", {}, io.BytesIO(b"{}"))

    monkeypatch.setattr(binance_client_real, "urlopen", fake_urlopen)

    with pytest.raises(error) as exc_info:
        client._request_sync("GET", "/api/v3/ping", "", {})
    if error is VenueError:
        assert not isinstance(exc_info.value, TransientVenueError)


def test_network_errors_are_transient(client, monkeypatch):
    def fake_urlopen(req, timeout):
        raise URLError("connection refused")

    monkeypatch.setattr(binance_client_real, "urlopen", fake_urlopen)

    with pytest.raises(TransientVenueError):
        client._request_sync("GET", "/api/v3/ping", "", {})
