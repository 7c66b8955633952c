"""Real Binance spot REST client with async wrappers."""

from __future__ import annotations

import asyncio
import json
import math
from datetime import UTC, datetime
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from loguru import logger as default_logger

from listing_bot.binance_sign import build_query, signed_query
from listing_bot.errors import TransientVenueError, VenueError
from listing_bot.models import Kline, MarketFill, OrderStatus

MAINNET_URL = "https://api.binance.com"
TESTNET_URL = "https://testnet.binance.vision"
TRANSIENT_HTTP_CODES = {418, 429}
DEPTH_LEVELS = 5


class BinanceSpotClientReal:
    """Thin async wrapper around the Binance spot REST API.

    Blocking urllib calls run in a worker thread. Network failures, rate limits
    and 5xx answers raise ``TransientVenueError``; anything else the venue
    rejects raises ``VenueError``.
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        testnet: bool = False,
        quote_asset: str = "USDT",
        logger: Any | None = None,
        base_url: str | None = None,
        timeout_sec: float = 10.0,
    ) -> None:
        self.api_key = api_key
        self.api_secret = api_secret
        self.quote_asset = quote_asset
        self.base_url = (base_url or (TESTNET_URL if testnet else MAINNET_URL)).rstrip("/")
        self.timeout_sec = timeout_sec
        self.logger = logger or default_logger
        self._rules: dict[str, dict[str, float]] = {}

    async def query_tradable_symbols(self) -> list[str]:
        data = await self._request("GET", "/api/v3/exchangeInfo")
        rows = data.get("symbols") if isinstance(data, dict) else None
        if not isinstance(rows, list):
            raise VenueError("exchangeInfo payload has no symbols")
        symbols: list[str] = []
        rules: dict[str, dict[str, float]] = {}
        for row in rows:
            symbol = str(row.get("symbol") or "")
            if not symbol:
                continue
            rules[symbol] = self._parse_filters(row.get("filters") or [])
            if row.get("status") == "TRADING" and row.get("quoteAsset") == self.quote_asset:
                symbols.append(symbol)
        self._rules = rules
        return sorted(symbols)

    async def get_available_balance(self, asset: str) -> float:
        data = await self._signed_request("GET", "/api/v3/account")
        for row in data.get("balances") or []:
            if row.get("asset") == asset:
                return float(row.get("free") or 0.0)
        return 0.0

    async def get_liquidity(self, symbol: str) -> float:
        """Quote notional resting on the top bid levels."""
        data = await self._request("GET", "/api/v3/depth", {"symbol": symbol, "limit": DEPTH_LEVELS})
        bids = data.get("bids") or []
        return sum(float(price) * float(qty) for price, qty in bids[:DEPTH_LEVELS])

    async def get_price(self, symbol: str) -> float:
        data = await self._request("GET", "/api/v3/ticker/price", {"symbol": symbol})
        price = data.get("price")
        if price is None:
            raise VenueError(f"ticker for {symbol} has no price")
        return float(price)

    async def market_buy(self, symbol: str, qty: float) -> MarketFill:
        return await self._market_order(symbol, "BUY", qty)

    async def market_sell(self, symbol: str, qty: float) -> MarketFill:
        return await self._market_order(symbol, "SELL", qty)

    async def place_take_profit(self, symbol: str, qty: float, price: float) -> str:
        rules = await self._symbol_rules(symbol)
        data = await self._signed_request(
            "POST",
            "/api/v3/order",
            {
                "symbol": symbol,
                "side": "SELL",
                "type": "LIMIT",
                "timeInForce": "GTC",
                "quantity": self._format(qty, rules["step_size"]),
                "price": self._format(price, rules["tick_size"]),
            },
        )
        return self._order_id(data)

    async def place_stop_loss(self, symbol: str, qty: float, stop_price: float, limit_price: float) -> str:
        rules = await self._symbol_rules(symbol)
        data = await self._signed_request(
            "POST",
            "/api/v3/order",
            {
                "symbol": symbol,
                "side": "SELL",
                "type": "STOP_LOSS_LIMIT",
                "timeInForce": "GTC",
                "quantity": self._format(qty, rules["step_size"]),
                "price": self._format(limit_price, rules["tick_size"]),
                "stopPrice": self._format(stop_price, rules["tick_size"]),
            },
        )
        return self._order_id(data)

    async def get_order_status(self, symbol: str, order_id: str) -> OrderStatus:
        data = await self._signed_request("GET", "/api/v3/order", {"symbol": symbol, "orderId": order_id})
        return OrderStatus(status=str(data.get("status") or ""), price=self._average_price(data))

    async def cancel_order(self, symbol: str, order_id: str) -> bool:
        try:
            await self._signed_request("DELETE", "/api/v3/order", {"symbol": symbol, "orderId": order_id})
            return True
        except TransientVenueError:
            raise
        except VenueError as exc:
            self._log_error("cancel_order", exc)
            return False

    async def get_hourly_klines(self, symbol: str, start: datetime, limit: int = 48) -> list[Kline]:
        rows = await self._request(
            "GET",
            "/api/v3/klines",
            {"symbol": symbol, "interval": "1h", "startTime": int(start.timestamp() * 1000), "limit": limit},
        )
        if not isinstance(rows, list):
            raise VenueError(f"klines payload for {symbol} is not a list")
        return [
            Kline(
                open_time=datetime.fromtimestamp(int(row[0]) / 1000, tz=UTC),
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5]),
            )
            for row in rows
        ]

    async def _market_order(self, symbol: str, side: str, qty: float) -> MarketFill:
        rules = await self._symbol_rules(symbol)
        data = await self._signed_request(
            "POST",
            "/api/v3/order",
            {
                "symbol": symbol,
                "side": side,
                "type": "MARKET",
                "quantity": self._format(qty, rules["step_size"]),
                "newOrderRespType": "FULL",
            },
        )
        executed = float(data.get("executedQty") or 0.0)
        if executed <= 0:
            raise VenueError(f"market {side} {symbol} executed nothing")
        return MarketFill(order_id=self._order_id(data), price=self._average_price(data), executed_qty=executed)

    async def _symbol_rules(self, symbol: str) -> dict[str, float]:
        if symbol not in self._rules:
            await self.query_tradable_symbols()
        return self._rules.get(symbol, {"step_size": 0.0, "tick_size": 0.0})

    @staticmethod
    def _parse_filters(filters: list[dict[str, Any]]) -> dict[str, float]:
        rules = {"step_size": 0.0, "tick_size": 0.0}
        for row in filters:
            if row.get("filterType") == "LOT_SIZE":
                rules["step_size"] = float(row.get("stepSize") or 0.0)
            elif row.get("filterType") == "PRICE_FILTER":
                rules["tick_size"] = float(row.get("tickSize") or 0.0)
        return rules

    @staticmethod
    def _format(value: float, step: float) -> str:
        if step > 0:
            decimals = max(0, -int(math.floor(math.log10(step))))
            value = math.floor(value / step + 1e-9) * step
            return f"{value:.{decimals}f}"
        return f"{value:.8f}".rstrip("0").rstrip(".")

    @staticmethod
    def _average_price(data: dict[str, Any]) -> float:
        executed = float(data.get("executedQty") or 0.0)
        quote = float(data.get("cummulativeQuoteQty") or 0.0)
        if executed > 0 and quote > 0:
            return quote / executed
        fills = data.get("fills") or []
        if fills:
            return float(fills[0].get("price") or 0.0)
        return float(data.get("price") or 0.0)

    @staticmethod
    def _order_id(data: dict[str, Any]) -> str:
        oid = data.get("orderId") if isinstance(data, dict) else None
        if oid is None:
            raise VenueError("exchange order id missing")
        return str(oid)

    async def _request(self, method: str, path: str, params: dict[str, object] | None = None) -> Any:
        query = build_query(params or {})
        return await asyncio.to_thread(self._request_sync, method, path, query, {})

    async def _signed_request(self, method: str, path: str, params: dict[str, object] | None = None) -> Any:
        query = signed_query(params or {}, self.api_secret)
        return await asyncio.to_thread(self._request_sync, method, path, query, {"X-MBX-APIKEY": self.api_key})

    def _request_sync(self, method: str, path: str, query: str, headers: dict[str, str]) -> Any:
        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{query}"
        req = Request(url=url, method=method.upper(), headers=headers)

        try:
            with urlopen(req, timeout=self.timeout_sec) as resp:
                raw = resp.read().decode("utf-8")
        except HTTPError as exc:
            body = exc.read().decode("utf-8", errors="ignore")
            if exc.code in TRANSIENT_HTTP_CODES or exc.code >= 500:
                raise TransientVenueError(f"HTTP {exc.code} {path}: {body}") from exc
            raise VenueError(f"HTTP {exc.code} {path}: {body}") from exc
        except URLError as exc:
            raise TransientVenueError(f"URLError {path}: {exc}") from exc
        except TimeoutError as exc:
            raise TransientVenueError(f"timeout {path}: {exc}") from exc

        return json.loads(raw or "{}")

    def _log_error(self, scope: str, exc: Exception) -> None:
        if hasattr(self.logger, "error"):
            self.logger.error("Binance real client error [{}]: {}", scope, exc)
