"""Unified spot venue client wrapper (paper/live)."""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from listing_bot.binance_client_real import BinanceSpotClientReal
from listing_bot.errors import VenueError
from listing_bot.models import Kline, MarketFill, OrderStatus, TradeRecord
from listing_bot.trade_rules import FILLED

NEW = "NEW"
CANCELED = "CANCELED"


class VenueGateway(Protocol):
    async def query_tradable_symbols(self) -> list[str]: ...

    async def get_available_balance(self, asset: str) -> float: ...

    async def get_liquidity(self, symbol: str) -> float: ...

    async def get_price(self, symbol: str) -> float: ...

    async def market_buy(self, symbol: str, qty: float) -> MarketFill: ...

    async def market_sell(self, symbol: str, qty: float) -> MarketFill: ...

    async def place_take_profit(self, symbol: str, qty: float, price: float) -> str: ...

    async def place_stop_loss(self, symbol: str, qty: float, stop_price: float, limit_price: float) -> str: ...

    async def get_order_status(self, symbol: str, order_id: str) -> OrderStatus: ...

    async def cancel_order(self, symbol: str, order_id: str) -> bool: ...

    async def get_hourly_klines(self, symbol: str, start: datetime, limit: int = 48) -> list[Kline]: ...


@dataclass(slots=True)
class PaperOrder:
    order_id: str
    symbol: str
    kind: str
    qty: float
    price: float
    stop_price: float | None = None
    status: str = NEW
    filled_price: float | None = None


@dataclass(slots=True)
class PaperMarket:
    price: float
    liquidity: float
    status: str = "TRADING"
    klines: list[Kline] = field(default_factory=list)


class _PaperSpotClient:
    """Simulated orders and balances.

    Resting orders fill when ``apply_market_price`` crosses them. With a
    ``market_data`` source, symbols, prices, depth and klines come from the
    real venue and every price read or status poll feeds the fill check.
    """

    def __init__(
        self,
        quote_asset: str = "USDT",
        balance: float = 10000.0,
        market_data: VenueGateway | None = None,
    ) -> None:
        self.quote_asset = quote_asset
        self.market_data = market_data
        self._balances: dict[str, float] = {quote_asset: balance}
        self._markets: dict[str, PaperMarket] = {}
        self._orders: dict[str, PaperOrder] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    def list_symbol(self, symbol: str, price: float, liquidity: float = 1_000_000.0) -> None:
        self._markets[symbol] = PaperMarket(price=price, liquidity=liquidity)

    def delist_symbol(self, symbol: str) -> None:
        self._markets.pop(symbol, None)

    def set_balance(self, amount: float, asset: str | None = None) -> None:
        self._balances[asset or self.quote_asset] = amount

    def set_klines(self, symbol: str, klines: list[Kline]) -> None:
        self._market(symbol).klines = list(klines)

    def get_order(self, order_id: str) -> PaperOrder | None:
        return self._orders.get(order_id)

    async def restore_orders(self, trades: list[TradeRecord]) -> int:
        """Re-register the resting bracket of trades restored from the store."""
        restored = 0
        async with self._lock:
            for trade in trades:
                if not trade.is_open:
                    continue
                self._markets.setdefault(trade.symbol, PaperMarket(price=trade.entry_price, liquidity=0.0))
                legs = (
                    (trade.tp_order_id, "LIMIT_SELL", trade.take_profit_price, None),
                    (trade.sl_order_id, "STOP_LOSS_LIMIT", trade.stop_loss_price, trade.stop_loss_price),
                )
                for order_id, kind, price, stop_price in legs:
                    if order_id in self._orders:
                        continue
                    self._orders[order_id] = PaperOrder(
                        order_id=order_id,
                        symbol=trade.symbol,
                        kind=kind,
                        qty=trade.quantity,
                        price=price,
                        stop_price=stop_price,
                    )
                    restored += 1
            used = [int(oid.split("-", 1)[1]) for oid in self._orders if oid.startswith("PAPER-") and oid[6:].isdigit()]
            if used:
                self._ids = itertools.count(max(used) + 1)
        return restored

    async def query_tradable_symbols(self) -> list[str]:
        if self.market_data is not None:
            return await self.market_data.query_tradable_symbols()
        return sorted(
            symbol
            for symbol, market in self._markets.items()
            if market.status == "TRADING" and symbol.endswith(self.quote_asset)
        )

    async def get_available_balance(self, asset: str) -> float:
        return self._balances.get(asset, 0.0)

    async def get_liquidity(self, symbol: str) -> float:
        if self.market_data is not None:
            return await self.market_data.get_liquidity(symbol)
        return self._market(symbol).liquidity

    async def get_price(self, symbol: str) -> float:
        if self.market_data is not None:
            price = await self.market_data.get_price(symbol)
            await self.apply_market_price(symbol, price)
            return price
        return self._market(symbol).price

    async def market_buy(self, symbol: str, qty: float) -> MarketFill:
        async with self._lock:
            price = self._market(symbol).price
            cost = qty * price
            if cost > self._balances.get(self.quote_asset, 0.0):
                raise VenueError(f"insufficient {self.quote_asset} for {symbol} cost={cost}")
            self._balances[self.quote_asset] -= cost
            order = self._new_order(symbol, "MARKET_BUY", qty, price)
            order.status = FILLED
            order.filled_price = price
            return MarketFill(order_id=order.order_id, price=price, executed_qty=qty)

    async def market_sell(self, symbol: str, qty: float) -> MarketFill:
        async with self._lock:
            price = self._market(symbol).price
            order = self._new_order(symbol, "MARKET_SELL", qty, price)
            self._fill(order, price)
            return MarketFill(order_id=order.order_id, price=price, executed_qty=qty)

    async def place_take_profit(self, symbol: str, qty: float, price: float) -> str:
        async with self._lock:
            order = self._new_order(symbol, "LIMIT_SELL", qty, price)
            self._maybe_fill(order, self._market(symbol).price)
            return order.order_id

    async def place_stop_loss(self, symbol: str, qty: float, stop_price: float, limit_price: float) -> str:
        async with self._lock:
            order = self._new_order(symbol, "STOP_LOSS_LIMIT", qty, limit_price, stop_price=stop_price)
            self._maybe_fill(order, self._market(symbol).price)
            return order.order_id

    async def get_order_status(self, symbol: str, order_id: str) -> OrderStatus:
        order = self._orders.get(order_id)
        if order is None or order.symbol != symbol:
            raise VenueError(f"unknown order {order_id} for {symbol}")
        if order.status == NEW and self.market_data is not None:
            await self.get_price(symbol)
        price = order.filled_price if order.filled_price is not None else order.price
        return OrderStatus(status=order.status, price=price)

    async def cancel_order(self, symbol: str, order_id: str) -> bool:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.symbol != symbol or order.status != NEW:
                return False
            order.status = CANCELED
            return True

    async def get_hourly_klines(self, symbol: str, start: datetime, limit: int = 48) -> list[Kline]:
        if self.market_data is not None:
            return await self.market_data.get_hourly_klines(symbol, start, limit)
        market = self._markets.get(symbol)
        if market is None:
            return []
        return [k for k in market.klines if k.open_time >= start][:limit]

    async def apply_market_price(self, symbol: str, price: float) -> None:
        async with self._lock:
            market = self._markets.setdefault(symbol, PaperMarket(price=price, liquidity=0.0))
            market.price = price
            for order in self._orders.values():
                if order.symbol == symbol:
                    self._maybe_fill(order, price)

    def _market(self, symbol: str) -> PaperMarket:
        market = self._markets.get(symbol)
        if market is None:
            raise VenueError(f"unknown symbol {symbol}")
        return market

    def _new_order(self, symbol: str, kind: str, qty: float, price: float, stop_price: float | None = None) -> PaperOrder:
        order = PaperOrder(
            order_id=f"PAPER-{next(self._ids)}",
            symbol=symbol,
            kind=kind,
            qty=qty,
            price=price,
            stop_price=stop_price,
        )
        self._orders[order.order_id] = order
        return order

    def _maybe_fill(self, order: PaperOrder, market_price: float) -> None:
        if order.status != NEW:
            return
        if order.kind == "LIMIT_SELL" and market_price >= order.price:
            self._fill(order, order.price)
        elif order.kind == "STOP_LOSS_LIMIT" and order.stop_price is not None and market_price <= order.stop_price:
            self._fill(order, order.price)

    def _fill(self, order: PaperOrder, price: float) -> None:
        order.status = FILLED
        order.filled_price = price
        self._balances[self.quote_asset] = self._balances.get(self.quote_asset, 0.0) + order.qty * price


class SpotVenueClient:
    """Common wrapper so callers do not depend on paper/live implementation.

    ``live_market_data`` makes paper mode read symbols and prices from the real
    venue's public endpoints while orders and balances stay simulated.
    """

    def __init__(
        self,
        mode: str,
        api_key: str | None = None,
        api_secret: str | None = None,
        testnet: bool = False,
        quote_asset: str = "USDT",
        logger: Any | None = None,
        live_market_data: bool = False,
        paper_balance: float = 10000.0,
    ) -> None:
        self.mode = mode
        self.quote_asset = quote_asset
        if mode == "live":
            if not api_key or not api_secret:
                raise ValueError("Live mode requires api_key and api_secret")
            self._client: Any = BinanceSpotClientReal(
                api_key=api_key,
                api_secret=api_secret,
                testnet=testnet,
                quote_asset=quote_asset,
                logger=logger,
            )
        else:
            market_data = None
            if live_market_data:
                market_data = BinanceSpotClientReal(
                    api_key=api_key or "",
                    api_secret=api_secret or "",
                    testnet=testnet,
                    quote_asset=quote_asset,
                    logger=logger,
                )
            self._client = _PaperSpotClient(quote_asset=quote_asset, balance=paper_balance, market_data=market_data)

    async def restore_orders(self, trades: list[TradeRecord]) -> int:
        """Paper orders live in memory only; live orders already sit on the venue."""
        if isinstance(self._client, _PaperSpotClient):
            return await self._client.restore_orders(trades)
        return 0

    @property
    def paper(self) -> _PaperSpotClient:
        if not isinstance(self._client, _PaperSpotClient):
            raise RuntimeError(f"mode={self.mode} has no paper venue")
        return self._client

    async def query_tradable_symbols(self) -> list[str]:
        return await self._client.query_tradable_symbols()

    async def get_available_balance(self, asset: str) -> float:
        return await self._client.get_available_balance(asset)

    async def get_liquidity(self, symbol: str) -> float:
        return await self._client.get_liquidity(symbol)

    async def get_price(self, symbol: str) -> float:
        return await self._client.get_price(symbol)

    async def market_buy(self, symbol: str, qty: float) -> MarketFill:
        return await self._client.market_buy(symbol, qty)

    async def market_sell(self, symbol: str, qty: float) -> MarketFill:
        return await self._client.market_sell(symbol, qty)

    async def place_take_profit(self, symbol: str, qty: float, price: float) -> str:
        return await self._client.place_take_profit(symbol, qty, price)

    async def place_stop_loss(self, symbol: str, qty: float, stop_price: float, limit_price: float) -> str:
        return await self._client.place_stop_loss(symbol, qty, stop_price, limit_price)

    async def get_order_status(self, symbol: str, order_id: str) -> OrderStatus:
        return await self._client.get_order_status(symbol, order_id)

    async def cancel_order(self, symbol: str, order_id: str) -> bool:
        return await self._client.cancel_order(symbol, order_id)

    async def get_hourly_klines(self, symbol: str, start: datetime, limit: int = 48) -> list[Kline]:
        return await self._client.get_hourly_klines(symbol, start, limit)
