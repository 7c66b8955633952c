"""Async SQLite storage powered by SQLAlchemy."""

from __future__ import annotations

import contextlib
import json
from collections.abc import AsyncIterator
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sqlalchemy import DateTime, Float, Integer, String, Text, delete, desc, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from listing_bot.errors import PersistenceError
from listing_bot.models import (
    ListingEvent,
    SimulationResult,
    TerminalTransition,
    TradeRecord,
    TradeStatus,
)


class Base(DeclarativeBase):
    """Base declarative class for ORM models."""


class TradeORM(Base):
    __tablename__ = "trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    mode: Mapped[str] = mapped_column(String, nullable=False)
    symbol: Mapped[str] = mapped_column(String, nullable=False, index=True)
    entry_price: Mapped[float] = mapped_column(Float, nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    entry_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    take_profit_price: Mapped[float] = mapped_column(Float, nullable=False)
    stop_loss_price: Mapped[float] = mapped_column(Float, nullable=False)
    entry_order_id: Mapped[str] = mapped_column(String, nullable=False)
    tp_order_id: Mapped[str] = mapped_column(String, nullable=False)
    sl_order_id: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, default=TradeStatus.OPEN.value, nullable=False, index=True)
    exit_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    exit_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    profit_loss_percent: Mapped[float | None] = mapped_column(Float, nullable=True)


class KnownSymbolORM(Base):
    __tablename__ = "known_symbols"

    symbol: Mapped[str] = mapped_column(String, primary_key=True)


class ListingHistoryORM(Base):
    __tablename__ = "listing_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    symbol: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    listing_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    initial_price: Mapped[float] = mapped_column(Float, nullable=False)
    price_1h: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_24h: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_48h: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_price_48h: Mapped[float | None] = mapped_column(Float, nullable=True)
    min_price_48h: Mapped[float | None] = mapped_column(Float, nullable=True)
    volume_48h: Mapped[float | None] = mapped_column(Float, nullable=True)
    liquidity_usdt: Mapped[float | None] = mapped_column(Float, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)


class SimulationRunORM(Base):
    __tablename__ = "simulation_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    run_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    parameters_json: Mapped[str] = mapped_column(Text, nullable=False)
    total_trades: Mapped[int] = mapped_column(Integer, nullable=False)
    winning_trades: Mapped[int] = mapped_column(Integer, nullable=False)
    losing_trades: Mapped[int] = mapped_column(Integer, nullable=False)
    win_rate: Mapped[float] = mapped_column(Float, nullable=False)
    total_return: Mapped[float] = mapped_column(Float, nullable=False)
    avg_win: Mapped[float] = mapped_column(Float, nullable=False)
    avg_loss: Mapped[float] = mapped_column(Float, nullable=False)
    max_drawdown: Mapped[float] = mapped_column(Float, nullable=False)
    sharpe_ratio: Mapped[float] = mapped_column(Float, nullable=False)
    final_balance: Mapped[float] = mapped_column(Float, nullable=False)
    best_trade_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    worst_trade_json: Mapped[str | None] = mapped_column(Text, nullable=True)


@dataclass(slots=True)
class SimulationRunRecord:
    id: int
    run_id: str
    created_at: datetime
    parameters: dict[str, Any]
    total_trades: int
    win_rate: float
    total_return: float
    max_drawdown: float
    sharpe_ratio: float


def _utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back.
    if value is None:
        return None
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


def _trade_from_row(row: TradeORM) -> TradeRecord:
    return TradeRecord(
        id=row.id,
        mode=row.mode,
        symbol=row.symbol,
        entry_price=row.entry_price,
        quantity=row.quantity,
        entry_time=_utc(row.entry_time),
        take_profit_price=row.take_profit_price,
        stop_loss_price=row.stop_loss_price,
        entry_order_id=row.entry_order_id,
        tp_order_id=row.tp_order_id,
        sl_order_id=row.sl_order_id,
        status=TradeStatus(row.status),
        exit_price=row.exit_price,
        exit_time=_utc(row.exit_time),
        profit_loss_percent=row.profit_loss_percent,
    )


def _listing_from_row(row: ListingHistoryORM) -> ListingEvent:
    return ListingEvent(
        symbol=row.symbol,
        listing_time=_utc(row.listing_time),
        initial_price=row.initial_price,
        price_1h=row.price_1h,
        price_24h=row.price_24h,
        price_48h=row.price_48h,
        max_price_48h=row.max_price_48h,
        min_price_48h=row.min_price_48h,
        volume_48h=row.volume_48h,
        liquidity_usdt=row.liquidity_usdt,
        category=row.category,
    )


class Database:
    """Persistence layer for trades, the symbol baseline, listing history and simulation runs."""

    def __init__(self, db_path: str | Path = "data/bot.db") -> None:
        if str(db_path) == ":memory:":
            url = "sqlite+aiosqlite:///:memory:"
        else:
            path = Path(db_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            url = f"sqlite+aiosqlite:///{path}"
        self._engine: AsyncEngine = create_async_engine(url, echo=False)
        self._session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @contextlib.asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc)) from exc

    async def init_db(self) -> None:
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc)) from exc

    async def close(self) -> None:
        await self._engine.dispose()

    async def get_known_symbols(self) -> set[str]:
        async with self._session() as session:
            result = await session.execute(select(KnownSymbolORM.symbol))
            return set(result.scalars().all())

    async def set_known_symbols(self, symbols: set[str] | list[str]) -> None:
        """Replace the whole baseline in one transaction."""
        async with self._session() as session:
            await session.execute(delete(KnownSymbolORM))
            session.add_all(KnownSymbolORM(symbol=symbol) for symbol in sorted(set(symbols)))
            await session.commit()

    async def insert_trade(self, trade: TradeRecord) -> int:
        row = TradeORM(
            mode=trade.mode,
            symbol=trade.symbol,
            entry_price=trade.entry_price,
            quantity=trade.quantity,
            entry_time=trade.entry_time,
            take_profit_price=trade.take_profit_price,
            stop_loss_price=trade.stop_loss_price,
            entry_order_id=trade.entry_order_id,
            tp_order_id=trade.tp_order_id,
            sl_order_id=trade.sl_order_id,
            status=trade.status.value,
        )
        async with self._session() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
        return row.id

    async def mark_trade_terminal(self, trade_id: int, transition: TerminalTransition) -> bool:
        """Apply a terminal transition. False when the trade is missing or no longer OPEN."""
        async with self._session() as session:
            result = await session.execute(
                update(TradeORM)
                .where(TradeORM.id == trade_id, TradeORM.status == TradeStatus.OPEN.value)
                .values(
                    status=transition.reason.value,
                    exit_price=transition.exit_price,
                    exit_time=transition.exit_time,
                    profit_loss_percent=transition.profit_loss_percent,
                    updated_at=datetime.now(UTC),
                )
            )
            await session.commit()
            return result.rowcount == 1

    async def get_trade(self, trade_id: int) -> TradeRecord | None:
        async with self._session() as session:
            row = await session.get(TradeORM, trade_id)
            return _trade_from_row(row) if row is not None else None

    async def list_active_trades(self, mode: str | None = None) -> list[TradeRecord]:
        query = select(TradeORM).where(TradeORM.status == TradeStatus.OPEN.value).order_by(TradeORM.id.asc())
        if mode is not None:
            query = query.where(TradeORM.mode == mode)
        async with self._session() as session:
            result = await session.execute(query)
            rows = result.scalars().all()
        return [_trade_from_row(row) for row in rows]

    async def list_closed_trades(self, mode: str | None = None) -> list[TradeRecord]:
        query = (
            select(TradeORM)
            .where(TradeORM.status != TradeStatus.OPEN.value)
            .order_by(TradeORM.exit_time.asc(), TradeORM.id.asc())
        )
        if mode is not None:
            query = query.where(TradeORM.mode == mode)
        async with self._session() as session:
            result = await session.execute(query)
            rows = result.scalars().all()
        return [_trade_from_row(row) for row in rows]

    async def save_listing_event(self, event: ListingEvent) -> None:
        """Insert or replace the listing history row for ``event.symbol``."""
        values = asdict(event)
        async with self._session() as session:
            result = await session.execute(select(ListingHistoryORM).where(ListingHistoryORM.symbol == event.symbol))
            row = result.scalars().first()
            if row is None:
                session.add(ListingHistoryORM(**values))
            else:
                for field_name, value in values.items():
                    setattr(row, field_name, value)
            await session.commit()

    async def get_listing_events(self, start_time: datetime, end_time: datetime) -> list[ListingEvent]:
        async with self._session() as session:
            result = await session.execute(
                select(ListingHistoryORM)
                .where(ListingHistoryORM.listing_time >= start_time, ListingHistoryORM.listing_time <= end_time)
                .order_by(ListingHistoryORM.listing_time.asc(), ListingHistoryORM.symbol.asc())
            )
            rows = result.scalars().all()
        return [_listing_from_row(row) for row in rows]

    async def insert_simulation_run(self, result: SimulationResult) -> int:
        metrics = result.metrics
        row = SimulationRunORM(
            run_id=result.run_id,
            created_at=result.created_at,
            start_time=result.start_time,
            end_time=result.end_time,
            parameters_json=json.dumps(result.parameters, sort_keys=True, default=str),
            total_trades=metrics.total_trades,
            winning_trades=metrics.winning_trades,
            losing_trades=metrics.losing_trades,
            win_rate=metrics.win_rate,
            total_return=metrics.total_return,
            avg_win=metrics.avg_win,
            avg_loss=metrics.avg_loss,
            max_drawdown=metrics.max_drawdown,
            sharpe_ratio=metrics.sharpe_ratio,
            final_balance=metrics.final_balance,
            best_trade_json=json.dumps(result.best_trade.as_dict()) if result.best_trade else None,
            worst_trade_json=json.dumps(result.worst_trade.as_dict()) if result.worst_trade else None,
        )
        async with self._session() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
        return row.id

    async def list_simulation_runs(self, limit: int = 50) -> list[SimulationRunRecord]:
        async with self._session() as session:
            result = await session.execute(select(SimulationRunORM).order_by(desc(SimulationRunORM.id)).limit(limit))
            rows = result.scalars().all()
        return [
            SimulationRunRecord(
                id=row.id,
                run_id=row.run_id,
                created_at=_utc(row.created_at),
                parameters=json.loads(row.parameters_json or "{}"),
                total_trades=row.total_trades,
                win_rate=row.win_rate,
                total_return=row.total_return,
                max_drawdown=row.max_drawdown,
                sharpe_ratio=row.sharpe_ratio,
            )
            for row in rows
        ]
