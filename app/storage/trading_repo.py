"""SQL-backed trading store."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.storage.database import (
    AlgorithmTable,
    Database,
    MarketSignalTable,
    OrderTable,
    PositionTable,
    ProfitEventTable,
    get_database,
)
from core.errors import StoreError
from core.models import (
    AlgorithmRecord,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
    Position,
    PositionSide,
    PositionStatus,
    RealizedProfitEvent,
    Signal,
    StrategyKind,
)


class SqlTradingStore:
    """Repository for algorithms, orders, positions, profit events and signals."""

    def __init__(self, database: Database | None = None):
        self._db = database

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        db = self._db or get_database()
        try:
            async with db.session() as session:
                yield session
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    async def _upsert(self, table, values: dict, update_columns: list[str]) -> None:
        async with self._session() as session:
            stmt = insert(table).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["id"],
                set_={col: getattr(stmt.excluded, col) for col in update_columns},
            )
            await session.execute(stmt)

    # ── Algorithms ──────────────────────────────────────────────

    async def save_algorithm(self, algorithm: AlgorithmRecord) -> None:
        values = algorithm.model_dump()
        values["strategy"] = algorithm.strategy.value
        values["config"] = algorithm.model_dump(mode="json")["config"]
        await self._upsert(
            AlgorithmTable,
            values,
            ["status", "risk_level", "max_positions", "max_position_size",
             "stop_loss_percent", "take_profit_percent", "config"],
        )

    async def get_algorithm(self, name: str) -> AlgorithmRecord | None:
        async with self._session() as session:
            result = await session.execute(
                select(AlgorithmTable).where(AlgorithmTable.name == name)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None
            return AlgorithmRecord(
                id=row.id,
                name=row.name,
                strategy=StrategyKind(row.strategy),
                status=row.status,
                risk_level=row.risk_level,
                max_positions=row.max_positions,
                max_position_size=row.max_position_size,
                stop_loss_percent=row.stop_loss_percent,
                take_profit_percent=row.take_profit_percent,
                config=row.config or {},
                created_at=row.created_at,
            )

    # ── Orders ──────────────────────────────────────────────────

    async def save_order(self, order: Order) -> None:
        values = order.model_dump()
        values.update(
            side=order.side.value,
            order_type=order.order_type.value,
            strategy=order.strategy.value,
            status=order.status.value,
        )
        await self._upsert(OrderTable, values, ["status", "filled_at"])

    async def get_order(self, order_id: str) -> Order | None:
        async with self._session() as session:
            result = await session.execute(select(OrderTable).where(OrderTable.id == order_id))
            row = result.scalar_one_or_none()
            return self._row_to_order(row) if row is not None else None

    # ── Positions ───────────────────────────────────────────────

    async def save_position(self, position: Position) -> None:
        values = position.model_dump()
        values.update(
            side=position.side.value,
            strategy=position.strategy.value,
            status=position.status.value,
        )
        await self._upsert(PositionTable, values, ["status", "closed_at", "exit_price"])

    async def get_position(self, position_id: str) -> Position | None:
        async with self._session() as session:
            result = await session.execute(
                select(PositionTable).where(PositionTable.id == position_id)
            )
            row = result.scalar_one_or_none()
            return self._row_to_position(row) if row is not None else None

    async def list_positions(
        self,
        strategy: StrategyKind | None = None,
        status: PositionStatus | None = None,
    ) -> list[Position]:
        async with self._session() as session:
            stmt = select(PositionTable)
            if strategy is not None:
                stmt = stmt.where(PositionTable.strategy == strategy.value)
            if status is not None:
                stmt = stmt.where(PositionTable.status == status.value)
            stmt = stmt.order_by(PositionTable.opened_at.asc())

            result = await session.execute(stmt)
            return [self._row_to_position(row) for row in result.scalars().all()]

    # ── Profit events ───────────────────────────────────────────

    async def save_profit_event(self, event: RealizedProfitEvent) -> None:
        values = event.model_dump()
        values["source_strategy"] = event.source_strategy.value
        await self._upsert(ProfitEventTable, values, ["usd_amount"])

    async def list_profit_events(self) -> list[RealizedProfitEvent]:
        async with self._session() as session:
            result = await session.execute(
                select(ProfitEventTable).order_by(ProfitEventTable.timestamp.asc())
            )
            return [
                RealizedProfitEvent(
                    id=row.id,
                    instrument=row.instrument,
                    usd_amount=row.usd_amount,
                    source_strategy=StrategyKind(row.source_strategy),
                    timestamp=row.timestamp,
                )
                for row in result.scalars().all()
            ]

    # ── Signals ─────────────────────────────────────────────────

    async def save_signal(self, signal: Signal) -> None:
        async with self._session() as session:
            session.add(
                MarketSignalTable(
                    instrument=signal.instrument,
                    price=signal.price,
                    momentum_pct=signal.momentum_pct,
                    rsi=signal.rsi,
                    macd=signal.macd,
                    volume=signal.volume,
                    confidence=signal.confidence,
                    action=signal.action.value,
                    timestamp=signal.timestamp,
                )
            )

    # ── Row conversion ──────────────────────────────────────────

    @staticmethod
    def _row_to_order(row: OrderTable) -> Order:
        return Order(
            id=row.id,
            instrument=row.instrument,
            side=OrderSide(row.side),
            order_type=OrderType(row.order_type),
            quantity=row.quantity,
            price=row.price,
            strategy=StrategyKind(row.strategy),
            status=OrderStatus(row.status),
            source_level=row.source_level,
            created_at=row.created_at,
            filled_at=row.filled_at,
        )

    @staticmethod
    def _row_to_position(row: PositionTable) -> Position:
        return Position(
            id=row.id,
            instrument=row.instrument,
            side=PositionSide(row.side),
            entry_price=row.entry_price,
            quantity=row.quantity,
            stop_loss=row.stop_loss,
            take_profit=row.take_profit,
            strategy=StrategyKind(row.strategy),
            order_id=row.order_id,
            status=PositionStatus(row.status),
            opened_at=row.opened_at,
            closed_at=row.closed_at,
            exit_price=row.exit_price,
        )
