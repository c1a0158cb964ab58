"""Database connection and table definitions."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.config import get_settings

Base = declarative_base()


class AlgorithmTable(Base):
    """Strategy metadata (one row per running strategy)."""

    __tablename__ = "trading_algorithms"

    id = Column(String(32), primary_key=True)
    name = Column(String(100), nullable=False, unique=True)
    strategy = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    risk_level = Column(Integer, nullable=False)
    max_positions = Column(Integer, nullable=False)
    max_position_size = Column(Numeric(20, 8), nullable=False)
    stop_loss_percent = Column(Numeric(10, 4), nullable=False)
    take_profit_percent = Column(Numeric(10, 4), nullable=False)
    config = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)


class OrderTable(Base):
    """Grid and momentum orders."""

    __tablename__ = "orders"

    id = Column(String(64), primary_key=True)
    instrument = Column(String(20), nullable=False)
    side = Column(String(4), nullable=False)
    order_type = Column(String(10), nullable=False)
    quantity = Column(Numeric(30, 8), nullable=False)
    price = Column(Numeric(20, 8), nullable=False)
    strategy = Column(String(20), nullable=False)
    status = Column(String(10), nullable=False)
    source_level = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    filled_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_orders_instrument_status", "instrument", "status"),
    )


class PositionTable(Base):
    """Open and closed positions."""

    __tablename__ = "positions"

    id = Column(String(32), primary_key=True)
    instrument = Column(String(20), nullable=False)
    side = Column(String(5), nullable=False)
    entry_price = Column(Numeric(20, 8), nullable=False)
    quantity = Column(Numeric(30, 8), nullable=False)
    stop_loss = Column(Numeric(20, 8), nullable=False)
    take_profit = Column(Numeric(20, 8), nullable=False)
    strategy = Column(String(20), nullable=False)
    order_id = Column(String(64), nullable=True)
    status = Column(String(10), nullable=False)
    opened_at = Column(DateTime(timezone=True), nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    exit_price = Column(Numeric(20, 8), nullable=True)

    __table_args__ = (
        Index("idx_positions_status", "status"),
        Index("idx_positions_strategy_status", "strategy", "status"),
    )


class ProfitEventTable(Base):
    """Realized-profit events (one per closed position)."""

    __tablename__ = "profit_events"

    id = Column(String(32), primary_key=True)
    instrument = Column(String(20), nullable=False)
    usd_amount = Column(Numeric(20, 8), nullable=False)
    source_strategy = Column(String(20), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)


class MarketSignalTable(Base):
    """Scored momentum signals."""

    __tablename__ = "market_signals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    instrument = Column(String(20), nullable=False)
    price = Column(Numeric(20, 8), nullable=False)
    momentum_pct = Column(Numeric(20, 8), nullable=False)
    rsi = Column(Numeric(10, 4), nullable=False)
    macd = Column(Numeric(20, 8), nullable=False)
    volume = Column(Numeric(30, 2), nullable=True)
    confidence = Column(Integer, nullable=False)
    action = Column(String(4), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_market_signals_instrument_time", "instrument", "timestamp"),
    )


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str | None = None):
        settings = get_settings()
        url = database_url or settings.database_url

        # Convert postgresql:// to postgresql+asyncpg://
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

        self.engine = create_async_engine(
            url,
            echo=settings.debug,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,    # Validate before use
            pool_recycle=3600,     # Recycle every hour
        )
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_tables(self) -> None:
        """Create all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Close database connection."""
        await self.engine.dispose()


# Global database instance
_db: Database | None = None


def get_database() -> Database:
    """Get the global database instance."""
    global _db
    if _db is None:
        _db = Database()
    return _db


async def init_database() -> Database:
    """Initialize the database and create tables."""
    db = get_database()
    await db.create_tables()
    return db
