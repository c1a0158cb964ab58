"""Order, position and realized-profit models."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from core.errors import InvariantViolation


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class StrategyKind(str, Enum):
    """Which path produced an order or position."""

    GRID = "grid"
    MOMENTUM = "momentum"


class OrderSide(str, Enum):
    """Order side enum."""

    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    """Order type enum."""

    MARKET = "market"
    LIMIT = "limit"


class OrderStatus(str, Enum):
    """Order status. FILLED and CANCELLED are terminal."""

    PENDING = "pending"
    FILLED = "filled"
    CANCELLED = "cancelled"


class PositionSide(str, Enum):
    """Position side."""

    LONG = "long"
    SHORT = "short"


class PositionStatus(str, Enum):
    """Position status."""

    OPEN = "open"
    CLOSED = "closed"


class Order(BaseModel):
    """An order placed by the grid or momentum path."""

    id: str
    instrument: str
    side: OrderSide
    order_type: OrderType = OrderType.LIMIT
    quantity: Decimal
    price: Decimal
    strategy: StrategyKind
    status: OrderStatus = OrderStatus.PENDING
    source_level: int | None = None  # index into the ladder that placed it
    created_at: datetime = Field(default_factory=_utcnow)
    filled_at: datetime | None = None

    def mark_filled(self, timestamp: datetime | None = None) -> None:
        """Transition PENDING -> FILLED."""
        if self.status != OrderStatus.PENDING:
            raise InvariantViolation(
                f"Order {self.id} cannot be filled from status {self.status.value}"
            )
        self.status = OrderStatus.FILLED
        self.filled_at = timestamp or _utcnow()

    def mark_cancelled(self) -> None:
        """Transition PENDING -> CANCELLED."""
        if self.status != OrderStatus.PENDING:
            raise InvariantViolation(
                f"Order {self.id} cannot be cancelled from status {self.status.value}"
            )
        self.status = OrderStatus.CANCELLED


class Position(BaseModel):
    """An open or closed position created from a filled order."""

    id: str = Field(default_factory=_new_id)
    instrument: str
    side: PositionSide
    entry_price: Decimal
    quantity: Decimal
    stop_loss: Decimal
    take_profit: Decimal
    strategy: StrategyKind
    order_id: str | None = None
    status: PositionStatus = PositionStatus.OPEN
    opened_at: datetime = Field(default_factory=_utcnow)
    closed_at: datetime | None = None
    exit_price: Decimal | None = None

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    def pnl(self, exit_price: Decimal) -> Decimal:
        """Profit in quote currency if closed at exit_price."""
        if self.side == PositionSide.LONG:
            return (exit_price - self.entry_price) * self.quantity
        return (self.entry_price - exit_price) * self.quantity

    def exit_triggered(self, price: Decimal) -> bool:
        """Check if price has crossed the stop loss or take profit."""
        if self.side == PositionSide.LONG:
            return price >= self.take_profit or price <= self.stop_loss
        return price <= self.take_profit or price >= self.stop_loss


class RealizedProfitEvent(BaseModel):
    """Emitted once when a position is closed."""

    model_config = ConfigDict(frozen=True)

    id: str  # same as the closed position id
    instrument: str
    usd_amount: Decimal
    source_strategy: StrategyKind
    timestamp: datetime = Field(default_factory=_utcnow)

    @property
    def source_tag(self) -> str:
        """Tag passed along with the withdrawal, e.g. 'grid_XRP/USDT'."""
        return f"{self.source_strategy.value}_{self.instrument}"


class AlgorithmRecord(BaseModel):
    """Stored metadata describing a running strategy."""

    id: str = Field(default_factory=_new_id)
    name: str
    strategy: StrategyKind
    status: str = "active"
    risk_level: int
    max_positions: int
    max_position_size: Decimal
    stop_loss_percent: Decimal
    take_profit_percent: Decimal
    config: dict = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
