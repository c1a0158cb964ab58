"""Protocols for the engine's external collaborators.

Any implementation (exchange-backed, paper, in-memory, SQL) can be
injected as long as it satisfies these protocols.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol, runtime_checkable

from core.models import (
    AlgorithmRecord,
    Order,
    OrderSide,
    OrderType,
    Position,
    PositionStatus,
    RealizedProfitEvent,
    Signal,
    StrategyKind,
)


@runtime_checkable
class PriceSource(Protocol):
    """Current price feed. May fail or hang; the engine skips the tick."""

    async def get_price(self, instrument: str) -> Decimal:
        ...


@runtime_checkable
class VolumeSource(Protocol):
    """Optional volume proxy used by signal scoring."""

    async def get_volume(self, instrument: str) -> Decimal | None:
        ...


@runtime_checkable
class OrderSink(Protocol):
    """Order execution. Rejections raise OrderSinkError."""

    async def place_order(
        self,
        instrument: str,
        side: OrderSide,
        quantity: Decimal,
        price: Decimal,
        order_type: OrderType,
    ) -> str:
        """Place an order and return its id."""
        ...

    async def mark_filled(self, order_id: str) -> None:
        """Confirm that an order has filled."""
        ...

    async def cancel_order(self, order_id: str) -> None:
        """Cancel an open order and forget it. Unknown ids are ignored."""
        ...


@runtime_checkable
class TradingStore(Protocol):
    """Durable keyed store for algorithms, orders, positions and profit events.

    Each write is independent; no multi-record transactions are assumed.
    """

    async def save_algorithm(self, algorithm: AlgorithmRecord) -> None:
        ...

    async def get_algorithm(self, name: str) -> AlgorithmRecord | None:
        ...

    async def save_order(self, order: Order) -> None:
        ...

    async def get_order(self, order_id: str) -> Order | None:
        ...

    async def save_position(self, position: Position) -> None:
        ...

    async def get_position(self, position_id: str) -> Position | None:
        ...

    async def list_positions(
        self,
        strategy: StrategyKind | None = None,
        status: PositionStatus | None = None,
    ) -> list[Position]:
        ...

    async def save_profit_event(self, event: RealizedProfitEvent) -> None:
        ...

    async def list_profit_events(self) -> list[RealizedProfitEvent]:
        ...

    async def save_signal(self, signal: Signal) -> None:
        ...


@runtime_checkable
class WithdrawalQueue(Protocol):
    """Boundary to the external withdrawal service. Fire and forget."""

    async def queue_withdrawal(self, usd_amount: Decimal, source_tag: str) -> None:
        ...
