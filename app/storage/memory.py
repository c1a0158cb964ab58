"""In-process trading store (paper runs and tests)."""

from collections import deque

from core.models import (
    AlgorithmRecord,
    Order,
    Position,
    PositionStatus,
    RealizedProfitEvent,
    Signal,
    StrategyKind,
)


class InMemoryTradingStore:
    """Dictionary-backed store. Records are copied on write and on read."""

    def __init__(self, max_signals: int = 1000):
        self._algorithms: dict[str, AlgorithmRecord] = {}
        self._orders: dict[str, Order] = {}
        self._positions: dict[str, Position] = {}
        self._events: dict[str, RealizedProfitEvent] = {}
        self._signals: deque[Signal] = deque(maxlen=max_signals)

    async def save_algorithm(self, algorithm: AlgorithmRecord) -> None:
        self._algorithms[algorithm.name] = algorithm.model_copy(deep=True)

    async def get_algorithm(self, name: str) -> AlgorithmRecord | None:
        algorithm = self._algorithms.get(name)
        return algorithm.model_copy(deep=True) if algorithm else None

    async def save_order(self, order: Order) -> None:
        self._orders[order.id] = order.model_copy()

    async def get_order(self, order_id: str) -> Order | None:
        order = self._orders.get(order_id)
        return order.model_copy() if order else None

    async def save_position(self, position: Position) -> None:
        self._positions[position.id] = position.model_copy()

    async def get_position(self, position_id: str) -> Position | None:
        position = self._positions.get(position_id)
        return position.model_copy() if position else None

    async def list_positions(
        self,
        strategy: StrategyKind | None = None,
        status: PositionStatus | None = None,
    ) -> list[Position]:
        return [
            p.model_copy()
            for p in self._positions.values()
            if (strategy is None or p.strategy == strategy)
            and (status is None or p.status == status)
        ]

    async def save_profit_event(self, event: RealizedProfitEvent) -> None:
        self._events[event.id] = event

    async def list_profit_events(self) -> list[RealizedProfitEvent]:
        return sorted(self._events.values(), key=lambda e: e.timestamp)

    async def save_signal(self, signal: Signal) -> None:
        self._signals.append(signal)

    async def list_signals(self, instrument: str | None = None) -> list[Signal]:
        return [s for s in self._signals if instrument is None or s.instrument == instrument]

    async def list_orders(self) -> list[Order]:
        return [o.model_copy() for o in self._orders.values()]
