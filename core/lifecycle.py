"""Order -> position -> realized profit lifecycle.

State transitions are applied synchronously before any store write is
awaited, so two coroutines can never both observe a position as open and
close it twice. Store writes are best effort: a failed write is logged and
the in-memory transition stands.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from core.errors import InvariantViolation
from core.models import (
    GridConfig,
    MomentumConfig,
    Order,
    OrderSide,
    OrderStatus,
    Position,
    PositionSide,
    PositionStatus,
    RealizedProfitEvent,
    StrategyKind,
)
from core.ports import TradingStore

logger = logging.getLogger(__name__)


class LifecycleManager:
    """
    Own the transitions from a filled order to an open position to a
    realized-profit event.

    Stop/take-profit fractions are strategy specific:
    - grid: stop 8%, take profit 3%
    - momentum: stop 3%, take profit 8%

    Long: stop = entry * (1 - stop), tp = entry * (1 + profit)
    Short: stop = entry * (1 + stop), tp = entry * (1 - profit)
    """

    def __init__(
        self,
        grid_config: GridConfig | None = None,
        momentum_config: MomentumConfig | None = None,
        store: TradingStore | None = None,
    ):
        self.grid_config = grid_config or GridConfig()
        self.momentum_config = momentum_config or MomentumConfig()
        self.store = store

        # Open positions by instrument
        self._open: dict[str, dict[str, Position]] = {}
        self._closed_count: dict[StrategyKind, int] = {kind: 0 for kind in StrategyKind}

    def _fractions(self, strategy: StrategyKind) -> tuple[Decimal, Decimal]:
        if strategy == StrategyKind.GRID:
            cfg = self.grid_config
        else:
            cfg = self.momentum_config
        return cfg.stop_loss_fraction, cfg.take_profit_fraction

    def _register(self, position: Position) -> None:
        self._open.setdefault(position.instrument, {})[position.id] = position

    async def load_open_positions(self) -> int:
        """Load open positions from the store (on startup)."""
        if self.store is None:
            return 0

        positions = await self.store.list_positions(status=PositionStatus.OPEN)
        self._open.clear()
        for position in positions:
            self._register(position)

        logger.info(f"Loaded {len(positions)} open positions from store")
        return len(positions)

    async def on_fill(self, order: Order) -> Position:
        """
        Create an open position from a filled order.

        Raises:
            InvariantViolation: If the order is not FILLED
        """
        if order.status != OrderStatus.FILLED:
            raise InvariantViolation(
                f"Cannot open a position from order {order.id} in status {order.status.value}"
            )

        stop_fraction, profit_fraction = self._fractions(order.strategy)
        entry = order.price

        if order.side == OrderSide.BUY:
            side = PositionSide.LONG
            stop_loss = entry * (1 - stop_fraction)
            take_profit = entry * (1 + profit_fraction)
        else:
            side = PositionSide.SHORT
            stop_loss = entry * (1 + stop_fraction)
            take_profit = entry * (1 - profit_fraction)

        position = Position(
            instrument=order.instrument,
            side=side,
            entry_price=entry,
            quantity=order.quantity,
            stop_loss=stop_loss,
            take_profit=take_profit,
            strategy=order.strategy,
            order_id=order.id,
        )
        self._register(position)

        logger.info(
            f"Position opened: {position.id} {position.instrument} {side.value.upper()} "
            f"qty={position.quantity} entry={entry} sl={stop_loss} tp={take_profit} "
            f"({order.strategy.value})"
        )

        await self._save_position(position)
        return position

    async def on_close(self, position: Position, exit_price: Decimal) -> RealizedProfitEvent:
        """
        Close a position and emit its realized-profit event.

        Raises:
            InvariantViolation: If the position is already closed
        """
        if position.status != PositionStatus.OPEN:
            raise InvariantViolation(f"Position {position.id} is already closed")

        position.status = PositionStatus.CLOSED
        position.closed_at = datetime.now(timezone.utc)
        position.exit_price = exit_price

        open_for_instrument = self._open.get(position.instrument, {})
        open_for_instrument.pop(position.id, None)
        self._closed_count[position.strategy] += 1

        event = RealizedProfitEvent(
            id=position.id,
            instrument=position.instrument,
            usd_amount=position.pnl(exit_price),
            source_strategy=position.strategy,
            timestamp=position.closed_at,
        )

        logger.info(
            f"Position closed: {position.id} {position.instrument} "
            f"entry={position.entry_price} exit={exit_price} pnl={event.usd_amount}"
        )

        await self._save_position(position)
        if self.store is not None:
            try:
                await self.store.save_profit_event(event)
            except Exception as e:
                logger.warning(f"Failed to store profit event {event.id}: {e}")

        return event

    def positions_to_close(self, instrument: str, price: Decimal) -> list[Position]:
        """Open positions of an instrument whose stop loss or take profit is crossed."""
        return [
            position
            for position in self._open.get(instrument, {}).values()
            if position.exit_triggered(price)
        ]

    def open_positions(
        self,
        instrument: str | None = None,
        strategy: StrategyKind | None = None,
    ) -> list[Position]:
        """Get open positions, optionally filtered by instrument and strategy."""
        if instrument is not None:
            positions = list(self._open.get(instrument, {}).values())
        else:
            positions = [p for by_id in self._open.values() for p in by_id.values()]

        if strategy is not None:
            positions = [p for p in positions if p.strategy == strategy]
        return positions

    def open_count(self, strategy: StrategyKind | None = None) -> int:
        return len(self.open_positions(strategy=strategy))

    def closed_count(self, strategy: StrategyKind) -> int:
        return self._closed_count[strategy]

    async def _save_position(self, position: Position) -> None:
        if self.store is None:
            return
        try:
            await self.store.save_position(position)
        except Exception as e:
            logger.warning(f"Failed to store position {position.id}: {e}")
