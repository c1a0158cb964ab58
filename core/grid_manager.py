"""Grid ladder management.

A ladder is a fixed, odd number of price levels spaced by a fraction of the
center price. Each tick:
1. Levels below the price without a buy get a buy limit order; levels above
   without a sell get a sell limit order (sized to a fixed USD notional).
2. Levels within the fill tolerance of the price whose order the fill policy
   accepts are filled and handed to the lifecycle manager.
The ladder is rebuilt around the price when it drifts more than half the
ladder range from the center.

Exchange calls run with the instrument lock released; results are applied
under the lock only if the ladder generation has not changed in between.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal

from core.errors import OrderSinkError
from core.fill_policy import FillPolicy, ProbabilisticFill
from core.instrument import InstrumentState
from core.lifecycle import LifecycleManager
from core.models import (
    QUANTITY_STEP,
    GridConfig,
    GridLadder,
    GridLevel,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
    Position,
    StrategyKind,
)
from core.ports import OrderSink, TradingStore

logger = logging.getLogger(__name__)


@dataclass
class GridTickResult:
    """Result of one grid tick.

    Attributes:
        placed: Orders accepted by the sink this tick.
        filled: Orders transitioned to FILLED this tick.
        positions: Positions opened from those fills.
        rejected: Number of placements or fill confirmations the sink refused.
    """

    placed: list[Order] = field(default_factory=list)
    filled: list[Order] = field(default_factory=list)
    positions: list[Position] = field(default_factory=list)
    rejected: int = 0


class GridLadderManager:
    """Build, trade and rebalance grid ladders."""

    def __init__(
        self,
        config: GridConfig,
        order_sink: OrderSink,
        lifecycle: LifecycleManager,
        fill_policy: FillPolicy | None = None,
        store: TradingStore | None = None,
    ):
        """
        Args:
            config: Ladder shape, sizing and tolerance
            order_sink: Where limit orders are placed and fills confirmed
            lifecycle: Receives filled orders
            fill_policy: Decides fills at reached levels (default: probabilistic)
            store: Optional store for order records
        """
        self.config = config
        self.order_sink = order_sink
        self.lifecycle = lifecycle
        self.fill_policy = fill_policy or ProbabilisticFill(config.fill_probability)
        self.store = store

    # ------------------------------------------------------------------
    # Ladder construction
    # ------------------------------------------------------------------

    def build_ladder(
        self,
        instrument: str,
        center_price: Decimal,
        generation: int = 0,
    ) -> GridLadder:
        """Build a ladder of ``level_count`` levels centered on center_price."""
        half = self.config.level_count // 2
        spacing = center_price * self.config.spacing_fraction

        ladder = GridLadder(
            instrument=instrument,
            levels=[
                GridLevel(price=center_price + (i - half) * spacing)
                for i in range(self.config.level_count)
            ],
            spacing_fraction=self.config.spacing_fraction,
            generation=generation,
        )
        ladder.check_monotonic()
        return ladder

    def initialize(self, state: InstrumentState, center_price: Decimal) -> GridLadder:
        """Build the instrument's ladder around center_price.

        Replaces any existing ladder; pending orders of the old ladder are
        marked cancelled and dropped from the state. Callers holding them
        pass them to cancel_at_sink.
        """
        generation = state.ladder.generation + 1 if state.ladder else 0
        state.ladder = self.build_ladder(state.instrument, center_price, generation)
        for order in state.orders.values():
            if order.status == OrderStatus.PENDING:
                order.mark_cancelled()
        state.orders.clear()

        logger.info(
            f"Grid initialized for {state.instrument}: "
            f"{len(state.ladder.levels)} levels around {center_price}"
        )
        return state.ladder

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self, state: InstrumentState, current_price: Decimal) -> GridTickResult:
        """Place missing level orders, then fill orders at reached levels."""
        result = GridTickResult()
        if state.ladder is None:
            return result

        await self._place_missing_orders(state, current_price, result)
        await self._fill_reached_levels(state, current_price, result)
        return result

    def _quantity(self, price: Decimal) -> Decimal:
        return (self.config.order_notional / price).quantize(QUANTITY_STEP, rounding=ROUND_DOWN)

    async def _place_missing_orders(
        self,
        state: InstrumentState,
        current_price: Decimal,
        result: GridTickResult,
    ) -> None:
        requests: list[tuple[int, int, OrderSide, Decimal]] = []

        async with state.lock:
            ladder = state.ladder
            if ladder is None:
                return
            generation = ladder.generation

            for index, level in enumerate(ladder.levels):
                if level.filled:
                    continue
                if level.price < current_price and level.buy_order_ref is None:
                    side = OrderSide.BUY
                elif level.price > current_price and level.sell_order_ref is None:
                    side = OrderSide.SELL
                else:
                    continue

                key = (generation, index, side)
                if key in state.placing:
                    continue
                state.placing.add(key)
                requests.append((generation, index, side, level.price))

        if not requests:
            return

        accepted: list[tuple[int, int, Order]] = []
        try:
            for generation, index, side, price in requests:
                quantity = self._quantity(price)
                try:
                    order_id = await self.order_sink.place_order(
                        state.instrument, side, quantity, price, OrderType.LIMIT
                    )
                except (OrderSinkError, asyncio.TimeoutError) as e:
                    result.rejected += 1
                    logger.warning(
                        f"Grid {side.value} order rejected: {state.instrument} "
                        f"level {index} @ {price}: {e}"
                    )
                    continue

                order = Order(
                    id=order_id,
                    instrument=state.instrument,
                    side=side,
                    order_type=OrderType.LIMIT,
                    quantity=quantity,
                    price=price,
                    strategy=StrategyKind.GRID,
                    source_level=index,
                )
                accepted.append((generation, index, order))
        finally:
            orphaned: list[Order] = []
            async with state.lock:
                for generation, index, side, _ in requests:
                    state.placing.discard((generation, index, side))

                for generation, index, order in accepted:
                    ladder = state.ladder
                    level = ladder.levels[index] if ladder and ladder.generation == generation else None
                    if level is None or level.filled or level.order_ref(order.side) is not None:
                        # Ladder was rebuilt or the level changed while placing
                        order.mark_cancelled()
                        orphaned.append(order)
                        continue

                    level.set_order_ref(order.side, order.id)
                    state.orders[order.id] = order
                    result.placed.append(order)

        for order in result.placed:
            logger.info(
                f"Grid {order.side.value.upper()} order: {order.instrument} "
                f"qty={order.quantity} @ {order.price} (level {order.source_level})"
            )
        for order in orphaned:
            logger.warning(f"Grid order {order.id} orphaned by ladder change, cancelled")

        await self._save_orders(result.placed + orphaned)
        await self.cancel_at_sink(orphaned)

    async def _fill_reached_levels(
        self,
        state: InstrumentState,
        current_price: Decimal,
        result: GridTickResult,
    ) -> None:
        candidates: list[tuple[int, int, OrderSide, str]] = []

        async with state.lock:
            ladder = state.ladder
            if ladder is None:
                return

            for index, level in enumerate(ladder.levels):
                if level.filled or not self._within_tolerance(level, current_price):
                    continue

                # At most one fill per level: buy side first
                for side in (OrderSide.BUY, OrderSide.SELL):
                    ref = level.order_ref(side)
                    if ref is None or ref in state.filling:
                        continue
                    if self.fill_policy.should_fill(level, current_price):
                        state.filling.add(ref)
                        candidates.append((ladder.generation, index, side, ref))
                        break

        if not candidates:
            return

        confirmed: list[tuple[int, int, OrderSide, str]] = []
        filled: list[Order] = []
        cancelled: list[Order] = []
        try:
            for candidate in candidates:
                order_id = candidate[3]
                try:
                    await self.order_sink.mark_filled(order_id)
                except (OrderSinkError, asyncio.TimeoutError) as e:
                    result.rejected += 1
                    logger.warning(f"Fill confirmation failed for {order_id}, retrying next tick: {e}")
                    continue
                confirmed.append(candidate)
        finally:
            async with state.lock:
                for generation, index, side, order_id in candidates:
                    state.filling.discard(order_id)

                for generation, index, side, order_id in confirmed:
                    ladder = state.ladder
                    if ladder is None or ladder.generation != generation:
                        logger.warning(f"Fill of {order_id} arrived after ladder rebuild, ignored")
                        continue
                    level = ladder.levels[index]
                    if level.filled or level.order_ref(side) != order_id:
                        continue

                    order = state.orders.pop(order_id)
                    order.mark_filled()
                    filled.append(order)

                    # A filled level carries no order references until the next rebuild
                    other_ref = level.order_ref(OrderSide.SELL if side == OrderSide.BUY else OrderSide.BUY)
                    if other_ref is not None and other_ref in state.orders:
                        other = state.orders.pop(other_ref)
                        other.mark_cancelled()
                        cancelled.append(other)

                    level.buy_order_ref = None
                    level.sell_order_ref = None
                    level.filled = True

        for order in filled:
            logger.info(
                f"GRID {order.side.value.upper()} FILLED: {order.quantity} "
                f"{order.instrument} @ {order.price}"
            )
            result.filled.append(order)

        await self._save_orders(filled + cancelled)
        await self.cancel_at_sink(cancelled)

        for order in filled:
            result.positions.append(await self.lifecycle.on_fill(order))

    def _within_tolerance(self, level: GridLevel, current_price: Decimal) -> bool:
        return abs(current_price - level.price) < level.price * self.config.fill_tolerance

    # ------------------------------------------------------------------
    # Rebalance
    # ------------------------------------------------------------------

    async def rebalance(self, state: InstrumentState, current_price: Decimal) -> bool:
        """
        Rebuild the ladder around current_price if it drifted too far.

        Triggers when |current_price - center| > rebalance_threshold * range.
        All pending level orders are cancelled. Safe to repeat.

        Returns:
            True if the ladder was rebuilt
        """
        cancelled: list[Order] = []

        async with state.lock:
            ladder = state.ladder
            if ladder is None:
                return False

            deviation = abs(current_price - ladder.center_price)
            if deviation <= ladder.range_size * self.config.rebalance_threshold:
                return False

            for order in state.orders.values():
                if order.status == OrderStatus.PENDING:
                    order.mark_cancelled()
                    cancelled.append(order)
            state.orders.clear()

            state.ladder = self.build_ladder(
                state.instrument, current_price, generation=ladder.generation + 1
            )

        logger.info(
            f"Rebalancing {state.instrument} grid around {current_price} "
            f"(deviation {deviation}, {len(cancelled)} orders cancelled)"
        )
        await self._save_orders(cancelled)
        await self.cancel_at_sink(cancelled)
        return True

    async def cancel_at_sink(self, orders: list[Order]) -> None:
        """Cancel already-cancelled grid orders at the order sink (best effort)."""
        for order in orders:
            try:
                await self.order_sink.cancel_order(order.id)
            except (OrderSinkError, asyncio.TimeoutError) as e:
                logger.warning(
                    f"Order {order.id} cancelled by the grid but may still be open "
                    f"at the sink ({order.instrument} {order.side.value} @ {order.price}): {e}"
                )

    async def _save_orders(self, orders: list[Order]) -> None:
        if self.store is None:
            return
        for order in orders:
            try:
                await self.store.save_order(order)
            except Exception as e:
                logger.warning(f"Failed to store order {order.id}: {e}")
