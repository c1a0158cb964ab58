"""Tests for the order -> position -> profit lifecycle."""

import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from core.errors import InvariantViolation
from core.lifecycle import LifecycleManager
from core.models import (
    GridConfig,
    MomentumConfig,
    Order,
    OrderSide,
    PositionSide,
    PositionStatus,
    StrategyKind,
)
from app.storage.memory import InMemoryTradingStore


def _filled_order(
    side=OrderSide.BUY,
    price="100",
    quantity="2",
    strategy=StrategyKind.GRID,
    order_id="order-1",
):
    order = Order(
        id=order_id,
        instrument="X",
        side=side,
        quantity=Decimal(quantity),
        price=Decimal(price),
        strategy=strategy,
    )
    order.mark_filled()
    return order


class TestOnFill:
    """Tests for opening positions."""

    @pytest.fixture
    def lifecycle(self):
        return LifecycleManager(GridConfig(), MomentumConfig())

    @pytest.mark.asyncio
    async def test_grid_buy_opens_long(self, lifecycle):
        position = await lifecycle.on_fill(_filled_order())

        assert position.side == PositionSide.LONG
        assert position.status == PositionStatus.OPEN
        assert position.entry_price == Decimal("100")
        assert position.quantity == Decimal("2")
        assert position.stop_loss == Decimal("92")
        assert position.take_profit == Decimal("103")
        assert position.order_id == "order-1"

    @pytest.mark.asyncio
    async def test_momentum_buy_uses_momentum_fractions(self, lifecycle):
        position = await lifecycle.on_fill(_filled_order(strategy=StrategyKind.MOMENTUM))

        assert position.stop_loss == Decimal("97")
        assert position.take_profit == Decimal("108")
        assert position.strategy == StrategyKind.MOMENTUM

    @pytest.mark.asyncio
    async def test_sell_opens_short(self, lifecycle):
        position = await lifecycle.on_fill(_filled_order(side=OrderSide.SELL))

        assert position.side == PositionSide.SHORT
        assert position.stop_loss == Decimal("108")
        assert position.take_profit == Decimal("97")

    @pytest.mark.asyncio
    async def test_pending_order_rejected(self, lifecycle):
        order = Order(
            id="order-1",
            instrument="X",
            side=OrderSide.BUY,
            quantity=Decimal("1"),
            price=Decimal("100"),
            strategy=StrategyKind.GRID,
        )
        with pytest.raises(InvariantViolation):
            await lifecycle.on_fill(order)
        assert lifecycle.open_count() == 0

    @pytest.mark.asyncio
    async def test_open_positions_filters(self, lifecycle):
        await lifecycle.on_fill(_filled_order(order_id="a"))
        await lifecycle.on_fill(_filled_order(order_id="b", strategy=StrategyKind.MOMENTUM))

        assert lifecycle.open_count() == 2
        assert lifecycle.open_count(StrategyKind.GRID) == 1
        assert len(lifecycle.open_positions("X", StrategyKind.MOMENTUM)) == 1
        assert lifecycle.open_positions("Y") == []


class TestOnClose:
    """Tests for closing positions."""

    @pytest.fixture
    def lifecycle(self):
        return LifecycleManager(GridConfig(), MomentumConfig())

    @pytest.mark.asyncio
    async def test_close_emits_profit_event(self, lifecycle):
        position = await lifecycle.on_fill(_filled_order())

        event = await lifecycle.on_close(position, Decimal("104"))

        assert event.id == position.id
        assert event.usd_amount == Decimal("8")
        assert event.source_strategy == StrategyKind.GRID
        assert event.source_tag == "grid_X"
        assert position.status == PositionStatus.CLOSED
        assert position.exit_price == Decimal("104")
        assert position.closed_at is not None
        assert lifecycle.open_count() == 0
        assert lifecycle.closed_count(StrategyKind.GRID) == 1

    @pytest.mark.asyncio
    async def test_short_profit(self, lifecycle):
        position = await lifecycle.on_fill(_filled_order(side=OrderSide.SELL))

        event = await lifecycle.on_close(position, Decimal("97"))

        assert event.usd_amount == Decimal("6")

    @pytest.mark.asyncio
    async def test_loss_is_negative(self, lifecycle):
        position = await lifecycle.on_fill(_filled_order())

        event = await lifecycle.on_close(position, Decimal("92"))

        assert event.usd_amount == Decimal("-16")

    @pytest.mark.asyncio
    async def test_second_close_rejected(self, lifecycle):
        position = await lifecycle.on_fill(_filled_order())
        await lifecycle.on_close(position, Decimal("104"))

        with pytest.raises(InvariantViolation):
            await lifecycle.on_close(position, Decimal("105"))
        assert lifecycle.closed_count(StrategyKind.GRID) == 1


class TestPositionsToClose:
    """Tests for stop loss / take profit detection."""

    @pytest.fixture
    def lifecycle(self):
        return LifecycleManager(GridConfig(), MomentumConfig())

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "price,triggered",
        [("102", False), ("103", True), ("110", True), ("92.5", False), ("92", True)],
    )
    async def test_long_thresholds(self, lifecycle, price, triggered):
        position = await lifecycle.on_fill(_filled_order())

        result = lifecycle.positions_to_close("X", Decimal(price))

        assert (result == [position]) is triggered

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "price,triggered",
        [("99", False), ("97", True), ("108", True), ("107", False)],
    )
    async def test_short_thresholds(self, lifecycle, price, triggered):
        position = await lifecycle.on_fill(_filled_order(side=OrderSide.SELL))

        result = lifecycle.positions_to_close("X", Decimal(price))

        assert (result == [position]) is triggered

    def test_unknown_instrument(self, lifecycle):
        assert lifecycle.positions_to_close("Y", Decimal("1")) == []


class TestLifecycleStore:
    """Tests for persistence of lifecycle transitions."""

    @pytest.mark.asyncio
    async def test_positions_and_events_persisted(self):
        store = InMemoryTradingStore()
        lifecycle = LifecycleManager(store=store)

        position = await lifecycle.on_fill(_filled_order())
        stored = await store.get_position(position.id)
        assert stored.status == PositionStatus.OPEN

        await lifecycle.on_close(position, Decimal("104"))
        stored = await store.get_position(position.id)
        assert stored.status == PositionStatus.CLOSED
        events = await store.list_profit_events()
        assert [e.id for e in events] == [position.id]

    @pytest.mark.asyncio
    async def test_load_open_positions(self):
        store = InMemoryTradingStore()
        first = LifecycleManager(store=store)
        kept = await first.on_fill(_filled_order(order_id="a"))
        closed = await first.on_fill(_filled_order(order_id="b"))
        await first.on_close(closed, Decimal("104"))

        restarted = LifecycleManager(store=store)
        count = await restarted.load_open_positions()

        assert count == 1
        assert [p.id for p in restarted.open_positions()] == [kept.id]

    @pytest.mark.asyncio
    async def test_store_failure_does_not_block_transition(self):
        store = MagicMock()
        store.save_position = AsyncMock(side_effect=RuntimeError("db down"))
        store.save_profit_event = AsyncMock(side_effect=RuntimeError("db down"))
        lifecycle = LifecycleManager(store=store)

        position = await lifecycle.on_fill(_filled_order())
        event = await lifecycle.on_close(position, Decimal("104"))

        assert event.usd_amount == Decimal("8")
        assert position.status == PositionStatus.CLOSED
        store.save_profit_event.assert_awaited_once()
