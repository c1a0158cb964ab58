"""Tests for the tick scheduler."""

import asyncio
import logging
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from app.services.order_service import PaperOrderSink
from app.services.scheduler import Scheduler
from app.services.withdrawals import InMemoryWithdrawalQueue
from app.storage.memory import InMemoryTradingStore
from app.trading_config import TradingConfig
from core.errors import InvariantViolation, PriceSourceError
from core.fill_policy import AlwaysFill
from core.grid_manager import GridTickResult
from core.models import (
    GRID_ALGORITHM_NAME,
    MOMENTUM_ALGORITHM_NAME,
    InstrumentConfig,
    MomentumConfig,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
    PositionStatus,
    SchedulerConfig,
    StrategyKind,
)


def _config(**kwargs):
    params = {
        "instruments": [InstrumentConfig(symbol="X", base_price=Decimal("100"))],
        "priority_instrument": None,
    }
    params.update(kwargs)
    return TradingConfig(**params)


def _price_source(*prices):
    source = MagicMock()
    if len(prices) == 1:
        source.get_price = AsyncMock(return_value=Decimal(prices[0]))
    else:
        source.get_price = AsyncMock(side_effect=[Decimal(p) for p in prices])
    return source


class TestSchedulerTicks:
    """Tests for individual grid, momentum and sweep ticks."""

    @pytest.fixture
    def store(self):
        return InMemoryTradingStore()

    @pytest.fixture
    def sink(self):
        return PaperOrderSink()

    @pytest.fixture
    def withdrawals(self):
        return InMemoryWithdrawalQueue()

    def _scheduler(self, config, price_source, sink, store, withdrawals):
        return Scheduler(
            config,
            price_source=price_source,
            order_sink=sink,
            store=store,
            withdrawals=withdrawals,
            fill_policy=AlwaysFill(),
        )

    @pytest.mark.asyncio
    async def test_profit_sweep_forwards_event_once(self, sink, store, withdrawals):
        scheduler = self._scheduler(_config(), _price_source("104"), sink, store, withdrawals)
        order = Order(
            id="order-1",
            instrument="X",
            side=OrderSide.BUY,
            quantity=Decimal("2"),
            price=Decimal("100"),
            strategy=StrategyKind.GRID,
        )
        order.mark_filled()
        position = await scheduler.lifecycle.on_fill(order)
        assert position.take_profit == Decimal("103")

        events = await scheduler.sweep_tick("X")

        assert len(events) == 1
        assert events[0].usd_amount == (Decimal("104") - Decimal("100")) * Decimal("2")
        assert position.status == PositionStatus.CLOSED
        assert withdrawals.size == 1
        assert withdrawals.total_usd == Decimal("8")

        assert await scheduler.sweep_tick("X") == []
        assert await scheduler.payout.handle(events[0]) is False
        assert withdrawals.size == 1

    @pytest.mark.asyncio
    async def test_sweep_leaves_untriggered_positions(self, sink, store, withdrawals):
        scheduler = self._scheduler(_config(), _price_source("101"), sink, store, withdrawals)
        order = Order(
            id="order-1",
            instrument="X",
            side=OrderSide.BUY,
            quantity=Decimal("1"),
            price=Decimal("100"),
            strategy=StrategyKind.GRID,
        )
        order.mark_filled()
        await scheduler.lifecycle.on_fill(order)

        assert await scheduler.sweep_tick("X") == []
        assert scheduler.lifecycle.open_count() == 1

    @pytest.mark.asyncio
    async def test_momentum_ticks_open_position(self, sink, store, withdrawals):
        prices = _price_source("0.60", "0.605", "0.61", "0.615", "0.62")
        scheduler = self._scheduler(_config(), prices, sink, store, withdrawals)

        for _ in range(4):
            assert await scheduler.momentum_tick("X") is None

        position = await scheduler.momentum_tick("X")

        assert position is not None
        assert position.strategy == StrategyKind.MOMENTUM
        assert position.entry_price == Decimal("0.62")
        assert position.stop_loss == Decimal("0.62") * Decimal("0.97")
        assert position.take_profit == Decimal("0.62") * Decimal("1.08")
        assert sink.order_count == 1

        signals = await store.list_signals("X")
        assert len(signals) == 1
        assert signals[0].action == OrderSide.BUY

        orders = await store.list_orders()
        assert len(orders) == 1
        assert orders[0].order_type == OrderType.MARKET
        assert orders[0].status == OrderStatus.FILLED

    @pytest.mark.asyncio
    async def test_momentum_respects_max_positions(self, sink, store, withdrawals):
        prices = _price_source("0.60", "0.605", "0.61", "0.615", "0.62", "0.63")
        config = _config(momentum=MomentumConfig(max_positions=1))
        scheduler = self._scheduler(config, prices, sink, store, withdrawals)

        for _ in range(5):
            await scheduler.momentum_tick("X")
        assert scheduler.lifecycle.open_count(StrategyKind.MOMENTUM) == 1

        assert await scheduler.momentum_tick("X") is None
        assert scheduler.lifecycle.open_count(StrategyKind.MOMENTUM) == 1
        assert sink.order_count == 1

    @pytest.mark.asyncio
    async def test_momentum_volume_source_used(self, sink, store, withdrawals):
        prices = _price_source("100", "100", "100", "100", "100")
        volumes = MagicMock()
        volumes.get_volume = AsyncMock(return_value=Decimal("1300000"))
        scheduler = Scheduler(
            _config(),
            price_source=prices,
            order_sink=sink,
            store=store,
            withdrawals=withdrawals,
            volume_source=volumes,
        )

        for _ in range(5):
            await scheduler.momentum_tick("X")

        signals = await store.list_signals("X")
        assert signals[0].confidence == 65
        assert sink.order_count == 0

    @pytest.mark.asyncio
    async def test_grid_tick_fills_reached_level(self, sink, store, withdrawals):
        prices = _price_source("100.1", "100.5")
        scheduler = self._scheduler(_config(), prices, sink, store, withdrawals)
        scheduler.grid_manager.initialize(scheduler.state("X"), Decimal("100"))

        first = await scheduler.grid_tick("X")
        assert len(first.placed) == 11

        second = await scheduler.grid_tick("X")
        assert len(second.filled) == 1
        assert second.filled[0].price == Decimal("100.5")
        assert scheduler.lifecycle.open_count(StrategyKind.GRID) == 1

    @pytest.mark.asyncio
    async def test_grid_tick_rebalances(self, sink, store, withdrawals):
        scheduler = self._scheduler(_config(), _price_source("110"), sink, store, withdrawals)
        scheduler.grid_manager.initialize(scheduler.state("X"), Decimal("100"))

        await scheduler.grid_tick("X")

        ladder = scheduler.state("X").ladder
        assert ladder.generation == 1
        assert ladder.center_price == Decimal("110")

    @pytest.mark.asyncio
    async def test_price_failure_skips_tick(self, sink, store, withdrawals):
        prices = MagicMock()
        prices.get_price = AsyncMock(side_effect=PriceSourceError("feed down"))
        scheduler = self._scheduler(_config(), prices, sink, store, withdrawals)
        scheduler.grid_manager.initialize(scheduler.state("X"), Decimal("100"))

        assert await scheduler.grid_tick("X") is None
        assert await scheduler.momentum_tick("X") is None
        assert await scheduler.sweep_tick("X") == []
        assert sink.order_count == 0
        assert len(scheduler.state("X").history) == 0

    @pytest.mark.asyncio
    async def test_price_timeout_skips_tick(self, sink, store, withdrawals):
        async def slow_price(instrument):
            await asyncio.sleep(1)
            return Decimal("100")

        prices = MagicMock()
        prices.get_price = slow_price
        config = _config(scheduler=SchedulerConfig(price_timeout=0.01))
        scheduler = self._scheduler(config, prices, sink, store, withdrawals)
        scheduler.grid_manager.initialize(scheduler.state("X"), Decimal("100"))

        assert await scheduler.grid_tick("X") is None
        assert sink.order_count == 0

    @pytest.mark.asyncio
    async def test_non_positive_price_skips_tick(self, sink, store, withdrawals):
        scheduler = self._scheduler(_config(), _price_source("0"), sink, store, withdrawals)

        assert await scheduler.momentum_tick("X") is None
        assert len(scheduler.state("X").history) == 0


class TestSchedulerErrors:
    """Tests for tick-level error handling."""

    def _scheduler(self, strict):
        return Scheduler(
            _config(scheduler=SchedulerConfig(strict_invariants=strict)),
            price_source=_price_source("100"),
            order_sink=PaperOrderSink(),
            store=InMemoryTradingStore(),
            withdrawals=InMemoryWithdrawalQueue(),
        )

    @pytest.mark.asyncio
    async def test_invariant_violation_logged_by_default(self):
        scheduler = self._scheduler(strict=False)
        tick = AsyncMock(side_effect=InvariantViolation("ladder out of order"))

        await scheduler._guarded("grid:X", tick, "X")

        tick.assert_awaited_once_with("X")

    @pytest.mark.asyncio
    async def test_invariant_violation_raised_when_strict(self):
        scheduler = self._scheduler(strict=True)
        tick = AsyncMock(side_effect=InvariantViolation("ladder out of order"))

        with pytest.raises(InvariantViolation):
            await scheduler._guarded("grid:X", tick, "X")

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_escape(self):
        scheduler = self._scheduler(strict=True)
        tick = AsyncMock(side_effect=RuntimeError("boom"))

        await scheduler._guarded("sweep:X", tick, "X")


class TestSchedulerLifecycle:
    """Tests for start/stop and status."""

    @pytest.fixture
    def store(self):
        return InMemoryTradingStore()

    @pytest.fixture
    def scheduler(self, store):
        config = _config(
            scheduler=SchedulerConfig(
                grid_interval=3600, momentum_interval=3600, sweep_interval=3600
            )
        )
        return Scheduler(
            config,
            price_source=_price_source("100"),
            order_sink=PaperOrderSink(),
            store=store,
            withdrawals=InMemoryWithdrawalQueue(),
            fill_policy=AlwaysFill(),
        )

    @pytest.mark.asyncio
    async def test_start_and_stop(self, scheduler, store):
        await scheduler.start()
        try:
            assert scheduler.is_running
            assert len(scheduler._tasks) == 3
            assert scheduler.state("X").ladder is not None
            assert scheduler.state("X").ladder.center_price == Decimal("100")

            grid = await store.get_algorithm(GRID_ALGORITHM_NAME)
            momentum = await store.get_algorithm(MOMENTUM_ALGORITHM_NAME)
            assert grid.risk_level == 4
            assert grid.max_positions == 20
            assert momentum.risk_level == 8
            assert momentum.max_positions == 15
            assert momentum.stop_loss_percent == Decimal("3")
        finally:
            await scheduler.stop()

        assert not scheduler.is_running
        assert scheduler._tasks == []

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, scheduler):
        await scheduler.start()
        try:
            tasks = list(scheduler._tasks)
            await scheduler.start()
            assert scheduler._tasks == tasks
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, scheduler):
        await scheduler.stop()
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_existing_algorithm_not_overwritten(self, scheduler, store):
        await scheduler.start()
        await scheduler.stop()
        first = await store.get_algorithm(GRID_ALGORITHM_NAME)

        await scheduler.start()
        await scheduler.stop()
        second = await store.get_algorithm(GRID_ALGORITHM_NAME)

        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_status(self, scheduler):
        await scheduler.start()
        try:
            status = scheduler.get_status()
        finally:
            await scheduler.stop()

        assert status["is_running"] is True
        assert status["grid_levels"] == 11
        assert set(status["strategies"]) == {"grid", "momentum"}
        assert status["strategies"]["grid"]["closed_positions"] == 0
        assert status["payouts"]["forwarded"] == 0

    @pytest.mark.asyncio
    async def test_strict_invariant_violation_stops_scheduler(self, caplog):
        config = _config(
            scheduler=SchedulerConfig(
                grid_interval=3600,
                momentum_interval=3600,
                sweep_interval=3600,
                strict_invariants=True,
            )
        )
        scheduler = Scheduler(
            config,
            price_source=_price_source("100"),
            order_sink=PaperOrderSink(),
            store=InMemoryTradingStore(),
            withdrawals=InMemoryWithdrawalQueue(),
        )
        scheduler.grid_manager.tick = AsyncMock(side_effect=InvariantViolation("ladder out of order"))

        with caplog.at_level(logging.ERROR, logger="app.services.scheduler"):
            await scheduler.start()
            await asyncio.sleep(0.05)

            assert not scheduler.is_running
            assert isinstance(scheduler.failure, InvariantViolation)
            assert scheduler.get_status()["failure"] == "ladder out of order"

            await scheduler.stop()

        assert scheduler._tasks == []
        messages = [r.getMessage() for r in caplog.records if r.levelno == logging.ERROR]
        assert any("stopping scheduler" in m for m in messages)
        assert any("grid:X ended with error" in m for m in messages)

    @pytest.mark.asyncio
    async def test_restart_after_strict_stop(self):
        config = _config(
            scheduler=SchedulerConfig(
                grid_interval=3600,
                momentum_interval=3600,
                sweep_interval=3600,
                strict_invariants=True,
            )
        )
        scheduler = Scheduler(
            config,
            price_source=_price_source("100"),
            order_sink=PaperOrderSink(),
            store=InMemoryTradingStore(),
            withdrawals=InMemoryWithdrawalQueue(),
        )
        scheduler.grid_manager.tick = AsyncMock(
            side_effect=[InvariantViolation("ladder out of order"), GridTickResult()]
        )
        await scheduler.start()
        await asyncio.sleep(0.05)
        assert not scheduler.is_running

        await scheduler.start()
        try:
            assert scheduler.is_running
            assert scheduler.failure is None
            assert len(scheduler._tasks) == 3
        finally:
            await scheduler.stop()


class SlowSink(PaperOrderSink):
    """Paper sink whose placements and fill confirmations take a while."""

    async def place_order(self, *args):
        await asyncio.sleep(0.01)
        return await super().place_order(*args)

    async def mark_filled(self, order_id):
        await asyncio.sleep(0.01)
        await super().mark_filled(order_id)


class TestSchedulerConcurrency:
    """Tests for ticks that overlap while the order sink is slow."""

    @pytest.fixture
    def sink(self):
        return SlowSink()

    @pytest.fixture
    def store(self):
        return InMemoryTradingStore()

    @pytest.fixture
    def withdrawals(self):
        return InMemoryWithdrawalQueue()

    @pytest.mark.asyncio
    async def test_momentum_max_positions_across_instruments(self, sink, store, withdrawals):
        series = {
            symbol: iter(Decimal(p) for p in ("0.60", "0.605", "0.61", "0.615", "0.62"))
            for symbol in ("X", "Y")
        }
        prices = MagicMock()
        prices.get_price = AsyncMock(side_effect=lambda instrument: next(series[instrument]))
        config = _config(
            instruments=[
                InstrumentConfig(symbol="X", base_price=Decimal("0.6")),
                InstrumentConfig(symbol="Y", base_price=Decimal("0.6")),
            ],
            momentum=MomentumConfig(max_positions=1),
        )
        scheduler = Scheduler(
            config,
            price_source=prices,
            order_sink=sink,
            store=store,
            withdrawals=withdrawals,
            fill_policy=AlwaysFill(),
        )
        for _ in range(4):
            await scheduler.momentum_tick("X")
            await scheduler.momentum_tick("Y")

        opened = await asyncio.gather(scheduler.momentum_tick("X"), scheduler.momentum_tick("Y"))

        assert sum(1 for position in opened if position is not None) == 1
        assert scheduler.lifecycle.open_count(StrategyKind.MOMENTUM) == 1
        assert sink.order_count == 1
        assert scheduler._momentum_reserved == 0

    @pytest.mark.asyncio
    async def test_grid_fills_racing_sweep(self, sink, store, withdrawals):
        prices = _price_source("100.1")
        scheduler = Scheduler(
            _config(),
            price_source=prices,
            order_sink=sink,
            store=store,
            withdrawals=withdrawals,
            fill_policy=AlwaysFill(),
        )
        state = scheduler.state("X")
        scheduler.grid_manager.initialize(state, Decimal("100"))
        assert len((await scheduler.grid_tick("X")).placed) == 11

        entry = Order(
            id="entry-1",
            instrument="X",
            side=OrderSide.BUY,
            quantity=Decimal("1"),
            price=Decimal("97"),
            strategy=StrategyKind.GRID,
        )
        entry.mark_filled()
        held = await scheduler.lifecycle.on_fill(entry)
        assert held.take_profit == Decimal("99.91")

        prices.get_price.return_value = Decimal("100.5")
        first, second, events = await asyncio.gather(
            scheduler.grid_tick("X"),
            scheduler.grid_tick("X"),
            scheduler.sweep_tick("X"),
        )

        filled = first.filled + second.filled
        assert len(filled) == 1
        assert filled[0].price == Decimal("100.5")
        assert len(events) == 1
        assert held.status == PositionStatus.CLOSED
        assert withdrawals.size == 1
        assert scheduler.lifecycle.closed_count(StrategyKind.GRID) == 1
        assert scheduler.lifecycle.open_count(StrategyKind.GRID) == 1

        stored = [o for o in await store.list_orders() if o.status == OrderStatus.FILLED]
        assert [o.id for o in stored] == [filled[0].id]
        for level in state.ladder.levels:
            if level.filled:
                assert level.buy_order_ref is None
                assert level.sell_order_ref is None
        assert set(state.orders) == {
            ref
            for level in state.ladder.levels
            for ref in (level.buy_order_ref, level.sell_order_ref)
            if ref is not None
        }
        assert sink.open_order_count == len(state.orders) == 10
