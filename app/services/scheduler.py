"""Periodic grid, momentum and profit-sweep ticks per instrument.

Each (instrument, tick kind) pair runs in its own task, so instruments tick
in parallel. Within an instrument, every state change happens under the
instrument's lock in InstrumentState; price fetches, order placement and
store writes run with the lock released.

A tick never fails the scheduler: transient feed/sink/store errors skip the
tick and it is retried at the next interval.
"""

import asyncio
import logging
from decimal import ROUND_DOWN, Decimal
from typing import Awaitable, Callable

from app.trading_config import TradingConfig
from core.errors import EngineError, InvariantViolation, OrderSinkError, PriceSourceError
from core.fill_policy import FillPolicy
from core.grid_manager import GridLadderManager, GridTickResult
from core.instrument import InstrumentState
from core.lifecycle import LifecycleManager
from core.models import (
    GRID_ALGORITHM_NAME,
    MOMENTUM_ALGORITHM_NAME,
    QUANTITY_STEP,
    AlgorithmRecord,
    Order,
    OrderSide,
    OrderType,
    Position,
    RealizedProfitEvent,
    Signal,
    StrategyKind,
)
from core.payout import PayoutTrigger
from core.ports import OrderSink, PriceSource, TradingStore, VolumeSource, WithdrawalQueue
from core.price_history import PriceHistoryStore
from core.signal_engine import SignalEngine

logger = logging.getLogger(__name__)

TickFunc = Callable[[str], Awaitable[object]]


class Scheduler:
    """
    Drive the trading engine on fixed intervals.

    - Grid tick (default 12s): price -> GridLadderManager.tick -> rebalance
    - Momentum tick (default 10s): price -> history -> SignalEngine.score ->
      market order and position when actionable
    - Profit sweep (default 30s): close positions whose stop loss or take
      profit is crossed and hand the profit to the payout trigger
    """

    def __init__(
        self,
        config: TradingConfig,
        price_source: PriceSource,
        order_sink: OrderSink,
        store: TradingStore,
        withdrawals: WithdrawalQueue,
        fill_policy: FillPolicy | None = None,
        volume_source: VolumeSource | None = None,
    ):
        self.config = config
        self.price_source = price_source
        self.order_sink = order_sink
        self.store = store
        self.volume_source = volume_source

        self.histories = PriceHistoryStore(capacity=config.momentum.history_size)
        self.lifecycle = LifecycleManager(config.grid, config.momentum, store)
        self.grid_manager = GridLadderManager(
            config.grid, order_sink, self.lifecycle, fill_policy=fill_policy, store=store
        )
        self.signal_engine = SignalEngine(config.momentum, config.priority_instrument)
        self.payout = PayoutTrigger(withdrawals, config.payout)

        # Instrument set is fixed at construction; no task ever adds to it
        self._states: dict[str, InstrumentState] = {
            inst.symbol: InstrumentState(
                instrument=inst.symbol,
                history=self.histories.history(inst.symbol),
            )
            for inst in config.instruments
        }

        self._running = False
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._momentum_reserved = 0
        # Set when strict mode halted the scheduler
        self.failure: Exception | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Register algorithms, build ladders and start the periodic tasks."""
        if self._running:
            return
        if self._tasks:
            # Tasks left over from a run halted by an invariant violation
            await self.stop()

        self._running = True
        self.failure = None
        self._stop_event.clear()
        logger.info("Starting trading scheduler...")

        await self._register_algorithms()
        try:
            await self.lifecycle.load_open_positions()
        except Exception as e:
            logger.warning(f"Could not load open positions: {e}")
        await self._initialize_ladders()

        sched = self.config.scheduler
        for inst in self.config.get_grid_instruments():
            self._spawn(f"grid:{inst.symbol}", sched.grid_interval, self.grid_tick, inst.symbol)
        for inst in self.config.get_momentum_instruments():
            self._spawn(
                f"momentum:{inst.symbol}", sched.momentum_interval, self.momentum_tick, inst.symbol
            )
        for inst in self.config.instruments:
            if inst.grid_enabled or inst.momentum_enabled:
                self._spawn(f"sweep:{inst.symbol}", sched.sweep_interval, self.sweep_tick, inst.symbol)

        logger.info(f"Scheduler running: {len(self._tasks)} periodic tasks")

    async def stop(self) -> None:
        """Stop scheduling ticks and wait for in-flight ticks to finish."""
        if not self._running and not self._tasks:
            return

        self._running = False
        self._stop_event.set()
        tasks, self._tasks = self._tasks, []
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for task, result in zip(tasks, results):
            if isinstance(result, BaseException):
                logger.error(f"Periodic task {task.get_name()} ended with error: {result!r}")
        logger.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def _halt(self, error: Exception) -> None:
        """Stop scheduling ticks after a fatal error; stop() reaps the tasks."""
        self.failure = error
        self._running = False
        self._stop_event.set()

    def _spawn(self, name: str, interval: float, tick: TickFunc, instrument: str) -> None:
        task = asyncio.create_task(self._run_periodic(name, interval, tick, instrument), name=name)
        self._tasks.append(task)

    async def _run_periodic(
        self,
        name: str,
        interval: float,
        tick: TickFunc,
        instrument: str,
    ) -> None:
        while self._running:
            await self._guarded(name, tick, instrument)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def _guarded(self, name: str, tick: TickFunc, instrument: str) -> None:
        try:
            await tick(instrument)
        except InvariantViolation as e:
            if self.config.scheduler.strict_invariants:
                logger.error(f"Invariant violation in {name}, stopping scheduler: {e}")
                self._halt(e)
                raise
            logger.error(f"Invariant violation in {name}, tick skipped: {e}")
        except EngineError as e:
            logger.warning(f"{name} tick skipped: {e}")
        except Exception as e:
            logger.error(f"{name} tick error: {e}")

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _algorithm_records(self) -> list[AlgorithmRecord]:
        grid = self.config.grid
        momentum = self.config.momentum
        return [
            AlgorithmRecord(
                name=GRID_ALGORITHM_NAME,
                strategy=StrategyKind.GRID,
                risk_level=grid.risk_level,
                max_positions=grid.max_positions,
                max_position_size=grid.order_notional,
                stop_loss_percent=grid.stop_loss_fraction * 100,
                take_profit_percent=grid.take_profit_fraction * 100,
                config={
                    "instruments": [i.symbol for i in self.config.get_grid_instruments()],
                    "level_count": grid.level_count,
                    "spacing_fraction": grid.spacing_fraction,
                    "base_prices": {
                        i.symbol: i.base_price for i in self.config.get_grid_instruments()
                    },
                },
            ),
            AlgorithmRecord(
                name=MOMENTUM_ALGORITHM_NAME,
                strategy=StrategyKind.MOMENTUM,
                risk_level=momentum.risk_level,
                max_positions=momentum.max_positions,
                max_position_size=momentum.order_notional,
                stop_loss_percent=momentum.stop_loss_fraction * 100,
                take_profit_percent=momentum.take_profit_fraction * 100,
                config={
                    "instruments": [i.symbol for i in self.config.get_momentum_instruments()],
                    "momentum_threshold": momentum.momentum_threshold,
                    "rsi_overbought": momentum.rsi_overbought,
                    "actionable_confidence": momentum.actionable_confidence,
                    "priority_instrument": self.config.priority_instrument,
                },
            ),
        ]

    async def _register_algorithms(self) -> None:
        """Create algorithm records that don't exist yet."""
        for record in self._algorithm_records():
            try:
                if await self.store.get_algorithm(record.name) is not None:
                    continue
                await self.store.save_algorithm(record)
                logger.info(f"Created algorithm record: {record.name}")
            except Exception as e:
                logger.warning(f"Algorithm registration failed for {record.name}: {e}")

    async def _initialize_ladders(self) -> None:
        """Center each grid ladder on the current price (base price if unavailable)."""
        for inst in self.config.get_grid_instruments():
            state = self._states[inst.symbol]
            price = await self._fetch_price(inst.symbol)
            center = price if price is not None else inst.base_price
            async with state.lock:
                dropped = list(state.orders.values())
                self.grid_manager.initialize(state, center)
            await self.grid_manager.cancel_at_sink(dropped)

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def state(self, instrument: str) -> InstrumentState:
        """Get the engine state of an instrument."""
        return self._states[instrument]

    async def _fetch_price(self, instrument: str) -> Decimal | None:
        try:
            price = await asyncio.wait_for(
                self.price_source.get_price(instrument),
                timeout=self.config.scheduler.price_timeout,
            )
        except (PriceSourceError, asyncio.TimeoutError) as e:
            logger.warning(f"Price fetch failed for {instrument}, skipping tick: {e!r}")
            return None

        if price <= 0:
            logger.warning(f"Ignoring non-positive price {price} for {instrument}")
            return None
        return price

    async def _fetch_volume(self, instrument: str) -> Decimal | None:
        if self.volume_source is None:
            return None
        try:
            return await asyncio.wait_for(
                self.volume_source.get_volume(instrument),
                timeout=self.config.scheduler.price_timeout,
            )
        except (PriceSourceError, asyncio.TimeoutError) as e:
            logger.warning(f"Volume fetch failed for {instrument}: {e!r}")
            return None

    async def grid_tick(self, instrument: str) -> GridTickResult | None:
        """Fetch the price, trade the ladder, then check for a rebalance."""
        state = self._states[instrument]
        if state.ladder is None:
            return None

        price = await self._fetch_price(instrument)
        if price is None:
            return None

        result = await self.grid_manager.tick(state, price)
        await self.grid_manager.rebalance(state, price)
        return result

    async def momentum_tick(self, instrument: str) -> Position | None:
        """Record the price, score it and open a momentum position if actionable."""
        state = self._states[instrument]
        cfg = self.config.momentum

        price = await self._fetch_price(instrument)
        if price is None:
            return None
        volume = await self._fetch_volume(instrument)

        async with state.lock:
            state.history.record(price)
            samples = state.history.snapshot()

        signal = self.signal_engine.score(instrument, samples, volume)
        if signal is None:
            return None

        try:
            await self.store.save_signal(signal)
        except Exception as e:
            logger.warning(f"Failed to store signal for {instrument}: {e}")

        if not signal.is_actionable(cfg.actionable_confidence):
            return None

        # Reserved slots cover entries whose order is still in flight
        open_count = self.lifecycle.open_count(StrategyKind.MOMENTUM)
        if open_count + self._momentum_reserved >= cfg.max_positions:
            logger.info(
                f"Momentum signal on {instrument} skipped: "
                f"{cfg.max_positions} positions open or pending"
            )
            return None

        self._momentum_reserved += 1
        try:
            return await self._open_momentum_position(instrument, price, signal)
        finally:
            self._momentum_reserved -= 1

    async def _open_momentum_position(
        self,
        instrument: str,
        price: Decimal,
        signal: Signal,
    ) -> Position | None:
        cfg = self.config.momentum
        quantity = (cfg.order_notional / price).quantize(QUANTITY_STEP, rounding=ROUND_DOWN)
        logger.info(
            f"MOMENTUM TRADE: {instrument} @ {price} ({signal.confidence}% confidence) "
            f"RSI={signal.rsi:.1f} momentum={signal.momentum_pct:.2f}% MACD={signal.macd:.6f}"
        )

        try:
            order_id = await self.order_sink.place_order(
                instrument, OrderSide.BUY, quantity, price, OrderType.MARKET
            )
        except (OrderSinkError, asyncio.TimeoutError) as e:
            logger.warning(f"Momentum order rejected for {instrument}: {e}")
            return None

        # Market orders are treated as filled at signal time
        order = Order(
            id=order_id,
            instrument=instrument,
            side=OrderSide.BUY,
            order_type=OrderType.MARKET,
            quantity=quantity,
            price=price,
            strategy=StrategyKind.MOMENTUM,
        )
        order.mark_filled()

        try:
            await self.store.save_order(order)
        except Exception as e:
            logger.warning(f"Failed to store order {order.id}: {e}")

        return await self.lifecycle.on_fill(order)

    async def sweep_tick(self, instrument: str) -> list[RealizedProfitEvent]:
        """Close positions whose stop loss or take profit is crossed."""
        state = self._states[instrument]

        price = await self._fetch_price(instrument)
        if price is None:
            return []

        async with state.lock:
            to_close = self.lifecycle.positions_to_close(instrument, price)

        events: list[RealizedProfitEvent] = []
        for position in to_close:
            if not position.is_open:
                continue
            event = await self.lifecycle.on_close(position, price)
            events.append(event)
            await self.payout.handle(event)

        return events

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> dict:
        """Running flag, position counts per strategy, grid size and payouts."""
        strategies = {}
        for kind in StrategyKind:
            open_count = self.lifecycle.open_count(kind)
            closed_count = self.lifecycle.closed_count(kind)
            strategies[kind.value] = {
                "open_positions": open_count,
                "closed_positions": closed_count,
                "total_trades": open_count + closed_count,
            }

        return {
            "is_running": self._running,
            "failure": str(self.failure) if self.failure else None,
            "strategies": strategies,
            "grid_levels": sum(
                len(state.ladder.levels) for state in self._states.values() if state.ladder
            ),
            "payouts": self.payout.stats,
        }
