"""Main application entry point."""

import argparse
import asyncio
import logging
import random
import signal
from pathlib import Path

# Configure logging FIRST, before any other imports
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)

# Reduce noise from third-party libraries (must be set before importing them)
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine.Engine").setLevel(logging.WARNING)
logging.getLogger("ccxt").setLevel(logging.WARNING)
logging.getLogger("asyncio").setLevel(logging.WARNING)

from app.config import Settings, get_settings
from app.services import (
    ExchangeOrderSink,
    ExchangePriceSource,
    InMemoryWithdrawalQueue,
    PaperOrderSink,
    Scheduler,
    SimulatedPriceSource,
)
from app.storage import InMemoryTradingStore, SqlTradingStore, init_database
from app.trading_config import TradingConfig, load_trading_config
from core.fill_policy import ProbabilisticFill

logger = logging.getLogger(__name__)


async def build_scheduler(settings: Settings, config: TradingConfig) -> tuple[Scheduler, list]:
    """
    Wire the scheduler from settings.

    Returns:
        The scheduler and the resources to close on shutdown
    """
    closables = []
    rng = random.Random(settings.random_seed)

    if settings.store_backend == "database":
        db = await init_database()
        closables.append(db)
        store = SqlTradingStore(db)
        logger.info("Using database store")
    else:
        store = InMemoryTradingStore()
        logger.info("Using in-memory store")

    if settings.price_source == "exchange":
        price_source = ExchangePriceSource(settings.exchange_id, testnet=settings.exchange_testnet)
        await price_source.connect()
        closables.append(price_source)
    else:
        price_source = SimulatedPriceSource(
            {i.symbol: i.base_price for i in config.instruments},
            rng=rng,
        )
        logger.info("Using simulated price feed")

    if settings.order_sink == "exchange":
        order_sink = ExchangeOrderSink(
            settings.exchange_id,
            api_key=settings.exchange_api_key,
            api_secret=settings.exchange_api_secret,
            testnet=settings.exchange_testnet,
        )
        await order_sink.connect()
        closables.append(order_sink)
    else:
        order_sink = PaperOrderSink()
        logger.info("Using paper order sink")

    scheduler = Scheduler(
        config,
        price_source=price_source,
        order_sink=order_sink,
        store=store,
        withdrawals=InMemoryWithdrawalQueue(),
        fill_policy=ProbabilisticFill(config.grid.fill_probability, rng=rng),
        volume_source=price_source,
    )
    return scheduler, closables


async def run(config_path: Path | None = None) -> None:
    """Run the engine until SIGINT/SIGTERM."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    if config_path is None and settings.trading_config_path:
        config_path = Path(settings.trading_config_path)
    config = load_trading_config(config_path)

    scheduler, closables = await build_scheduler(settings, config)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info("Starting grid engine...")
    try:
        await scheduler.start()
        await stop_event.wait()
        logger.info("Shutting down...")
    finally:
        await scheduler.stop()
        logger.info(f"Final status: {scheduler.get_status()}")
        for resource in closables:
            try:
                await resource.close()
            except Exception as e:
                logger.warning(f"Error closing {type(resource).__name__}: {e}")
    logger.info("Shutdown complete")


def main():
    """Run the application."""
    parser = argparse.ArgumentParser(description="Grid and momentum trading engine")
    parser.add_argument("--config", type=Path, default=None, help="Path to trading.yaml")
    args = parser.parse_args()

    asyncio.run(run(args.config))


if __name__ == "__main__":
    main()
