"""Price feeds: exchange tickers via ccxt and a simulated random walk."""

import logging
import random
from decimal import ROUND_HALF_UP, Decimal

import ccxt.async_support as ccxt

from core.errors import PriceSourceError

logger = logging.getLogger(__name__)

_PRICE_STEP = Decimal("0.00000001")


class SimulatedPriceSource:
    """
    Bounded random walk around each instrument's base price.

    Every call moves the price by a uniform step of up to ``step_fraction``
    of the base price, clamped to ``base * (1 +/- band_fraction)``. Also
    serves a simulated volume proxy.
    """

    def __init__(
        self,
        base_prices: dict[str, Decimal],
        step_fraction: Decimal = Decimal("0.004"),
        band_fraction: Decimal = Decimal("0.08"),
        rng: random.Random | None = None,
    ):
        self.base_prices = dict(base_prices)
        self.step_fraction = step_fraction
        self.band_fraction = band_fraction
        self._rng = rng or random.Random()
        self._prices: dict[str, Decimal] = dict(base_prices)

    async def get_price(self, instrument: str) -> Decimal:
        if instrument not in self.base_prices:
            raise PriceSourceError(f"No simulated price for {instrument}")

        base = self.base_prices[instrument]
        step = Decimal(str(self._rng.uniform(-1.0, 1.0))) * self.step_fraction * base
        low = base * (1 - self.band_fraction)
        high = base * (1 + self.band_fraction)

        price = min(high, max(low, self._prices[instrument] + step))
        price = price.quantize(_PRICE_STEP, rounding=ROUND_HALF_UP)
        self._prices[instrument] = price
        return price

    async def get_volume(self, instrument: str) -> Decimal | None:
        if instrument not in self.base_prices:
            return None
        return Decimal(str(round(self._rng.uniform(1_000_000, 1_500_000), 2)))


class ExchangePriceSource:
    """Last-trade prices and quote volume from an exchange ticker via ccxt."""

    def __init__(self, exchange_id: str = "binance", testnet: bool = True):
        self._exchange_id = exchange_id
        self._testnet = testnet
        self._exchange: ccxt.Exchange | None = None

    async def connect(self) -> None:
        """Initialize connection to exchange."""
        if self._exchange:
            return

        exchange_class = getattr(ccxt, self._exchange_id)
        self._exchange = exchange_class({"enableRateLimit": True})
        if self._testnet:
            self._exchange.set_sandbox_mode(True)

        await self._exchange.load_markets()
        logger.info(f"Price feed connected to {self._exchange_id} ({len(self._exchange.markets)} markets)")

    async def close(self) -> None:
        """Close exchange connection."""
        if self._exchange:
            await self._exchange.close()
            self._exchange = None

    async def _ticker(self, instrument: str) -> dict:
        if not self._exchange:
            await self.connect()
        try:
            return await self._exchange.fetch_ticker(instrument)
        except ccxt.BaseError as e:
            raise PriceSourceError(f"Ticker fetch failed for {instrument}: {e}") from e

    async def get_price(self, instrument: str) -> Decimal:
        ticker = await self._ticker(instrument)
        last = ticker.get("last")
        if last is None or last <= 0:
            raise PriceSourceError(f"No last price for {instrument}")
        return Decimal(str(last))

    async def get_volume(self, instrument: str) -> Decimal | None:
        ticker = await self._ticker(instrument)
        volume = ticker.get("quoteVolume")
        return Decimal(str(volume)) if volume is not None else None
