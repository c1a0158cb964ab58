"""Order sinks: paper execution and exchange execution via ccxt."""

import logging
import uuid
from decimal import Decimal

import ccxt.async_support as ccxt

from core.errors import OrderSinkError
from core.models import OrderSide, OrderType

logger = logging.getLogger(__name__)


class PaperOrderSink:
    """Accept every order and confirm any fill of a known order.

    Only open limit orders are kept; market orders fill on placement and
    filled or cancelled orders are dropped.
    """

    def __init__(self):
        self._orders: dict[str, dict] = {}
        self._placed = 0

    async def place_order(
        self,
        instrument: str,
        side: OrderSide,
        quantity: Decimal,
        price: Decimal,
        order_type: OrderType,
    ) -> str:
        if quantity <= 0 or price <= 0:
            raise OrderSinkError(f"Invalid order: qty={quantity} price={price}")

        order_id = f"paper-{uuid.uuid4().hex}"
        self._placed += 1
        if order_type == OrderType.LIMIT:
            self._orders[order_id] = {
                "instrument": instrument,
                "side": side.value,
                "quantity": quantity,
                "price": price,
            }
        return order_id

    async def mark_filled(self, order_id: str) -> None:
        if self._orders.pop(order_id, None) is None:
            raise OrderSinkError(f"Unknown order {order_id}")

    async def cancel_order(self, order_id: str) -> None:
        self._orders.pop(order_id, None)

    @property
    def order_count(self) -> int:
        """Orders placed since start."""
        return self._placed

    @property
    def open_order_count(self) -> int:
        return len(self._orders)


class ExchangeOrderSink:
    """
    Order execution on a spot exchange via ccxt.

    In testnet mode trading is disabled and orders are simulated, so a
    misconfigured deployment never reaches a live account.
    """

    def __init__(
        self,
        exchange_id: str = "binance",
        api_key: str = "",
        api_secret: str = "",
        testnet: bool = True,
    ):
        """
        Args:
            exchange_id: ccxt exchange id
            api_key: Exchange API key
            api_secret: Exchange API secret
            testnet: Simulate orders instead of trading (default True for safety)
        """
        self._exchange_id = exchange_id
        self._api_key = api_key
        self._api_secret = api_secret
        self._testnet = testnet
        self._trading_enabled = not testnet

        self._exchange: ccxt.Exchange | None = None
        # order id -> symbol, needed by fetch_order
        self._symbols: dict[str, str] = {}

    async def connect(self) -> None:
        """Initialize connection to exchange."""
        if self._exchange:
            return

        exchange_class = getattr(ccxt, self._exchange_id)
        self._exchange = exchange_class({
            "apiKey": self._api_key,
            "secret": self._api_secret,
            "enableRateLimit": True,
        })

        if self._testnet:
            logger.warning(
                "Order sink in testnet mode - orders are simulated, trading disabled"
            )
        else:
            logger.warning(f"Connected to {self._exchange_id} PRODUCTION - USE WITH CAUTION")

        await self._exchange.load_markets()
        logger.info(f"Loaded {len(self._exchange.markets)} markets")

    async def close(self) -> None:
        """Close exchange connection."""
        if self._exchange:
            await self._exchange.close()
            self._exchange = None

    async def place_order(
        self,
        instrument: str,
        side: OrderSide,
        quantity: Decimal,
        price: Decimal,
        order_type: OrderType,
    ) -> str:
        """
        Place a limit or market order.

        Returns:
            Exchange order id

        Raises:
            OrderSinkError: If the exchange rejects the order
        """
        if not self._trading_enabled:
            order_id = f"SIMULATED-{uuid.uuid4().hex}"
            logger.info(
                f"Trading disabled - simulating {side.value} {order_type.value} order: "
                f"{instrument} qty={quantity} @ {price}"
            )
            if order_type == OrderType.LIMIT:
                self._symbols[order_id] = instrument
            return order_id

        if not self._exchange:
            await self.connect()

        logger.info(
            f"Placing {side.value} {order_type.value} order: {instrument} qty={quantity} @ {price}"
        )
        try:
            order = await self._exchange.create_order(
                symbol=instrument,
                type=order_type.value,
                side=side.value,
                amount=float(quantity),
                price=float(price) if order_type == OrderType.LIMIT else None,
            )
        except ccxt.BaseError as e:
            raise OrderSinkError(f"Order rejected for {instrument}: {e}") from e

        logger.info(f"Order placed: {order['id']} status={order['status']}")
        if order_type == OrderType.LIMIT:
            self._symbols[order["id"]] = instrument
        return order["id"]

    async def mark_filled(self, order_id: str) -> None:
        """
        Confirm with the exchange that an order has filled.

        Raises:
            OrderSinkError: If the order is unknown or not yet closed
        """
        symbol = self._symbols.get(order_id)
        if symbol is None:
            raise OrderSinkError(f"Unknown order {order_id}")

        if not self._trading_enabled:
            self._symbols.pop(order_id, None)
            return

        if not self._exchange:
            await self.connect()

        try:
            order = await self._exchange.fetch_order(order_id, symbol)
        except ccxt.BaseError as e:
            raise OrderSinkError(f"Could not fetch order {order_id}: {e}") from e

        if order.get("status") != "closed":
            raise OrderSinkError(f"Order {order_id} not filled yet (status={order.get('status')})")
        self._symbols.pop(order_id, None)

    async def cancel_order(self, order_id: str) -> None:
        """
        Cancel an open limit order on the exchange.

        Raises:
            OrderSinkError: If the exchange refuses the cancel
        """
        symbol = self._symbols.get(order_id)
        if symbol is None:
            return

        if self._trading_enabled:
            if not self._exchange:
                await self.connect()
            try:
                await self._exchange.cancel_order(order_id, symbol)
            except ccxt.OrderNotFound:
                logger.info(f"Order {order_id} already gone from exchange")
            except ccxt.BaseError as e:
                raise OrderSinkError(f"Cancel failed for {order_id}: {e}") from e
            else:
                logger.info(f"Order cancelled: {order_id}")

        self._symbols.pop(order_id, None)

    @property
    def open_order_count(self) -> int:
        """Limit orders placed and not yet filled or cancelled."""
        return len(self._symbols)
