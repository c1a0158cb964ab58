"""Per-instrument engine state."""

import asyncio
from dataclasses import dataclass, field

from core.models import GridLadder, Order, OrderSide
from core.price_history import PriceHistory


@dataclass
class InstrumentState:
    """Everything the ticks of one instrument read and write.

    All mutation happens while holding ``lock``. Exchange and store calls are
    made with the lock released; the result is applied after re-acquiring it.
    Different instruments never share state, so they need no common lock.
    """

    instrument: str
    history: PriceHistory
    ladder: GridLadder | None = None

    # Pending grid orders by order id
    orders: dict[str, Order] = field(default_factory=dict)

    # (ladder generation, level index, side) with a placement in progress
    placing: set[tuple[int, int, OrderSide]] = field(default_factory=set)

    # Order ids whose fill is being confirmed with the order sink
    filling: set[str] = field(default_factory=set)

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
