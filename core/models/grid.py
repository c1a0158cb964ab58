"""Grid ladder models."""

from decimal import Decimal

from pydantic import BaseModel, Field

from core.errors import InvariantViolation
from core.models.trading import OrderSide


class GridLevel(BaseModel):
    """A single price level of a ladder.

    Each level holds at most one buy and one sell order reference. Once
    ``filled`` is set the level takes no further orders until the ladder
    is rebuilt.
    """

    price: Decimal
    buy_order_ref: str | None = None
    sell_order_ref: str | None = None
    filled: bool = False

    def order_ref(self, side: OrderSide) -> str | None:
        if side == OrderSide.BUY:
            return self.buy_order_ref
        return self.sell_order_ref

    def set_order_ref(self, side: OrderSide, order_id: str | None) -> None:
        if side == OrderSide.BUY:
            self.buy_order_ref = order_id
        else:
            self.sell_order_ref = order_id


class GridLadder(BaseModel):
    """Fixed set of levels around a center price for one instrument."""

    instrument: str
    levels: list[GridLevel] = Field(default_factory=list)
    spacing_fraction: Decimal
    generation: int = 0  # bumped on every rebalance

    @property
    def range_size(self) -> Decimal:
        """Distance between the lowest and highest level."""
        return self.levels[-1].price - self.levels[0].price

    @property
    def center_price(self) -> Decimal:
        return self.levels[0].price + self.range_size / 2

    @property
    def pending_refs(self) -> int:
        """Number of outstanding order references across all levels."""
        return sum(
            (level.buy_order_ref is not None) + (level.sell_order_ref is not None)
            for level in self.levels
        )

    def check_monotonic(self) -> None:
        """Raise InvariantViolation unless level prices strictly increase."""
        for lower, upper in zip(self.levels, self.levels[1:]):
            if not lower.price < upper.price:
                raise InvariantViolation(
                    f"Ladder for {self.instrument} is not strictly increasing: "
                    f"{lower.price} >= {upper.price}"
                )
