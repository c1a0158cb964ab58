"""Bounded rolling price history per instrument."""

from decimal import Decimal

from pydantic import BaseModel, Field

DEFAULT_CAPACITY = 20


class PriceHistory(BaseModel):
    """Most recent prices for one instrument, oldest first."""

    instrument: str
    samples: list[Decimal] = Field(default_factory=list)
    capacity: int = DEFAULT_CAPACITY

    def record(self, price: Decimal) -> None:
        """Append a sample, evicting the oldest when at capacity."""
        self.samples.append(price)
        if len(self.samples) > self.capacity:
            self.samples = self.samples[-self.capacity :]

    def snapshot(self) -> tuple[Decimal, ...]:
        """Read-only copy of the samples for scoring."""
        return tuple(self.samples)

    @property
    def latest(self) -> Decimal | None:
        return self.samples[-1] if self.samples else None

    def __len__(self) -> int:
        return len(self.samples)


class PriceHistoryStore:
    """Price histories keyed by instrument.

    The store performs no locking; callers serialize access per instrument.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._histories: dict[str, PriceHistory] = {}

    def history(self, instrument: str) -> PriceHistory:
        """Get (creating if needed) the history for an instrument."""
        if instrument not in self._histories:
            self._histories[instrument] = PriceHistory(
                instrument=instrument, capacity=self.capacity
            )
        return self._histories[instrument]

    def record(self, instrument: str, price: Decimal) -> None:
        self.history(instrument).record(price)

    def snapshot(self, instrument: str) -> tuple[Decimal, ...]:
        if instrument not in self._histories:
            return ()
        return self._histories[instrument].snapshot()

    def instruments(self) -> list[str]:
        return sorted(self._histories)
