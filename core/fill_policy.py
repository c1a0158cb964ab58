"""Fill policies deciding whether a pending grid order at a reached level fills.

Production can plug in an exchange-backed policy; tests use the
deterministic ones.
"""

import random
from decimal import Decimal
from typing import Protocol, runtime_checkable

from core.models import GridLevel


@runtime_checkable
class FillPolicy(Protocol):
    """Decide whether the order resting at ``level`` fills at ``current_price``."""

    def should_fill(self, level: GridLevel, current_price: Decimal) -> bool:
        ...


class AlwaysFill:
    """Every eligible order fills."""

    def should_fill(self, level: GridLevel, current_price: Decimal) -> bool:
        return True


class NeverFill:
    """No order ever fills."""

    def should_fill(self, level: GridLevel, current_price: Decimal) -> bool:
        return False


class ProbabilisticFill:
    """Fill with a fixed probability per eligible tick (paper trading)."""

    def __init__(self, probability: Decimal = Decimal("0.7"), rng: random.Random | None = None):
        """
        Args:
            probability: Chance in [0, 1] that an eligible order fills
            rng: Random source (seed it for reproducible runs)
        """
        if not Decimal("0") <= probability <= Decimal("1"):
            raise ValueError(f"probability must be in [0, 1], got {probability}")
        self.probability = float(probability)
        self._rng = rng or random.Random()

    def should_fill(self, level: GridLevel, current_price: Decimal) -> bool:
        return self._rng.random() < self.probability
