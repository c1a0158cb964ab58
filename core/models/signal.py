"""Scored trade signal model."""

from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from core.models.trading import OrderSide


class Signal(BaseModel):
    """Result of one scoring pass. Immutable once emitted."""

    model_config = ConfigDict(frozen=True)

    instrument: str
    price: Decimal
    momentum_pct: Decimal
    rsi: Decimal
    macd: Decimal
    volume: Decimal | None = None
    confidence: int = Field(ge=0, le=100)
    action: OrderSide
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def is_actionable(self, min_confidence: int) -> bool:
        """A buy whose confidence is strictly above min_confidence."""
        return self.action == OrderSide.BUY and self.confidence > min_confidence
