"""Engine configuration models."""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, field_validator, model_validator

# Quantities are quantized to this step (round down)
QUANTITY_STEP = Decimal("0.00000001")


def _check_fraction(value: Decimal) -> Decimal:
    if not Decimal("0") < value < Decimal("1"):
        raise ValueError(f"fraction must be in (0, 1), got {value}")
    return value


class GridConfig(BaseModel):
    """Grid ladder parameters."""

    level_count: int = 11  # 5 below + center + 5 above
    spacing_fraction: Decimal = Decimal("0.005")  # 0.5% of center price
    order_notional: Decimal = Decimal("20")  # USD per level
    fill_tolerance: Decimal = Decimal("0.001")  # 0.1%
    fill_probability: Decimal = Decimal("0.7")
    rebalance_threshold: Decimal = Decimal("0.5")  # fraction of ladder range

    stop_loss_fraction: Decimal = Decimal("0.08")
    take_profit_fraction: Decimal = Decimal("0.03")
    max_positions: int = 20
    risk_level: int = 4

    @field_validator("level_count")
    @classmethod
    def _odd_level_count(cls, v: int) -> int:
        if v < 3 or v % 2 == 0:
            raise ValueError(f"level_count must be odd and >= 3, got {v}")
        return v

    @field_validator(
        "spacing_fraction",
        "fill_tolerance",
        "rebalance_threshold",
        "stop_loss_fraction",
        "take_profit_fraction",
    )
    @classmethod
    def _fractions(cls, v: Decimal) -> Decimal:
        return _check_fraction(v)

    @field_validator("fill_probability")
    @classmethod
    def _probability(cls, v: Decimal) -> Decimal:
        if not Decimal("0") <= v <= Decimal("1"):
            raise ValueError(f"fill_probability must be in [0, 1], got {v}")
        return v


class MomentumConfig(BaseModel):
    """Signal engine thresholds and momentum trade parameters."""

    # Price history
    history_size: int = 20
    min_samples: int = 5

    # Indicator periods
    momentum_lookback: int = 5
    rsi_period: int = 14
    ema_fast: int = 12
    ema_slow: int = 26

    # RSI value used when the average loss over the window is zero
    rsi_neutral: Decimal = Decimal("50")

    # Scoring
    base_confidence: int = 50
    momentum_threshold: Decimal = Decimal("3")  # percent
    rsi_overbought: Decimal = Decimal("70")
    momentum_bonus: int = 25
    volume_threshold: Decimal = Decimal("1200000")
    volume_bonus: int = 15
    macd_bonus: int = 10
    priority_momentum_threshold: Decimal = Decimal("2")  # percent
    priority_bonus: int = 20
    actionable_confidence: int = 75

    # Trading
    order_notional: Decimal = Decimal("30")  # USD per trade
    stop_loss_fraction: Decimal = Decimal("0.03")
    take_profit_fraction: Decimal = Decimal("0.08")
    max_positions: int = 15
    risk_level: int = 8

    @field_validator("stop_loss_fraction", "take_profit_fraction")
    @classmethod
    def _fractions(cls, v: Decimal) -> Decimal:
        return _check_fraction(v)

    @field_validator("min_samples")
    @classmethod
    def _min_samples(cls, v: int) -> int:
        if v < 2:
            raise ValueError(f"min_samples must be >= 2, got {v}")
        return v

    @field_validator("history_size", "momentum_lookback", "rsi_period", "ema_fast", "ema_slow")
    @classmethod
    def _positive_period(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"period must be >= 1, got {v}")
        return v

    @model_validator(mode="after")
    def _consistent_windows(self):
        if self.history_size < self.min_samples:
            raise ValueError(
                f"history_size ({self.history_size}) must be >= min_samples ({self.min_samples})"
            )
        if self.history_size < self.momentum_lookback:
            raise ValueError(
                f"history_size ({self.history_size}) must be >= "
                f"momentum_lookback ({self.momentum_lookback})"
            )
        if self.ema_fast >= self.ema_slow:
            raise ValueError(
                f"ema_fast ({self.ema_fast}) must be < ema_slow ({self.ema_slow})"
            )
        return self


class PayoutConfig(BaseModel):
    """Payout trigger parameters."""

    min_threshold: Decimal = Decimal("0.50")  # USD
    # Handled event ids remembered for duplicate detection (oldest evicted)
    max_tracked_events: int = 10_000

    @field_validator("max_tracked_events")
    @classmethod
    def _tracked(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_tracked_events must be >= 1, got {v}")
        return v


class SchedulerConfig(BaseModel):
    """Tick intervals (seconds) and failure handling."""

    grid_interval: float = 12.0
    momentum_interval: float = 10.0
    sweep_interval: float = 30.0
    price_timeout: float = 5.0

    # Raise invariant violations instead of logging and skipping the tick
    strict_invariants: bool = False

    @field_validator("grid_interval", "momentum_interval", "sweep_interval", "price_timeout")
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"interval must be > 0, got {v}")
        return v


class InstrumentConfig(BaseModel):
    """Per-instrument configuration."""

    symbol: str
    base_price: Decimal
    grid_enabled: bool = True
    momentum_enabled: bool = True


# =============================================================================
# Default instrument set: XRP/ETH/BTC on both paths, SOL/AVAX momentum only
# =============================================================================
DEFAULT_INSTRUMENTS: list[InstrumentConfig] = [
    InstrumentConfig(symbol="XRP/USDT", base_price=Decimal("0.62")),
    InstrumentConfig(symbol="ETH/USDT", base_price=Decimal("2300")),
    InstrumentConfig(symbol="BTC/USDT", base_price=Decimal("43000")),
    InstrumentConfig(symbol="SOL/USDT", base_price=Decimal("105"), grid_enabled=False),
    InstrumentConfig(symbol="AVAX/USDT", base_price=Decimal("35"), grid_enabled=False),
]

DEFAULT_PRIORITY_INSTRUMENT = "XRP/USDT"

GRID_ALGORITHM_NAME = "Multi-Level Grid Trader"
MOMENTUM_ALGORITHM_NAME = "High-Frequency Momentum Scalper"
