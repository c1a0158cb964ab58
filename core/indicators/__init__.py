"""Technical indicators (pure math, no I/O)."""

from core.indicators.indicators import ema, macd, momentum, rsi

__all__ = [
    "ema",
    "macd",
    "momentum",
    "rsi",
]
