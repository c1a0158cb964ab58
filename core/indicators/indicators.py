"""Technical indicators over a bounded price history.

All functions operate on ``Decimal`` sequences ordered oldest to newest and
return a single ``Decimal`` for the newest sample. When the history is too
short for an indicator the function returns ``None``; callers must skip the
indicator rather than substitute a default.
"""

from decimal import Decimal
from typing import Sequence

_HUNDRED = Decimal("100")
_ONE = Decimal("1")
_TWO = Decimal("2")


def momentum(values: Sequence[Decimal], lookback: int = 5) -> Decimal | None:
    """
    Calculate percentage change from ``values[n - lookback]`` to the latest value.

    Args:
        values: Sequence of prices
        lookback: How many samples back the reference price sits

    Returns:
        Momentum in percent, or None if fewer than ``lookback`` samples
        (or the reference price is zero)
    """
    if lookback < 1 or len(values) < lookback:
        return None

    latest = values[-1]
    reference = values[-lookback]
    if reference == 0:
        return None

    return (latest - reference) / reference * _HUNDRED


def rsi(
    values: Sequence[Decimal],
    period: int = 14,
    neutral: Decimal = Decimal("50"),
) -> Decimal | None:
    """
    Calculate a simple-average RSI over up to the last ``period`` deltas.

    RSI = 100 - 100 / (1 + avg_gain / avg_loss)

    Uses fewer deltas when the history is shorter than ``period + 1``
    samples. When the average loss is zero the ratio is undefined and
    ``neutral`` is returned.

    Args:
        values: Sequence of prices
        period: Maximum number of deltas to average
        neutral: Value returned when there are no losses in the window

    Returns:
        RSI in [0, 100], or None with fewer than two samples
    """
    if len(values) < 2 or period < 1:
        return None

    window = values[-(period + 1):]
    gains = Decimal("0")
    losses = Decimal("0")
    count = 0

    for prev, curr in zip(window, window[1:]):
        change = curr - prev
        if change > 0:
            gains += change
        else:
            losses -= change
        count += 1

    avg_gain = gains / count
    avg_loss = losses / count

    if avg_loss == 0:
        return neutral

    rs = avg_gain / avg_loss
    return _HUNDRED - _HUNDRED / (_ONE + rs)


def ema(values: Sequence[Decimal], period: int) -> Decimal | None:
    """
    Calculate the Exponential Moving Average of the newest ``period`` samples.

    The average is seeded with the oldest sample in the window and then
    updated oldest to newest with ``ema += (price - ema) * k``,
    ``k = 2 / (period + 1)``. When fewer than ``period`` samples exist the
    whole history is the window.

    Args:
        values: Sequence of prices
        period: EMA period

    Returns:
        EMA value, or None for an empty history
    """
    if not values or period < 1:
        return None

    window = values[-period:]
    multiplier = _TWO / (period + 1)

    result = window[0]
    for price in window[1:]:
        result += (price - result) * multiplier

    return result


def macd(
    values: Sequence[Decimal],
    fast_period: int = 12,
    slow_period: int = 26,
) -> Decimal | None:
    """
    Calculate MACD = EMA(fast) - EMA(slow).

    Args:
        values: Sequence of prices
        fast_period: Fast EMA period
        slow_period: Slow EMA period

    Returns:
        MACD value, or None for an empty history
    """
    fast = ema(values, fast_period)
    slow = ema(values, slow_period)
    if fast is None or slow is None:
        return None
    return fast - slow
