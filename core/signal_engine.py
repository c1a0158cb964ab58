"""Momentum signal scoring.

Turns a price history into a scored Signal. The engine makes no trading
decision; the caller checks ``Signal.is_actionable`` against its own
threshold.

Scoring (additive, clamped to [0, 100]):
- start at base_confidence (50)
- +25 if momentum > 3% and RSI < 70 (action = BUY, otherwise SELL)
- +15 if the volume proxy exceeds the volume threshold
- +10 if MACD > 0
- +20 for the priority instrument when momentum > 2%
"""

import logging
from decimal import Decimal
from typing import Sequence

from core.indicators import macd, momentum, rsi
from core.models import MomentumConfig, OrderSide, Signal

logger = logging.getLogger(__name__)


class SignalEngine:
    """Score price histories into momentum signals."""

    def __init__(
        self,
        config: MomentumConfig | None = None,
        priority_instrument: str | None = None,
    ):
        """
        Args:
            config: Indicator periods and scoring thresholds
            priority_instrument: Instrument that receives the priority bonus
        """
        self.config = config or MomentumConfig()
        self.priority_instrument = priority_instrument

    def score(
        self,
        instrument: str,
        history: Sequence[Decimal],
        volume: Decimal | None = None,
    ) -> Signal | None:
        """
        Score the latest price of an instrument.

        Args:
            instrument: Instrument symbol
            history: Prices, oldest first, newest last
            volume: Optional volume proxy; the volume bonus is skipped when None

        Returns:
            Signal, or None when the history is too short to score
        """
        cfg = self.config

        if len(history) < cfg.min_samples:
            logger.debug(
                "%s: %d samples, need %d - skipping score",
                instrument, len(history), cfg.min_samples,
            )
            return None

        momentum_pct = momentum(history, cfg.momentum_lookback)
        rsi_value = rsi(history, cfg.rsi_period, cfg.rsi_neutral)
        macd_value = macd(history, cfg.ema_fast, cfg.ema_slow)

        if momentum_pct is None or rsi_value is None or macd_value is None:
            logger.debug("%s: indicators unavailable - skipping score", instrument)
            return None

        confidence = cfg.base_confidence
        action = OrderSide.SELL

        # Strong momentum signals
        if momentum_pct > cfg.momentum_threshold and rsi_value < cfg.rsi_overbought:
            confidence += cfg.momentum_bonus
            action = OrderSide.BUY

        # Volume confirmation
        if volume is not None and volume > cfg.volume_threshold:
            confidence += cfg.volume_bonus

        # MACD confirmation
        if macd_value > 0:
            confidence += cfg.macd_bonus

        if (
            self.priority_instrument is not None
            and instrument == self.priority_instrument
            and momentum_pct > cfg.priority_momentum_threshold
        ):
            confidence += cfg.priority_bonus

        confidence = max(0, min(100, confidence))

        logger.debug(
            "%s: momentum=%.4f%% rsi=%.2f macd=%.6f confidence=%d action=%s",
            instrument, momentum_pct, rsi_value, macd_value, confidence, action.value,
        )

        return Signal(
            instrument=instrument,
            price=history[-1],
            momentum_pct=momentum_pct,
            rsi=rsi_value,
            macd=macd_value,
            volume=volume,
            confidence=confidence,
            action=action,
        )
