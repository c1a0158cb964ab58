"""Trading configuration loaded from trading.yaml.

Supports:
- Instrument list with per-instrument grid/momentum switches
- Grid, momentum, payout and scheduler parameters
- Backward compatible: no YAML file = default instrument set and parameters
"""

import logging
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from core.models import (
    DEFAULT_INSTRUMENTS,
    DEFAULT_PRIORITY_INSTRUMENT,
    GridConfig,
    InstrumentConfig,
    MomentumConfig,
    PayoutConfig,
    SchedulerConfig,
)

logger = logging.getLogger(__name__)


class TradingConfig(BaseModel):
    """Top-level trading.yaml configuration."""

    instruments: list[InstrumentConfig] = Field(
        default_factory=lambda: [i.model_copy() for i in DEFAULT_INSTRUMENTS]
    )
    priority_instrument: str | None = DEFAULT_PRIORITY_INSTRUMENT
    grid: GridConfig = Field(default_factory=GridConfig)
    momentum: MomentumConfig = Field(default_factory=MomentumConfig)
    payout: PayoutConfig = Field(default_factory=PayoutConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    @model_validator(mode="after")
    def _validate(self):
        if not self.instruments:
            raise ValueError("at least one instrument must be configured")

        symbols = [i.symbol for i in self.instruments]
        duplicates = sorted({s for s in symbols if symbols.count(s) > 1})
        if duplicates:
            raise ValueError(f"duplicate instruments: {', '.join(duplicates)}")

        if self.priority_instrument is not None and self.priority_instrument not in symbols:
            raise ValueError(
                f"priority_instrument '{self.priority_instrument}' is not a configured instrument"
            )
        return self

    def get_grid_instruments(self) -> list[InstrumentConfig]:
        """Instruments traded on the grid path."""
        return [i for i in self.instruments if i.grid_enabled]

    def get_momentum_instruments(self) -> list[InstrumentConfig]:
        """Instruments traded on the momentum path."""
        return [i for i in self.instruments if i.momentum_enabled]


_DEFAULT_PATH = Path(__file__).parent.parent / "trading.yaml"


def load_trading_config(path: Path | None = None) -> TradingConfig:
    """Load trading config from YAML file.

    Falls back to defaults if the file doesn't exist.
    """
    config_path = path or _DEFAULT_PATH

    # Load .env into os.environ so exchange credentials are available to Settings
    env_path = config_path.parent / ".env"
    load_dotenv(env_path, override=False)

    if not config_path.exists():
        logger.info("No trading.yaml found at %s, using defaults", config_path)
        return TradingConfig()

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    config = TradingConfig(**raw)
    logger.info(
        "Loaded trading config: %d instruments (%d grid, %d momentum), priority=%s",
        len(config.instruments),
        len(config.get_grid_instruments()),
        len(config.get_momentum_instruments()),
        config.priority_instrument,
    )
    return config
