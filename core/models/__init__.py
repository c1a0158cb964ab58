"""Engine data models."""

from core.models.config import (
    DEFAULT_INSTRUMENTS,
    DEFAULT_PRIORITY_INSTRUMENT,
    GRID_ALGORITHM_NAME,
    MOMENTUM_ALGORITHM_NAME,
    QUANTITY_STEP,
    GridConfig,
    InstrumentConfig,
    MomentumConfig,
    PayoutConfig,
    SchedulerConfig,
)
from core.models.grid import GridLadder, GridLevel
from core.models.signal import Signal
from core.models.trading import (
    AlgorithmRecord,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
    Position,
    PositionSide,
    PositionStatus,
    RealizedProfitEvent,
    StrategyKind,
)

__all__ = [
    # Config
    "DEFAULT_INSTRUMENTS",
    "DEFAULT_PRIORITY_INSTRUMENT",
    "GRID_ALGORITHM_NAME",
    "MOMENTUM_ALGORITHM_NAME",
    "QUANTITY_STEP",
    "GridConfig",
    "InstrumentConfig",
    "MomentumConfig",
    "PayoutConfig",
    "SchedulerConfig",
    # Grid
    "GridLadder",
    "GridLevel",
    # Signals
    "Signal",
    # Orders / positions
    "AlgorithmRecord",
    "Order",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "Position",
    "PositionSide",
    "PositionStatus",
    "RealizedProfitEvent",
    "StrategyKind",
]
