"""Engine exception taxonomy."""


class EngineError(Exception):
    """Base class for all engine errors."""


class InvariantViolation(EngineError):
    """A state transition that must never happen was attempted.

    These are programmer errors (closing a closed position, a ladder whose
    levels are not strictly increasing, filling an order that is not pending).
    """


class PriceSourceError(EngineError):
    """The price feed failed or returned an unusable price."""


class OrderSinkError(EngineError):
    """The order sink rejected an order or could not confirm a fill."""


class StoreError(EngineError):
    """The algorithm/position store failed to read or write a record."""
