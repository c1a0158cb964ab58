"""Application services."""

from app.services.order_service import ExchangeOrderSink, PaperOrderSink
from app.services.price_feed import ExchangePriceSource, SimulatedPriceSource
from app.services.scheduler import Scheduler
from app.services.withdrawals import InMemoryWithdrawalQueue, PendingWithdrawal

__all__ = [
    "ExchangeOrderSink",
    "PaperOrderSink",
    "ExchangePriceSource",
    "SimulatedPriceSource",
    "Scheduler",
    "InMemoryWithdrawalQueue",
    "PendingWithdrawal",
]
