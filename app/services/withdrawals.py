"""Withdrawal queue standing in for the external payout service."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingWithdrawal:
    """A withdrawal waiting for the external service."""

    usd_amount: Decimal
    source: str
    queued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryWithdrawalQueue:
    """Collect queued withdrawals in process.

    The external service drains the queue with ``drain()``; nothing here
    moves funds.
    """

    def __init__(self):
        self._pending: list[PendingWithdrawal] = []
        self._lock = asyncio.Lock()

    async def queue_withdrawal(self, usd_amount: Decimal, source_tag: str) -> None:
        async with self._lock:
            self._pending.append(PendingWithdrawal(usd_amount=usd_amount, source=source_tag))
            size = len(self._pending)
        logger.info(f"Withdrawal queued: ${usd_amount:.2f} from {source_tag} ({size} pending)")

    async def drain(self) -> list[PendingWithdrawal]:
        """Remove and return all pending withdrawals."""
        async with self._lock:
            pending, self._pending = self._pending, []
        return pending

    @property
    def size(self) -> int:
        return len(self._pending)

    @property
    def total_usd(self) -> Decimal:
        return sum((w.usd_amount for w in self._pending), Decimal("0"))
