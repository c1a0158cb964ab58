"""Hand-off of realized profits to the external withdrawal service."""

import logging
from collections import deque
from decimal import Decimal

from core.models import PayoutConfig, RealizedProfitEvent
from core.ports import WithdrawalQueue

logger = logging.getLogger(__name__)


class PayoutTrigger:
    """
    Forward realized-profit events above a threshold for withdrawal.

    Each event is forwarded at most once (keyed by event id). The most
    recent ``max_tracked_events`` ids are remembered. Losses and
    amounts at or below the threshold are never queued. The outcome of the
    withdrawal is not awaited beyond the queue call itself.
    """

    def __init__(self, withdrawals: WithdrawalQueue, config: PayoutConfig | None = None):
        self.withdrawals = withdrawals
        self.config = config or PayoutConfig()
        self._seen: set[str] = set()
        self._seen_order: deque[str] = deque(maxlen=self.config.max_tracked_events)
        self._forwarded_count = 0
        self._forwarded_total = Decimal("0")

    async def handle(self, event: RealizedProfitEvent) -> bool:
        """
        Process one realized-profit event.

        Returns:
            True if the event was queued for withdrawal
        """
        if event.id in self._seen:
            logger.warning(f"Profit event {event.id} already handled, ignoring")
            return False
        self._remember(event.id)

        if event.usd_amount <= self.config.min_threshold:
            logger.info(
                f"Profit ${event.usd_amount:.2f} from {event.source_tag} "
                f"at or below ${self.config.min_threshold} threshold, not queued"
            )
            return False

        try:
            await self.withdrawals.queue_withdrawal(event.usd_amount, event.source_tag)
        except Exception as e:
            logger.warning(f"Failed to queue withdrawal for {event.id}: {e}")
            return False

        self._forwarded_count += 1
        self._forwarded_total += event.usd_amount
        logger.info(f"PROFIT WITHDRAWAL QUEUED: ${event.usd_amount:.2f} from {event.source_tag}")
        return True

    def _remember(self, event_id: str) -> None:
        if len(self._seen_order) == self._seen_order.maxlen:
            self._seen.discard(self._seen_order[0])
        self._seen_order.append(event_id)
        self._seen.add(event_id)

    @property
    def tracked_count(self) -> int:
        return len(self._seen)

    @property
    def stats(self) -> dict:
        """Forwarded withdrawal count and USD total."""
        return {
            "forwarded": self._forwarded_count,
            "forwarded_usd": self._forwarded_total,
        }
