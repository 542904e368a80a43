"""Order confirmation e-mail consumer.

Subscribes to ``order.created`` and "sends" a confirmation for each
order by logging it. Delivery from the relay is at-least-once, so
orders already handled are remembered (bounded, most recent first) and
duplicates are skipped.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict

from pydantic import ValidationError

from outbox_relay.core.errors import ChannelUnavailable
from outbox_relay.core.interfaces import INotificationChannel
from outbox_relay.core.models import Order

logger = logging.getLogger(__name__)


class EmailConsumer:
    """Handles ``order.created`` notifications.

    Args:
        channel: Notification channel to subscribe to.
        channel_name: Event type / channel to listen on.
        dedupe_capacity: Number of recent order ids remembered for
            duplicate suppression.
        retry_delay_seconds: Wait before resubscribing after the channel
            becomes unavailable.
    """

    def __init__(
        self,
        channel: INotificationChannel,
        *,
        channel_name: str = "order.created",
        dedupe_capacity: int = 10_000,
        retry_delay_seconds: float = 2.0,
    ) -> None:
        self._channel = channel
        self._channel_name = channel_name
        self._capacity = dedupe_capacity
        self._retry_delay = retry_delay_seconds
        self._seen: OrderedDict[str, None] = OrderedDict()
        self.sent = 0
        self.duplicates = 0
        self.rejected = 0
        self.resubscribes = 0

    def handle(self, payload: bytes) -> bool:
        """Process one payload. Returns True if an e-mail was sent."""
        try:
            order = Order.model_validate_json(payload)
        except ValidationError as e:
            self.rejected += 1
            logger.warning("[EMAIL] Failed to parse order: %s", e)
            return False

        if order.id in self._seen:
            self.duplicates += 1
            self._seen.move_to_end(order.id)
            logger.info("[EMAIL] Duplicate notification for Order %s ignored", order.id)
            return False

        self._seen[order.id] = None
        if len(self._seen) > self._capacity:
            self._seen.popitem(last=False)

        logger.info(
            "[EMAIL] Sending confirmation email for Order %s (user=%s, amount=%d)",
            order.id, order.user_id, order.amount,
        )
        self.sent += 1
        return True

    async def run(self) -> None:
        """Consume until the task is cancelled.

        A channel outage ends the current subscription; after
        ``retry_delay_seconds`` the consumer subscribes again.
        """
        logger.info("Email consumer starting on %r channel", self._channel_name)
        try:
            while True:
                subscription = self._channel.subscribe(self._channel_name)
                try:
                    async for payload in subscription:
                        self.handle(payload)
                    return
                except ChannelUnavailable as e:
                    self.resubscribes += 1
                    logger.warning(
                        "[EMAIL] Subscription lost, resubscribing in %.1fs: %s",
                        self._retry_delay, e,
                    )
                finally:
                    await subscription.aclose()
                await asyncio.sleep(self._retry_delay)
        finally:
            logger.info("Email consumer stopped")
