"""Outbox relay worker.

Drains PENDING outbox rows into the notification channel on a fixed
timer. Each cycle is a single store transaction:

    claim up to N rows (FOR UPDATE SKIP LOCKED, oldest first)
      -> publish each row, in order
      -> mark each published row PROCESSED
    commit

The first publish failure aborts the whole transaction, so no status
update from that batch is kept and every claimed row is retried on the
next tick. Publishing is a side effect outside the transaction: a row
whose publish succeeded but whose batch later rolled back is published
again, which makes delivery at-least-once. Subscribers must tolerate
duplicates.

Several relays may run against the same store at once; the skip-locked
claim hands each of them a disjoint set of rows.
"""

from __future__ import annotations

import asyncio
import logging
import time

from outbox_relay.core.errors import OutboxRelayError, PublishError
from outbox_relay.core.interfaces import IDurableStore, INotificationChannel
from outbox_relay.core.models import OutboxEvent
from outbox_relay.observability.metrics import record_batch, record_published

logger = logging.getLogger(__name__)


class OutboxRelay:
    """Polls the outbox and publishes pending events.

    Args:
        store: Durable store holding the outbox table.
        channel: Notification channel events are published to; the
            event type is used as the channel name.
        batch_size: Maximum rows claimed per cycle.
        interval_seconds: Period of the polling timer.
        publish_timeout_seconds: Deadline for one publish; expiry is
            treated as a publish failure.
        name: Identifies this instance in logs.
    """

    def __init__(
        self,
        store: IDurableStore,
        channel: INotificationChannel,
        *,
        batch_size: int = 10,
        interval_seconds: float = 0.5,
        publish_timeout_seconds: float | None = None,
        name: str = "relay-1",
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._store = store
        self._channel = channel
        self._batch_size = batch_size
        self._interval = interval_seconds
        self._publish_timeout = publish_timeout_seconds
        self.name = name

    # -- one cycle -----------------------------------------------------------

    async def process_batch(self) -> list[OutboxEvent]:
        """Claim, publish and mark one batch inside one transaction.

        Returns:
            The events published and committed as PROCESSED (empty when
            there was nothing pending).

        Raises:
            PublishError: A publish failed; the batch was rolled back.
            StoreUnavailable: The store could not be reached.
        """
        async with self._store.transaction() as uow:
            events = await uow.claim_pending(self._batch_size)
            for event in events:
                await self._publish(event)
                await uow.mark_processed(event.id)
        return events

    async def _publish(self, event: OutboxEvent) -> None:
        try:
            if self._publish_timeout is None:
                await self._channel.publish(event.event_type, event.payload)
            else:
                await asyncio.wait_for(
                    self._channel.publish(event.event_type, event.payload),
                    timeout=self._publish_timeout,
                )
        except Exception as e:
            raise PublishError(event.id, e) from e
        record_published(event.event_type)

    async def tick(self) -> int:
        """Run one cycle, logging instead of raising. Returns rows processed."""
        try:
            events = await self.process_batch()
        except OutboxRelayError as e:
            record_batch("failed", 0)
            logger.warning("[%s] Batch rolled back, will retry next tick: %s", self.name, e)
            return 0
        except Exception:
            record_batch("failed", 0)
            logger.exception("[%s] Unexpected relay failure", self.name)
            return 0

        if not events:
            record_batch("empty", 0)
            return 0

        record_batch("committed", len(events))
        logger.info("[%s] Relayed %d outbox events", self.name, len(events))
        return len(events)

    # -- loop ----------------------------------------------------------------

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Tick every ``interval_seconds`` until *stop_event* is set.

        Cancelling the task aborts the in-flight transaction, which rolls
        back and leaves its rows PENDING.
        """
        stop = stop_event or asyncio.Event()
        logger.info(
            "[%s] Outbox relay started (interval=%.3fs, batch_size=%d)",
            self.name, self._interval, self._batch_size,
        )
        while not stop.is_set():
            started = time.monotonic()
            await self.tick()
            remaining = max(0.0, self._interval - (time.monotonic() - started))
            try:
                await asyncio.wait_for(stop.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                pass
        logger.info("[%s] Outbox relay stopped", self.name)
