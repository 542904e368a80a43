"""Transactional writer: the order and its outbox event in one commit.

Both rows become visible to other transactions (including the relay)
at the same instant, or neither does. There are no retries here; a
failed write is rolled back in full and reported as a
:class:`WriteError` naming the stage that failed.
"""

from __future__ import annotations

import asyncio
import logging
import time

from outbox_relay.core.enums import WriteStage
from outbox_relay.core.errors import WriteError
from outbox_relay.core.interfaces import IDurableStore
from outbox_relay.core.models import Order, OutboxEvent
from outbox_relay.observability.metrics import record_order_created, record_write_error

logger = logging.getLogger(__name__)


class TransactionalWriter:
    """Creates orders together with their ``order.created`` outbox event.

    Args:
        store: Durable store providing atomic transactions.
        event_type: Label stamped on every outbox event; the relay uses it
            as the channel name.
        timeout_seconds: Deadline for the whole write. On expiry the
            transaction is cancelled (and so rolled back) and a
            :class:`WriteError` for the stage in progress is raised.
    """

    def __init__(
        self,
        store: IDurableStore,
        *,
        event_type: str = "order.created",
        timeout_seconds: float | None = None,
    ) -> None:
        self._store = store
        self._event_type = event_type
        self._timeout = timeout_seconds

    async def create_order(self, order: Order) -> None:
        """Insert *order* and its outbox event atomically.

        Returns only after the commit succeeded.

        Raises:
            WriteError: Any failure; nothing was persisted.
        """
        stage = WriteStage.BEGIN

        async def _write() -> None:
            nonlocal stage
            async with self._store.transaction() as uow:
                stage = WriteStage.INSERT_ORDER
                await uow.insert_order(order)

                stage = WriteStage.MARSHAL
                event = OutboxEvent(event_type=self._event_type, payload=order.to_payload())

                stage = WriteStage.INSERT_OUTBOX
                await uow.insert_outbox(event)

                stage = WriteStage.COMMIT

        start = time.monotonic()
        try:
            if self._timeout is None:
                await _write()
            else:
                await asyncio.wait_for(_write(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            record_write_error(stage.value)
            logger.warning(
                "Order %s write timed out after %.3fs at stage %s",
                order.id, self._timeout, stage.value,
            )
            raise WriteError(stage, e) from e
        except Exception as e:
            record_write_error(stage.value)
            logger.warning("Order %s write failed at stage %s: %s", order.id, stage.value, e)
            raise WriteError(stage, e) from e

        record_order_created(time.monotonic() - start)
        logger.info("Order %s committed with outbox event", order.id)
