"""Order submission: idempotency guard in front of the transactional writer.

``OrderService.submit`` has exactly four observable outcomes, which an
outer transport maps to its own status codes:

  - a fresh :class:`SubmitResult` (order created);
  - a replayed :class:`SubmitResult` (same token completed earlier);
  - :class:`LockContention` (same token in flight, retry shortly);
  - :class:`WriteError` (nothing persisted, the token was released and
    can be resent right away).
"""

from __future__ import annotations

import logging

from outbox_relay.core.enums import AdmitOutcome
from outbox_relay.core.errors import ChannelUnavailable, LockContention
from outbox_relay.core.models import Order, OrderResponse, SubmitResult
from outbox_relay.idempotency.guard import CachedResult, IdempotencyGuard, InFlight
from outbox_relay.observability.logger import reset_trace_id, set_trace_id
from outbox_relay.observability.metrics import record_admission
from outbox_relay.outbox.writer import TransactionalWriter

logger = logging.getLogger(__name__)


class OrderService:
    """Creates orders at most once per idempotency token."""

    def __init__(self, guard: IdempotencyGuard, writer: TransactionalWriter) -> None:
        self._guard = guard
        self._writer = writer

    async def submit(self, token: str, user_id: str, amount: int) -> SubmitResult:
        """Create an order for *token* unless the token was already used.

        Raises:
            LockContention: A request with the same token is in flight.
            WriteError: The write failed and was rolled back.
            ChannelUnavailable: The idempotency store is unreachable; no
                write was attempted.
        """
        trace = set_trace_id(token)
        try:
            return await self._submit(token, user_id, amount)
        finally:
            reset_trace_id(trace)

    async def _submit(self, token: str, user_id: str, amount: int) -> SubmitResult:
        admission = await self._guard.admit(token)

        if isinstance(admission, InFlight):
            record_admission(AdmitOutcome.IN_FLIGHT)
            raise LockContention(token)

        if isinstance(admission, CachedResult):
            record_admission(AdmitOutcome.CACHED)
            response = OrderResponse.model_validate_json(admission.response)
            return SubmitResult(response=response, replayed=True)

        record_admission(AdmitOutcome.PROCEED)
        order = Order(user_id=user_id, amount=amount)

        try:
            await self._writer.create_order(order)
        except BaseException:
            # WriteError or cancellation: nothing was committed.
            await self._release(token)
            raise

        response = OrderResponse.from_order(order)
        try:
            await self._guard.complete(token, response.model_dump_json().encode("utf-8"))
        except ChannelUnavailable:
            # The order is durable; failing here would invite a duplicate retry.
            logger.error(
                "Order %s committed but its response could not be cached for token %s",
                order.id, token, exc_info=True,
            )
        return SubmitResult(response=response)

    async def _release(self, token: str) -> None:
        try:
            await self._guard.release(token)
        except ChannelUnavailable:
            logger.error(
                "Could not release idempotency token %s; it expires with the lock TTL",
                token, exc_info=True,
            )
