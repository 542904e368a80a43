"""Core domain models shared by the write path and the relay.

``Order`` is the business record; ``OutboxEvent`` is the event record
written in the same transaction and drained by the relay.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import OutboxStatus
from .ids import new_id, utc_now


# ---------------------------------------------------------------------------
# Business record
# ---------------------------------------------------------------------------

class Order(BaseModel):
    """An order. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    user_id: str
    amount: int

    def to_payload(self) -> bytes:
        """Serialize the order into the event payload published downstream."""
        return self.model_dump_json().encode("utf-8")


# ---------------------------------------------------------------------------
# Outbox record
# ---------------------------------------------------------------------------

class OutboxEvent(BaseModel):
    """A pending or processed event in the outbox table."""

    id: str = Field(default_factory=new_id)
    event_type: str
    payload: bytes
    status: OutboxStatus = OutboxStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Write path results
# ---------------------------------------------------------------------------

class OrderResponse(BaseModel):
    """Final response of a successful create-order request.

    This is the value cached under the idempotency token and replayed
    verbatim to retried requests.
    """

    order_id: str
    user_id: str
    amount: int
    status: str = "created"

    @classmethod
    def from_order(cls, order: Order) -> OrderResponse:
        return cls(order_id=order.id, user_id=order.user_id, amount=order.amount)


class SubmitResult(BaseModel):
    response: OrderResponse
    replayed: bool = False  # True when served from the idempotency cache
