"""Protocol interfaces for the outbox service.

All external collaborators are defined here as Protocol classes.
Implementations can be swapped (live/local) without changing callers.
"""

from __future__ import annotations

from typing import AsyncContextManager, AsyncIterator, Protocol, runtime_checkable

from .models import Order, OutboxEvent


# ---------------------------------------------------------------------------
# Durable store
# ---------------------------------------------------------------------------

@runtime_checkable
class IUnitOfWork(Protocol):
    """Statements available inside one durable store transaction."""

    async def insert_order(self, order: Order) -> None: ...

    async def insert_outbox(self, event: OutboxEvent) -> None: ...

    async def claim_pending(self, limit: int) -> list[OutboxEvent]:
        """Lock up to *limit* PENDING rows, oldest first, skipping rows
        already locked by another transaction."""
        ...

    async def mark_processed(self, event_id: str) -> None: ...


@runtime_checkable
class IDurableStore(Protocol):
    """Transactional store holding the orders and outbox tables.

    ``transaction()`` commits when the block exits normally and rolls
    back in full when it raises.
    """

    def transaction(self) -> AsyncContextManager[IUnitOfWork]: ...

    async def ping(self) -> None: ...

    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Notification channel
# ---------------------------------------------------------------------------

@runtime_checkable
class INotificationChannel(Protocol):
    """Non-persistent publish/subscribe channel.

    A publish reaches only subscribers connected at that instant.
    """

    async def publish(self, channel: str, payload: bytes) -> int: ...

    def subscribe(self, channel: str) -> AsyncIterator[bytes]: ...

    async def ping(self) -> None: ...

    async def close(self) -> None: ...
