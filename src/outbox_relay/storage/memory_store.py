"""In-memory durable store for local runs and testing.

No external dependencies. Mirrors the transactional contract of the
PostgreSQL store closely enough for the write path and the relay to be
exercised end to end:

  - Writes made inside ``transaction()`` are invisible to other
    transactions until commit and are discarded on rollback.
  - ``claim_pending`` locks the rows it returns until the owning
    transaction ends and skips rows locked by any other transaction
    (``FOR UPDATE SKIP LOCKED``).

Every statement yields to the event loop once, so concurrent tasks
interleave the way they would against a real database.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import Counter
from contextlib import asynccontextmanager
from typing import AsyncIterator

from outbox_relay.core.enums import OutboxStatus
from outbox_relay.core.models import Order, OutboxEvent

logger = logging.getLogger(__name__)


class _MemoryUnitOfWork:
    """Buffered writes and row locks of one in-memory transaction."""

    def __init__(self, store: MemoryDurableStore, txn_id: int) -> None:
        self._store = store
        self.txn_id = txn_id
        self.orders: dict[str, Order] = {}
        self.events: dict[str, OutboxEvent] = {}
        self.processed: list[str] = []
        self.claimed: list[str] = []

    async def insert_order(self, order: Order) -> None:
        await self._store._statement("insert_order")
        if order.id in self._store._orders or order.id in self.orders:
            raise ValueError(f"duplicate key value violates orders_pkey: {order.id}")
        self.orders[order.id] = order

    async def insert_outbox(self, event: OutboxEvent) -> None:
        await self._store._statement("insert_outbox")
        if event.id in self._store._outbox or event.id in self.events:
            raise ValueError(f"duplicate key value violates outbox_pkey: {event.id}")
        self.events[event.id] = event.model_copy()

    async def claim_pending(self, limit: int) -> list[OutboxEvent]:
        await self._store._statement("claim_pending")
        return self._store._claim(self, limit)

    async def mark_processed(self, event_id: str) -> None:
        await self._store._statement("mark_processed")
        if event_id not in self.claimed:
            raise ValueError(f"outbox row {event_id} is not locked by this transaction")
        self.processed.append(event_id)


class MemoryDurableStore:
    """In-memory orders + outbox tables with row locks."""

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._outbox: dict[str, OutboxEvent] = {}
        self._row_seq: dict[str, int] = {}
        self._locks: dict[str, int] = {}  # event_id -> owning txn_id
        self._seq = itertools.count(1)
        self._txn_ids = itertools.count(1)
        self._failures: dict[str, list[Exception]] = {}
        self.statements: Counter[str] = Counter()
        self.processed_transitions: Counter[str] = Counter()
        self.claims: list[list[str]] = []  # event ids per committed-or-not claim

    # -- transaction ---------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_MemoryUnitOfWork]:
        await self._statement("begin")
        uow = _MemoryUnitOfWork(self, next(self._txn_ids))
        try:
            yield uow
            await self._statement("commit")
            self._apply(uow)
        finally:
            self._release(uow)

    async def ping(self) -> None:
        await self._statement("ping")

    async def close(self) -> None:
        pass

    # -- internals -----------------------------------------------------------

    async def _statement(self, name: str) -> None:
        self.statements[name] += 1
        await asyncio.sleep(0)
        pending = self._failures.get(name)
        if pending:
            raise pending.pop(0)

    def _claim(self, uow: _MemoryUnitOfWork, limit: int) -> list[OutboxEvent]:
        candidates = [
            event
            for event_id, event in self._outbox.items()
            if event.status == OutboxStatus.PENDING
            and self._locks.get(event_id, uow.txn_id) == uow.txn_id
            and event_id not in uow.claimed
        ]
        candidates.sort(key=lambda e: (e.created_at, self._row_seq[e.id]))
        selected = candidates[:limit]
        for event in selected:
            self._locks[event.id] = uow.txn_id
            uow.claimed.append(event.id)
        self.claims.append([e.id for e in selected])
        return [e.model_copy() for e in selected]

    def _apply(self, uow: _MemoryUnitOfWork) -> None:
        self._orders.update(uow.orders)
        for event_id, event in uow.events.items():
            self._outbox[event_id] = event
            self._row_seq[event_id] = next(self._seq)
        for event_id in uow.processed:
            event = self._outbox[event_id]
            if event.status != OutboxStatus.PROCESSED:
                self._outbox[event_id] = event.model_copy(
                    update={"status": OutboxStatus.PROCESSED}
                )
                self.processed_transitions[event_id] += 1

    def _release(self, uow: _MemoryUnitOfWork) -> None:
        for event_id in uow.claimed:
            if self._locks.get(event_id) == uow.txn_id:
                del self._locks[event_id]

    # -- inspection / test helpers -------------------------------------------

    def inject_failure(self, statement: str, exc: Exception, times: int = 1) -> None:
        """Make the next *times* executions of *statement* raise *exc*. For testing."""
        self._failures.setdefault(statement, []).extend([exc] * times)

    def seed(self, events: list[OutboxEvent]) -> None:
        """Insert committed outbox rows directly. For testing."""
        for event in events:
            self._outbox[event.id] = event.model_copy()
            self._row_seq[event.id] = next(self._seq)

    def get_order(self, order_id: str) -> Order | None:
        return self._orders.get(order_id)

    def list_orders(self) -> list[Order]:
        return list(self._orders.values())

    def list_outbox(self, status: OutboxStatus | None = None) -> list[OutboxEvent]:
        events = sorted(self._outbox.values(), key=lambda e: self._row_seq[e.id])
        if status is None:
            return events
        return [e for e in events if e.status == status]
