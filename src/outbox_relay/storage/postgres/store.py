"""PostgreSQL durable store.

Each :meth:`PostgresDurableStore.transaction` block runs inside a single
``AsyncSession`` transaction. The relay's claim query uses
``SELECT ... FOR UPDATE SKIP LOCKED`` so concurrent relay instances are
handed disjoint row sets without any application-level coordination.

Conversion helpers translate between core domain models
(:mod:`outbox_relay.core.models`) and ORM records.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import select, text, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from outbox_relay.core.enums import OutboxStatus
from outbox_relay.core.errors import StoreUnavailable
from outbox_relay.core.models import Order, OutboxEvent

from .connection import create_session_factory
from .models import OrderRecord, OutboxRecord

logger = logging.getLogger(__name__)

# Driver-level failures that mean "the database is unreachable"
_CONNECTIVITY_ERRORS = (OperationalError, InterfaceError, ConnectionError, OSError)


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------

def _order_to_record(order: Order) -> OrderRecord:
    return OrderRecord(id=order.id, user_id=order.user_id, amount=order.amount)


def _event_to_record(event: OutboxEvent) -> OutboxRecord:
    return OutboxRecord(
        id=event.id,
        event_type=event.event_type,
        payload=event.payload,
        status=event.status.value,
        created_at=event.created_at,
    )


def _record_to_event(record: OutboxRecord) -> OutboxEvent:
    return OutboxEvent(
        id=str(record.id),
        event_type=record.event_type,
        payload=bytes(record.payload),
        status=OutboxStatus(record.status),
        created_at=record.created_at,
    )


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------

class PostgresUnitOfWork:
    """Statements bound to one open :class:`AsyncSession` transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def insert_order(self, order: Order) -> None:
        self._session.add(_order_to_record(order))
        await self._session.flush()

    async def insert_outbox(self, event: OutboxEvent) -> None:
        self._session.add(_event_to_record(event))
        await self._session.flush()

    async def claim_pending(self, limit: int) -> list[OutboxEvent]:
        stmt = (
            select(OutboxRecord)
            .where(OutboxRecord.status == OutboxStatus.PENDING.value)
            .order_by(OutboxRecord.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self._session.execute(stmt)
        return [_record_to_event(r) for r in result.scalars().all()]

    async def mark_processed(self, event_id: str) -> None:
        stmt = (
            update(OutboxRecord)
            .where(OutboxRecord.id == event_id)
            .values(status=OutboxStatus.PROCESSED.value)
        )
        await self._session.execute(stmt)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class PostgresDurableStore:
    """Durable store backed by PostgreSQL via SQLAlchemy asyncio + asyncpg.

    Args:
        engine: Engine created by
            :func:`outbox_relay.storage.postgres.connection.create_engine`.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self._engine = engine
        self._session_factory = session_factory or create_session_factory(engine)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresUnitOfWork]:
        """Yield a unit of work inside one transaction.

        Commits on normal exit, rolls back on exception. Connectivity
        failures are re-raised as :class:`StoreUnavailable`.
        """
        try:
            async with self._session_factory() as session, session.begin():
                yield PostgresUnitOfWork(session)
        except _CONNECTIVITY_ERRORS as e:
            raise StoreUnavailable(f"Database unavailable: {e}") from e

    async def ping(self) -> None:
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except _CONNECTIVITY_ERRORS as e:
            raise StoreUnavailable(f"Database unavailable: {e}") from e

    async def close(self) -> None:
        await self._engine.dispose()
        logger.info("Engine disposed.")
