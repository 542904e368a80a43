"""SQLAlchemy ORM models for the orders and outbox tables.

Both tables use UUID primary keys and UTC timestamps. The outbox carries
a composite (status, created_at) index backing the relay's
"PENDING rows oldest first" scan.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    DateTime,
    Index,
    Integer,
    LargeBinary,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from outbox_relay.core.enums import OutboxStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# OrderRecord
# ---------------------------------------------------------------------------

class OrderRecord(Base):
    """Persisted order. Written once, never updated."""

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    user_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<OrderRecord(id={self.id!r}, user_id={self.user_id!r}, "
            f"amount={self.amount})>"
        )


# ---------------------------------------------------------------------------
# OutboxRecord
# ---------------------------------------------------------------------------

class OutboxRecord(Base):
    """Event waiting to be relayed to the notification channel."""

    __tablename__ = "outbox"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    payload: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=OutboxStatus.PENDING.value,
        server_default=OutboxStatus.PENDING.value,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_outbox_status_created_at", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<OutboxRecord(id={self.id!r}, event_type={self.event_type!r}, "
            f"status={self.status!r})>"
        )
