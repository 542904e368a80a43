"""Engine and session factories for the orders/outbox database.

Pool defaults mirror the service's connection budget: at most 25 open
connections, no overflow, recycled every five minutes.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from .models import Base

logger = logging.getLogger(__name__)


def create_engine(
    url: str,
    *,
    pool_size: int = 25,
    max_overflow: int = 0,
    pool_recycle: int = 300,
    use_null_pool: bool = False,
) -> AsyncEngine:
    """Create an asyncpg-backed :class:`AsyncEngine`.

    Args:
        url: ``postgresql+asyncpg://`` connection URL.
        pool_size: Maximum open connections.
        max_overflow: Connections allowed beyond *pool_size*.
        pool_recycle: Connection lifetime in seconds.
        use_null_pool: Open a fresh connection per checkout, for one-off
            commands such as ``init-db``.
    """
    if use_null_pool:
        options: dict[str, Any] = {"poolclass": NullPool}
    else:
        options = {
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_recycle": pool_recycle,
        }

    engine = create_async_engine(url, pool_pre_ping=True, **options)
    logger.info(
        "Database engine for %s (pool_size=%s, null_pool=%s)",
        url.split("@")[-1], pool_size, use_null_pool,
    )
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Rows read in a relay batch stay usable after its commit
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create the orders and outbox tables and the outbox index if missing."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Schema ready: %s", ", ".join(sorted(Base.metadata.tables)))
