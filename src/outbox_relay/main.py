"""Application bootstrap and mode routing.

Wires the durable store, notification channel and idempotency guard
for the selected mode and runs the relay workers, the e-mail consumer
or a single order submission.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from .channel.memory_channel import MemoryNotificationChannel
from .channel.redis_channel import RedisNotificationChannel
from .consumers.email import EmailConsumer
from .core.config import Settings, load_settings
from .core.enums import Mode
from .core.errors import OutboxRelayError
from .core.interfaces import IDurableStore, INotificationChannel
from .core.models import SubmitResult
from .idempotency.guard import IdempotencyGuard
from .idempotency.memory_kv import InMemoryKeyValueStore
from .observability.logger import setup_logging
from .outbox.relay import OutboxRelay
from .outbox.writer import TransactionalWriter
from .service import OrderService
from .storage.memory_store import MemoryDurableStore

logger = logging.getLogger(__name__)


@dataclass
class Components:
    """Connected collaborators for one process."""

    settings: Settings
    store: IDurableStore
    channel: INotificationChannel
    guard: IdempotencyGuard

    def writer(self) -> TransactionalWriter:
        return TransactionalWriter(
            self.store,
            event_type=self.settings.writer.event_type,
            timeout_seconds=self.settings.writer.timeout_seconds,
        )

    def service(self) -> OrderService:
        return OrderService(self.guard, self.writer())

    def relays(self) -> list[OutboxRelay]:
        cfg = self.settings.relay
        return [
            OutboxRelay(
                self.store,
                self.channel,
                batch_size=cfg.batch_size,
                interval_seconds=cfg.interval_seconds,
                publish_timeout_seconds=cfg.publish_timeout_seconds,
                name=f"relay-{i + 1}",
            )
            for i in range(cfg.workers)
        ]

    async def close(self) -> None:
        await self.guard.close()
        await self.channel.close()
        await self.store.close()


async def connect_with_retry(
    name: str,
    check: Callable[[], Awaitable[Any]],
    *,
    attempts: int = 5,
    delay_seconds: float = 2.0,
) -> None:
    """Run *check* until it succeeds, up to *attempts* times.

    Used at startup only: the process must not serve without its stores,
    so the last failure is re-raised.
    """
    for attempt in range(1, attempts + 1):
        try:
            await check()
            logger.info("Connected to %s", name)
            return
        except OutboxRelayError as e:
            if attempt == attempts:
                logger.error("Failed to connect to %s after %d attempts", name, attempts)
                raise
            logger.warning("Waiting for %s... attempt %d/%d (%s)", name, attempt, attempts, e)
            await asyncio.sleep(delay_seconds)


async def create_components(settings: Settings) -> Components:
    """Build and connect the collaborators for ``settings.mode``.

    - LOCAL: in-memory store, channel and key/value store (no external deps)
    - LIVE: PostgreSQL, Redis Pub/Sub and Redis idempotency keys
    """
    idem = settings.idempotency
    if settings.mode == Mode.LOCAL:
        guard = IdempotencyGuard(
            lock_ttl_ms=idem.lock_ttl_ms,
            cache_ttl_ms=idem.cache_ttl_ms,
            key_prefix=idem.key_prefix,
            client=InMemoryKeyValueStore(),  # type: ignore[arg-type]
        )
        return Components(settings, MemoryDurableStore(), MemoryNotificationChannel(), guard)

    from .storage.postgres.connection import create_engine
    from .storage.postgres.store import PostgresDurableStore

    db = settings.database
    store = PostgresDurableStore(
        create_engine(
            settings.postgres_url,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_recycle=db.pool_recycle,
        )
    )
    channel = RedisNotificationChannel(settings.redis_url)
    guard = IdempotencyGuard(
        settings.redis_url,
        lock_ttl_ms=idem.lock_ttl_ms,
        cache_ttl_ms=idem.cache_ttl_ms,
        key_prefix=idem.key_prefix,
    )

    retry = {"attempts": db.connect_attempts, "delay_seconds": db.connect_retry_delay_seconds}
    await connect_with_retry("database", store.ping, **retry)
    await connect_with_retry("notification channel", channel.connect, **retry)
    await connect_with_retry("idempotency store", guard.connect, **retry)
    return Components(settings, store, channel, guard)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

async def run(
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
    *,
    relay: bool = True,
    consume: bool = False,
) -> None:
    """Run relay workers and/or the e-mail consumer until SIGINT/SIGTERM."""
    settings = load_settings(config_path=config_path, overrides=overrides)
    _setup_logging(settings)

    logger.info(
        "Starting outbox-relay (mode=%s, relay=%s, consume=%s)",
        settings.mode.value, relay, consume,
    )

    if settings.observability.metrics_port:
        from .observability.metrics import start_metrics_server

        start_metrics_server(port=settings.observability.metrics_port, mode=settings.mode.value)
        logger.info("Prometheus metrics server started on port %d", settings.observability.metrics_port)

    components = await create_components(settings)

    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Received shutdown signal")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    relay_tasks: list[asyncio.Task] = []
    consumer_task: asyncio.Task | None = None
    try:
        if consume:
            consumer = EmailConsumer(
                components.channel,
                channel_name=settings.writer.event_type,
                retry_delay_seconds=settings.database.connect_retry_delay_seconds,
            )
            consumer_task = asyncio.create_task(consumer.run(), name="email-consumer")
        if relay:
            relay_tasks = [
                asyncio.create_task(r.run(stop_event), name=r.name)
                for r in components.relays()
            ]
        await stop_event.wait()
    finally:
        stop_event.set()
        await asyncio.gather(*relay_tasks, return_exceptions=True)
        if consumer_task is not None:
            consumer_task.cancel()
            await asyncio.gather(consumer_task, return_exceptions=True)
        await components.close()
        logger.info("Shutdown complete")


async def submit(
    token: str,
    user_id: str,
    amount: int,
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> SubmitResult:
    """Submit one create-order request through the idempotency guard."""
    settings = load_settings(config_path=config_path, overrides=overrides)
    _setup_logging(settings)
    components = await create_components(settings)
    try:
        return await components.service().submit(token, user_id, amount)
    finally:
        await components.close()


async def init_db(config_path: str | None = None, overrides: dict[str, Any] | None = None) -> None:
    """Create the orders and outbox tables if they do not exist."""
    from .storage.postgres.connection import create_all, create_engine

    settings = load_settings(config_path=config_path, overrides=overrides)
    _setup_logging(settings)
    engine = create_engine(settings.postgres_url, use_null_pool=True)
    try:
        await create_all(engine)
    finally:
        await engine.dispose()


def _setup_logging(settings: Settings) -> None:
    setup_logging(
        level=settings.observability.log_level,
        format=settings.observability.log_format,
    )


async def run_demo(n_orders: int = 5, user_id: str | None = None) -> dict[str, int]:
    """Drive the whole flow in-process with the in-memory backends.

    Submits *n_orders* orders, resubmits the first token to show the
    cached replay, and runs one relay plus the e-mail consumer until
    every outbox row is PROCESSED.
    """
    from .core.enums import OutboxStatus
    from .core.ids import new_id

    settings = load_settings(overrides={"mode": Mode.LOCAL.value})
    components = await create_components(settings)
    service = components.service()
    store = components.store
    assert isinstance(store, MemoryDurableStore)

    consumer = EmailConsumer(components.channel, channel_name=settings.writer.event_type)
    consumer_task = asyncio.create_task(consumer.run(), name="email-consumer")
    stop_event = asyncio.Event()
    relay = components.relays()[0]
    relay_task = asyncio.create_task(relay.run(stop_event), name=relay.name)

    user = user_id or new_id()
    replayed = 0
    try:
        for i in range(n_orders):
            await service.submit(f"demo-order-{i}", user, 1000 + i)
        if n_orders:
            result = await service.submit("demo-order-0", user, 1000)
            replayed += int(result.replayed)

        while store.list_outbox(OutboxStatus.PENDING):
            await asyncio.sleep(settings.relay.interval_seconds / 2)
        # Let the consumer drain what was just published
        await asyncio.sleep(0.05)
    finally:
        stop_event.set()
        await relay_task
        consumer_task.cancel()
        await asyncio.gather(consumer_task, return_exceptions=True)
        await components.close()

    return {
        "orders": len(store.list_orders()),
        "processed": len(store.list_outbox(OutboxStatus.PROCESSED)),
        "replayed": replayed,
        "emails_sent": consumer.sent,
    }
