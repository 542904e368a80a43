"""Shared fixtures for the outbox-relay test suite."""

from __future__ import annotations

import pytest

from outbox_relay.channel.memory_channel import MemoryNotificationChannel
from outbox_relay.core.errors import ChannelUnavailable
from outbox_relay.idempotency.guard import IdempotencyGuard
from outbox_relay.idempotency.memory_kv import InMemoryKeyValueStore
from outbox_relay.outbox.relay import OutboxRelay
from outbox_relay.outbox.writer import TransactionalWriter
from outbox_relay.service import OrderService
from outbox_relay.storage.memory_store import MemoryDurableStore

USER_ID = "6f1c2b4e-8d0a-4c55-9f3e-2a7b1c9d0e11"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FlakyChannel(MemoryNotificationChannel):
    """Memory channel whose publishes fail on chosen call numbers (1-based)."""

    def __init__(self, fail_on: set[int] | None = None) -> None:
        super().__init__()
        self.fail_on = set(fail_on or ())
        self.attempts = 0

    async def publish(self, channel: str, payload: bytes) -> int:
        self.attempts += 1
        if self.attempts in self.fail_on:
            raise ChannelUnavailable(f"publish #{self.attempts} refused")
        return await super().publish(channel, payload)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv(clock: FakeClock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def guard(kv: InMemoryKeyValueStore) -> IdempotencyGuard:
    return IdempotencyGuard(lock_ttl_ms=5_000, cache_ttl_ms=60_000, client=kv)


@pytest.fixture
def store() -> MemoryDurableStore:
    return MemoryDurableStore()


@pytest.fixture
def channel() -> MemoryNotificationChannel:
    return MemoryNotificationChannel()


@pytest.fixture
def writer(store: MemoryDurableStore) -> TransactionalWriter:
    return TransactionalWriter(store)


@pytest.fixture
def service(guard: IdempotencyGuard, writer: TransactionalWriter) -> OrderService:
    return OrderService(guard, writer)


@pytest.fixture
def relay(store: MemoryDurableStore, channel: MemoryNotificationChannel) -> OutboxRelay:
    return OutboxRelay(store, channel, batch_size=10, interval_seconds=0.01)


@pytest.fixture
def make_flaky_channel():
    """Factory for a channel whose Nth publishes fail: ``make_flaky_channel({3})``."""
    return FlakyChannel
