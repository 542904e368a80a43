"""Test OutboxRelay batch claiming, publishing and whole-batch rollback."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from outbox_relay.core.enums import OutboxStatus
from outbox_relay.core.errors import PublishError, StoreUnavailable
from outbox_relay.core.models import OutboxEvent
from outbox_relay.outbox.relay import OutboxRelay

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _events(n: int, event_type: str = "order.created") -> list[OutboxEvent]:
    return [
        OutboxEvent(
            event_type=event_type,
            payload=f'{{"seq":{i}}}'.encode(),
            created_at=T0 + timedelta(seconds=i),
        )
        for i in range(n)
    ]


class TestProcessBatch:
    async def test_empty_outbox(self, relay, channel):
        assert await relay.process_batch() == []
        assert channel.get_history() == []

    async def test_publishes_and_marks_processed(self, relay, store, channel):
        events = _events(3)
        store.seed(events)

        processed = await relay.process_batch()

        assert [e.id for e in processed] == [e.id for e in events]
        assert store.list_outbox(OutboxStatus.PENDING) == []
        assert [p for _, p in channel.get_history("order.created")] == [e.payload for e in events]

    async def test_publishes_in_creation_order(self, relay, store, channel):
        events = _events(5)
        store.seed(list(reversed(events)))

        await relay.process_batch()

        assert [p for _, p in channel.get_history()] == [e.payload for e in events]

    async def test_batch_size_limits_claim(self, store, channel):
        store.seed(_events(25))
        relay = OutboxRelay(store, channel, batch_size=10)

        assert len(await relay.process_batch()) == 10
        assert len(store.list_outbox(OutboxStatus.PENDING)) == 15

    async def test_channel_name_is_event_type(self, relay, store, channel):
        store.seed(_events(1, event_type="invoice.paid"))
        await relay.process_batch()
        assert channel.get_history()[0][0] == "invoice.paid"

    async def test_processed_rows_not_claimed_again(self, relay, store, channel):
        store.seed(_events(2))
        await relay.process_batch()
        channel.clear_history()

        assert await relay.process_batch() == []
        assert channel.get_history() == []


class TestPublishFailure:
    async def test_failure_on_kth_row_rolls_back_whole_batch(self, store, make_flaky_channel):
        events = _events(5)
        store.seed(events)
        channel = make_flaky_channel({3})
        relay = OutboxRelay(store, channel)

        with pytest.raises(PublishError) as exc_info:
            await relay.process_batch()

        assert exc_info.value.event_id == events[2].id
        # Rows 1..k-1 were published but their status updates were rolled back
        assert len(channel.get_history()) == 2
        assert len(store.list_outbox(OutboxStatus.PENDING)) == 5
        assert sum(store.processed_transitions.values()) == 0

    async def test_failure_stops_at_failing_row(self, store, make_flaky_channel):
        store.seed(_events(5))
        channel = make_flaky_channel({2})
        relay = OutboxRelay(store, channel)

        with pytest.raises(PublishError):
            await relay.process_batch()

        assert channel.attempts == 2

    async def test_retry_after_failure_processes_everything(self, store, make_flaky_channel):
        events = _events(4)
        store.seed(events)
        channel = make_flaky_channel({3})
        relay = OutboxRelay(store, channel)

        with pytest.raises(PublishError):
            await relay.process_batch()
        processed = await relay.process_batch()

        assert [e.id for e in processed] == [e.id for e in events]
        assert store.list_outbox(OutboxStatus.PENDING) == []
        # Rows before the failure were delivered twice: at-least-once
        payloads = [p for _, p in channel.get_history()]
        assert payloads.count(events[0].payload) == 2
        assert payloads.count(events[3].payload) == 1

    async def test_rollback_releases_row_locks(self, store, make_flaky_channel):
        store.seed(_events(3))
        relay = OutboxRelay(store, make_flaky_channel({1}))

        with pytest.raises(PublishError):
            await relay.process_batch()

        assert store._locks == {}

    async def test_mark_processed_failure_rolls_back(self, relay, store, channel):
        store.seed(_events(3))
        store.inject_failure("mark_processed", RuntimeError("update failed"))

        with pytest.raises(RuntimeError):
            await relay.process_batch()

        assert len(store.list_outbox(OutboxStatus.PENDING)) == 3
        assert len(channel.get_history()) == 1

    async def test_commit_failure_leaves_rows_pending(self, relay, store, channel):
        store.seed(_events(2))
        store.inject_failure("commit", StoreUnavailable("connection lost"))

        with pytest.raises(StoreUnavailable):
            await relay.process_batch()

        assert len(store.list_outbox(OutboxStatus.PENDING)) == 2
        assert len(channel.get_history()) == 2

    async def test_publish_timeout_is_publish_error(self, store):
        class HangingChannel:
            async def publish(self, channel: str, payload: bytes) -> int:
                await asyncio.sleep(10)
                return 0

        store.seed(_events(1))
        relay = OutboxRelay(store, HangingChannel(), publish_timeout_seconds=0.01)

        with pytest.raises(PublishError):
            await relay.process_batch()
        assert len(store.list_outbox(OutboxStatus.PENDING)) == 1


class TestTickAndRun:
    async def test_tick_returns_count(self, relay, store):
        store.seed(_events(3))
        assert await relay.tick() == 3

    async def test_tick_swallows_transient_failure(self, store, make_flaky_channel):
        store.seed(_events(2))
        relay = OutboxRelay(store, make_flaky_channel({1}))

        assert await relay.tick() == 0
        assert await relay.tick() == 2

    async def test_tick_logs_unexpected_failure(self, relay, store, caplog):
        store.seed(_events(1))
        store.inject_failure("claim_pending", KeyError("bug"))

        assert await relay.tick() == 0
        assert "Unexpected relay failure" in caplog.text

    async def test_run_drains_until_stopped(self, relay, store):
        store.seed(_events(25))
        stop = asyncio.Event()
        task = asyncio.create_task(relay.run(stop))

        for _ in range(200):
            if not store.list_outbox(OutboxStatus.PENDING):
                break
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

        assert store.list_outbox(OutboxStatus.PENDING) == []

    async def test_run_picks_up_rows_written_later(self, relay, store):
        stop = asyncio.Event()
        task = asyncio.create_task(relay.run(stop))
        await asyncio.sleep(0.02)

        store.seed(_events(1))
        for _ in range(100):
            if not store.list_outbox(OutboxStatus.PENDING):
                break
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

        assert len(store.list_outbox(OutboxStatus.PROCESSED)) == 1

    async def test_cancel_mid_batch_leaves_rows_pending(self, store):
        publishing = asyncio.Event()

        class BlockingChannel:
            async def publish(self, channel: str, payload: bytes) -> int:
                publishing.set()
                await asyncio.sleep(10)
                return 1

        store.seed(_events(2))
        relay = OutboxRelay(store, BlockingChannel())
        task = asyncio.create_task(relay.process_batch())
        await publishing.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(store.list_outbox(OutboxStatus.PENDING)) == 2
        assert store._locks == {}

    def test_rejects_zero_batch_size(self, store, channel):
        with pytest.raises(ValueError):
            OutboxRelay(store, channel, batch_size=0)
