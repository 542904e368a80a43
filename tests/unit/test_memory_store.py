"""Test MemoryDurableStore transaction visibility and skip-locked claims."""

from __future__ import annotations

import asyncio

import pytest

from outbox_relay.core.enums import OutboxStatus
from outbox_relay.core.models import Order, OutboxEvent

USER_ID = "6f1c2b4e-8d0a-4c55-9f3e-2a7b1c9d0e11"


def _event(i: int = 0) -> OutboxEvent:
    return OutboxEvent(event_type="order.created", payload=f'{{"i":{i}}}'.encode())


class TestTransactions:
    async def test_uncommitted_writes_invisible(self, store):
        order = Order(user_id=USER_ID, amount=1)
        async with store.transaction() as uow:
            await uow.insert_order(order)
            await uow.insert_outbox(_event())
            assert store.get_order(order.id) is None
            assert store.list_outbox() == []

        assert store.get_order(order.id) == order
        assert len(store.list_outbox()) == 1

    async def test_exception_discards_writes(self, store):
        with pytest.raises(RuntimeError):
            async with store.transaction() as uow:
                await uow.insert_order(Order(user_id=USER_ID, amount=1))
                raise RuntimeError("abort")

        assert store.list_orders() == []

    async def test_uncommitted_outbox_rows_not_claimable(self, store):
        inserted = asyncio.Event()
        release = asyncio.Event()

        async def writer() -> None:
            async with store.transaction() as uow:
                await uow.insert_outbox(_event())
                inserted.set()
                await release.wait()

        task = asyncio.create_task(writer())
        await inserted.wait()
        async with store.transaction() as uow:
            assert await uow.claim_pending(10) == []
        release.set()
        await task

        async with store.transaction() as uow:
            assert len(await uow.claim_pending(10)) == 1


class TestSkipLocked:
    async def test_concurrent_claims_are_disjoint(self, store):
        store.seed([_event(i) for i in range(6)])
        first_claimed = asyncio.Event()
        release = asyncio.Event()
        seen: dict[str, list[str]] = {}

        async def claimer(name: str, hold: bool) -> None:
            async with store.transaction() as uow:
                rows = await uow.claim_pending(4)
                seen[name] = [r.id for r in rows]
                if hold:
                    first_claimed.set()
                    await release.wait()

        holder = asyncio.create_task(claimer("a", hold=True))
        await first_claimed.wait()
        await claimer("b", hold=False)
        release.set()
        await holder

        assert len(seen["a"]) == 4
        assert len(seen["b"]) == 2
        assert not set(seen["a"]) & set(seen["b"])

    async def test_locks_released_after_rollback(self, store):
        store.seed([_event()])
        with pytest.raises(RuntimeError):
            async with store.transaction() as uow:
                assert len(await uow.claim_pending(1)) == 1
                raise RuntimeError("abort")

        async with store.transaction() as uow:
            assert len(await uow.claim_pending(1)) == 1

    async def test_mark_processed_requires_lock(self, store):
        event = _event()
        store.seed([event])
        with pytest.raises(ValueError):
            async with store.transaction() as uow:
                await uow.mark_processed(event.id)

    async def test_mark_processed_applies_on_commit(self, store):
        event = _event()
        store.seed([event])
        async with store.transaction() as uow:
            await uow.claim_pending(1)
            await uow.mark_processed(event.id)
            assert store.list_outbox(OutboxStatus.PENDING) != []

        assert store.list_outbox(OutboxStatus.PROCESSED)[0].id == event.id
        assert store.processed_transitions[event.id] == 1


class TestFailureInjection:
    async def test_injected_failure_fires_once(self, store):
        store.inject_failure("ping", ConnectionError("down"))
        with pytest.raises(ConnectionError):
            await store.ping()
        await store.ping()

    async def test_statement_counts(self, store):
        async with store.transaction() as uow:
            await uow.claim_pending(1)
        assert store.statements["begin"] == 1
        assert store.statements["claim_pending"] == 1
        assert store.statements["commit"] == 1
