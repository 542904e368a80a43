"""In-memory notification channel for local runs and testing.

No external dependencies. Behaves like Redis Pub/Sub: a publish is
delivered only to subscribers that are connected at that instant and is
never queued for subscribers that connect later.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

logger = logging.getLogger(__name__)


class _Subscription:
    """Async iterator over payloads for one connected subscriber.

    Registered with the channel as soon as it is created, so publishes
    issued after ``subscribe()`` returns are never missed.
    """

    def __init__(self, channel: MemoryNotificationChannel, name: str) -> None:
        self._channel = channel
        self._name = name
        self._queue: asyncio.Queue[bytes] = asyncio.Queue()
        self._closed = False
        channel._subscribers[name].append(self._queue)

    def __aiter__(self) -> _Subscription:
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise StopAsyncIteration
        return await self._queue.get()

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            queues = self._channel._subscribers.get(self._name, [])
            if self._queue in queues:
                queues.remove(self._queue)


class MemoryNotificationChannel:
    """In-process pub/sub. Safe within a single asyncio event loop."""

    def __init__(self) -> None:
        # channel -> queues of currently connected subscribers
        self._subscribers: dict[str, list[asyncio.Queue[bytes]]] = defaultdict(list)
        self._history: list[tuple[str, bytes]] = []

    async def publish(self, channel: str, payload: bytes) -> int:
        """Deliver *payload* to current subscribers; return how many got it."""
        self._history.append((channel, payload))
        queues = list(self._subscribers.get(channel, []))
        for queue in queues:
            queue.put_nowait(payload)
        if not queues:
            logger.debug("Published to %s with no connected subscribers", channel)
        return len(queues)

    def subscribe(self, channel: str) -> _Subscription:
        """Return an async iterator of payloads published to *channel* from now on."""
        return _Subscription(self, channel)

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, []))

    async def ping(self) -> None:
        pass

    async def close(self) -> None:
        self._subscribers.clear()

    def get_history(self, channel: str | None = None) -> list[tuple[str, bytes]]:
        """Get publish history, optionally filtered by channel. For testing."""
        if channel is None:
            return list(self._history)
        return [(c, p) for c, p in self._history if c == channel]

    def clear_history(self) -> None:
        """Clear publish history. For testing."""
        self._history.clear()
