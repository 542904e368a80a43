"""In-memory key/value store for local runs and testing.

Implements the subset of the ``redis.asyncio`` client used by
:class:`outbox_relay.idempotency.guard.IdempotencyGuard` (``SET`` with
``NX``/``PX``/``GET``, ``GET``, ``DELETE``, ``PING``) with per-key expiry
on a monotonic clock. Every command completes without yielding to the
event loop, so each one is atomic the way a Redis command is.
"""

from __future__ import annotations

import time
from typing import Callable


class InMemoryKeyValueStore:
    """Single-process stand-in for the Redis commands the guard issues."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[bytes, float | None]] = {}
        self.commands: list[str] = []

    def _live(self, key: str) -> bytes | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def set(
        self,
        name: str,
        value: bytes | str,
        *,
        nx: bool = False,
        px: int | None = None,
        get: bool = False,
    ) -> bytes | bool | None:
        self.commands.append("SET")
        if isinstance(value, str):
            value = value.encode("utf-8")
        previous = self._live(name)
        if nx and previous is not None:
            return previous if get else None
        expires_at = self._clock() + px / 1000 if px is not None else None
        self._data[name] = (value, expires_at)
        return previous if get else True

    async def get(self, name: str) -> bytes | None:
        self.commands.append("GET")
        return self._live(name)

    async def delete(self, *names: str) -> int:
        self.commands.append("DEL")
        removed = 0
        for name in names:
            if self._live(name) is not None:
                del self._data[name]
                removed += 1
        return removed

    async def pttl(self, name: str) -> int:
        """Remaining TTL in ms; -2 if absent, -1 if no expiry (Redis semantics)."""
        if self._live(name) is None:
            return -2
        expires_at = self._data[name][1]
        if expires_at is None:
            return -1
        return int((expires_at - self._clock()) * 1000)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        self._data.clear()
