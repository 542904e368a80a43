"""Redis-backed idempotency guard.

Each client token maps to one key in Redis holding one of:

  - nothing (absent): the token has not been seen, or its last attempt
    failed and was released;
  - the in-flight marker, with a short TTL (``lock_ttl_ms``): a request
    with this token is being processed right now;
  - the final response bytes, with a long TTL (``cache_ttl_ms``): the
    request completed and retries get this response back verbatim.

Admission is one atomic ``SET key marker NX PX ttl GET`` command (Redis
7.0+): it sets the marker only if the key is absent and returns whatever
the key held before, so concurrent requests with the same token cannot
both observe "absent".

Known limitation: if the write path outlives ``lock_ttl_ms`` the marker
expires while the first request is still running, and a retry with the
same token is admitted as a fresh request. The first request's later
``complete`` or ``release`` then acts on the retry's key. See
:meth:`outbox_relay.core.config.Settings.validate_lock_ttl`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Union

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from outbox_relay.core.errors import ChannelUnavailable

logger = logging.getLogger(__name__)

IN_FLIGHT_MARKER = b"__in_flight__"


# ---------------------------------------------------------------------------
# Admission results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Proceed:
    """Token was absent and is now locked; the caller must run the write."""


@dataclass(frozen=True)
class InFlight:
    """Another request with this token is running; reject with "retry later"."""


@dataclass(frozen=True)
class CachedResult:
    """The token already completed; return ``response`` without side effects."""

    response: bytes


Admission = Union[Proceed, InFlight, CachedResult]


# ---------------------------------------------------------------------------
# IdempotencyGuard
# ---------------------------------------------------------------------------

class IdempotencyGuard:
    """Distributed request lock on top of Redis key expiry.

    Args:
        redis_url: Redis connection URL (e.g. ``redis://localhost:6379/0``).
        lock_ttl_ms: Expiry of the in-flight marker. Must exceed the
            worst-case write latency.
        cache_ttl_ms: Expiry of a cached final response.
        key_prefix: Key namespace prefix.
        client: Pre-built client; when given, :meth:`connect` is a no-op.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        *,
        lock_ttl_ms: int = 30_000,
        cache_ttl_ms: int = 86_400_000,
        key_prefix: str = "idempotency:",
        client: aioredis.Redis | None = None,
    ) -> None:
        if lock_ttl_ms <= 0 or cache_ttl_ms <= 0:
            raise ValueError("lock_ttl_ms and cache_ttl_ms must be positive")
        self._url = redis_url
        self._lock_ttl_ms = lock_ttl_ms
        self._cache_ttl_ms = cache_ttl_ms
        self._prefix = key_prefix
        self._redis = client

    # -- lifecycle -----------------------------------------------------------

    async def connect(self) -> None:
        """Establish the Redis connection pool."""
        if self._redis is not None:
            return
        client = aioredis.from_url(
            self._url,
            decode_responses=False,  # Cached responses are returned as raw bytes
            max_connections=20,
        )
        try:
            await client.ping()
        except (RedisConnectionError, RedisTimeoutError) as e:
            await client.aclose()
            raise ChannelUnavailable(f"Redis unavailable: {e}") from e
        self._redis = client
        logger.info("Idempotency store connected: %s", self._url.split("@")[-1])

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("Idempotency store connection closed.")

    @property
    def redis(self) -> aioredis.Redis:
        """Return the underlying Redis client, raising if not connected."""
        if self._redis is None:
            raise RuntimeError("IdempotencyGuard not connected. Call connect() first.")
        return self._redis

    async def ping(self) -> None:
        try:
            await self.redis.ping()
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise ChannelUnavailable(f"Redis unavailable: {e}") from e

    # -- guard operations ----------------------------------------------------

    def key_for(self, token: str) -> str:
        if not token:
            raise ValueError("idempotency token must be a non-empty string")
        return f"{self._prefix}{token}"

    async def admit(self, token: str) -> Admission:
        """Atomically lock *token* if absent, else report what holds it."""
        key = self.key_for(token)
        try:
            previous = await self.redis.set(
                key, IN_FLIGHT_MARKER, nx=True, px=self._lock_ttl_ms, get=True
            )
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise ChannelUnavailable(f"Redis unavailable: {e}") from e

        if previous is None:
            logger.debug("Admitted token %s", token)
            return Proceed()
        if previous == IN_FLIGHT_MARKER:
            logger.info("Token %s is already in flight", token)
            return InFlight()
        logger.info("Replaying cached response for token %s", token)
        return CachedResult(response=bytes(previous))

    async def complete(self, token: str, response: bytes) -> None:
        """Replace the in-flight marker with the final response (long TTL)."""
        key = self.key_for(token)
        try:
            await self.redis.set(key, response, px=self._cache_ttl_ms)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise ChannelUnavailable(f"Redis unavailable: {e}") from e

    async def release(self, token: str) -> None:
        """Delete the key so the client can retry the token immediately."""
        key = self.key_for(token)
        try:
            await self.redis.delete(key)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise ChannelUnavailable(f"Redis unavailable: {e}") from e
