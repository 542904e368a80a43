"""Redis Pub/Sub notification channel.

``PUBLISH`` is fire-and-forget: Redis returns the number of clients that
received the message and keeps no copy for subscribers that connect
later. Consumers must be online to see a notification.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from outbox_relay.core.errors import ChannelUnavailable

logger = logging.getLogger(__name__)


class RedisNotificationChannel:
    """Notification channel backed by Redis Pub/Sub.

    Args:
        redis_url: Redis connection URL (e.g. ``redis://localhost:6379/0``).
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0") -> None:
        self._url = redis_url
        self._redis: aioredis.Redis | None = None

    # -- lifecycle -----------------------------------------------------------

    async def connect(self) -> None:
        """Establish the Redis connection pool."""
        if self._redis is not None:
            return
        client = aioredis.from_url(self._url, decode_responses=False)
        try:
            await client.ping()
        except (RedisConnectionError, RedisTimeoutError) as e:
            await client.aclose()
            raise ChannelUnavailable(f"Redis unavailable: {e}") from e
        self._redis = client
        logger.info("Redis channel connected: %s", self._url.split("@")[-1])

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("Redis channel connection closed.")

    @property
    def redis(self) -> aioredis.Redis:
        """Return the underlying Redis client, raising if not connected."""
        if self._redis is None:
            raise RuntimeError(
                "RedisNotificationChannel not connected. Call connect() first."
            )
        return self._redis

    async def ping(self) -> None:
        try:
            await self.redis.ping()
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise ChannelUnavailable(f"Redis unavailable: {e}") from e

    # -- pub/sub -------------------------------------------------------------

    async def publish(self, channel: str, payload: bytes) -> int:
        try:
            receivers = await self.redis.publish(channel, payload)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise ChannelUnavailable(f"Redis unavailable: {e}") from e
        if receivers == 0:
            logger.debug("Published to %s with no connected subscribers", channel)
        return int(receivers)

    async def subscribe(self, channel: str) -> AsyncIterator[bytes]:
        pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(channel)
        logger.info("Subscribed to channel %r", channel)
        try:
            async for message in pubsub.listen():
                if message["type"] == "message":
                    yield message["data"]
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise ChannelUnavailable(f"Redis unavailable: {e}") from e
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
