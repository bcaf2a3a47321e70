"""
Redis connection helpers and Pub/Sub publisher.

The rate limiter and state store share `create_redis_client` for text-mode
connections; the publisher keeps a bytes-mode connection for orjson payloads.
"""

import logging
from typing import Any, Optional

import orjson
import redis.asyncio as redis

from utils.config import settings

logger = logging.getLogger(__name__)


def create_redis_client(
    redis_url: Optional[str] = None,
    decode_responses: bool = True,
) -> redis.Redis:
    """Build a pooled async Redis client.

    Args:
        redis_url: Redis connection URL, defaults to settings.REDIS_URL
        decode_responses: Return str instead of bytes

    Returns:
        Redis client (connections are opened lazily)
    """
    return redis.from_url(
        redis_url or settings.REDIS_URL,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        decode_responses=decode_responses,
    )


class RedisPublisher:
    """Redis publisher for Pub/Sub events with connection pooling.

    Publishing is a single attempt: failures propagate to the caller so the
    polling cycle that produced the message is counted as failed.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        client: Optional[redis.Redis] = None,
    ) -> None:
        """Initialize Redis publisher.

        Args:
            redis_url: Redis connection URL, defaults to settings.REDIS_URL
            client: Pre-built client (tests inject fakes here)
        """
        self.redis_url = redis_url or settings.REDIS_URL
        self.client: Optional[redis.Redis] = client

    async def connect(self) -> None:
        """Establish Redis connection with connection pooling."""
        if self.client is None:
            self.client = create_redis_client(
                self.redis_url,
                decode_responses=False,  # Handle bytes for orjson
            )

    async def publish(self, channel: str, message: dict[str, Any]) -> None:
        """Publish message to Redis channel.

        Args:
            channel: Redis channel name
            message: Message payload dict (will be JSON-serialized)

        Raises:
            redis.RedisError: If publishing fails
        """
        if self.client is None:
            await self.connect()

        message_bytes = orjson.dumps(message)

        await self.client.publish(channel, message_bytes)

    async def close(self) -> None:
        """Close Redis connection and cleanup resources."""
        if self.client:
            await self.client.aclose()
            self.client = None
