"""
Distributed sliding-window rate limiter backed by Redis sorted sets.

Every admitted request is stored as a sorted-set member scored by its
timestamp (milliseconds). A check prunes members older than the window,
counts the remainder and, if below the limit, records the new request. The
prune/count/add sequence runs as one Lua script so concurrent pollers in
different processes cannot both take the last slot.

Usage:
    limiter = RateLimiter()
    await limiter.connect()

    if await limiter.is_allowed("tenant_1:DISCOURSE:abcd:api_calls:minute", 60, 30):
        ...
"""

import logging
import math
import time
import uuid
from typing import Callable, Optional

import redis.asyncio as redis

from utils.config import settings
from utils.mq import create_redis_client

logger = logging.getLogger(__name__)

# KEYS[1] = window key
# ARGV = now_ms, window_start_ms, max_requests, member, ttl_seconds
SLIDING_WINDOW_SCRIPT = """
redis.call('ZREMRANGEBYSCORE', KEYS[1], 0, ARGV[2])
local count = redis.call('ZCARD', KEYS[1])
if count >= tonumber(ARGV[3]) then
    return 0
end
redis.call('ZADD', KEYS[1], ARGV[1], ARGV[4])
redis.call('EXPIRE', KEYS[1], ARGV[5])
return 1
"""


class RateLimiter:
    """Sliding-window admission control shared by all pollers.

    Backend failures fail OPEN: an unreachable Redis must not halt polling.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        ttl_multiplier: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.redis_url = redis_url or settings.REDIS_URL
        self.client: Optional[redis.Redis] = client
        self.ttl_multiplier = ttl_multiplier or settings.RATE_LIMIT_TTL_MULTIPLIER
        self._clock = clock

    async def connect(self) -> None:
        if self.client is None:
            self.client = create_redis_client(self.redis_url)
            logger.info("Redis rate limiter connected")

    async def close(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("Redis rate limiter disconnected")

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def is_allowed(self, key: str, window_seconds: int, max_requests: int) -> bool:
        """Check and record one request against a sliding window.

        Args:
            key: Rate-limit key, e.g. "tenant_1:DISCOURSE:abcd:api_calls:minute"
            window_seconds: Trailing window size
            max_requests: Requests admitted per window

        Returns:
            True if the request is admitted (and recorded), False otherwise
        """
        if self.client is None:
            await self.connect()

        now = self._now_ms()
        window_start = now - window_seconds * 1000
        member = f"{now}-{uuid.uuid4().hex[:8]}"
        ttl = window_seconds * self.ttl_multiplier

        try:
            allowed = await self.client.eval(
                SLIDING_WINDOW_SCRIPT,
                1,
                key,
                now,
                window_start,
                max_requests,
                member,
                ttl,
            )
        except (redis.RedisError, OSError) as e:
            logger.error(
                "Rate limiter backend error, failing open",
                extra={"rate_limit_key": key, "error": str(e)},
            )
            return True

        return int(allowed) == 1

    async def get_current_count(self, key: str, window_seconds: int) -> int:
        """Number of requests recorded in the trailing window (0 on error)."""
        if self.client is None:
            await self.connect()

        window_start = self._now_ms() - window_seconds * 1000
        try:
            await self.client.zremrangebyscore(key, 0, window_start)
            return int(await self.client.zcard(key))
        except (redis.RedisError, OSError) as e:
            logger.error(
                "Rate limiter count error",
                extra={"rate_limit_key": key, "error": str(e)},
            )
            return 0

    async def get_time_until_reset(self, key: str, window_seconds: int) -> int:
        """Seconds until the oldest recorded request leaves the window."""
        if self.client is None:
            await self.connect()

        try:
            oldest = await self.client.zrange(key, 0, 0, withscores=True)
        except (redis.RedisError, OSError) as e:
            logger.error(
                "Rate limiter reset time error",
                extra={"rate_limit_key": key, "error": str(e)},
            )
            return 0

        if not oldest:
            return 0

        _, oldest_score = oldest[0]
        reset_at = float(oldest_score) + window_seconds * 1000
        return max(0, math.ceil((reset_at - self._now_ms()) / 1000))
