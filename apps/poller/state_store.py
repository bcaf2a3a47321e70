"""
Polling State Store - Persisted per-job state and circuit breaker.

Each job's state lives in one Redis hash:

    polling_state:{tenant_id}:{source_type}:{sha256(instance_url)}

Fields are ISO-8601 UTC timestamps plus the consecutive failure counter.
Every write refreshes a rolling TTL so abandoned jobs expire on their own.

Backend errors are best-effort: reads fall back to the default empty state
and writes are logged, so a Redis outage never blocks polling.
"""

import hashlib
import logging
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as redis

from utils.config import settings
from utils.mq import create_redis_client
from utils.schemas import PollingState

logger = logging.getLogger(__name__)

KEY_PREFIX = "polling_state"

_TIMESTAMP_FIELDS = ("last_successful_poll", "last_poll_attempt", "last_error_timestamp")


def instance_digest(instance_url: str) -> str:
    return hashlib.sha256(instance_url.encode("utf-8")).hexdigest()


def _parse_state(data: dict[str, str]) -> PollingState:
    if not data:
        return PollingState()

    values: dict[str, object] = {
        "consecutive_failures": int(data.get("consecutive_failures") or 0),
        "last_error": data.get("last_error") or None,
        "last_correlation_id": data.get("last_correlation_id") or None,
    }
    for field in _TIMESTAMP_FIELDS:
        raw = data.get(field)
        values[field] = datetime.fromisoformat(raw) if raw else None

    return PollingState(**values)


class PollingStateStore:
    """Redis-backed per-job polling state."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self.redis_url = redis_url or settings.REDIS_URL
        self.client: Optional[redis.Redis] = client
        self.ttl_seconds = ttl_seconds or settings.STATE_TTL_SECONDS

    async def connect(self) -> None:
        if self.client is None:
            self.client = create_redis_client(self.redis_url)
            logger.info("Connected to Redis for polling state")

    async def close(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("Disconnected from Redis for polling state")

    @staticmethod
    def state_key(tenant_id: str, source_type: str, instance_url: str) -> str:
        return f"{KEY_PREFIX}:{tenant_id}:{source_type}:{instance_digest(instance_url)}"

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    async def get_state(self, tenant_id: str, source_type: str, instance_url: str) -> PollingState:
        """Return the job's state, or the default state if absent or unreadable."""
        if self.client is None:
            await self.connect()

        key = self.state_key(tenant_id, source_type, instance_url)
        try:
            data = await self.client.hgetall(key)
        except (redis.RedisError, OSError) as e:
            logger.error("Error getting polling state", extra={"state_key": key, "error": str(e)})
            return PollingState()

        try:
            return _parse_state(data)
        except ValueError as e:
            logger.error("Corrupt polling state, using defaults", extra={"state_key": key, "error": str(e)})
            return PollingState()

    async def record_attempt(
        self,
        tenant_id: str,
        source_type: str,
        instance_url: str,
        correlation_id: Optional[str] = None,
    ) -> None:
        if self.client is None:
            await self.connect()

        key = self.state_key(tenant_id, source_type, instance_url)
        mapping = {"last_poll_attempt": self._now()}
        if correlation_id:
            mapping["last_correlation_id"] = correlation_id

        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hset(key, mapping=mapping)
                pipe.expire(key, self.ttl_seconds)
                await pipe.execute()
        except (redis.RedisError, OSError) as e:
            logger.error("Error updating last poll attempt", extra={"state_key": key, "error": str(e)})

    async def record_success(
        self,
        tenant_id: str,
        source_type: str,
        instance_url: str,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Set the success timestamp, reset the failure count and clear the stored error."""
        if self.client is None:
            await self.connect()

        key = self.state_key(tenant_id, source_type, instance_url)
        mapping = {"last_successful_poll": self._now(), "consecutive_failures": 0}
        if correlation_id:
            mapping["last_correlation_id"] = correlation_id

        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hset(key, mapping=mapping)
                pipe.hdel(key, "last_error", "last_error_timestamp")
                pipe.expire(key, self.ttl_seconds)
                await pipe.execute()
        except (redis.RedisError, OSError) as e:
            logger.error("Error updating successful poll", extra={"state_key": key, "error": str(e)})

    async def record_failure(
        self,
        tenant_id: str,
        source_type: str,
        instance_url: str,
        error_message: str,
        max_failures: int = 5,
        correlation_id: Optional[str] = None,
    ) -> bool:
        """
        Increment the failure counter and store the error.

        Returns:
            True once the new failure count reaches max_failures
        """
        if self.client is None:
            await self.connect()

        key = self.state_key(tenant_id, source_type, instance_url)
        mapping = {"last_error": error_message, "last_error_timestamp": self._now()}
        if correlation_id:
            mapping["last_correlation_id"] = correlation_id

        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hincrby(key, "consecutive_failures", 1)
                pipe.hset(key, mapping=mapping)
                pipe.expire(key, self.ttl_seconds)
                results = await pipe.execute()
        except (redis.RedisError, OSError) as e:
            logger.error("Error updating failed poll", extra={"state_key": key, "error": str(e)})
            return False

        return int(results[0]) >= max_failures

    async def should_disable(
        self,
        tenant_id: str,
        source_type: str,
        instance_url: str,
        max_failures: int,
    ) -> bool:
        state = await self.get_state(tenant_id, source_type, instance_url)
        return state.consecutive_failures >= max_failures

    async def reset_failure_count(self, tenant_id: str, source_type: str, instance_url: str) -> None:
        """Administrative override that re-enables a job disabled by the circuit breaker."""
        if self.client is None:
            await self.connect()

        key = self.state_key(tenant_id, source_type, instance_url)
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hset(key, "consecutive_failures", 0)
                pipe.hdel(key, "last_error", "last_error_timestamp")
                pipe.expire(key, self.ttl_seconds)
                await pipe.execute()
        except (redis.RedisError, OSError) as e:
            logger.error("Error resetting failure count", extra={"state_key": key, "error": str(e)})

    async def get_tenant_states(self, tenant_id: str) -> list[tuple[str, PollingState]]:
        """All stored states for a tenant, for monitoring (empty on error)."""
        if self.client is None:
            await self.connect()

        results: list[tuple[str, PollingState]] = []
        try:
            async for key in self.client.scan_iter(match=f"{KEY_PREFIX}:{tenant_id}:*"):
                data = await self.client.hgetall(key)
                results.append((key, _parse_state(data)))
        except (redis.RedisError, OSError, ValueError) as e:
            logger.error("Error getting tenant polling states", extra={"tenant_id": tenant_id, "error": str(e)})
            return []

        return results

    async def ensure_expiry(self) -> int:
        """Put the rolling TTL back on any state key that lost it.

        Returns:
            Number of keys whose expiry was restored
        """
        if self.client is None:
            await self.connect()

        restored = 0
        try:
            async for key in self.client.scan_iter(match=f"{KEY_PREFIX}:*"):
                if await self.client.ttl(key) == -1:
                    await self.client.expire(key, self.ttl_seconds)
                    restored += 1
        except (redis.RedisError, OSError) as e:
            logger.error("Error restoring polling state expiry", extra={"error": str(e)})

        return restored
