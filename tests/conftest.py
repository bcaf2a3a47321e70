"""Shared fixtures: in-memory Redis double, config factory, sqlite config db."""

import fnmatch
import time
from typing import Any, Optional

import orjson
import pytest
import redis.exceptions

from utils.db import get_conn, init_schema
from utils.rate_limiter import SLIDING_WINDOW_SCRIPT
from utils.schemas import JobConfig


class FakePipeline:
    def __init__(self, redis_client: "FakeRedis") -> None:
        self.redis = redis_client
        self.commands: list[tuple[str, tuple, dict]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.commands.clear()

    def __getattr__(self, name: str):
        def queue(*args, **kwargs):
            self.commands.append((name, args, kwargs))
            return self

        return queue

    async def execute(self) -> list[Any]:
        self.redis._check()
        results = []
        for name, args, kwargs in self.commands:
            results.append(await getattr(self.redis, name)(*args, **kwargs))
        self.commands.clear()
        return results


class FakeRedis:
    """Just enough of redis.asyncio.Redis (decode_responses=True) for the poller."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.hashes: dict[str, dict[str, str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.expiries: dict[str, float] = {}
        self.published: list[tuple[str, Any]] = []
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise redis.exceptions.ConnectionError("redis unavailable")

    def _exists(self, key: str) -> bool:
        return key in self.hashes or key in self.zsets

    # hashes
    async def hgetall(self, key: str) -> dict[str, str]:
        self._check()
        return dict(self.hashes.get(key, {}))

    async def hset(self, key: str, field: Optional[str] = None, value: Any = None, mapping: Optional[dict] = None) -> int:
        self._check()
        data = self.hashes.setdefault(key, {})
        items = dict(mapping or {})
        if field is not None:
            items[field] = value
        for k, v in items.items():
            data[k] = str(v)
        return len(items)

    async def hdel(self, key: str, *fields: str) -> int:
        self._check()
        data = self.hashes.get(key, {})
        return sum(1 for f in fields if data.pop(f, None) is not None)

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        self._check()
        data = self.hashes.setdefault(key, {})
        value = int(data.get(field, 0)) + amount
        data[field] = str(value)
        return value

    # sorted sets
    async def zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int:
        self._check()
        zset = self.zsets.get(key, {})
        doomed = [m for m, s in zset.items() if min_score <= s <= float(max_score)]
        for member in doomed:
            del zset[member]
        return len(doomed)

    async def zcard(self, key: str) -> int:
        self._check()
        return len(self.zsets.get(key, {}))

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        self._check()
        self.zsets.setdefault(key, {}).update({m: float(s) for m, s in mapping.items()})
        return len(mapping)

    async def zrange(self, key: str, start: int, end: int, withscores: bool = False):
        self._check()
        ordered = sorted(self.zsets.get(key, {}).items(), key=lambda item: item[1])
        end = len(ordered) if end == -1 else end + 1
        sliced = ordered[start:end]
        return sliced if withscores else [m for m, _ in sliced]

    # keys
    async def expire(self, key: str, seconds: int) -> bool:
        self._check()
        if not self._exists(key):
            return False
        self.expiries[key] = time.time() + int(seconds)
        return True

    async def ttl(self, key: str) -> int:
        self._check()
        if not self._exists(key):
            return -2
        if key not in self.expiries:
            return -1
        return max(0, int(self.expiries[key] - time.time()))

    async def scan_iter(self, match: str = "*"):
        self._check()
        for key in sorted(set(self.hashes) | set(self.zsets)):
            if fnmatch.fnmatchcase(key, match):
                yield key

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def eval(self, script: str, numkeys: int, *args):
        self._check()
        assert script == SLIDING_WINDOW_SCRIPT, "unexpected Lua script"
        key = args[0]
        now, window_start, max_requests, member, ttl = args[1:]
        await self.zremrangebyscore(key, 0, window_start)
        if await self.zcard(key) >= int(max_requests):
            return 0
        await self.zadd(key, {member: now})
        await self.expire(key, ttl)
        return 1

    # pub/sub
    async def publish(self, channel: str, message: Any) -> int:
        self._check()
        self.published.append((channel, message))
        return 1

    async def aclose(self) -> None:
        self.closed = True


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_config(**overrides: Any) -> JobConfig:
    """Build a valid JobConfig; nested sections can be overridden as dicts."""
    data: dict[str, Any] = {
        "tenant_id": "tenant_1",
        "source_type": "JSONPLACEHOLDER",
        "instance_url": "https://api.example.com",
        "api_config": {
            "endpoint": "https://api.example.com/feedback",
            "method": "GET",
        },
        "polling_config": {
            "interval_seconds": 60,
            "enabled": True,
            "max_failures_before_disable": 3,
        },
        "data_extraction": {},
        "rate_limiting": {"requests_per_minute": 60, "requests_per_hour": 1000},
    }
    data.update(overrides)
    return JobConfig(**data)


def insert_config_row(path: str, config: dict[str, Any]) -> None:
    """Write a raw config row the way an operator tool would."""
    conn = get_conn(path)
    try:
        conn.execute(
            """
            INSERT OR REPLACE INTO polling_configs
                (tenant_id, source_type, instance_url, api_config, polling_config,
                 data_extraction, rate_limiting)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                config["tenant_id"],
                config["source_type"],
                config["instance_url"],
                orjson.dumps(config["api_config"]).decode("utf-8"),
                orjson.dumps(config["polling_config"]).decode("utf-8"),
                orjson.dumps(config.get("data_extraction", {})).decode("utf-8"),
                orjson.dumps(config.get("rate_limiting", {})).decode("utf-8"),
            ),
        )
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config_db(tmp_path) -> str:
    path = str(tmp_path / "db" / "configs.db")
    init_schema(path)
    return path
