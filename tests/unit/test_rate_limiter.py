import pytest

from tests.conftest import FakeRedis
from utils.rate_limiter import RateLimiter


@pytest.mark.asyncio
async def test_allows_exactly_max_requests_within_window(fake_redis, clock):
    limiter = RateLimiter(client=fake_redis, clock=clock)

    results = []
    for _ in range(3):
        results.append(await limiter.is_allowed("t:S:x:api_calls:minute", 60, 3))
        clock.advance(1)

    assert results == [True, True, True]
    assert await limiter.is_allowed("t:S:x:api_calls:minute", 60, 3) is False


@pytest.mark.asyncio
async def test_allows_again_after_window_elapses(fake_redis, clock):
    limiter = RateLimiter(client=fake_redis, clock=clock)

    assert await limiter.is_allowed("k", 60, 1) is True
    assert await limiter.is_allowed("k", 60, 1) is False

    clock.advance(60)

    assert await limiter.is_allowed("k", 60, 1) is True


@pytest.mark.asyncio
async def test_denied_requests_are_not_recorded(fake_redis, clock):
    limiter = RateLimiter(client=fake_redis, clock=clock)

    await limiter.is_allowed("k", 60, 2)
    await limiter.is_allowed("k", 60, 2)
    for _ in range(5):
        assert await limiter.is_allowed("k", 60, 2) is False

    assert await limiter.get_current_count("k", 60) == 2


@pytest.mark.asyncio
async def test_check_prunes_entries_older_than_window(fake_redis, clock):
    limiter = RateLimiter(client=fake_redis, clock=clock)

    await limiter.is_allowed("k", 10, 5)
    clock.advance(4)
    await limiter.is_allowed("k", 10, 5)
    clock.advance(7)
    await limiter.is_allowed("k", 10, 5)

    window_start_ms = (clock.now - 10) * 1000
    assert all(score > window_start_ms for score in fake_redis.zsets["k"].values())
    assert len(fake_redis.zsets["k"]) == 2


@pytest.mark.asyncio
async def test_key_expiry_is_twice_the_window(fake_redis, clock):
    limiter = RateLimiter(client=fake_redis, clock=clock)

    await limiter.is_allowed("k", 3600, 10)

    ttl = await fake_redis.ttl("k")
    assert 7190 <= ttl <= 7200


@pytest.mark.asyncio
async def test_fails_open_when_backend_unavailable(clock):
    limiter = RateLimiter(client=FakeRedis(fail=True), clock=clock)

    for _ in range(10):
        assert await limiter.is_allowed("k", 60, 1) is True


@pytest.mark.asyncio
async def test_monitoring_helpers(fake_redis, clock):
    limiter = RateLimiter(client=fake_redis, clock=clock)

    assert await limiter.get_time_until_reset("k", 60) == 0

    await limiter.is_allowed("k", 60, 10)
    clock.advance(20)
    await limiter.is_allowed("k", 60, 10)

    assert await limiter.get_current_count("k", 60) == 2
    assert await limiter.get_time_until_reset("k", 60) == 40


@pytest.mark.asyncio
async def test_monitoring_helpers_degrade_on_backend_error(clock):
    limiter = RateLimiter(client=FakeRedis(fail=True), clock=clock)

    assert await limiter.get_current_count("k", 60) == 0
    assert await limiter.get_time_until_reset("k", 60) == 0
