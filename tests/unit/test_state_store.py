import pytest

from apps.poller.state_store import PollingStateStore
from tests.conftest import FakeRedis

TENANT = "tenant_1"
SOURCE = "DISCOURSE"
INSTANCE = "https://forum.example.com"


@pytest.fixture
def store(fake_redis):
    return PollingStateStore(client=fake_redis, ttl_seconds=1000)


@pytest.mark.asyncio
async def test_default_state_when_absent(store):
    state = await store.get_state(TENANT, SOURCE, INSTANCE)

    assert state.consecutive_failures == 0
    assert state.last_successful_poll is None
    assert state.last_poll_attempt is None
    assert state.last_error is None


@pytest.mark.asyncio
async def test_failures_accumulate_and_success_resets(store):
    for _ in range(4):
        await store.record_failure(TENANT, SOURCE, INSTANCE, "boom", max_failures=10)

    state = await store.get_state(TENANT, SOURCE, INSTANCE)
    assert state.consecutive_failures == 4
    assert state.last_error == "boom"
    assert state.last_error_timestamp is not None

    await store.record_success(TENANT, SOURCE, INSTANCE, correlation_id="cid-1")

    state = await store.get_state(TENANT, SOURCE, INSTANCE)
    assert state.consecutive_failures == 0
    assert state.last_error is None
    assert state.last_error_timestamp is None
    assert state.last_successful_poll is not None
    assert state.last_correlation_id == "cid-1"


@pytest.mark.asyncio
async def test_record_failure_reports_threshold(store):
    assert await store.record_failure(TENANT, SOURCE, INSTANCE, "e1", max_failures=3) is False
    assert await store.record_failure(TENANT, SOURCE, INSTANCE, "e2", max_failures=3) is False
    assert await store.record_failure(TENANT, SOURCE, INSTANCE, "e3", max_failures=3) is True

    assert await store.should_disable(TENANT, SOURCE, INSTANCE, 3) is True
    assert await store.should_disable(TENANT, SOURCE, INSTANCE, 4) is False


@pytest.mark.asyncio
async def test_reset_failure_count_reenables(store):
    for _ in range(3):
        await store.record_failure(TENANT, SOURCE, INSTANCE, "boom", max_failures=3)

    await store.reset_failure_count(TENANT, SOURCE, INSTANCE)

    state = await store.get_state(TENANT, SOURCE, INSTANCE)
    assert state.consecutive_failures == 0
    assert state.last_error is None
    assert await store.should_disable(TENANT, SOURCE, INSTANCE, 3) is False


@pytest.mark.asyncio
async def test_record_attempt_sets_timestamp_and_ttl(store, fake_redis):
    await store.record_attempt(TENANT, SOURCE, INSTANCE, correlation_id="cid-9")

    state = await store.get_state(TENANT, SOURCE, INSTANCE)
    assert state.last_poll_attempt is not None
    assert state.last_correlation_id == "cid-9"

    key = store.state_key(TENANT, SOURCE, INSTANCE)
    assert 0 < await fake_redis.ttl(key) <= 1000


@pytest.mark.asyncio
async def test_every_write_refreshes_ttl(store, fake_redis):
    key = store.state_key(TENANT, SOURCE, INSTANCE)

    await store.record_failure(TENANT, SOURCE, INSTANCE, "boom")
    fake_redis.expiries.pop(key)
    await store.record_success(TENANT, SOURCE, INSTANCE)

    assert await fake_redis.ttl(key) > 0


def test_state_keys_differ_per_instance_url():
    first = PollingStateStore.state_key(TENANT, SOURCE, "https://a.example.com")
    second = PollingStateStore.state_key(TENANT, SOURCE, "https://a.example.com/other")

    assert first != second
    assert first.startswith(f"polling_state:{TENANT}:{SOURCE}:")


@pytest.mark.asyncio
async def test_backend_errors_are_best_effort():
    store = PollingStateStore(client=FakeRedis(fail=True))

    state = await store.get_state(TENANT, SOURCE, INSTANCE)
    assert state.consecutive_failures == 0

    await store.record_attempt(TENANT, SOURCE, INSTANCE)
    await store.record_success(TENANT, SOURCE, INSTANCE)
    assert await store.record_failure(TENANT, SOURCE, INSTANCE, "boom", max_failures=1) is False
    assert await store.should_disable(TENANT, SOURCE, INSTANCE, 1) is False


@pytest.mark.asyncio
async def test_tenant_states_and_expiry_maintenance(store, fake_redis):
    await store.record_failure(TENANT, SOURCE, INSTANCE, "boom")
    await store.record_success(TENANT, SOURCE, "https://other.example.com")
    await store.record_success("tenant_2", SOURCE, INSTANCE)

    states = await store.get_tenant_states(TENANT)
    assert len(states) == 2
    assert sorted(state.consecutive_failures for _, state in states) == [0, 1]

    fake_redis.expiries.clear()
    assert await store.ensure_expiry() == 3
    assert await store.ensure_expiry() == 0
