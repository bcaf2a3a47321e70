import io

import pytest

from apps.poller.monitor import build_parser, run_command
from apps.poller.state_store import PollingStateStore

INSTANCE = "https://forum.example.com"


@pytest.fixture
def store(fake_redis):
    return PollingStateStore(client=fake_redis, ttl_seconds=1000)


async def run(store, *argv):
    out = io.StringIO()
    code = await run_command(build_parser().parse_args(list(argv)), store, out)
    return code, out.getvalue()


@pytest.mark.asyncio
async def test_list_shows_failing_and_healthy_jobs(store):
    await store.record_failure("tenant_1", "DISCOURSE", INSTANCE, "HTTP 503")
    await store.record_success("tenant_2", "INTERCOM", INSTANCE)

    code, output = await run(store, "list")

    assert code == 0
    assert "Found 2 polling state(s)" in output
    assert "Tenant: tenant_1" in output
    assert "Last Error: HTTP 503" in output
    assert "Source Type: INTERCOM" in output


@pytest.mark.asyncio
async def test_list_filters_by_tenant(store):
    await store.record_failure("tenant_1", "DISCOURSE", INSTANCE, "boom")
    await store.record_failure("tenant_2", "DISCOURSE", INSTANCE, "boom")

    _, output = await run(store, "list", "--tenant", "tenant_2")

    assert "Found 1 polling state(s)" in output
    assert "tenant_1" not in output


@pytest.mark.asyncio
async def test_list_with_no_states(store):
    _, output = await run(store, "list")

    assert "No polling states found" in output


@pytest.mark.asyncio
async def test_reset_reenables_job(store):
    for _ in range(3):
        await store.record_failure("tenant_1", "DISCOURSE", INSTANCE, "boom")

    code, output = await run(store, "reset", "tenant_1", "DISCOURSE", INSTANCE)

    assert code == 0
    assert store.state_key("tenant_1", "DISCOURSE", INSTANCE) in output
    assert await store.should_disable("tenant_1", "DISCOURSE", INSTANCE, 3) is False


@pytest.mark.asyncio
async def test_ensure_expiry_reports_restored_keys(store, fake_redis):
    await store.record_success("tenant_1", "DISCOURSE", INSTANCE)
    fake_redis.expiries.clear()

    _, output = await run(store, "ensure-expiry")

    assert "Restored expiry on 1 key(s)" in output
