"""
Polling state monitor.

Operator tool for the circuit breaker state kept in Redis:

    python -m apps.poller.monitor list [--tenant TENANT]
    python -m apps.poller.monitor reset TENANT SOURCE_TYPE INSTANCE_URL
    python -m apps.poller.monitor ensure-expiry

`reset` clears the failure count of a job disabled by the circuit breaker;
the scheduler picks it up again on its next reconciliation.
"""

import argparse
import asyncio
import sys
from typing import Optional, TextIO

from apps.poller.state_store import PollingStateStore
from utils.config import settings
from utils.logging import setup_logging
from utils.schemas import PollingState


def _ts(value) -> str:
    return value.isoformat() if value else "Never"


def format_state(key: str, state: PollingState) -> str:
    _, tenant_id, source_type, digest = key.split(":", 3)
    lines = [
        f"Key: {key}",
        f"   Tenant: {tenant_id}",
        f"   Source Type: {source_type}",
        f"   Instance Hash: {digest}",
        f"   Consecutive Failures: {state.consecutive_failures}",
        f"   Last Successful Poll: {_ts(state.last_successful_poll)}",
        f"   Last Poll Attempt: {_ts(state.last_poll_attempt)}",
    ]
    if state.last_error:
        lines.append(f"   Last Error: {state.last_error}")
        lines.append(f"   Last Error Time: {_ts(state.last_error_timestamp)}")
    if state.last_correlation_id:
        lines.append(f"   Last Correlation ID: {state.last_correlation_id}")
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect and reset polling state in Redis.")
    parser.add_argument("--redis-url", default=None, help="Redis URL (defaults to REDIS_URL)")
    sub = parser.add_subparsers(dest="command")

    list_cmd = sub.add_parser("list", help="Show stored polling states")
    list_cmd.add_argument("--tenant", default="*", help="Only this tenant")

    reset_cmd = sub.add_parser("reset", help="Re-enable a job disabled by the circuit breaker")
    reset_cmd.add_argument("tenant_id")
    reset_cmd.add_argument("source_type")
    reset_cmd.add_argument("instance_url")

    sub.add_parser("ensure-expiry", help="Restore the rolling TTL on state keys that lost it")
    return parser


async def run_command(args: argparse.Namespace, store: PollingStateStore, out: TextIO = sys.stdout) -> int:
    command = args.command or "list"

    if command == "list":
        states = await store.get_tenant_states(getattr(args, "tenant", "*"))
        if not states:
            print("No polling states found in Redis.", file=out)
            return 0
        print(f"Found {len(states)} polling state(s):\n", file=out)
        for key, state in sorted(states, key=lambda item: item[0]):
            print(format_state(key, state) + "\n", file=out)
        return 0

    if command == "reset":
        await store.reset_failure_count(args.tenant_id, args.source_type, args.instance_url)
        key = store.state_key(args.tenant_id, args.source_type, args.instance_url)
        print(f"Polling state reset: {key}", file=out)
        return 0

    if command == "ensure-expiry":
        restored = await store.ensure_expiry()
        print(f"Restored expiry on {restored} key(s)", file=out)
        return 0

    return 2


async def _main(args: argparse.Namespace) -> int:
    store = PollingStateStore(redis_url=args.redis_url)
    try:
        return await run_command(args, store)
    finally:
        await store.close()


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(settings.LOG_LEVEL, "text")
    return asyncio.run(_main(args))


if __name__ == "__main__":
    sys.exit(main())
