"""
Polling Scheduler - Per-job interval polling with live reconciliation.

Runs one APScheduler interval job per enabled polling config, keyed by
`tenant_id:source_type:instance_url`, and a reconciliation job that keeps the
running set aligned with the config database without restarting the process.

Features:
- Jobs start, stop and restart in place as configs change
- Per-tenant sliding-window rate limits (per minute and per hour)
- Circuit breaker: jobs are stopped after N consecutive failed cycles and
  stay stopped until the failure count is reset
- Overlapping cycles of one job are skipped, never queued
- Graceful shutdown handling

Usage:
    python -m apps.poller
"""

import asyncio
import logging
import signal
import sys
import uuid
from dataclasses import dataclass
from typing import Optional, Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from apps.poller.behaviors import BehaviorRegistry, build_default_registry
from apps.poller.config_source import SqliteConfigSource
from apps.poller.publisher import IngestionPublisher
from apps.poller.state_store import PollingStateStore, instance_digest
from utils.config import settings
from utils.db import init_schema
from utils.logging import setup_logging
from utils.rate_limiter import RateLimiter
from utils.schemas import JobConfig

logger = logging.getLogger(__name__)

RECONCILE_JOB_ID = "reconcile_polling_configs"
MINUTE_WINDOW_SECONDS = 60
HOUR_WINDOW_SECONDS = 3600


class ConfigSource(Protocol):
    async def list_enabled_configs(self) -> list[JobConfig]:
        ...


@dataclass
class JobHandle:
    """Runtime state of one scheduled job. Owned by JobScheduler."""

    config: JobConfig
    job_id: str
    in_flight: bool = False


def rate_limit_key(config: JobConfig) -> str:
    """Rate-limit key prefix; distinct instances of one tenant/source never share a window."""
    return (
        f"rate_limit:{config.tenant_id}:{config.source_type}:"
        f"{instance_digest(config.instance_url)[:16]}:api_calls"
    )


class JobScheduler:
    """
    Orchestrates polling jobs.

    Handles:
    - Reconciliation of running jobs against enabled configs
    - Rate limiting and circuit breaking around each cycle
    - Publishing fetched records
    - Graceful shutdown of timers, in-flight cycles and connections
    """

    def __init__(
        self,
        config_source: ConfigSource,
        registry: BehaviorRegistry,
        rate_limiter: RateLimiter,
        state_store: PollingStateStore,
        publisher: IngestionPublisher,
        reconcile_interval: Optional[int] = None,
        shutdown_grace: Optional[float] = None,
    ) -> None:
        self.config_source = config_source
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.state_store = state_store
        self.publisher = publisher
        self.reconcile_interval = reconcile_interval or settings.RECONCILE_INTERVAL_SECONDS
        self.shutdown_grace = settings.SHUTDOWN_GRACE_SECONDS if shutdown_grace is None else shutdown_grace

        self.scheduler = AsyncIOScheduler()
        self._jobs: dict[str, JobHandle] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        self._shutting_down = False

    @property
    def jobs(self) -> dict[str, JobHandle]:
        """Snapshot of the currently scheduled jobs by key."""
        return dict(self._jobs)

    async def start(self) -> None:
        """Connect collaborators, reconcile once, then reconcile periodically."""
        logger.info("Starting polling scheduler")

        await self.rate_limiter.connect()
        await self.state_store.connect()
        await self.publisher.connect()
        await self.registry.initialize()

        self._shutting_down = False
        self.scheduler.start()

        await self.reconcile()

        self.scheduler.add_job(
            self.reconcile,
            trigger=IntervalTrigger(seconds=self.reconcile_interval),
            id=RECONCILE_JOB_ID,
            name="Reconcile polling configs",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        logger.info(
            "Polling scheduler started",
            extra={"reconcile_interval": self.reconcile_interval, "jobs": len(self._jobs)},
        )

    async def stop(self) -> None:
        """Cancel all timers, wait for in-flight cycles, release connections."""
        logger.info("Stopping polling scheduler")
        self._shutting_down = True

        try:
            self.scheduler.remove_job(RECONCILE_JOB_ID)
        except JobLookupError:
            pass

        for key in list(self._jobs):
            self._stop_job(key)

        # Must run before scheduler.shutdown(), which cancels running job tasks
        pending = [task for task in self._inflight.values() if not task.done()]
        if pending:
            logger.info("Waiting for in-flight polls", extra={"count": len(pending)})
            _, still_running = await asyncio.wait(pending, timeout=self.shutdown_grace)
            if still_running:
                logger.warning("Abandoning in-flight polls", extra={"count": len(still_running)})

        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

        await self.registry.cleanup()

        for name, collaborator in (
            ("state_store", self.state_store),
            ("rate_limiter", self.rate_limiter),
            ("publisher", self.publisher),
        ):
            try:
                await collaborator.close()
            except Exception as e:
                logger.error("Error closing collaborator", extra={"collaborator": name, "error": str(e)})

        logger.info("Polling scheduler stopped")

    async def reconcile(self) -> None:
        """Align running jobs with the enabled configs; read failures keep current jobs."""
        if self._shutting_down:
            return

        try:
            configs = await self.config_source.list_enabled_configs()
        except Exception as e:
            logger.error("Error loading polling configurations", extra={"error": str(e)}, exc_info=True)
            return

        enabled_keys = set()
        for config in configs:
            enabled_keys.add(config.job_key)
            try:
                await self._reconcile_job(config)
            except Exception as e:
                logger.error(
                    "Error reconciling polling job",
                    extra={"job_key": config.job_key, "error": str(e)},
                    exc_info=True,
                )

        for key in list(self._jobs):
            if key not in enabled_keys:
                self._stop_job(key)

    async def _reconcile_job(self, config: JobConfig) -> None:
        key = config.job_key
        existing = self._jobs.get(key)

        disabled = await self.state_store.should_disable(
            config.tenant_id,
            config.source_type,
            config.instance_url,
            config.polling_config.max_failures_before_disable,
        )
        if disabled:
            if existing is not None:
                self._stop_job(key)
            logger.debug("Polling disabled by circuit breaker", extra={"job_key": key})
            return

        if existing is not None and existing.config.requires_restart(config):
            logger.info("Polling config changed, restarting job", extra={"job_key": key})
            self._stop_job(key)
            existing = None

        if existing is None:
            self._start_job(config)
        else:
            # Non-restart edits (headers, credentials, limits) apply from the next cycle
            existing.config = config

    def _start_job(self, config: JobConfig) -> None:
        key = config.job_key
        if self._shutting_down:
            return

        job = self.scheduler.add_job(
            self.execute_poll,
            trigger=IntervalTrigger(seconds=config.polling_config.interval_seconds),
            args=[key],
            id=key,
            name=f"Poll {key}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._jobs[key] = JobHandle(config=config, job_id=job.id)

        logger.info(
            "Started polling job",
            extra={"job_key": key, "interval_seconds": config.polling_config.interval_seconds},
        )

    def _stop_job(self, key: str) -> None:
        handle = self._jobs.pop(key, None)
        if handle is None:
            return

        try:
            self.scheduler.remove_job(handle.job_id)
        except JobLookupError:
            pass

        logger.info("Stopped polling job", extra={"job_key": key})

    async def execute_poll(self, key: str) -> None:
        """One polling cycle for a job; never raises."""
        handle = self._jobs.get(key)
        if handle is None or self._shutting_down:
            return

        if handle.in_flight or key in self._inflight:
            logger.info("Previous poll still running, skipping tick", extra={"job_key": key})
            return

        handle.in_flight = True
        self._inflight[key] = asyncio.current_task()
        config = handle.config
        correlation_id = str(uuid.uuid4())
        log_extra = {"job_key": key, "correlation_id": correlation_id}

        try:
            await self._poll(config, correlation_id)
        except Exception as e:
            logger.error("Poll failed", extra={**log_extra, "error": str(e)}, exc_info=True)
            try:
                await self._record_failure(handle, config, correlation_id, e)
            except Exception as record_error:
                logger.error(
                    "Error recording poll failure",
                    extra={**log_extra, "error": str(record_error)},
                    exc_info=True,
                )
        finally:
            handle.in_flight = False
            self._inflight.pop(key, None)

    async def _check_rate_limits(self, config: JobConfig) -> bool:
        base_key = rate_limit_key(config)
        minute_allowed = await self.rate_limiter.is_allowed(
            f"{base_key}:minute", MINUTE_WINDOW_SECONDS, config.rate_limiting.requests_per_minute
        )
        hour_allowed = await self.rate_limiter.is_allowed(
            f"{base_key}:hour", HOUR_WINDOW_SECONDS, config.rate_limiting.requests_per_hour
        )
        return minute_allowed and hour_allowed

    async def _poll(self, config: JobConfig, correlation_id: str) -> None:
        log_extra = {"job_key": config.job_key, "correlation_id": correlation_id}
        logger.info("Starting poll", extra=log_extra)

        if not await self._check_rate_limits(config):
            logger.info("Rate limit exceeded, skipping poll", extra=log_extra)
            return

        await self.state_store.record_attempt(
            config.tenant_id, config.source_type, config.instance_url, correlation_id=correlation_id
        )

        behavior = self.registry.get_behavior(config.source_type)
        result = await behavior.fetch(config, correlation_id)

        for record in result.records:
            await self.publisher.publish(record, config, correlation_id)

        await self.state_store.record_success(
            config.tenant_id, config.source_type, config.instance_url, correlation_id=correlation_id
        )

        logger.info(
            "Poll completed successfully",
            extra={
                **log_extra,
                "behavior": behavior.display_name(),
                "records": result.total_records,
                "pages": result.pages_processed,
                "has_more_data": result.has_more_data,
            },
        )

    async def _record_failure(
        self,
        handle: JobHandle,
        config: JobConfig,
        correlation_id: str,
        error: Exception,
    ) -> None:
        max_failures = config.polling_config.max_failures_before_disable
        should_disable = await self.state_store.record_failure(
            config.tenant_id,
            config.source_type,
            config.instance_url,
            str(error) or error.__class__.__name__,
            max_failures,
            correlation_id=correlation_id,
        )

        if should_disable:
            logger.error(
                "Polling disabled after consecutive failures",
                extra={
                    "job_key": config.job_key,
                    "correlation_id": correlation_id,
                    "max_failures": max_failures,
                },
            )
            # The handle may already have been replaced by a reconciliation
            if self._jobs.get(config.job_key) is handle:
                self._stop_job(config.job_key)


def build_scheduler() -> JobScheduler:
    """Wire the production collaborators from settings."""
    state_store = PollingStateStore()
    return JobScheduler(
        config_source=SqliteConfigSource(),
        registry=build_default_registry(state_store),
        rate_limiter=RateLimiter(),
        state_store=state_store,
        publisher=IngestionPublisher(),
    )


class PollerService:
    """Process wrapper: runs the scheduler until SIGINT/SIGTERM."""

    def __init__(self, scheduler: Optional[JobScheduler] = None) -> None:
        self.scheduler = scheduler or build_scheduler()
        self.shutdown_event = asyncio.Event()

    def setup_signal_handlers(self) -> None:
        """Setup handlers for graceful shutdown on SIGINT/SIGTERM."""

        def signal_handler(signum: int, frame: object) -> None:
            logger.info(f"Received signal {signum}, initiating graceful shutdown")
            self.shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def run(self) -> None:
        self.setup_signal_handlers()
        await self.scheduler.start()
        logger.info("Waiting for jobs...")

        try:
            await self.shutdown_event.wait()
        finally:
            await self.scheduler.stop()


async def main() -> None:
    """Main entry point for the poller."""
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    init_schema()

    service = PollerService()

    try:
        await service.run()
    except Exception as e:
        logger.error("Poller failed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
