"""Discourse two-phase (search, then per-topic detail) polling behavior."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx

from apps.poller.behaviors.base import SourceBehavior
from apps.poller.discourse_client import DiscourseClient
from apps.poller.state_store import PollingStateStore
from utils.config import settings
from utils.schemas import FetchResult, JobConfig, SourceType

logger = logging.getLogger(__name__)


class DiscourseBehavior(SourceBehavior):
    def __init__(
        self,
        state_store: PollingStateStore,
        http_client: Optional[httpx.AsyncClient] = None,
        max_search_pages: Optional[int] = None,
        lookback: Optional[timedelta] = None,
        topic_delay: Optional[float] = None,
        page_delay: Optional[float] = None,
    ) -> None:
        self.state_store = state_store
        self.max_search_pages = max_search_pages or settings.DISCOURSE_MAX_SEARCH_PAGES
        self.lookback = lookback or timedelta(hours=settings.DEFAULT_LOOKBACK_HOURS)
        self.topic_delay = topic_delay
        self.page_delay = page_delay
        self._http_client = http_client
        self._owns_client = http_client is None

    def can_handle(self, source_type: str) -> bool:
        return source_type == SourceType.DISCOURSE.value

    def display_name(self) -> str:
        return "Discourse Specialized Polling"

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
        return self._http_client

    async def cleanup(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def fetch(self, config: JobConfig, correlation_id: str) -> FetchResult:
        log_extra = {"job_key": config.job_key, "correlation_id": correlation_id}

        state = await self.state_store.get_state(
            config.tenant_id, config.source_type, config.instance_url
        )
        after = state.last_successful_poll or datetime.now(timezone.utc) - self.lookback

        logger.info(
            "Starting Discourse polling",
            extra={**log_extra, "after": after.isoformat()},
        )

        client = DiscourseClient(
            config,
            self.http_client,
            topic_delay=self.topic_delay,
            page_delay=self.page_delay,
            correlation_id=correlation_id,
        )
        posts, pages = await client.fetch_posts_with_details(after, max_pages=self.max_search_pages)

        logger.info(
            "Discourse polling completed",
            extra={**log_extra, "records": len(posts), "pages": pages},
        )

        return FetchResult(records=posts, pages_processed=pages, has_more_data=False)
