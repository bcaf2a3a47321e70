"""
Generic paginated-REST polling behavior.

Fallback for every source type without a specialized behavior: drives a
bounded pagination loop using ApiClient + ResponseExtractor. Any request or
extraction error aborts the whole cycle; records from earlier pages are not
returned.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx

from apps.poller.api_client import ApiClient
from apps.poller.behaviors.base import SourceBehavior
from apps.poller.extractor import ExtractionError, ResponseExtractor
from apps.poller.state_store import PollingStateStore
from utils.config import settings
from utils.schemas import FetchResult, JobConfig

logger = logging.getLogger(__name__)


class GenericBehavior(SourceBehavior):
    def __init__(
        self,
        api_client: ApiClient,
        state_store: PollingStateStore,
        extractor: Optional[ResponseExtractor] = None,
        max_pages: Optional[int] = None,
        page_delay: Optional[float] = None,
    ) -> None:
        self.api_client = api_client
        self.state_store = state_store
        self.extractor = extractor or ResponseExtractor()
        self.max_pages = max_pages or settings.GENERIC_MAX_PAGES
        self.page_delay = settings.INTER_PAGE_DELAY_SECONDS if page_delay is None else page_delay

    def can_handle(self, source_type: str) -> bool:
        return True

    def display_name(self) -> str:
        return "Default Generic Polling"

    async def cleanup(self) -> None:
        await self.api_client.close()

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ExtractionError(f"Response from {response.request.url} is not valid JSON") from e

    async def fetch(self, config: JobConfig, correlation_id: str) -> FetchResult:
        log_extra = {"job_key": config.job_key, "correlation_id": correlation_id}

        state = await self.state_store.get_state(
            config.tenant_id, config.source_type, config.instance_url
        )
        params = self.extractor.get_initial_params(config)
        params = self.extractor.add_incremental_params(params, state.last_successful_poll, config)

        records: list[Any] = []
        page_count = 0
        has_more = True

        logger.info("Starting generic polling", extra=log_extra)

        while has_more and page_count < self.max_pages:
            page_count += 1
            logger.debug("Fetching page", extra={**log_extra, "page": page_count})

            response = await self.api_client.make_request(config, params)
            body = self._decode(response)

            page_records = self.extractor.extract_records(body, config)
            records.extend(page_records)

            has_more = self.extractor.has_next_page(body, config)
            if has_more:
                params = {**params, **self.extractor.get_next_page_params(body, config, params)}
                if page_count < self.max_pages:
                    await asyncio.sleep(self.page_delay)

        logger.info(
            "Generic polling completed",
            extra={**log_extra, "pages": page_count, "records": len(records), "has_more": has_more},
        )

        return FetchResult(records=records, pages_processed=page_count, has_more_data=has_more)
