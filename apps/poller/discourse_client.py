"""
Discourse API Client - Two-phase search + detail workflow.

Discourse's search endpoint only returns post excerpts, so a polling cycle
first searches for posts in a time range and then fetches the full posts,
grouped by topic so each topic costs one detail request:

    GET {instance}/search.json?q=after:YYYY-MM-DD&page=N
    GET {instance}/t/{topic_id}/posts.json?post_ids[]=1&post_ids[]=2

A failed detail request for one topic is logged and skipped; a failed search
request aborts the cycle.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

import httpx

from utils.config import settings
from utils.schemas import JobConfig

logger = logging.getLogger(__name__)


class DiscourseClient:
    """Client for one Discourse instance, built per polling cycle."""

    def __init__(
        self,
        config: JobConfig,
        http_client: httpx.AsyncClient,
        topic_delay: Optional[float] = None,
        page_delay: Optional[float] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        self.base_url = config.instance_url.rstrip("/")
        self.http_client = http_client
        self.topic_delay = settings.DISCOURSE_TOPIC_DELAY_SECONDS if topic_delay is None else topic_delay
        self.page_delay = settings.INTER_PAGE_DELAY_SECONDS if page_delay is None else page_delay
        self.correlation_id = correlation_id

        self.api_key: Optional[str] = None
        self.api_username: Optional[str] = None
        auth = config.api_config.auth
        if auth is not None and auth.type == "api_key":
            self.api_key = auth.api_key_value
            self.api_username = auth.username

    def _headers(self) -> dict[str, str]:
        headers = {
            "User-Agent": settings.HTTP_USER_AGENT,
            "Accept": "application/json",
        }
        if self.api_key and self.api_username:
            headers["Api-Key"] = self.api_key
            headers["Api-Username"] = self.api_username
        return headers

    async def _get(self, path: str, params: Any) -> Any:
        response = await self.http_client.get(
            f"{self.base_url}{path}",
            params=params,
            headers=self._headers(),
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        return response.json()

    @staticmethod
    def build_search_query(after: datetime, before: Optional[datetime] = None) -> str:
        query = f"after:{after.date().isoformat()}"
        if before is not None:
            query += f" before:{before.date().isoformat()}"
        return query

    async def search_posts(
        self,
        after: datetime,
        before: Optional[datetime] = None,
        page: int = 1,
    ) -> list[dict[str, Any]]:
        """Step 1: search post excerpts in a time range."""
        data = await self._get(
            "/search.json",
            {"page": str(page), "q": self.build_search_query(after, before)},
        )
        return (data or {}).get("posts") or []

    async def get_post_details(self, topic_id: int, post_ids: list[int]) -> list[dict[str, Any]]:
        """Step 2: full post content for several posts of one topic."""
        params = [("post_ids[]", str(post_id)) for post_id in post_ids]
        data = await self._get(f"/t/{topic_id}/posts.json", params)
        return ((data or {}).get("post_stream") or {}).get("posts") or []

    @staticmethod
    def group_by_topic(posts: list[dict[str, Any]]) -> dict[int, list[dict[str, Any]]]:
        """Search posts keyed by topic; posts without a topic are dropped."""
        grouped: dict[int, list[dict[str, Any]]] = {}
        for post in posts:
            topic_id = post.get("topic_id")
            if topic_id is not None:
                grouped.setdefault(topic_id, []).append(post)
        return grouped

    @staticmethod
    def merge_post_data(
        search_posts: list[dict[str, Any]],
        detailed_posts: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        """Detailed posts, enriched with the topic title from the search results."""
        by_id = {post["id"]: post for post in search_posts}
        merged = []
        for detailed in detailed_posts:
            search_post = by_id.get(detailed.get("id"), {})
            merged.append(
                {**detailed, "topic_title_headline": search_post.get("topic_title_headline") or ""}
            )
        return merged

    async def fetch_posts_with_details(
        self,
        after: datetime,
        before: Optional[datetime] = None,
        max_pages: Optional[int] = None,
    ) -> tuple[list[dict[str, Any]], int]:
        """
        Complete workflow: search pages, then per-topic detail fetches.

        Returns:
            (detailed posts, number of search pages requested)
        """
        max_pages = max_pages or settings.DISCOURSE_MAX_SEARCH_PAGES
        log_extra = {"instance_url": self.base_url, "correlation_id": self.correlation_id}
        detailed_posts: list[dict[str, Any]] = []
        pages = 0

        for page in range(1, max_pages + 1):
            pages = page
            logger.debug("Searching Discourse posts", extra={**log_extra, "page": page})

            search_posts = await self.search_posts(after, before, page)
            if not search_posts:
                logger.debug("No more Discourse posts, stopping search", extra={**log_extra, "page": page})
                break

            for topic_id, posts in self.group_by_topic(search_posts).items():
                try:
                    details = await self.get_post_details(topic_id, [post["id"] for post in posts])
                    detailed_posts.extend(self.merge_post_data(posts, details))
                except Exception as e:
                    logger.warning(
                        "Failed to fetch Discourse topic details, skipping topic",
                        extra={**log_extra, "topic_id": topic_id, "error": str(e)},
                        exc_info=True,
                    )
                await asyncio.sleep(self.topic_delay)

            await asyncio.sleep(self.page_delay)

        return detailed_posts, pages

    @staticmethod
    def latest_timestamp(posts: list[dict[str, Any]]) -> Optional[datetime]:
        """Most recent updated_at (or created_at) among the posts."""
        timestamps = []
        for post in posts:
            raw = post.get("updated_at") or post.get("created_at")
            if raw:
                timestamps.append(datetime.fromisoformat(raw.replace("Z", "+00:00")))
        return max(timestamps) if timestamps else None
