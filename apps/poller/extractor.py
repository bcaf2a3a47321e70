"""
Response Extractor - JSONPath record extraction and pagination advance.

Given a job's `data_extraction` description, pulls the list of records out of
a decoded response body and decides whether (and how) to request the next
page. Three pagination styles are supported:

- cursor: `next_page_path` selects the next cursor; non-null means more pages
- page:   a non-empty page means there may be more; page number + 1
- offset: a non-empty page means there may be more; offset + limit

The page/offset heuristic costs one extra, empty request at the true end of
the data. That is expected.
"""

import logging
from functools import lru_cache
from typing import Any, Optional

from jsonpath_ng.ext import parse as jsonpath_parse

from utils.schemas import JobConfig

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
INCREMENTAL_PARAMS = ("since", "updated_after", "modified_since")


class ExtractionError(Exception):
    """The configured response path could not be evaluated."""


@lru_cache(maxsize=256)
def _compile(path: str):
    return jsonpath_parse(path)


def query_path(body: Any, path: str) -> list[Any]:
    """Evaluate a JSONPath expression and return every matched value."""
    return [match.value for match in _compile(path).find(body)]


class ResponseExtractor:
    """Stateless extraction and pagination logic shared by all generic jobs."""

    def extract_records(self, body: Any, config: JobConfig) -> list[Any]:
        """
        Extract the records of one page.

        A single JSONPath match is used as-is, several matches form the list,
        and no configured path means the whole body. The result is always a
        list.

        Raises:
            ExtractionError: If the response path cannot be evaluated
        """
        path = config.data_extraction.response_path
        extracted: Any = body

        if path:
            try:
                results = query_path(body, path)
            except Exception as e:
                logger.error(
                    "JSONPath extraction error",
                    extra={"response_path": path, "error": str(e)},
                )
                raise ExtractionError(f"Failed to extract data using path: {path}") from e
            extracted = results[0] if len(results) == 1 else results

        if not isinstance(extracted, list):
            extracted = [extracted]

        return extracted

    def has_next_page(self, body: Any, config: JobConfig) -> bool:
        pagination = config.data_extraction.pagination
        if pagination is None:
            return False

        try:
            if pagination.type == "cursor":
                if not pagination.next_page_path:
                    return False
                cursor = query_path(body, pagination.next_page_path)
                return len(cursor) > 0 and cursor[0] is not None

            if pagination.type in ("page", "offset"):
                return len(self.extract_records(body, config)) > 0
        except Exception as e:
            logger.warning("Error checking for next page", extra={"error": str(e)})

        return False

    def get_next_page_params(
        self,
        body: Any,
        config: JobConfig,
        current_params: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Parameters for the next request, to be merged over the current ones."""
        pagination = config.data_extraction.pagination
        if pagination is None:
            return {}

        current = current_params or {}
        next_params: dict[str, Any] = {}

        try:
            if pagination.type == "cursor":
                if pagination.cursor_param and pagination.next_page_path:
                    cursor = query_path(body, pagination.next_page_path)
                    if cursor:
                        next_params[pagination.cursor_param] = cursor[0]

            elif pagination.type == "page":
                if pagination.page_param:
                    current_page = int(current.get(pagination.page_param) or 1)
                    next_params[pagination.page_param] = current_page + 1
                if pagination.per_page_param and not current.get(pagination.per_page_param):
                    next_params[pagination.per_page_param] = DEFAULT_PAGE_SIZE

            elif pagination.type == "offset":
                if pagination.offset_param and pagination.limit_param:
                    current_offset = int(current.get(pagination.offset_param) or 0)
                    limit = int(current.get(pagination.limit_param) or DEFAULT_PAGE_SIZE)
                    next_params[pagination.offset_param] = current_offset + limit
                    next_params[pagination.limit_param] = limit
        except Exception as e:
            logger.warning("Error getting next page parameters", extra={"error": str(e)})
            return {}

        return next_params

    def get_initial_params(self, config: JobConfig) -> dict[str, Any]:
        pagination = config.data_extraction.pagination
        if pagination is None:
            return {}

        params: dict[str, Any] = {}

        if pagination.type == "page":
            if pagination.page_param:
                params[pagination.page_param] = 1
            if pagination.per_page_param:
                params[pagination.per_page_param] = DEFAULT_PAGE_SIZE

        elif pagination.type == "offset":
            if pagination.offset_param:
                params[pagination.offset_param] = 0
            if pagination.limit_param:
                params[pagination.limit_param] = DEFAULT_PAGE_SIZE

        elif pagination.type == "cursor":
            # No cursor on the first request, only the page size
            limit_param = pagination.per_page_param or pagination.limit_param
            if limit_param:
                params[limit_param] = DEFAULT_PAGE_SIZE

        return params

    def add_incremental_params(
        self,
        params: dict[str, Any],
        last_successful_poll,
        config: JobConfig,
    ) -> dict[str, Any]:
        """Add `since=<last success>` unless an incremental param is already set."""
        if last_successful_poll is None:
            return params

        configured = set(params) | set(config.api_config.query_params)
        if any(name in configured for name in INCREMENTAL_PARAMS):
            return params

        return {**params, "since": last_successful_poll.isoformat()}
