"""
API Client - Request building and execution for generic polling.

Composes an authenticated httpx request from a job's declarative API config:
endpoint + configured query params + pagination params (pagination wins on
conflicting keys), one of three auth schemes, a fixed timeout and a default
User-Agent.
"""

import base64
import logging
from typing import Any, Optional

import httpx

from utils.config import settings
from utils.schemas import AuthConfig, JobConfig

logger = logging.getLogger(__name__)


def auth_headers(auth: Optional[AuthConfig]) -> dict[str, str]:
    """Compute the auth header(s) for a config; incomplete descriptors add nothing."""
    if auth is None:
        return {}

    if auth.type == "bearer" and auth.token:
        return {"Authorization": f"Bearer {auth.token}"}

    if auth.type == "basic" and auth.username and auth.password:
        credentials = base64.b64encode(f"{auth.username}:{auth.password}".encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {credentials}"}

    if auth.type == "api_key" and auth.api_key_header and auth.api_key_value:
        return {auth.api_key_header: auth.api_key_value}

    return {}


class ApiClient:
    """Builds and sends requests described by a JobConfig."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.user_agent = user_agent or settings.HTTP_USER_AGENT
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def build_request(
        self,
        config: JobConfig,
        additional_params: Optional[dict[str, Any]] = None,
    ) -> httpx.Request:
        """
        Build the outbound request for one page.

        Args:
            config: Job configuration
            additional_params: Pagination / incremental params for this page

        Returns:
            Ready-to-send httpx.Request
        """
        api = config.api_config

        params: dict[str, Any] = dict(api.query_params)
        for key, value in (additional_params or {}).items():
            if value is not None:
                params[key] = value

        headers = dict(api.headers)
        headers.update(auth_headers(api.auth))
        if not any(name.lower() == "user-agent" for name in headers):
            headers["User-Agent"] = self.user_agent

        body = api.body if api.method == "POST" and api.body else None

        return self.client.build_request(
            api.method,
            api.endpoint,
            params=params,
            headers=headers,
            json=body,
            timeout=self.timeout,
        )

    async def make_request(
        self,
        config: JobConfig,
        additional_params: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        """
        Send one request and fail on non-2xx responses.

        Raises:
            httpx.HTTPStatusError: On non-2xx status
            httpx.HTTPError: On transport failures and timeouts
        """
        request = self.build_request(config, additional_params)

        try:
            response = await self.client.send(request)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "API request failed",
                extra={
                    "url": str(request.url),
                    "method": request.method,
                    "status": e.response.status_code,
                    "body": e.response.text[:500],
                },
            )
            raise
        except httpx.HTTPError as e:
            logger.error(
                "API request failed",
                extra={"url": str(request.url), "method": request.method, "error": str(e)},
            )
            raise

        return response
