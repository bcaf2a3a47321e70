"""
Pydantic Schemas - Data Validation Models

Defines all Pydantic schemas used throughout the poller:
- Polling job configurations (as read from the config database)
- Persisted per-job polling state
- Fetch results returned by source behaviors
- Ingestion messages published to Redis

Usage:
    from utils.schemas import JobConfig

    config = JobConfig(**row)
    print(config.job_key)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from utils.config import settings


class SourceType(str, Enum):
    """Known feedback source types. Configs may still carry any string."""

    DISCOURSE = "DISCOURSE"
    INTERCOM = "INTERCOM"
    PLAYSTORE = "PLAYSTORE"
    TWITTER = "TWITTER"
    JSONPLACEHOLDER = "JSONPLACEHOLDER"


class AuthConfig(BaseModel):
    """Authentication descriptor for outbound requests."""

    type: Literal["bearer", "basic", "api_key"]
    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    api_key_header: Optional[str] = None
    api_key_value: Optional[str] = None


class ApiConfig(BaseModel):
    """Declarative description of the API to poll."""

    endpoint: str = Field(..., min_length=1)
    method: Literal["GET", "POST"] = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    query_params: dict[str, Any] = Field(default_factory=dict)
    body: Optional[dict[str, Any]] = None
    auth: Optional[AuthConfig] = None


class PollingSettings(BaseModel):
    """Scheduling knobs for a single job."""

    interval_seconds: int
    enabled: bool = True
    max_failures_before_disable: int = Field(default=5, ge=1)

    @field_validator("interval_seconds")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        """Enforce the minimum polling interval."""
        if v < settings.MIN_POLL_INTERVAL_SECONDS:
            raise ValueError(
                f"interval_seconds must be >= {settings.MIN_POLL_INTERVAL_SECONDS}"
            )
        return v


class PaginationConfig(BaseModel):
    type: Literal["offset", "cursor", "page"]
    limit_param: Optional[str] = None
    offset_param: Optional[str] = None
    cursor_param: Optional[str] = None
    page_param: Optional[str] = None
    per_page_param: Optional[str] = None
    next_page_path: Optional[str] = None


class DataExtraction(BaseModel):
    response_path: Optional[str] = None
    pagination: Optional[PaginationConfig] = None


class RateLimiting(BaseModel):
    requests_per_minute: int = Field(default=60, ge=1)
    requests_per_hour: int = Field(default=1000, ge=1)


class JobConfig(BaseModel):
    """Polling configuration for one (tenant, source type, instance url) tuple.

    Validates against requirements:
    - tenant_id, source_type, instance_url: non-empty strings
    - polling_config.interval_seconds: at least MIN_POLL_INTERVAL_SECONDS
    - auth.type: bearer | basic | api_key
    - pagination.type: offset | cursor | page
    """

    model_config = ConfigDict(frozen=True)

    tenant_id: str = Field(..., min_length=1)
    source_type: str = Field(..., min_length=1)
    instance_url: str = Field(..., min_length=1)
    api_config: ApiConfig
    polling_config: PollingSettings
    data_extraction: DataExtraction = Field(default_factory=DataExtraction)
    rate_limiting: RateLimiting = Field(default_factory=RateLimiting)

    @property
    def job_key(self) -> str:
        return f"{self.tenant_id}:{self.source_type}:{self.instance_url}"

    def requires_restart(self, other: "JobConfig") -> bool:
        """Compare the fields whose change forces a job restart.

        Only interval, endpoint, query params and the extraction description
        are compared. Any other edit (headers, credentials, rate limits) is
        applied to the running job in place.
        """
        return (
            self.polling_config.interval_seconds != other.polling_config.interval_seconds
            or self.api_config.endpoint != other.api_config.endpoint
            or self.api_config.query_params != other.api_config.query_params
            or self.data_extraction != other.data_extraction
        )


class PollingState(BaseModel):
    """Persisted per-job polling state (circuit breaker input)."""

    last_successful_poll: Optional[datetime] = None
    last_poll_attempt: Optional[datetime] = None
    consecutive_failures: int = Field(default=0, ge=0)
    last_error: Optional[str] = None
    last_error_timestamp: Optional[datetime] = None
    last_correlation_id: Optional[str] = None


class FetchResult(BaseModel):
    """Records produced by one polling cycle of one job."""

    records: list[Any] = Field(default_factory=list)
    pages_processed: int = 0
    has_more_data: bool = False

    @property
    def total_records(self) -> int:
        return len(self.records)


class SourceConfigRef(BaseModel):
    instance_url: str
    api_key: Optional[str] = None


class IngestionMessage(BaseModel):
    """Redis Pub/Sub payload handed to the downstream transformer.

    Standard format:
    {
        "tenant_id": "tenant_123",
        "source_type": "DISCOURSE",
        "source_config": {"instance_url": "https://meta.discourse.org"},
        "ingestion_method": "POLLING",
        "raw_data": {...},
        "retry_count": 0,
        "correlation_id": "5b0e...",
        "ts": "2025-01-15T03:15:02+00:00"
    }
    """

    tenant_id: str
    source_type: str
    source_config: SourceConfigRef
    ingestion_method: Literal["POLLING", "WEBHOOK"] = "POLLING"
    raw_data: Any
    retry_count: int = 0
    correlation_id: str
    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
