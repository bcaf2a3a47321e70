"""
Ingestion Publisher for Poller Service

Publishes every fetched raw record to the ingestion channel on Redis Pub/Sub,
wrapped with enough config context for the downstream transformer.

Usage:
    from apps.poller.publisher import IngestionPublisher

    publisher = IngestionPublisher()
    await publisher.connect()
    await publisher.publish(record, config, correlation_id)
"""

import logging
from typing import Any, Optional

from utils.config import settings
from utils.mq import RedisPublisher
from utils.schemas import IngestionMessage, JobConfig, SourceConfigRef

logger = logging.getLogger(__name__)


def build_message(record: Any, config: JobConfig, correlation_id: str) -> IngestionMessage:
    auth = config.api_config.auth
    return IngestionMessage(
        tenant_id=config.tenant_id,
        source_type=config.source_type,
        source_config=SourceConfigRef(
            instance_url=config.instance_url,
            api_key=auth.api_key_value if auth is not None else None,
        ),
        ingestion_method="POLLING",
        raw_data=record,
        retry_count=0,
        correlation_id=correlation_id,
    )


class IngestionPublisher:
    """Hands fetched records to the message bus."""

    def __init__(
        self,
        redis_publisher: Optional[RedisPublisher] = None,
        channel: Optional[str] = None,
    ) -> None:
        self.redis_publisher = redis_publisher or RedisPublisher()
        self.channel = channel or settings.REDIS_CHANNEL_INGESTION

    async def connect(self) -> None:
        await self.redis_publisher.connect()

    async def close(self) -> None:
        await self.redis_publisher.close()

    async def publish(self, record: Any, config: JobConfig, correlation_id: str) -> None:
        """
        Publish one raw record.

        Args:
            record: Raw record as returned by the source API
            config: Job configuration the record was fetched for
            correlation_id: Polling cycle identifier

        Raises:
            redis.RedisError: If publishing fails
        """
        message = build_message(record, config, correlation_id)

        try:
            await self.redis_publisher.publish(self.channel, message.model_dump(mode="json"))
        except Exception as e:
            logger.error(
                "Failed to publish record",
                extra={
                    "channel": self.channel,
                    "job_key": config.job_key,
                    "correlation_id": correlation_id,
                    "error": str(e),
                },
            )
            raise
