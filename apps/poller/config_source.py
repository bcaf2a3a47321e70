"""
Polling configuration source.

Read-only access to the enabled polling configurations stored in SQLite.
Rows that fail validation are logged and skipped so one bad config cannot
block every other tenant.
"""

import asyncio
import logging
import sqlite3
from typing import Optional

import orjson
from pydantic import ValidationError

from utils.config import settings
from utils.db import get_conn
from utils.schemas import JobConfig

logger = logging.getLogger(__name__)

ENABLED_CONFIGS_QUERY = """
    SELECT tenant_id, source_type, instance_url,
           api_config, polling_config, data_extraction, rate_limiting
    FROM polling_configs
    WHERE json_extract(polling_config, '$.enabled') = 1
    ORDER BY tenant_id, source_type, instance_url
"""

JSON_COLUMNS = ("api_config", "polling_config", "data_extraction", "rate_limiting")


class SqliteConfigSource:
    """Loads enabled JobConfigs from the `polling_configs` table."""

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = path or settings.SQLITE_PATH

    async def list_enabled_configs(self) -> list[JobConfig]:
        """
        Fetch all enabled job configurations.

        Returns:
            Validated JobConfig instances

        Raises:
            sqlite3.Error: If the database cannot be read
        """
        return await asyncio.to_thread(self._load_enabled)

    def _load_enabled(self) -> list[JobConfig]:
        conn = get_conn(self.path)
        try:
            rows = conn.execute(ENABLED_CONFIGS_QUERY).fetchall()
        finally:
            conn.close()

        configs: list[JobConfig] = []
        for row in rows:
            config = self._row_to_config(row)
            if config is not None:
                configs.append(config)

        logger.debug("Loaded enabled polling configs", extra={"count": len(configs)})
        return configs

    @staticmethod
    def _row_to_config(row: sqlite3.Row) -> Optional[JobConfig]:
        raw = {
            "tenant_id": row["tenant_id"],
            "source_type": row["source_type"],
            "instance_url": row["instance_url"],
        }
        try:
            for column in JSON_COLUMNS:
                raw[column] = orjson.loads(row[column] or "{}")
            return JobConfig(**raw)
        except (orjson.JSONDecodeError, ValidationError) as e:
            logger.warning(
                "Skipping invalid polling config",
                extra={
                    "tenant_id": row["tenant_id"],
                    "source_type": row["source_type"],
                    "instance_url": row["instance_url"],
                    "error": str(e).split("\n")[0],
                },
            )
            return None
