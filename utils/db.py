"""
Database utilities for SQLite operations.

Provides connection management and schema initialization for the polling
configuration store.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Optional

from utils.config import settings

logger = logging.getLogger(__name__)


def get_conn(path: Optional[str] = None) -> sqlite3.Connection:
    """
    Get SQLite database connection with dict-friendly row factory.

    Args:
        path: Database file path, defaults to settings.SQLITE_PATH

    Returns:
        SQLite connection with row_factory set to sqlite3.Row

    Raises:
        sqlite3.Error: If connection fails
    """
    db_path = Path(path or settings.SQLITE_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn


def init_schema(path: Optional[str] = None) -> None:
    """
    Initialize database schema by creating required tables if they don't exist.

    Creates:
    - polling_configs: one row per (tenant_id, source_type, instance_url),
      nested sections stored as JSON text

    Raises:
        sqlite3.Error: If schema creation fails
    """
    conn = get_conn(path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS polling_configs (
                tenant_id TEXT NOT NULL,
                source_type TEXT NOT NULL,
                instance_url TEXT NOT NULL,
                api_config TEXT NOT NULL,
                polling_config TEXT NOT NULL,
                data_extraction TEXT NOT NULL DEFAULT '{}',
                rate_limiting TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (tenant_id, source_type, instance_url)
            )
        """)

        conn.commit()
    finally:
        conn.close()

    logger.info("DB schema ready")
