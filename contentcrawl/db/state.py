"""Persisted crawler state (last run, next run, cadence)."""

from datetime import datetime
from typing import Optional

from psycopg_pool import ConnectionPool

from ..ingestion.dates import parse_date

LAST_RUN_AT = "last_run_at"
NEXT_RUN_AT = "next_run_at"
RECURRENCE = "recurrence"
LAST_ERROR = "last_error"


class CrawlerState:
    """Key/value store backed by the crawler_state table."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Initialize state on a connection pool."""
        self.pool = pool

    def get(self, key: str) -> Optional[str]:
        """Get a value, or None when unset."""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT value FROM crawler_state WHERE key = %s", (key,))
                row = cur.fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: Optional[str]) -> None:
        """Set a value, inserting or replacing it."""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO crawler_state (key, value) VALUES (%s, %s)
                    ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value
                    """,
                    (key, value),
                )

    def get_datetime(self, key: str) -> Optional[datetime]:
        """Get a timestamp value."""
        return parse_date(self.get(key))

    def set_datetime(self, key: str, value: datetime) -> None:
        """Store a timestamp as ISO 8601."""
        self.set(key, value.isoformat())
