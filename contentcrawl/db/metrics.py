"""Append-only run and source metrics."""

from typing import List

import structlog
from psycopg_pool import ConnectionPool

from ..models import MetricsWindow, RunMetrics, SourceMetrics

logger = structlog.get_logger()


class MetricsStore:
    """Record crawl metrics and serve the aggregates the scheduler reads."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Initialize metrics store on a connection pool."""
        self.pool = pool

    def record_run(self, run: RunMetrics, sources: List[SourceMetrics]) -> int:
        """
        Insert one run row and a row per crawled source.

        Returns:
            Run metrics ID
        """
        with self.pool.connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO run_metrics (
                            sources_processed, items_found, items_processed, errors, duration_seconds
                        )
                        VALUES (%s, %s, %s, %s, %s)
                        RETURNING id
                        """,
                        (
                            run.sources_processed,
                            run.items_found,
                            run.items_processed,
                            run.errors,
                            run.duration_seconds,
                        ),
                    )
                    run_id = cur.fetchone()["id"]
                    cur.executemany(
                        """
                        INSERT INTO source_metrics (
                            source_id, items_found, items_processed, errors, duration_seconds
                        )
                        VALUES (%s, %s, %s, %s, %s)
                        """,
                        [
                            (m.source_id, m.items_found, m.items_processed, m.errors, m.duration_seconds)
                            for m in sources
                        ],
                    )

        logger.debug("run_metrics_recorded", run_id=run_id, sources=len(sources))
        return run_id

    def window_aggregate(self, days: int = 7) -> MetricsWindow:
        """Totals of source metrics over the trailing window."""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT
                        COALESCE(SUM(items_found), 0) AS total_items,
                        COALESCE(SUM(errors), 0) AS total_errors,
                        COUNT(*) AS total_crawls
                    FROM source_metrics
                    WHERE created_at >= CURRENT_TIMESTAMP - make_interval(days => %s)
                    """,
                    (days,),
                )
                return MetricsWindow.model_validate(cur.fetchone())

    def recent_runs(self, limit: int = 10) -> List[RunMetrics]:
        """Get recent runs, newest first."""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT * FROM run_metrics
                    ORDER BY created_at DESC, id DESC
                    LIMIT %s
                    """,
                    (limit,),
                )
                return [RunMetrics.model_validate(row) for row in cur.fetchall()]

    def source_history(self, source_id: int, days: int = 30) -> List[SourceMetrics]:
        """Metrics of one source over the trailing window, newest first."""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT * FROM source_metrics
                    WHERE source_id = %s
                      AND created_at >= CURRENT_TIMESTAMP - make_interval(days => %s)
                    ORDER BY created_at DESC, id DESC
                    """,
                    (source_id, days),
                )
                return [SourceMetrics.model_validate(row) for row in cur.fetchall()]
