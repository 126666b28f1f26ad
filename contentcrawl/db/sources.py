"""Source registry in database."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import psycopg
import structlog
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool
from pydantic import ValidationError

from ..config import SourceConfig
from ..errors import ConfigError, StorageError
from ..ingestion.configs import validate_adapter_config
from ..models import Source, SourceError
from ..pipeline.schedule import next_source_interval

logger = structlog.get_logger()

DEFAULT_DUE_LIMIT = 50

SOURCE_COLUMNS = (
    "name",
    "type",
    "url",
    "adapter_config",
    "content_types",
    "active",
    "fetch_interval",
    "min_interval",
    "max_interval",
    "last_fetch_at",
    "next_fetch_at",
    "quota_max_items",
    "quota_max_size",
)
JSON_COLUMNS = ("adapter_config", "content_types")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _column_values(source: Source) -> List[Any]:
    data = source.model_dump(mode="python")
    values = []
    for column in SOURCE_COLUMNS:
        value = data[column]
        if column in JSON_COLUMNS:
            value = Jsonb(value)
        elif column == "type":
            value = source.type.value
        values.append(value)
    return values


class SourceRegistry:
    """Manage sources and their adaptive schedule."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Initialize registry on a connection pool."""
        self.pool = pool

    def list_due(
        self,
        limit: int = DEFAULT_DUE_LIMIT,
        now: Optional[datetime] = None,
        source_ids: Optional[Sequence[int]] = None,
        source_types: Optional[Sequence[str]] = None,
    ) -> List[Source]:
        """
        Active sources whose next fetch time has passed, soonest first.

        The id and type filters apply before the limit.
        """
        now = now or _utcnow()
        conditions = ["active = TRUE", "(next_fetch_at IS NULL OR next_fetch_at <= %s)"]
        params: List[Any] = [now]
        if source_ids:
            conditions.append("id = ANY(%s)")
            params.append(list(source_ids))
        if source_types:
            conditions.append("type = ANY(%s)")
            params.append([getattr(t, "value", t) for t in source_types])
        params.append(limit)
        where = " AND ".join(conditions)

        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT * FROM sources
                    WHERE {where}
                    ORDER BY next_fetch_at ASC NULLS FIRST, id ASC
                    LIMIT %s
                    """,
                    params,
                )
                return [Source.model_validate(row) for row in cur.fetchall()]

    def list_sources(self, active_only: bool = False) -> List[Source]:
        """Get all sources, ordered by name."""
        query = "SELECT * FROM sources"
        if active_only:
            query += " WHERE active = TRUE"
        query += " ORDER BY name"
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query)
                return [Source.model_validate(row) for row in cur.fetchall()]

    def get(self, source_id: int) -> Optional[Source]:
        """Get source by ID."""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT * FROM sources WHERE id = %s", (source_id,))
                row = cur.fetchone()
        return Source.model_validate(row) if row else None

    def get_by_name(self, name: str) -> Optional[Source]:
        """Get source by name."""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT * FROM sources WHERE name = %s", (name,))
                row = cur.fetchone()
        return Source.model_validate(row) if row else None

    def add(self, source: Source) -> Source:
        """
        Insert a new source.

        The adapter configuration is validated for the source type and the
        first fetch is scheduled one interval from now.

        Raises:
            ConfigError: If the adapter configuration is invalid.
            StorageError: If the insert fails (e.g. duplicate name).
        """
        validate_adapter_config(source.type, source.adapter_config)
        if source.next_fetch_at is None:
            source = source.model_copy(
                update={"next_fetch_at": _utcnow() + timedelta(seconds=source.fetch_interval)}
            )

        placeholders = ", ".join(["%s"] * len(SOURCE_COLUMNS))
        try:
            with self.pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"INSERT INTO sources ({', '.join(SOURCE_COLUMNS)}) "
                        f"VALUES ({placeholders}) RETURNING *",
                        _column_values(source),
                    )
                    row = cur.fetchone()
        except psycopg.Error as e:
            raise StorageError(f"Failed to add source '{source.name}': {e}") from e

        logger.info("source_added", source_id=row["id"], name=source.name, type=source.type.value)
        return Source.model_validate(row)

    def update(self, source_id: int, patch: Dict[str, Any]) -> Optional[Source]:
        """
        Apply a partial update to a source.

        The merged source is re-validated, including its adapter configuration
        and interval bounds. Changing fetch_interval reschedules the next fetch.

        Returns:
            The updated source, or None when it does not exist.

        Raises:
            ConfigError: If the merged source is invalid.
        """
        unknown = set(patch) - set(SOURCE_COLUMNS)
        if unknown:
            raise ConfigError(f"Unknown source fields: {', '.join(sorted(unknown))}")

        current = self.get(source_id)
        if current is None:
            return None

        merged = current.model_dump()
        merged.update(patch)
        try:
            updated = Source.model_validate(merged)
        except ValidationError as e:
            raise ConfigError(f"Invalid source update: {e}") from e
        validate_adapter_config(updated.type, updated.adapter_config)

        if updated.fetch_interval != current.fetch_interval and "next_fetch_at" not in patch:
            updated = updated.model_copy(
                update={"next_fetch_at": _utcnow() + timedelta(seconds=updated.fetch_interval)}
            )

        assignments = ", ".join(f"{column} = %s" for column in SOURCE_COLUMNS)
        try:
            with self.pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"UPDATE sources SET {assignments} WHERE id = %s RETURNING *",
                        [*_column_values(updated), source_id],
                    )
                    row = cur.fetchone()
        except psycopg.Error as e:
            raise StorageError(f"Failed to update source {source_id}: {e}") from e

        logger.info("source_updated", source_id=source_id, fields=sorted(patch))
        return Source.model_validate(row) if row else None

    def set_active(self, source_id: int, active: bool) -> bool:
        """Activate or pause a source. Returns False when it does not exist."""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE sources SET active = %s WHERE id = %s RETURNING id",
                    (active, source_id),
                )
                found = cur.fetchone() is not None
        if found:
            logger.info("source_activation_changed", source_id=source_id, active=active)
        return found

    def delete(self, source_id: int) -> bool:
        """Delete a source and, by cascade, its content and metrics."""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM sources WHERE id = %s RETURNING id", (source_id,))
                found = cur.fetchone() is not None
        if found:
            logger.info("source_deleted", source_id=source_id)
        return found

    def record_outcome(
        self,
        source_id: int,
        success: bool,
        items_found: int,
        new_items: int,
        now: Optional[datetime] = None,
    ) -> Optional[Source]:
        """
        Record a crawl attempt and adapt the source's fetch interval.

        Sets fetch_interval, last_fetch_at and next_fetch_at together while
        holding the row lock.
        """
        now = now or _utcnow()
        with self.pool.connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        SELECT fetch_interval, min_interval, max_interval
                        FROM sources WHERE id = %s FOR UPDATE
                        """,
                        (source_id,),
                    )
                    row = cur.fetchone()
                    if row is None:
                        return None

                    interval = next_source_interval(
                        row["fetch_interval"],
                        row["min_interval"],
                        row["max_interval"],
                        success,
                        new_items,
                    )
                    cur.execute(
                        """
                        UPDATE sources
                        SET fetch_interval = %s, last_fetch_at = %s, next_fetch_at = %s
                        WHERE id = %s
                        RETURNING *
                        """,
                        (interval, now, now + timedelta(seconds=interval), source_id),
                    )
                    updated = cur.fetchone()

        logger.debug(
            "source_outcome_recorded",
            source_id=source_id,
            success=success,
            items_found=items_found,
            new_items=new_items,
            previous_interval=row["fetch_interval"],
            interval=interval,
        )
        return Source.model_validate(updated)

    def record_error(
        self,
        source_id: int,
        error_type: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        severity: str = "error",
    ) -> int:
        """Append an entry to a source's error log. Returns the entry ID."""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO source_errors (source_id, error_type, message, context, severity)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (source_id, error_type, message, Jsonb(context or {}), severity),
                )
                return cur.fetchone()["id"]

    def source_errors(self, source_id: int, limit: int = 50) -> List[SourceError]:
        """Most recent error log entries of a source, newest first."""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT * FROM source_errors
                    WHERE source_id = %s
                    ORDER BY created_at DESC, id DESC
                    LIMIT %s
                    """,
                    (source_id, limit),
                )
                return [SourceError.model_validate(row) for row in cur.fetchall()]

    def sync_sources(self, sources: List[SourceConfig]) -> Dict[str, int]:
        """
        Sync sources from config to database by name.

        Existing rows keep their adaptive fetch interval, clamped to the new
        bounds.

        Returns:
            Mapping of source name to database ID
        """
        source_map = {}
        validated = []
        for config in sources:
            try:
                source = config.to_source()
            except ValidationError as e:
                raise ConfigError(f"Invalid source '{config.name}': {e}") from e
            validate_adapter_config(source.type, source.adapter_config)
            validated.append(source)

        with self.pool.connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    for source in validated:
                        cur.execute(
                            """
                            INSERT INTO sources (
                                name, type, url, adapter_config, content_types, active,
                                fetch_interval, min_interval, max_interval,
                                quota_max_items, quota_max_size, next_fetch_at
                            )
                            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                            ON CONFLICT (name) DO UPDATE SET
                                type = EXCLUDED.type,
                                url = EXCLUDED.url,
                                adapter_config = EXCLUDED.adapter_config,
                                content_types = EXCLUDED.content_types,
                                active = EXCLUDED.active,
                                min_interval = EXCLUDED.min_interval,
                                max_interval = EXCLUDED.max_interval,
                                fetch_interval = LEAST(
                                    GREATEST(sources.fetch_interval, EXCLUDED.min_interval),
                                    EXCLUDED.max_interval
                                ),
                                quota_max_items = EXCLUDED.quota_max_items,
                                quota_max_size = EXCLUDED.quota_max_size
                            RETURNING id
                            """,
                            (
                                source.name,
                                source.type.value,
                                source.url,
                                Jsonb(source.adapter_config),
                                Jsonb(source.content_types),
                                source.active,
                                source.fetch_interval,
                                source.min_interval,
                                source.max_interval,
                                source.quota_max_items,
                                source.quota_max_size,
                                _utcnow() + timedelta(seconds=source.fetch_interval),
                            ),
                        )
                        source_map[source.name] = cur.fetchone()["id"]

        logger.info("sources_synced", count=len(source_map))
        return source_map
