"""Content storage with fingerprint dedup index."""

from typing import Any, Dict, List, Optional, Tuple

import psycopg
import structlog
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from ..errors import StorageError
from ..models import ContentQuery, IndexEntry, StoredContent, content_fingerprint

logger = structlog.get_logger()

CONTENT_COLUMNS = (
    "type",
    "title",
    "content",
    "summary",
    "source_url",
    "source_id",
    "fingerprint",
    "quality_score",
    "status",
    "publish_date",
    "extra",
)
UPDATABLE_COLUMNS = tuple(c for c in CONTENT_COLUMNS if c != "source_id")

UPSERT_INDEX_SQL = """
    INSERT INTO content_index (content_id, fingerprint, quality_score)
    VALUES (%s, %s, %s)
    ON CONFLICT (content_id) DO UPDATE SET
        fingerprint = EXCLUDED.fingerprint,
        quality_score = EXCLUDED.quality_score,
        updated_at = CURRENT_TIMESTAMP
"""


def _adapt(column: str, value: Any) -> Any:
    if column == "extra":
        return Jsonb(value or {})
    if column == "status" and value is not None:
        return getattr(value, "value", value)
    return value


def _column_values(item: StoredContent) -> List[Any]:
    return [_adapt(column, getattr(item, column)) for column in CONTENT_COLUMNS]


def _where_clause(query: ContentQuery) -> Tuple[str, List[Any]]:
    conditions = []
    params: List[Any] = []
    if query.type:
        conditions.append("type = %s")
        params.append(query.type)
    if query.status:
        conditions.append("status = %s")
        params.append(query.status.value)
    if query.source_id is not None:
        conditions.append("source_id = %s")
        params.append(query.source_id)
    if query.min_quality is not None:
        conditions.append("quality_score >= %s")
        params.append(query.min_quality)
    if query.search:
        conditions.append("(title ILIKE %s OR content ILIKE %s)")
        pattern = f"%{query.search}%"
        params.extend([pattern, pattern])
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    return where, params


class ContentStorage:
    """Persist processed content and keep the fingerprint index in step."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Initialize storage on a connection pool."""
        self.pool = pool

    def store(self, item: StoredContent) -> int:
        """
        Insert a new content row and its index entry.

        Raises:
            StorageError: If either write fails, including duplicate fingerprints.
        """
        placeholders = ", ".join(["%s"] * len(CONTENT_COLUMNS))
        try:
            with self.pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        cur.execute(
                            f"INSERT INTO contents ({', '.join(CONTENT_COLUMNS)}) "
                            f"VALUES ({placeholders}) RETURNING id",
                            _column_values(item),
                        )
                        content_id = cur.fetchone()["id"]
                        cur.execute(UPSERT_INDEX_SQL, (content_id, item.fingerprint, item.quality_score))
        except psycopg.Error as e:
            raise StorageError(f"Failed to store content '{item.title}': {e}") from e
        return content_id

    def upsert(self, item: StoredContent) -> Tuple[int, bool]:
        """
        Insert content, or refresh the existing row with the same fingerprint.

        On a fingerprint match the quality score, summary and extra metadata
        of the existing row are updated. Content and index are written in one
        transaction.

        Returns:
            (content_id, is_new)

        Raises:
            StorageError: If the unit fails and was rolled back.
        """
        placeholders = ", ".join(["%s"] * len(CONTENT_COLUMNS))
        try:
            with self.pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        cur.execute(
                            f"INSERT INTO contents ({', '.join(CONTENT_COLUMNS)}) "
                            f"VALUES ({placeholders}) "
                            "ON CONFLICT (fingerprint) DO NOTHING RETURNING id",
                            _column_values(item),
                        )
                        row = cur.fetchone()
                        is_new = row is not None
                        if is_new:
                            content_id = row["id"]
                        else:
                            cur.execute(
                                """
                                UPDATE contents
                                SET quality_score = %s,
                                    summary = COALESCE(NULLIF(%s, ''), summary),
                                    extra = extra || %s
                                WHERE fingerprint = %s
                                RETURNING id
                                """,
                                (item.quality_score, item.summary, Jsonb(item.extra or {}), item.fingerprint),
                            )
                            content_id = cur.fetchone()["id"]
                        cur.execute(UPSERT_INDEX_SQL, (content_id, item.fingerprint, item.quality_score))
        except psycopg.Error as e:
            raise StorageError(f"Failed to upsert content '{item.title}': {e}") from e

        logger.debug("content_upserted", content_id=content_id, is_new=is_new, fingerprint=item.fingerprint[:12])
        return content_id, is_new

    def update(self, content_id: int, patch: Dict[str, Any]) -> Optional[int]:
        """
        Update fields of a content row.

        The fingerprint is recomputed when title or content change, and the
        index entry is rewritten in the same transaction.

        Returns:
            The content ID, or None when the row does not exist.
        """
        unknown = set(patch) - set(UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown content fields: {', '.join(sorted(unknown))}")
        if not patch:
            return content_id if self.get(content_id) else None

        changes = dict(patch)
        try:
            with self.pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        if ("title" in changes or "content" in changes) and "fingerprint" not in changes:
                            cur.execute("SELECT title, content FROM contents WHERE id = %s", (content_id,))
                            current = cur.fetchone()
                            if current is None:
                                return None
                            changes["fingerprint"] = content_fingerprint(
                                changes.get("title", current["title"]),
                                changes.get("content", current["content"]),
                            )

                        columns = list(changes)
                        assignments = ", ".join(f"{column} = %s" for column in columns)
                        cur.execute(
                            f"UPDATE contents SET {assignments} WHERE id = %s "
                            "RETURNING id, fingerprint, quality_score",
                            [*(_adapt(c, changes[c]) for c in columns), content_id],
                        )
                        row = cur.fetchone()
                        if row is None:
                            return None
                        if "fingerprint" in changes or "quality_score" in changes:
                            cur.execute(UPSERT_INDEX_SQL, (row["id"], row["fingerprint"], row["quality_score"]))
        except psycopg.Error as e:
            raise StorageError(f"Failed to update content {content_id}: {e}") from e
        return row["id"]

    def get(self, content_id: int) -> Optional[StoredContent]:
        """Get content by ID."""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT * FROM contents WHERE id = %s", (content_id,))
                row = cur.fetchone()
        return StoredContent.model_validate(row) if row else None

    def find_by_fingerprint(self, fingerprint: str) -> Optional[StoredContent]:
        """Look up content through the fingerprint index."""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT c.* FROM content_index i
                    JOIN contents c ON c.id = i.content_id
                    WHERE i.fingerprint = %s
                    """,
                    (fingerprint,),
                )
                row = cur.fetchone()
        return StoredContent.model_validate(row) if row else None

    def get_index_entry(self, content_id: int) -> Optional[IndexEntry]:
        """Get the index row of a content item."""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT * FROM content_index WHERE content_id = %s", (content_id,))
                row = cur.fetchone()
        return IndexEntry.model_validate(row) if row else None

    def query(self, query: Optional[ContentQuery] = None) -> List[StoredContent]:
        """Filtered, ordered and paged content listing."""
        query = query or ContentQuery()
        where, params = _where_clause(query)
        # order_by and order are restricted to allow-listed values by ContentQuery
        sql = (
            f"SELECT * FROM contents {where} "
            f"ORDER BY {query.order_by} {query.order}, id {query.order} "
            "LIMIT %s OFFSET %s"
        )
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, [*params, query.limit, query.offset])
                return [StoredContent.model_validate(row) for row in cur.fetchall()]

    def count(self, query: Optional[ContentQuery] = None) -> int:
        """Count content matching the filters, ignoring paging."""
        where, params = _where_clause(query or ContentQuery())
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT COUNT(*) AS total FROM contents {where}", params)
                return cur.fetchone()["total"]

    def delete(self, content_id: int) -> bool:
        """Delete content, removing its index entry first."""
        try:
            with self.pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        cur.execute("DELETE FROM content_index WHERE content_id = %s", (content_id,))
                        cur.execute("DELETE FROM contents WHERE id = %s RETURNING id", (content_id,))
                        return cur.fetchone() is not None
        except psycopg.Error as e:
            raise StorageError(f"Failed to delete content {content_id}: {e}") from e
