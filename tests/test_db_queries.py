"""SQL-level tests for the database layer that run without Postgres.

A recording pool stands in for psycopg_pool and answers statements from a
responder, so the queries, parameters and transaction boundaries can be
checked in every test run. test_db_integration.py covers the same paths
against a real database.
"""

from datetime import datetime, timedelta, timezone

import pytest

from contentcrawl.db import ContentStorage, SourceRegistry
from contentcrawl.errors import StorageError
from contentcrawl.models import StoredContent, content_fingerprint

from conftest import RecordingPool, make_source

NOW = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)


def _content(title: str = "Title", content: str = "Body", **kwargs) -> StoredContent:
    return StoredContent(title=title, content=content, fingerprint=content_fingerprint(title, content), **kwargs)


class TestListDue:
    """Tests for the list_due query."""

    def test_only_active_due_sources(self) -> None:
        pool = RecordingPool()
        SourceRegistry(pool).list_due(limit=10, now=NOW)

        ((sql, params),) = pool.statements("SELECT * FROM sources")
        assert "WHERE active = TRUE AND (next_fetch_at IS NULL OR next_fetch_at <= %s)" in sql
        assert sql.endswith("ORDER BY next_fetch_at ASC NULLS FIRST, id ASC LIMIT %s")
        assert params == [NOW, 10]

    def test_filters_apply_before_limit(self) -> None:
        pool = RecordingPool()
        SourceRegistry(pool).list_due(limit=5, now=NOW, source_ids=[3, 1], source_types=["api"])

        ((sql, params),) = pool.statements("SELECT * FROM sources")
        where = sql[sql.index("WHERE") : sql.index("ORDER BY")]
        assert "active = TRUE" in where
        assert "id = ANY(%s)" in where
        assert "type = ANY(%s)" in where
        assert params == [NOW, [3, 1], ["api"], 5]

    def test_rows_become_sources(self) -> None:
        row = make_source(source_id=4, name="Wire").model_dump()
        pool = RecordingPool(lambda sql, params: [row])
        (source,) = SourceRegistry(pool).list_due(now=NOW)

        assert source.id == 4
        assert source.name == "Wire"


class TestRecordOutcome:
    """Tests for record_outcome."""

    @staticmethod
    def _pool(fetch_interval: int, min_interval: int, max_interval: int) -> RecordingPool:
        def respond(sql, params):
            if "FOR UPDATE" in sql:
                return [{"fetch_interval": fetch_interval, "min_interval": min_interval, "max_interval": max_interval}]
            if sql.startswith("UPDATE sources"):
                interval, last, next_at, source_id = params
                row = make_source(source_id=source_id, min_interval=min_interval, max_interval=max_interval)
                return [
                    row.model_copy(
                        update={"fetch_interval": interval, "last_fetch_at": last, "next_fetch_at": next_at}
                    ).model_dump()
                ]
            return []

        return RecordingPool(respond)

    @pytest.mark.parametrize(
        "current,success,new_items",
        [
            (1800, True, 50),
            (1900, True, 6),
            (86400, True, 0),
            (80000, False, 0),
            (3600, True, 3),
        ],
    )
    def test_interval_stays_within_bounds(self, current, success, new_items) -> None:
        pool = self._pool(current, 1800, 86400)
        registry = SourceRegistry(pool)
        source = registry.record_outcome(1, success=success, items_found=new_items, new_items=new_items, now=NOW)

        assert 1800 <= source.fetch_interval <= 86400
        assert source.last_fetch_at == NOW
        assert source.next_fetch_at == NOW + timedelta(seconds=source.fetch_interval)

    def test_row_is_locked_and_written_in_one_transaction(self) -> None:
        pool = self._pool(3600, 1800, 86400)
        SourceRegistry(pool).record_outcome(1, success=False, items_found=0, new_items=0, now=NOW)

        select, update = pool.executed
        assert select[0].endswith("FOR UPDATE")
        assert update[0].startswith("UPDATE sources SET fetch_interval = %s, last_fetch_at = %s, next_fetch_at = %s")
        assert update[1] == (5400, NOW, NOW + timedelta(seconds=5400), 1)
        assert pool.transactions == 1
        assert pool.committed == pool.executed

    def test_missing_source(self) -> None:
        pool = RecordingPool()
        assert SourceRegistry(pool).record_outcome(9, success=True, items_found=0, new_items=0, now=NOW) is None
        assert len(pool.executed) == 1


class TestErrorLog:
    """Tests for the per-source error log queries."""

    def test_record_error(self) -> None:
        pool = RecordingPool(lambda sql, params: [{"id": 11}])
        entry_id = SourceRegistry(pool).record_error(3, "fetch", "HTTP 500", {"attempt": 2}, severity="warning")

        ((sql, params),) = pool.executed
        assert entry_id == 11
        assert sql.startswith("INSERT INTO source_errors")
        assert params[:3] == (3, "fetch", "HTTP 500")
        assert params[3].obj == {"attempt": 2}
        assert params[4] == "warning"

    def test_source_errors_newest_first(self) -> None:
        rows = [
            {"id": 2, "source_id": 3, "error_type": "parse", "message": "bad", "context": {}, "severity": "error"},
            {"id": 1, "source_id": 3, "error_type": "fetch", "message": "down", "context": {}, "severity": "error"},
        ]
        pool = RecordingPool(lambda sql, params: rows)
        entries = SourceRegistry(pool).source_errors(3, limit=2)

        ((sql, params),) = pool.executed
        assert "ORDER BY created_at DESC, id DESC" in sql
        assert params == (3, 2)
        assert [e.error_type for e in entries] == ["parse", "fetch"]


class TestContentUpsert:
    """Tests for ContentStorage.upsert."""

    @staticmethod
    def _pool() -> RecordingPool:
        fingerprints = {}

        def respond(sql, params):
            if sql.startswith("INSERT INTO contents"):
                fingerprint = params[6]
                if fingerprint in fingerprints:
                    return []
                fingerprints[fingerprint] = 7
                return [{"id": 7}]
            if sql.startswith("UPDATE contents"):
                return [{"id": fingerprints[params[3]]}]
            return []

        return RecordingPool(respond)

    def test_repeat_upsert_is_idempotent(self) -> None:
        pool = self._pool()
        storage = ContentStorage(pool)

        assert storage.upsert(_content(quality_score=60)) == (7, True)
        assert storage.upsert(_content(" title ", "BODY", quality_score=80)) == (7, False)

        inserts = pool.statements("INSERT INTO contents")
        assert all("ON CONFLICT (fingerprint) DO NOTHING" in sql for sql, _ in inserts)
        index_writes = pool.statements("INSERT INTO content_index")
        assert [params for _, params in index_writes] == [
            (7, content_fingerprint("Title", "Body"), 60),
            (7, content_fingerprint("Title", "Body"), 80),
        ]
        assert "ON CONFLICT (content_id) DO UPDATE" in index_writes[0][0]

    def test_index_failure_rolls_back_content_row(self) -> None:
        pool = self._pool()
        pool.fail_on = "INSERT INTO content_index"

        with pytest.raises(StorageError, match="Failed to upsert"):
            ContentStorage(pool).upsert(_content())

        assert pool.statements("INSERT INTO contents")
        assert pool.rollbacks == 1
        assert pool.committed == []

    def test_store_index_failure_rolls_back(self) -> None:
        pool = self._pool()
        pool.fail_on = "INSERT INTO content_index"

        with pytest.raises(StorageError, match="Failed to store"):
            ContentStorage(pool).store(_content())

        assert pool.committed == []
