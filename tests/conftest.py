"""Shared fixtures and in-memory collaborators for crawler tests."""

from collections import deque
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Tuple

import httpx
import psycopg
import pytest

from contentcrawl.ingestion.base import AdapterRegistry, SourceAdapter
from contentcrawl.ingestion.dates import parse_date
from contentcrawl.ingestion.models import NormalizedItem
from contentcrawl.models import MetricsWindow, RunMetrics, Source, SourceMetrics, SourceType, StoredContent
from contentcrawl.pipeline.schedule import next_source_interval


def make_source(source_id: int = 1, name: str = "Example", source_type: str = "feed", **kwargs: Any) -> Source:
    """Build a saved source with sensible defaults."""
    data = {
        "id": source_id,
        "name": name,
        "type": SourceType(source_type),
        "url": kwargs.pop("url", f"https://{name.lower().replace(' ', '-')}.example.com/feed"),
    }
    data.update(kwargs)
    return Source(**data)


def make_item(title: str = "Title", content: str = "Body", url: str = "https://example.com/a", **kwargs: Any) -> NormalizedItem:
    """Build a normalized item."""
    return NormalizedItem(
        title=title,
        content=content,
        url=url,
        source_url=kwargs.pop("source_url", "https://example.com/feed"),
        **kwargs,
    )


def mock_transport(routes: Dict[str, Any], calls: Optional[List[httpx.Request]] = None) -> httpx.MockTransport:
    """
    Build a MockTransport from a URL -> response map.

    Keys are matched against the request URL without its query string. Values
    are httpx.Response objects or callables taking the request.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        key = str(request.url).split("?", 1)[0]
        route = routes.get(key)
        if route is None:
            return httpx.Response(404, text="not found")
        return route(request) if callable(route) else route

    return httpx.MockTransport(handler)


class FakeRegistry:
    """In-memory stand-in for SourceRegistry."""

    def __init__(self, sources: List[Source]) -> None:
        self.sources = {s.id: s for s in sources}
        self.outcomes: List[Tuple[int, bool, int, int]] = []
        self.errors: List[Tuple[int, str, str, Dict[str, Any], str]] = []
        self.list_due_error: Optional[Exception] = None

    def list_due(
        self,
        limit: int = 50,
        now: Optional[datetime] = None,
        source_ids: Optional[List[int]] = None,
        source_types: Optional[List[str]] = None,
    ) -> List[Source]:
        if self.list_due_error:
            raise self.list_due_error
        now = now or datetime.now(timezone.utc)
        due = [
            s for s in self.sources.values()
            if s.active and (s.next_fetch_at is None or s.next_fetch_at <= now)
            and (not source_ids or s.id in source_ids)
            and (not source_types or s.type.value in source_types)
        ]
        due.sort(key=lambda s: (s.next_fetch_at is not None, s.next_fetch_at or now, s.id))
        return due[:limit]

    def get(self, source_id: int) -> Optional[Source]:
        return self.sources.get(source_id)

    def record_outcome(self, source_id: int, success: bool, items_found: int, new_items: int) -> Source:
        self.outcomes.append((source_id, success, items_found, new_items))
        source = self.sources[source_id]
        interval = next_source_interval(
            source.fetch_interval, source.min_interval, source.max_interval, success, new_items
        )
        now = datetime.now(timezone.utc)
        updated = source.model_copy(
            update={
                "fetch_interval": interval,
                "last_fetch_at": now,
                "next_fetch_at": now + timedelta(seconds=interval),
            }
        )
        self.sources[source_id] = updated
        return updated

    def record_error(
        self,
        source_id: int,
        error_type: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        severity: str = "error",
    ) -> int:
        self.errors.append((source_id, error_type, message, context or {}, severity))
        return len(self.errors)


class FakeStorage:
    """In-memory stand-in for ContentStorage keyed by fingerprint."""

    def __init__(self, fail_titles: Tuple[str, ...] = ()) -> None:
        self.rows: Dict[str, Tuple[int, StoredContent]] = {}
        self.fail_titles = fail_titles

    def upsert(self, item: StoredContent) -> Tuple[int, bool]:
        if item.title in self.fail_titles:
            raise RuntimeError(f"index write failed for {item.title}")
        if item.fingerprint in self.rows:
            content_id, _ = self.rows[item.fingerprint]
            self.rows[item.fingerprint] = (content_id, item)
            return content_id, False
        content_id = len(self.rows) + 1
        self.rows[item.fingerprint] = (content_id, item)
        return content_id, True


class FakeMetrics:
    """Records metrics and serves a configurable window aggregate."""

    def __init__(self, window: Optional[MetricsWindow] = None) -> None:
        self.window = window or MetricsWindow()
        self.runs: List[Tuple[RunMetrics, List[SourceMetrics]]] = []

    def record_run(self, run: RunMetrics, sources: List[SourceMetrics]) -> int:
        self.runs.append((run, sources))
        return len(self.runs)

    def window_aggregate(self, days: int = 7) -> MetricsWindow:
        return self.window


class FakeState:
    """Dict-backed crawler state."""

    def __init__(self) -> None:
        self.values: Dict[str, Optional[str]] = {}

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def set(self, key: str, value: Optional[str]) -> None:
        self.values[key] = value

    def get_datetime(self, key: str) -> Optional[datetime]:
        return parse_date(self.values.get(key))

    def set_datetime(self, key: str, value: datetime) -> None:
        self.values[key] = value.isoformat()


Outcome = Any


class RecordingCursor:
    """Cursor that logs statements and answers from the pool's responder."""

    def __init__(self, conn: "RecordingConnection") -> None:
        self.conn = conn
        self.rows: List[Dict[str, Any]] = []

    def __enter__(self) -> "RecordingCursor":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None

    def execute(self, sql: str, params: Any = None) -> None:
        pool = self.conn.pool
        statement = (" ".join(sql.split()), params)
        pool.executed.append(statement)
        if pool.fail_on and pool.fail_on in statement[0]:
            raise psycopg.OperationalError(f"failed: {pool.fail_on}")
        self.conn.pending.append(statement)
        self.rows = list(pool.respond(statement[0], params) or [])

    def fetchone(self) -> Optional[Dict[str, Any]]:
        return self.rows[0] if self.rows else None

    def fetchall(self) -> List[Dict[str, Any]]:
        return self.rows


class RecordingConnection:
    """Connection whose statements only count as committed when the transaction block exits cleanly."""

    def __init__(self, pool: "RecordingPool") -> None:
        self.pool = pool
        self.pending: List[Tuple[str, Any]] = []

    @contextmanager
    def transaction(self) -> Iterator[None]:
        self.pool.transactions += 1
        try:
            yield
        except BaseException:
            self.pending.clear()
            self.pool.rollbacks += 1
            raise
        self.pool.committed.extend(self.pending)
        self.pending.clear()

    def cursor(self) -> RecordingCursor:
        return RecordingCursor(self)


class RecordingPool:
    """
    Stand-in for psycopg_pool.ConnectionPool that records SQL.

    ``responder(sql, params)`` returns the dict rows a statement yields.
    Statements containing ``fail_on`` raise a psycopg error.
    """

    def __init__(self, responder: Optional[Callable[[str, Any], List[Dict[str, Any]]]] = None) -> None:
        self.responder = responder
        self.fail_on: Optional[str] = None
        self.executed: List[Tuple[str, Any]] = []
        self.committed: List[Tuple[str, Any]] = []
        self.transactions = 0
        self.rollbacks = 0

    def respond(self, sql: str, params: Any) -> List[Dict[str, Any]]:
        return self.responder(sql, params) if self.responder else []

    @contextmanager
    def connection(self) -> Iterator[RecordingConnection]:
        conn = RecordingConnection(self)
        yield conn
        # Autocommit outside transaction blocks
        self.committed.extend(conn.pending)

    def statements(self, prefix: str) -> List[Tuple[str, Any]]:
        """Executed statements starting with prefix."""
        return [s for s in self.executed if s[0].startswith(prefix)]


class ScriptedAdapter(SourceAdapter):
    """Adapter replaying scripted outcomes per source name."""

    def __init__(self, source_type: str = "feed", script: Optional[Dict[str, List[Outcome]]] = None) -> None:
        super().__init__()
        self.source_type = source_type
        self.script: Dict[str, Deque[Outcome]] = {k: deque(v) for k, v in (script or {}).items()}
        self.calls: List[str] = []
        self.on_fetch: Optional[Callable[[Source], Any]] = None

    async def fetch(self, source: Source) -> List[NormalizedItem]:
        self.calls.append(source.name)
        if self.on_fetch is not None:
            await self.on_fetch(source)
        queue = self.script.get(source.name)
        outcome = queue.popleft() if queue else []
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def adapter_registry() -> Callable[..., AdapterRegistry]:
    def build(*adapters: SourceAdapter) -> AdapterRegistry:
        registry = AdapterRegistry()
        for adapter in adapters:
            registry.register(adapter)
        return registry

    return build
