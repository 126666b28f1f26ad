"""Crawl orchestrator that selects due sources, fetches, stores and reschedules."""

import asyncio
import threading
import time
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Optional, Sequence

import pendulum
import structlog

from ..config import CrawlerConfig
from ..db.state import LAST_ERROR, LAST_RUN_AT, NEXT_RUN_AT, RECURRENCE
from ..errors import CrawlerError, CrawlSystemError, error_category
from ..ingestion.base import AdapterRegistry
from ..ingestion.models import NormalizedItem
from ..ingestion.urls import host_of
from ..models import RunMetrics, Source, SourceMetrics
from .observers import CrawlObserver
from .processor import ContentProcessor, DefaultContentProcessor
from .results import CrawlerPhase, RunLogEntry, RunResult, RunStatus, SourceResult
from .schedule import METRICS_WINDOW_DAYS, compute_next_run_interval, recurrence_seconds

logger = structlog.get_logger()

ALREADY_RUNNING = "Crawler is already running"


class CrawlOrchestrator:
    """
    Drive crawl runs over the source registry.

    A run lists the due sources, crawls them concurrently (bounded globally
    and per host), retries the sources that reported errors, stores metrics
    and schedules the next global run. Only one run or single-source crawl
    executes at a time per orchestrator.
    """

    def __init__(
        self,
        registry,
        storage,
        metrics,
        state,
        adapters: AdapterRegistry,
        settings: Optional[CrawlerConfig] = None,
        processor: Optional[ContentProcessor] = None,
        observers: Optional[Sequence[CrawlObserver]] = None,
    ) -> None:
        """Initialize orchestrator with its collaborators."""
        self.registry = registry
        self.storage = storage
        self.metrics = metrics
        self.state = state
        self.adapters = adapters
        self.settings = settings or CrawlerConfig()
        self.processor = processor or DefaultContentProcessor()
        self.observers: List[CrawlObserver] = list(observers or [])

        self._lock = threading.Lock()
        self._phase = CrawlerPhase.IDLE
        self._run_log: Deque[RunLogEntry] = deque(maxlen=self.settings.run_log_size)

    @property
    def phase(self) -> CrawlerPhase:
        """Current lifecycle phase."""
        return self._phase

    @property
    def is_running(self) -> bool:
        """Whether a run is in progress."""
        return self._phase != CrawlerPhase.IDLE

    def add_observer(self, observer: CrawlObserver) -> None:
        """Register an observer for crawl hooks."""
        self.observers.append(observer)

    def _log(self, level: str, event: str, exc_info: bool = False, **kwargs) -> None:
        details = " ".join(f"{k}={v}" for k, v in kwargs.items())
        self._run_log.append(
            RunLogEntry(time=pendulum.now("UTC"), level=level, message=f"{event} {details}".strip())
        )
        if exc_info:
            kwargs["exc_info"] = True
        getattr(logger, level)(event, **kwargs)

    def recent_log(self, limit: int = 50) -> List[RunLogEntry]:
        """Most recent run log entries, oldest first."""
        entries = list(self._run_log)
        return entries[-limit:] if limit else entries

    def run(
        self,
        source_ids: Optional[Sequence[int]] = None,
        source_types: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        retry_attempts: Optional[int] = None,
    ) -> RunResult:
        """Synchronous wrapper for run_async."""
        return asyncio.run(self.run_async(source_ids, source_types, limit, retry_attempts))

    async def run_async(
        self,
        source_ids: Optional[Sequence[int]] = None,
        source_types: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        retry_attempts: Optional[int] = None,
    ) -> RunResult:
        """
        Execute one crawl run.

        Never raises: unexpected failures are logged and returned as a failed
        RunResult. A call while another run is active returns immediately.
        """
        if not self._lock.acquire(blocking=False):
            logger.warning("run_rejected", reason=ALREADY_RUNNING)
            return RunResult(success=False, message=ALREADY_RUNNING)

        started_at = pendulum.now("UTC")
        start_time = time.monotonic()
        try:
            self._phase = CrawlerPhase.RUNNING
            result = await self._execute(source_ids, source_types, limit, retry_attempts, started_at, start_time)
        except Exception as e:
            # Anything reaching here is a system failure, not a source failure
            self._log("critical", "run_failed", exc_info=True, error=str(e))
            await self._record_error(str(e))
            result = RunResult(
                success=False,
                message=f"Crawl failed: {e}",
                started_at=started_at,
                finished_at=pendulum.now("UTC"),
                duration_seconds=time.monotonic() - start_time,
            )
        finally:
            self._phase = CrawlerPhase.IDLE
            self._lock.release()

        for observer in self.observers:
            try:
                observer.after_run(result)
            except Exception as e:
                logger.error("observer_failed", hook="after_run", observer=type(observer).__name__, error=str(e))
        return result

    async def _execute(
        self,
        source_ids: Optional[Sequence[int]],
        source_types: Optional[Sequence[str]],
        limit: Optional[int],
        retry_attempts: Optional[int],
        started_at: datetime,
        start_time: float,
    ) -> RunResult:
        try:
            sources = await asyncio.to_thread(
                self.registry.list_due,
                limit or self.settings.due_limit,
                source_ids=source_ids,
                source_types=[getattr(t, "value", t) for t in source_types] if source_types else None,
            )
        except Exception as e:
            raise CrawlSystemError(str(e)) from e

        self._log("info", "run_started", due_sources=len(sources))

        results: Dict[int, SourceResult] = await self._crawl_pass(sources, attempt=1)

        attempts = self.settings.retry_attempts if retry_attempts is None else retry_attempts
        for attempt in range(2, attempts + 2):
            failed = [s for s in sources if results[s.id].errors]
            if not failed:
                break
            self._phase = CrawlerPhase.RETRYING
            self._log("info", "retrying_sources", attempt=attempt, sources=len(failed))
            results.update(await self._crawl_pass(failed, attempt=attempt))

        final = [results[s.id] for s in sources]
        result = RunResult.from_sources(
            final,
            started_at=started_at,
            finished_at=pendulum.now("UTC"),
            duration_seconds=time.monotonic() - start_time,
        )

        try:
            await asyncio.to_thread(self._persist_metrics, result)
            result.next_run_at = await asyncio.to_thread(self.schedule_next_run)
            await asyncio.to_thread(self.state.set_datetime, LAST_RUN_AT, started_at)
        except Exception as e:
            # Per-source results stay on the failed run
            self._log("critical", "run_finalize_failed", exc_info=True, error=str(e))
            await self._record_error(str(e))
            result.success = False
            result.message = f"Crawl failed: {e}"
            return result

        self._log(
            "info",
            "run_completed",
            sources=result.sources_processed,
            items_found=result.items_found,
            items_processed=result.items_processed,
            new_items=result.new_items,
            errors=result.errors,
            duration=round(result.duration_seconds, 2),
        )
        return result

    async def _crawl_pass(self, sources: List[Source], attempt: int) -> Dict[int, SourceResult]:
        semaphore = asyncio.Semaphore(self.settings.max_concurrent)
        host_semaphores: Dict[str, asyncio.Semaphore] = {}

        async def crawl_with_limits(source: Source) -> SourceResult:
            host = host_of(source.url)
            if host not in host_semaphores:
                host_semaphores[host] = asyncio.Semaphore(self.settings.per_host_limit)
            async with semaphore:
                async with host_semaphores[host]:
                    try:
                        return await self._crawl_source(source, attempt)
                    except Exception as e:
                        self._log("error", "source_crawl_crashed", exc_info=True, source_id=source.id, error=repr(e))
                        return SourceResult(
                            source_id=source.id,
                            source_name=source.name,
                            source_type=source.type.value,
                            attempt=attempt,
                            errors=[f"Unexpected error: {e}"],
                        )

        results = await asyncio.gather(*(crawl_with_limits(s) for s in sources))
        return {source.id: result for source, result in zip(sources, results)}

    async def _crawl_source(self, source: Source, attempt: int = 1) -> SourceResult:
        start_time = time.monotonic()
        result = SourceResult(
            source_id=source.id,
            source_name=source.name,
            source_type=source.type.value,
            attempt=attempt,
        )

        items: List[NormalizedItem] = []
        budget = self.settings.fetch_timeout
        try:
            adapter = self.adapters.get(source.type)
            for observer in self.observers:
                observer.before_fetch(source)
            items = await asyncio.wait_for(adapter.fetch(source), timeout=budget)
            result.success = True
        except asyncio.TimeoutError:
            message = f"Fetch exceeded {budget:g}s budget"
            result.errors.append(message)
            self._log("warning", "source_failed", source_id=source.id, source=source.name, error=message)
            await self._record_source_error(source, "fetch", message, attempt)
        except CrawlerError as e:
            result.errors.append(str(e))
            self._log("warning", "source_failed", source_id=source.id, source=source.name, error=str(e))
            status = {"status_code": e.status_code} if getattr(e, "status_code", None) else {}
            await self._record_source_error(source, error_category(e), str(e), attempt, **status)
        except Exception as e:
            result.errors.append(f"Unexpected error: {e}")
            self._log("error", "source_failed", source_id=source.id, source=source.name, error=repr(e))
            await self._record_source_error(source, error_category(e), repr(e), attempt)

        if result.success:
            result.items_found = len(items)
            for item in self._apply_quotas(source, items, result):
                await self._store_item(source, item, result, attempt)

        try:
            await asyncio.to_thread(
                self.registry.record_outcome,
                source.id,
                result.success,
                result.items_found,
                result.new_items,
            )
        except Exception as e:
            result.errors.append(f"Reschedule failed: {e}")
            self._log("error", "source_reschedule_failed", source_id=source.id, source=source.name, error=str(e))

        result.duration_seconds = time.monotonic() - start_time
        self._log(
            "info",
            "source_crawled",
            source_id=source.id,
            source=source.name,
            attempt=attempt,
            success=result.success,
            items_found=result.items_found,
            new_items=result.new_items,
            errors=result.error_count,
        )
        for observer in self.observers:
            try:
                observer.after_source(source, result)
            except Exception as e:
                logger.error("observer_failed", hook="after_source", observer=type(observer).__name__, error=str(e))
        return result

    def _apply_quotas(self, source: Source, items: List[NormalizedItem], result: SourceResult) -> List[NormalizedItem]:
        if source.quota_max_items is not None and len(items) > source.quota_max_items:
            result.skipped += len(items) - source.quota_max_items
            items = items[: source.quota_max_items]
        if source.quota_max_size is None:
            return items

        kept = []
        for item in items:
            if item.content_size > source.quota_max_size:
                result.skipped += 1
                self._log(
                    "info",
                    "item_over_quota",
                    source_id=source.id,
                    url=item.url,
                    size=item.content_size,
                    quota=source.quota_max_size,
                )
                continue
            kept.append(item)
        return kept

    async def _store_item(self, source: Source, item: NormalizedItem, result: SourceResult, attempt: int = 1) -> None:
        item = item.model_copy(update={"source_id": source.id, "source_name": source.name})
        try:
            processed = self.processor.process(item)
            if processed is None:
                result.skipped += 1
                return
            content_id, is_new = await asyncio.to_thread(self.storage.upsert, processed)
            result.items_processed += 1
            if is_new:
                result.new_items += 1
            for observer in self.observers:
                observer.after_item(source, item, content_id, is_new)
        except Exception as e:
            # Item failures stay inside the source
            result.errors.append(f"Item '{item.title}': {e}")
            self._log("warning", "item_failed", source_id=source.id, url=item.url, error=str(e))
            await self._record_source_error(
                source, error_category(e), str(e), attempt, severity="warning", url=item.url
            )

    def _persist_metrics(self, result: RunResult) -> None:
        run = RunMetrics(
            sources_processed=result.sources_processed,
            items_found=result.items_found,
            items_processed=result.items_processed,
            errors=result.errors,
            duration_seconds=result.duration_seconds,
        )
        per_source = [
            SourceMetrics(
                source_id=r.source_id,
                items_found=r.items_found,
                items_processed=r.items_processed,
                errors=r.error_count,
                duration_seconds=r.duration_seconds,
            )
            for r in result.sources
        ]
        self.metrics.record_run(run, per_source)

    async def _record_source_error(
        self,
        source: Source,
        error_type: str,
        message: str,
        attempt: int,
        severity: str = "error",
        **context: Any,
    ) -> None:
        context.setdefault("url", source.url)
        context["attempt"] = attempt
        try:
            await asyncio.to_thread(self.registry.record_error, source.id, error_type, message, context, severity)
        except Exception as e:
            logger.error("source_error_log_failed", source_id=source.id, error=str(e))

    async def _record_error(self, message: str) -> None:
        try:
            await asyncio.to_thread(self.state.set, LAST_ERROR, message)
        except Exception as e:
            logger.error("state_write_failed", key=LAST_ERROR, error=str(e))

    def schedule_next_run(self) -> datetime:
        """
        Compute and persist the next global run time.

        The base cadence comes from the stored recurrence (or the configured
        default) and is adjusted by the last seven days of source metrics.
        """
        recurrence = self.state.get(RECURRENCE) or self.settings.recurrence
        base = recurrence_seconds(recurrence)
        window = self.metrics.window_aggregate(METRICS_WINDOW_DAYS)
        interval = compute_next_run_interval(base, window)
        next_run = pendulum.now("UTC") + timedelta(seconds=interval)
        self.state.set_datetime(NEXT_RUN_AT, next_run)
        self._log(
            "info",
            "next_run_scheduled",
            next_run_at=next_run.isoformat(),
            interval=interval,
            error_rate=round(window.error_rate, 3),
            avg_items=round(window.avg_items, 1),
        )
        return next_run

    def crawl_source_by_id(self, source_id: int) -> SourceResult:
        """Crawl a single source immediately, regardless of its schedule."""
        return asyncio.run(self.crawl_source_by_id_async(source_id))

    async def crawl_source_by_id_async(self, source_id: int) -> SourceResult:
        """Async form of crawl_source_by_id. Failures are returned in the result's errors."""
        if not self._lock.acquire(blocking=False):
            return SourceResult(source_id=source_id, errors=[ALREADY_RUNNING])
        try:
            source = await asyncio.to_thread(self.registry.get, source_id)
            if source is None:
                return SourceResult(source_id=source_id, errors=[f"Source {source_id} not found"])

            self._phase = CrawlerPhase.RUNNING
            started_at = pendulum.now("UTC")
            start_time = time.monotonic()
            result = await self._crawl_source(source)
            run = RunResult.from_sources(
                [result],
                started_at=started_at,
                finished_at=pendulum.now("UTC"),
                duration_seconds=time.monotonic() - start_time,
            )
            try:
                await asyncio.to_thread(self._persist_metrics, run)
            except Exception as e:
                result.errors.append(f"Metrics write failed: {e}")
                self._log("error", "metrics_write_failed", source_id=source_id, error=str(e))
            return result
        except Exception as e:
            self._log("error", "source_crawl_crashed", exc_info=True, source_id=source_id, error=repr(e))
            return SourceResult(source_id=source_id, errors=[f"Crawl failed: {e}"])
        finally:
            self._phase = CrawlerPhase.IDLE
            self._lock.release()

    def status(self, log_limit: int = 50) -> RunStatus:
        """
        Snapshot of phase, schedule, adapters and recent log.

        When the state store cannot be read, the schedule fields stay empty and
        last_error carries the read failure.
        """
        status = RunStatus(
            state=self._phase,
            is_running=self.is_running,
            recurrence=self.settings.recurrence,
            adapters=self.adapters.types(),
            recent_log=self.recent_log(log_limit),
        )
        try:
            status.last_run_at = self.state.get_datetime(LAST_RUN_AT)
            status.next_run_at = self.state.get_datetime(NEXT_RUN_AT)
            status.recurrence = self.state.get(RECURRENCE) or self.settings.recurrence
            status.last_error = self.state.get(LAST_ERROR)
        except Exception as e:
            logger.error("status_state_unavailable", error=str(e))
            status.last_error = f"State unavailable: {e}"
        return status

    def run_forever(self, stop_event: Optional[threading.Event] = None, poll_seconds: float = 60.0) -> None:
        """
        Run crawls whenever the stored next run time has passed.

        Blocks until stop_event is set.
        """
        stop_event = stop_event or threading.Event()
        self._log("info", "daemon_started", poll_seconds=poll_seconds)
        while not stop_event.is_set():
            next_run = self.state.get_datetime(NEXT_RUN_AT)
            now = pendulum.now("UTC")
            if next_run is None or next_run <= now:
                result = self.run()
                if not result.success:
                    stop_event.wait(poll_seconds)
                continue
            wait = min(poll_seconds, (next_run - now).total_seconds())
            stop_event.wait(max(wait, 0.0))
        self._log("info", "daemon_stopped")
