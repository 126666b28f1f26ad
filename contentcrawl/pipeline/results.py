"""Result and status models returned by the orchestrator."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class CrawlerPhase(str, Enum):
    """Lifecycle phase of the orchestrator."""

    IDLE = "idle"
    RUNNING = "running"
    RETRYING = "retrying"


class SourceResult(BaseModel):
    """Outcome of crawling one source once."""

    source_id: Optional[int] = None
    source_name: str = ""
    source_type: str = ""
    success: bool = Field(False, description="Whether the adapter fetch succeeded")
    items_found: int = 0
    items_processed: int = 0
    new_items: int = 0
    skipped: int = Field(0, description="Items rejected by the processor or over quota")
    errors: List[str] = Field(default_factory=list)
    duration_seconds: float = 0.0
    attempt: int = 1

    @property
    def error_count(self) -> int:
        """Number of errors recorded for the source."""
        return len(self.errors)


class RunResult(BaseModel):
    """Outcome of an orchestrator run."""

    success: bool
    message: str
    sources_processed: int = 0
    items_found: int = 0
    items_processed: int = 0
    new_items: int = 0
    errors: int = 0
    duration_seconds: float = 0.0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    sources: List[SourceResult] = Field(default_factory=list)

    @classmethod
    def from_sources(
        cls,
        results: List[SourceResult],
        started_at: datetime,
        finished_at: datetime,
        duration_seconds: float,
    ) -> "RunResult":
        """Aggregate per-source results into run totals."""
        errors = sum(r.error_count for r in results)
        items_found = sum(r.items_found for r in results)
        return cls(
            success=True,
            message=f"Crawl completed: {len(results)} sources, {items_found} items, {errors} errors",
            sources_processed=len(results),
            items_found=items_found,
            items_processed=sum(r.items_processed for r in results),
            new_items=sum(r.new_items for r in results),
            errors=errors,
            duration_seconds=duration_seconds,
            started_at=started_at,
            finished_at=finished_at,
            sources=results,
        )


class RunLogEntry(BaseModel):
    """One line of the in-memory run log."""

    time: datetime
    level: str
    message: str


class RunStatus(BaseModel):
    """Snapshot of the orchestrator for status queries."""

    state: CrawlerPhase
    is_running: bool
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    recurrence: Optional[str] = None
    adapters: List[str] = Field(default_factory=list)
    last_error: Optional[str] = None
    recent_log: List[RunLogEntry] = Field(default_factory=list)
