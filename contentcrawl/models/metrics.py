"""Append-only crawl metrics models."""

from typing import Optional

from pydantic import BaseModel, Field

from .base import DBModel


class RunMetrics(DBModel):
    """Aggregate metrics for one orchestrator run."""

    sources_processed: int = Field(0, ge=0)
    items_found: int = Field(0, ge=0)
    items_processed: int = Field(0, ge=0)
    errors: int = Field(0, ge=0)
    duration_seconds: float = Field(0.0, ge=0.0)


class SourceMetrics(DBModel):
    """Metrics for a single source within a run."""

    source_id: Optional[int] = Field(None, description="Foreign key to sources table")
    items_found: int = Field(0, ge=0)
    items_processed: int = Field(0, ge=0)
    errors: int = Field(0, ge=0)
    duration_seconds: float = Field(0.0, ge=0.0)


class MetricsWindow(BaseModel):
    """Source metrics aggregated over a trailing window."""

    total_items: int = 0
    total_errors: int = 0
    total_crawls: int = 0

    @property
    def error_rate(self) -> float:
        """Errors per item found, zero when nothing was found."""
        if self.total_items <= 0:
            return 0.0
        return self.total_errors / self.total_items

    @property
    def avg_items(self) -> float:
        """Average items found per source crawl."""
        if self.total_crawls <= 0:
            return 0.0
        return self.total_items / self.total_crawls
