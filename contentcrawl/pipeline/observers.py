"""Observer hooks around crawl steps."""

from typing import Optional

from ..ingestion.models import NormalizedItem
from ..models import Source
from .results import RunResult, SourceResult


class CrawlObserver:
    """
    Base observer with no-op hooks.

    Subclass and override the hooks you need, then register the instance with
    ``CrawlOrchestrator.add_observer``. Exceptions raised by ``after_item``
    count as item errors; exceptions from ``before_fetch`` fail the source.
    Failures in ``after_source`` and ``after_run`` are only logged.
    """

    def before_fetch(self, source: Source) -> None:
        """Called before the adapter fetches a source."""

    def after_item(self, source: Source, item: NormalizedItem, content_id: Optional[int], is_new: bool) -> None:
        """Called after an item was stored."""

    def after_source(self, source: Source, result: SourceResult) -> None:
        """Called after each crawl attempt of a source."""

    def after_run(self, result: RunResult) -> None:
        """Called once a run has finished."""
