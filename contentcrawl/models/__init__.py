"""Data models for the content crawler."""

from .content import ContentQuery, ContentStatus, IndexEntry, StoredContent, content_fingerprint
from .metrics import MetricsWindow, RunMetrics, SourceMetrics
from .source import Source, SourceError, SourceType

__all__ = [
    "ContentQuery",
    "ContentStatus",
    "IndexEntry",
    "MetricsWindow",
    "RunMetrics",
    "Source",
    "SourceError",
    "SourceMetrics",
    "SourceType",
    "StoredContent",
    "content_fingerprint",
]
