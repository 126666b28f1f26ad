"""Source adapters and normalization helpers."""

from .api_adapter import ApiAdapter
from .base import AdapterRegistry, SourceAdapter, default_registry
from .cleaning import clean_content
from .configs import (
    ApiConfig,
    CleaningOptions,
    FeedConfig,
    ScraperConfig,
    validate_adapter_config,
)
from .dates import parse_date
from .feed_adapter import FeedAdapter
from .models import MediaItem, NormalizedItem
from .paths import extract_path
from .scraper_adapter import ScraperAdapter
from .urls import resolve_url

__all__ = [
    "AdapterRegistry",
    "ApiAdapter",
    "ApiConfig",
    "CleaningOptions",
    "FeedAdapter",
    "FeedConfig",
    "MediaItem",
    "NormalizedItem",
    "ScraperAdapter",
    "ScraperConfig",
    "SourceAdapter",
    "clean_content",
    "default_registry",
    "extract_path",
    "parse_date",
    "resolve_url",
    "validate_adapter_config",
]
