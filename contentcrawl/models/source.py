"""Source model for configured content origins."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator, model_validator

from .base import DBModel

DEFAULT_FETCH_INTERVAL = 3600
DEFAULT_MIN_INTERVAL = 1800
DEFAULT_MAX_INTERVAL = 86400


class SourceType(str, Enum):
    """Kinds of content source."""

    FEED = "feed"
    API = "api"
    SCRAPER = "scraper"
    WEBHOOK = "webhook"


class Source(DBModel):
    """Content source model."""

    name: str = Field(..., description="Source name", min_length=1)
    type: SourceType = Field(..., description="Source type (feed, api, scraper, webhook)")
    url: str = Field(..., description="Feed, endpoint or page URL")
    adapter_config: Dict[str, Any] = Field(
        default_factory=dict, description="Adapter-specific configuration"
    )
    content_types: List[str] = Field(default_factory=list, description="Content types produced")
    active: bool = Field(True, description="Whether the source is crawled")
    fetch_interval: int = Field(DEFAULT_FETCH_INTERVAL, description="Current interval in seconds", gt=0)
    min_interval: int = Field(DEFAULT_MIN_INTERVAL, description="Lower interval bound in seconds", gt=0)
    max_interval: int = Field(DEFAULT_MAX_INTERVAL, description="Upper interval bound in seconds", gt=0)
    last_fetch_at: Optional[datetime] = Field(None, description="Last crawl attempt")
    next_fetch_at: Optional[datetime] = Field(None, description="Next scheduled crawl")
    quota_max_items: Optional[int] = Field(None, description="Max items kept per crawl", gt=0)
    quota_max_size: Optional[int] = Field(None, description="Max item content size in bytes", gt=0)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        """Accept the legacy 'rss' alias for feed sources."""
        if isinstance(v, str) and v.lower() == "rss":
            return SourceType.FEED
        return v

    @model_validator(mode="after")
    def check_intervals(self) -> "Source":
        """Ensure min_interval <= fetch_interval <= max_interval."""
        if self.min_interval > self.max_interval:
            raise ValueError(
                f"min_interval ({self.min_interval}) exceeds max_interval ({self.max_interval})"
            )
        if not self.min_interval <= self.fetch_interval <= self.max_interval:
            raise ValueError(
                f"fetch_interval {self.fetch_interval} outside "
                f"[{self.min_interval}, {self.max_interval}]"
            )
        return self


class SourceError(DBModel):
    """One entry of a source's error log."""

    source_id: int = Field(..., description="Source database ID")
    error_type: str = Field(..., description="Error category (fetch, parse, config, storage, system)")
    message: str = Field(..., description="Error message")
    context: Dict[str, Any] = Field(default_factory=dict, description="Attempt details")
    severity: str = Field("error", description="warning or error")
