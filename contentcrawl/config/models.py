"""Configuration models."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..models import Source, SourceType
from ..models.source import DEFAULT_FETCH_INTERVAL, DEFAULT_MAX_INTERVAL, DEFAULT_MIN_INTERVAL

RECURRENCES = ("hourly", "twicedaily", "daily")


class PostgresConfig(BaseModel):
    """Postgres configuration."""

    host: str = Field("localhost", description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field("contentcrawl", description="Database name")
    user: str = Field("contentcrawl", description="Database user")
    password: Optional[str] = Field(None, description="Database password")
    password_env: Optional[str] = Field(None, description="Environment variable for password")
    dsn: Optional[str] = Field(None, description="Full connection string, overrides the fields above")
    max_connections: int = Field(10, description="Connection pool size", ge=1, le=100)


class CrawlerConfig(BaseModel):
    """Crawl run parameters."""

    recurrence: str = Field("hourly", description="Base cadence (hourly, twicedaily, daily)")
    due_limit: int = Field(50, description="Max due sources per run", ge=1, le=1000)
    retry_attempts: int = Field(1, description="Retry passes for failed sources", ge=0, le=10)
    max_concurrent: int = Field(5, description="Sources crawled concurrently", ge=1, le=100)
    per_host_limit: int = Field(2, description="Concurrent requests per host", ge=1, le=100)
    request_timeout: float = Field(30.0, description="HTTP timeout in seconds", gt=0)
    fetch_timeout: float = Field(120.0, description="Overall time budget for one source fetch in seconds", gt=0)
    user_agent: str = Field("contentcrawl/0.1 (Content Crawler)", description="Default User-Agent")
    run_log_size: int = Field(1000, description="Entries kept in the run log", ge=1)

    @field_validator("recurrence")
    @classmethod
    def validate_recurrence(cls, v: str) -> str:
        """Only known recurrences are accepted."""
        if v not in RECURRENCES:
            raise ValueError(f"recurrence must be one of {', '.join(RECURRENCES)}")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field("INFO", description="Log level")
    json_output: bool = Field(False, alias="json", description="Render logs as JSON lines")

    class Config:
        """Pydantic config."""

        populate_by_name = True


class ConfigModel(BaseModel):
    """Main configuration model."""

    postgres: PostgresConfig = Field(default_factory=PostgresConfig)
    crawler: CrawlerConfig = Field(default_factory=CrawlerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class SourceConfig(BaseModel):
    """Source definition from sources.yaml."""

    name: str = Field(..., description="Source name")
    type: SourceType = Field(SourceType.FEED, description="Source type (feed, api, scraper, webhook)")
    url: str = Field(..., description="Feed, endpoint or page URL")
    adapter_config: Dict[str, Any] = Field(default_factory=dict, description="Adapter configuration")
    content_types: List[str] = Field(default_factory=list, description="Content types produced")
    active: bool = Field(True, description="Whether the source is crawled")
    fetch_interval: int = Field(DEFAULT_FETCH_INTERVAL, description="Initial interval in seconds")
    min_interval: int = Field(DEFAULT_MIN_INTERVAL, description="Lower interval bound in seconds")
    max_interval: int = Field(DEFAULT_MAX_INTERVAL, description="Upper interval bound in seconds")
    quota_max_items: Optional[int] = Field(None, description="Max items kept per crawl")
    quota_max_size: Optional[int] = Field(None, description="Max item content size in bytes")

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        """Accept the legacy 'rss' alias for feed sources."""
        if isinstance(v, str) and v.lower() == "rss":
            return SourceType.FEED
        return v

    def to_source(self) -> Source:
        """Build a validated Source model."""
        return Source(**self.model_dump())
