"""Stored content and index models."""

import hashlib
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from .base import DBModel


class ContentStatus(str, Enum):
    """Lifecycle status of stored content."""

    PENDING = "pending"
    PROCESSED = "processed"
    PUBLISHED = "published"
    REJECTED = "rejected"


class StoredContent(DBModel):
    """Content row persisted after processing."""

    type: str = Field("article", description="Content type")
    title: str = Field(..., description="Title")
    content: str = Field("", description="Body (HTML or text)")
    summary: str = Field("", description="Short summary")
    source_url: str = Field("", description="Origin URL of the item")
    source_id: Optional[int] = Field(None, description="Foreign key to sources table")
    fingerprint: str = Field(..., description="Dedup hash of normalized title and content")
    quality_score: int = Field(0, description="Quality score 0-100", ge=0, le=100)
    status: ContentStatus = Field(ContentStatus.PENDING, description="Lifecycle status")
    publish_date: Optional[datetime] = Field(None, description="Publication timestamp")
    extra: Dict[str, Any] = Field(default_factory=dict, description="Additional metadata")


class IndexEntry(BaseModel):
    """Fingerprint index row mirroring a content row."""

    content_id: int
    fingerprint: str
    quality_score: int = 0
    updated_at: Optional[datetime] = None


ORDERABLE_COLUMNS = ("created_at", "updated_at", "title", "quality_score", "type", "status", "publish_date")
MAX_QUERY_LIMIT = 1000


def normalize_for_fingerprint(text: Optional[str]) -> str:
    """Lower-case text and collapse whitespace runs."""
    return " ".join((text or "").lower().split())


def content_fingerprint(title: Optional[str], content: Optional[str]) -> str:
    """SHA-256 of the normalized title and content."""
    normalized = f"{normalize_for_fingerprint(title)}||{normalize_for_fingerprint(content)}"
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


class ContentQuery(BaseModel):
    """Filters, ordering and paging for content queries."""

    type: Optional[str] = Field(None, description="Content type filter")
    status: Optional[ContentStatus] = Field(None, description="Status filter")
    source_id: Optional[int] = Field(None, description="Source filter")
    min_quality: Optional[int] = Field(None, description="Minimum quality score")
    search: Optional[str] = Field(None, description="Substring matched against title and content")
    order_by: str = Field("created_at", description="Sort column")
    order: str = Field("DESC", description="Sort direction")
    limit: int = Field(20, description="Page size, clamped to 1-1000")
    offset: int = Field(0, description="Rows to skip")

    @field_validator("order_by", mode="before")
    @classmethod
    def check_order_by(cls, v: Any) -> str:
        """Fall back to created_at for columns outside the allow-list."""
        return v if v in ORDERABLE_COLUMNS else "created_at"

    @field_validator("order", mode="before")
    @classmethod
    def check_order(cls, v: Any) -> str:
        """Accept ASC or DESC in any case, defaulting to DESC."""
        direction = str(v or "").upper()
        return direction if direction in ("ASC", "DESC") else "DESC"

    @field_validator("limit", mode="before")
    @classmethod
    def clamp_limit(cls, v: Any) -> int:
        """Clamp the page size."""
        return max(1, min(int(v), MAX_QUERY_LIMIT))

    @field_validator("offset", mode="before")
    @classmethod
    def clamp_offset(cls, v: Any) -> int:
        """Negative offsets read as zero."""
        return max(0, int(v))
