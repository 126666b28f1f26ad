"""Data models for ingestion."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class MediaItem(BaseModel):
    """Media attached to an item (enclosure, media:content, inline image)."""

    url: str = Field(..., description="Absolute media URL")
    medium: Optional[str] = Field(None, description="image, video, audio, ...")
    mime_type: Optional[str] = Field(None, description="MIME type if known")
    length: Optional[int] = Field(None, description="Size in bytes if known")


class NormalizedItem(BaseModel):
    """Adapter output in the common item shape."""

    title: str = Field(..., description="Item title", min_length=1)
    content: str = Field("", description="Item body")
    url: str = Field(..., description="Absolute item URL", min_length=1)
    source_url: str = Field(..., description="URL of the source that produced the item")
    publish_date: Optional[datetime] = Field(None, description="Publication date")
    author: Optional[str] = Field(None, description="Author name")
    image: Optional[str] = Field(None, description="Absolute image URL")
    summary: Optional[str] = Field(None, description="Plain-text summary")
    media: List[MediaItem] = Field(default_factory=list, description="Attached media")
    categories: List[str] = Field(default_factory=list, description="Categories or tags")
    content_type: str = Field("article", description="Content type for storage")
    meta: Dict[str, Any] = Field(default_factory=dict, description="Adapter-specific metadata")
    source_id: Optional[int] = Field(None, description="Source database ID")
    source_name: Optional[str] = Field(None, description="Source name")

    @property
    def content_size(self) -> int:
        """Size of the content in bytes."""
        return len(self.content.encode("utf-8"))
