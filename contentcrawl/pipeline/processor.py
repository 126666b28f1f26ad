"""Content processing between adapters and storage."""

from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

from ..ingestion.models import NormalizedItem
from ..models import ContentStatus, StoredContent, content_fingerprint

RECENT_DAYS = 7
LONG_CONTENT_CHARS = 500


class ContentProcessor(Protocol):
    """Turns a normalized item into a storable row, or rejects it with None."""

    def process(self, item: NormalizedItem) -> Optional[StoredContent]:
        ...


def quality_score(item: NormalizedItem, now: Optional[datetime] = None) -> int:
    """
    Score an item from 0 to 100.

    score = 0.4 + 0.3 * completeness + 0.2 * recency + 0.1 * length, where
    each factor is 1.0 when satisfied and 0.5 otherwise: completeness needs
    title, content and summary; recency needs a publish date within the last
    seven days; length needs more than 500 characters of content.
    """
    now = now or datetime.now(timezone.utc)
    completeness = 1.0 if item.title and item.content and item.summary else 0.5
    published = item.publish_date
    if published is not None and published.tzinfo is None:
        published = published.replace(tzinfo=timezone.utc)
    recent = published is not None and published >= now - timedelta(days=RECENT_DAYS)
    recency = 1.0 if recent else 0.5
    length = 1.0 if len(item.content) > LONG_CONTENT_CHARS else 0.5
    score = 0.4 + 0.3 * completeness + 0.2 * recency + 0.1 * length
    return max(0, min(100, int(round(score * 100))))


class DefaultContentProcessor:
    """Fingerprint and score items without further enrichment."""

    def process(self, item: NormalizedItem) -> Optional[StoredContent]:
        """Build the pending content row for an item."""
        extra = {
            "url": item.url,
            "author": item.author,
            "image": item.image,
            "media": [m.model_dump() for m in item.media],
            "categories": item.categories,
            "meta": item.meta,
            "source_name": item.source_name,
            "feed_url": item.source_url,
        }
        return StoredContent(
            type=item.content_type,
            title=item.title,
            content=item.content,
            summary=item.summary or "",
            source_url=item.url,
            source_id=item.source_id,
            fingerprint=content_fingerprint(item.title, item.content),
            quality_score=quality_score(item),
            status=ContentStatus.PENDING,
            publish_date=item.publish_date,
            extra={k: v for k, v in extra.items() if v not in (None, [], {})},
        )
