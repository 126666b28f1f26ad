"""RSS, Atom and RDF feed adapter."""

import html
from typing import Any, Dict, List, Optional, Tuple

import feedparser
import httpx
import lxml.html
import structlog
from lxml import etree

from ..errors import ItemValidationError, ParseError
from ..models import Source
from .base import SourceAdapter
from .cleaning import html_to_text, normalize_whitespace, parse_fragment, strip_control_chars
from .configs import FeedConfig, validate_adapter_config
from .dates import parse_date
from .http import build_client, get
from .models import MediaItem, NormalizedItem
from .urls import resolve_http_url, resolve_url

logger = structlog.get_logger()

FEED_MIME_TYPES = (
    "application/rss+xml",
    "application/atom+xml",
    "application/rdf+xml",
)


def discover_feed_url(page: str, page_url: str) -> Optional[str]:
    """Find the first alternate feed link in an HTML page."""
    if not page.strip():
        return None
    try:
        document = lxml.html.fromstring(strip_control_chars(page))
    except (etree.ParserError, ValueError):
        return None
    for link in document.iter("link"):
        rel = (link.get("rel") or "").lower().split()
        mime = (link.get("type") or "").lower().strip()
        href = link.get("href")
        if "alternate" in rel and mime in FEED_MIME_TYPES and href:
            return resolve_url(href, page_url)
    return None


def _is_feed(parsed: Any) -> bool:
    return bool(parsed.get("version")) or bool(parsed.entries)


class FeedAdapter(SourceAdapter):
    """Fetch and parse syndication feeds."""

    source_type = "feed"

    async def fetch(self, source: Source) -> List[NormalizedItem]:
        """Fetch a feed, following autodiscovery when the URL is an HTML page."""
        config: FeedConfig = validate_adapter_config(self.source_type, source.adapter_config)

        async with build_client(
            timeout=config.timeout or self.timeout,
            user_agent=config.user_agent or self.user_agent,
            headers=config.headers,
            transport=self.transport,
        ) as client:
            parsed, feed_url, page = await self._fetch_parsed(client, source.url)

            if not _is_feed(parsed) and config.autodiscover:
                discovered = discover_feed_url(page, feed_url)
                if discovered and discovered != feed_url:
                    logger.info("feed_discovered", source=source.name, page=feed_url, feed=discovered)
                    parsed, feed_url, page = await self._fetch_parsed(client, discovered)

        if not _is_feed(parsed):
            reason = parsed.get("bozo_exception") or "document is not a feed"
            raise ParseError(f"Invalid feed at {feed_url}: {reason}")

        base_url = parsed.feed.get("link") or feed_url
        feed_format = parsed.get("version") or ""
        items = self.collect_items(
            source,
            parsed.entries[: config.max_items],
            lambda entry: self._entry_to_item(entry, config, base_url, source.url, feed_format),
        )

        logger.info(
            "feed_parsed",
            source=source.name,
            format=parsed.get("version") or "unknown",
            entries=len(parsed.entries),
            items=len(items),
        )
        return items

    async def _fetch_parsed(self, client: httpx.AsyncClient, url: str) -> Tuple[Any, str, str]:
        response = await get(client, url)
        final_url = str(response.url)
        headers = {
            "content-type": response.headers.get("content-type", "application/xml"),
            "content-location": final_url,
        }
        parsed = feedparser.parse(response.content, response_headers=headers)
        return parsed, final_url, response.text

    def _entry_to_item(
        self,
        entry: Any,
        config: FeedConfig,
        base_url: str,
        source_url: str,
        feed_format: str,
    ) -> NormalizedItem:
        title = strip_control_chars(html.unescape(entry.get("title") or "")).strip()
        content = strip_control_chars(self._entry_content(entry))
        link = (entry.get("link") or "").strip()

        if not title or not content or not link:
            raise ItemValidationError(f"Feed entry missing title, content or link: {title or link or '<untitled>'}")

        if config.content_selector:
            content = self._select_content(content, config.content_selector)

        url = resolve_http_url(link, base_url)
        if url is None:
            raise ItemValidationError(f"Feed entry link is not an http(s) URL: {link}")
        media = self._entry_media(entry, url)
        image = self._entry_image(media, content, url)

        summary = None
        description = entry.get("summary") or entry.get("description")
        if description and description != content:
            summary = normalize_whitespace(html_to_text(description)) or None

        categories = [tag.get("term") for tag in entry.get("tags", []) if tag.get("term")]

        meta: Dict[str, Any] = {"feed_format": feed_format}
        if entry.get("id"):
            meta["guid"] = entry.get("id")

        return NormalizedItem(
            title=title,
            content=content,
            url=url,
            source_url=source_url,
            publish_date=self._entry_date(entry),
            author=config.author_overwrite or entry.get("author") or None,
            image=image,
            summary=summary,
            media=media,
            categories=categories,
            content_type=config.content_type,
            meta=meta,
        )

    def _entry_content(self, entry: Any) -> str:
        for block in entry.get("content", []) or []:
            value = (block.get("value") or "").strip()
            if value:
                return value
        return (entry.get("summary") or entry.get("description") or "").strip()

    def _entry_date(self, entry: Any):
        # feedparser maps dc:date onto updated, so this covers Dublin Core too
        for key in ("published_parsed", "updated_parsed", "created_parsed"):
            if entry.get(key):
                return parse_date(entry.get(key))
        for key in ("published", "updated", "created", "dc_date"):
            if entry.get(key):
                parsed = parse_date(entry.get(key))
                if parsed:
                    return parsed
        return None

    def _entry_media(self, entry: Any, base_url: str) -> List[MediaItem]:
        media: List[MediaItem] = []
        seen = set()

        def add(url: Optional[str], medium: Optional[str], mime_type: Optional[str], length: Any) -> None:
            if not url:
                return
            absolute = resolve_http_url(url, base_url)
            if absolute is None or absolute in seen:
                return
            seen.add(absolute)
            try:
                size = int(length) if length else None
            except (TypeError, ValueError):
                size = None
            if not medium and mime_type:
                medium = mime_type.split("/", 1)[0]
            media.append(MediaItem(url=absolute, medium=medium, mime_type=mime_type, length=size))

        for enclosure in entry.get("enclosures", []) or []:
            add(enclosure.get("href") or enclosure.get("url"), None, enclosure.get("type"), enclosure.get("length"))
        for content in entry.get("media_content", []) or []:
            add(content.get("url"), content.get("medium"), content.get("type"), content.get("filesize"))
        for thumbnail in entry.get("media_thumbnail", []) or []:
            add(thumbnail.get("url"), "image", None, None)
        return media

    def _entry_image(self, media: List[MediaItem], content: str, base_url: str) -> Optional[str]:
        for item in media:
            if item.medium == "image" or (item.mime_type or "").startswith("image/"):
                return item.url
        try:
            sources = parse_fragment(content).xpath(".//img/@src")
        except etree.ParserError:
            return None
        for src in sources:
            image = resolve_http_url(src, base_url) if src.strip() else None
            if image:
                return image
        return None

    def _select_content(self, content: str, selector: str) -> str:
        try:
            results = parse_fragment(content).xpath(selector)
        except (etree.ParserError, etree.XPathEvalError):
            return content
        parts = []
        for result in results:
            if isinstance(result, etree._Element):
                parts.append(etree.tostring(result, encoding="unicode", method="html", with_tail=False))
            else:
                parts.append(str(result))
        selected = "".join(parts).strip()
        return selected or content
