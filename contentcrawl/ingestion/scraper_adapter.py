"""Web page scraper adapter.

Supports XPath, CSS, regex, Schema.org JSON-LD and JSON selector dialects.
Each dialect yields one item for the whole page, or one item per node when an
``item_selector`` is configured. Field selectors are then evaluated relative to
each item node.
"""

import html
import json
from typing import Any, Callable, Dict, Iterator, List, Optional

import httpx
import lxml.html
import structlog
from cssselect import HTMLTranslator
from lxml import etree

from ..errors import ItemValidationError, ParseError
from ..models import Source
from .api_adapter import parse_json
from .base import SourceAdapter
from .cleaning import clean_content, html_to_text, inner_html, normalize_whitespace, strip_control_chars
from .configs import ScraperConfig, compile_regex, validate_adapter_config
from .dates import parse_date
from .http import build_client, get
from .models import NormalizedItem
from .paths import extract_path
from .rendering import render_page
from .urls import resolve_http_url

logger = structlog.get_logger()

Record = Dict[str, Any]

ARTICLE_MAPPING = {
    "title": "headline",
    "content": "articleBody",
    "publish_date": "datePublished",
    "author": "author.name",
    "image": "image",
    "summary": "description",
    "url": "url",
}

SCHEMA_MAPPINGS: Dict[str, Dict[str, str]] = {
    "Article": ARTICLE_MAPPING,
    "BlogPosting": ARTICLE_MAPPING,
    "NewsArticle": ARTICLE_MAPPING,
    "Report": ARTICLE_MAPPING,
    "WebPage": {
        "title": "name",
        "summary": "description",
        "publish_date": "datePublished",
        "image": "primaryImageOfPage.url",
        "url": "url",
    },
}

FIELDS = ("title", "content", "url", "image", "publish_date", "author", "summary")
POSITIONAL_FIELDS = ("title", "content", "url")

_TITLE_XPATH = "//title"
_OG_TITLE_XPATH = "//meta[@property='og:title']/@content"
_TITLE_RE = compile_regex(r"/<title[^>]*>(.*?)<\/title>/is")
_OG_TITLE_RE = compile_regex(r"""/<meta[^>]+property=["']og:title["'][^>]+content=["']([^"']*)["']/i""")


def _text_of(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, etree._Element):
        value = value.text_content()
    text = normalize_whitespace(strip_control_chars(html.unescape(str(value))))
    return text or None


def _element_value(element: etree._Element, field: str, use_inner_html: bool) -> Optional[str]:
    if field == "url":
        return element.get("href") or element.get("src") or _text_of(element)
    if field == "image":
        return element.get("src") or element.get("content")
    if field == "publish_date":
        return element.get("datetime") or element.get("content") or _text_of(element)
    if field == "content":
        if use_inner_html:
            return inner_html(element).strip() or None
        return _text_of(element)
    return element.get("content") if element.tag == "meta" else _text_of(element)


def _schema_value(value: Any, field: str) -> Any:
    # JSON-LD values are often lists or nested objects
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        if field == "image":
            value = value.get("url") or value.get("contentUrl")
        elif field == "author":
            value = value.get("name")
        else:
            value = value.get("@value") or value.get("name")
    return value


def _schema_types(node: Dict[str, Any]) -> List[str]:
    types = node.get("@type", [])
    return [types] if isinstance(types, str) else [t for t in types if isinstance(t, str)]


def _walk_json_ld(data: Any) -> Iterator[Dict[str, Any]]:
    if isinstance(data, list):
        for entry in data:
            yield from _walk_json_ld(entry)
    elif isinstance(data, dict):
        if "@type" in data:
            yield data
        if isinstance(data.get("@graph"), list):
            yield from _walk_json_ld(data["@graph"])


class ScraperAdapter(SourceAdapter):
    """Extract items from web pages with configurable selectors."""

    source_type = "scraper"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        """Initialize scraper adapter."""
        super().__init__(*args, **kwargs)
        self._css = HTMLTranslator()

    async def fetch(self, source: Source) -> List[NormalizedItem]:
        """Fetch a page and extract items with the configured dialect."""
        config: ScraperConfig = validate_adapter_config(self.source_type, source.adapter_config)

        headers = dict(config.headers)
        auth = None
        if config.auth_type == "basic":
            auth = httpx.BasicAuth(config.auth_username, config.auth_password)
        elif config.auth_type == "cookie" and config.cookies:
            headers["Cookie"] = "; ".join(f"{k}={v}" for k, v in config.cookies.items())
        elif config.auth_type == "header":
            headers[config.auth_header_name] = config.auth_header_value

        async with build_client(
            timeout=config.timeout or self.timeout,
            user_agent=config.user_agent or self.user_agent,
            headers=headers,
            auth=auth,
            transport=self.transport,
        ) as client:
            response = await get(client, source.url)
            page_url = str(response.url)
            is_json = "json" in response.headers.get("content-type", "").lower()

            if is_json or config.selector_type == "json":
                records = self.extract_json(self._load_json(response, is_json), config)
            else:
                body = response.text
                if config.render_javascript:
                    rendered = await render_page(
                        client,
                        config.js_renderer_url,
                        source.url,
                        wait_for_selector=config.wait_for_selector,
                        wait_time=config.wait_time,
                    )
                    body = rendered or body
                records = self.extract_html(body, config)

        items = self.collect_items(
            source, records, lambda record: self._build_item(record, config, page_url, source.url)
        )

        logger.info(
            "page_scraped",
            source=source.name,
            dialect=config.selector_type,
            records=len(records),
            items=len(items),
        )
        return items

    def _load_json(self, response: httpx.Response, is_json: bool) -> Any:
        if is_json:
            return parse_json(response)
        try:
            return json.loads(response.text)
        except ValueError as e:
            raise ParseError(f"Invalid JSON from {response.url}: {e}") from e

    def extract_html(self, body: str, config: ScraperConfig) -> List[Record]:
        """Extract raw field records from an HTML document."""
        if config.selector_type == "regex":
            return self.extract_regex(body, config)

        if not body.strip():
            raise ParseError("Empty HTML document")
        try:
            document = lxml.html.fromstring(strip_control_chars(body))
        except (etree.ParserError, ValueError) as e:
            raise ParseError(f"Unparseable HTML: {e}") from e

        if config.selector_type == "schema":
            records = self.extract_schema(document, config)
            if records:
                return records
            logger.debug("schema_fallback", reason="no typed JSON-LD items")
            return self.extract_tree(document, config, self._xpath)
        if config.selector_type == "css":
            return self.extract_tree(document, config, self._css.css_to_xpath)
        return self.extract_tree(document, config, self._xpath)

    @staticmethod
    def _xpath(selector: str) -> str:
        return selector

    def extract_tree(
        self,
        document: etree._Element,
        config: ScraperConfig,
        to_xpath: Callable[[str], str],
    ) -> List[Record]:
        """Extract records with XPath (or CSS translated to XPath)."""
        single_page = not config.item_selector
        nodes = [document] if single_page else document.xpath(to_xpath(config.item_selector))

        records = []
        for node in nodes:
            if not isinstance(node, etree._Element):
                continue
            record: Record = {}
            for field, selector in config.field_selectors().items():
                if selector:
                    record[field] = self._select(node, to_xpath(selector), field, config.use_inner_html)
            meta = {}
            for name, selector in config.meta_selectors.items():
                value = self._select(node, to_xpath(selector), name, False)
                if value is not None:
                    meta[name] = value
            record["meta"] = meta
            if single_page and not record.get("title"):
                record["title"] = self._page_title(document)
            records.append(record)
        return records

    def _select(self, node: etree._Element, xpath: str, field: str, use_inner_html: bool) -> Optional[str]:
        try:
            result = node.xpath(xpath)
        except etree.XPathEvalError as e:
            raise ParseError(f"XPath evaluation failed for {xpath!r}: {e}") from e
        if isinstance(result, list):
            if not result:
                return None
            result = result[0]
        if isinstance(result, etree._Element):
            return _element_value(result, field, use_inner_html)
        if isinstance(result, bool):
            return None
        return _text_of(result)

    def _page_title(self, document: etree._Element) -> Optional[str]:
        titles = document.xpath(_TITLE_XPATH)
        if titles and _text_of(titles[0]):
            return _text_of(titles[0])
        og_titles = document.xpath(_OG_TITLE_XPATH)
        return _text_of(og_titles[0]) if og_titles else None

    def extract_regex(self, body: str, config: ScraperConfig) -> List[Record]:
        """Extract records with regular expressions."""
        if config.item_selector:
            pattern = compile_regex(config.item_selector)
            records = []
            for match in pattern.finditer(body):
                if pattern.groupindex:
                    record = {
                        name: match.group(name)
                        for name in pattern.groupindex
                        if name in FIELDS and match.group(name) is not None
                    }
                    record["meta"] = {
                        name: match.group(name)
                        for name in pattern.groupindex
                        if name not in FIELDS and match.group(name) is not None
                    }
                else:
                    record = dict(zip(POSITIONAL_FIELDS, match.groups()))
                    record["meta"] = {}
                records.append(record)
            return records

        record = {}
        for field, selector in config.field_selectors().items():
            if selector:
                record[field] = self._regex_value(body, selector)
        record["meta"] = {
            name: value
            for name, value in (
                (name, self._regex_value(body, selector)) for name, selector in config.meta_selectors.items()
            )
            if value is not None
        }
        if not record.get("title"):
            record["title"] = self._regex_value(body, _TITLE_RE) or self._regex_value(body, _OG_TITLE_RE)
        return [record]

    @staticmethod
    def _regex_value(body: str, selector: Any) -> Optional[str]:
        pattern = compile_regex(selector) if isinstance(selector, str) else selector
        match = pattern.search(body)
        if not match:
            return None
        return match.group(1) if pattern.groups else match.group(0)

    def extract_schema(self, document: etree._Element, config: ScraperConfig) -> List[Record]:
        """Extract records from Schema.org JSON-LD blocks."""
        mappings = dict(SCHEMA_MAPPINGS)
        mappings.update(config.schema_mappings)

        records = []
        for block in document.xpath("//script[@type='application/ld+json']/text()"):
            try:
                data = json.loads(block)
            except ValueError as e:
                logger.debug("json_ld_invalid", error=str(e))
                continue
            for node in _walk_json_ld(data):
                mapping = next((mappings[t] for t in _schema_types(node) if t in mappings), None)
                if mapping is None:
                    continue
                record: Record = {}
                for field, path in mapping.items():
                    value = _schema_value(extract_path(node, path), field)
                    if value is not None:
                        record[field] = value
                if "author" not in record:
                    record["author"] = _schema_value(node.get("author"), "author")
                record["meta"] = {
                    "schema_type": _schema_types(node)[0],
                    **{
                        name: extract_path(node, path)
                        for name, path in config.meta_selectors.items()
                        if extract_path(node, path) is not None
                    },
                }
                records.append(record)
        return records

    def extract_json(self, data: Any, config: ScraperConfig) -> List[Record]:
        """Extract records from a JSON payload using path selectors."""
        nodes = extract_path(data, config.item_selector) if config.item_selector else data
        if isinstance(nodes, dict):
            nodes = [nodes]
        if not isinstance(nodes, list):
            raise ParseError(f"No items at '{config.item_selector or '<root>'}' in JSON payload")

        records = []
        for node in nodes:
            record: Record = {}
            for field, selector in config.field_selectors().items():
                if selector:
                    record[field] = extract_path(node, selector)
            record["meta"] = {
                name: extract_path(node, path)
                for name, path in config.meta_selectors.items()
                if extract_path(node, path) is not None
            }
            records.append(record)
        return records

    def _build_item(
        self,
        record: Record,
        config: ScraperConfig,
        page_url: str,
        source_url: str,
    ) -> NormalizedItem:
        title = _text_of(html_to_text(str(record["title"]))) if record.get("title") else None
        if not title:
            raise ItemValidationError("Scraped record has no title")

        content = record.get("content")
        content = clean_content(str(content), config.content_cleaning) if content else ""

        raw_url = record.get("url")
        url = resolve_http_url(str(raw_url) if raw_url else "", page_url)
        if url is None:
            raise ItemValidationError(f"Scraped record '{title}' has no http(s) URL: {raw_url}")
        image = record.get("image")
        author = record.get("author")
        summary = record.get("summary")

        return NormalizedItem(
            title=title,
            content=content,
            url=url,
            source_url=source_url,
            publish_date=parse_date(record.get("publish_date"), config.date_format),
            author=_text_of(author) if isinstance(author, str) else None,
            image=resolve_http_url(str(image), page_url) if image else None,
            summary=_text_of(html_to_text(str(summary))) if summary else None,
            content_type=config.content_type,
            meta=record.get("meta") or {},
        )
