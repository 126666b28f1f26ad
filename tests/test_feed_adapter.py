"""Tests for the feed adapter."""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from contentcrawl.errors import FetchError, ParseError
from contentcrawl.ingestion.feed_adapter import FeedAdapter, discover_feed_url

from conftest import make_source, mock_transport

FEED_URL = "https://example.com/feed.xml"

RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example Blog</title>
    <link>https://example.com/</link>
    <description>Posts</description>
    <item>
      <title>First &amp; Best</title>
      <link>https://example.com/a</link>
      <description>&lt;p&gt;Body A &lt;img src="/img/a.png"&gt;&lt;/p&gt;</description>
      <pubDate>Mon, 06 Jan 2025 10:00:00 GMT</pubDate>
      <author>alice@example.com (Alice)</author>
      <category>python</category>
    </item>
    <item>
      <title>No link here</title>
      <description>Body B</description>
    </item>
    <item>
      <title>Third</title>
      <link>https://example.com/c</link>
      <description>Body C</description>
      <enclosure url="https://cdn.example.com/c.jpg" type="image/jpeg" length="1024"/>
    </item>
  </channel>
</rss>
"""

ATOM_FEED = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Example</title>
  <link href="https://example.org/"/>
  <updated>2025-01-06T10:00:00Z</updated>
  <id>urn:example</id>
  <entry>
    <title>Atom entry</title>
    <link href="https://example.org/entry"/>
    <id>urn:example:1</id>
    <updated>2025-01-05T08:30:00Z</updated>
    <summary>Short summary</summary>
    <content type="html">&lt;div&gt;&lt;p&gt;Full body&lt;/p&gt;&lt;p class="extra"&gt;Tail&lt;/p&gt;&lt;/div&gt;</content>
  </entry>
</feed>
"""

CONTROL_CHAR_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/">
  <channel>
    <title>Control</title>
    <link>https://example.com/</link>
    <description>Feed</description>
    <item>
      <title>Clean</title>
      <link>https://example.com/1</link>
      <description>Fine</description>
    </item>
    <item>
      <title>Dirty</title>
      <link>https://example.com/2</link>
      <description>Tease\x0br</description>
      <content:encoded><![CDATA[<p>Full\x0b body</p>]]></content:encoded>
    </item>
  </channel>
</rss>
"""

HTML_PAGE = """<html><head>
<title>Blog</title>
<link rel="alternate" type="application/rss+xml" href="/feed.xml">
</head><body><p>Hello</p></body></html>"""


def _feed_response(body: str, content_type: str = "application/rss+xml") -> httpx.Response:
    return httpx.Response(200, content=body.encode("utf-8"), headers={"content-type": content_type})


def _fetch(adapter: FeedAdapter, source):
    return asyncio.run(adapter.fetch(source))


class TestFeedAdapter:
    """Tests for FeedAdapter.fetch."""

    def test_rss_items_missing_link_are_dropped(self) -> None:
        adapter = FeedAdapter(transport=mock_transport({FEED_URL: _feed_response(RSS_FEED)}))
        items = _fetch(adapter, make_source(url=FEED_URL))

        assert [item.title for item in items] == ["First & Best", "Third"]

    def test_rss_item_fields(self) -> None:
        adapter = FeedAdapter(transport=mock_transport({FEED_URL: _feed_response(RSS_FEED)}))
        first, third = _fetch(adapter, make_source(url=FEED_URL))

        assert first.url == "https://example.com/a"
        assert first.source_url == FEED_URL
        assert first.publish_date == datetime(2025, 1, 6, 10, 0, tzinfo=timezone.utc)
        assert first.image == "https://example.com/img/a.png"
        assert first.categories == ["python"]
        assert first.meta["feed_format"] == "rss20"
        assert first.summary is None

        assert third.image == "https://cdn.example.com/c.jpg"
        assert third.media[0].mime_type == "image/jpeg"
        assert third.media[0].length == 1024

    def test_atom_content_summary_and_selector(self) -> None:
        source = make_source(url=FEED_URL, adapter_config={"content_selector": "//p[@class='extra']"})
        adapter = FeedAdapter(transport=mock_transport({FEED_URL: _feed_response(ATOM_FEED, "application/atom+xml")}))
        (item,) = _fetch(adapter, source)

        assert item.title == "Atom entry"
        assert "Tail" in item.content and "Full body" not in item.content
        assert item.summary == "Short summary"
        assert item.publish_date == datetime(2025, 1, 5, 8, 30, tzinfo=timezone.utc)
        assert item.meta["feed_format"] == "atom10"

    def test_config_overrides(self) -> None:
        source = make_source(
            url=FEED_URL,
            adapter_config={"max_items": 1, "author_overwrite": "Newsroom", "content_type": "news"},
        )
        adapter = FeedAdapter(transport=mock_transport({FEED_URL: _feed_response(RSS_FEED)}))
        items = _fetch(adapter, source)

        assert len(items) == 1
        assert items[0].author == "Newsroom"
        assert items[0].content_type == "news"

    def test_autodiscovery_follows_alternate_link(self) -> None:
        page_url = "https://example.com/blog"
        calls = []
        transport = mock_transport(
            {
                page_url: _feed_response(HTML_PAGE, "text/html; charset=utf-8"),
                FEED_URL: _feed_response(RSS_FEED),
            },
            calls,
        )
        items = _fetch(FeedAdapter(transport=transport), make_source(url=page_url))

        assert len(items) == 2
        assert [str(r.url) for r in calls] == [page_url, FEED_URL]
        assert items[0].source_url == page_url

    def test_html_without_feed_link_is_parse_error(self) -> None:
        page_url = "https://example.com/plain"
        transport = mock_transport({page_url: _feed_response("<html><body>nothing</body></html>", "text/html")})
        with pytest.raises(ParseError):
            _fetch(FeedAdapter(transport=transport), make_source(url=page_url))

    def test_http_error_is_fetch_error(self) -> None:
        transport = mock_transport({FEED_URL: httpx.Response(500, text="boom")})
        with pytest.raises(FetchError) as exc_info:
            _fetch(FeedAdapter(transport=transport), make_source(url=FEED_URL))
        assert exc_info.value.status_code == 500

    def test_rate_limit_carries_retry_after(self) -> None:
        transport = mock_transport({FEED_URL: httpx.Response(429, headers={"Retry-After": "120"})})
        with pytest.raises(FetchError) as exc_info:
            _fetch(FeedAdapter(transport=transport), make_source(url=FEED_URL))
        assert exc_info.value.retry_after == "120"
        assert "retry after 120" in str(exc_info.value)

    def test_timeout_is_fetch_error(self) -> None:
        def raise_timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        transport = mock_transport({FEED_URL: raise_timeout})
        with pytest.raises(FetchError, match="Timed out"):
            _fetch(FeedAdapter(transport=transport), make_source(url=FEED_URL))


class TestDiscoverFeedUrl:
    """Tests for discover_feed_url."""

    def test_resolves_relative_href(self) -> None:
        assert discover_feed_url(HTML_PAGE, "https://example.com/blog") == FEED_URL

    def test_ignores_non_feed_alternates(self) -> None:
        page = '<html><head><link rel="alternate" hreflang="de" href="/de/"></head></html>'
        assert discover_feed_url(page, "https://example.com/") is None


class TestEntryValidation:
    """Entries that cannot become items are dropped, not escalated."""

    def test_control_characters_do_not_fail_the_feed(self) -> None:
        adapter = FeedAdapter(transport=mock_transport({FEED_URL: _feed_response(CONTROL_CHAR_FEED)}))
        items = _fetch(adapter, make_source(url=FEED_URL))

        assert [item.title for item in items] == ["Clean", "Dirty"]
        assert "\x0b" not in (items[1].summary or "")
        assert "\x0b" not in items[1].content

    def test_non_http_link_is_dropped(self) -> None:
        feed = RSS_FEED.replace("<link>https://example.com/c</link>", "<link>mailto:desk@example.com</link>")
        adapter = FeedAdapter(transport=mock_transport({FEED_URL: _feed_response(feed)}))
        items = _fetch(adapter, make_source(url=FEED_URL))

        assert [item.title for item in items] == ["First & Best"]
