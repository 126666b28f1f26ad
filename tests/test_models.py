"""Tests for domain models."""

import pytest
from pydantic import ValidationError

from contentcrawl.models import ContentQuery, Source, SourceType


class TestSource:
    """Tests for the Source model."""

    def test_defaults(self) -> None:
        source = Source(name="A", type="feed", url="https://a.example.com/feed")
        assert (source.min_interval, source.fetch_interval, source.max_interval) == (1800, 3600, 86400)
        assert source.active is True

    def test_rss_alias(self) -> None:
        assert Source(name="A", type="RSS", url="https://a.example.com").type == SourceType.FEED

    def test_unknown_type(self) -> None:
        with pytest.raises(ValidationError):
            Source(name="A", type="ftp", url="https://a.example.com")

    @pytest.mark.parametrize(
        "fetch,low,high",
        [(100, 1800, 86400), (90000, 1800, 86400), (3600, 7200, 3600)],
    )
    def test_interval_bounds(self, fetch: int, low: int, high: int) -> None:
        with pytest.raises(ValidationError):
            Source(
                name="A",
                type="feed",
                url="https://a.example.com",
                fetch_interval=fetch,
                min_interval=low,
                max_interval=high,
            )

    def test_quota_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            Source(name="A", type="feed", url="https://a.example.com", quota_max_items=0)


class TestContentQuery:
    """Tests for ContentQuery normalization."""

    def test_defaults(self) -> None:
        query = ContentQuery()
        assert (query.order_by, query.order, query.limit, query.offset) == ("created_at", "DESC", 20, 0)

    def test_unknown_order_column_falls_back(self) -> None:
        assert ContentQuery(order_by="id; DROP TABLE contents").order_by == "created_at"

    def test_order_direction(self) -> None:
        assert ContentQuery(order="asc").order == "ASC"
        assert ContentQuery(order="sideways").order == "DESC"

    @pytest.mark.parametrize("limit,expected", [(0, 1), (-5, 1), (50, 50), (5000, 1000)])
    def test_limit_clamped(self, limit: int, expected: int) -> None:
        assert ContentQuery(limit=limit).limit == expected

    def test_negative_offset(self) -> None:
        assert ContentQuery(offset=-10).offset == 0
