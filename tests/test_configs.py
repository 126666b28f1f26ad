"""Tests for typed adapter configuration."""

import pytest

from contentcrawl.errors import ConfigError
from contentcrawl.ingestion.configs import (
    ApiConfig,
    FeedConfig,
    ScraperConfig,
    compile_regex,
    validate_adapter_config,
)
from contentcrawl.models import SourceType


class TestValidateAdapterConfig:
    """Tests for validate_adapter_config."""

    def test_defaults_per_type(self) -> None:
        feed = validate_adapter_config("feed", {})
        api = validate_adapter_config(SourceType.API, None)
        scraper = validate_adapter_config("scraper", {})

        assert isinstance(feed, FeedConfig) and feed.max_items == 50
        assert isinstance(api, ApiConfig) and api.max_pages == 5 and api.max_items == 100
        assert api.field_mapping["publish_date"] == "date"
        assert isinstance(scraper, ScraperConfig) and scraper.content_cleaning.remove_scripts

    def test_webhook_has_no_schema(self) -> None:
        assert validate_adapter_config("webhook", {"anything": 1}) is None

    def test_unknown_keys_rejected(self) -> None:
        with pytest.raises(ConfigError):
            validate_adapter_config("feed", {"max_itemz": 10})

    def test_api_auth_requires_credentials(self) -> None:
        with pytest.raises(ConfigError, match="bearer"):
            validate_adapter_config("api", {"auth_type": "bearer"})

    def test_api_mapping_requires_title_and_url(self) -> None:
        with pytest.raises(ConfigError):
            validate_adapter_config("api", {"field_mapping": {"title": "name"}})

    @pytest.mark.parametrize(
        "selector_type,selector",
        [("xpath", "//div[@class="), ("css", "div..post"), ("regex", "/(unclosed/")],
    )
    def test_bad_selectors_rejected(self, selector_type: str, selector: str) -> None:
        with pytest.raises(ConfigError):
            validate_adapter_config("scraper", {"selector_type": selector_type, "item_selector": selector})

    def test_render_requires_renderer_url(self) -> None:
        with pytest.raises(ConfigError):
            validate_adapter_config("scraper", {"render_javascript": True})

    def test_publish_date_selector_alias(self) -> None:
        config = validate_adapter_config("scraper", {"publish_date_selector": "//time"})
        assert config.date_selector == "//time"


class TestCompileRegex:
    """Tests for compile_regex."""

    def test_delimited_with_flags(self) -> None:
        pattern = compile_regex("/<h1>(.*?)<\\/h1>/is")
        assert pattern.search("<H1>Line\nTwo</H1>").group(1) == "Line\nTwo"

    def test_angle_bracket_named_groups(self) -> None:
        pattern = compile_regex("(?<title>\\w+)")
        assert pattern.search("hello").group("title") == "hello"

    def test_plain_pattern(self) -> None:
        assert compile_regex("a+b").search("xaab") is not None
