"""Tests for configuration loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from contentcrawl.config import (
    Config,
    ConfigModel,
    CrawlerConfig,
    LoggingConfig,
    SourceConfig,
    load_config,
    load_sources,
    save_config,
    save_sources,
)
from contentcrawl.models import SourceType


class TestLoadConfig:
    """Tests for load_config and Config."""

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("")
        config = load_config(path)
        assert config.crawler.recurrence == "hourly"
        assert config.crawler.retry_attempts == 1
        assert config.postgres.port == 5432

    def test_values_and_json_alias(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            "crawler:\n"
            "  recurrence: daily\n"
            "  max_concurrent: 8\n"
            "logging:\n"
            "  level: DEBUG\n"
            "  json: true\n"
        )
        config = load_config(path)
        assert config.crawler.recurrence == "daily"
        assert config.crawler.max_concurrent == 8
        assert config.logging.level == "DEBUG"
        assert config.logging.json_output is True

    def test_invalid_recurrence(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("crawler:\n  recurrence: weekly\n")
        with pytest.raises(ValueError, match="Invalid configuration"):
            load_config(path)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("crawler: [unclosed\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config(path)

    def test_password_from_environment(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("postgres:\n  password_env: TEST_CRAWL_PW\n")
        monkeypatch.setenv("TEST_CRAWL_PW", "s3cret")
        config = Config(path)
        assert config.get_db_config()["password"] == "s3cret"
        assert config.sources_path == tmp_path / "sources.yaml"

    def test_save_round_trip_keeps_alias(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "config.yaml"
        save_config(ConfigModel(logging=LoggingConfig(json_output=True)), path)
        assert "json: true" in path.read_text()
        assert load_config(path).logging.json_output is True


class TestLoadSources:
    """Tests for load_sources."""

    def test_invalid_entries_are_skipped(self, tmp_path: Path) -> None:
        path = tmp_path / "sources.yaml"
        path.write_text(
            "sources:\n"
            "  - name: Blog\n"
            "    type: rss\n"
            "    url: https://example.com/feed\n"
            "  - name: Broken\n"
            "    type: carrier-pigeon\n"
            "    url: https://example.com\n"
            "  - name: No url\n"
            "  - name: Jobs\n"
            "    type: api\n"
            "    url: https://api.example.com/jobs\n"
            "    adapter_config:\n"
            "      items_path: data\n"
        )
        sources = load_sources(path)
        assert [s.name for s in sources] == ["Blog", "Jobs"]
        assert sources[0].type == SourceType.FEED
        assert sources[1].adapter_config == {"items_path": "data"}

    def test_missing_sources_key(self, tmp_path: Path) -> None:
        path = tmp_path / "sources.yaml"
        path.write_text("other: 1\n")
        assert load_sources(path) == []

    def test_save_and_load(self, tmp_path: Path) -> None:
        path = tmp_path / "sources.yaml"
        save_sources([SourceConfig(name="A", url="https://a.example.com/feed", quota_max_items=10)], path)
        (loaded,) = load_sources(path)
        assert loaded.type == SourceType.FEED
        assert loaded.quota_max_items == 10


class TestSourceConfig:
    """Tests for SourceConfig."""

    def test_to_source_validates_intervals(self) -> None:
        config = SourceConfig(name="A", url="https://a.example.com", fetch_interval=60, min_interval=120)
        with pytest.raises(ValidationError):
            config.to_source()

    def test_to_source(self) -> None:
        source = SourceConfig(name="A", type="scraper", url="https://a.example.com").to_source()
        assert source.type == SourceType.SCRAPER
        assert source.id is None


class TestCrawlerConfig:
    """Tests for CrawlerConfig bounds."""

    def test_negative_retries_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CrawlerConfig(retry_attempts=-1)
