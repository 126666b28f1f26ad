"""Smoke tests for the command line interface."""

from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

from typer.testing import CliRunner

from contentcrawl.cli import sources as sources_cli
from contentcrawl.cli.app import app
from contentcrawl.models import SourceError

from conftest import make_source

runner = CliRunner()


class TestCli:
    """Tests that need no database."""

    def test_help_lists_commands(self) -> None:
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("init", "run", "run-source", "status", "daemon", "sources", "content"):
            assert command in result.output

    def test_sources_help(self) -> None:
        result = runner.invoke(app, ["sources", "--help"])
        assert result.exit_code == 0
        assert "import" in result.output
        assert "deactivate" in result.output
        assert "errors" in result.output

    def test_missing_config_exits(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["run", "--config", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 1
        assert "Config file not found" in result.output

    def test_invalid_config_exits(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("crawler:\n  recurrence: fortnightly\n")
        result = runner.invoke(app, ["status", "--config", str(path)])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


class ErrorLogRegistry:
    """Registry stub serving one source and its error log."""

    def __init__(self, entries):
        self.entries = entries
        self.requested_limit = None

    def get(self, source_id):
        return make_source(source_id=source_id, name="Wire") if source_id == 1 else None

    def source_errors(self, source_id, limit=50):
        self.requested_limit = limit
        return self.entries


def _patch_services(monkeypatch, registry) -> None:
    @contextmanager
    def fake_services(config_path=None):
        yield SimpleNamespace(registry=registry)

    monkeypatch.setattr(sources_cli, "open_services", fake_services)


class TestSourcesErrors:
    """Tests for the sources errors command."""

    def test_lists_entries(self, monkeypatch) -> None:
        registry = ErrorLogRegistry(
            [
                SourceError(
                    id=2,
                    source_id=1,
                    error_type="fetch",
                    message="HTTP 503 [x]",
                    context={"attempt": 1},
                    severity="error",
                    created_at=datetime(2025, 1, 6, 10, 0, tzinfo=timezone.utc),
                ),
            ]
        )
        _patch_services(monkeypatch, registry)
        result = runner.invoke(app, ["sources", "errors", "1", "--limit", "5"])

        assert result.exit_code == 0
        assert "HTTP 503 [x]" in result.output
        assert "attempt=1" in result.output
        assert registry.requested_limit == 5

    def test_empty_log(self, monkeypatch) -> None:
        _patch_services(monkeypatch, ErrorLogRegistry([]))
        result = runner.invoke(app, ["sources", "errors", "1"])

        assert result.exit_code == 0
        assert "No errors logged for Wire" in result.output

    def test_unknown_source(self, monkeypatch) -> None:
        _patch_services(monkeypatch, ErrorLogRegistry([]))
        result = runner.invoke(app, ["sources", "errors", "9"])

        assert result.exit_code == 1
        assert "Source 9 not found" in result.output
