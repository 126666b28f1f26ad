"""Shared helpers for CLI commands."""

from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Generator, Optional

import typer
from psycopg_pool import ConnectionPool
from rich.console import Console
from rich.markup import escape

from ..config import Config
from ..db import ContentStorage, CrawlerState, MetricsStore, SourceRegistry, create_pool, validate_connection
from ..ingestion import default_registry
from ..logs import configure_logging
from ..pipeline.orchestrator import CrawlOrchestrator

console = Console()

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to config.yaml (default: ~/.config/contentcrawl/config.yaml)",
)


@dataclass
class Services:
    """Database-backed collaborators for one CLI invocation."""

    config: Config
    pool: ConnectionPool
    registry: SourceRegistry
    storage: ContentStorage
    metrics: MetricsStore
    state: CrawlerState

    def orchestrator(self) -> CrawlOrchestrator:
        """Build an orchestrator with the default adapters."""
        settings = self.config.config.crawler
        adapters = default_registry(timeout=settings.request_timeout, user_agent=settings.user_agent)
        return CrawlOrchestrator(
            registry=self.registry,
            storage=self.storage,
            metrics=self.metrics,
            state=self.state,
            adapters=adapters,
            settings=settings,
        )


def load_settings(config_path: Optional[Path] = None) -> Config:
    """Load config and configure logging, exiting on a missing or invalid file."""
    config = Config(config_path)
    try:
        logging_config = config.config.logging
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {config.config_path}. Run 'contentcrawl init' first.[/red]")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)
    configure_logging(logging_config.level, logging_config.json_output)
    return config


@contextmanager
def open_services(config_path: Optional[Path] = None) -> Generator[Services, None, None]:
    """Open a pool and yield the database collaborators, closing the pool afterwards."""
    config = load_settings(config_path)
    pool = create_pool(config.get_db_config())
    try:
        if not validate_connection(pool):
            console.print("[red]❌ Database connection failed![/red]")
            console.print("Please check your database configuration and ensure Postgres is running.")
            raise typer.Exit(1)
        yield Services(
            config=config,
            pool=pool,
            registry=SourceRegistry(pool),
            storage=ContentStorage(pool),
            metrics=MetricsStore(pool),
            state=CrawlerState(pool),
        )
    finally:
        pool.close()


def format_time(value) -> str:
    """Render an optional timestamp for tables."""
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"
