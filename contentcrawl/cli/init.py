"""Init command implementation."""

import os
from pathlib import Path
from typing import List

import psycopg
import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from ..config import ConfigModel, SourceConfig, save_config, save_sources
from ..db import create_pool, init_database, validate_connection
from ..db.sources import SourceRegistry
from ..errors import CrawlerError
from ..models import SourceType

console = Console()


def create_default_sources() -> List[SourceConfig]:
    """Create example sources, one per adapter type."""
    return [
        SourceConfig(
            name="Python Insider",
            type=SourceType.FEED,
            url="https://pythoninsider.blogspot.com/feeds/posts/default",
            adapter_config={"max_items": 25},
        ),
        SourceConfig(
            name="Hacker News Front Page",
            type=SourceType.API,
            url="https://hn.algolia.com/api/v1/search?tags=front_page",
            adapter_config={
                "items_path": "hits",
                "field_mapping": {
                    "title": "title",
                    "url": "url",
                    "author": "author",
                    "publish_date": "created_at",
                    "content": "story_text",
                },
            },
            fetch_interval=7200,
        ),
        SourceConfig(
            name="Python Blogs",
            type=SourceType.SCRAPER,
            url="https://www.python.org/blogs/",
            adapter_config={
                "selector_type": "css",
                "item_selector": ".list-recent-posts li",
                "title_selector": "h3 a",
                "url_selector": "h3 a",
                "content_selector": "p",
                "date_selector": "time",
            },
            active=False,
        ),
    ]


def init_command(
    config_dir: Path = typer.Option(
        Path.home() / ".config" / "contentcrawl",
        "--config-dir",
        "-c",
        help="Configuration directory",
    ),
    db_host: str = typer.Option("localhost", "--db-host", help="Postgres host"),
    db_port: int = typer.Option(5432, "--db-port", help="Postgres port"),
    db_name: str = typer.Option("contentcrawl", "--db-name", help="Database name"),
    db_user: str = typer.Option("contentcrawl", "--db-user", help="Database user"),
    seed_sources: bool = typer.Option(
        True,
        "--seed-sources/--no-seed-sources",
        help="Seed example sources",
    ),
) -> None:
    """Initialize crawler configuration and database."""
    console.print(Panel.fit("🕷️ Content Crawler - Initialization", style="bold blue"))

    # Create configuration directory
    config_dir.mkdir(parents=True, exist_ok=True)
    config_path = config_dir / "config.yaml"
    sources_path = config_dir / "sources.yaml"

    # Create default configuration
    config = ConfigModel(
        postgres={
            "host": db_host,
            "port": db_port,
            "database": db_name,
            "user": db_user,
            "password_env": "CONTENTCRAWL_DB_PASSWORD",
        },
    )

    save_config(config, config_path)
    console.print(f"✅ Created config: {config_path}")

    sources = create_default_sources() if seed_sources else []
    save_sources(sources, sources_path)
    console.print(f"✅ Created sources: {sources_path} ({len(sources)} sources)")

    # Validate database connection
    console.print("\n[bold]Testing database connection...[/bold]")
    db_config = config.postgres.model_dump()
    db_config["password"] = os.environ.get("CONTENTCRAWL_DB_PASSWORD", "")
    pool = create_pool(db_config)
    try:
        if not validate_connection(pool):
            console.print(
                "[red]❌ Database connection failed![/red]\n"
                "Please ensure Postgres is running and credentials are correct.\n"
                "Set the password via environment variable: "
                "[bold]export CONTENTCRAWL_DB_PASSWORD=your_password[/bold]"
            )
            raise typer.Exit(1)
        console.print("✅ Database connection successful")

        console.print("\n[bold]Initializing database schema...[/bold]")
        try:
            init_database(pool)
        except psycopg.DatabaseError as e:
            console.print(f"[red]❌ Failed to initialize database: {escape(str(e))}[/red]")
            raise typer.Exit(1)
        console.print("✅ Database schema initialized")

        if sources:
            try:
                synced = SourceRegistry(pool).sync_sources(sources)
            except CrawlerError as e:
                console.print(f"[red]❌ Failed to import sources: {escape(str(e))}[/red]")
                raise typer.Exit(1)
            console.print(f"✅ Imported {len(synced)} sources into the registry")
    finally:
        pool.close()

    console.print(
        Panel(
            f"[green]✅ Content crawler initialized successfully![/green]\n\n"
            f"Configuration: {config_path}\n"
            f"Sources: {sources_path}\n\n"
            f"Next steps:\n"
            f"1. Set database password: [bold]export CONTENTCRAWL_DB_PASSWORD=your_password[/bold]\n"
            f"2. Review sources: [bold]contentcrawl sources list[/bold]\n"
            f"3. Run: [bold]contentcrawl run[/bold]",
            style="green",
        )
    )
