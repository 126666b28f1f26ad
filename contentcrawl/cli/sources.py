"""Sources management commands."""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..config import load_sources
from ..errors import CrawlerError
from ..ingestion import default_registry
from ..models import Source, SourceType
from .common import ConfigOption, format_time, load_settings, open_services

console = Console()
sources_app = typer.Typer(help="Manage content sources")


def _parse_adapter_config(raw: Optional[str], config_file: Optional[Path]) -> Optional[Dict[str, Any]]:
    """Read adapter config from a JSON string or a YAML/JSON file."""
    if raw and config_file:
        console.print("[red]Use either --adapter-config or --adapter-config-file, not both.[/red]")
        raise typer.Exit(1)
    try:
        if raw:
            data = json.loads(raw)
        elif config_file:
            with open(config_file) as f:
                data = yaml.safe_load(f)
        else:
            return None
    except (ValueError, yaml.YAMLError, OSError) as e:
        console.print(f"[red]Invalid adapter config: {escape(str(e))}[/red]")
        raise typer.Exit(1)
    if not isinstance(data, dict):
        console.print("[red]Adapter config must be a mapping.[/red]")
        raise typer.Exit(1)
    return data


@sources_app.command("list")
def sources_list(
    active_only: bool = typer.Option(False, "--active", help="Only show active sources"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """List all sources in the registry."""
    with open_services(config_path) as services:
        sources = services.registry.list_sources(active_only=active_only)

    if not sources:
        console.print("[yellow]No sources configured.[/yellow]")
        return

    table = Table(title="Sources")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Active", style="yellow")
    table.add_column("Interval", justify="right", style="green")
    table.add_column("Last fetch")
    table.add_column("Next fetch")
    table.add_column("URL", style="blue")

    for source in sources:
        table.add_row(
            str(source.id),
            source.name,
            source.type.value,
            "✓" if source.active else "✗",
            f"{source.fetch_interval // 60}m",
            format_time(source.last_fetch_at),
            format_time(source.next_fetch_at),
            source.url,
        )

    console.print(table)


@sources_app.command("add")
def sources_add(
    name: str = typer.Option(..., "--name", "-n", help="Source name"),
    url: str = typer.Option(..., "--url", "-u", help="Feed, endpoint or page URL"),
    source_type: SourceType = typer.Option(SourceType.FEED, "--type", "-t", help="Source type"),
    adapter_config: Optional[str] = typer.Option(None, "--adapter-config", help="Adapter config as JSON"),
    adapter_config_file: Optional[Path] = typer.Option(
        None, "--adapter-config-file", help="Adapter config as a YAML or JSON file"
    ),
    interval: int = typer.Option(3600, "--interval", help="Initial fetch interval in seconds", min=1),
    min_interval: int = typer.Option(1800, "--min-interval", help="Lower interval bound in seconds", min=1),
    max_interval: int = typer.Option(86400, "--max-interval", help="Upper interval bound in seconds", min=1),
    quota_items: Optional[int] = typer.Option(None, "--quota-items", help="Max items kept per crawl", min=1),
    quota_size: Optional[int] = typer.Option(None, "--quota-size", help="Max content bytes per item", min=1),
    inactive: bool = typer.Option(False, "--inactive", help="Add the source paused"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Add a new source."""
    try:
        source = Source(
            name=name,
            type=source_type,
            url=url,
            adapter_config=_parse_adapter_config(adapter_config, adapter_config_file) or {},
            active=not inactive,
            fetch_interval=interval,
            min_interval=min_interval,
            max_interval=max_interval,
            quota_max_items=quota_items,
            quota_max_size=quota_size,
        )
    except ValueError as e:
        console.print(f"[red]Invalid source: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    with open_services(config_path) as services:
        if services.registry.get_by_name(name):
            console.print(f"[red]Source '{name}' already exists.[/red]")
            raise typer.Exit(1)
        try:
            created = services.registry.add(source)
        except CrawlerError as e:
            console.print(f"[red]❌ {escape(str(e))}[/red]")
            raise typer.Exit(1)

    console.print(f"[green]✅ Added source: {created.name} (ID {created.id})[/green]")


@sources_app.command("update")
def sources_update(
    source_id: int = typer.Argument(..., help="Source ID"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="New name"),
    url: Optional[str] = typer.Option(None, "--url", "-u", help="New URL"),
    adapter_config: Optional[str] = typer.Option(None, "--adapter-config", help="Adapter config as JSON"),
    adapter_config_file: Optional[Path] = typer.Option(
        None, "--adapter-config-file", help="Adapter config as a YAML or JSON file"
    ),
    interval: Optional[int] = typer.Option(None, "--interval", help="Fetch interval in seconds", min=1),
    min_interval: Optional[int] = typer.Option(None, "--min-interval", help="Lower bound in seconds", min=1),
    max_interval: Optional[int] = typer.Option(None, "--max-interval", help="Upper bound in seconds", min=1),
    quota_items: Optional[int] = typer.Option(None, "--quota-items", help="Max items kept per crawl", min=1),
    quota_size: Optional[int] = typer.Option(None, "--quota-size", help="Max content bytes per item", min=1),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Update fields of a source."""
    patch: Dict[str, Any] = {
        "name": name,
        "url": url,
        "adapter_config": _parse_adapter_config(adapter_config, adapter_config_file),
        "fetch_interval": interval,
        "min_interval": min_interval,
        "max_interval": max_interval,
        "quota_max_items": quota_items,
        "quota_max_size": quota_size,
    }
    patch = {k: v for k, v in patch.items() if v is not None}
    if not patch:
        console.print("[yellow]Nothing to update.[/yellow]")
        return

    with open_services(config_path) as services:
        try:
            updated = services.registry.update(source_id, patch)
        except CrawlerError as e:
            console.print(f"[red]❌ {escape(str(e))}[/red]")
            raise typer.Exit(1)

    if updated is None:
        console.print(f"[red]Source {source_id} not found.[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✅ Updated source: {updated.name} ({', '.join(sorted(patch))})[/green]")


@sources_app.command("remove")
def sources_remove(
    source_id: int = typer.Argument(..., help="Source ID to remove"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Remove a source together with its content and metrics."""
    if not yes:
        typer.confirm(f"Delete source {source_id} and all of its content?", abort=True)

    with open_services(config_path) as services:
        deleted = services.registry.delete(source_id)

    if not deleted:
        console.print(f"[red]Source {source_id} not found.[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✅ Removed source {source_id}[/green]")


def _set_active(source_id: int, active: bool, config_path: Optional[Path]) -> None:
    with open_services(config_path) as services:
        found = services.registry.set_active(source_id, active)
    if not found:
        console.print(f"[red]Source {source_id} not found.[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✅ Source {source_id} {'activated' if active else 'deactivated'}[/green]")


@sources_app.command("activate")
def sources_activate(
    source_id: int = typer.Argument(..., help="Source ID"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Resume crawling a source."""
    _set_active(source_id, True, config_path)


@sources_app.command("deactivate")
def sources_deactivate(
    source_id: int = typer.Argument(..., help="Source ID"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Pause crawling a source."""
    _set_active(source_id, False, config_path)


@sources_app.command("import")
def sources_import(
    sources_file: Optional[Path] = typer.Argument(None, help="sources.yaml to import (default: next to config)"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Sync sources from a YAML file into the registry by name."""
    settings = load_settings(config_path)
    path = sources_file or settings.sources_path
    try:
        sources = load_sources(path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)

    if not sources:
        console.print("[yellow]No sources to import.[/yellow]")
        return

    with open_services(config_path) as services:
        try:
            synced = services.registry.sync_sources(sources)
        except CrawlerError as e:
            console.print(f"[red]❌ {escape(str(e))}[/red]")
            raise typer.Exit(1)

    for name, source_id in synced.items():
        console.print(f"  {source_id:>4}  {name}")
    console.print(f"[green]✅ Imported {len(synced)} sources from {path}[/green]")


@sources_app.command("test")
def sources_test(
    source_id: int = typer.Argument(..., help="Source ID to test"),
    show: int = typer.Option(5, "--show", help="Items to display", min=0),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Fetch a source without storing anything and show what it yields."""
    with open_services(config_path) as services:
        source = services.registry.get(source_id)
        settings = services.config.config.crawler

    if source is None:
        console.print(f"[red]Source {source_id} not found.[/red]")
        raise typer.Exit(1)

    adapters = default_registry(timeout=settings.request_timeout, user_agent=settings.user_agent)
    try:
        adapter = adapters.get(source.type)
        items = asyncio.run(adapter.fetch(source))
    except CrawlerError as e:
        console.print(f"[red]❌ {source.name}: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✅ {source.name}: {len(items)} items[/green]")
    for item in items[:show]:
        date = item.publish_date.strftime("%Y-%m-%d") if item.publish_date else "no date"
        console.print(f"  • [cyan]{item.title}[/cyan] [dim]({date})[/dim]\n    {item.url}")


@sources_app.command("metrics")
def sources_metrics(
    source_id: int = typer.Argument(..., help="Source ID"),
    days: int = typer.Option(30, "--days", "-d", help="Days of history", min=1),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Show crawl history of a source."""
    with open_services(config_path) as services:
        source = services.registry.get(source_id)
        history = services.metrics.source_history(source_id, days=days) if source else []

    if source is None:
        console.print(f"[red]Source {source_id} not found.[/red]")
        raise typer.Exit(1)

    console.print(
        f"[bold]{source.name}[/bold]: interval {source.fetch_interval}s "
        f"[{source.min_interval}s - {source.max_interval}s], next fetch {format_time(source.next_fetch_at)}"
    )
    if not history:
        console.print("[yellow]No crawls recorded in this period.[/yellow]")
        return

    table = Table(title=f"Last {days} days")
    table.add_column("Time", style="cyan")
    table.add_column("Found", justify="right")
    table.add_column("Stored", justify="right")
    table.add_column("Errors", justify="right", style="red")
    table.add_column("Duration", justify="right", style="yellow")
    for row in history:
        table.add_row(
            format_time(row.created_at),
            str(row.items_found),
            str(row.items_processed),
            str(row.errors),
            f"{row.duration_seconds:.1f}s",
        )
    console.print(table)


@sources_app.command("errors")
def sources_errors(
    source_id: int = typer.Argument(..., help="Source ID"),
    limit: int = typer.Option(20, "--limit", "-l", help="Entries to show", min=1),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Show the error log of a source, newest first."""
    with open_services(config_path) as services:
        source = services.registry.get(source_id)
        errors = services.registry.source_errors(source_id, limit=limit) if source else []

    if source is None:
        console.print(f"[red]Source {source_id} not found.[/red]")
        raise typer.Exit(1)
    if not errors:
        console.print(f"[green]No errors logged for {source.name}.[/green]")
        return

    severity_styles = {"error": "red", "warning": "yellow", "critical": "bold red"}
    table = Table(title=f"{source.name} errors")
    table.add_column("Time", style="cyan")
    table.add_column("Severity")
    table.add_column("Type", style="magenta")
    table.add_column("Message")
    table.add_column("Context", style="dim")
    for entry in errors:
        style = severity_styles.get(entry.severity, "white")
        context = ", ".join(f"{k}={v}" for k, v in sorted(entry.context.items()))
        table.add_row(
            format_time(entry.created_at),
            f"[{style}]{entry.severity}[/{style}]",
            entry.error_type,
            escape(entry.message),
            escape(context),
        )
    console.print(table)
