"""Content inspection commands."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ..models import ContentQuery, ContentStatus
from .common import ConfigOption, format_time, open_services

console = Console()
content_app = typer.Typer(help="Inspect stored content")


def _build_query(
    content_type: Optional[str],
    status: Optional[ContentStatus],
    source_id: Optional[int],
    min_quality: Optional[int],
    search: Optional[str],
    **paging,
) -> ContentQuery:
    return ContentQuery(
        type=content_type,
        status=status,
        source_id=source_id,
        min_quality=min_quality,
        search=search,
        **paging,
    )


@content_app.command("list")
def content_list(
    content_type: Optional[str] = typer.Option(None, "--type", "-t", help="Content type"),
    status: Optional[ContentStatus] = typer.Option(None, "--status", help="Content status"),
    source_id: Optional[int] = typer.Option(None, "--source-id", "-s", help="Source ID"),
    min_quality: Optional[int] = typer.Option(None, "--min-quality", help="Minimum quality score"),
    search: Optional[str] = typer.Option(None, "--search", "-q", help="Search title and content"),
    order_by: str = typer.Option("created_at", "--order-by", help="Sort column"),
    order: str = typer.Option("DESC", "--order", help="ASC or DESC"),
    limit: int = typer.Option(20, "--limit", "-l", help="Rows to show (1-1000)"),
    offset: int = typer.Option(0, "--offset", help="Rows to skip"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """List stored content."""
    query = _build_query(
        content_type, status, source_id, min_quality, search,
        order_by=order_by, order=order, limit=limit, offset=offset,
    )
    with open_services(config_path) as services:
        rows = services.storage.query(query)
        total = services.storage.count(query)

    if not rows:
        console.print("[yellow]No content found.[/yellow]")
        return

    table = Table(title=f"Content ({query.offset + 1}-{query.offset + len(rows)} of {total})")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="cyan", max_width=60)
    table.add_column("Type", style="magenta")
    table.add_column("Status")
    table.add_column("Quality", justify="right", style="green")
    table.add_column("Source", justify="right")
    table.add_column("Published")

    for row in rows:
        table.add_row(
            str(row.id),
            escape(row.title),
            row.type,
            row.status.value,
            str(row.quality_score),
            str(row.source_id or "-"),
            format_time(row.publish_date),
        )
    console.print(table)


@content_app.command("show")
def content_show(
    content_id: int = typer.Argument(..., help="Content ID"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Show one content item."""
    with open_services(config_path) as services:
        row = services.storage.get(content_id)

    if row is None:
        console.print(f"[red]Content {content_id} not found.[/red]")
        raise typer.Exit(1)

    body = row.content if len(row.content) <= 2000 else row.content[:2000] + "…"
    console.print(
        Panel(
            f"[bold]{escape(row.title)}[/bold]\n"
            f"[dim]{row.source_url}[/dim]\n\n"
            f"Type: {row.type}  Status: {row.status.value}  Quality: {row.quality_score}\n"
            f"Published: {format_time(row.publish_date)}  Stored: {format_time(row.created_at)}\n"
            f"Fingerprint: {row.fingerprint}\n\n"
            f"{escape(row.summary or '')}\n\n{escape(body)}",
            title=f"Content {row.id}",
        )
    )


@content_app.command("count")
def content_count(
    content_type: Optional[str] = typer.Option(None, "--type", "-t", help="Content type"),
    status: Optional[ContentStatus] = typer.Option(None, "--status", help="Content status"),
    source_id: Optional[int] = typer.Option(None, "--source-id", "-s", help="Source ID"),
    min_quality: Optional[int] = typer.Option(None, "--min-quality", help="Minimum quality score"),
    search: Optional[str] = typer.Option(None, "--search", "-q", help="Search title and content"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Count stored content matching the filters."""
    query = _build_query(content_type, status, source_id, min_quality, search)
    with open_services(config_path) as services:
        total = services.storage.count(query)
    console.print(str(total))


@content_app.command("delete")
def content_delete(
    content_id: int = typer.Argument(..., help="Content ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Delete a content item and its index entry."""
    if not yes:
        typer.confirm(f"Delete content {content_id}?", abort=True)

    with open_services(config_path) as services:
        deleted = services.storage.delete(content_id)

    if not deleted:
        console.print(f"[red]Content {content_id} not found.[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✅ Deleted content {content_id}[/green]")
