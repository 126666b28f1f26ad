"""Run, status and daemon commands."""

import threading
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ..pipeline.results import RunResult, SourceResult
from .common import ConfigOption, format_time, open_services

console = Console()


def print_source_results(results: List[SourceResult]) -> None:
    """Print per-source results as a table."""
    table = Table(title="Sources")
    table.add_column("ID", style="dim")
    table.add_column("Source", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Status", style="bold")
    table.add_column("Found", justify="right")
    table.add_column("Stored", justify="right")
    table.add_column("New", justify="right", style="green")
    table.add_column("Attempt", justify="right", style="dim")
    table.add_column("Errors", style="red")

    for result in results:
        status = "[green]✓[/green]" if result.success and not result.errors else "[red]✗[/red]"
        table.add_row(
            str(result.source_id or "-"),
            result.source_name,
            result.source_type,
            status,
            str(result.items_found),
            str(result.items_processed),
            str(result.new_items),
            str(result.attempt),
            escape("; ".join(result.errors)[:120]),
        )
    console.print(table)


def print_run_summary(result: RunResult) -> None:
    """Print summary of a crawl run."""
    if result.sources:
        print_source_results(result.sources)

    style = "green" if result.success and not result.errors else ("yellow" if result.success else "red")
    console.print(
        Panel(
            f"{result.message}\n\n"
            f"Sources processed: {result.sources_processed}\n"
            f"Items found: {result.items_found}\n"
            f"Items stored: {result.items_processed} ({result.new_items} new)\n"
            f"Errors: {result.errors}\n"
            f"Duration: {result.duration_seconds:.1f} seconds\n"
            f"Next run: {format_time(result.next_run_at)}",
            style=style,
        )
    )


def run_command(
    source_id: Optional[List[int]] = typer.Option(None, "--source-id", "-s", help="Only crawl these due sources"),
    source_type: Optional[List[str]] = typer.Option(None, "--type", "-t", help="Only crawl these source types"),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Maximum due sources to crawl", min=1),
    retries: Optional[int] = typer.Option(None, "--retries", "-r", help="Retry passes for failed sources", min=0),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Crawl all due sources once."""
    try:
        with open_services(config_path) as services:
            result = services.orchestrator().run(
                source_ids=source_id or None,
                source_types=source_type or None,
                limit=limit,
                retry_attempts=retries,
            )
        print_run_summary(result)
        if not result.success:
            raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Crawl interrupted by user[/yellow]")
        raise typer.Exit(1)


def run_source_command(
    source_id: int = typer.Argument(..., help="Source ID to crawl now"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Crawl a single source immediately, ignoring its schedule."""
    with open_services(config_path) as services:
        result = services.orchestrator().crawl_source_by_id(source_id)
    print_source_results([result])
    if not result.success:
        raise typer.Exit(1)


def status_command(
    log_lines: int = typer.Option(10, "--log-lines", "-n", help="Recent history rows to show", min=0),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Show schedule, adapters and recent runs."""
    with open_services(config_path) as services:
        status = services.orchestrator().status()
        runs = services.metrics.recent_runs(log_lines) if log_lines else []
        window = services.metrics.window_aggregate()
        due = services.registry.list_due()

    console.print(
        Panel(
            f"Last run: {format_time(status.last_run_at)}\n"
            f"Next run: {format_time(status.next_run_at)}\n"
            f"Recurrence: {status.recurrence}\n"
            f"Adapters: {', '.join(status.adapters)}\n"
            f"Due sources: {len(due)}\n"
            f"7-day error rate: {window.error_rate:.1%} over {window.total_crawls} crawls\n"
            f"Last error: {escape(status.last_error or '-')}",
            title="Crawler Status",
            style="blue",
        )
    )

    if runs:
        table = Table(title="Recent Runs")
        table.add_column("Finished", style="cyan")
        table.add_column("Sources", justify="right")
        table.add_column("Found", justify="right")
        table.add_column("Stored", justify="right")
        table.add_column("Errors", justify="right", style="red")
        table.add_column("Duration", justify="right", style="yellow")
        for run in runs:
            table.add_row(
                format_time(run.created_at),
                str(run.sources_processed),
                str(run.items_found),
                str(run.items_processed),
                str(run.errors),
                f"{run.duration_seconds:.1f}s",
            )
        console.print(table)


def daemon_command(
    poll_seconds: float = typer.Option(60.0, "--poll", help="Seconds between schedule checks", min=1.0),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Run crawls continuously on the adaptive schedule."""
    stop_event = threading.Event()
    with open_services(config_path) as services:
        orchestrator = services.orchestrator()
        console.print(f"[bold]Crawler daemon started[/bold] (checking every {poll_seconds:.0f}s, Ctrl+C to stop)")
        try:
            orchestrator.run_forever(stop_event, poll_seconds=poll_seconds)
        except KeyboardInterrupt:
            stop_event.set()
            console.print("\n[yellow]Crawler daemon stopped[/yellow]")
