"""Main CLI application."""

import typer
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

from .content import content_app
from .init import init_command
from .run import daemon_command, run_command, run_source_command, status_command
from .sources import sources_app

app = typer.Typer(
    name="contentcrawl",
    help="Content Crawler - adaptive multi-source ingestion",
    no_args_is_help=True,
)

# Register commands
app.command("init")(init_command)
app.command("run")(run_command)
app.command("run-source")(run_source_command)
app.command("status")(status_command)
app.command("daemon")(daemon_command)
app.add_typer(sources_app, name="sources", help="Manage content sources")
app.add_typer(content_app, name="content", help="Inspect stored content")


if __name__ == "__main__":
    app()
