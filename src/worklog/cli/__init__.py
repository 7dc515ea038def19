"""
Worklog CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import logging
import sys

import typer
from rich.console import Console

from worklog import __version__
from worklog.cli import sync
from worklog.core.config.env import load_layered_env

app = typer.Typer(
    name="worklog",
    help="Local-first issue tracker that syncs through git",
    no_args_is_help=True,
    add_completion=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)

console = Console()


def setup_logging(debug: bool) -> None:
    """
    Configure logging for CLI commands.

    Args:
        debug: If True, enable DEBUG level logging
    """
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
) -> None:
    """
    Worklog - local-first work item tracking.

    Work items live in .worklog/worklog-data.jsonl and are shared with
    collaborators through a dedicated git ref, without touching your
    working tree or branches.

    Common Workflows:
        worklog sync                 # Merge with the shared ref and publish
        worklog sync --dry-run       # Preview what a sync would change
        worklog sync status          # Show sync configuration
    """
    setup_logging(debug)

    # Precedence: OS env > project .env > user .env
    load_layered_env()

    ctx.obj = {"debug": debug}


app.add_typer(sync.app, name="sync")


@app.command()
def version() -> None:
    """Show worklog version and exit."""
    console.print(f"worklog version {__version__}")
    raise typer.Exit(0)


def cli_main() -> None:
    """Main CLI entry point."""
    app()


__all__ = ["app", "cli_main"]
