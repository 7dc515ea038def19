"""
Worklog CLI - Sync command for git-based data synchronization.

Provides the CLI interface to the SyncService, which reconciles the local
cache with the snapshot published on a dedicated git ref.
"""

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from worklog.cli.errors import report_sync_error
from worklog.core.store.context import WorklogContext
from worklog.core.sync import ConflictDetail, GitTarget, GitTransport, SyncPhase, SyncService
from worklog.core.sync.models import ConflictValue, SyncResult

console = Console()
app = typer.Typer(
    name="sync",
    help="Sync work items with the shared git ref",
    no_args_is_help=False,
)


def _print_progress(phase: SyncPhase, message: str) -> None:
    console.print(f"[blue]{phase.value}[/blue] {message}")


def _format_value(value: ConflictValue) -> str:
    if value is None:
        return "[dim](none)[/dim]"
    if isinstance(value, list):
        return ", ".join(value) if value else "[dim](empty)[/dim]"
    text = str(value)
    if text == "":
        return "[dim](empty)[/dim]"
    return text if len(text) <= 60 else text[:57] + "..."


def _render_conflict(detail: ConflictDetail) -> Table:
    table = Table(
        title=f"{detail.item_id} ({detail.conflict_type.value})",
        caption=f"local: {detail.local_updated_at}  remote: {detail.remote_updated_at}",
        title_justify="left",
    )
    table.add_column("Field", style="cyan")
    table.add_column("Local")
    table.add_column("Remote")
    table.add_column("Chosen", style="green")
    table.add_column("Source")
    table.add_column("Reason", style="dim")
    for field in detail.fields:
        table.add_row(
            field.field,
            _format_value(field.local_value),
            _format_value(field.remote_value),
            _format_value(field.chosen_value),
            field.chosen_source.value,
            field.reason,
        )
    return table


def _render_result(result: SyncResult) -> None:
    if result.conflict_details:
        console.print()
        console.print(f"[yellow]⚠[/yellow]  Resolved {len(result.conflict_details)} conflicts")
        for detail in result.conflict_details:
            console.print(_render_conflict(detail))

    console.print()
    console.print(f"  Work items added: {result.items_added}")
    console.print(f"  Work items updated: {result.items_updated}")
    console.print(f"  Work items unchanged: {result.items_unchanged}")
    console.print(f"  Comments added: {result.comments_added}")
    console.print(f"  Comments unchanged: {result.comments_unchanged}")
    console.print(f"  Total: {result.total_items} items, {result.total_comments} comments")
    console.print()

    if result.dry_run:
        console.print("[blue]Dry run:[/blue] no changes were written")
    elif result.pushed and result.commit_sha:
        console.print(f"[green]✓[/green] Pushed {result.commit_sha[:8]}")
    else:
        console.print("[green]✓[/green] " + result.summary())


@app.callback(invoke_without_command=True)
def sync(
    ctx: typer.Context,
    file: Path | None = typer.Option(
        None,
        "--file",
        "-f",
        help="Data file to sync (default: configured data file)",
    ),
    git_remote: str | None = typer.Option(
        None,
        "--git-remote",
        help="Git remote to sync with (default: syncRemote from config)",
    ),
    git_ref: str | None = typer.Option(
        None,
        "--git-ref",
        help="Ref holding the shared data (default: syncRef from config)",
    ),
    no_push: bool = typer.Option(
        False,
        "--no-push",
        help="Merge remote changes locally without publishing",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Show what would change without writing anything",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Print the result as JSON",
    ),
) -> None:
    """
    Sync work items and comments with the shared git ref.

    Fetches the snapshot published on the ref, merges it with local data,
    writes the result locally and publishes the merged snapshot.

    Examples:
        worklog sync                       # Full sync with origin
        worklog sync --dry-run             # Preview the merge
        worklog sync --no-push             # Pull remote changes only
        worklog sync --git-ref refs/team/data
    """
    if ctx.invoked_subcommand is not None:
        return

    data_file = file.resolve() if file is not None else None
    try:
        with WorklogContext.open(data_file=data_file) as wctx:
            target = GitTarget(
                remote=git_remote or wctx.config.sync_remote,
                ref=git_ref or wctx.config.sync_ref,
            )
            service = SyncService.from_context(wctx, target=target)
            if not json_output:
                console.print(f"Syncing with [bold]{target.describe()}[/bold]")
            result = service.sync(
                push=not no_push,
                dry_run=dry_run,
                silent=json_output,
                progress=_print_progress,
            )
            if not dry_run:
                wctx.store.mark_exported(wctx.data_file)
    except Exception as e:
        raise typer.Exit(report_sync_error(e)) from e

    if json_output:
        typer.echo(result.model_dump_json(indent=2, by_alias=True))
        return

    _render_result(result)


@app.command()
def status() -> None:
    """
    Show sync configuration and local state.

    Does not contact the remote; shows the tip as of the last sync.

    Examples:
        worklog sync status
    """
    try:
        with WorklogContext.open() as wctx:
            target = wctx.sync_target
            transport = GitTransport(wctx.project_dir)
            tip = transport.tracking_tip(target)
            items = wctx.store.get_all()
            comments = wctx.store.get_all_comments()
            data_file = wctx.data_file
            auto_sync = wctx.config.auto_sync
    except Exception as e:
        raise typer.Exit(report_sync_error(e)) from e

    table = Table(title="Sync Status", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Remote", target.remote)
    table.add_row("Ref", target.full_ref)
    table.add_row("Tracking ref", target.tracking_ref)
    table.add_row("Last synced tip", tip[:8] if tip else "[dim]Never[/dim]")
    table.add_row("Data file", str(data_file))
    table.add_row("Work items", str(len(items)))
    table.add_row("Comments", str(len(comments)))
    table.add_row("Auto-sync", "on" if auto_sync else "off")
    console.print(table)

    if tip is None:
        console.print("\n[dim]→ Run [bold]worklog sync[/bold] to publish local data[/dim]")
