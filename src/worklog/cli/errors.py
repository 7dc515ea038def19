"""
Standardized error handling and exit codes for the worklog CLI.

Provides consistent error messages with actionable guidance and maps core
exceptions to exit codes.
"""

from enum import IntEnum

from pydantic import ValidationError
from rich.console import Console

from worklog.core.items.jsonl import CodecError
from worklog.core.store.sqlite import StoreError
from worklog.core.sync.service import SyncContentionError
from worklog.core.sync.transport import GitError

# Errors go to stderr so --json output stays parseable.
console = Console(stderr=True)


class ExitCode(IntEnum):
    """Standard exit codes for worklog CLI operations."""

    SUCCESS = 0
    """Operation completed successfully."""

    GENERAL_ERROR = 1
    """Sync failed; local state is consistent and the command can be re-run."""

    USER_ERROR = 2
    """User configuration or input error (actionable by user)."""

    SIGINT = 130
    """Terminated by SIGINT (Ctrl+C) - Unix standard."""


def print_error(
    problem: str,
    *,
    reason: str | None = None,
    solution: str | None = None,
) -> None:
    """
    Print a standardized error message with actionable guidance.

    Args:
        problem: Brief description of what went wrong
        reason: Optional explanation of why it happened
        solution: Optional command or action to fix it
    """
    console.print(f"[red]Error:[/red] {problem}")

    if reason:
        console.print(f"[dim]{reason}[/dim]")

    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {solution}")


def report_sync_error(error: Exception) -> ExitCode:
    """
    Print a sync failure and return the exit code for it.

    Args:
        error: Exception raised by the sync service

    Returns:
        Exit code the command should terminate with
    """
    if isinstance(error, SyncContentionError):
        print_error(
            "Remote data ref kept changing while publishing",
            reason=f"Gave up after {error.attempts} attempts; local data is merged",
            solution="worklog sync",
        )
        return ExitCode.GENERAL_ERROR

    if isinstance(error, GitError):
        print_error(
            f"Git error: {error}",
            reason=error.stderr or None,
            solution="check that the remote is reachable: git remote -v",
        )
        return ExitCode.GENERAL_ERROR

    if isinstance(error, CodecError):
        print_error(
            "Sync data is malformed",
            reason=str(error),
            solution="fix or remove the offending line, then run worklog sync again",
        )
        return ExitCode.GENERAL_ERROR

    if isinstance(error, StoreError):
        print_error("Local cache error", reason=str(error))
        return ExitCode.GENERAL_ERROR

    if isinstance(error, ValidationError):
        print_error(
            "Invalid worklog configuration",
            reason=str(error),
            solution="check .worklog/config.yaml",
        )
        return ExitCode.USER_ERROR

    print_error(f"Sync failed: {error}")
    return ExitCode.GENERAL_ERROR
