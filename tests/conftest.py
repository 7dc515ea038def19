"""
Pytest configuration and shared fixtures.

Provides record factories, isolated configuration, and real git
repositories (a bare remote plus clones) used across the test suite.
"""

from __future__ import annotations

import subprocess
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from worklog.core.config.loader import clear_cache
from worklog.core.items.models import Comment, WorkItem

# ==============================================================================
# Environment isolation
# ==============================================================================


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep user config, WORKLOG_* variables and the config cache out of tests."""
    for name in (
        "WORKLOG_SYNC_REMOTE",
        "WORKLOG_SYNC_REF",
        "WORKLOG_AUTO_SYNC",
        "WORKLOG_SYNC_MAX_RETRIES",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    clear_cache()
    yield
    clear_cache()


# ==============================================================================
# Record factories
# ==============================================================================

T0 = "2024-01-01T00:00:00.000Z"


@pytest.fixture
def make_item() -> Callable[..., WorkItem]:
    """Factory for work items with fixed timestamps."""

    def _make(item_id: str = "WI-1", **fields: Any) -> WorkItem:
        data: dict[str, Any] = {
            "id": item_id,
            "title": f"Item {item_id}",
            "createdAt": T0,
            "updatedAt": T0,
        }
        data.update(fields)
        return WorkItem.model_validate(data)

    return _make


@pytest.fixture
def make_comment() -> Callable[..., Comment]:
    """Factory for comments."""

    def _make(comment_id: str = "WI-1-C1", work_item_id: str = "WI-1", **fields: Any) -> Comment:
        data: dict[str, Any] = {
            "id": comment_id,
            "workItemId": work_item_id,
            "author": "alice",
            "comment": "Looks good",
            "createdAt": T0,
        }
        data.update(fields)
        return Comment.model_validate(data)

    return _make


# ==============================================================================
# Git fixtures
# ==============================================================================


def git(cwd: Path, *args: str) -> str:
    """Run git in cwd and return stripped stdout."""
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


@pytest.fixture
def bare_remote(tmp_path: Path) -> Path:
    """Create an empty bare repository acting as the shared remote."""
    remote = tmp_path / "remote.git"
    remote.mkdir()
    git(remote, "init", "--bare")
    return remote


@pytest.fixture
def make_clone(tmp_path: Path, bare_remote: Path) -> Callable[[str], Path]:
    """
    Factory for working repositories with `origin` pointing at bare_remote.

    Each clone has a user identity and one commit on its checked-out branch.
    """

    def _make(name: str) -> Path:
        repo = tmp_path / name
        repo.mkdir()
        git(repo, "init")
        git(repo, "config", "user.email", f"{name}@example.com")
        git(repo, "config", "user.name", name)
        git(repo, "remote", "add", "origin", str(bare_remote))
        (repo / "README.md").write_text("# Test Repo\n")
        git(repo, "add", "README.md")
        git(repo, "commit", "-m", "Initial commit")
        return repo

    return _make


@pytest.fixture
def git_repo(make_clone: Callable[[str], Path]) -> Path:
    """A single working repository connected to the bare remote."""
    return make_clone("repo")


@pytest.fixture
def run_git() -> Callable[..., str]:
    """The git helper, for tests that inspect repositories directly."""
    return git
