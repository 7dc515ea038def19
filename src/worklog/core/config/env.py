"""
Layered .env loading for WORKLOG_* settings.

Settings such as WORKLOG_SYNC_REMOTE may be kept in .env files next to the
project or in the user's config directory. Only WORKLOG_* variables are
taken from those files; a project .env usually belongs to the application
being tracked and its other variables are none of our business.

Precedence:
  os.environ (pre-existing) > .worklog/.env > project .env > user .env
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path

from dotenv import dotenv_values

from worklog.core.config.loader import WORKLOG_DIR, get_user_config_path

logger = logging.getLogger(__name__)

ENV_PREFIX = "WORKLOG_"


def default_env_paths(project_dir: Path) -> tuple[list[Path], list[Path]]:
    """User and project .env files, lowest precedence first."""
    user = [get_user_config_path().parent / ".env"]
    project = [project_dir / ".env", project_dir / WORKLOG_DIR / ".env"]
    return user, project


def read_worklog_env(paths: Iterable[Path], prefix: str = ENV_PREFIX) -> dict[str, str]:
    """
    Collect ``prefix`` variables from .env files.

    Later files override earlier ones. Missing files are skipped, and so are
    keys without a value.
    """
    values: dict[str, str] = {}
    for path in paths:
        if not path.is_file():
            continue
        for key, value in dotenv_values(path).items():
            if value is None or not key.startswith(prefix):
                continue
            values[key] = value
    return values


def load_layered_env(
    *,
    project_dir: Path | None = None,
    user_env_paths: Iterable[Path] | None = None,
    project_env_paths: Iterable[Path] | None = None,
) -> set[str]:
    """
    Export WORKLOG_* variables from user and project .env files.

    A variable already present in the process environment is never
    overridden.

    Args:
        project_dir: Base directory for the default project paths (defaults to cwd)
        user_env_paths: Explicit user .env files
        project_env_paths: Explicit project .env files

    Returns:
        Names of the variables that were set from files
    """
    default_user, default_project = default_env_paths(project_dir or Path.cwd())
    layers = [
        *(default_user if user_env_paths is None else user_env_paths),
        *(default_project if project_env_paths is None else project_env_paths),
    ]

    loaded: set[str] = set()
    for key, value in read_worklog_env(layers).items():
        if key in os.environ:
            logger.debug("Keeping %s from the environment", key)
            continue
        os.environ[key] = value
        loaded.add(key)
    return loaded
