"""
Configuration loading with multi-layer merging.

Implements the configuration precedence chain:
    defaults < user config < project defaults < project config < env vars
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from .models import WorklogConfig

logger = logging.getLogger(__name__)

WORKLOG_DIR = ".worklog"

# Loaded configs keyed by resolved project directory
_config_cache: dict[Path, WorklogConfig] = {}

_SNAKE_RE = re.compile(r"_([a-z])")


def get_xdg_config_home() -> Path:
    """
    Get XDG config home directory.

    Returns:
        Path to config directory (defaults to ~/.config)
    """
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home)
    return Path.home() / ".config"


def get_user_config_path() -> Path:
    """Path to ~/.config/worklog/config.yaml (or XDG equivalent)."""
    return get_xdg_config_home() / "worklog" / "config.yaml"


def get_project_defaults_path(project_dir: Path | None = None) -> Path:
    """Path to the committed project defaults, `.worklog/config.defaults.yaml`."""
    return (project_dir or Path.cwd()) / WORKLOG_DIR / "config.defaults.yaml"


def get_project_config_path(project_dir: Path | None = None) -> Path:
    """Path to the local project config, `.worklog/config.yaml`."""
    return (project_dir or Path.cwd()) / WORKLOG_DIR / "config.yaml"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values in `override` take precedence over values in `base`.
    Nested dicts are merged, not replaced.

    Example:
        >>> deep_merge({"a": 1, "b": {"x": 10}}, {"b": {"y": 20}})
        {'a': 1, 'b': {'x': 10, 'y': 20}}
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _camel_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Normalize top-level snake_case keys to camelCase so layers merge by key."""
    return {_SNAKE_RE.sub(lambda m: m.group(1).upper(), key): value for key, value in data.items()}


def load_yaml_file(path: Path) -> dict[str, Any] | None:
    """
    Load a YAML mapping, returning None if it doesn't exist or is invalid.

    Args:
        path: Path to YAML file

    Returns:
        Parsed mapping with camelCase keys, or None
    """
    if not path.exists():
        return None

    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (yaml.YAMLError, OSError) as e:
        # Config loading stays resilient; a broken layer is skipped.
        logger.warning("Failed to parse config at %s: %s", path, e)
        return None

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config at %s: expected a mapping", path)
        return None
    return _camel_keys(data)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() not in ("false", "0", "no", "off", "")


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Supported env vars:
        WORKLOG_SYNC_REMOTE - overrides syncRemote
        WORKLOG_SYNC_REF - overrides syncRef
        WORKLOG_AUTO_SYNC - overrides autoSync
        WORKLOG_SYNC_MAX_RETRIES - overrides syncMaxRetries
    """
    result = config_dict.copy()

    if remote := os.environ.get("WORKLOG_SYNC_REMOTE"):
        result["syncRemote"] = remote

    if ref := os.environ.get("WORKLOG_SYNC_REF"):
        result.pop("syncBranch", None)
        result["syncRef"] = ref

    if (auto_sync := os.environ.get("WORKLOG_AUTO_SYNC")) is not None:
        result["autoSync"] = _parse_bool(auto_sync)

    if retries_str := os.environ.get("WORKLOG_SYNC_MAX_RETRIES"):
        try:
            retries = int(retries_str)
        except ValueError:
            logger.warning("Invalid WORKLOG_SYNC_MAX_RETRIES value '%s', ignoring", retries_str)
        else:
            if retries < 1:
                logger.warning("WORKLOG_SYNC_MAX_RETRIES must be >= 1, got %d, ignoring", retries)
            else:
                result["syncMaxRetries"] = retries

    return result


def get_default_config() -> dict[str, Any]:
    """Hardcoded default configuration."""
    return WorklogConfig().model_dump(by_alias=True)


def load_config(project_dir: Path | None = None, use_cache: bool = True) -> WorklogConfig:
    """
    Load configuration with multi-layer merging.

    Configuration precedence (highest to lowest):
        1. Environment variables (WORKLOG_*)
        2. Project config (.worklog/config.yaml)
        3. Project defaults (.worklog/config.defaults.yaml)
        4. User config (~/.config/worklog/config.yaml)
        5. Hardcoded defaults

    Args:
        project_dir: Project root (defaults to cwd)
        use_cache: If True, return cached config from previous load

    Returns:
        Validated WorklogConfig instance

    Raises:
        ValidationError: If the merged config fails Pydantic validation
    """
    key = (project_dir or Path.cwd()).resolve()
    if use_cache and key in _config_cache:
        return _config_cache[key]

    merged = get_default_config()

    for path in (
        get_user_config_path(),
        get_project_defaults_path(key),
        get_project_config_path(key),
    ):
        if layer := load_yaml_file(path):
            # A layer naming the legacy key replaces the ref from lower layers.
            if "syncBranch" in layer and "syncRef" not in layer:
                merged.pop("syncRef", None)
            merged = deep_merge(merged, layer)
            logger.debug("Loaded config layer %s", path)

    merged = apply_env_overrides(merged)

    config = WorklogConfig.model_validate(merged)
    _config_cache[key] = config
    return config


def clear_cache() -> None:
    """
    Clear the cached configuration.

    Useful for testing or when config files change during execution.
    """
    _config_cache.clear()
