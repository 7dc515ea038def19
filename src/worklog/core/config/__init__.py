"""
Configuration models and loading.

Provides the WorklogConfig model with multi-layer merging:
defaults < user < project defaults < project < env vars.
"""

from .env import load_layered_env
from .loader import (
    clear_cache,
    get_project_config_path,
    get_project_defaults_path,
    get_user_config_path,
    get_xdg_config_home,
    load_config,
)
from .models import WorklogConfig

__all__ = [
    # Models
    "WorklogConfig",
    # Loader functions
    "clear_cache",
    "get_project_config_path",
    "get_project_defaults_path",
    "get_user_config_path",
    "get_xdg_config_home",
    "load_config",
    "load_layered_env",
]
