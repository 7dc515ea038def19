"""
Local record cache and project context.

The SQLite cache sits in front of the canonical data file; the context
bundles it with the project's configuration.
"""

from worklog.core.store.context import WorklogContext
from worklog.core.store.sqlite import StoreError, WorklogStore

__all__ = [
    "StoreError",
    "WorklogContext",
    "WorklogStore",
]
