"""
Worklog - local-first issue tracking synced through git.

Work items and comments are kept in a line-oriented data file and shared
between clones through a dedicated git ref.
"""

__version__ = "0.4.0.dev0"

# Re-export core models for convenience
from worklog.core.items.models import Comment, WorkItem, WorkItemPriority, WorkItemStatus

__all__ = ["Comment", "WorkItem", "WorkItemPriority", "WorkItemStatus", "__version__"]
