"""
Git-based synchronization of worklog data.

Reconciles the local store with a snapshot of the canonical data file
published on a dedicated git ref (default ``refs/worklog/data``). The ref
lives outside the branch namespace, so syncing never touches the working
tree or the checked-out branch and never shows up as a pushed branch.

Example:
    >>> from worklog.core.sync import GitTarget, GitTransport, SyncService
    >>> service = SyncService(
    ...     store, GitTransport(Path(".")), data_file=data_file, target=GitTarget()
    ... )
    >>> result = service.sync()
    >>> for conflict in result.conflicts:
    ...     print(conflict)
"""

from worklog.core.sync.merge import (
    count_updated_items,
    merge_comments,
    merge_work_items,
)
from worklog.core.sync.models import (
    ChosenSource,
    CommentMergeOutcome,
    ConflictDetail,
    ConflictFieldDetail,
    ConflictType,
    ConflictValue,
    GitTarget,
    SyncPhase,
    SyncResult,
    WorkItemMergeOutcome,
)
from worklog.core.sync.scheduler import AutoSyncWorker
from worklog.core.sync.service import (
    RecordStore,
    SyncContentionError,
    SyncError,
    SyncService,
)
from worklog.core.sync.transport import (
    GitError,
    GitTransport,
    PublishRejectedError,
    TransportError,
)

__all__ = [
    "AutoSyncWorker",
    "ChosenSource",
    "CommentMergeOutcome",
    "ConflictDetail",
    "ConflictFieldDetail",
    "ConflictType",
    "ConflictValue",
    "GitError",
    "GitTarget",
    "GitTransport",
    "PublishRejectedError",
    "RecordStore",
    "SyncContentionError",
    "SyncError",
    "SyncPhase",
    "SyncResult",
    "SyncService",
    "TransportError",
    "WorkItemMergeOutcome",
    "count_updated_items",
    "merge_comments",
    "merge_work_items",
]
