"""
Data models for the sync engine.

Defines the conflict model reported by the merge engine, the git target a
snapshot is published to, sync phases, and the aggregate sync result.
"""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from worklog.core.items.models import Comment, WorkItem

# Field values crossing the conflict-reporting boundary. Record models never
# use this type.
ConflictValue = Union[str, int, float, bool, list[str], None]

DEFAULT_REMOTE = "origin"
DEFAULT_REF = "refs/worklog/data"

CONFLICTING_FIELDS_MARKER = "Conflicting fields"
SAME_TIMESTAMP_MARKER = "Same updatedAt"
MERGED_FIELDS_MARKER = "Merged fields"
SAME_COMMENT_MARKER = "Same comment id but different content"


class ConflictType(str, Enum):
    """How the two sides of a conflict were ordered."""

    SAME_TIMESTAMP = "same-timestamp"
    DIFFERENT_TIMESTAMP = "different-timestamp"


class ChosenSource(str, Enum):
    """Which side supplied the resolved value."""

    LOCAL = "local"
    REMOTE = "remote"
    MERGED = "merged"


class ConflictFieldDetail(BaseModel):
    """A single field on which local and remote disagreed."""

    model_config = ConfigDict(populate_by_name=True)

    field: str = Field(description="Wire name of the field")
    local_value: ConflictValue = Field(default=None, alias="localValue")
    remote_value: ConflictValue = Field(default=None, alias="remoteValue")
    chosen_value: ConflictValue = Field(default=None, alias="chosenValue")
    chosen_source: ChosenSource = Field(alias="chosenSource")
    reason: str = Field(default="", description="Human-readable explanation")


class ConflictDetail(BaseModel):
    """
    Structured record of one conflicted record.

    The short string markers returned next to these are for classification;
    this model is what a UI renders.
    """

    model_config = ConfigDict(populate_by_name=True)

    item_id: str = Field(alias="itemId")
    conflict_type: ConflictType = Field(alias="conflictType")
    fields: list[ConflictFieldDetail] = Field(default_factory=list)
    local_updated_at: str | None = Field(default=None, alias="localUpdatedAt")
    remote_updated_at: str | None = Field(default=None, alias="remoteUpdatedAt")


class WorkItemMergeOutcome(NamedTuple):
    """Result of merging two work item collections."""

    merged: list[WorkItem]
    conflicts: list[str]
    conflict_details: list[ConflictDetail]


class CommentMergeOutcome(NamedTuple):
    """Result of merging two comment collections."""

    merged: list[Comment]
    conflicts: list[str]
    conflict_details: list[ConflictDetail]


class SyncPhase(str, Enum):
    """Phases of a single sync invocation."""

    IDLE = "idle"
    FETCHING = "fetching"
    MERGING = "merging"
    WRITING = "writing"
    PUBLISHING = "publishing"
    DONE = "done"
    FAILED = "failed"


class GitTarget(BaseModel):
    """
    Where snapshots live on the remote.

    ``ref`` is a full ref name outside the branch namespace by default. A
    value that does not start with ``refs/`` is taken as a branch name.

    Example:
        >>> GitTarget().tracking_ref
        'refs/worklog/remotes/origin/worklog/data'
        >>> GitTarget(ref="worklog-data").tracking_ref
        'refs/remotes/origin/worklog-data'
    """

    model_config = ConfigDict(frozen=True)

    remote: str = Field(default=DEFAULT_REMOTE, min_length=1)
    ref: str = Field(default=DEFAULT_REF, min_length=1)

    @property
    def is_branch(self) -> bool:
        return not self.ref.startswith("refs/") or self.ref.startswith("refs/heads/")

    @property
    def full_ref(self) -> str:
        """The ref as it exists on the remote."""
        if self.ref.startswith("refs/"):
            return self.ref
        return f"refs/heads/{self.ref}"

    @property
    def tracking_ref(self) -> str:
        """
        Local ref that mirrors the remote ref.

        Custom refs are tracked under ``refs/worklog/remotes`` so they never
        show up as remote branches.
        """
        if self.is_branch:
            branch = self.full_ref[len("refs/heads/") :]
            return f"refs/remotes/{self.remote}/{branch}"
        return f"refs/worklog/remotes/{self.remote}/{self.ref[len('refs/') :]}"

    def describe(self) -> str:
        return f"{self.remote} {self.full_ref}"


class SyncResult(BaseModel):
    """
    Result of a sync invocation.

    Counts describe the first merge attempt. If a publish was rejected and
    the cycle retried, conflicts found on later attempts are appended.
    Serialized with camelCase keys, like the conflict details it holds.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    items_added: int = Field(default=0, description="Work item ids present on exactly one side")
    items_updated: int = Field(default=0, description="Work items whose content was reconciled")
    items_unchanged: int = Field(default=0)
    comments_added: int = Field(default=0)
    comments_updated: int = Field(default=0)
    comments_unchanged: int = Field(default=0)

    conflicts: list[str] = Field(default_factory=list)
    conflict_details: list[ConflictDetail] = Field(default_factory=list)

    dry_run: bool = Field(default=False)
    pushed: bool = Field(default=False, description="Whether a new snapshot was published")
    commit_sha: str | None = Field(default=None, description="SHA of the published snapshot")
    attempts: int = Field(default=1, ge=1, description="Fetch-merge-publish cycles run")

    local_items: int = Field(default=0)
    remote_items: int = Field(default=0)
    total_items: int = Field(default=0)
    total_comments: int = Field(default=0)

    def summary(self) -> str:
        """Generate a human-readable summary of the result."""
        prefix = "Dry run" if self.dry_run else "Sync complete"
        parts = [
            f"{self.items_added} items added",
            f"{self.items_updated} updated",
            f"{self.items_unchanged} unchanged",
            f"{self.comments_added} comments added",
        ]
        if self.comments_updated:
            parts.append(f"{self.comments_updated} comments updated")
        if self.conflict_details:
            parts.append(f"{len(self.conflict_details)} conflicts resolved")
        if self.pushed and self.commit_sha:
            parts.append(f"pushed {self.commit_sha[:8]}")
        if self.attempts > 1:
            parts.append(f"{self.attempts} attempts")
        return f"{prefix}: " + ", ".join(parts)
