"""
Record models for worklog.

Defines the two record kinds stored in the canonical data file: work items
and comments. Field names are snake_case in Python and camelCase on the
wire; both spellings are accepted on input. Unknown fields are kept on the
model so a record written by a newer client survives a round trip through
an older one.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WorkItemStatus(str, Enum):
    """Work item lifecycle states.

    Deletion is a status, not a removal, so a delete on one clone cannot be
    resurrected by a concurrent edit on another.
    """

    OPEN = "open"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    DELETED = "deleted"


class WorkItemPriority(str, Enum):
    """Work item priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Interop fields omitted from the wire form when unset.
OPTIONAL_WIRE_FIELDS = frozenset(
    {
        "githubIssueNumber",
        "githubIssueId",
        "githubIssueUpdatedAt",
        "githubCommentId",
        "githubCommentUpdatedAt",
    }
)


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def parse_timestamp(value: str | None) -> datetime | None:
    """
    Parse an ISO-8601 timestamp for ordering.

    Naive values are treated as UTC so that they compare against aware ones.

    Args:
        value: Timestamp string as found on the wire

    Returns:
        Aware datetime, or None if the value is missing or unparseable
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def compare_timestamps(a: str | None, b: str | None) -> int:
    """
    Order two wire timestamps.

    Parsed instants are compared when both sides parse; otherwise the raw
    strings are compared so the result is still total and deterministic.

    Returns:
        -1 if a is earlier, 1 if a is later, 0 if they are the same instant
    """
    parsed_a = parse_timestamp(a)
    parsed_b = parse_timestamp(b)
    if parsed_a is not None and parsed_b is not None:
        left: Any = parsed_a
        right: Any = parsed_b
    else:
        left, right = a or "", b or ""
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


class WorkItem(BaseModel):
    """
    A work item tracked by worklog.

    Example:
        >>> item = WorkItem(
        ...     id="WI-0001",
        ...     title="Fix sync",
        ...     createdAt="2024-01-01T00:00:00.000Z",
        ...     updatedAt="2024-01-01T00:00:00.000Z",
        ... )
        >>> item.to_wire()["parentId"] is None
        True
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="allow",
        use_enum_values=False,
    )

    id: str = Field(..., min_length=1, description="Stable identifier shared by all clones")
    title: str = Field(default="", description="Short title")
    description: str = Field(default="", description="Longer description (markdown)")
    status: WorkItemStatus = Field(default=WorkItemStatus.OPEN)
    priority: WorkItemPriority = Field(default=WorkItemPriority.MEDIUM)
    sort_index: int = Field(default=0, alias="sortIndex")
    parent_id: str | None = Field(default=None, alias="parentId")
    created_at: str = Field(..., alias="createdAt")
    updated_at: str = Field(..., alias="updatedAt")
    tags: list[str] = Field(default_factory=list)
    assignee: str = Field(default="")
    stage: str = Field(default="")

    # Interoperability with other trackers
    issue_type: str = Field(default="", alias="issueType")
    created_by: str = Field(default="", alias="createdBy")
    deleted_by: str = Field(default="", alias="deletedBy")
    delete_reason: str = Field(default="", alias="deleteReason")
    github_issue_number: int | None = Field(default=None, alias="githubIssueNumber")
    github_issue_id: int | None = Field(default=None, alias="githubIssueId")
    github_issue_updated_at: str | None = Field(default=None, alias="githubIssueUpdatedAt")

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Any) -> list[str]:
        """Accept null and coerce tag values to strings."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(tag) for tag in v]

    @field_validator("parent_id", mode="before")
    @classmethod
    def validate_parent_id(cls, v: Any) -> str | None:
        """Empty parent ids mean root."""
        if v == "":
            return None
        return v

    @property
    def is_deleted(self) -> bool:
        return self.status == WorkItemStatus.DELETED

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the camelCase dict written to the data file."""
        data = self.model_dump(by_alias=True, mode="json")
        return {k: v for k, v in data.items() if not (v is None and k in OPTIONAL_WIRE_FIELDS)}

    def mark_updated(self) -> None:
        """Bump updated_at without ever moving it backwards."""
        now = utc_now_iso()
        if compare_timestamps(now, self.updated_at) > 0:
            self.updated_at = now


class Comment(BaseModel):
    """
    A comment attached to a work item.

    Comments carry no last-modified timestamp; they are created once and
    rarely edited.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(..., min_length=1, description="Identifier derived from the work item prefix")
    work_item_id: str = Field(..., alias="workItemId")
    author: str = Field(default="")
    comment: str = Field(default="", description="Comment body")
    created_at: str = Field(..., alias="createdAt")
    references: list[str] = Field(default_factory=list)
    github_comment_id: int | None = Field(default=None, alias="githubCommentId")
    github_comment_updated_at: str | None = Field(default=None, alias="githubCommentUpdatedAt")

    @field_validator("references", mode="before")
    @classmethod
    def validate_references(cls, v: Any) -> list[str]:
        if v is None:
            return []
        return [str(ref) for ref in v]

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the camelCase dict written to the data file."""
        data = self.model_dump(by_alias=True, mode="json")
        return {k: v for k, v in data.items() if not (v is None and k in OPTIONAL_WIRE_FIELDS)}
