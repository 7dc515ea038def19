"""
Two-way merge of work item and comment collections.

Reconciles a local and a remote snapshot of the same records without a
common ancestor. Records are keyed by id:

- A record present on one side only is carried over unchanged.
- A record that is identical on both sides (tags compared as a set) is
  kept as is and reported nowhere.
- A work item whose two versions carry different ``updatedAt`` values is
  resolved field by field in favour of the newer version, except for tags,
  which are always the union of both sides.
- A work item whose two versions share ``updatedAt`` but differ in content
  is resolved by a rule that depends only on the two values, never on which
  side is called local. Both clones reconciling the same pair therefore
  produce the same record. Tags are unioned and sorted; a non-empty value
  beats an empty one; otherwise the greater stable value key wins.
- Comments have no modification time. Two versions of one comment id that
  differ are resolved in favour of the version with the greater canonical
  key, which is again independent of argument order.

Merging never raises on disagreement. Every resolution is reported as a
short marker string and as a structured ``ConflictDetail``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from typing import Any, TypeVar

from worklog.core.items.models import Comment, WorkItem, compare_timestamps
from worklog.core.sync.models import (
    CONFLICTING_FIELDS_MARKER,
    MERGED_FIELDS_MARKER,
    SAME_COMMENT_MARKER,
    SAME_TIMESTAMP_MARKER,
    ChosenSource,
    CommentMergeOutcome,
    ConflictDetail,
    ConflictFieldDetail,
    ConflictType,
    ConflictValue,
    WorkItemMergeOutcome,
)

logger = logging.getLogger(__name__)

# Wire names of the work item fields reconciled by the merge, in report order.
MERGE_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "status",
    "priority",
    "sortIndex",
    "parentId",
    "tags",
    "assignee",
    "stage",
    "issueType",
    "createdBy",
    "deletedBy",
    "deleteReason",
    "githubIssueNumber",
    "githubIssueId",
    "githubIssueUpdatedAt",
)

_RecordT = TypeVar("_RecordT", WorkItem, Comment)


def canonical_key(record: WorkItem | Comment) -> str:
    """
    Serialization used to decide whether two records are the same.

    Keys are sorted and tags compared as a set, so field order and tag order
    never make two otherwise equal records differ.
    """
    data = record.to_wire()
    if isinstance(data.get("tags"), list):
        data["tags"] = sorted(str(tag) for tag in data["tags"])
    return json.dumps(data, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def stable_value_key(value: Any) -> str:
    """
    Total, type-tagged ordering key for a single field value.

    Lists are compared as sorted string lists.
    """
    if value is None:
        return "n"
    if isinstance(value, list):
        return "a:" + json.dumps(sorted(str(v) for v in value), ensure_ascii=False)
    return "v:" + json.dumps(value, sort_keys=True, ensure_ascii=False)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


def _values_equal(field: str, left: Any, right: Any) -> bool:
    if field == "tags":
        return sorted(map(str, left or [])) == sorted(map(str, right or []))
    return bool(left == right)


def _conflict_value(value: Any) -> ConflictValue:
    if isinstance(value, list):
        return [str(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return json.dumps(value, sort_keys=True)


def _union_tags(first: Iterable[Any], second: Iterable[Any]) -> list[str]:
    out: list[str] = []
    for tag in (*first, *second):
        tag = str(tag)
        if tag not in out:
            out.append(tag)
    return out


def _earliest(a: str, b: str) -> str:
    order = compare_timestamps(a, b)
    if order < 0:
        return a
    if order > 0:
        return b
    return max(a, b)


def _index(records: Iterable[_RecordT]) -> dict[str, _RecordT]:
    # Later duplicates of an id replace earlier ones but keep the first position.
    index: dict[str, _RecordT] = {}
    for record in records:
        index[record.id] = record
    return index


def _detail(
    field: str,
    local_value: Any,
    remote_value: Any,
    chosen_value: Any,
    source: ChosenSource,
    reason: str,
) -> ConflictFieldDetail:
    return ConflictFieldDetail(
        field=field,
        local_value=_conflict_value(local_value),
        remote_value=_conflict_value(remote_value),
        chosen_value=_conflict_value(chosen_value),
        chosen_source=source,
        reason=reason,
    )


def _merge_different_timestamps(
    local: WorkItem,
    remote: WorkItem,
    conflicts: list[str],
    details: list[ConflictDetail],
) -> WorkItem:
    remote_newer = compare_timestamps(remote.updated_at, local.updated_at) > 0
    newer, older = (remote, local) if remote_newer else (local, remote)
    newer_side = ChosenSource.REMOTE if remote_newer else ChosenSource.LOCAL
    older_side = ChosenSource.LOCAL if remote_newer else ChosenSource.REMOTE

    local_data = local.to_wire()
    remote_data = remote.to_wire()
    newer_data = remote_data if remote_newer else local_data
    older_data = local_data if remote_newer else remote_data

    merged = dict(newer_data)
    conflicted_fields: list[str] = []
    merged_fields: list[str] = []
    field_details: list[ConflictFieldDetail] = []

    for field in MERGE_FIELDS:
        local_value = local_data.get(field)
        remote_value = remote_data.get(field)
        if _values_equal(field, local_value, remote_value):
            continue

        if field == "tags":
            tags = _union_tags(newer_data.get("tags") or [], older_data.get("tags") or [])
            merged["tags"] = tags
            merged_fields.append("tags (union)")
            field_details.append(
                _detail(
                    field,
                    local_value,
                    remote_value,
                    tags,
                    ChosenSource.MERGED,
                    "union of both tag sets",
                )
            )
            continue

        conflicted_fields.append(field)
        field_details.append(
            _detail(
                field,
                local_value,
                remote_value,
                newer_data.get(field),
                newer_side,
                f"{newer_side.value} is newer ({newer.updated_at})",
            )
        )

    created_at = _earliest(local.created_at, remote.created_at)
    if created_at != newer.created_at:
        merged_fields.append(f"createdAt (from {older_side.value})")
        field_details.append(
            _detail(
                "createdAt",
                local.created_at,
                remote.created_at,
                created_at,
                older_side,
                "earliest creation time",
            )
        )
    merged["createdAt"] = created_at
    merged["updatedAt"] = newer.updated_at

    if conflicted_fields:
        conflicts.append(
            f"{local.id}: {CONFLICTING_FIELDS_MARKER} [{', '.join(conflicted_fields)}] "
            f"resolved using {newer_side.value} values "
            f"({newer_side.value}: {newer.updated_at}, {older_side.value}: {older.updated_at})"
        )
    if merged_fields:
        conflicts.append(f"{local.id}: {MERGED_FIELDS_MARKER} [{', '.join(merged_fields)}]")
    if field_details:
        details.append(
            ConflictDetail(
                item_id=local.id,
                conflict_type=ConflictType.DIFFERENT_TIMESTAMP,
                fields=field_details,
                local_updated_at=local.updated_at,
                remote_updated_at=remote.updated_at,
            )
        )

    logger.debug(
        "Merged %s using %s (local %s, remote %s)",
        local.id,
        newer_side.value,
        local.updated_at,
        remote.updated_at,
    )
    return WorkItem.model_validate(merged)


def _merge_same_timestamp(
    local: WorkItem,
    remote: WorkItem,
    conflicts: list[str],
    details: list[ConflictDetail],
) -> WorkItem:
    local_data = local.to_wire()
    remote_data = remote.to_wire()

    # Unknown fields come from the side with the greater canonical key.
    if canonical_key(remote) > canonical_key(local):
        merged = dict(remote_data)
    else:
        merged = dict(local_data)

    merged_fields: list[str] = []
    field_details: list[ConflictFieldDetail] = []

    for field in MERGE_FIELDS:
        local_value = local_data.get(field)
        remote_value = remote_data.get(field)
        if _values_equal(field, local_value, remote_value):
            # Equal as sets but possibly ordered differently.
            if field == "tags":
                merged["tags"] = sorted(map(str, local_value or []))
            else:
                merged[field] = local_value
            continue

        if field == "tags":
            tags = sorted(set(map(str, local_value or [])) | set(map(str, remote_value or [])))
            merged["tags"] = tags
            merged_fields.append("tags (union)")
            field_details.append(
                _detail(
                    field,
                    local_value,
                    remote_value,
                    tags,
                    ChosenSource.MERGED,
                    "union of both tag sets",
                )
            )
            continue

        local_empty = _is_empty(local_value)
        remote_empty = _is_empty(remote_value)
        if local_empty and not remote_empty:
            source, reason = ChosenSource.REMOTE, "remote has value, local is empty"
            merged_fields.append(f"{field} (from remote)")
        elif remote_empty and not local_empty:
            source, reason = ChosenSource.LOCAL, "local has value, remote is empty"
            merged_fields.append(f"{field} (from local)")
        elif stable_value_key(remote_value) > stable_value_key(local_value):
            source, reason = ChosenSource.REMOTE, "deterministic tie-breaker (lexicographic)"
            merged_fields.append(f"{field} (tie-break: remote)")
        else:
            source, reason = ChosenSource.LOCAL, "deterministic tie-breaker (lexicographic)"
            merged_fields.append(f"{field} (tie-break: local)")

        chosen = remote_value if source == ChosenSource.REMOTE else local_value
        merged[field] = chosen
        field_details.append(_detail(field, local_value, remote_value, chosen, source, reason))

    merged["createdAt"] = _earliest(local.created_at, remote.created_at)
    merged["updatedAt"] = max(local.updated_at, remote.updated_at)

    conflicts.append(
        f"{local.id}: {SAME_TIMESTAMP_MARKER} but different content - merged deterministically"
    )
    if merged_fields:
        conflicts.append(f"{local.id}: {MERGED_FIELDS_MARKER} [{', '.join(merged_fields)}]")
    if field_details:
        details.append(
            ConflictDetail(
                item_id=local.id,
                conflict_type=ConflictType.SAME_TIMESTAMP,
                fields=field_details,
                local_updated_at=local.updated_at,
                remote_updated_at=remote.updated_at,
            )
        )

    logger.debug("Merged %s deterministically (shared updatedAt %s)", local.id, local.updated_at)
    return WorkItem.model_validate(merged)


def merge_work_items(
    local: Sequence[WorkItem],
    remote: Sequence[WorkItem],
) -> WorkItemMergeOutcome:
    """
    Merge local and remote work items into one converged collection.

    Args:
        local: Work items from the local cache
        remote: Work items from the remote snapshot

    Returns:
        WorkItemMergeOutcome of (merged, conflicts, conflict_details). The
        merged list holds local records in local order followed by
        remote-only records in remote order.

    Example:
        >>> merged, conflicts, details = merge_work_items(local, remote)
        >>> count_updated_items(conflicts)
        1
    """
    local_index = _index(local)
    remote_index = _index(remote)

    merged: list[WorkItem] = []
    conflicts: list[str] = []
    details: list[ConflictDetail] = []

    for item_id, local_item in local_index.items():
        remote_item = remote_index.get(item_id)
        if remote_item is None:
            merged.append(local_item)
        elif canonical_key(local_item) == canonical_key(remote_item):
            merged.append(local_item)
        elif compare_timestamps(local_item.updated_at, remote_item.updated_at) == 0:
            merged.append(_merge_same_timestamp(local_item, remote_item, conflicts, details))
        else:
            merged.append(
                _merge_different_timestamps(local_item, remote_item, conflicts, details)
            )

    for item_id, remote_item in remote_index.items():
        if item_id not in local_index:
            merged.append(remote_item)

    return WorkItemMergeOutcome(merged, conflicts, details)


def merge_comments(
    local: Sequence[Comment],
    remote: Sequence[Comment],
) -> CommentMergeOutcome:
    """
    Merge local and remote comments.

    Comments are unioned by id. When both sides hold a comment id with
    different content, the version with the greater canonical key wins on
    every clone, whichever side it came from.

    Returns:
        CommentMergeOutcome of (merged, conflicts, conflict_details)
    """
    local_index = _index(local)
    remote_index = _index(remote)

    merged: list[Comment] = []
    conflicts: list[str] = []
    details: list[ConflictDetail] = []

    for comment_id, local_comment in local_index.items():
        remote_comment = remote_index.get(comment_id)
        if remote_comment is None:
            merged.append(local_comment)
            continue

        local_key = canonical_key(local_comment)
        remote_key = canonical_key(remote_comment)
        if local_key == remote_key:
            merged.append(local_comment)
            continue

        remote_wins = remote_key > local_key
        source = ChosenSource.REMOTE if remote_wins else ChosenSource.LOCAL
        winner = remote_comment if remote_wins else local_comment
        merged.append(winner)

        local_data = local_comment.to_wire()
        remote_data = remote_comment.to_wire()
        winner_data = remote_data if remote_wins else local_data
        field_details = [
            _detail(
                field,
                local_data.get(field),
                remote_data.get(field),
                winner_data.get(field),
                source,
                "deterministic tie-breaker (lexicographic)",
            )
            for field in sorted(set(local_data) | set(remote_data))
            if local_data.get(field) != remote_data.get(field)
        ]

        conflicts.append(
            f"{comment_id}: {SAME_COMMENT_MARKER} - resolved deterministically"
        )
        details.append(
            ConflictDetail(
                item_id=comment_id,
                conflict_type=ConflictType.SAME_TIMESTAMP,
                fields=field_details,
                local_updated_at=local_comment.created_at,
                remote_updated_at=remote_comment.created_at,
            )
        )
        logger.debug("Comment %s differs on both sides, kept %s version", comment_id, source.value)

    for comment_id, remote_comment in remote_index.items():
        if comment_id not in local_index:
            merged.append(remote_comment)

    return CommentMergeOutcome(merged, conflicts, details)


def count_updated_items(conflicts: Iterable[str]) -> int:
    """
    Number of distinct records whose content was reconciled.

    Counts ids carrying a "Conflicting fields" or "Same updatedAt" marker.
    """
    ids: set[str] = set()
    for conflict in conflicts:
        if CONFLICTING_FIELDS_MARKER in conflict or SAME_TIMESTAMP_MARKER in conflict:
            ids.add(conflict.split(":", 1)[0])
    return len(ids)


def count_updated_comments(conflicts: Iterable[str]) -> int:
    """Number of distinct comments resolved by the tie-break."""
    return len({c.split(":", 1)[0] for c in conflicts if SAME_COMMENT_MARKER in c})
