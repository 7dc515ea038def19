"""
Work item and comment records.

Provides the record models, the line-oriented record codec used by the
canonical data file, and a parent/child index for display.
"""

from worklog.core.items.jsonl import (
    DEFAULT_DATA_FILE,
    CodecError,
    decode,
    encode,
    read_jsonl,
    write_jsonl,
)
from worklog.core.items.models import (
    Comment,
    WorkItem,
    WorkItemPriority,
    WorkItemStatus,
    compare_timestamps,
    parse_timestamp,
    utc_now_iso,
)
from worklog.core.items.tree import WorkItemTree

__all__ = [
    "Comment",
    "WorkItem",
    "WorkItemPriority",
    "WorkItemStatus",
    "WorkItemTree",
    "CodecError",
    "DEFAULT_DATA_FILE",
    "compare_timestamps",
    "decode",
    "encode",
    "parse_timestamp",
    "read_jsonl",
    "utc_now_iso",
    "write_jsonl",
]
