"""
Record codec for the canonical worklog data file.

The data file is UTF-8 text with one JSON object per line and no wrapping
array. Each line is self-describing:

    {"type":"workitem","data":{"id":"WI-0001","title":"...",...}}
    {"type":"comment","data":{"id":"WI-0001-C1","workItemId":"WI-0001",...}}

Work items and comments share one file. Line order carries no precedence.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path

from pydantic import ValidationError

from worklog.core.items.models import Comment, WorkItem

logger = logging.getLogger(__name__)

DEFAULT_DATA_FILE = ".worklog/worklog-data.jsonl"

RECORD_TYPE_WORKITEM = "workitem"
RECORD_TYPE_COMMENT = "comment"


class CodecError(Exception):
    """Raised when a line of the data file cannot be decoded."""

    def __init__(self, message: str, line_num: int | None = None, line: str = ""):
        self.line_num = line_num
        self.line = line
        if line_num is not None:
            message = f"Line {line_num}: {message}"
        super().__init__(message)


def encode_record(record: WorkItem | Comment) -> str:
    """Encode a single record as one line (without the trailing newline)."""
    record_type = RECORD_TYPE_COMMENT if isinstance(record, Comment) else RECORD_TYPE_WORKITEM
    return json.dumps(
        {"type": record_type, "data": record.to_wire()},
        ensure_ascii=False,
        separators=(",", ":"),
    )


def encode(items: Iterable[WorkItem], comments: Iterable[Comment] = ()) -> bytes:
    """
    Serialize work items and comments to the line-oriented format.

    Work items are written first, then comments, each in the order given.

    Args:
        items: Work items to encode
        comments: Comments to encode

    Returns:
        UTF-8 bytes, one record per line with a trailing newline
        (empty input encodes to b"")
    """
    lines = [encode_record(item) for item in items]
    lines.extend(encode_record(comment) for comment in comments)
    if not lines:
        return b""
    return ("\n".join(lines) + "\n").encode("utf-8")


def _decode_line(line_num: int, line: bytes | str) -> WorkItem | Comment:
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CodecError(
                f"invalid UTF-8 - {e}",
                line_num=line_num,
                line=line.decode("utf-8", errors="replace"),
            ) from e

    try:
        raw = json.loads(line)
    except json.JSONDecodeError as e:
        raise CodecError(f"invalid JSON - {e}", line_num=line_num, line=line) from e

    if not isinstance(raw, dict):
        raise CodecError(
            f"expected JSON object, got {type(raw).__name__}", line_num=line_num, line=line
        )

    record_type = raw.get("type")
    if record_type is None:
        # Files written before comments shared the data file hold bare work items.
        logger.warning("Line %d has no record type, reading it as a work item", line_num)
        record_type, data = RECORD_TYPE_WORKITEM, raw
    else:
        data = raw.get("data")
        if not isinstance(data, dict):
            raise CodecError("record has no 'data' object", line_num=line_num, line=line)

    try:
        if record_type == RECORD_TYPE_WORKITEM:
            return WorkItem.model_validate(data)
        if record_type == RECORD_TYPE_COMMENT:
            return Comment.model_validate(data)
    except ValidationError as e:
        raise CodecError(
            f"invalid {record_type} record - {e.error_count()} validation error(s): {e}",
            line_num=line_num,
            line=line,
        ) from e

    raise CodecError(f"unknown record type {record_type!r}", line_num=line_num, line=line)


def decode(data: bytes | str) -> tuple[list[WorkItem], list[Comment]]:
    """
    Parse the line-oriented format into work items and comments.

    Blank lines are skipped. A final line without a terminating newline that
    does not parse is treated as a partially written record and dropped with
    a warning. Unknown fields are kept on the decoded models.

    Args:
        data: File content as bytes or text

    Returns:
        Tuple of (work items, comments) in file order

    Raises:
        CodecError: If any other line is malformed, carrying its line number
    """
    items: list[WorkItem] = []
    comments: list[Comment] = []

    # Lines are decoded one at a time so a bad byte is reported with its line.
    lines: list[bytes] | list[str] = (
        data.split(b"\n") if isinstance(data, bytes) else data.split("\n")
    )
    # A trailing newline leaves an empty final element; anything else is unterminated.
    last_index = len(lines) - 1
    for index, raw_line in enumerate(lines):
        line = raw_line.strip()
        if not line:
            continue
        line_num = index + 1
        try:
            record = _decode_line(line_num, line)
        except CodecError as e:
            if index == last_index and isinstance(
                e.__cause__, (json.JSONDecodeError, UnicodeDecodeError)
            ):
                logger.warning("Ignoring partial trailing record on line %d", line_num)
                continue
            raise
        if isinstance(record, Comment):
            comments.append(record)
        else:
            items.append(record)

    return items, comments


def read_jsonl(path: Path) -> tuple[list[WorkItem], list[Comment]]:
    """
    Read a data file from disk.

    A missing file reads as empty collections.
    """
    if not path.exists():
        logger.debug("Data file %s does not exist yet", path)
        return [], []
    return decode(path.read_bytes())


def write_jsonl(path: Path, items: Iterable[WorkItem], comments: Iterable[Comment] = ()) -> None:
    """
    Write a data file atomically.

    Content goes to a temporary file in the same directory which then
    replaces the target, so readers never observe a half-written file.
    """
    write_bytes_atomic(path, encode(items, comments))


def write_bytes_atomic(path: Path, content: bytes) -> None:
    """Replace ``path`` with ``content`` via a temporary sibling file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}_", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        os.replace(temp_path, path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise
