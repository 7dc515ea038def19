"""
SQLite cache for worklog records.

The canonical data lives in the line-oriented data file; this database is a
fast local read/write cache in front of it. Each record is stored as its
wire JSON, so fields this version does not know about survive a round trip
through the cache.

The store follows the usual SQLite settings:
- WAL mode for concurrent readers
- dict rows (row["column"])
- one transaction per import, so replacing a collection is all-or-nothing
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from collections.abc import Sequence
from pathlib import Path
from types import TracebackType
from typing import Any

from pydantic import ValidationError

from worklog.core.items.jsonl import read_jsonl
from worklog.core.items.models import Comment, WorkItem

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

LAST_IMPORT_MTIME_KEY = "lastJsonlImportMtime"

SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS schema_info (
    version INTEGER PRIMARY KEY,
    applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS workitems (
    id TEXT PRIMARY KEY,
    parent_id TEXT,
    sort_index INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    data TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_workitems_parent ON workitems(parent_id);

CREATE TABLE IF NOT EXISTS comments (
    id TEXT PRIMARY KEY,
    work_item_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    data TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_comments_workitem ON comments(work_item_id);

CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class StoreError(Exception):
    """Raised when the local cache cannot be read or written."""


def dict_factory(cursor: sqlite3.Cursor, row: tuple[Any, ...]) -> dict[str, Any]:
    """Row factory that returns rows as dictionaries."""
    fields = [column[0] for column in cursor.description]
    return dict(zip(fields, row))


def _dumps(record: WorkItem | Comment) -> str:
    return json.dumps(record.to_wire(), ensure_ascii=False, separators=(",", ":"))


class WorklogStore:
    """
    Local record cache backed by SQLite.

    Safe to share between the foreground and the auto-sync worker thread;
    every operation holds the store lock. Callers that read, then write
    based on what they read, hold ``lock`` across both steps.
    ``sync_lock`` serializes syncs of this store, whichever service runs
    them.

    Example:
        >>> with WorklogStore(Path(".worklog/worklog.db")) as store:
        ...     store.import_items(items)
        ...     store.get_all()
    """

    def __init__(self, db_path: Path | str) -> None:
        """
        Open (and create if needed) the cache database.

        Args:
            db_path: Path to the SQLite file, or ":memory:"

        Raises:
            StoreError: If the database cannot be opened
        """
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        self._lock = threading.RLock()
        self.sync_lock = threading.Lock()
        try:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.row_factory = dict_factory
            self._conn.executescript(SCHEMA_DDL)
            self._conn.execute(
                "INSERT OR IGNORE INTO schema_info (version) VALUES (?)", (SCHEMA_VERSION,)
            )
            self._conn.commit()
        except (sqlite3.Error, OSError) as e:
            raise StoreError(f"Failed to open cache {db_path}: {e}") from e
        self._closed = False

    def __enter__(self) -> WorklogStore:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def lock(self) -> threading.RLock:
        """Re-entrant lock held by every read and write."""
        return self._lock

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self._conn.close()
                self._closed = True

    def _query(self, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Cache query failed: {e}") from e

    @staticmethod
    def _load_item(row: dict[str, Any]) -> WorkItem:
        try:
            return WorkItem.model_validate(json.loads(row["data"]))
        except (json.JSONDecodeError, ValidationError) as e:
            raise StoreError(f"Corrupt cached work item {row['id']}: {e}") from e

    @staticmethod
    def _load_comment(row: dict[str, Any]) -> Comment:
        try:
            return Comment.model_validate(json.loads(row["data"]))
        except (json.JSONDecodeError, ValidationError) as e:
            raise StoreError(f"Corrupt cached comment {row['id']}: {e}") from e

    # Work items

    def get_all(self) -> list[WorkItem]:
        """All work items ordered by sortIndex, then createdAt."""
        rows = self._query("SELECT id, data FROM workitems ORDER BY sort_index, created_at, id")
        return [self._load_item(row) for row in rows]

    def get(self, item_id: str) -> WorkItem | None:
        rows = self._query("SELECT id, data FROM workitems WHERE id = ?", (item_id,))
        return self._load_item(rows[0]) if rows else None

    def save_item(self, item: WorkItem) -> None:
        """Insert or replace a single work item."""
        with self._lock:
            try:
                with self._conn:
                    self._insert_item(item)
            except sqlite3.Error as e:
                raise StoreError(f"Failed to save work item {item.id}: {e}") from e

    def _insert_item(self, item: WorkItem) -> None:
        self._conn.execute(
            """
            INSERT OR REPLACE INTO workitems (id, parent_id, sort_index, created_at, updated_at, data)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                item.id,
                item.parent_id,
                item.sort_index,
                item.created_at,
                item.updated_at,
                _dumps(item),
            ),
        )

    def import_items(self, items: Sequence[WorkItem]) -> None:
        """
        Replace every cached work item with ``items``.

        Runs in one transaction; on failure the previous contents remain.
        """
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute("DELETE FROM workitems")
                    for item in items:
                        self._insert_item(item)
            except sqlite3.Error as e:
                raise StoreError(f"Failed to import work items: {e}") from e
        logger.debug("Imported %d work items into cache", len(items))

    # Comments

    def get_all_comments(self) -> list[Comment]:
        rows = self._query("SELECT id, data FROM comments ORDER BY created_at, id")
        return [self._load_comment(row) for row in rows]

    def get_comments(self, work_item_id: str) -> list[Comment]:
        """Comments on one work item, oldest first."""
        rows = self._query(
            "SELECT id, data FROM comments WHERE work_item_id = ? ORDER BY created_at, id",
            (work_item_id,),
        )
        return [self._load_comment(row) for row in rows]

    def save_comment(self, comment: Comment) -> None:
        with self._lock:
            try:
                with self._conn:
                    self._insert_comment(comment)
            except sqlite3.Error as e:
                raise StoreError(f"Failed to save comment {comment.id}: {e}") from e

    def _insert_comment(self, comment: Comment) -> None:
        self._conn.execute(
            """
            INSERT OR REPLACE INTO comments (id, work_item_id, created_at, data)
            VALUES (?, ?, ?, ?)
            """,
            (comment.id, comment.work_item_id, comment.created_at, _dumps(comment)),
        )

    def import_comments(self, comments: Sequence[Comment]) -> None:
        """Replace every cached comment with ``comments`` in one transaction."""
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute("DELETE FROM comments")
                    for comment in comments:
                        self._insert_comment(comment)
            except sqlite3.Error as e:
                raise StoreError(f"Failed to import comments: {e}") from e
        logger.debug("Imported %d comments into cache", len(comments))

    # Metadata

    def get_metadata(self, key: str) -> str | None:
        rows = self._query("SELECT value FROM metadata WHERE key = ?", (key,))
        return rows[0]["value"] if rows else None

    def set_metadata(self, key: str, value: str) -> None:
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        """
                        INSERT INTO metadata (key, value) VALUES (?, ?)
                        ON CONFLICT(key) DO UPDATE SET value = excluded.value
                        """,
                        (key, value),
                    )
            except sqlite3.Error as e:
                raise StoreError(f"Failed to set metadata {key}: {e}") from e

    def is_empty(self) -> bool:
        rows = self._query(
            "SELECT (SELECT COUNT(*) FROM workitems) + (SELECT COUNT(*) FROM comments) AS n"
        )
        return rows[0]["n"] == 0

    def refresh_from_jsonl_if_newer(self, path: Path) -> bool:
        """
        Reload the cache from the canonical data file when it changed.

        The file is imported when the cache is empty or the file's mtime is
        newer than the last import.

        Returns:
            True if the cache was reloaded

        Raises:
            CodecError: If the data file is malformed
        """
        if not path.exists():
            return False

        mtime = os.path.getmtime(path)
        last = self.get_metadata(LAST_IMPORT_MTIME_KEY)
        if last is not None and float(last) >= mtime and not self.is_empty():
            return False

        items, comments = read_jsonl(path)
        with self._lock:
            self.import_items(items)
            self.import_comments(comments)
            self.set_metadata(LAST_IMPORT_MTIME_KEY, repr(mtime))
        logger.info("Refreshed cache from %s (%d items, %d comments)", path, len(items), len(comments))
        return True

    def mark_exported(self, path: Path) -> None:
        """Record that ``path`` was just written from the cache."""
        if path.exists():
            self.set_metadata(LAST_IMPORT_MTIME_KEY, repr(os.path.getmtime(path)))
