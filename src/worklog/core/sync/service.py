"""
Sync orchestrator.

Sequences one sync of the local store against the snapshot published on a
git ref:

    idle -> fetching -> merging -> writing -> publishing -> done

Fetching and publishing may fail and move the service to ``failed``. Local
writes (store and canonical file) only happen after a successful fetch and
merge, and publishing only after a successful local write, so a failure
leaves local state either untouched or fully merged. Re-running sync after
any failure is safe: merging an already converged pair changes nothing.

A publish rejected because the remote tip moved re-runs the whole
fetch-merge-publish cycle, up to ``max_retries`` attempts.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, TypeVar, runtime_checkable

from worklog.core.items.jsonl import decode, encode, write_bytes_atomic
from worklog.core.items.models import Comment, WorkItem
from worklog.core.sync.merge import (
    count_updated_comments,
    count_updated_items,
    merge_comments,
    merge_work_items,
)
from worklog.core.sync.models import GitTarget, SyncPhase, SyncResult
from worklog.core.sync.transport import GitTransport, PublishRejectedError

if TYPE_CHECKING:
    from worklog.core.store.context import WorklogContext

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SyncPhase, str], None]

DEFAULT_MAX_RETRIES = 3

RecordT = TypeVar("RecordT", WorkItem, Comment)


class SyncError(Exception):
    """Base exception for sync failures."""


class SyncContentionError(SyncError):
    """
    The remote ref kept moving while publishing.

    Local state is fully merged when this is raised; running sync again is
    safe.
    """

    retryable = True

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


@runtime_checkable
class RecordStore(Protocol):
    """
    Local side of every merge.

    The store is a cache in front of the canonical data file. Import
    operations replace the whole collection atomically. ``lock`` guards
    every read and write; ``sync_lock`` is held for a whole sync.
    """

    lock: threading.RLock
    sync_lock: threading.Lock

    def get_all(self) -> list[WorkItem]:
        ...

    def get_all_comments(self) -> list[Comment]:
        ...

    def import_items(self, items: Sequence[WorkItem]) -> None:
        ...

    def import_comments(self, comments: Sequence[Comment]) -> None:
        ...


class SyncService:
    """
    Reconciles the local store with the snapshot on a git ref.

    Example:
        >>> service = SyncService(store, GitTransport(repo), data_file=data_file)
        >>> result = service.sync()
        >>> print(result.summary())
    """

    def __init__(
        self,
        store: RecordStore,
        transport: GitTransport,
        *,
        data_file: Path,
        target: GitTarget | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        """
        Initialize the sync service.

        Args:
            store: Local record cache
            transport: Git transport bound to the repository holding data_file
            data_file: Canonical data file, rewritten after every merge
            target: Remote and ref to sync with (default: origin refs/worklog/data)
            max_retries: Fetch-merge-publish cycles to attempt before giving up
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.store = store
        self.transport = transport
        self.data_file = data_file
        self.target = target or GitTarget()
        self.max_retries = max_retries
        self._phase = SyncPhase.IDLE

    @classmethod
    def from_context(
        cls,
        ctx: WorklogContext,
        target: GitTarget | None = None,
    ) -> SyncService:
        """
        Create a service for an opened project.

        Args:
            ctx: Opened worklog context
            target: Override for the configured remote and ref

        Returns:
            Configured SyncService instance
        """
        return cls(
            ctx.store,
            GitTransport(ctx.project_dir),
            data_file=ctx.data_file,
            target=target or ctx.sync_target,
            max_retries=ctx.config.sync_max_retries,
        )

    @property
    def phase(self) -> SyncPhase:
        """Phase of the running (or last) sync."""
        return self._phase

    def _enter(
        self,
        phase: SyncPhase,
        message: str,
        progress: ProgressCallback | None,
        silent: bool,
    ) -> None:
        self._phase = phase
        logger.debug("Sync phase %s: %s", phase.value, message)
        if progress is not None and not silent:
            progress(phase, message)

    def sync(
        self,
        push: bool = True,
        dry_run: bool = False,
        silent: bool = False,
        progress: ProgressCallback | None = None,
    ) -> SyncResult:
        """
        Run one sync.

        Syncs of the same store run one after the other, even from
        different services.

        Args:
            push: Publish the merged snapshot to the remote ref
            dry_run: Stop after merging and report what would change
            silent: Suppress progress narration (phases still run and log)
            progress: Called with (phase, message) on every phase transition

        Returns:
            SyncResult describing the merge and publish

        Raises:
            TransportError: If the remote cannot be fetched (nothing written locally)
            CodecError: If the remote snapshot is malformed (nothing written locally)
            StoreError: If the local store fails
            SyncContentionError: If publishing was rejected on every attempt
        """
        with self.store.sync_lock:
            try:
                return self._sync(push, dry_run, silent, progress)
            except Exception as e:
                self._enter(SyncPhase.FAILED, str(e), progress, silent)
                raise

    def _sync(
        self,
        push: bool,
        dry_run: bool,
        silent: bool,
        progress: ProgressCallback | None,
    ) -> SyncResult:
        path = self.transport.repo_relative_path(self.data_file)
        result: SyncResult | None = None
        attempt = 0

        while True:
            attempt += 1
            self._enter(
                SyncPhase.FETCHING,
                f"Fetching {path} from {self.target.describe()}",
                progress,
                silent,
            )
            local_items = self.store.get_all()
            local_comments = self.store.get_all_comments()
            remote_data = self.transport.fetch_remote_snapshot(path, self.target)
            if remote_data is None:
                remote_items: list[WorkItem] = []
                remote_comments: list[Comment] = []
            else:
                remote_items, remote_comments = decode(remote_data)

            self._enter(
                SyncPhase.MERGING,
                f"Merging {len(local_items)} local and {len(remote_items)} remote items",
                progress,
                silent,
            )
            items = merge_work_items(local_items, remote_items)
            comments = merge_comments(local_comments, remote_comments)

            for conflict in items.conflicts + comments.conflicts:
                logger.info("Resolved: %s", conflict)

            if result is None:
                result = self._build_result(
                    local_items,
                    remote_items,
                    local_comments,
                    remote_comments,
                    items.conflicts,
                    comments.conflicts,
                    dry_run,
                )
                result.conflict_details = items.conflict_details + comments.conflict_details
            else:
                result.conflicts.extend(items.conflicts + comments.conflicts)
                result.conflict_details.extend(
                    items.conflict_details + comments.conflict_details
                )
            result.attempts = attempt
            result.total_items = len(items.merged)
            result.total_comments = len(comments.merged)

            if dry_run:
                self._enter(SyncPhase.DONE, "Dry run, nothing written", progress, silent)
                return result

            self._enter(
                SyncPhase.WRITING,
                f"Writing {len(items.merged)} items and {len(comments.merged)} comments",
                progress,
                silent,
            )
            # Records saved while fetching must survive the replace-all import.
            with self.store.lock:
                merged_items = items.merged
                changed_items = _changed_since(local_items, self.store.get_all())
                if changed_items:
                    logger.debug("Keeping %d items saved during sync", len(changed_items))
                    merged_items = merge_work_items(merged_items, changed_items).merged
                merged_comments = comments.merged
                changed_comments = _changed_since(local_comments, self.store.get_all_comments())
                if changed_comments:
                    logger.debug("Keeping %d comments saved during sync", len(changed_comments))
                    merged_comments = merge_comments(merged_comments, changed_comments).merged

                self.store.import_items(merged_items)
                self.store.import_comments(merged_comments)
                snapshot = encode(merged_items, merged_comments)
                write_bytes_atomic(self.data_file, snapshot)
            result.total_items = len(merged_items)
            result.total_comments = len(merged_comments)

            if not push:
                self._enter(SyncPhase.DONE, "Local data merged, not pushing", progress, silent)
                return result

            self._enter(
                SyncPhase.PUBLISHING,
                f"Publishing to {self.target.describe()}",
                progress,
                silent,
            )
            message = (
                f"Sync worklog data ({len(merged_items)} items, "
                f"{len(merged_comments)} comments)"
            )
            try:
                commit_sha = self.transport.publish_snapshot(path, snapshot, message, self.target)
            except PublishRejectedError as e:
                if attempt >= self.max_retries:
                    raise SyncContentionError(
                        f"Remote {self.target.describe()} kept changing; "
                        f"gave up after {attempt} attempts",
                        attempts=attempt,
                    ) from e
                logger.warning(
                    "Publish rejected on attempt %d/%d, re-fetching: %s",
                    attempt,
                    self.max_retries,
                    e.stderr or e,
                )
                continue

            result.pushed = commit_sha is not None
            result.commit_sha = commit_sha
            self._enter(SyncPhase.DONE, result.summary(), progress, silent)
            return result

    def _build_result(
        self,
        local_items: list[WorkItem],
        remote_items: list[WorkItem],
        local_comments: list[Comment],
        remote_comments: list[Comment],
        item_conflicts: list[str],
        comment_conflicts: list[str],
        dry_run: bool,
    ) -> SyncResult:
        """Counts for the first merge attempt."""
        local_ids = {item.id for item in local_items}
        remote_ids = {item.id for item in remote_items}
        local_comment_ids = {c.id for c in local_comments}
        remote_comment_ids = {c.id for c in remote_comments}

        items_updated = count_updated_items(item_conflicts)
        comments_updated = count_updated_comments(comment_conflicts)

        return SyncResult(
            items_added=len(local_ids ^ remote_ids),
            items_updated=items_updated,
            items_unchanged=max(0, len(local_ids & remote_ids) - items_updated),
            comments_added=len(local_comment_ids ^ remote_comment_ids),
            comments_updated=comments_updated,
            comments_unchanged=max(
                0, len(local_comment_ids & remote_comment_ids) - comments_updated
            ),
            conflicts=item_conflicts + comment_conflicts,
            dry_run=dry_run,
            local_items=len(local_ids),
            remote_items=len(remote_ids),
        )


def _changed_since(before: Sequence[RecordT], after: Sequence[RecordT]) -> list[RecordT]:
    """Records in ``after`` that are new or differ from ``before``."""
    previous = {record.id: record.to_wire() for record in before}
    return [record for record in after if previous.get(record.id) != record.to_wire()]
