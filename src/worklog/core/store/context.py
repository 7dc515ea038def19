"""
Per-project handle bundling configuration, data file and cache.

Commands receive a ``WorklogContext`` explicitly instead of reaching for a
process-wide database handle.
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import TracebackType

from worklog.core.config.loader import WORKLOG_DIR, load_config
from worklog.core.config.models import WorklogConfig
from worklog.core.items.jsonl import write_jsonl
from worklog.core.items.models import Comment, WorkItem
from worklog.core.store.sqlite import WorklogStore
from worklog.core.sync.models import GitTarget
from worklog.core.sync.scheduler import AutoSyncWorker
from worklog.core.sync.service import SyncService

logger = logging.getLogger(__name__)

DEFAULT_DB_FILE = "worklog.db"


class WorklogContext:
    """
    Opened worklog project.

    Example:
        >>> with WorklogContext.open(Path(".")) as ctx:
        ...     ctx.save_item(item)
        ...     SyncService.from_context(ctx).sync()
    """

    def __init__(
        self,
        project_dir: Path,
        config: WorklogConfig,
        store: WorklogStore,
        data_file: Path | None = None,
    ) -> None:
        self.project_dir = project_dir
        self.config = config
        self.store = store
        self.data_file = data_file or project_dir / config.data_file
        self._auto_sync: AutoSyncWorker | None = None

    @classmethod
    def open(
        cls,
        project_dir: Path | None = None,
        *,
        config: WorklogConfig | None = None,
        data_file: Path | None = None,
        db_path: Path | str | None = None,
        refresh: bool = True,
    ) -> WorklogContext:
        """
        Open a project: load config, open the cache, refresh it from disk.

        Args:
            project_dir: Project root (defaults to cwd)
            config: Preloaded config (loaded from the project if None)
            data_file: Override for the configured data file
            db_path: Cache location (defaults to .worklog/worklog.db)
            refresh: Re-import the data file if it is newer than the cache

        Returns:
            Opened context; close it (or use it as a context manager) when done

        Raises:
            StoreError: If the cache cannot be opened
            CodecError: If the data file is malformed
        """
        project_dir = (project_dir or Path.cwd()).resolve()
        if config is None:
            config = load_config(project_dir)
        if db_path is None:
            db_path = project_dir / WORKLOG_DIR / DEFAULT_DB_FILE

        store = WorklogStore(db_path)
        ctx = cls(project_dir, config, store, data_file=data_file)
        if refresh:
            try:
                store.refresh_from_jsonl_if_newer(ctx.data_file)
            except Exception:
                store.close()
                raise

        if config.auto_sync:
            ctx.enable_auto_sync()
        return ctx

    def __enter__(self) -> WorklogContext:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def sync_target(self) -> GitTarget:
        return self.config.sync_target

    @property
    def auto_sync(self) -> AutoSyncWorker | None:
        return self._auto_sync

    def enable_auto_sync(self, service: SyncService | None = None) -> AutoSyncWorker:
        """Start debounced background sync after local changes."""
        if self._auto_sync is None:
            self._auto_sync = AutoSyncWorker(
                service or SyncService.from_context(self),
                delay=self.config.auto_sync_delay,
            )
        return self._auto_sync

    def export(self) -> None:
        """Rewrite the canonical data file from the cache."""
        with self.store.lock:
            write_jsonl(self.data_file, self.store.get_all(), self.store.get_all_comments())
            self.store.mark_exported(self.data_file)
        logger.debug("Exported cache to %s", self.data_file)

    def _after_change(self) -> None:
        if self._auto_sync is not None:
            self._auto_sync.request()

    def save_item(self, item: WorkItem) -> None:
        """Store a work item and propagate the change."""
        with self.store.lock:
            self.store.save_item(item)
            if self.config.auto_export:
                self.export()
        self._after_change()

    def save_comment(self, comment: Comment) -> None:
        """Store a comment and propagate the change."""
        with self.store.lock:
            self.store.save_comment(comment)
            if self.config.auto_export:
                self.export()
        self._after_change()

    def close(self, flush_timeout: float | None = 30.0) -> None:
        """Run any pending background sync, then close the cache."""
        if self._auto_sync is not None:
            if not self._auto_sync.flush(timeout=flush_timeout):
                logger.warning("Background sync still running at shutdown")
            self._auto_sync.stop()
            self._auto_sync = None
        self.store.close()
