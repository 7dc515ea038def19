"""
Debounced background sync.

Local mutations call ``AutoSyncWorker.request()``. A single worker thread
waits until no new request has arrived for ``delay`` seconds and then runs
one silent sync, so a burst of writes costs one sync. Requests that arrive
while a sync is running collapse into exactly one follow-up run.
"""

from __future__ import annotations

import logging
import threading
import time

from worklog.core.sync.service import SyncService

logger = logging.getLogger(__name__)

DEFAULT_AUTO_SYNC_DELAY = 2.0


class AutoSyncWorker:
    """
    Single-worker trailing debounce around a SyncService.

    Example:
        >>> worker = AutoSyncWorker(service, delay=2.0)
        >>> worker.request()
        >>> worker.request()  # collapses with the first
        >>> worker.flush(timeout=30)
        >>> worker.stop()
    """

    def __init__(
        self,
        service: SyncService,
        delay: float = DEFAULT_AUTO_SYNC_DELAY,
        *,
        push: bool = True,
    ) -> None:
        if delay < 0:
            raise ValueError("delay must not be negative")
        self.service = service
        self.delay = delay
        self.push = push

        self._cond = threading.Condition()
        self._pending = False
        self._running = False
        self._stopped = False
        self._deadline = 0.0
        self._thread: threading.Thread | None = None

        self.last_error: Exception | None = None
        self.runs = 0

    @property
    def pending(self) -> bool:
        with self._cond:
            return self._pending

    @property
    def running(self) -> bool:
        with self._cond:
            return self._running

    def request(self) -> None:
        """
        Ask for a sync after the debounce delay.

        Each call pushes the deadline back by ``delay``.
        """
        with self._cond:
            if self._stopped:
                logger.debug("Auto-sync stopped, ignoring request")
                return
            self._pending = True
            self._deadline = time.monotonic() + self.delay
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._run,
                    name="worklog-auto-sync",
                    daemon=True,
                )
                self._thread.start()
            self._cond.notify_all()

    def _run(self) -> None:
        while True:
            with self._cond:
                while not self._stopped and not self._pending:
                    self._cond.wait()
                while not self._stopped:
                    remaining = self._deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    self._cond.wait(remaining)
                if self._stopped:
                    return
                self._pending = False
                self._running = True

            try:
                self.service.sync(push=self.push, silent=True)
                self.last_error = None
            except Exception as e:
                logger.exception("Background sync failed")
                self.last_error = e
            finally:
                with self._cond:
                    self._running = False
                    self.runs += 1
                    self._cond.notify_all()

    def flush(self, timeout: float | None = None) -> bool:
        """
        Run any pending sync now and wait until the worker is idle.

        Args:
            timeout: Seconds to wait (None waits indefinitely)

        Returns:
            True if the worker went idle, False on timeout
        """
        with self._cond:
            if self._pending:
                self._deadline = time.monotonic()
                self._cond.notify_all()
            return self._cond.wait_for(
                lambda: self._stopped or (not self._pending and not self._running),
                timeout=timeout,
            )

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the worker, dropping any pending request.

        A sync already running is allowed to finish; call ``flush()`` first
        to run a pending request before stopping.
        """
        with self._cond:
            self._stopped = True
            self._pending = False
            self._cond.notify_all()
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
