"""Background polling for remote changes.

This module provides:
- StatusTracker: Polls the status of one sync until changes are available
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from paramsync.client.api import CancelledError
from paramsync.client.sync.types import StatusCallback, SyncStatus
from paramsync.core.cancel import CancellationToken

logger = logging.getLogger(__name__)

DEFAULT_FIRST_DELAY = 5.0  # seconds
DEFAULT_INTERVAL = 5 * 60.0  # seconds


class StatusTracker:
    """Polls a sync's status on a daemon thread.

    The first check happens after first_delay, the following ones every
    interval. As soon as a poll reports changes to apply, polling stops
    and the callback is invoked once. Cancelling the token ends polling
    for good without invoking the callback.

    Usage:
        tracker = StatusTracker(orchestrator.check_status)
        tracker.start(sync_id, on_changes)
        ...
        tracker.stop()
    """

    def __init__(
        self,
        fetch: Callable[[str], SyncStatus],
        first_delay: float = DEFAULT_FIRST_DELAY,
        interval: float = DEFAULT_INTERVAL,
        cancel: CancellationToken | None = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            fetch: Performs one status request for a sync id.
            first_delay: Seconds before the first check.
            interval: Seconds between subsequent checks.
            cancel: Optional cancellation token that ends polling.
        """
        self._fetch = fetch
        self._first_delay = first_delay
        self._interval = interval
        self._cancel = cancel
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._sync_id: str | None = None

    @property
    def running(self) -> bool:
        """Check if polling is active."""
        with self._lock:
            return self._thread is not None and not self._stop_event.is_set()

    @property
    def sync_id(self) -> str | None:
        return self._sync_id

    def start(self, sync_id: str, callback: StatusCallback) -> None:
        """Start polling a sync, replacing any previous run.

        Args:
            sync_id: Sync to poll.
            callback: Invoked once with the status that has changes.
        """
        self.stop()
        with self._lock:
            self._stop_event = threading.Event()
            self._sync_id = sync_id
            self._thread = threading.Thread(
                target=self._run,
                args=(sync_id, callback, self._stop_event),
                name=f"status-tracker-{sync_id}",
                daemon=True,
            )
            self._thread.start()
        logger.info(f"Status checking started for sync {sync_id}")

    def stop(self) -> None:
        """Stop polling. Idempotent; safe from any thread, including the callback."""
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()
            self._thread = None

        if thread is not threading.current_thread():
            thread.join(timeout=5.0)
        logger.info(f"Status checking stopped for sync {self._sync_id}")

    def _run(
        self,
        sync_id: str,
        callback: StatusCallback,
        stop_event: threading.Event,
    ) -> None:
        delay = self._first_delay
        while not stop_event.wait(delay):
            delay = self._interval
            if self._cancel is not None and self._cancel.cancelled:
                logger.info(f"Status checking for sync {sync_id} cancelled")
                self._finish(stop_event)
                return
            try:
                status = self._fetch(sync_id)
            except CancelledError:
                logger.info(f"Status checking for sync {sync_id} cancelled")
                self._finish(stop_event)
                return
            except Exception as e:
                logger.warning(f"Status check for sync {sync_id} failed: {e}")
                continue

            logger.debug(f"Sync {sync_id} status: {status.status}")
            if status.has_changes_to_apply and not stop_event.is_set():
                self._finish(stop_event)
                try:
                    callback(status)
                except Exception:
                    logger.exception(f"Status callback for sync {sync_id} failed")
                return

    def _finish(self, stop_event: threading.Event) -> None:
        """Stop from inside the polling thread without joining it."""
        stop_event.set()
        with self._lock:
            if self._stop_event is stop_event:
                self._thread = None
