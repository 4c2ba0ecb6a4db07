"""Cooperative cancellation shared by every suspension point.

This module provides:
- CancellationToken: A thread-safe cancellation signal with interruptible waits
"""

from __future__ import annotations

import threading


class CancellationToken:
    """Single cancellation signal threaded through network calls and waits.

    Backed by a threading.Event so that cancel() may be called from any
    thread, and so that backoff and polling waits wake up immediately.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Check whether cancellation was requested."""
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep for up to timeout seconds.

        Args:
            timeout: Seconds to wait.

        Returns:
            True if cancellation was requested before the timeout elapsed.
        """
        return self._event.wait(timeout)

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"
