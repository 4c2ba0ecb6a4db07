"""Tests for StatusTracker background polling."""

from __future__ import annotations

import threading
import time

from paramsync.client.api import CancelledError
from paramsync.client.sync.status import StatusTracker
from paramsync.client.sync.types import SyncStatus, WebParameterChange
from paramsync.core.cancel import CancellationToken

WAIT = 5.0


def pending(sync_id: str) -> SyncStatus:
    return SyncStatus(sync_id=sync_id, status="pending")


def with_changes(sync_id: str) -> SyncStatus:
    return SyncStatus(
        sync_id=sync_id,
        status="processed",
        has_changes_to_apply=True,
        web_changes=[WebParameterChange(name="sp.Foo", value="new")],
    )


class ScriptedFetch:
    """Returns (or raises) scripted results, then repeats the last one."""

    def __init__(self, *results: SyncStatus | Exception) -> None:
        self._results = list(results)
        self.calls: list[str] = []

    def __call__(self, sync_id: str) -> SyncStatus:
        self.calls.append(sync_id)
        result = self._results[min(len(self.calls), len(self._results)) - 1]
        if isinstance(result, Exception):
            raise result
        return result


class TestStatusTracker:
    """Tests for StatusTracker."""

    def test_callback_fires_once_with_changes(self) -> None:
        """Polling should stop after the first status with changes."""
        fetch = ScriptedFetch(pending("S1"), pending("S1"), with_changes("S1"))
        received: list[SyncStatus] = []
        done = threading.Event()
        tracker = StatusTracker(fetch, first_delay=0.01, interval=0.01)

        def on_changes(status: SyncStatus) -> None:
            received.append(status)
            done.set()

        tracker.start("S1", on_changes)
        assert done.wait(WAIT)
        time.sleep(0.1)

        assert len(received) == 1
        assert received[0].web_changes[0].name == "sp.Foo"
        assert len(fetch.calls) == 3
        assert tracker.running is False

    def test_fetch_errors_do_not_stop_polling(self) -> None:
        """A failed check should be logged and polling should continue."""
        fetch = ScriptedFetch(RuntimeError("boom"), with_changes("S2"))
        done = threading.Event()
        tracker = StatusTracker(fetch, first_delay=0.01, interval=0.01)

        tracker.start("S2", lambda status: done.set())

        assert done.wait(WAIT)
        assert fetch.calls == ["S2", "S2"]

    def test_callback_error_is_contained(self) -> None:
        """An exception in the callback should not escape the thread."""
        fetch = ScriptedFetch(with_changes("S3"))
        called = threading.Event()
        tracker = StatusTracker(fetch, first_delay=0.01, interval=0.01)

        def on_changes(status: SyncStatus) -> None:
            called.set()
            raise ValueError("bad callback")

        tracker.start("S3", on_changes)
        assert called.wait(WAIT)
        time.sleep(0.05)
        assert tracker.running is False

    def test_stop_prevents_callback(self) -> None:
        """Stopping before the first check should prevent any request."""
        fetch = ScriptedFetch(with_changes("S4"))
        tracker = StatusTracker(fetch, first_delay=0.5, interval=0.5)

        tracker.start("S4", lambda status: None)
        assert tracker.running is True
        tracker.stop()

        assert tracker.running is False
        assert fetch.calls == []

    def test_stop_is_idempotent(self) -> None:
        """Stopping twice, or without starting, should be harmless."""
        tracker = StatusTracker(ScriptedFetch(pending("x")))
        tracker.stop()
        tracker.start("x", lambda status: None)
        tracker.stop()
        tracker.stop()
        assert tracker.running is False

    def test_start_replaces_previous_run(self) -> None:
        """Starting again should stop the previous sync's polling."""
        fetch = ScriptedFetch(pending("any"))
        tracker = StatusTracker(fetch, first_delay=0.01, interval=0.01)

        tracker.start("A", lambda status: None)
        tracker.start("B", lambda status: None)
        time.sleep(0.1)
        tracker.stop()

        assert tracker.sync_id == "B"
        assert "B" in fetch.calls
        calls_after_stop = len(fetch.calls)
        time.sleep(0.05)
        assert len(fetch.calls) == calls_after_stop

    def test_stop_from_callback(self) -> None:
        """Calling stop() from inside the callback should not deadlock."""
        fetch = ScriptedFetch(with_changes("S5"))
        done = threading.Event()
        tracker = StatusTracker(fetch, first_delay=0.01, interval=0.01)

        def on_changes(status: SyncStatus) -> None:
            tracker.stop()
            done.set()

        tracker.start("S5", on_changes)
        assert done.wait(WAIT)

    def test_cancelled_token_ends_polling(self) -> None:
        """A cancelled token should end polling before any request."""
        fetch = ScriptedFetch(pending("S6"))
        cancel = CancellationToken()
        cancel.cancel()
        tracker = StatusTracker(fetch, first_delay=0.01, interval=0.01, cancel=cancel)

        tracker.start("S6", lambda status: None)
        time.sleep(0.2)

        assert tracker.running is False
        assert fetch.calls == []

    def test_cancel_while_polling(self) -> None:
        """Cancelling mid-run should stop polling at the next check."""
        fetch = ScriptedFetch(pending("S7"))
        cancel = CancellationToken()
        tracker = StatusTracker(fetch, first_delay=0.01, interval=0.01, cancel=cancel)

        tracker.start("S7", lambda status: None)
        time.sleep(0.05)
        cancel.cancel()
        time.sleep(0.1)

        assert tracker.running is False
        calls = len(fetch.calls)
        time.sleep(0.05)
        assert len(fetch.calls) == calls

    def test_cancelled_fetch_ends_polling(self) -> None:
        """A fetch cancelled by the caller should not be retried."""
        fetch = ScriptedFetch(CancelledError("Request cancelled before sending"))
        called: list[SyncStatus] = []
        tracker = StatusTracker(fetch, first_delay=0.01, interval=0.01)

        tracker.start("S8", called.append)
        time.sleep(0.2)

        assert tracker.running is False
        assert fetch.calls == ["S8"]
        assert called == []
