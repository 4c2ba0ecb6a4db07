"""Tests for SyncOrchestrator."""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Generator
from pathlib import Path
from typing import Any

import httpx
import pytest
from conftest import SERVER_URL, RecordingCancellationToken, make_config, sample_project

from paramsync.client.api import (
    ApplicationError,
    AuthenticationError,
    HTTPClient,
    NetworkError,
    NotFoundError,
)
from paramsync.client.credentials import MemoryCredentialStore
from paramsync.client.project import JsonProjectDocument
from paramsync.client.retry import RetryPolicy
from paramsync.client.sync.engine import ProgressReporter, SyncOrchestrator
from paramsync.client.sync.parameters import ParameterManager
from paramsync.client.sync.types import (
    AppliedChange,
    ChangeStatus,
    SyncAction,
    SyncState,
    SyncStatus,
    WebParameterChange,
)
from paramsync.core.config import ServiceConfig

SYNC_URL = f"{SERVER_URL}/api/revit/sync"
LEGACY_SYNC_URL = f"{SERVER_URL}/api/revit-sync/upload"
CHUNK_URL = f"{SERVER_URL}/api/revit/sync/chunks"
FINALIZE_URL = f"{SERVER_URL}/api/revit/sync/chunks/finalize"
STATUS_URL = f"{SERVER_URL}/api/revit/sync/S1/status"
APPLY_URL = f"{SERVER_URL}/api/revit/sync/S1/apply"
LEGACY_APPLY_URL = f"{SERVER_URL}/api/revit-sync/S1/apply"

SYNCED = {
    "success": True,
    "action": "sync",
    "projectId": "P1",
    "projectName": "House A",
    "syncId": "S1",
    "changesApplied": 2,
}


class Recorder:
    """Audit sink that keeps events in memory."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def record(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]


@pytest.fixture
def orchestrator(
    config: ServiceConfig,
    store: MemoryCredentialStore,
    transport: HTTPClient,
    recording_cancel: RecordingCancellationToken,
) -> Generator[SyncOrchestrator, None, None]:
    with SyncOrchestrator(config, store, transport=transport, cancel=recording_cancel) as o:
        yield o


def status_with(*changes: WebParameterChange) -> SyncStatus:
    return SyncStatus(
        sync_id="S1", status="processed", has_changes_to_apply=True, web_changes=list(changes)
    )


def value_of(document: JsonProjectDocument, name: str) -> Any:
    parameter = document.lookup_parameter("Project Information", name)
    assert parameter is not None
    return parameter.value


class TestInitiateSync:
    """Tests for the push phase."""

    def test_queued(self, httpx_mock, orchestrator: SyncOrchestrator, document: JsonProjectDocument) -> None:  # type: ignore[no-untyped-def]
        """A queue response should end in QUEUED with the queue id."""
        httpx_mock.add_response(
            url=SYNC_URL,
            method="POST",
            json={"success": True, "action": "queue", "queueId": "Q1", "queuePosition": 2},
        )

        outcome = orchestrator.initiate_sync(document, "PG")

        assert outcome.state is SyncState.QUEUED
        assert outcome.succeeded
        assert outcome.result is not None
        assert outcome.result.action is SyncAction.QUEUE
        assert outcome.result.queue_id == "Q1"

        request = httpx_mock.get_requests()[0]
        assert request.headers["X-Revit-Token"] == "test-token"
        body = json.loads(request.read())
        assert body["revitProjectGuid"] == "PG"
        assert body["parameters"][0] == {
            "guid": body["parameters"][0]["guid"],
            "name": "sp.MC.ProjectGUID",
            "value": "PG",
            "group": "Project Information",
            "dataType": "Text",
        }

    def test_synced(self, httpx_mock, orchestrator: SyncOrchestrator, document: JsonProjectDocument) -> None:  # type: ignore[no-untyped-def]
        """A sync response should end in COMPLETE with the project."""
        httpx_mock.add_response(url=SYNC_URL, method="POST", json=SYNCED)

        outcome = orchestrator.initiate_sync(document, "PG")

        assert outcome.state is SyncState.COMPLETE
        assert outcome.result is not None
        assert outcome.result.project_name == "House A"
        assert outcome.result.sync_id == "S1"
        assert outcome.message == "Synchronized with project House A"

    def test_unknown_action_is_complete(self, httpx_mock, orchestrator: SyncOrchestrator, document: JsonProjectDocument) -> None:  # type: ignore[no-untyped-def]
        """Other successful actions should also complete."""
        httpx_mock.add_response(
            url=SYNC_URL, method="POST", json={"success": True, "action": "noop", "message": "Nothing to do"}
        )

        outcome = orchestrator.initiate_sync(document, "PG")

        assert outcome.state is SyncState.COMPLETE
        assert outcome.message == "Nothing to do"

    def test_rejected_by_server(self, httpx_mock, orchestrator: SyncOrchestrator, document: JsonProjectDocument) -> None:  # type: ignore[no-untyped-def]
        """success=false should fail with the server's message verbatim."""
        httpx_mock.add_response(
            url=SYNC_URL, method="POST", json={"success": False, "error": "Project is locked"}
        )

        outcome = orchestrator.initiate_sync(document, "PG")

        assert outcome.state is SyncState.FAILED
        assert outcome.message == "Project is locked"
        assert isinstance(outcome.error, ApplicationError)

    def test_invalid_success_response(self, httpx_mock, orchestrator: SyncOrchestrator, document: JsonProjectDocument) -> None:  # type: ignore[no-untyped-def]
        """A queue action without a queue id should fail."""
        httpx_mock.add_response(url=SYNC_URL, method="POST", json={"success": True, "action": "queue"})

        outcome = orchestrator.initiate_sync(document, "PG")

        assert outcome.state is SyncState.FAILED

    def test_unauthorized_is_not_retried(self, httpx_mock, orchestrator: SyncOrchestrator, document: JsonProjectDocument, store: MemoryCredentialStore, recording_cancel: RecordingCancellationToken) -> None:  # type: ignore[no-untyped-def]
        """A 401 should fail once and leave the stored credentials alone."""
        httpx_mock.add_response(url=SYNC_URL, method="POST", status_code=401)

        outcome = orchestrator.initiate_sync(document, "PG")

        assert outcome.state is SyncState.FAILED
        assert isinstance(outcome.error, AuthenticationError)
        assert outcome.message == "Authentication failed. Please log in again."
        assert len(httpx_mock.get_requests()) == 1
        assert recording_cancel.waits == []
        assert store.get_token() == "test-token"

    def test_network_failures_then_success(self, httpx_mock, config: ServiceConfig, store: MemoryCredentialStore, transport: HTTPClient, document: JsonProjectDocument) -> None:  # type: ignore[no-untyped-def]
        """Two network failures should cost exactly two backoff waits."""
        httpx_mock.add_exception(httpx.ConnectError("refused"), url=SYNC_URL)
        httpx_mock.add_exception(httpx.ConnectError("refused"), url=SYNC_URL)
        httpx_mock.add_response(url=SYNC_URL, method="POST", json=SYNCED)
        cancel = RecordingCancellationToken()
        policy = RetryPolicy(max_retries=3, initial_delay=0.1, max_delay=5.0, jitter=0.0)

        with SyncOrchestrator(
            config, store, transport=transport, retry_policy=policy, cancel=cancel
        ) as orchestrator:
            outcome = orchestrator.initiate_sync(document, "PG")

        assert outcome.state is SyncState.COMPLETE
        assert cancel.waits == [pytest.approx(0.1), pytest.approx(0.2)]
        assert len(httpx_mock.get_requests()) == 3

    def test_network_failure_exhausts_retries(self, httpx_mock, orchestrator: SyncOrchestrator, document: JsonProjectDocument) -> None:  # type: ignore[no-untyped-def]
        """A service that stays unreachable should fail with a network message."""
        for _ in range(4):
            httpx_mock.add_exception(httpx.ConnectError("refused"), url=SYNC_URL)

        outcome = orchestrator.initiate_sync(document, "PG")

        assert outcome.state is SyncState.FAILED
        assert isinstance(outcome.error, NetworkError)
        assert outcome.message.startswith("Unable to connect")

    def test_no_token(self, httpx_mock, config: ServiceConfig, transport: HTTPClient, document: JsonProjectDocument) -> None:  # type: ignore[no-untyped-def]
        """Without a token nothing should be sent."""
        with SyncOrchestrator(config, MemoryCredentialStore(), transport=transport) as orchestrator:
            outcome = orchestrator.initiate_sync(document, "PG")

        assert outcome.state is SyncState.FAILED
        assert outcome.message == "Authentication unavailable. Please log in and try again."
        assert isinstance(outcome.error, AuthenticationError)
        assert httpx_mock.get_requests() == []

    def test_cancelled_before_start(self, httpx_mock, orchestrator: SyncOrchestrator, document: JsonProjectDocument) -> None:  # type: ignore[no-untyped-def]
        """A cancelled orchestrator should not contact the service."""
        orchestrator.cancel()

        outcome = orchestrator.initiate_sync(document, "PG")

        assert outcome.state is SyncState.CANCELLED
        assert outcome.message == "Operation cancelled."
        assert httpx_mock.get_requests() == []

    def test_legacy_endpoints(self, httpx_mock, config: ServiceConfig, store: MemoryCredentialStore, transport: HTTPClient, document: JsonProjectDocument) -> None:  # type: ignore[no-untyped-def]
        """With the legacy preference the legacy upload path should be used."""
        httpx_mock.add_response(url=LEGACY_SYNC_URL, method="POST", json=SYNCED)

        with SyncOrchestrator(config, store, transport=transport, use_new_endpoints=False) as orchestrator:
            outcome = orchestrator.initiate_sync(document, "PG")

        assert outcome.state is SyncState.COMPLETE

    def test_large_payload_is_chunked(self, httpx_mock, store: MemoryCredentialStore, document: JsonProjectDocument) -> None:  # type: ignore[no-untyped-def]
        """Payloads over the threshold should go through the chunk endpoints."""
        config = make_config(chunked_upload_threshold=10, chunk_size=1_000_000)
        httpx_mock.add_response(url=CHUNK_URL, method="POST", json={"received": True})
        httpx_mock.add_response(url=FINALIZE_URL, method="POST", json=SYNCED)
        progress: list[tuple[str, int]] = []

        with SyncOrchestrator(config, store, progress=lambda m, p: progress.append((m, p))) as orchestrator:
            outcome = orchestrator.initiate_sync(document, "PG")

        assert outcome.state is SyncState.COMPLETE
        requests = httpx_mock.get_requests()
        assert [str(r.url) for r in requests] == [CHUNK_URL, FINALIZE_URL]
        assert requests[0].headers["X-Total-Chunks"] == "1"
        assert ("Uploaded chunk 1/1", 80) in progress

    def test_progress_is_monotonic(self, httpx_mock, config: ServiceConfig, store: MemoryCredentialStore, transport: HTTPClient, document: JsonProjectDocument) -> None:  # type: ignore[no-untyped-def]
        """Progress should start at collecting and end at 100 without going back."""
        httpx_mock.add_response(url=SYNC_URL, method="POST", json=SYNCED)
        progress: list[int] = []

        with SyncOrchestrator(
            config, store, transport=transport, progress=lambda m, p: progress.append(p)
        ) as orchestrator:
            orchestrator.initiate_sync(document, "PG")

        assert progress == sorted(progress)
        assert progress[0] == 10
        assert progress[-1] == 100

    def test_audit_events(self, httpx_mock, config: ServiceConfig, store: MemoryCredentialStore, transport: HTTPClient, document: JsonProjectDocument) -> None:  # type: ignore[no-untyped-def]
        """Start and finish of a sync should be audited."""
        httpx_mock.add_response(url=SYNC_URL, method="POST", json=SYNCED)
        audit = Recorder()

        with SyncOrchestrator(config, store, transport=transport, audit=audit) as orchestrator:  # type: ignore[arg-type]
            orchestrator.initiate_sync(document, "PG")

        assert audit.names == ["sync_started", "sync_finished"]
        assert audit.events[1][1]["state"] == "complete"
        assert audit.events[1][1]["sync_id"] == "S1"

    def test_start_sync_runs_in_background(self, httpx_mock, orchestrator: SyncOrchestrator, document: JsonProjectDocument) -> None:  # type: ignore[no-untyped-def]
        """start_sync should return a future resolving to the outcome."""
        httpx_mock.add_response(url=SYNC_URL, method="POST", json=SYNCED)

        future = orchestrator.start_sync(document, "PG")

        assert future.result(timeout=10).state is SyncState.COMPLETE


class TestProgressReporter:
    """Tests for ProgressReporter."""

    def test_clamps_and_never_decreases(self) -> None:
        """Values should stay within [0, 100] and never go backwards."""
        seen: list[int] = []
        reporter = ProgressReporter(lambda m, p: seen.append(p))

        for percent in (-5, 30, 20, 150, 50):
            reporter.report("step", percent)

        assert seen == [0, 30, 30, 100, 100]

    def test_callback_errors_are_ignored(self) -> None:
        """A failing callback should not interrupt the caller."""

        def broken(message: str, percent: int) -> None:
            raise RuntimeError("ui gone")

        reporter = ProgressReporter(broken)
        reporter.report("step", 40)
        assert reporter.percent == 40


class TestStatus:
    """Tests for status checks."""

    def test_check_status(self, httpx_mock, orchestrator: SyncOrchestrator) -> None:  # type: ignore[no-untyped-def]
        """A processed status with changes should be ready to apply."""
        httpx_mock.add_response(
            url=STATUS_URL,
            method="GET",
            json={"status": "processed", "webChanges": [{"name": "sp.Foo", "value": "new"}]},
        )

        status = orchestrator.check_status("S1")

        assert status.sync_id == "S1"
        assert status.has_changes_to_apply is True
        assert status.web_changes[0].value == "new"

    def test_check_status_requires_token(self, config: ServiceConfig, transport: HTTPClient) -> None:
        """Status checks without a token should raise."""
        with SyncOrchestrator(config, MemoryCredentialStore(), transport=transport) as orchestrator:
            with pytest.raises(AuthenticationError):
                orchestrator.check_status("S1")

    def test_background_checking(self, httpx_mock, orchestrator: SyncOrchestrator) -> None:  # type: ignore[no-untyped-def]
        """Background checking should deliver the first status with changes."""
        httpx_mock.add_response(
            url=STATUS_URL,
            method="GET",
            json={"status": "processed", "webChanges": [{"name": "sp.Foo", "value": "new"}]},
        )
        received: list[SyncStatus] = []
        done = threading.Event()

        def on_changes(status: SyncStatus) -> None:
            received.append(status)
            done.set()

        orchestrator.start_status_checking("S1", on_changes)

        assert done.wait(5.0)
        assert received[0].web_changes[0].name == "sp.Foo"
        orchestrator.stop_status_checking()

    def test_repeated_checks_without_server_changes(self, httpx_mock, orchestrator: SyncOrchestrator, document: JsonProjectDocument) -> None:  # type: ignore[no-untyped-def]
        """Polling twice with nothing new should report no changes and touch nothing."""
        for _ in range(2):
            httpx_mock.add_response(url=STATUS_URL, method="GET", json={"status": "processing"})
        before = [(p.name, p.value) for p in document.parameters("Project Information")]

        first = orchestrator.check_status("S1")
        second = orchestrator.check_status("S1")

        assert first.has_changes_to_apply is False
        assert second.has_changes_to_apply is False
        assert [(p.name, p.value) for p in document.parameters("Project Information")] == before

    def test_cancel_ends_background_checking(self, config: ServiceConfig, store: MemoryCredentialStore, transport: HTTPClient) -> None:
        """After cancel(), status checking should stop without sending requests."""
        with SyncOrchestrator(config, store, transport=transport) as orchestrator:
            orchestrator.cancel()
            orchestrator.start_status_checking("S1", lambda status: None)
            time.sleep(0.2)

            assert orchestrator.status_tracker.running is False

    def test_cancel_stops_running_checks(self, store: MemoryCredentialStore, transport: HTTPClient) -> None:
        """Cancelling while polling should stop the tracker."""
        config = make_config(status_first_check=0.5, status_interval=0.5)
        with SyncOrchestrator(config, store, transport=transport) as orchestrator:
            orchestrator.start_status_checking("S1", lambda status: None)
            assert orchestrator.status_tracker.running is True

            orchestrator.cancel()

            assert orchestrator.status_tracker.running is False


class TestApplyChanges:
    """Tests for applying remote changes."""

    def test_prepare_review_fills_current_values(self, orchestrator: SyncOrchestrator, document: JsonProjectDocument) -> None:
        """Each change should show the value it replaces."""
        changes = orchestrator.prepare_review(
            document, status_with(WebParameterChange("clientName", "John"), WebParameterChange("sp.Nope", "x"))
        )
        assert [c.current_value for c in changes] == ["Jane Doe", None]

    def test_one_failure_does_not_stop_others(self, orchestrator: SyncOrchestrator, document: JsonProjectDocument) -> None:
        """Every change should produce exactly one record."""
        changes = [
            WebParameterChange("sp.Missing", "x"),
            WebParameterChange("sp.Foo", "new"),
            WebParameterChange("clientName", "John", is_selected=False),
        ]

        outcome = orchestrator.apply_changes(document, changes)

        assert outcome.state is SyncState.COMPLETE
        assert [c.status for c in outcome.applied_changes] == [
            ChangeStatus.ERROR,
            ChangeStatus.APPLIED,
            ChangeStatus.SKIPPED,
        ]
        assert value_of(document, "sp.Foo") == "new"
        assert value_of(document, "sp.Client.Name") == "Jane Doe"

    def test_cancel_rolls_back(self, config: ServiceConfig, store: MemoryCredentialStore, transport: HTTPClient, document: JsonProjectDocument) -> None:
        """Cancelling mid-apply should undo the changes already written."""
        cancel = RecordingCancellationToken()

        class CancellingManager(ParameterManager):
            def apply_change(self, document: Any, change: WebParameterChange) -> AppliedChange:
                result = super().apply_change(document, change)
                cancel.cancel()
                return result

        with SyncOrchestrator(
            config, store, transport=transport, parameters=CancellingManager(), cancel=cancel
        ) as orchestrator:
            outcome = orchestrator.apply_changes(
                document,
                [WebParameterChange("sp.Foo", "new"), WebParameterChange("clientName", "John")],
            )

        assert outcome.state is SyncState.CANCELLED
        assert len(outcome.applied_changes) == 1
        assert value_of(document, "sp.Foo") == "old"
        assert value_of(document, "sp.Client.Name") == "Jane Doe"
        assert document.in_transaction is False

    def test_commit_failure_rolls_back(self, orchestrator: SyncOrchestrator, tmp_path: Path) -> None:
        """A document that cannot be saved should fail and keep the old values."""
        document = JsonProjectDocument(sample_project(), path=tmp_path / "missing" / "house.json")

        outcome = orchestrator.apply_changes(document, [WebParameterChange("sp.Foo", "new")])

        assert outcome.state is SyncState.FAILED
        assert value_of(document, "sp.Foo") == "old"

    def test_changes_are_saved_to_file(self, orchestrator: SyncOrchestrator, tmp_path: Path) -> None:
        """Committed changes should be written to the project file."""
        path = tmp_path / "house.json"
        document = JsonProjectDocument(sample_project(), path=path)

        orchestrator.apply_changes(document, [WebParameterChange("sp.Foo", "new")])

        saved = json.loads(path.read_text())
        assert saved["parameters"]["Project Information"]["sp.Foo"]["value"] == "new"


class TestAcknowledge:
    """Tests for apply_and_acknowledge and acknowledge_changes."""

    def test_apply_and_acknowledge(self, httpx_mock, orchestrator: SyncOrchestrator, document: JsonProjectDocument) -> None:  # type: ignore[no-untyped-def]
        """Applied changes should be reported to the apply endpoint."""
        httpx_mock.add_response(url=APPLY_URL, method="POST", json={"success": True})

        outcome = orchestrator.apply_and_acknowledge(
            document, status_with(WebParameterChange("sp.Foo", "new"))
        )

        assert outcome.state is SyncState.COMPLETE
        assert outcome.acknowledged is True
        assert outcome.acknowledgment is not None
        assert outcome.acknowledgment.success is True
        assert outcome.warnings == []
        assert value_of(document, "sp.Foo") == "new"
        assert json.loads(httpx_mock.get_requests()[0].read()) == {
            "syncId": "S1",
            "appliedChanges": [
                {"name": "sp.Foo", "category": None, "value": "new", "status": "applied"}
            ],
        }

    def test_not_found_falls_back_once(self, httpx_mock, orchestrator: SyncOrchestrator) -> None:  # type: ignore[no-untyped-def]
        """A 404 should be retried exactly once against the legacy path."""
        httpx_mock.add_response(url=APPLY_URL, method="POST", status_code=404)
        httpx_mock.add_response(url=LEGACY_APPLY_URL, method="POST", json={"success": True})

        response = orchestrator.acknowledge_changes("S1", [])

        assert response.success is True
        assert [str(r.url) for r in httpx_mock.get_requests()] == [APPLY_URL, LEGACY_APPLY_URL]

    def test_fallback_not_found_gives_up(self, httpx_mock, orchestrator: SyncOrchestrator) -> None:  # type: ignore[no-untyped-def]
        """A 404 from the fallback too should raise after exactly one follow-up."""
        httpx_mock.add_response(url=APPLY_URL, method="POST", status_code=404)
        httpx_mock.add_response(url=LEGACY_APPLY_URL, method="POST", status_code=404)

        with pytest.raises(NotFoundError):
            orchestrator.acknowledge_changes("S1", [])

        assert [str(r.url) for r in httpx_mock.get_requests()] == [APPLY_URL, LEGACY_APPLY_URL]

    def test_rejected_acknowledgment(self, httpx_mock, orchestrator: SyncOrchestrator) -> None:  # type: ignore[no-untyped-def]
        """success=false should raise ApplicationError."""
        httpx_mock.add_response(url=APPLY_URL, method="POST", json={"success": False, "message": "Sync expired"})

        with pytest.raises(ApplicationError, match="Sync expired"):
            orchestrator.acknowledge_changes("S1", [])

    def test_failed_acknowledgment_is_a_warning(self, httpx_mock, orchestrator: SyncOrchestrator, document: JsonProjectDocument) -> None:  # type: ignore[no-untyped-def]
        """Applied changes should be kept when the acknowledgment fails."""
        httpx_mock.add_response(url=APPLY_URL, method="POST", status_code=500)

        outcome = orchestrator.apply_and_acknowledge(
            document, status_with(WebParameterChange("sp.Foo", "new"))
        )

        assert outcome.state is SyncState.COMPLETE
        assert outcome.acknowledged is False
        assert len(outcome.warnings) == 1
        assert outcome.warnings[0].startswith("Changes were applied but could not be acknowledged")
        assert value_of(document, "sp.Foo") == "new"

    def test_audit_events(self, httpx_mock, config: ServiceConfig, store: MemoryCredentialStore, transport: HTTPClient, document: JsonProjectDocument) -> None:  # type: ignore[no-untyped-def]
        """Apply and acknowledge should both be audited."""
        httpx_mock.add_response(url=APPLY_URL, method="POST", json={"success": True})
        audit = Recorder()

        with SyncOrchestrator(config, store, transport=transport, audit=audit) as orchestrator:  # type: ignore[arg-type]
            orchestrator.apply_and_acknowledge(document, status_with(WebParameterChange("sp.Foo", "new")))

        assert audit.names == ["changes_applied", "changes_acknowledged"]
        assert audit.events[0][1]["applied"] == 1
