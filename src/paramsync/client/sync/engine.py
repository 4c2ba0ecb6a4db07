"""Sync orchestration.

This module provides:
- ProgressReporter: Monotonic progress reporting for one invocation
- SyncOrchestrator: Drives collect -> authenticate -> upload -> branch, and
  the remote-edit phase (poll -> review -> apply -> acknowledge)

Failures and cancellation of a sync are returned as SyncOutcome values;
only programming errors escape as exceptions.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

from paramsync.client.api import (
    APIError,
    ApplicationError,
    AuthenticationError,
    CancelledError,
    HTTPClient,
    NotFoundError,
)
from paramsync.client.auth import AuthManager
from paramsync.client.endpoints import EndpointResolver, Operation
from paramsync.client.retry import RetryPolicy
from paramsync.client.sync.parameters import ParameterManager
from paramsync.client.sync.report import describe_error
from paramsync.client.sync.status import StatusTracker
from paramsync.client.sync.types import (
    AcknowledgmentResponse,
    AppliedChange,
    ApplyOutcome,
    ChangeStatus,
    ProgressCallback,
    StatusCallback,
    SyncAction,
    SyncOutcome,
    SyncResult,
    SyncState,
    SyncStatus,
    WebParameterChange,
)
from paramsync.client.sync.upload import ChunkedUploader
from paramsync.core.cancel import CancellationToken

if TYPE_CHECKING:
    from paramsync.client.audit import AuditLog
    from paramsync.client.credentials import CredentialStore
    from paramsync.client.sync.parameters import ProjectDocument
    from paramsync.core.config import ServiceConfig

logger = logging.getLogger(__name__)

# Progress milestones (percent)
PROGRESS_COLLECTING = 10
PROGRESS_AUTHENTICATING = 20
PROGRESS_UPLOADING = 30
PROGRESS_UPLOADED = 80
PROGRESS_REVIEWING = 60
PROGRESS_APPLYING = 70
PROGRESS_ACKNOWLEDGING = 90
PROGRESS_DONE = 100


class ProgressReporter:
    """Forwards progress to a callback, never letting it go backwards."""

    def __init__(self, callback: ProgressCallback | None = None) -> None:
        self._callback = callback
        self._percent = 0

    @property
    def percent(self) -> int:
        return self._percent

    def report(self, message: str, percent: int) -> None:
        """Report a step.

        Args:
            message: Human-readable step description.
            percent: Progress in [0, 100]; lower values than the last
                report are clamped up.
        """
        self._percent = max(self._percent, min(PROGRESS_DONE, max(0, percent)))
        logger.debug(f"[{self._percent:3d}%] {message}")
        if self._callback is not None:
            try:
                self._callback(message, self._percent)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")


class SyncOrchestrator:
    """Runs the sync protocol against one service.

    Usage:
        with SyncOrchestrator(config, KeyringCredentialStore()) as orchestrator:
            outcome = orchestrator.initiate_sync(document, project_guid)
            if outcome.state is SyncState.COMPLETE and outcome.result.sync_id:
                status = orchestrator.check_status(outcome.result.sync_id)
                orchestrator.apply_and_acknowledge(document, status)
    """

    def __init__(
        self,
        config: ServiceConfig,
        credentials: CredentialStore,
        transport: HTTPClient | None = None,
        parameters: ParameterManager | None = None,
        progress: ProgressCallback | None = None,
        retry_policy: RetryPolicy | None = None,
        use_new_endpoints: bool | None = None,
        cancel: CancellationToken | None = None,
        audit: AuditLog | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Service configuration.
            credentials: Credential store (injected, never global).
            transport: HTTP transport (created from config if omitted).
            parameters: Parameter collector/applier.
            progress: Called with (message, percent) at each step.
            retry_policy: Retry policy (built from config if omitted).
            use_new_endpoints: Endpoint preference (config value if omitted).
            cancel: Cancellation token shared by every suspension point.
            audit: Optional audit sink.
        """
        self._config = config
        self._owns_transport = transport is None
        self._transport = transport or HTTPClient(config, audit)
        self._parameters = parameters or ParameterManager()
        self._progress = progress
        self._retry = retry_policy or RetryPolicy(
            max_retries=config.max_retries,
            initial_delay=config.initial_delay,
            max_delay=config.max_delay,
            jitter=config.jitter,
        )
        self._resolver = EndpointResolver(
            config.server_url,
            config.use_new_endpoints if use_new_endpoints is None else use_new_endpoints,
        )
        self._auth = AuthManager(self._transport, credentials, self._resolver)
        self._cancel = cancel or CancellationToken()
        self._audit = audit
        self._tracker = StatusTracker(
            self.check_status,
            first_delay=config.status_first_check,
            interval=config.status_interval,
            cancel=self._cancel,
        )
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="paramsync-sync")
        self._in_flight: Counter[str] = Counter()
        self._in_flight_lock = threading.Lock()

    @property
    def auth(self) -> AuthManager:
        """Get the auth manager."""
        return self._auth

    @property
    def parameters(self) -> ParameterManager:
        """Get the parameter collector/applier."""
        return self._parameters

    @property
    def resolver(self) -> EndpointResolver:
        """Get the endpoint resolver."""
        return self._resolver

    @property
    def cancel_token(self) -> CancellationToken:
        """Get the cancellation token."""
        return self._cancel

    @property
    def status_tracker(self) -> StatusTracker:
        return self._tracker

    def cancel(self) -> None:
        """Cancel every in-flight operation and stop status checking."""
        logger.info("Cancellation requested")
        self._cancel.cancel()
        self._tracker.stop()

    def close(self) -> None:
        """Stop background work and release the transport."""
        self._tracker.stop()
        self._executor.shutdown(wait=False, cancel_futures=True)
        if self._owns_transport:
            self._transport.close()

    def __enter__(self) -> SyncOrchestrator:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _record(self, event: str, **fields: Any) -> None:
        if self._audit is not None:
            self._audit.record(event, **fields)

    def _check_cancelled(self, step: str) -> None:
        if self._cancel.cancelled:
            raise CancelledError(f"Cancelled before {step}")

    # === Push phase ===

    def start_sync(self, document: ProjectDocument, project_guid: str) -> Future[SyncOutcome]:
        """Run initiate_sync on a background thread.

        Returns:
            Future resolving to the SyncOutcome.
        """
        return self._executor.submit(self.initiate_sync, document, project_guid)

    def initiate_sync(self, document: ProjectDocument, project_guid: str) -> SyncOutcome:
        """Push local parameters to the service.

        Args:
            document: The project model.
            project_guid: Stable project identifier.

        Returns:
            SyncOutcome in state QUEUED, COMPLETE, FAILED or CANCELLED.
        """
        with self._in_flight_lock:
            if self._in_flight[project_guid]:
                logger.warning(f"A sync for project {project_guid} is already in progress")
            self._in_flight[project_guid] += 1

        reporter = ProgressReporter(self._progress)
        self._record("sync_started", project_guid=project_guid)
        try:
            outcome = self._run_sync(document, project_guid, reporter)
        except CancelledError as e:
            logger.info(f"Sync for project {project_guid} cancelled")
            self._record("sync_cancelled", project_guid=project_guid)
            return SyncOutcome(SyncState.CANCELLED, describe_error(e), error=e)
        except APIError as e:
            logger.error(f"Sync for project {project_guid} failed: {e}")
            self._record(
                "sync_failed",
                project_guid=project_guid,
                error=type(e).__name__,
                status_code=e.status_code,
                detail=str(e),
            )
            return SyncOutcome(SyncState.FAILED, describe_error(e), error=e)
        except Exception as e:
            logger.exception(f"Unexpected error during sync for project {project_guid}")
            self._record(
                "sync_failed", project_guid=project_guid, error=type(e).__name__, detail=str(e)
            )
            return SyncOutcome(SyncState.FAILED, describe_error(e), error=e)
        finally:
            with self._in_flight_lock:
                self._in_flight[project_guid] -= 1
                if self._in_flight[project_guid] <= 0:
                    del self._in_flight[project_guid]

        self._record(
            "sync_finished",
            project_guid=project_guid,
            state=outcome.state.value,
            sync_id=outcome.result.sync_id if outcome.result else None,
        )
        return outcome

    def _run_sync(
        self,
        document: ProjectDocument,
        project_guid: str,
        reporter: ProgressReporter,
    ) -> SyncOutcome:
        self._check_cancelled("collecting")
        reporter.report("Collecting parameters...", PROGRESS_COLLECTING)
        request = self._parameters.collect(document, project_guid)

        self._check_cancelled("authenticating")
        reporter.report("Authenticating...", PROGRESS_AUTHENTICATING)
        token = self._auth.ensure_valid_token(self._cancel)
        if not token:
            error = AuthenticationError("No valid access token")
            logger.error("Authentication unavailable; log in first")
            return SyncOutcome(
                SyncState.FAILED,
                "Authentication unavailable. Please log in and try again.",
                error=error,
            )

        self._check_cancelled("uploading")
        reporter.report(f"Uploading {len(request.parameters)} parameters...", PROGRESS_UPLOADING)
        body = request.to_dict()
        payload = json.dumps(body).encode("utf-8")
        if len(payload) > self._config.chunked_upload_threshold:
            logger.info(f"Payload of {len(payload)} bytes exceeds threshold; uploading in chunks")
            data = self._upload_chunked(payload, token, reporter)
        else:
            url = self._resolver.resolve(Operation.SYNC)
            data = self._retry.execute(
                lambda: self._transport.send_json(url, body, token, self._cancel),
                self._cancel,
            )

        result = SyncResult.from_dict(data)
        if not result.success:
            message = result.error or result.message or "Sync was rejected by the server"
            logger.error(f"Server rejected sync: {message}")
            return SyncOutcome(
                SyncState.FAILED, message, result=result, error=ApplicationError(message)
            )

        if result.action is SyncAction.QUEUE:
            reporter.report("Project queued for association", PROGRESS_DONE)
            logger.info(f"Project {project_guid} queued as {result.queue_id}")
            return SyncOutcome(
                SyncState.QUEUED,
                result.message or f"Project queued (queue id {result.queue_id})",
                result=result,
            )

        reporter.report("Sync complete", PROGRESS_DONE)
        if result.action is SyncAction.SYNC:
            logger.info(
                f"Project {project_guid} synced with {result.project_name} "
                f"({result.changes_applied or 0} changes applied)"
            )
            message = result.message or f"Synchronized with project {result.project_name}"
        else:
            message = result.message or "Sync completed"
        return SyncOutcome(SyncState.COMPLETE, message, result=result)

    def _upload_chunked(
        self,
        payload: bytes,
        token: str,
        reporter: ProgressReporter,
    ) -> dict[str, Any]:
        span = PROGRESS_UPLOADED - PROGRESS_UPLOADING

        def on_chunk(uploaded: int, total: int) -> None:
            reporter.report(
                f"Uploaded chunk {uploaded}/{total}",
                PROGRESS_UPLOADING + span * uploaded // total,
            )

        uploader = ChunkedUploader(
            self._transport,
            self._resolver,
            chunk_size=self._config.chunk_size,
            retry_policy=self._retry,
            progress_callback=on_chunk,
        )
        return uploader.upload(payload, token, self._cancel)

    # === Remote-edit phase ===

    def _require_token(self) -> str:
        token = self._auth.get_valid_token()
        if not token:
            raise AuthenticationError("Not authenticated. Please log in.")
        return token

    def check_status(self, sync_id: str) -> SyncStatus:
        """Fetch the current status of a sync (one GET, no side effects).

        Raises:
            APIError: On any request failure.
        """
        data = self._transport.get_json(
            self._resolver.resolve(Operation.STATUS, sync_id),
            self._require_token(),
            self._cancel,
        )
        return SyncStatus.from_dict(data, sync_id)

    def start_status_checking(self, sync_id: str, callback: StatusCallback) -> None:
        """Poll a sync in the background until it has changes to apply."""
        self._tracker.start(sync_id, callback)

    def stop_status_checking(self) -> None:
        """Stop background polling."""
        self._tracker.stop()

    def prepare_review(
        self, document: ProjectDocument, status: SyncStatus
    ) -> list[WebParameterChange]:
        """Fill in the local value of each change so it can be reviewed."""
        for change in status.web_changes:
            change.current_value = self._parameters.current_value(document, change)
        return status.web_changes

    def apply_changes(
        self,
        document: ProjectDocument,
        changes: list[WebParameterChange],
        reporter: ProgressReporter | None = None,
    ) -> ApplyOutcome:
        """Apply changes inside a single transaction.

        Every change yields exactly one AppliedChange; one failure never
        stops the others. Cancellation rolls the whole transaction back.

        Args:
            document: The project model.
            changes: Changes to apply (unselected ones are skipped).
            reporter: Optional progress reporter.

        Returns:
            ApplyOutcome in state COMPLETE, CANCELLED or FAILED.
        """
        applied: list[AppliedChange] = []
        with document.transaction("Apply web changes") as tx:
            for i, change in enumerate(changes):
                if self._cancel.cancelled:
                    tx.rollback()
                    logger.info(f"Apply cancelled after {i}/{len(changes)} changes; rolled back")
                    return ApplyOutcome(
                        SyncState.CANCELLED,
                        applied_changes=applied,
                        error=CancelledError("Apply cancelled"),
                    )

                if change.is_selected:
                    record = self._parameters.apply_change(document, change)
                else:
                    record = AppliedChange.create(change, ChangeStatus.SKIPPED)
                applied.append(record)

                if reporter is not None and changes:
                    span = PROGRESS_ACKNOWLEDGING - PROGRESS_APPLYING
                    reporter.report(
                        f"Applied {i + 1}/{len(changes)} changes",
                        PROGRESS_APPLYING + span * (i + 1) // len(changes),
                    )

            try:
                tx.commit()
            except Exception as e:
                logger.error(f"Failed to commit applied changes: {e}")
                return ApplyOutcome(SyncState.FAILED, applied_changes=applied, error=e)

        outcome = ApplyOutcome(SyncState.COMPLETE, applied_changes=applied)
        logger.info(
            f"Applied {outcome.count(ChangeStatus.APPLIED)} changes "
            f"({outcome.count(ChangeStatus.ERROR)} errors, "
            f"{outcome.count(ChangeStatus.SKIPPED)} skipped)"
        )
        return outcome

    def acknowledge_changes(
        self, sync_id: str, applied: list[AppliedChange]
    ) -> AcknowledgmentResponse:
        """Report applied changes to the service.

        A 404 from the primary apply endpoint is retried exactly once
        against the fallback endpoint.

        Raises:
            ApplicationError: If the service answers success=false.
            APIError: On request failure.
        """
        token = self._require_token()
        body = {"syncId": sync_id, "appliedChanges": [c.to_dict() for c in applied]}

        def send(url: str) -> dict[str, Any]:
            return self._retry.execute(
                lambda: self._transport.send_json(url, body, token, self._cancel),
                self._cancel,
            )

        try:
            data = send(self._resolver.resolve(Operation.APPLY, sync_id))
        except NotFoundError:
            fallback = self._resolver.fallback(Operation.APPLY, sync_id)
            if fallback is None or not EndpointResolver.falls_back_on_not_found(Operation.APPLY):
                raise
            logger.warning(f"Apply endpoint not found, retrying with {fallback}")
            data = send(fallback)

        response = AcknowledgmentResponse.from_dict(data)
        if not response.success:
            raise ApplicationError(response.message or "Acknowledgment was rejected by the server")
        self._record("changes_acknowledged", sync_id=sync_id, count=len(applied))
        return response

    def apply_and_acknowledge(self, document: ProjectDocument, status: SyncStatus) -> ApplyOutcome:
        """Review, apply and acknowledge the changes of a status poll.

        A failed acknowledgment is reported as a warning; applied changes
        are kept.
        """
        reporter = ProgressReporter(self._progress)
        try:
            reporter.report("Preparing changes for review...", PROGRESS_REVIEWING)
            changes = self.prepare_review(document, status)

            reporter.report(f"Applying {len(changes)} changes...", PROGRESS_APPLYING)
            outcome = self.apply_changes(document, changes, reporter)
        except Exception as e:
            logger.exception(f"Failed to apply changes for sync {status.sync_id}")
            return ApplyOutcome(SyncState.FAILED, error=e)

        self._record(
            "changes_applied",
            sync_id=status.sync_id,
            state=outcome.state.value,
            applied=outcome.count(ChangeStatus.APPLIED),
            errors=outcome.count(ChangeStatus.ERROR),
        )
        if outcome.state is not SyncState.COMPLETE:
            return outcome

        reporter.report("Acknowledging changes...", PROGRESS_ACKNOWLEDGING)
        try:
            outcome.acknowledgment = self.acknowledge_changes(
                status.sync_id, outcome.applied_changes
            )
            outcome.acknowledged = True
        except APIError as e:
            logger.warning(f"Acknowledgment for sync {status.sync_id} failed: {e}")
            outcome.warnings.append(
                f"Changes were applied but could not be acknowledged: {describe_error(e)}"
            )

        reporter.report("Changes applied", PROGRESS_DONE)
        return outcome
