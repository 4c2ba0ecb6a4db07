"""Shared types and dataclasses for sync operations.

This module provides:
- ParameterData, SyncRequest: Outgoing payload built from local parameters
- SyncAction, SyncResult, AvailableProject: Response to a sync request
- WebParameterChange, SyncStatus: Remote-originated edits and their status
- ChangeStatus, AppliedChange, AcknowledgmentResponse: Apply/acknowledge records
- ChunkTracker: Resumable chunked upload state
- SyncState, SyncOutcome, ApplyOutcome: Terminal results of orchestrator calls
- Type aliases for callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from paramsync.client.api import ValidationError

SCHEMA_VERSION = "1.0"


# =============================================================================
# Outgoing payload
# =============================================================================


@dataclass(frozen=True)
class ParameterData:
    """A single local parameter value sent to the service."""

    name: str
    category: str
    value: Any
    guid: str
    data_type: str = "Text"
    unit: str | None = None
    element_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire format."""
        data: dict[str, Any] = {
            "guid": self.guid,
            "name": self.name,
            "value": self.value,
            "group": self.category,
            "dataType": self.data_type,
        }
        if self.unit is not None:
            data["unit"] = self.unit
        if self.element_id is not None:
            data["elementId"] = self.element_id
        return data


@dataclass(frozen=True)
class SyncRequest:
    """Snapshot of local parameters for one sync attempt.

    Immutable once constructed; built fresh per attempt.
    """

    project_guid: str
    file_name: str
    parameters: tuple[ParameterData, ...] = ()
    schema_version: str = SCHEMA_VERSION
    timestamp_utc: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire format."""
        return {
            "revitProjectGuid": self.project_guid,
            "revitFileName": self.file_name,
            "parameters": [p.to_dict() for p in self.parameters],
            "version": self.schema_version,
            "timestamp": self.timestamp_utc.isoformat(),
        }


# =============================================================================
# Sync response
# =============================================================================


class SyncAction(str, Enum):
    """What the service did with a sync request."""

    QUEUE = "queue"
    SYNC = "sync"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str | None) -> SyncAction:
        """Map a wire value to an action (unknown values become OTHER)."""
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True)
class AvailableProject:
    """Web project a queued file can be associated with."""

    id: str
    name: str
    description: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AvailableProject:
        """Create from API response dictionary."""
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name") or "",
            description=data.get("description"),
        )


@dataclass
class SyncResult:
    """Response to a sync request.

    action=QUEUE always carries a queue_id; action=SYNC always carries
    project_id and project_name.
    """

    success: bool
    action: SyncAction
    message: str = ""
    error: str | None = None
    queue_id: str | None = None
    queue_position: int | None = None
    project_id: str | None = None
    project_name: str | None = None
    sync_id: str | None = None
    status: str | None = None
    changes_applied: int | None = None
    available_projects: list[AvailableProject] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncResult:
        """Create from API response dictionary.

        Raises:
            ValidationError: If a successful response breaks the action invariants.
        """
        action = SyncAction.parse(data.get("action"))
        changes_applied = data.get("changesApplied")
        if changes_applied is None and isinstance(data.get("data"), dict):
            changes_applied = data["data"].get("changesApplied")

        result = cls(
            success=bool(data.get("success", False)),
            action=action,
            message=data.get("message") or "",
            error=data.get("error"),
            queue_id=data.get("queueId") or None,
            queue_position=data.get("queuePosition"),
            project_id=_optional_str(data.get("projectId")),
            project_name=data.get("projectName") or None,
            sync_id=_optional_str(data.get("syncId")),
            status=data.get("status"),
            changes_applied=changes_applied,
            available_projects=[
                AvailableProject.from_dict(p) for p in data.get("availableProjects") or []
            ],
        )

        if result.success:
            if action is SyncAction.QUEUE and not result.queue_id:
                raise ValidationError("Queued sync result is missing queueId")
            if action is SyncAction.SYNC and not (result.project_id and result.project_name):
                raise ValidationError("Sync result is missing projectId or projectName")
        return result


# =============================================================================
# Remote changes
# =============================================================================


@dataclass
class WebParameterChange:
    """A remote-originated edit to one parameter.

    Only current_value and is_selected are touched locally.
    """

    name: str
    value: str
    category: str | None = None
    data_type: str | None = None
    modified_by: str | None = None
    modified_at: datetime | None = None
    current_value: str | None = None
    is_selected: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WebParameterChange:
        """Create from API response dictionary."""
        value = data.get("value")
        return cls(
            name=data["name"],
            value="" if value is None else str(value),
            category=data.get("category"),
            data_type=data.get("dataType"),
            modified_by=data.get("modifiedBy"),
            modified_at=_parse_datetime(data.get("modifiedAt")),
        )


@dataclass(frozen=True)
class AssociatedProject:
    """Web project associated with a sync."""

    id: str
    name: str


@dataclass
class SyncStatus:
    """Result of one status poll. Transient; recreated on every poll."""

    sync_id: str
    status: str | None = None
    message: str | None = None
    has_changes_to_apply: bool = False
    web_changes: list[WebParameterChange] = field(default_factory=list)
    associated_project: AssociatedProject | None = None

    @property
    def is_processing_complete(self) -> bool:
        """Check if the service has finished processing this sync."""
        return self.status in ("processed", "error")

    @classmethod
    def from_dict(cls, data: dict[str, Any], sync_id: str | None = None) -> SyncStatus:
        """Create from API response dictionary.

        The explicit hasChangesToApply flag wins; otherwise changes are
        pending when the sync is processed and carries web changes.
        """
        changes = [WebParameterChange.from_dict(c) for c in data.get("webChanges") or []]
        status = data.get("status")
        flag = data.get("hasChangesToApply")
        if flag is None:
            has_changes = status == "processed" and bool(changes)
        else:
            has_changes = bool(flag) and bool(changes)

        project = data.get("associatedProject")
        return cls(
            sync_id=str(data.get("syncId") or sync_id or ""),
            status=status,
            message=data.get("message"),
            has_changes_to_apply=has_changes,
            web_changes=changes,
            associated_project=(
                AssociatedProject(id=str(project.get("id", "")), name=project.get("name") or "")
                if isinstance(project, dict)
                else None
            ),
        )


class ChangeStatus(str, Enum):
    """Outcome of applying one change locally."""

    APPLIED = "applied"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class AppliedChange:
    """Record of one attempt to write a WebParameterChange locally."""

    parameter_name: str
    value: str
    status: ChangeStatus
    category: str | None = None
    error_detail: str | None = None

    @classmethod
    def create(
        cls,
        change: WebParameterChange,
        status: ChangeStatus,
        error_detail: str | None = None,
    ) -> AppliedChange:
        """Create a record for a change."""
        return cls(
            parameter_name=change.name,
            value=change.value,
            status=status,
            category=change.category,
            error_detail=error_detail,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire format."""
        data: dict[str, Any] = {
            "name": self.parameter_name,
            "category": self.category,
            "value": self.value,
            "status": self.status.value,
        }
        if self.error_detail is not None:
            data["error"] = self.error_detail
        return data


@dataclass(frozen=True)
class AcknowledgmentResponse:
    """Response to an acknowledgment."""

    success: bool
    message: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AcknowledgmentResponse:
        """Create from API response dictionary."""
        return cls(success=bool(data.get("success", False)), message=data.get("message") or "")


# =============================================================================
# Chunked upload
# =============================================================================


@dataclass
class ChunkTracker:
    """Resumable state of one chunked upload session."""

    session_id: str
    source_path: str
    total_chunks: int
    uploaded_chunk_indices: set[int] = field(default_factory=set)

    @property
    def is_complete(self) -> bool:
        """Check that every index in [0, total_chunks) was uploaded."""
        return all(i in self.uploaded_chunk_indices for i in range(self.total_chunks))

    @property
    def missing_chunks(self) -> list[int]:
        """Get chunk indices not uploaded yet, in ascending order."""
        return [i for i in range(self.total_chunks) if i not in self.uploaded_chunk_indices]

    def mark_uploaded(self, chunk_index: int) -> None:
        """Record a confirmed chunk."""
        if not 0 <= chunk_index < self.total_chunks:
            raise ValueError(f"Chunk index {chunk_index} out of range")
        self.uploaded_chunk_indices.add(chunk_index)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "sessionId": self.session_id,
            "sourcePath": self.source_path,
            "totalChunks": self.total_chunks,
            "uploadedChunks": sorted(self.uploaded_chunk_indices),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChunkTracker:
        """Create from a dictionary produced by to_dict()."""
        return cls(
            session_id=data["sessionId"],
            source_path=data["sourcePath"],
            total_chunks=int(data["totalChunks"]),
            uploaded_chunk_indices={int(i) for i in data.get("uploadedChunks", [])},
        )


# =============================================================================
# Orchestrator results
# =============================================================================


class SyncState(str, Enum):
    """States of the sync protocol."""

    COLLECTING = "collecting"
    AUTHENTICATING = "authenticating"
    UPLOADING = "uploading"
    QUEUED = "queued"
    SYNCED = "synced"
    POLLING = "polling"
    REVIEWING = "reviewing"
    APPLYING = "applying"
    ACKNOWLEDGING = "acknowledging"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class SyncOutcome:
    """Terminal value of a sync invocation.

    Failures and cancellation are reported here rather than raised.
    """

    state: SyncState
    message: str
    result: SyncResult | None = None
    error: Exception | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        """Check if the invocation reached a successful terminal state."""
        return self.state in (SyncState.COMPLETE, SyncState.QUEUED)


@dataclass
class ApplyOutcome:
    """Terminal value of an apply (and acknowledge) pass."""

    state: SyncState
    applied_changes: list[AppliedChange] = field(default_factory=list)
    acknowledged: bool = False
    acknowledgment: AcknowledgmentResponse | None = None
    warnings: list[str] = field(default_factory=list)
    error: Exception | None = None

    def count(self, status: ChangeStatus) -> int:
        """Count applied changes with a given status."""
        return sum(1 for c in self.applied_changes if c.status is status)


# Type aliases for callbacks
ProgressCallback = Callable[[str, int], None]
ChunkProgressCallback = Callable[[int, int], None]
StatusCallback = Callable[[SyncStatus], None]


def _optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
