"""Parameter synchronization.

Architecture:
    ParameterManager -> SyncOrchestrator -> HTTPClient
                                         -> ChunkedUploader (large payloads)
    StatusTracker -> SyncOrchestrator.check_status

Components:
- **ParameterManager**: Collects local parameters and applies web changes
- **SyncOrchestrator**: Runs the push phase and the remote-edit phase
- **ChunkedUploader**: Resumable chunked upload of large payloads
- **StatusTracker**: Background polling until web changes are available
- **report**: Plain-text summaries and user-facing error messages
"""

from paramsync.client.sync.engine import ProgressReporter, SyncOrchestrator
from paramsync.client.sync.mapping import MappingConfiguration, MappingRule, SyncDirection
from paramsync.client.sync.parameters import (
    HostParameter,
    ParameterManager,
    ProjectDocument,
    StorageType,
    Transaction,
)
from paramsync.client.sync.status import StatusTracker
from paramsync.client.sync.types import (
    AcknowledgmentResponse,
    AppliedChange,
    ApplyOutcome,
    AvailableProject,
    ChangeStatus,
    ChunkTracker,
    ParameterData,
    ProgressCallback,
    SyncAction,
    SyncOutcome,
    SyncRequest,
    SyncResult,
    SyncState,
    SyncStatus,
    WebParameterChange,
)
from paramsync.client.sync.upload import ChunkedUploader, load_tracker, save_tracker

__all__ = [
    # Orchestration
    "ProgressReporter",
    "SyncOrchestrator",
    "StatusTracker",
    "ChunkedUploader",
    "load_tracker",
    "save_tracker",
    # Parameters
    "HostParameter",
    "MappingConfiguration",
    "MappingRule",
    "ParameterManager",
    "ProjectDocument",
    "StorageType",
    "SyncDirection",
    "Transaction",
    # Types
    "AcknowledgmentResponse",
    "AppliedChange",
    "ApplyOutcome",
    "AvailableProject",
    "ChangeStatus",
    "ChunkTracker",
    "ParameterData",
    "ProgressCallback",
    "SyncAction",
    "SyncOutcome",
    "SyncRequest",
    "SyncResult",
    "SyncState",
    "SyncStatus",
    "WebParameterChange",
]
