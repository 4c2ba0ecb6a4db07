"""Plain-text rendering of sync responses and errors.

This module provides:
- format_sync_result, format_sync_status, format_acknowledgment: Summaries
- status_explanation, is_successful_status: Sync status interpretation
- user_friendly_error_message, describe_error: Messages for end users
"""

from __future__ import annotations

from paramsync.client.api import (
    APIError,
    ApplicationError,
    AuthenticationError,
    CancelledError,
    NetworkError,
    NotFoundError,
    RequestTimeoutError,
    ValidationError,
)
from paramsync.client.sync.types import (
    AcknowledgmentResponse,
    AppliedChange,
    ChangeStatus,
    SyncResult,
    SyncStatus,
)

PREVIEW_COUNT = 3

STATUS_EXPLANATIONS = {
    "initiated": "Sync has been successfully initiated and is awaiting processing.",
    "queued": "Sync request is in the processing queue. It will be processed as soon as possible.",
    "processing": "Server is actively processing your sync request.",
    "processed": "Sync has been successfully processed. Changes may be available to apply.",
    "acknowledged": "Changes have been acknowledged and the sync process is complete.",
    "partial": "Sync was partially successful. Some parameters may not have been processed correctly.",
    "error": "An error occurred during the sync process. Please check the error message for details.",
    "rejected": "Sync request was rejected by the server. Please check your parameters and try again.",
    "expired": "Sync request has expired. Please initiate a new sync.",
}

SUCCESSFUL_STATUSES = frozenset({"initiated", "queued", "processing", "processed", "acknowledged"})


def format_sync_result(result: SyncResult | None) -> str:
    """Summarize the response to a sync request."""
    if result is None:
        return "Error: No response received from server."

    lines = []
    if result.sync_id:
        lines.append(f"Sync ID: {result.sync_id}")
    lines.append(f"Action: {result.action.value}")
    if result.status:
        lines.append(f"Status: {result.status}")
    if result.message:
        lines.append(f"Message: {result.message}")
    if result.project_id:
        lines.append(f"Project: {result.project_name} (ID: {result.project_id})")
    if result.queue_id:
        lines.append(f"Queue ID: {result.queue_id}")
    if result.queue_position:
        lines.append(f"Queue Position: {result.queue_position}")
    if result.changes_applied is not None:
        lines.append(f"Changes Applied: {result.changes_applied}")

    if result.available_projects:
        lines.append("")
        lines.append("Available Projects:")
        for project in result.available_projects:
            lines.append(f"- {project.name} (ID: {project.id})")
    return "\n".join(lines)


def format_sync_status(status: SyncStatus | None) -> str:
    """Summarize a status poll, previewing the first few changes."""
    if status is None:
        return "Error: No status information available."

    lines = [f"Sync ID: {status.sync_id}", f"Status: {status.status or 'unknown'}"]
    if status.message:
        lines.append(f"Message: {status.message}")
    if status.associated_project is not None:
        project = status.associated_project
        lines.append(f"Associated Project: {project.name} (ID: {project.id})")

    if status.has_changes_to_apply:
        changes = status.web_changes
        lines.append("")
        lines.append(f"Parameter Changes Available: {len(changes)} change(s)")
        lines.append("")
        lines.append("Preview of Changes:")
        for change in changes[:PREVIEW_COUNT]:
            author = f" (modified by {change.modified_by})" if change.modified_by else ""
            lines.append(f"- {change.name}: {change.value}{author}")
        if len(changes) > PREVIEW_COUNT:
            lines.append(f"... and {len(changes) - PREVIEW_COUNT} more change(s).")
    return "\n".join(lines)


def format_acknowledgment(
    response: AcknowledgmentResponse | None,
    changes: list[AppliedChange],
) -> str:
    """Summarize an acknowledgment and the changes it reported."""
    if response is None:
        return "Error: No acknowledgment response received from server."

    lines = [f"Success: {response.success}"]
    if response.message:
        lines.append(f"Message: {response.message}")
    lines.extend(format_applied_changes(changes))
    return "\n".join(lines)


def format_applied_changes(changes: list[AppliedChange]) -> list[str]:
    """Count changes by status and list the ones that failed."""
    if not changes:
        return []

    errors = [c for c in changes if c.status is ChangeStatus.ERROR]
    lines = [
        "",
        "Changes Summary:",
        f"- Applied: {sum(1 for c in changes if c.status is ChangeStatus.APPLIED)}",
        f"- Skipped: {sum(1 for c in changes if c.status is ChangeStatus.SKIPPED)}",
        f"- Errors: {len(errors)}",
    ]
    if errors:
        lines.append("")
        lines.append("Parameters with errors:")
        for change in errors:
            detail = f": {change.error_detail}" if change.error_detail else ""
            lines.append(f"- {change.parameter_name} (Category: {change.category}){detail}")
    return lines


def status_explanation(status_code: str | None) -> str:
    """Explain a sync status code in plain words."""
    if not status_code:
        return "Unknown status"
    return STATUS_EXPLANATIONS.get(status_code.lower(), f"Status: {status_code}")


def is_successful_status(status_code: str | None) -> bool:
    """Check if a sync status code means the sync is on track."""
    return bool(status_code) and status_code.lower() in SUCCESSFUL_STATUSES


def user_friendly_error_message(error_code: int, server_message: str) -> str:
    """Prefix a server message with the category of its error code."""
    if 1000 <= error_code < 2000:
        return f"Authentication error: {server_message}"
    if 2000 <= error_code < 3000:
        return f"Validation error: {server_message}"
    if 3000 <= error_code < 4000:
        return f"Processing error: {server_message}"
    if 4000 <= error_code < 5000:
        return f"Server error: {server_message}"
    return f"Error: {server_message}"


def describe_error(error: BaseException) -> str:
    """Turn any error raised during a sync into a message for the user."""
    if isinstance(error, CancelledError):
        return "Operation cancelled."
    if isinstance(error, AuthenticationError):
        return "Authentication failed. Please log in again."
    if isinstance(error, RequestTimeoutError):
        return "The request timed out. Please check your network connection and try again."
    if isinstance(error, NetworkError):
        return "Unable to connect to the sync service. Please check your network connection."
    if isinstance(error, ApplicationError):
        return str(error)
    if isinstance(error, APIError) and error.error_code:
        return user_friendly_error_message(error.error_code, str(error))
    if isinstance(error, NotFoundError):
        return f"The sync service endpoint was not found: {error}"
    if isinstance(error, ValidationError):
        return f"Invalid request or response: {error}"
    return f"Sync failed: {error}"
