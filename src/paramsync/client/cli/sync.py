"""Sync commands for the paramsync CLI.

Commands:
- sync: Push a project file's parameters to the service
- status: Show the status of a sync
- watch: Poll a sync until web changes arrive, then apply them
- apply: Review and apply pending web changes to a project file
"""

from __future__ import annotations

import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click

from paramsync.client.api import APIError
from paramsync.client.audit import AuditLog
from paramsync.client.cli import config as cli_config
from paramsync.client.project import DocumentError, JsonProjectDocument
from paramsync.client.sync.engine import SyncOrchestrator
from paramsync.client.sync.report import (
    describe_error,
    format_acknowledgment,
    format_applied_changes,
    format_sync_result,
    format_sync_status,
    is_successful_status,
    status_explanation,
)
from paramsync.client.sync.types import ApplyOutcome, SyncState, SyncStatus

EXIT_FAILURE = 1
EXIT_CANCELLED = 130


def _echo_progress(message: str, percent: int) -> None:
    click.echo(f"[{percent:3d}%] {message}")


def _load_document(path: Path) -> JsonProjectDocument:
    try:
        return JsonProjectDocument.load(path)
    except DocumentError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILURE)


@contextmanager
def _orchestrator(progress: bool = True) -> Iterator[SyncOrchestrator]:
    """Build an orchestrator from the CLI config, with auditing."""
    config = cli_config.load_config()
    service_config = cli_config.build_service_config(config)
    with AuditLog(cli_config.get_audit_path(config)) as audit:
        with SyncOrchestrator(
            service_config,
            cli_config.get_credential_store(),
            progress=_echo_progress if progress else None,
            audit=audit,
        ) as orchestrator:
            yield orchestrator


def _exit_for(state: SyncState) -> None:
    if state is SyncState.CANCELLED:
        sys.exit(EXIT_CANCELLED)
    if state is SyncState.FAILED:
        sys.exit(EXIT_FAILURE)


def _review(status: SyncStatus, exclude: tuple[str, ...]) -> None:
    """Show pending changes and deselect excluded ones."""
    excluded = {name.lower() for name in exclude}
    click.echo(f"{len(status.web_changes)} change(s) from the web application:")
    for change in status.web_changes:
        change.is_selected = change.name.lower() not in excluded
        marker = " " if change.is_selected else "-"
        current = change.current_value if change.current_value is not None else "(none)"
        author = f" by {change.modified_by}" if change.modified_by else ""
        click.echo(f" {marker} {change.name}: {current} -> {change.value}{author}")


def _apply(
    orchestrator: SyncOrchestrator,
    document: JsonProjectDocument,
    status: SyncStatus,
    exclude: tuple[str, ...],
    yes: bool,
) -> ApplyOutcome | None:
    orchestrator.prepare_review(document, status)
    _review(status, exclude)
    if not yes and not click.confirm("Apply these changes?", default=True):
        click.echo("No changes applied.")
        return None

    outcome = orchestrator.apply_and_acknowledge(document, status)
    if outcome.acknowledgment is not None:
        click.echo(format_acknowledgment(outcome.acknowledgment, outcome.applied_changes))
    else:
        for line in format_applied_changes(outcome.applied_changes):
            click.echo(line)
    for warning in outcome.warnings:
        click.echo(f"Warning: {warning}", err=True)

    if outcome.state is SyncState.COMPLETE:
        suffix = "" if outcome.acknowledged else " (not acknowledged)"
        click.echo(f"Changes applied{suffix}.")
    elif outcome.state is SyncState.CANCELLED:
        click.echo("Apply cancelled; no changes were saved.", err=True)
    else:
        click.echo(f"Error: {describe_error(outcome.error)}", err=True)
    return outcome


@click.command()
@click.argument("project_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--quiet", "-q", is_flag=True, help="Do not show progress.")
def sync(project_file: Path, quiet: bool) -> None:
    """Push the parameters of PROJECT_FILE to the web application."""
    document = _load_document(project_file)

    with _orchestrator(progress=not quiet) as orchestrator:
        project_guid = orchestrator.parameters.ensure_project_guid(document)
        future = orchestrator.start_sync(document, project_guid)
        try:
            outcome = future.result()
        except KeyboardInterrupt:
            click.echo("\nCancelling...", err=True)
            orchestrator.cancel()
            outcome = future.result()

    if outcome.result is not None:
        click.echo(format_sync_result(outcome.result))
    for warning in outcome.warnings:
        click.echo(f"Warning: {warning}", err=True)

    if outcome.succeeded:
        click.echo(outcome.message)
    else:
        click.echo(f"Error: {outcome.message}", err=True)
    _exit_for(outcome.state)


@click.command()
@click.argument("sync_id")
def status(sync_id: str) -> None:
    """Show the status of SYNC_ID.

    Exits 1 when the sync has failed or expired.
    """
    with _orchestrator(progress=False) as orchestrator:
        try:
            result = orchestrator.check_status(sync_id)
        except APIError as e:
            click.echo(f"Error: {describe_error(e)}", err=True)
            sys.exit(EXIT_FAILURE)

    click.echo(format_sync_status(result))
    click.echo(status_explanation(result.status))
    if not is_successful_status(result.status):
        sys.exit(EXIT_FAILURE)


@click.command()
@click.argument("project_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("sync_id")
@click.option("--exclude", "-x", multiple=True, help="Parameter to leave unchanged (repeatable).")
@click.option("--yes", "-y", is_flag=True, help="Apply without asking for confirmation.")
def apply(project_file: Path, sync_id: str, exclude: tuple[str, ...], yes: bool) -> None:
    """Apply pending web changes of SYNC_ID to PROJECT_FILE."""
    document = _load_document(project_file)

    with _orchestrator() as orchestrator:
        try:
            result = orchestrator.check_status(sync_id)
        except APIError as e:
            click.echo(f"Error: {describe_error(e)}", err=True)
            sys.exit(EXIT_FAILURE)

        if not result.has_changes_to_apply:
            click.echo(f"No changes to apply. {status_explanation(result.status)}")
            return

        outcome = _apply(orchestrator, document, result, exclude, yes)

    if outcome is not None:
        _exit_for(outcome.state)


@click.command()
@click.argument("project_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("sync_id")
@click.option("--exclude", "-x", multiple=True, help="Parameter to leave unchanged (repeatable).")
@click.option("--yes", "-y", is_flag=True, help="Apply without asking for confirmation.")
def watch(project_file: Path, sync_id: str, exclude: tuple[str, ...], yes: bool) -> None:
    """Wait for web changes to SYNC_ID, then apply them to PROJECT_FILE.

    Press Ctrl+C to stop waiting.
    """
    document = _load_document(project_file)
    received: list[SyncStatus] = []
    ready = threading.Event()

    def on_changes(result: SyncStatus) -> None:
        received.append(result)
        ready.set()

    with _orchestrator() as orchestrator:
        click.echo(f"Waiting for web changes to sync {sync_id} (Ctrl+C to stop)...")
        orchestrator.start_status_checking(sync_id, on_changes)
        try:
            while not ready.wait(0.5):
                pass
        except KeyboardInterrupt:
            orchestrator.stop_status_checking()
            click.echo("\nStopped.", err=True)
            sys.exit(EXIT_CANCELLED)

        click.echo(format_sync_status(received[0]))
        outcome = _apply(orchestrator, document, received[0], exclude, yes)

    if outcome is not None:
        _exit_for(outcome.state)
