"""Command-line interface for paramsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- login: Log in and store tokens in the OS keyring
- logout: Remove stored tokens
- auth-status: Show the current authentication state
- sync: Push a project file's parameters to the service
- status: Show the status of a sync
- watch: Poll a sync until web changes arrive, then apply them
- apply: Review and apply pending web changes
"""

from __future__ import annotations

import logging

import click

from paramsync.client.cli.auth import auth_status, login, logout
from paramsync.client.cli.config import (
    get_config_dir,
    get_config_file,
    load_config,
    save_config,
)
from paramsync.client.cli.sync import apply, status, sync, watch


@click.group()
@click.version_option(package_name="paramsync")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """paramsync - Synchronize project parameters with the web application."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Auth commands
cli.add_command(login)
cli.add_command(logout)
cli.add_command(auth_status)

# Sync commands
cli.add_command(sync)
cli.add_command(status)
cli.add_command(watch)
cli.add_command(apply)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "load_config",
    "save_config",
]
