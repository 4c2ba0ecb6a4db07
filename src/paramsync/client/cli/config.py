"""Configuration utilities for the paramsync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import click

from paramsync.client.credentials import CredentialStore, KeyringCredentialStore
from paramsync.core.config import ServiceConfig

# ServiceConfig fields that config.json may override
SERVICE_CONFIG_KEYS = (
    "timeout",
    "verify_ssl",
    "use_new_endpoints",
    "status_first_check",
    "status_interval",
    "chunk_size",
    "chunked_upload_threshold",
    "max_retries",
    "initial_delay",
    "max_delay",
    "jitter",
)


def get_config_dir() -> Path:
    """Get the configuration directory for paramsync.

    Returns:
        Path to ~/.paramsync or equivalent.
    """
    return Path.home() / ".paramsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_credential_store() -> CredentialStore:
    """Get the credential store used by the CLI (the OS keyring)."""
    return KeyringCredentialStore()


def get_audit_path(config: dict[str, Any]) -> Path | None:
    """Get the audit log path.

    Returns:
        Configured path, ~/.paramsync/audit.log by default, or None when
        audit_log is set to false.
    """
    value = config.get("audit_log", True)
    if value is False:
        return None
    if isinstance(value, str) and value:
        return Path(value).expanduser()
    return get_config_dir() / "audit.log"


def build_service_config(config: dict[str, Any]) -> ServiceConfig:
    """Create the service configuration from the CLI config.

    Raises:
        click.ClickException: If no server is configured.
    """
    server_url = config.get("server_url")
    if not server_url:
        raise click.ClickException(
            "No server configured. Run 'paramsync login --server URL' first."
        )
    overrides = {key: config[key] for key in SERVICE_CONFIG_KEYS if key in config}
    return ServiceConfig(server_url=server_url, **overrides)
