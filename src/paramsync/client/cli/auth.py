"""Authentication commands for the paramsync CLI.

Commands:
- login: Log in and store tokens in the OS keyring
- logout: Remove stored tokens
- auth-status: Show the current authentication state
"""

from __future__ import annotations

import sys

import click

from paramsync.client.api import APIError, AuthenticationError, HTTPClient
from paramsync.client.auth import AuthManager, AuthState
from paramsync.client.cli import config as cli_config
from paramsync.client.endpoints import EndpointResolver
from paramsync.client.sync.report import describe_error


def _auth_manager(config: dict[str, object]) -> tuple[AuthManager, HTTPClient]:
    service_config = cli_config.build_service_config(config)
    transport = HTTPClient(service_config)
    resolver = EndpointResolver(service_config.server_url, service_config.use_new_endpoints)
    return AuthManager(transport, cli_config.get_credential_store(), resolver), transport


@click.command()
@click.option("--server", default=None, help="Server URL (e.g., https://app.example.com).")
@click.option("--username", prompt=True, help="User name or email.")
@click.password_option(confirmation_prompt=False, help="Password.")
def login(server: str | None, username: str, password: str) -> None:
    """Log in to the sync service.

    The access and refresh tokens are stored in the OS keyring.
    """
    config = cli_config.load_config()
    if server:
        config["server_url"] = server.rstrip("/")

    auth, transport = _auth_manager(config)
    with transport:
        try:
            auth.authenticate(username, password)
        except AuthenticationError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        except APIError as e:
            click.echo(f"Error: {describe_error(e)}", err=True)
            sys.exit(1)

    if server:
        cli_config.save_config(config)
    click.echo(f"Logged in as {username} on {config['server_url']}")


@click.command()
def logout() -> None:
    """Remove stored tokens."""
    cli_config.get_credential_store().clear()
    click.echo("Logged out.")


@click.command("auth-status")
@click.option("--check", is_flag=True, help="Validate the token with the server.")
def auth_status(check: bool) -> None:
    """Show the current authentication state."""
    config = cli_config.load_config()
    auth, transport = _auth_manager(config)

    with transport:
        state = auth.state
        if state is AuthState.LOGGED_OUT:
            click.echo("Not logged in.")
            sys.exit(1)

        store = auth.store
        click.echo(f"Server: {config['server_url']}")
        click.echo(f"User: {store.get_username() or 'unknown'}")
        expires_at = store.get_expiry()
        if expires_at is not None:
            click.echo(f"Token expires: {expires_at.isoformat()}")
        click.echo(f"State: {state.value.replace('_', ' ')}")

        if check:
            token = auth.get_valid_token() or ""
            if auth.validate_token_with_server(token):
                click.echo("Server: token is valid")
            else:
                click.echo("Server: token was rejected", err=True)
                sys.exit(1)
