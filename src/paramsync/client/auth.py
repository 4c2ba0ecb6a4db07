"""Authentication and token lifecycle management.

This module provides:
- AuthState: Derived authentication state
- AuthManager: Login, refresh, validation and logout on top of HTTPClient
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from paramsync.client.api import (
    APIError,
    AuthenticationError,
    ValidationError,
)
from paramsync.client.endpoints import EndpointResolver, Operation

if TYPE_CHECKING:
    from paramsync.client.api import HTTPClient
    from paramsync.client.credentials import CredentialStore
    from paramsync.core.cancel import CancellationToken

logger = logging.getLogger(__name__)

# Tokens this close to expiry are treated as expired
EXPIRY_BUFFER = timedelta(minutes=1)


class AuthState(Enum):
    """Authentication state derived from the credential store."""

    LOGGED_OUT = "logged_out"
    LOGGED_IN = "logged_in"
    EXPIRING = "expiring"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class AuthManager:
    """Owns the token lifecycle.

    Never keeps its own copy of credentials: every operation re-reads the
    store, so concurrent callers always see the latest token.
    """

    def __init__(
        self,
        transport: HTTPClient,
        store: CredentialStore,
        resolver: EndpointResolver | None = None,
    ) -> None:
        """Initialize the auth manager.

        Args:
            transport: HTTP transport.
            store: Credential store (injected, never global).
            resolver: Endpoint resolver (defaults to the transport's server).
        """
        self._transport = transport
        self._store = store
        self._resolver = resolver or EndpointResolver(transport.config.server_url)

    @property
    def store(self) -> CredentialStore:
        """Get the credential store."""
        return self._store

    @property
    def state(self) -> AuthState:
        """Get the current authentication state."""
        if not self._store.get_token():
            return AuthState.LOGGED_OUT
        if self.validate_token():
            return AuthState.LOGGED_IN
        return AuthState.EXPIRING

    def _persist(
        self,
        data: dict[str, Any],
        username: str | None = None,
        new_session: bool = False,
    ) -> str:
        """Store a token response and return the access token.

        The expiry is always replaced (None without expires_in). A new
        session also replaces the refresh token; a refresh keeps the old
        one when the response does not rotate it.
        """
        token = data.get("token")
        if not token:
            raise ValidationError("Authentication response did not contain a token")

        self._store.set_token(token)
        refresh = data.get("refresh_token")
        if refresh or new_session:
            self._store.set_refresh_token(refresh or None)
        expires_in = data.get("expires_in") or 0
        if isinstance(expires_in, int | float) and expires_in > 0:
            self._store.set_expiry(_utcnow() + timedelta(seconds=expires_in))
        else:
            self._store.set_expiry(None)
        if username is not None:
            self._store.set_username(username)
        return str(token)

    def authenticate(
        self,
        username: str,
        password: str,
        cancel: CancellationToken | None = None,
    ) -> str:
        """Log in with username and password.

        Args:
            username: User name or email.
            password: Password.
            cancel: Optional cancellation token.

        Returns:
            The new access token.

        Raises:
            AuthenticationError: Invalid credentials (store untouched).
            NetworkError: Service unreachable.
            RequestTimeoutError: Request timed out.
            CancelledError: Cancelled by the caller.
            ValidationError: Response did not contain a token.
        """
        url = self._resolver.resolve(Operation.LOGIN)
        try:
            data = self._transport.send_json(
                url, {"username": username, "password": password}, cancel=cancel
            )
        except AuthenticationError as e:
            logger.warning(f"Login rejected for {username}")
            raise AuthenticationError(
                "Invalid username or password", status_code=e.status_code, body=e.body
            ) from e

        token = self._persist(data, username=username, new_session=True)
        logger.info(f"User {username} authenticated successfully")
        return token

    def refresh_token(self, cancel: CancellationToken | None = None) -> bool:
        """Exchange the stored refresh token for a new access token.

        A rejected refresh token (401/400) clears every stored credential so
        the user is forced to log in again. Any other failure leaves the
        store untouched.

        Args:
            cancel: Optional cancellation token.

        Returns:
            True if a new token was stored.
        """
        refresh = self._store.get_refresh_token()
        if not refresh:
            logger.error("No refresh token available")
            return False

        url = self._resolver.resolve(Operation.REFRESH)
        try:
            data = self._transport.send_json(url, {"refresh_token": refresh}, cancel=cancel)
            self._persist(data)
        except APIError as e:
            if e.status_code in (400, 401):
                logger.error("Refresh token is invalid or expired; clearing credentials")
                self._store.clear()
            else:
                logger.error(f"Token refresh failed: {e}")
            return False

        logger.info(f"Token refreshed for user: {self._store.get_username() or 'unknown'}")
        return True

    def validate_token(self) -> bool:
        """Check locally that a token exists and is not about to expire.

        Does not call the service.

        Returns:
            True if a token is stored and now + 1 minute < expiry.
        """
        if not self._store.get_token():
            return False
        expires_at = self._store.get_expiry()
        if expires_at is None:
            return True
        return _utcnow() + EXPIRY_BUFFER < _as_utc(expires_at)

    def validate_token_with_server(
        self,
        token: str,
        cancel: CancellationToken | None = None,
    ) -> bool:
        """Ask the service whether a token is valid.

        Args:
            token: Token to check.
            cancel: Optional cancellation token.

        Returns:
            True if the service reports the token as valid.
        """
        if not token:
            return False
        try:
            data = self._transport.get_json(
                self._resolver.resolve(Operation.VALIDATE), token, cancel
            )
        except APIError as e:
            logger.error(f"Token validation error: {e}")
            return False
        return bool(data.get("valid", False))

    def validate_with_test_endpoint(self, token: str) -> bool:
        """Check a token against the no-op test endpoint.

        Args:
            token: Token to check.

        Returns:
            True on any 2xx response.
        """
        if not token:
            return False
        return self._transport.test_connectivity(
            self._resolver.resolve(Operation.TEST), token
        )

    def is_authenticated(self) -> bool:
        """Check if a token is stored (it may still be expired)."""
        return bool(self._store.get_token())

    def logout(self) -> None:
        """Clear every stored credential. Safe to call when logged out."""
        username = self._store.get_username()
        self._store.clear()
        if username:
            logger.info(f"User {username} logged out")
        else:
            logger.info("Logged out")

    def get_valid_token(self) -> str | None:
        """Get the stored token as-is.

        Service tokens are treated as non-expiring; callers that care about
        expiry use validate_token/refresh_token or ensure_valid_token.
        """
        token = self._store.get_token()
        if not token:
            logger.info("No API token available")
            return None
        return token

    def ensure_valid_token(self, cancel: CancellationToken | None = None) -> str | None:
        """Get a token, refreshing first if the stored one is expiring.

        Args:
            cancel: Optional cancellation token.

        Returns:
            A token, or None if none is available.
        """
        if self.state is AuthState.EXPIRING and self._store.get_refresh_token():
            logger.info("Stored token is expiring, refreshing")
            self.refresh_token(cancel)
        return self.get_valid_token()
