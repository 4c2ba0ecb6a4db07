"""Credential storage for access and refresh tokens.

This module provides:
- Credentials: Snapshot of the stored authentication fields
- CredentialStore: Protocol the auth manager and orchestrator depend on
- KeyringCredentialStore: OS keyring backed store
- MemoryCredentialStore: In-process store (embedding and tests)

Stores are injected explicitly; there is no process-wide credential state.
"""

from __future__ import annotations

import contextlib
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

import keyring
import keyring.errors

KEYRING_SERVICE = "paramsync"

_TOKEN_KEY = "access_token"
_REFRESH_KEY = "refresh_token"
_EXPIRY_KEY = "expires_at"
_USERNAME_KEY = "username"


@dataclass(frozen=True)
class Credentials:
    """Authentication fields read from a store at one point in time."""

    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None
    username: str | None = None


class CredentialStore(Protocol):
    """Storage interface for authentication state.

    Every call is short and synchronous. Callers re-read before use
    instead of caching values across network calls.
    """

    def get_token(self) -> str | None: ...

    def set_token(self, token: str | None) -> None: ...

    def get_refresh_token(self) -> str | None: ...

    def set_refresh_token(self, token: str | None) -> None: ...

    def get_expiry(self) -> datetime | None: ...

    def set_expiry(self, expires_at: datetime | None) -> None: ...

    def get_username(self) -> str | None: ...

    def set_username(self, username: str | None) -> None: ...

    def clear(self) -> None: ...


def read_credentials(store: CredentialStore) -> Credentials:
    """Take a snapshot of every field in a store."""
    return Credentials(
        access_token=store.get_token(),
        refresh_token=store.get_refresh_token(),
        expires_at=store.get_expiry(),
        username=store.get_username(),
    )


class MemoryCredentialStore:
    """Thread-safe in-memory credential store."""

    def __init__(self, credentials: Credentials | None = None) -> None:
        self._lock = threading.Lock()
        self._values: dict[str, object] = {}
        if credentials is not None:
            self._values = {
                _TOKEN_KEY: credentials.access_token,
                _REFRESH_KEY: credentials.refresh_token,
                _EXPIRY_KEY: credentials.expires_at,
                _USERNAME_KEY: credentials.username,
            }

    def _get(self, key: str) -> object:
        with self._lock:
            return self._values.get(key)

    def _set(self, key: str, value: object) -> None:
        with self._lock:
            if value in (None, ""):
                self._values.pop(key, None)
            else:
                self._values[key] = value

    def get_token(self) -> str | None:
        value = self._get(_TOKEN_KEY)
        return str(value) if value else None

    def set_token(self, token: str | None) -> None:
        self._set(_TOKEN_KEY, token)

    def get_refresh_token(self) -> str | None:
        value = self._get(_REFRESH_KEY)
        return str(value) if value else None

    def set_refresh_token(self, token: str | None) -> None:
        self._set(_REFRESH_KEY, token)

    def get_expiry(self) -> datetime | None:
        value = self._get(_EXPIRY_KEY)
        return value if isinstance(value, datetime) else None

    def set_expiry(self, expires_at: datetime | None) -> None:
        self._set(_EXPIRY_KEY, expires_at)

    def get_username(self) -> str | None:
        value = self._get(_USERNAME_KEY)
        return str(value) if value else None

    def set_username(self, username: str | None) -> None:
        self._set(_USERNAME_KEY, username)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()


class KeyringCredentialStore:
    """Credential store backed by the OS keyring.

    Each field is a separate keyring entry under the service name, keyed
    by field name. The expiry is stored as an ISO 8601 string.
    """

    def __init__(self, service: str = KEYRING_SERVICE) -> None:
        """Initialize the store.

        Args:
            service: Keyring service name.
        """
        self._service = service

    def _get(self, key: str) -> str | None:
        return keyring.get_password(self._service, key) or None

    def _set(self, key: str, value: str | None) -> None:
        if value:
            keyring.set_password(self._service, key, value)
        else:
            with contextlib.suppress(keyring.errors.PasswordDeleteError):
                keyring.delete_password(self._service, key)

    def get_token(self) -> str | None:
        return self._get(_TOKEN_KEY)

    def set_token(self, token: str | None) -> None:
        self._set(_TOKEN_KEY, token)

    def get_refresh_token(self) -> str | None:
        return self._get(_REFRESH_KEY)

    def set_refresh_token(self, token: str | None) -> None:
        self._set(_REFRESH_KEY, token)

    def get_expiry(self) -> datetime | None:
        value = self._get(_EXPIRY_KEY)
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None

    def set_expiry(self, expires_at: datetime | None) -> None:
        self._set(_EXPIRY_KEY, expires_at.isoformat() if expires_at else None)

    def get_username(self) -> str | None:
        return self._get(_USERNAME_KEY)

    def set_username(self, username: str | None) -> None:
        self._set(_USERNAME_KEY, username)

    def clear(self) -> None:
        for key in (_TOKEN_KEY, _REFRESH_KEY, _EXPIRY_KEY, _USERNAME_KEY):
            self._set(key, None)
