"""paramsync client: transport, authentication and sync engine."""

from paramsync.client.api import (
    APIError,
    ApplicationError,
    AuthenticationError,
    CancelledError,
    HTTPClient,
    NetworkError,
    NotFoundError,
    RequestTimeoutError,
    ValidationError,
)
from paramsync.client.audit import AuditLog
from paramsync.client.auth import AuthManager, AuthState
from paramsync.client.credentials import (
    CredentialStore,
    Credentials,
    KeyringCredentialStore,
    MemoryCredentialStore,
)
from paramsync.client.endpoints import EndpointResolver, Operation
from paramsync.client.retry import RetryPolicy

__all__ = [
    # Transport and errors
    "APIError",
    "ApplicationError",
    "AuthenticationError",
    "CancelledError",
    "HTTPClient",
    "NetworkError",
    "NotFoundError",
    "RequestTimeoutError",
    "ValidationError",
    # Auth
    "AuthManager",
    "AuthState",
    "CredentialStore",
    "Credentials",
    "KeyringCredentialStore",
    "MemoryCredentialStore",
    # Infrastructure
    "AuditLog",
    "EndpointResolver",
    "Operation",
    "RetryPolicy",
]
