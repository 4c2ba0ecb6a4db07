"""Shared pytest fixtures for paramsync tests."""

from __future__ import annotations

from collections.abc import Generator
from typing import Any

import pytest

from paramsync.client.api import HTTPClient
from paramsync.client.credentials import Credentials, MemoryCredentialStore
from paramsync.client.project import JsonProjectDocument
from paramsync.core.cancel import CancellationToken
from paramsync.core.config import ServiceConfig

SERVER_URL = "https://sync.example.com"


class RecordingCancellationToken(CancellationToken):
    """Cancellation token whose waits return immediately and are recorded.

    Optionally cancels itself on the Nth wait.
    """

    def __init__(self, cancel_on_wait: int | None = None) -> None:
        super().__init__()
        self.waits: list[float] = []
        self._cancel_on_wait = cancel_on_wait

    def wait(self, timeout: float) -> bool:
        self.waits.append(timeout)
        if self._cancel_on_wait is not None and len(self.waits) >= self._cancel_on_wait:
            self.cancel()
        return self.cancelled


def make_config(**overrides: Any) -> ServiceConfig:
    """Create a ServiceConfig for testing (no real backoff delays)."""
    values: dict[str, Any] = {
        "server_url": SERVER_URL,
        "initial_delay": 0.0,
        "max_delay": 0.0,
        "jitter": 0.0,
        "status_first_check": 0.01,
        "status_interval": 0.01,
    }
    values.update(overrides)
    return ServiceConfig(**values)


def sample_project() -> dict[str, Any]:
    """Project data with mapped, unmapped and ignored parameters."""
    return {
        "title": "House A",
        "parameters": {
            "Project Information": {
                "sp.MC.ProjectGUID": {"value": "", "type": "text"},
                "sp.Client.Name": {"value": "Jane Doe", "type": "text"},
                "sp.Lot.Size": {"value": 5000.0, "type": "number", "unit": "sqft"},
                "sp.Zoning": {"value": "-", "type": "text"},
                "sp.Existing.Bedrooms": {"value": 3, "type": "integer"},
                "MC.Permit.Number": {"value": "P-42", "type": "text"},
                "sp.MC.Locked": {"value": "fixed", "type": "text", "readOnly": True},
                "Other.Param": {"value": "ignored", "type": "text"},
                "sp.Foo": {"value": "old", "type": "text"},
                "sp.Energy.U.Walls": {"value": 0.35, "type": "number"},
            },
            "Energy Analysis": {
                "MC.Energy.Score": {"value": float("nan"), "type": "number"},
                "MC.Energy.Rating": {"value": "A", "type": "text"},
            },
        },
    }


@pytest.fixture
def config() -> ServiceConfig:
    """Service configuration pointing at the mocked server."""
    return make_config()


@pytest.fixture
def store() -> MemoryCredentialStore:
    """Credential store holding a valid token."""
    return MemoryCredentialStore(Credentials(access_token="test-token", username="alice"))


@pytest.fixture
def transport(config: ServiceConfig) -> Generator[HTTPClient, None, None]:
    """HTTP client whose requests are intercepted by httpx_mock."""
    client = HTTPClient(config)
    yield client
    client.close()


@pytest.fixture
def document() -> JsonProjectDocument:
    """In-memory project document."""
    return JsonProjectDocument(sample_project())


@pytest.fixture
def recording_cancel() -> RecordingCancellationToken:
    """Cancellation token that records waits instead of sleeping."""
    return RecordingCancellationToken()
