"""Shared configuration classes for paramsync.

This module defines the service configuration shared by the transport,
the auth manager, the status tracker and the sync orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_TIMEOUT = 30.0  # seconds
DEFAULT_CHUNK_SIZE = 5 * 1024 * 1024  # 5 MiB


@dataclass
class ServiceConfig:
    """Configuration for talking to the parameter sync service.

    Attributes:
        server_url: Base URL of the service (e.g., "https://app.example.com").
        timeout: Per-request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
        use_new_endpoints: Prefer the unified endpoints over the legacy ones.
        status_first_check: Seconds before the first status check.
        status_interval: Seconds between subsequent status checks.
        chunk_size: Chunk size in bytes for chunked uploads.
        chunked_upload_threshold: Payloads larger than this are chunked.
        max_retries: Retry ceiling for transient errors.
        initial_delay: First backoff delay in seconds.
        max_delay: Upper bound for any backoff delay in seconds.
        jitter: Upper bound of the random jitter added to each delay.
    """

    server_url: str
    timeout: float = DEFAULT_TIMEOUT
    verify_ssl: bool = True
    use_new_endpoints: bool = True
    status_first_check: float = 5.0
    status_interval: float = 5 * 60.0
    chunk_size: int = DEFAULT_CHUNK_SIZE
    chunked_upload_threshold: int = DEFAULT_CHUNK_SIZE
    max_retries: int = 3
    initial_delay: float = 0.1
    max_delay: float = 5.0
    jitter: float = 0.05

    def __post_init__(self) -> None:
        """Normalize server URL and validate sizes."""
        self.server_url = self.server_url.rstrip("/")
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS.

        Returns:
            True if server uses HTTPS.
        """
        return self.server_url.startswith("https://")
