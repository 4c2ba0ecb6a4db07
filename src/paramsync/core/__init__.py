"""Core module - Shared configuration and cancellation primitives."""

from paramsync.core.cancel import CancellationToken
from paramsync.core.config import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_TIMEOUT,
    ServiceConfig,
)

__all__ = [
    # Cancellation
    "CancellationToken",
    # Config
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_TIMEOUT",
    "ServiceConfig",
]
