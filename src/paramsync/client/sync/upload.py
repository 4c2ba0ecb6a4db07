"""Chunked upload of large sync payloads.

This module provides:
- ChunkedUploader: Splits a payload into fixed-size chunks and uploads them
  resumably within one client-assigned session
- save_tracker / load_tracker: Persist resumable upload state
"""

from __future__ import annotations

import json
import logging
import math
import tempfile
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any

from paramsync.client.api import CancelledError
from paramsync.client.endpoints import Operation
from paramsync.client.retry import RetryPolicy
from paramsync.client.sync.types import ChunkProgressCallback, ChunkTracker
from paramsync.core.config import DEFAULT_CHUNK_SIZE

if TYPE_CHECKING:
    from paramsync.client.api import HTTPClient
    from paramsync.client.endpoints import EndpointResolver
    from paramsync.core.cancel import CancellationToken

logger = logging.getLogger(__name__)


class ChunkedUploader:
    """Uploads a payload in chunks with resume support.

    The payload is spooled to a temporary file so that an interrupted
    upload can continue from the chunks that were not confirmed.
    """

    def __init__(
        self,
        transport: HTTPClient,
        resolver: EndpointResolver,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        retry_policy: RetryPolicy | None = None,
        progress_callback: ChunkProgressCallback | None = None,
    ) -> None:
        """Initialize the uploader.

        Args:
            transport: HTTP transport.
            resolver: Endpoint resolver for the chunk endpoints.
            chunk_size: Bytes per chunk.
            retry_policy: Retry policy applied to each chunk and to finalize.
            progress_callback: Called with (uploaded, total) after each chunk.
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._transport = transport
        self._resolver = resolver
        self._chunk_size = chunk_size
        self._retry = retry_policy or RetryPolicy()
        self._progress_callback = progress_callback

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    def start_upload(
        self,
        payload: bytes,
        token: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> ChunkTracker:
        """Spool a payload and open a new upload session.

        Nothing is sent yet; call continue_upload() to transfer chunks.

        Args:
            payload: Serialized payload.
            token: Access token (unused until chunks are sent).
            cancel: Optional cancellation token.

        Returns:
            Tracker for the new session.
        """
        if cancel is not None and cancel.cancelled:
            raise CancelledError("Upload cancelled before start")

        with tempfile.NamedTemporaryFile(
            prefix="paramsync-", suffix=".upload", delete=False
        ) as f:
            f.write(payload)
            source_path = f.name

        total_chunks = max(1, math.ceil(len(payload) / self._chunk_size))
        tracker = ChunkTracker(
            session_id=uuid.uuid4().hex,
            source_path=source_path,
            total_chunks=total_chunks,
        )
        logger.info(
            f"Upload session {tracker.session_id}: {len(payload)} bytes "
            f"in {total_chunks} chunks"
        )
        return tracker

    def continue_upload(
        self,
        tracker: ChunkTracker,
        token: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> dict[str, Any]:
        """Send missing chunks, then finalize the session.

        Chunks are sent in ascending index order. Cancellation is checked
        between chunks, never in the middle of one.

        Args:
            tracker: Session state (updated in place).
            token: Access token.
            cancel: Optional cancellation token.

        Returns:
            Decoded finalize response.

        Raises:
            CancelledError: If cancelled between chunks.
            APIError: If a chunk or finalize fails after retries.
        """
        source = Path(tracker.source_path)
        url = self._resolver.resolve(Operation.CHUNK_UPLOAD)
        missing = tracker.missing_chunks
        if len(missing) < tracker.total_chunks:
            logger.info(
                f"Resuming upload {tracker.session_id}: "
                f"{tracker.total_chunks - len(missing)}/{tracker.total_chunks} chunks already uploaded"
            )

        with open(source, "rb") as f:
            for index in missing:
                if cancel is not None and cancel.cancelled:
                    raise CancelledError(
                        f"Upload {tracker.session_id} cancelled after "
                        f"{len(tracker.uploaded_chunk_indices)}/{tracker.total_chunks} chunks"
                    )

                f.seek(index * self._chunk_size)
                data = f.read(self._chunk_size)
                self._retry.execute(
                    lambda index=index, data=data: self._transport.send_chunk(
                        url,
                        tracker.session_id,
                        index,
                        tracker.total_chunks,
                        data,
                        token,
                        cancel,
                    ),
                    cancel,
                )
                tracker.mark_uploaded(index)

                if self._progress_callback:
                    self._progress_callback(
                        len(tracker.uploaded_chunk_indices), tracker.total_chunks
                    )

        if not tracker.is_complete:
            raise RuntimeError(f"Upload {tracker.session_id} has missing chunks")

        finalize_url = self._resolver.resolve(Operation.CHUNK_FINALIZE)
        result = self._retry.execute(
            lambda: self._transport.finalize_chunks(
                finalize_url, tracker.session_id, token, cancel
            ),
            cancel,
        )
        logger.info(f"Upload session {tracker.session_id} finalized")

        _discard_source(tracker)
        return result

    def upload(
        self,
        payload: bytes,
        token: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> dict[str, Any]:
        """Upload a payload in one go (start_upload + continue_upload).

        The session is not resumable, so the temporary file is removed
        whether the upload succeeds, fails or is cancelled.
        """
        tracker = self.start_upload(payload, token, cancel)
        try:
            return self.continue_upload(tracker, token, cancel)
        finally:
            _discard_source(tracker)


def _discard_source(tracker: ChunkTracker) -> None:
    source = Path(tracker.source_path)
    try:
        source.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to delete temporary upload file {source}: {e}")


def save_tracker(tracker: ChunkTracker, path: Path) -> None:
    """Persist upload state so a later process can resume it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(tracker.to_dict(), f, indent=2)


def load_tracker(path: Path) -> ChunkTracker | None:
    """Load upload state saved by save_tracker().

    Returns:
        The tracker, or None if the file is missing or invalid.
    """
    if not path.exists():
        return None
    try:
        with open(path, encoding="utf-8") as f:
            return ChunkTracker.from_dict(json.load(f))
    except (OSError, ValueError, KeyError) as e:
        logger.warning(f"Ignoring invalid upload state {path}: {e}")
        return None
