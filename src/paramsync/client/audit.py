"""Non-blocking audit trail for requests, responses and sync events.

This module provides:
- AuditLog: Fire-and-forget event recorder backed by a logging queue

Records are pushed onto an in-memory queue by the caller and written by a
single QueueListener thread, so concurrent writers never contend on the
file and never wait on disk I/O.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import queue
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

AUDIT_LOGGER_NAME = "paramsync.audit"
MAX_AUDIT_BYTES = 5 * 1024 * 1024
AUDIT_BACKUP_COUNT = 3


class AuditLog:
    """Fire-and-forget audit sink.

    Usage:
        audit = AuditLog(Path("~/.paramsync/audit.log").expanduser())
        audit.start()
        audit.record("http_request", method="POST", url=url)
        audit.stop()
    """

    def __init__(self, path: Path | None = None) -> None:
        """Initialize the audit log.

        Args:
            path: File to append JSON lines to. None discards records.
        """
        self._path = path
        self._queue: queue.SimpleQueue[logging.LogRecord] = queue.SimpleQueue()
        self._logger = logging.getLogger(f"{AUDIT_LOGGER_NAME}.{id(self):x}")
        self._logger.propagate = False
        self._logger.setLevel(logging.INFO)
        self._queue_handler = logging.handlers.QueueHandler(self._queue)
        self._listener: logging.handlers.QueueListener | None = None

    @property
    def running(self) -> bool:
        """Check if the writer thread is running."""
        return self._listener is not None

    def start(self) -> None:
        """Start the background writer."""
        if self._listener is not None:
            return

        target: logging.Handler
        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            target = logging.handlers.RotatingFileHandler(
                self._path,
                maxBytes=MAX_AUDIT_BYTES,
                backupCount=AUDIT_BACKUP_COUNT,
                encoding="utf-8",
            )
            target.setFormatter(logging.Formatter("%(message)s"))
        else:
            target = logging.NullHandler()

        self._listener = logging.handlers.QueueListener(
            self._queue, target, respect_handler_level=False
        )
        self._listener.start()
        self._logger.addHandler(self._queue_handler)

    def stop(self) -> None:
        """Flush pending records and stop the writer."""
        if self._listener is None:
            return
        self._logger.removeHandler(self._queue_handler)
        self._listener.stop()
        for handler in self._listener.handlers:
            handler.close()
        self._listener = None

    def record(self, event: str, **fields: Any) -> None:
        """Record an audit event without blocking.

        Never raises: audit failures are reported through the module
        logger and otherwise ignored.

        Args:
            event: Event name (e.g., "http_request").
            **fields: JSON-serializable event details.
        """
        if self._listener is None:
            return
        try:
            entry = {
                "time": datetime.now(UTC).isoformat(),
                "event": event,
                **fields,
            }
            self._logger.info(json.dumps(entry, default=str))
        except Exception as e:
            logger.debug(f"Dropped audit event {event}: {e}")

    def __enter__(self) -> AuditLog:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.stop()
