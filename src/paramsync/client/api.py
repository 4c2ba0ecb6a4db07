"""HTTP transport for the parameter sync service.

This module provides:
- APIError and its subclasses: The error taxonomy shared by every client layer
- HTTPClient: Authenticated JSON and chunk transport over one connection pool
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

import httpx

from paramsync.core.config import ServiceConfig

if TYPE_CHECKING:
    from paramsync.client.audit import AuditLog
    from paramsync.core.cancel import CancellationToken

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-Revit-Token"
SESSION_HEADER = "X-Session-Id"
CHUNK_INDEX_HEADER = "X-Chunk-Index"
TOTAL_CHUNKS_HEADER = "X-Total-Chunks"


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.body = body


class NetworkError(APIError):
    """DNS failure, connection refused or connection reset."""


class RequestTimeoutError(APIError, TimeoutError):
    """Request exceeded its timeout (or the server answered 408/504)."""


class AuthenticationError(APIError):
    """Authentication failed (invalid credentials or token)."""


class NotFoundError(APIError):
    """Resource not found."""


class ValidationError(APIError):
    """Malformed request or response."""


class ApplicationError(APIError):
    """Server answered success=false with a business message."""


class CancelledError(APIError):
    """Operation cancelled by the caller."""


def auth_headers(token: str | None) -> dict[str, str]:
    """Build the authentication headers for a token.

    Both the custom token header and the standard bearer header are sent,
    carrying the same value.

    Args:
        token: Access token, or None for unauthenticated requests.

    Returns:
        Header dictionary (empty when no token).
    """
    if not token:
        return {}
    return {TOKEN_HEADER: token, "Authorization": f"Bearer {token}"}


def _error_for_status(status_code: int) -> type[APIError]:
    if status_code == 401:
        return AuthenticationError
    if status_code == 404:
        return NotFoundError
    if status_code in (400, 422):
        return ValidationError
    if status_code in (408, 504):
        return RequestTimeoutError
    return APIError


class HTTPClient:
    """HTTP client for the parameter sync service.

    A single httpx.Client is shared by every request, so all calls reuse
    one connection pool. Requests and responses are mirrored to the audit
    log without blocking the caller.
    """

    def __init__(
        self,
        config: ServiceConfig,
        audit: AuditLog | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the HTTP client.

        Args:
            config: Service configuration (URL, timeout, SSL).
            audit: Optional audit sink for request/response mirroring.
            transport: Optional httpx transport (used for testing).
        """
        self._config = config
        self._audit = audit
        self._client = httpx.Client(
            timeout=config.timeout,
            verify=config.verify_ssl,
            transport=transport,
        )

    @property
    def config(self) -> ServiceConfig:
        """Get the service configuration."""
        return self._config

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> HTTPClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    # === Low-level request handling ===

    def _request(
        self,
        method: str,
        url: str,
        token: str | None,
        cancel: CancellationToken | None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, translating transport failures into APIError."""
        if cancel is not None and cancel.cancelled:
            raise CancelledError(f"{method} {url} cancelled before sending")

        headers = {**auth_headers(token), **kwargs.pop("headers", {})}
        self._record(
            "http_request",
            method=method,
            url=url,
            authenticated=bool(token),
        )

        started = time.monotonic()
        try:
            response = self._client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            if cancel is not None and cancel.cancelled:
                logger.info(f"{method} {url} cancelled by caller")
                raise CancelledError(f"{method} {url} cancelled") from e
            logger.error(f"{method} {url} timed out")
            self._record("http_error", method=method, url=url, error="timeout")
            raise RequestTimeoutError(
                "The request timed out. Please check your network connection."
            ) from e
        except httpx.TransportError as e:
            logger.error(f"Network error on {method} {url}: {e}")
            self._record("http_error", method=method, url=url, error=str(e))
            raise NetworkError(
                f"Unable to connect to the sync service: {e}"
            ) from e

        self._record(
            "http_response",
            method=method,
            url=url,
            status=response.status_code,
            elapsed_ms=round((time.monotonic() - started) * 1000),
            length=len(response.content),
        )
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Raise the matching APIError for non-2xx responses."""
        if response.is_success:
            return response

        status = response.status_code
        text = response.text
        error_cls = _error_for_status(status)

        error_code: int | None = None
        message = f"Request failed with status {status}: {text}"
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            code = data.get("code")
            if isinstance(code, int) and code > 0:
                error_code = code
                message = (
                    f"Request failed with error code {code}: {data.get('message', '')}"
                )

        logger.warning(f"{response.request.method} {response.request.url} -> {status}")
        raise error_cls(message, status_code=status, error_code=error_code, body=text)

    @staticmethod
    def _json_body(response: httpx.Response) -> dict[str, Any]:
        """Decode a JSON object body (empty body decodes to {})."""
        if not response.content.strip():
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise ValidationError(
                f"Response is not valid JSON: {response.text[:200]}",
                status_code=response.status_code,
                body=response.text,
            ) from e
        if not isinstance(data, dict):
            raise ValidationError(
                "Response JSON is not an object",
                status_code=response.status_code,
                body=response.text,
            )
        return data

    def _record(self, event: str, **fields: Any) -> None:
        if self._audit is not None:
            self._audit.record(event, **fields)

    # === JSON operations ===

    def get_json(
        self,
        url: str,
        token: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> dict[str, Any]:
        """GET a JSON object.

        Args:
            url: Absolute URL.
            token: Access token (sent as both auth headers).
            cancel: Optional cancellation token.

        Returns:
            Decoded response body.
        """
        response = self._request("GET", url, token, cancel)
        return self._json_body(response)

    def send_json(
        self,
        url: str,
        body: dict[str, Any],
        token: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> dict[str, Any]:
        """POST a JSON body and return the decoded JSON response.

        Args:
            url: Absolute URL.
            body: JSON-serializable request body.
            token: Access token, or None for unauthenticated calls.
            cancel: Optional cancellation token.

        Returns:
            Decoded response body.

        Raises:
            AuthenticationError: On 401.
            NotFoundError: On 404.
            ValidationError: On 400/422 or a malformed response body.
            RequestTimeoutError: On timeout or 408/504.
            NetworkError: On connection failures.
            CancelledError: If cancelled by the caller.
            APIError: On any other non-2xx status.
        """
        response = self._request("POST", url, token, cancel, json=body)
        return self._json_body(response)

    # === Chunk operations ===

    def send_chunk(
        self,
        url: str,
        session_id: str,
        chunk_index: int,
        total_chunks: int,
        data: bytes,
        token: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> dict[str, Any]:
        """Upload one chunk of a chunked payload as multipart form data.

        Args:
            url: Chunk upload URL.
            session_id: Client-assigned upload session id.
            chunk_index: Zero-based chunk index.
            total_chunks: Total number of chunks in the session.
            data: Raw chunk bytes.
            token: Access token.
            cancel: Optional cancellation token.

        Returns:
            Decoded response body.
        """
        logger.debug(f"Uploading chunk {chunk_index + 1}/{total_chunks} ({len(data)} bytes)")
        response = self._request(
            "POST",
            url,
            token,
            cancel,
            headers={
                SESSION_HEADER: session_id,
                CHUNK_INDEX_HEADER: str(chunk_index),
                TOTAL_CHUNKS_HEADER: str(total_chunks),
            },
            data={
                "sessionId": session_id,
                "chunkIndex": str(chunk_index),
                "totalChunks": str(total_chunks),
            },
            files={"chunk": (f"{session_id}.part{chunk_index}", data, "application/octet-stream")},
        )
        return self._json_body(response)

    def finalize_chunks(
        self,
        url: str,
        session_id: str,
        token: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> dict[str, Any]:
        """Close a chunked upload session (no body).

        Args:
            url: Finalize URL.
            session_id: Upload session id.
            token: Access token.
            cancel: Optional cancellation token.

        Returns:
            Decoded response body.
        """
        response = self._request(
            "POST", url, token, cancel, headers={SESSION_HEADER: session_id}
        )
        return self._json_body(response)

    # === Connectivity ===

    def test_connectivity(self, url: str, token: str | None = None) -> bool:
        """Check that the service answers a no-op request.

        Args:
            url: Test endpoint URL.
            token: Optional token to test along with connectivity.

        Returns:
            True on any 2xx response.
        """
        try:
            self._request("GET", url, token, None)
            return True
        except APIError as e:
            logger.info(f"Connectivity test failed: {e}")
            return False
