"""Endpoint resolution for logical service operations.

This module provides:
- Operation: Closed set of operations the client performs
- EndpointResolver: Maps operations to primary and fallback URLs
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Operation(Enum):
    """Logical operations exposed by the sync service."""

    TEST = "test"
    SYNC = "sync"
    STATUS = "status"
    APPLY = "apply"
    LOGIN = "login"
    REFRESH = "refresh"
    VALIDATE = "validate"
    CHUNK_UPLOAD = "chunk_upload"
    CHUNK_FINALIZE = "chunk_finalize"


@dataclass(frozen=True)
class EndpointRoute:
    """Path templates for one operation.

    Attributes:
        path: Unified endpoint path template.
        legacy_path: Legacy endpoint path template, if any.
        fallback_on_not_found: Retry against the other path on 404.
    """

    path: str
    legacy_path: str | None = None
    fallback_on_not_found: bool = False


ROUTES: dict[Operation, EndpointRoute] = {
    Operation.TEST: EndpointRoute("/api/revit/test"),
    Operation.SYNC: EndpointRoute("/api/revit/sync", "/api/revit-sync/upload"),
    Operation.STATUS: EndpointRoute("/api/revit/sync/{sync_id}/status"),
    Operation.APPLY: EndpointRoute(
        "/api/revit/sync/{sync_id}/apply",
        "/api/revit-sync/{sync_id}/apply",
        fallback_on_not_found=True,
    ),
    Operation.LOGIN: EndpointRoute("/api/revit/tokens"),
    Operation.REFRESH: EndpointRoute("/api/revit/tokens/refresh"),
    Operation.VALIDATE: EndpointRoute("/api/tokens/validate"),
    Operation.CHUNK_UPLOAD: EndpointRoute("/api/revit/sync/chunks"),
    Operation.CHUNK_FINALIZE: EndpointRoute("/api/revit/sync/chunks/finalize"),
}


class EndpointResolver:
    """Resolves operations to absolute URLs.

    The endpoint preference is fixed at construction and cannot change
    while requests are in flight.

    Usage:
        resolver = EndpointResolver("https://app.example.com")
        resolver.resolve(Operation.STATUS, sync_id)
        # "https://app.example.com/api/revit/sync/<sync_id>/status"
    """

    def __init__(self, base_url: str, use_new_endpoints: bool = True) -> None:
        """Initialize the resolver.

        Args:
            base_url: Service base URL.
            use_new_endpoints: Prefer unified paths over legacy paths.
        """
        self._base_url = base_url.rstrip("/")
        self._use_new_endpoints = use_new_endpoints

    @property
    def base_url(self) -> str:
        """Get the service base URL."""
        return self._base_url

    @property
    def use_new_endpoints(self) -> bool:
        """Get the endpoint preference."""
        return self._use_new_endpoints

    def _paths(self, operation: Operation) -> tuple[str, str | None]:
        """Return (primary, fallback) path templates."""
        route = ROUTES[operation]
        if route.legacy_path is None:
            return route.path, None
        if self._use_new_endpoints:
            return route.path, route.legacy_path
        return route.legacy_path, route.path

    def _url(self, template: str, args: tuple[str, ...]) -> str:
        if "{sync_id}" in template:
            if not args or not args[0]:
                raise ValueError(f"Endpoint {template} requires a sync id")
            template = template.format(sync_id=args[0])
        return f"{self._base_url}{template}"

    def resolve(self, operation: Operation, *args: str) -> str:
        """Get the primary URL for an operation.

        Args:
            operation: The logical operation.
            *args: Path arguments (the sync id for STATUS and APPLY).

        Returns:
            Absolute primary URL.
        """
        primary, _ = self._paths(operation)
        return self._url(primary, args)

    def fallback(self, operation: Operation, *args: str) -> str | None:
        """Get the fallback URL for an operation, if it has one."""
        _, fallback = self._paths(operation)
        if fallback is None:
            return None
        return self._url(fallback, args)

    def candidates(self, operation: Operation, *args: str) -> list[str]:
        """Get the primary URL followed by the fallback URL (if any)."""
        urls = [self.resolve(operation, *args)]
        fallback = self.fallback(operation, *args)
        if fallback is not None:
            urls.append(fallback)
        return urls

    @staticmethod
    def falls_back_on_not_found(operation: Operation) -> bool:
        """Check whether a 404 on the primary should retry the fallback."""
        return ROUTES[operation].fallback_on_not_found
