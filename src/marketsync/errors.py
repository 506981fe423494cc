"""Error taxonomy shared by the sync core, the backend API and the CLI."""

from __future__ import annotations


class MarketSyncError(Exception):
    """Base class for all marketsync errors."""

    code = "error"


class TransportError(MarketSyncError):
    """Backend or network unreachable."""

    code = "transport_error"


class ValidationError(MarketSyncError):
    """Missing or malformed required parameter (e.g. absent market id)."""

    code = "validation_error"


class HostNotAllowedError(ValidationError):
    """Proxy target host is not in the allow-list."""

    code = "host_not_allowed"


class NotFoundError(MarketSyncError):
    """Queried entity absent from the latest data."""

    code = "not_found"


class UpstreamError(MarketSyncError):
    """External aggregator returned non-2xx or a malformed body."""

    code = "upstream_error"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CoordinatorClosedError(MarketSyncError):
    """Raised to waiters whose fetch was abandoned by coordinator teardown."""

    code = "coordinator_closed"


def error_to_http(exc: MarketSyncError) -> tuple[int, str]:
    """Map a marketsync error to (status_code, detail) for HTTP responses."""
    detail = str(exc) or exc.code
    if isinstance(exc, HostNotAllowedError):
        return (403, detail)
    if isinstance(exc, ValidationError):
        return (400, detail)
    if isinstance(exc, NotFoundError):
        return (404, detail)
    if isinstance(exc, UpstreamError):
        status = exc.status_code
        if status is not None and status >= 400:
            return (status, detail)
        return (502, detail)
    if isinstance(exc, TransportError):
        return (503, detail)
    return (500, "Internal server error")
