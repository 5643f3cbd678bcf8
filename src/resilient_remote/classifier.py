"""Map HTTP responses and transport exceptions onto ``RemoteError``."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

import httpx

from resilient_remote.errors import ErrorKind, RemoteError

RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.CONTENT_NOT_ACCEPTABLE,
        ErrorKind.RATE_LIMITED,
        ErrorKind.SERVER_ERROR,
        ErrorKind.NETWORK_ERROR,
    }
)
TRANSPORT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    httpx.RequestError,
    TimeoutError,
    OSError,
)

_STATUS_KINDS: dict[int, ErrorKind] = {
    400: ErrorKind.BAD_REQUEST,
    401: ErrorKind.UNAUTHORIZED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    406: ErrorKind.CONTENT_NOT_ACCEPTABLE,
    409: ErrorKind.CONFLICT,
    422: ErrorKind.UNPROCESSABLE_ENTITY,
    429: ErrorKind.RATE_LIMITED,
}
_KIND_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.BAD_REQUEST: "Invalid request parameters",
    ErrorKind.UNAUTHORIZED: "Authentication required or invalid",
    ErrorKind.FORBIDDEN: "Access denied - insufficient permissions",
    ErrorKind.NOT_FOUND: "Resource not found",
    ErrorKind.CONTENT_NOT_ACCEPTABLE: (
        "Server cannot produce content matching the Accept header"
    ),
    ErrorKind.CONFLICT: "Resource conflict",
    ErrorKind.UNPROCESSABLE_ENTITY: "Invalid data format or validation failed",
    ErrorKind.RATE_LIMITED: "Too many requests - rate limit exceeded",
    ErrorKind.SERVER_ERROR: "Internal server error",
}


class ResponseLike(Protocol):
    """Response surface required for classification."""

    @property
    def status_code(self) -> int:
        """Return the HTTP status code."""

    @property
    def headers(self) -> Mapping[str, str]:
        """Return response headers."""


def status_to_kind(status: int) -> ErrorKind:
    """Return the error kind for an HTTP status code."""
    kind = _STATUS_KINDS.get(status)
    if kind is not None:
        return kind
    if 500 <= status <= 599:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.UNKNOWN


def is_retryable(kind: ErrorKind, status: int | None = None) -> bool:
    """Return whether a failure of ``kind`` may succeed if repeated."""
    if kind in RETRYABLE_KINDS:
        return True
    return kind == ErrorKind.UNKNOWN and status is not None and status >= 500


def should_retry_status(status: int) -> bool:
    """Return true for statuses the transport edge retries (406 and 5xx+)."""
    return status == 406 or status >= 500


def classify_status(
    status: int,
    *,
    headers: Mapping[str, str] | None = None,
    url: str | None = None,
    reason: str | None = None,
) -> RemoteError:
    """Classify a received non-success HTTP status."""
    kind = status_to_kind(status)
    retryable = is_retryable(kind, status)

    if kind == ErrorKind.CONTENT_NOT_ACCEPTABLE:
        response_headers = headers or {}
        return RemoteError(
            kind,
            _KIND_MESSAGES[kind],
            retryable=retryable,
            status=status,
            details={
                "content_type": response_headers.get("content-type"),
                "accept": response_headers.get("accept"),
                "url": url,
            },
            hint="Check Accept headers and content negotiation",
        )

    message = _KIND_MESSAGES.get(kind)
    if message is None:
        message = f"HTTP {status}: {reason}" if reason else f"HTTP {status}"
    return RemoteError(
        kind,
        message,
        retryable=retryable,
        status=status,
        details={"status": status, "url": url},
    )


def _response_url(response: object) -> str | None:
    # httpx raises RuntimeError for responses built without a request.
    try:
        url = getattr(response, "url", None)
    except RuntimeError:
        return None
    return None if url is None else str(url)


def classify_response(response: ResponseLike) -> RemoteError:
    """Classify a received HTTP response."""
    reason = getattr(response, "reason_phrase", None)
    return classify_status(
        response.status_code,
        headers=response.headers,
        url=_response_url(response),
        reason=reason if isinstance(reason, str) else None,
    )


def classify_exception(exc: BaseException) -> RemoteError:
    """Classify an exception raised by a remote operation."""
    if isinstance(exc, RemoteError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_response(exc.response)
    if isinstance(exc, TRANSPORT_EXCEPTIONS):
        return RemoteError(
            ErrorKind.NETWORK_ERROR,
            str(exc) or exc.__class__.__name__,
            retryable=True,
            details={"exception": exc.__class__.__name__},
        )
    return RemoteError(
        ErrorKind.UNKNOWN,
        str(exc) or "Unknown error occurred",
        retryable=False,
        details={"exception": exc.__class__.__name__},
    )


def classify(subject: ResponseLike | BaseException) -> RemoteError:
    """Classify either a response or an exception. Never raises."""
    if isinstance(subject, BaseException):
        return classify_exception(subject)
    return classify_response(subject)


def parse_json_response(response: httpx.Response) -> object:
    """Decode a JSON body, raising a classified error on any failure.

    Raises:
        RemoteError: ``PARSE_ERROR`` when a 2xx body is not valid JSON, or the
            classified status for non-2xx responses.
    """
    if not response.is_success:
        raise classify_response(response)
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise RemoteError(
            ErrorKind.PARSE_ERROR,
            "Failed to parse response JSON",
            retryable=False,
            status=response.status_code,
            details={"error": str(exc), "url": _response_url(response)},
        ) from exc
