"""Shared error types for resilient_remote."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from types import MappingProxyType


class ErrorKind(StrEnum):
    """Closed taxonomy of remote-call failures."""

    CONTENT_NOT_ACCEPTABLE = "CONTENT_NOT_ACCEPTABLE"
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    UNPROCESSABLE_ENTITY = "UNPROCESSABLE_ENTITY"
    RATE_LIMITED = "RATE_LIMITED"
    SERVER_ERROR = "SERVER_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN = "UNKNOWN"


class RemoteError(RuntimeError):
    """Classified remote-call failure.

    Attributes are read-only once the error is constructed. ``retryable`` is
    fixed at classification time and never rewritten by the retry layer.
    """

    def __init__(
        self,
        code: ErrorKind,
        message: str,
        *,
        retryable: bool,
        details: Mapping[str, object] | None = None,
        status: int | None = None,
        hint: str | None = None,
    ) -> None:
        """Initialize a classified error.

        Args:
            code: Error kind from the closed taxonomy.
            message: Human-readable error message.
            retryable: Whether repeating the call unchanged may succeed.
            details: Optional opaque context (status, url, headers).
            status: HTTP status observed from the backend, if any.
            hint: Optional remediation hint.
        """
        super().__init__(message)
        self._code = code
        self._message = message
        self._retryable = retryable
        self._details = None if details is None else MappingProxyType(dict(details))
        self._status = status
        self._hint = hint

    @property
    def code(self) -> ErrorKind:
        return self._code

    @property
    def message(self) -> str:
        return self._message

    @property
    def retryable(self) -> bool:
        return self._retryable

    @property
    def details(self) -> Mapping[str, object] | None:
        return self._details

    @property
    def status(self) -> int | None:
        return self._status

    @property
    def hint(self) -> str | None:
        return self._hint

    def __str__(self) -> str:
        return f"{self._code}: {self._message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(code={self._code!s}, "
            f"message={self._message!r}, retryable={self._retryable})"
        )

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-friendly view for logs and API responses."""
        payload: dict[str, object] = {
            "code": str(self._code),
            "message": self._message,
            "retryable": self._retryable,
        }
        if self._status is not None:
            payload["status"] = self._status
        if self._details is not None:
            payload["details"] = dict(self._details)
        if self._hint is not None:
            payload["hint"] = self._hint
        return payload
