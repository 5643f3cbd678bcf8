"""Retrying decorator for a raw "send HTTP request" coroutine.

The wrapped callable keeps the transport's signature, ``send(url, *,
headers=None, **options)``, so it can replace the transport wherever it is
used. It holds no breaker or metrics state.
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable, Mapping
from typing import Protocol, TypeVar

import structlog
from tenacity import RetryCallState, retry_if_exception_type, retry_if_result

from resilient_remote.backoff import BackoffPolicy, fetch_backoff
from resilient_remote.classifier import TRANSPORT_EXCEPTIONS, should_retry_status
from resilient_remote.headers import merge_request_headers
from resilient_remote.logging import StructuredLogger, log_warning
from resilient_remote.retry import build_backoff_retrying, last_outcome, sleep_seconds

DEFAULT_FETCH_RETRIES = 3


class StatusResponse(Protocol):
    """Minimal response surface inspected by the decorator."""

    @property
    def status_code(self) -> int:
        """Return the HTTP status code."""


R = TypeVar("R", bound=StatusResponse)


def _should_retry_response(response: StatusResponse) -> bool:
    return should_retry_status(response.status_code)


def make_retryable_fetch(
    send: Callable[..., Awaitable[R]],
    *,
    max_retries: int = DEFAULT_FETCH_RETRIES,
    policy: BackoffPolicy | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    logger: StructuredLogger | None = None,
) -> Callable[..., Awaitable[R]]:
    """Wrap ``send`` with content-negotiation headers and bounded retries.

    Args:
        send: Transport coroutine called as ``send(url, headers=..., **options)``.
        max_retries: Extra sends after the first when the status is 406 or
            ``>= 500``, or when a transport exception is raised.
        policy: Backoff between sends. Defaults to the uncapped
            ``fetch_backoff()``.
        sleep: Awaitable sleep used for backoff waits.
        logger: Structured logger for retry events.

    Returns:
        A coroutine function with the same call signature as ``send``. Once
        retries are exhausted it returns the last response or re-raises the
        last transport exception.
    """
    if max_retries < 0:
        raise ValueError("max_retries must be >= 0")
    resolved_policy = fetch_backoff() if policy is None else policy
    resolved_logger = (
        structlog.stdlib.get_logger(__name__) if logger is None else logger
    )
    attempts = max_retries + 1

    @functools.wraps(send)
    async def _fetch(
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        **options: object,
    ) -> R:
        def _log_retry(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            fields: dict[str, object] = {
                "url": str(url),
                "attempt": retry_state.attempt_number,
                "max_attempts": attempts,
                "delay": sleep_seconds(retry_state),
            }
            if outcome is not None and outcome.failed:
                exc = outcome.exception()
                fields["error"] = f"{exc.__class__.__name__}: {exc}"
            elif outcome is not None:
                fields["status"] = outcome.result().status_code
            log_warning(resolved_logger, "remote_fetch_retry", **fields)

        retrying = build_backoff_retrying(
            retry=(
                retry_if_result(_should_retry_response)
                | retry_if_exception_type(TRANSPORT_EXCEPTIONS)
            ),
            policy=resolved_policy,
            attempts=attempts,
            sleep=sleep,
            before_sleep=_log_retry,
            retry_error_callback=last_outcome,
        )
        return await retrying(
            send,
            url,
            headers=merge_request_headers(headers),
            **options,
        )

    return _fetch
