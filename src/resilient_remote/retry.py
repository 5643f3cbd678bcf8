from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt
from tenacity.retry import retry_base

from resilient_remote.backoff import BackoffPolicy


def build_backoff_retrying(
    *,
    retry: retry_base,
    policy: BackoffPolicy,
    attempts: int,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
    retry_error_callback: Callable[[RetryCallState], Any] | None = None,
    reraise: bool = True,
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` that waits according to ``policy``.

    Args:
        retry: Tenacity predicate deciding whether an outcome is retried.
        policy: Backoff policy used as the wait strategy.
        attempts: Total number of tries, including the first.
        sleep: Optional awaitable sleep; tenacity uses ``asyncio.sleep`` when
            omitted.
        before_sleep: Optional hook fired before each backoff wait.
        retry_error_callback: Optional hook producing the final outcome once
            attempts are exhausted.
        reraise: Re-raise the last exception instead of ``RetryError``.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    options: dict[str, Any] = {}
    if sleep is not None:
        options["sleep"] = sleep
    if before_sleep is not None:
        options["before_sleep"] = before_sleep
    if retry_error_callback is not None:
        options["retry_error_callback"] = retry_error_callback
    return AsyncRetrying(
        retry=retry,
        wait=policy,
        stop=stop_after_attempt(attempts),
        reraise=reraise,
        **options,
    )


def last_outcome(retry_state: RetryCallState) -> Any:
    """Return the final attempt's result, or re-raise its exception."""
    outcome = retry_state.outcome
    if outcome is None:
        raise RuntimeError("retry state has no outcome")
    return outcome.result()


def sleep_seconds(retry_state: RetryCallState) -> float | None:
    """Return the upcoming backoff wait for ``before_sleep`` hooks."""
    next_action = retry_state.next_action
    return None if next_action is None else next_action.sleep
