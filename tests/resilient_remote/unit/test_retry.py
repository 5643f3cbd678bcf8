from __future__ import annotations

import pytest
from tenacity import AsyncRetrying, RetryCallState, RetryError
from tenacity.retry import retry_if_exception_type, retry_if_result

from resilient_remote.backoff import BackoffPolicy
from resilient_remote.retry import build_backoff_retrying, last_outcome, sleep_seconds
from tests.resilient_remote.support.fakes import RecordingSleep

pytestmark = pytest.mark.asyncio

_POLICY = BackoffPolicy(base_seconds=1.0)


async def test_build_retrying_rejects_non_positive_attempts() -> None:
    with pytest.raises(ValueError, match="attempts must be >= 1"):
        build_backoff_retrying(
            retry=retry_if_exception_type(ValueError),
            policy=_POLICY,
            attempts=0,
        )


async def test_build_retrying_without_optional_hooks() -> None:
    retrying = build_backoff_retrying(
        retry=retry_if_exception_type(ValueError),
        policy=_POLICY,
        attempts=2,
    )

    assert isinstance(retrying, AsyncRetrying)


async def test_build_retrying_waits_according_to_policy(
    recording_sleep: RecordingSleep,
) -> None:
    upcoming: list[float | None] = []

    def _before_sleep(state: RetryCallState) -> None:
        upcoming.append(sleep_seconds(state))

    retrying = build_backoff_retrying(
        retry=retry_if_exception_type(ValueError),
        policy=_POLICY,
        attempts=4,
        sleep=recording_sleep,
        before_sleep=_before_sleep,
    )

    attempts = 0
    with pytest.raises(ValueError):
        async for attempt in retrying:
            with attempt:
                attempts += 1
                raise ValueError("boom")

    assert attempts == 4
    assert recording_sleep.delays == [1.0, 2.0, 4.0]
    assert upcoming == [1.0, 2.0, 4.0]


async def test_last_outcome_returns_final_result_when_exhausted(
    recording_sleep: RecordingSleep,
) -> None:
    calls: list[int] = []

    async def _always_bad() -> int:
        calls.append(1)
        return 503

    retrying = build_backoff_retrying(
        retry=retry_if_result(lambda value: value >= 500),
        policy=_POLICY,
        attempts=3,
        sleep=recording_sleep,
        retry_error_callback=last_outcome,
    )

    assert await retrying(_always_bad) == 503
    assert len(calls) == 3


async def test_reraise_disabled_raises_retry_error(
    recording_sleep: RecordingSleep,
) -> None:
    retrying = build_backoff_retrying(
        retry=retry_if_exception_type(ValueError),
        policy=_POLICY,
        attempts=2,
        sleep=recording_sleep,
        reraise=False,
    )

    with pytest.raises(RetryError):
        async for attempt in retrying:
            with attempt:
                raise ValueError("boom")

    assert len(recording_sleep.delays) == 1
