from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TypeVar

import structlog
from tenacity import RetryCallState, retry_if_exception

from resilient_remote.backoff import BackoffPolicy, executor_backoff
from resilient_remote.circuit_breaker import (
    BreakerSnapshot,
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
)
from resilient_remote.classifier import classify_exception
from resilient_remote.errors import RemoteError
from resilient_remote.logging import (
    StructuredLogger,
    log_error,
    log_info,
    log_warning,
)
from resilient_remote.metrics import ConnectionMetrics, MetricsRecorder
from resilient_remote.retry import build_backoff_retrying, sleep_seconds

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3


@dataclass(frozen=True)
class Attempt:
    """One try of a logical call."""

    number: int
    latency: float


@dataclass(frozen=True)
class HealthSnapshot:
    """Combined connection metrics and breaker state."""

    metrics: ConnectionMetrics
    breaker: BreakerSnapshot

    @property
    def success_rate(self) -> float:
        return self.metrics.success_rate

    @property
    def is_open(self) -> bool:
        return self.breaker.is_open

    def to_dict(self) -> dict[str, object]:
        """Return a flat, JSON-friendly view for status endpoints."""

        def _iso(value: datetime | None) -> str | None:
            return None if value is None else value.isoformat()

        return {
            "total_requests": self.metrics.total_requests,
            "successful_requests": self.metrics.successful_requests,
            "failed_requests": self.metrics.failed_requests,
            "rejected_requests": self.metrics.rejected_requests,
            "average_latency": self.metrics.average_latency,
            "last_request_time": _iso(self.metrics.last_request_time),
            "success_rate": self.metrics.success_rate,
            "state": str(self.breaker.state),
            "is_open": self.breaker.is_open,
            "failure_count": self.breaker.failure_count,
            "last_failure_time": _iso(self.breaker.last_failure_at),
            "next_attempt_time": _iso(self.breaker.next_attempt_at),
        }


def _is_retryable_error(exc: BaseException) -> bool:
    return isinstance(exc, RemoteError) and exc.retryable


class RetryExecutor:
    """Run remote operations with retry, backoff, a breaker and metrics.

    One executor is meant to be shared by every call against one backend so
    that the breaker and metrics see the whole traffic. Instances are
    independent; nothing is process-global.
    """

    def __init__(
        self,
        *,
        breaker: CircuitBreaker | None = None,
        metrics: MetricsRecorder | None = None,
        backoff: BackoffPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        logger: StructuredLogger | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        """Create an executor.

        Args:
            breaker: Circuit breaker gating each logical call.
            metrics: Recorder updated on every attempt and outcome.
            backoff: Wait policy between attempts. Defaults to
                ``executor_backoff()``.
            sleep: Awaitable sleep used for backoff waits. Defaults to
                ``asyncio.sleep`` through tenacity.
            logger: Structured logger for retry and outcome events.
            monotonic: Clock used to measure attempt latency.
        """
        self._logger = (
            structlog.stdlib.get_logger(__name__) if logger is None else logger
        )
        self._breaker = (
            CircuitBreaker(logger=self._logger) if breaker is None else breaker
        )
        self._metrics = MetricsRecorder() if metrics is None else metrics
        self._backoff = executor_backoff() if backoff is None else backoff
        self._sleep = sleep
        self._monotonic = monotonic

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def run(
        self,
        operation: Callable[[], Awaitable[T | RemoteError]],
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> T:
        """Run ``operation`` as one logical resilient call.

        ``operation`` may return a value, return a ``RemoteError``, or raise.
        Raised exceptions are classified; a retryable failure is retried
        after a backoff wait until ``max_retries`` tries have been made. A
        non-retryable failure ends the call at once.

        Raises:
            CircuitOpenError: The breaker rejected the call; ``operation`` was
                not invoked.
            RemoteError: The last classified failure.
        """
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")

        admitted = self._breaker.acquire()
        if admitted is None:
            self._metrics.record_rejected()
            retry_after = self._breaker.retry_after()
            log_warning(
                self._logger,
                "remote_call_rejected",
                breaker=self._breaker.name,
                retry_after=retry_after,
            )
            raise CircuitOpenError(self._breaker.name, retry_after=retry_after)

        reported = False
        retrying = build_backoff_retrying(
            retry=retry_if_exception(_is_retryable_error),
            policy=self._backoff,
            attempts=max_retries,
            sleep=self._sleep,
            before_sleep=self._log_retry,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    value, record = await self._attempt_once(
                        operation, attempt.retry_state.attempt_number
                    )
                    self._metrics.record_success(record.latency)
                    self._breaker.record_success()
                    reported = True
                    log_info(
                        self._logger,
                        "remote_call_succeeded",
                        attempts=record.number,
                        latency=record.latency,
                    )
                    return value
        except RemoteError as error:
            self._record_call_failure(error, max_retries=max_retries)
            reported = True
            raise
        finally:
            if not reported and admitted == CircuitState.HALF_OPEN:
                self._breaker.release_probe()

        raise RuntimeError("Remote call retry loop exited unexpectedly.")

    async def _attempt_once(
        self,
        operation: Callable[[], Awaitable[T | RemoteError]],
        number: int,
    ) -> tuple[T, Attempt]:
        start = self._monotonic()
        self._metrics.record_attempt()
        try:
            result = await operation()
        except RemoteError:
            raise
        except Exception as exc:
            raise classify_exception(exc) from exc
        if isinstance(result, RemoteError):
            raise result
        latency = max(self._monotonic() - start, 0.0)
        return result, Attempt(number=number, latency=latency)

    def _record_call_failure(self, error: RemoteError, *, max_retries: int) -> None:
        self._metrics.record_failure()
        self._breaker.record_failure()
        log_failure = log_warning if error.retryable else log_error
        log_failure(
            self._logger,
            "remote_call_failed",
            error=error,
            max_retries=max_retries,
        )

    def _log_retry(self, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = None if outcome is None else outcome.exception()
        log_info(
            self._logger,
            "remote_call_retry",
            attempt=retry_state.attempt_number,
            delay=sleep_seconds(retry_state),
            error=error,
        )

    def get_metrics(self) -> HealthSnapshot:
        """Return a read-only health snapshot; safe to poll at any rate."""
        return HealthSnapshot(
            metrics=self._metrics.snapshot(),
            breaker=self._breaker.snapshot(),
        )

    async def test_connection(
        self,
        probe: Callable[[], Awaitable[object]],
    ) -> bool:
        """Run ``probe`` once through the executor and report success."""
        try:
            await self.run(probe, max_retries=1)
        except RemoteError:
            return False
        return True
