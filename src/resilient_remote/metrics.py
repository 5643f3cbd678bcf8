"""Running health counters for resilient remote calls."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ConnectionMetrics:
    """Point-in-time copy of connection counters.

    Attributes:
        total_requests: Attempts issued to the backend, retries included.
        successful_requests: Logical calls that succeeded.
        failed_requests: Logical calls that failed after their last attempt.
        rejected_requests: Calls refused by an open circuit breaker. These
            never count toward ``total_requests``.
        average_latency: Mean latency in seconds of successful attempts.
        last_request_time: Start of the most recent attempt, if any.
    """

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    average_latency: float = 0.0
    last_request_time: datetime | None = None

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests


class MetricsRecorder:
    """Thread-safe accumulator behind ``ConnectionMetrics`` snapshots."""

    def __init__(self, *, now_fn: Callable[[], datetime] | None = None) -> None:
        self._now_fn = _utcnow if now_fn is None else now_fn
        self._lock = threading.Lock()
        self._total = 0
        self._successes = 0
        self._failures = 0
        self._rejected = 0
        self._average_latency = 0.0
        self._last_request_time: datetime | None = None

    def record_attempt(self) -> None:
        with self._lock:
            self._total += 1
            self._last_request_time = self._now_fn()

    def record_success(self, latency: float) -> None:
        """Count a success and fold ``latency`` (seconds) into the running mean."""
        with self._lock:
            self._successes += 1
            previous_total = self._average_latency * (self._successes - 1)
            self._average_latency = (previous_total + latency) / self._successes

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1

    def record_rejected(self) -> None:
        with self._lock:
            self._rejected += 1

    def snapshot(self) -> ConnectionMetrics:
        with self._lock:
            return ConnectionMetrics(
                total_requests=self._total,
                successful_requests=self._successes,
                failed_requests=self._failures,
                rejected_requests=self._rejected,
                average_latency=self._average_latency,
                last_request_time=self._last_request_time,
            )
