"""Core circuit breaker implementation."""

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog

from resilient_remote.circuit_breaker.state import BreakerSnapshot, CircuitState
from resilient_remote.logging import StructuredLogger, log_info, log_warning

_Transition = tuple[CircuitState, CircuitState]


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Consecutive failed calls required before opening.
        recovery_timeout: Seconds to stay ``OPEN`` before admitting a probe.
    """

    failure_threshold: int = 5
    recovery_timeout: float = 60.0

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.recovery_timeout < 0:
            raise ValueError("recovery_timeout must be >= 0")


class CircuitBreaker:
    """Three-state gate consulted once per logical remote call.

    All state lives behind one lock and every method is synchronous and O(1),
    so the breaker is safe to share between asyncio tasks and threads. The
    ``OPEN -> HALF_OPEN`` transition is evaluated lazily whenever the breaker
    is consulted; there is no background timer.
    """

    def __init__(
        self,
        name: str = "backend",
        *,
        config: CircuitBreakerConfig | None = None,
        now_fn: Callable[[], datetime] | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        """Build a circuit breaker.

        Args:
            name: Breaker name used in logs and rejection errors.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            now_fn: Optional UTC clock, mainly for tests.
            logger: Structured logger for state transitions.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._now_fn = now_fn
        self._logger = (
            structlog.stdlib.get_logger(__name__) if logger is None else logger
        )
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_at: datetime | None = None
        self._next_attempt_at: datetime | None = None
        self._probe_in_flight = False

    def _now(self) -> datetime:
        return _utcnow() if self._now_fn is None else self._now_fn()

    def _transition(self, new: CircuitState, now: datetime) -> _Transition | None:
        old = self._state
        self._state = new
        self._probe_in_flight = False
        if new == CircuitState.OPEN:
            self._next_attempt_at = now + timedelta(
                seconds=self.config.recovery_timeout
            )
        elif new == CircuitState.CLOSED:
            self._next_attempt_at = None
        if old == new:
            return None
        return (old, new)

    def _evaluate(self, now: datetime) -> list[_Transition]:
        if (
            self._state == CircuitState.OPEN
            and self._next_attempt_at is not None
            and now >= self._next_attempt_at
        ):
            transition = self._transition(CircuitState.HALF_OPEN, now)
            if transition is not None:
                return [transition]
        return []

    def _snapshot_locked(self) -> BreakerSnapshot:
        return BreakerSnapshot(
            name=self.name,
            state=self._state,
            failure_count=self._failure_count,
            last_failure_at=self._last_failure_at,
            next_attempt_at=self._next_attempt_at,
        )

    def _log_transitions(
        self,
        transitions: list[_Transition],
        snapshot: BreakerSnapshot,
    ) -> None:
        for old, new in transitions:
            if new == CircuitState.OPEN:
                log_warning(
                    self._logger,
                    "circuit_breaker_opened",
                    breaker=self.name,
                    previous_state=str(old),
                    failure_count=snapshot.failure_count,
                    recovery_timeout=self.config.recovery_timeout,
                )
            elif new == CircuitState.HALF_OPEN:
                log_info(
                    self._logger,
                    "circuit_breaker_half_open",
                    breaker=self.name,
                    failure_count=snapshot.failure_count,
                )
            else:
                log_info(
                    self._logger,
                    "circuit_breaker_closed",
                    breaker=self.name,
                    previous_state=str(old),
                )

    def acquire(self) -> CircuitState | None:
        """Gate one logical call.

        Returns:
            ``CLOSED`` for a normal call, ``HALF_OPEN`` when the caller holds
            the single recovery probe, or ``None`` when the call is rejected.
        """
        with self._lock:
            transitions = self._evaluate(self._now())
            admitted: CircuitState | None = None
            if self._state == CircuitState.CLOSED:
                admitted = CircuitState.CLOSED
            elif self._state == CircuitState.HALF_OPEN and not self._probe_in_flight:
                self._probe_in_flight = True
                admitted = CircuitState.HALF_OPEN
            snapshot = self._snapshot_locked()
        self._log_transitions(transitions, snapshot)
        return admitted

    def allow(self) -> bool:
        """Return whether a call may proceed now."""
        return self.acquire() is not None

    def record_success(self) -> None:
        """Close the circuit and clear all failure bookkeeping."""
        with self._lock:
            now = self._now()
            transitions = self._evaluate(now)
            transition = self._transition(CircuitState.CLOSED, now)
            if transition is not None:
                transitions.append(transition)
            self._failure_count = 0
            self._last_failure_at = None
            snapshot = self._snapshot_locked()
        self._log_transitions(transitions, snapshot)

    def record_failure(self) -> None:
        """Count one failed call, opening the circuit at the threshold.

        Reaching the threshold while already open restarts the recovery
        window. A failed probe that stays below the threshold returns the
        breaker to ``CLOSED`` with its elevated count.
        """
        with self._lock:
            now = self._now()
            transitions = self._evaluate(now)
            self._failure_count += 1
            self._last_failure_at = now
            transition: _Transition | None = None
            if self._failure_count >= self.config.failure_threshold:
                transition = self._transition(CircuitState.OPEN, now)
            elif self._state == CircuitState.HALF_OPEN:
                transition = self._transition(CircuitState.CLOSED, now)
            if transition is not None:
                transitions.append(transition)
            snapshot = self._snapshot_locked()
        self._log_transitions(transitions, snapshot)

    def release_probe(self) -> None:
        """Give back a half-open probe slot whose call never reported back."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False

    def retry_after(self) -> float:
        """Return seconds a rejected caller should wait before trying again.

        While open this is the time left in the recovery window. While a
        half-open probe is in flight it is the full recovery timeout, since a
        failed probe reopens the circuit for that long. Otherwise it is 0.
        """
        with self._lock:
            now = self._now()
            if self._state == CircuitState.HALF_OPEN and self._probe_in_flight:
                return self.config.recovery_timeout
            if self._state != CircuitState.OPEN or self._next_attempt_at is None:
                return 0.0
            return max((self._next_attempt_at - now).total_seconds(), 0.0)

    def snapshot(self) -> BreakerSnapshot:
        """Return a consistent point-in-time view of the breaker."""
        with self._lock:
            transitions = self._evaluate(self._now())
            snapshot = self._snapshot_locked()
        self._log_transitions(transitions, snapshot)
        return snapshot

    @property
    def state(self) -> CircuitState:
        return self.snapshot().state
