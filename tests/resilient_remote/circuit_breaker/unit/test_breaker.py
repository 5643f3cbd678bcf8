import threading

import pytest

import resilient_remote.circuit_breaker.breaker as breaker_mod
from resilient_remote.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
)
from resilient_remote.errors import ErrorKind, RemoteError
from tests.resilient_remote.support.fakes import FakeClock, FakeLogger


def _breaker(
    clock: FakeClock,
    *,
    threshold: int = 3,
    timeout: float = 60.0,
    logger: FakeLogger | None = None,
) -> CircuitBreaker:
    return CircuitBreaker(
        "svc",
        config=CircuitBreakerConfig(
            failure_threshold=threshold,
            recovery_timeout=timeout,
        ),
        now_fn=clock.now,
        logger=FakeLogger() if logger is None else logger,
    )


@pytest.mark.parametrize(
    ("threshold", "timeout", "message"),
    [
        (0, 1.0, "failure_threshold must be >= 1"),
        (1, -1.0, "recovery_timeout must be >= 0"),
    ],
)
def test_config_validation(threshold: int, timeout: float, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        CircuitBreakerConfig(failure_threshold=threshold, recovery_timeout=timeout)


def test_defaults_match_backend_policy() -> None:
    config = CircuitBreakerConfig()

    assert config.failure_threshold == 5
    assert config.recovery_timeout == 60.0


def test_new_breaker_is_closed_and_allows(fake_clock: FakeClock) -> None:
    breaker = _breaker(fake_clock)

    assert breaker.allow() is True
    snapshot = breaker.snapshot()
    assert snapshot.state == CircuitState.CLOSED
    assert snapshot.failure_count == 0
    assert snapshot.is_open is False
    assert breaker.retry_after() == 0.0


def test_threshold_failures_open_and_reject_until_cooldown(
    fake_clock: FakeClock,
) -> None:
    breaker = _breaker(fake_clock, threshold=3, timeout=60.0)

    breaker.record_failure()
    breaker.record_failure()
    assert breaker.allow() is True

    breaker.record_failure()
    snapshot = breaker.snapshot()
    assert snapshot.state == CircuitState.OPEN
    assert snapshot.is_open is True
    assert snapshot.failure_count == 3
    assert snapshot.last_failure_at == fake_clock.now()
    assert snapshot.next_attempt_at is not None
    assert (snapshot.next_attempt_at - fake_clock.now()).total_seconds() == 60.0

    assert breaker.allow() is False
    fake_clock.advance(59.9)
    assert breaker.allow() is False
    assert breaker.retry_after() == pytest.approx(0.1)


def test_after_cooldown_allows_exactly_one_probe(fake_clock: FakeClock) -> None:
    breaker = _breaker(fake_clock, threshold=1, timeout=10.0)
    breaker.record_failure()

    fake_clock.advance(10.0)

    assert breaker.acquire() == CircuitState.HALF_OPEN
    assert breaker.allow() is False
    assert breaker.allow() is False
    assert breaker.snapshot().state == CircuitState.HALF_OPEN


def test_open_becomes_half_open_lazily_on_evaluation(fake_clock: FakeClock) -> None:
    breaker = _breaker(fake_clock, threshold=1, timeout=5.0)
    breaker.record_failure()
    fake_clock.advance(5.0)

    assert breaker.state == CircuitState.HALF_OPEN
    assert breaker.snapshot().is_open is False
    assert breaker.allow() is True


def test_probe_success_closes_and_clears(fake_clock: FakeClock) -> None:
    breaker = _breaker(fake_clock, threshold=2, timeout=5.0)
    breaker.record_failure()
    breaker.record_failure()
    fake_clock.advance(5.0)
    assert breaker.allow() is True

    breaker.record_success()

    snapshot = breaker.snapshot()
    assert snapshot.state == CircuitState.CLOSED
    assert snapshot.failure_count == 0
    assert snapshot.last_failure_at is None
    assert snapshot.next_attempt_at is None
    assert breaker.allow() is True


def test_probe_failure_reopens_with_fresh_window(fake_clock: FakeClock) -> None:
    breaker = _breaker(fake_clock, threshold=2, timeout=5.0)
    breaker.record_failure()
    breaker.record_failure()
    fake_clock.advance(5.0)
    assert breaker.allow() is True

    breaker.record_failure()

    snapshot = breaker.snapshot()
    assert snapshot.state == CircuitState.OPEN
    assert snapshot.failure_count == 3
    assert snapshot.next_attempt_at is not None
    assert (snapshot.next_attempt_at - fake_clock.now()).total_seconds() == 5.0
    assert breaker.allow() is False


def test_probe_failure_below_threshold_returns_to_closed(
    fake_clock: FakeClock,
) -> None:
    breaker = _breaker(fake_clock, threshold=1, timeout=5.0)
    breaker.record_failure()
    fake_clock.advance(5.0)
    assert breaker.allow() is True
    # Raising the threshold mid-flight leaves the probe failure short of it.
    breaker.config.failure_threshold = 10

    breaker.record_failure()

    snapshot = breaker.snapshot()
    assert snapshot.state == CircuitState.CLOSED
    assert snapshot.failure_count == 2
    assert breaker.allow() is True


def test_single_success_resets_failure_count(fake_clock: FakeClock) -> None:
    breaker = _breaker(fake_clock, threshold=5)
    for _ in range(4):
        breaker.record_failure()

    breaker.record_success()

    assert breaker.snapshot().failure_count == 0
    for _ in range(4):
        breaker.record_failure()
    assert breaker.allow() is True


def test_success_while_open_closes(fake_clock: FakeClock) -> None:
    breaker = _breaker(fake_clock, threshold=1)
    breaker.record_failure()
    assert breaker.allow() is False

    breaker.record_success()

    assert breaker.allow() is True


def test_released_probe_can_be_taken_again(fake_clock: FakeClock) -> None:
    breaker = _breaker(fake_clock, threshold=1, timeout=1.0)
    breaker.record_failure()
    fake_clock.advance(1.0)
    assert breaker.acquire() == CircuitState.HALF_OPEN

    breaker.release_probe()

    assert breaker.acquire() == CircuitState.HALF_OPEN
    assert breaker.acquire() is None


def test_retry_after_while_probe_in_flight_is_recovery_timeout(
    fake_clock: FakeClock,
) -> None:
    breaker = _breaker(fake_clock, threshold=1, timeout=8.0)
    breaker.record_failure()
    fake_clock.advance(8.0)
    assert breaker.retry_after() == 0.0

    assert breaker.acquire() == CircuitState.HALF_OPEN

    assert breaker.acquire() is None
    assert breaker.retry_after() == 8.0
    breaker.release_probe()
    assert breaker.retry_after() == 0.0


def test_release_probe_is_noop_when_closed(fake_clock: FakeClock) -> None:
    breaker = _breaker(fake_clock)

    breaker.release_probe()

    assert breaker.acquire() == CircuitState.CLOSED


def test_transitions_are_logged(fake_clock: FakeClock, fake_logger: FakeLogger) -> None:
    breaker = _breaker(fake_clock, threshold=1, timeout=1.0, logger=fake_logger)

    breaker.record_failure()
    fake_clock.advance(1.0)
    breaker.allow()
    breaker.record_success()

    assert fake_logger.events == [
        "circuit_breaker_opened",
        "circuit_breaker_half_open",
        "circuit_breaker_closed",
    ]
    opened = fake_logger.fields_for("circuit_breaker_opened")[0]
    assert opened["breaker"] == "svc"
    assert opened["failure_count"] == 1


def test_default_clock_uses_module_utcnow(monkeypatch: pytest.MonkeyPatch) -> None:
    clock = FakeClock()
    monkeypatch.setattr(breaker_mod, "_utcnow", clock.now)
    breaker = CircuitBreaker(
        "svc",
        config=CircuitBreakerConfig(failure_threshold=1, recovery_timeout=3.0),
        logger=FakeLogger(),
    )

    breaker.record_failure()

    assert breaker.snapshot().last_failure_at == clock.now()
    clock.advance(3.0)
    assert breaker.allow() is True


def test_concurrent_failures_are_not_lost(fake_clock: FakeClock) -> None:
    breaker = _breaker(fake_clock, threshold=10_000)
    barrier = threading.Barrier(8)

    def _worker() -> None:
        barrier.wait()
        for _ in range(500):
            breaker.record_failure()

    threads = [threading.Thread(target=_worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert breaker.snapshot().failure_count == 4_000


def test_circuit_open_error_is_labelled_rejection() -> None:
    error = CircuitOpenError("svc", retry_after=12.5)

    assert isinstance(error, RemoteError)
    assert error.code == ErrorKind.UNKNOWN
    assert error.retryable is False
    assert error.message == "circuit breaker open"
    assert error.breaker_name == "svc"
    assert error.retry_after == 12.5
    assert str(error) == "circuit breaker open: svc retry_after=12.5s"
