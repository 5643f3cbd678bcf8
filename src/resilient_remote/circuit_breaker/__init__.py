"""Thread-safe circuit breaker for remote calls.

This package implements the circuit breaker pattern from *Release It!*.

Key behavior notes:
  - State is explicit (``CLOSED``, ``OPEN``, ``HALF_OPEN``). ``OPEN`` becomes
    ``HALF_OPEN`` lazily, on the first evaluation after the recovery window.
  - Half-open probing admits exactly one call. Its success closes the circuit;
    its failure re-opens it with a fresh window once the failure count meets
    the threshold.
  - The breaker never calls the protected operation itself. Callers gate with
    ``acquire()``/``allow()`` and report with ``record_success()`` or
    ``record_failure()``.
"""

from resilient_remote.circuit_breaker.breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
)
from resilient_remote.circuit_breaker.exceptions import (
    CIRCUIT_OPEN_MESSAGE,
    CircuitOpenError,
)
from resilient_remote.circuit_breaker.state import BreakerSnapshot, CircuitState

__all__ = [
    "CIRCUIT_OPEN_MESSAGE",
    "BreakerSnapshot",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitOpenError",
    "CircuitState",
]
