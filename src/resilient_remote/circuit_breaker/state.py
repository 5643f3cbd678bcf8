"""Circuit breaker state primitives."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals useful for metrics/logging.

    Attributes:
        name: Breaker name.
        state: Breaker state as of the snapshot.
        failure_count: Failed logical calls since the last success.
        last_failure_at: Timestamp of the last counted failure, if any.
        next_attempt_at: Earliest time a half-open probe is admitted, while
            the breaker is open.
    """

    name: str
    state: CircuitState
    failure_count: int
    last_failure_at: datetime | None
    next_attempt_at: datetime | None

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN
