from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass, field

from tenacity import RetryCallState

EXECUTOR_BASE_SECONDS = 1.0
EXECUTOR_JITTER_SECONDS = 1.0
EXECUTOR_MAX_SECONDS = 30.0
FETCH_BASE_SECONDS = 1.0


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with additive jitter and an optional ceiling.

    ``delay(n)`` is the wait before try ``n + 1``:
    ``min(base * 2 ** (n - 1) + uniform(0, jitter), max)``. A ``None``
    ``max_seconds`` leaves the growth uncapped.

    Instances double as tenacity ``wait`` strategies.
    """

    base_seconds: float
    jitter_seconds: float = 0.0
    max_seconds: float | None = None
    uniform: Callable[[float, float], float] = field(
        default=random.uniform, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if self.base_seconds < 0:
            raise ValueError("base_seconds must be >= 0")
        if self.jitter_seconds < 0:
            raise ValueError("jitter_seconds must be >= 0")
        if self.max_seconds is not None and self.max_seconds < 0:
            raise ValueError("max_seconds must be >= 0")

    def delay(self, attempt: int) -> float:
        """Return the wait in seconds after failed attempt ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError("attempt must be >= 1")
        delay = self.base_seconds * 2 ** (attempt - 1)
        if self.jitter_seconds:
            delay += self.uniform(0.0, self.jitter_seconds)
        if self.max_seconds is not None:
            delay = min(delay, self.max_seconds)
        return delay

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.delay(retry_state.attempt_number)


def executor_backoff(
    *,
    base_seconds: float = EXECUTOR_BASE_SECONDS,
    jitter_seconds: float = EXECUTOR_JITTER_SECONDS,
    max_seconds: float | None = EXECUTOR_MAX_SECONDS,
) -> BackoffPolicy:
    """Build the capped, jittered policy used between ``RetryExecutor`` attempts."""
    return BackoffPolicy(
        base_seconds=base_seconds,
        jitter_seconds=jitter_seconds,
        max_seconds=max_seconds,
    )


def fetch_backoff(*, base_seconds: float = FETCH_BASE_SECONDS) -> BackoffPolicy:
    """Build the uncapped policy used by the retrying fetch decorator."""
    return BackoffPolicy(base_seconds=base_seconds)
