"""Circuit breaker exceptions.

Callers can distinguish between:
  - A call being rejected because the circuit is open (``CircuitOpenError``).
  - A call that was attempted and failed (plain ``RemoteError``).
"""

from resilient_remote.errors import ErrorKind, RemoteError

CIRCUIT_OPEN_MESSAGE = "circuit breaker open"


class CircuitOpenError(RemoteError):
    """Raised when a call is rejected because the circuit is open.

    Attributes:
        breaker_name: Name of the breaker rejecting the call.
        retry_after: Seconds until a half-open probe may be attempted.
    """

    def __init__(self, breaker_name: str, retry_after: float) -> None:
        """Initialize a circuit-open rejection.

        Args:
            breaker_name: Breaker rejecting the call.
            retry_after: Seconds until the next probe window opens.
        """
        super().__init__(
            ErrorKind.UNKNOWN,
            CIRCUIT_OPEN_MESSAGE,
            retryable=False,
            details={"breaker": breaker_name, "retry_after": retry_after},
            hint="Service temporarily unavailable; retry after the cooldown",
        )
        self.breaker_name = breaker_name
        self.retry_after = retry_after

    def __str__(self) -> str:
        return (
            f"{CIRCUIT_OPEN_MESSAGE}: {self.breaker_name} "
            f"retry_after={self.retry_after:g}s"
        )
