"""
Ganttium - Circuit Breaker
==========================
Guards outbound calls to third-party providers (ECB rates, Twilio SMS).

After ``failure_threshold`` consecutive provider failures the breaker opens
and calls fail fast with ``CircuitBreakerOpenError`` until
``recovery_timeout`` has passed. The next calls are trial calls
(half-open); ``success_threshold`` successes close the breaker again and a
single failure reopens it.

State changes are exported as the ``ganttium_provider_circuit_state`` gauge.
"""

import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type

import metrics as app_metrics
from logging_config import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


# Gauge values, ordered by severity
STATE_LEVELS = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class CircuitBreakerOpenError(Exception):
    """The provider is cut off; ``retry_after`` seconds until the next trial call."""

    def __init__(self, provider: str, retry_after: float):
        self.provider = provider
        self.retry_after = max(retry_after, 0.0)
        super().__init__(
            f"Provider '{provider}' is temporarily unavailable, retry in {self.retry_after:.0f}s"
        )


class CircuitBreaker:
    """
    Per-provider breaker around an async call.

    Example:
        ```python
        breaker = CircuitBreaker("ecb", failure_threshold=3, expected_exception=TransientFetchError)
        xml_text = await breaker.call(fetch_ecb_xml)
        ```

    Only ``expected_exception`` counts as a provider failure; anything else
    (a parse error, a 4xx answer mapped to a domain error) passes through
    without moving the breaker.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        success_threshold: int = 2,
        expected_exception: Type[BaseException] | Tuple[Type[BaseException], ...] = Exception,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self.expected_exception = expected_exception
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: Optional[float] = None
        self._publish()

    @property
    def state(self) -> CircuitState:
        """Current state; an OPEN breaker past its timeout reads as HALF_OPEN."""
        if self._state == CircuitState.OPEN and self.retry_after == 0:
            logger.info("Provider circuit half-open", provider=self.name)
            self._transition(CircuitState.HALF_OPEN)
        return self._state

    @property
    def retry_after(self) -> float:
        """Seconds until an open breaker allows a trial call (0 when not open)."""
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return 0.0
        return max(self.recovery_timeout - (self._clock() - self._opened_at), 0.0)

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Await ``func(*args, **kwargs)`` unless the breaker is open.

        Raises:
            CircuitBreakerOpenError: The provider is cut off
            Whatever ``func`` raises
        """
        if self.state == CircuitState.OPEN:
            raise CircuitBreakerOpenError(self.name, self.retry_after)

        try:
            result = await func(*args, **kwargs)
        except self.expected_exception:
            self._record_failure()
            raise

        self._record_success()
        return result

    def _record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.success_threshold:
                logger.info("Provider circuit closed after recovery", provider=self.name)
                self._transition(CircuitState.CLOSED)
        else:
            self._failure_count = 0

    def _record_failure(self) -> None:
        self._failure_count += 1

        if self._state == CircuitState.HALF_OPEN:
            logger.warning("Provider trial call failed, circuit reopened", provider=self.name)
            self._open()
        elif self._failure_count >= self.failure_threshold:
            logger.error("Provider circuit opened", provider=self.name, failures=self._failure_count)
            self._open()

    def _open(self) -> None:
        self._opened_at = self._clock()
        self._transition(CircuitState.OPEN)

    def _transition(self, state: CircuitState) -> None:
        self._state = state
        self._success_count = 0
        if state == CircuitState.CLOSED:
            self._failure_count = 0
            self._opened_at = None
        self._publish()

    def _publish(self) -> None:
        app_metrics.provider_circuit_state.labels(provider=self.name).set(STATE_LEVELS[self._state])

    def reset(self) -> None:
        """Close the breaker, forgetting past failures."""
        self._transition(CircuitState.CLOSED)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "retry_after": round(self.retry_after, 1),
        }
