"""
Circuit breaker for calls to external services.
"""

import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict

from shared.logging import get_logger


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenException(Exception):
    """Raised instead of calling through while the breaker is open."""
    pass


class CircuitBreaker:
    """Stops calling a failing dependency until `recovery_timeout` has passed.

    After `failure_threshold` consecutive failures the breaker opens. The
    first call after the timeout is let through (half-open); success closes
    the breaker, failure opens it again.
    """

    def __init__(self,
                 name: str,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 30.0,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self.logger = get_logger(f"menu.circuit_breaker.{name}")

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitBreakerState:
        if (self._state == CircuitBreakerState.OPEN
                and self._clock() - self._opened_at >= self.recovery_timeout):
            self._state = CircuitBreakerState.HALF_OPEN
            self.logger.info("Circuit breaker half-open")
        return self._state

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Execute `func` under breaker protection."""
        if self.state == CircuitBreakerState.OPEN:
            raise CircuitBreakerOpenException(f"Circuit breaker '{self.name}' is open")

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record_failure()
            raise

        if self._state != CircuitBreakerState.CLOSED:
            self.logger.info("Circuit breaker closed after successful call")
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        return result

    def _record_failure(self):
        self._failure_count += 1
        if (self._state == CircuitBreakerState.HALF_OPEN
                or self._failure_count >= self.failure_threshold):
            self._state = CircuitBreakerState.OPEN
            self._opened_at = self._clock()
            self.logger.warning(
                "Circuit breaker opened",
                failure_count=self._failure_count,
                threshold=self.failure_threshold
            )

    def get_state(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout
        }
