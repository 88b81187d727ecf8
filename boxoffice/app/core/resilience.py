"""
Resilience Patterns Module.

Circuit breaker guarding outbound webhook calls so that a dead subscriber
endpoint does not slow down every publishing cycle.
"""

import time
from typing import Callable, Any, Dict

from boxoffice.app.core.logging import get_logger

logger = get_logger(__name__)


class CircuitBreakerOpenException(Exception):
    """Raised when the circuit is open and calls are blocked."""
    pass


class CircuitBreaker:
    """
    Simple Circuit Breaker implementation.

    States:
    - CLOSED: Normal operation, calls function.
    - OPEN: Fails fast, raises CircuitBreakerOpenException.
    - HALF-OPEN: Allows one trial call to check if service recovered.
    """

    def __init__(self, name: str = "default", failure_threshold: int = 5, recovery_timeout: int = 30):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout

        self.failure_count = 0
        self.last_failure_time = 0.0
        self.state = "CLOSED"  # CLOSED, OPEN, HALF-OPEN

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == "OPEN":
            if time.monotonic() - self.last_failure_time > self.recovery_timeout:
                self.state = "HALF-OPEN"
                logger.info(f"Circuit '{self.name}' HALF-OPEN. Attempting recovery.")
            else:
                raise CircuitBreakerOpenException(
                    f"Circuit '{self.name}' is OPEN. Failures: {self.failure_count}"
                )

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self.failure_count += 1
            self.last_failure_time = time.monotonic()
            logger.warning(
                f"Circuit '{self.name}' failure ({self.failure_count}/{self.failure_threshold}): {e}"
            )
            if self.state == "HALF-OPEN" or self.failure_count >= self.failure_threshold:
                self.state = "OPEN"
                logger.warning(f"Circuit '{self.name}' OPEN. Blocking calls for {self.recovery_timeout}s.")
            raise

        if self.state == "HALF-OPEN":
            logger.info(f"Circuit '{self.name}' CLOSED. Recovery successful.")
        self.state = "CLOSED"
        self.failure_count = 0
        return result


class CircuitBreakerRegistry:
    """One breaker per key (e.g. per webhook subscriber)."""

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 30):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, key: str) -> CircuitBreaker:
        breaker = self._breakers.get(key)
        if breaker is None:
            breaker = CircuitBreaker(
                name=key,
                failure_threshold=self.failure_threshold,
                recovery_timeout=self.recovery_timeout,
            )
            self._breakers[key] = breaker
        return breaker
