"""
Resilience Patterns Module.

Circuit breaker guarding calls to the external CRM.
"""

import time
from typing import Callable, Any

from backend.app.core.config import get_settings
from backend.app.core.logging import get_logger

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

    def __init__(self, name: str, failure_threshold: int = 5, recovery_timeout: int = 30):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout

        self.failure_count = 0
        self.last_failure_time = 0.0
        self.state = "CLOSED"  # CLOSED, OPEN, HALF-OPEN

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == "OPEN":
            if time.time() - self.last_failure_time > self.recovery_timeout:
                self.state = "HALF-OPEN"
                logger.info(f"[{self.name}] Circuit State changed to HALF-OPEN. Attempting recovery.")
            else:
                raise CircuitBreakerOpenException(
                    f"[{self.name}] Circuit is OPEN. Failures: {self.failure_count}"
                )

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self.failure_count += 1
            self.last_failure_time = time.time()
            logger.error(f"[{self.name}] Circuit Breaker failure ({self.failure_count}/{self.failure_threshold}): {e}")

            if self.failure_count >= self.failure_threshold:
                self.state = "OPEN"
                logger.warning(f"[{self.name}] Circuit State changed to OPEN. Blocking calls for {self.recovery_timeout}s.")
            raise

        if self.state == "HALF-OPEN":
            logger.info(f"[{self.name}] Circuit State changed to CLOSED. Recovery successful.")
        self.state = "CLOSED"
        self.failure_count = 0
        return result

    def reset(self) -> None:
        self.failure_count = 0
        self.last_failure_time = 0.0
        self.state = "CLOSED"


_settings = get_settings()

# Shared breaker for the CRM customer scan
crm_circuit_breaker = CircuitBreaker(
    "crm",
    failure_threshold=_settings.crm_fetch_failure_threshold,
    recovery_timeout=_settings.crm_fetch_recovery_timeout,
)
