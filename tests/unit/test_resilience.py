"""
Unit tests for the CRM circuit breaker.
"""
import pytest

from backend.app.core.resilience import CircuitBreaker, CircuitBreakerOpenException


async def _fail():
    raise ConnectionError("crm down")


async def _ok():
    return "ok"


async def test_opens_after_threshold():
    breaker = CircuitBreaker("test", failure_threshold=2, recovery_timeout=60)

    for _ in range(2):
        with pytest.raises(ConnectionError):
            await breaker.call(_fail)

    assert breaker.state == "OPEN"
    with pytest.raises(CircuitBreakerOpenException):
        await breaker.call(_ok)


async def test_half_open_recovery():
    breaker = CircuitBreaker("test", failure_threshold=1, recovery_timeout=0)
    with pytest.raises(ConnectionError):
        await breaker.call(_fail)
    assert breaker.state == "OPEN"

    # recovery_timeout=0: the next call is let through as a trial
    breaker.last_failure_time -= 1
    assert await breaker.call(_ok) == "ok"
    assert breaker.state == "CLOSED"
    assert breaker.failure_count == 0


async def test_reset():
    breaker = CircuitBreaker("test", failure_threshold=1, recovery_timeout=60)
    with pytest.raises(ConnectionError):
        await breaker.call(_fail)

    breaker.reset()

    assert breaker.state == "CLOSED"
    assert await breaker.call(_ok) == "ok"
