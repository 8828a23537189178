"""Tests for the connect circuit breaker."""

import time

from apns_stream.circuit_breaker import CircuitBreaker
from apns_stream.types import CircuitBreakerState


class TestCircuitBreaker:
    def test_starts_closed(self):
        cb = CircuitBreaker()
        assert cb.state == CircuitBreakerState.CLOSED
        assert cb.can_execute() is True
        assert cb.retry_after() == 0.0

    def test_opens_after_threshold(self):
        cb = CircuitBreaker(failure_threshold=3)
        cb.record_failure()
        cb.record_failure()
        assert cb.can_execute() is True
        cb.record_failure()
        assert cb.state == CircuitBreakerState.OPEN
        assert cb.can_execute() is False
        assert 0.0 < cb.retry_after() <= 60.0

    def test_success_resets_failure_count(self):
        cb = CircuitBreaker(failure_threshold=2)
        cb.record_failure()
        cb.record_success()
        cb.record_failure()
        assert cb.state == CircuitBreakerState.CLOSED

    def test_half_open_after_timeout(self):
        cb = CircuitBreaker(failure_threshold=1, reset_timeout=0.05)
        cb.record_failure()
        assert cb.state == CircuitBreakerState.OPEN
        time.sleep(0.08)
        assert cb.state == CircuitBreakerState.HALF_OPEN
        assert cb.can_execute() is True

    def test_probe_success_closes(self):
        cb = CircuitBreaker(failure_threshold=1, reset_timeout=0.05)
        cb.record_failure()
        time.sleep(0.08)
        cb.record_success()
        assert cb.state == CircuitBreakerState.CLOSED

    def test_probe_failure_reopens(self):
        cb = CircuitBreaker(failure_threshold=1, reset_timeout=0.05)
        cb.record_failure()
        time.sleep(0.08)
        assert cb.state == CircuitBreakerState.HALF_OPEN
        cb.record_failure()
        assert cb.state == CircuitBreakerState.OPEN

    def test_reset(self):
        cb = CircuitBreaker(failure_threshold=1)
        cb.record_failure()
        cb.reset()
        assert cb.state == CircuitBreakerState.CLOSED
        assert cb.can_execute() is True
