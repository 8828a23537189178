# =============================================================================
# APNs Stream Client -- Connect Circuit Breaker
# =============================================================================

from __future__ import annotations

import time

from .constants import (
    CIRCUIT_BREAKER_SUCCESS_THRESHOLD,
    CIRCUIT_BREAKER_THRESHOLD,
    CIRCUIT_BREAKER_TIMEOUT,
)
from .types import CircuitBreakerState


class CircuitBreaker:
    """Stops the supervisor hammering a gateway that keeps refusing it.

    CLOSED -> connects allowed, failures counted. OPEN -> connects held off
    until *reset_timeout* has passed since the last failure. HALF_OPEN ->
    one probe connect allowed.

    Args:
        failure_threshold: Consecutive failed connects before opening (default 5).
        reset_timeout: Seconds to hold off once open (default 60).
        success_threshold: Successful probes needed to close again (default 1).
    """

    def __init__(
        self,
        failure_threshold: int = CIRCUIT_BREAKER_THRESHOLD,
        reset_timeout: float = CIRCUIT_BREAKER_TIMEOUT,
        success_threshold: int = CIRCUIT_BREAKER_SUCCESS_THRESHOLD,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._reset_timeout = reset_timeout
        self._success_threshold = success_threshold

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: float | None = None

    @property
    def state(self) -> CircuitBreakerState:
        self._check_timeout()
        return self._state

    def can_execute(self) -> bool:
        self._check_timeout()
        return self._state != CircuitBreakerState.OPEN

    def retry_after(self) -> float:
        """Seconds until a probe connect is allowed; 0 when not open."""
        self._check_timeout()
        if self._state != CircuitBreakerState.OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self._reset_timeout - (time.monotonic() - self._opened_at))

    def record_success(self) -> None:
        if self._state == CircuitBreakerState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self._success_threshold:
                self.reset()
        else:
            self._failure_count = 0

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._state == CircuitBreakerState.HALF_OPEN or (
            self._failure_count >= self._failure_threshold
        ):
            self._state = CircuitBreakerState.OPEN
            self._opened_at = time.monotonic()
            self._success_count = 0

    def reset(self) -> None:
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at = None

    def _check_timeout(self) -> None:
        if self._state == CircuitBreakerState.OPEN and self._opened_at is not None:
            if time.monotonic() - self._opened_at >= self._reset_timeout:
                self._state = CircuitBreakerState.HALF_OPEN
                self._success_count = 0
