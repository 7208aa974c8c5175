"""Circuit breaker for outbound LLM calls.

closed -> open after ``threshold`` consecutive failures. Once ``reset_after``
seconds have passed, the next ``allow()`` moves to half-open and admits a
single probe call; its success closes the circuit, its failure re-opens it.
Callers must treat an open circuit as an immediate failure, not a reason to
wait.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from enum import Enum

from keygraph.core.errors import KeygraphError
from keygraph.core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"

    def __str__(self) -> str:
        return self.value


class CircuitOpenError(KeygraphError):
    """Raised instead of calling the provider while the circuit rejects calls."""

    def __init__(self, state: CircuitState, consecutive_failures: int, retry_in: float = 0.0):
        self.state = state
        self.consecutive_failures = consecutive_failures
        self.retry_in = retry_in
        if state == CircuitState.HALF_OPEN:
            message = "circuit breaker half-open: probe call already in flight"
        else:
            message = (
                f"circuit breaker open after {consecutive_failures} consecutive failures, "
                f"retry in {retry_in:.1f}s"
            )
        super().__init__(message)


class CircuitBreaker:
    """Thread-safe consecutive-failure circuit breaker.

    Shared by every caller of one evaluator instance.
    """

    def __init__(
        self,
        threshold: int = 5,
        reset_after: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if threshold < 1:
            raise ValueError(f"threshold must be at least 1, got {threshold}")
        self.threshold = threshold
        self.reset_after = reset_after
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    def allow(self) -> None:
        """Admit one call or raise.

        Raises:
            CircuitOpenError: If the circuit is open, or half-open with its
                probe call already admitted
        """
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return

            if self._state == CircuitState.OPEN:
                elapsed = self._clock() - self._opened_at
                if elapsed < self.reset_after:
                    raise CircuitOpenError(
                        self._state, self._consecutive_failures, self.reset_after - elapsed
                    )
                self._state = CircuitState.HALF_OPEN
                self._probe_in_flight = True
                logger.info("circuit_breaker_half_open", failures=self._consecutive_failures)
                return

            if self._probe_in_flight:
                raise CircuitOpenError(self._state, self._consecutive_failures)
            self._probe_in_flight = True

    def record_success(self) -> None:
        with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.info("circuit_breaker_closed", previous_state=str(self._state))
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._probe_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._probe_in_flight = False
            if self._state == CircuitState.HALF_OPEN or (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self.threshold
            ):
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()
                logger.warning(
                    "circuit_breaker_opened",
                    failures=self._consecutive_failures,
                    reset_after=self.reset_after,
                )

    def release_probe(self) -> None:
        """Free the half-open probe slot without recording an outcome (e.g. on cancellation)."""
        with self._lock:
            self._probe_in_flight = False

    def reset(self) -> None:
        """Force the circuit closed."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._opened_at = 0.0
            self._probe_in_flight = False
