"""
Circuit breaker for outbound backend calls.

Defaults:
- Failure threshold: 50% error rate over 1 minute (after at least 10 calls)
- Open duration: 30 seconds
- Half-open: a single trial call decides between closing and reopening
"""
import time
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple

from dispatcher.core.logging import get_logger
from dispatcher.core.metrics import record_circuit_breaker_state

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


_STATE_GAUGE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class CircuitBreakerOpenError(Exception):
    """Raised when the circuit is open and the call is rejected without running."""
    pass


class CircuitBreaker:
    """
    Circuit breaker guarding one outbound dependency.

    Only exceptions raised by the wrapped coroutine count as failures; HTTP
    status handling stays with the caller.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: float = 0.5,
        time_window_seconds: float = 60,
        open_duration_seconds: float = 30,
        min_requests_for_threshold: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.time_window_seconds = time_window_seconds
        self.open_duration_seconds = open_duration_seconds
        self.min_requests_for_threshold = min_requests_for_threshold
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._history: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        record_circuit_breaker_state(self.name, _STATE_GAUGE_VALUES[self._state])

    @property
    def state(self) -> CircuitState:
        self._update_state()
        return self._state

    def _set_state(self, state: CircuitState) -> None:
        self._state = state
        record_circuit_breaker_state(self.name, _STATE_GAUGE_VALUES[state])

    def _update_state(self) -> None:
        now = self._clock()
        self._prune(now)

        if self._state == CircuitState.OPEN:
            if self._opened_at is not None and now - self._opened_at >= self.open_duration_seconds:
                self._set_state(CircuitState.HALF_OPEN)
                self._trial_in_flight = False
                logger.info("circuit_breaker_half_open", circuit_breaker=self.name)

        elif self._state == CircuitState.CLOSED:
            self._check_threshold(now)

    def _prune(self, now: float) -> None:
        cutoff = now - self.time_window_seconds
        while self._history and self._history[0][0] < cutoff:
            self._history.popleft()

    def _check_threshold(self, now: float) -> None:
        """Open a closed circuit once the windowed error rate reaches the threshold."""
        total = len(self._history)
        if total < self.min_requests_for_threshold:
            return
        failures = sum(1 for _, ok in self._history if not ok)
        error_rate = failures / total
        if error_rate >= self.failure_threshold:
            self._open(now)
            logger.warning(
                "circuit_breaker_opened",
                circuit_breaker=self.name,
                error_rate=error_rate,
                failures=failures,
                total=total,
            )

    def _open(self, now: float) -> None:
        self._set_state(CircuitState.OPEN)
        self._opened_at = now
        self._history.clear()

    def _record_result(self, success: bool, started_in: CircuitState) -> None:
        if self._state != started_in:
            # the circuit moved on while this call was running
            return
        now = self._clock()
        if self._state == CircuitState.HALF_OPEN:
            self._trial_in_flight = False
            if success:
                self._set_state(CircuitState.CLOSED)
                self._opened_at = None
                logger.info("circuit_breaker_closed", circuit_breaker=self.name)
            else:
                self._open(now)
                logger.warning("circuit_breaker_reopened", circuit_breaker=self.name)
            return
        if self._state == CircuitState.CLOSED:
            self._history.append((now, success))
            self._prune(now)
            self._check_threshold(now)

    async def call_async(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Run ``func`` under circuit breaker protection.

        Raises:
            CircuitBreakerOpenError: circuit is open, or a half-open trial is already running
        """
        state = self.state

        if state == CircuitState.OPEN:
            raise CircuitBreakerOpenError(
                f"Circuit breaker {self.name} is OPEN. Service unavailable."
            )

        if state == CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitBreakerOpenError(
                    f"Circuit breaker {self.name} is HALF_OPEN. Trial call already running."
                )
            self._trial_in_flight = True

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record_result(False, state)
            raise
        finally:
            # a cancelled trial must not block the next one
            if state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False
        self._record_result(True, state)
        return result

    def get_metrics(self) -> dict:
        """Circuit breaker snapshot for health reporting."""
        self._update_state()
        failures = sum(1 for _, ok in self._history if not ok)
        total = len(self._history)
        return {
            "name": self.name,
            "state": self._state.value,
            "recent_requests": total,
            "recent_failures": failures,
            "error_rate": failures / total if total else 0.0,
            "opened_at": self._opened_at,
        }
