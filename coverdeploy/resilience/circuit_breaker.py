"""
Circuit breaker for calls to GitHub and the Pages remote.
Stops hammering a dependency after repeated consecutive failures and lets a
single probe call through once the recovery timeout has elapsed.
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar
import structlog

from coverdeploy.config import settings

logger = structlog.get_logger()

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass
class CircuitStats:
    """Point-in-time view of a breaker."""
    name: str
    state: CircuitState
    consecutive_failures: int
    total_successes: int
    total_failures: int
    blocked_requests: int
    opened_count: int
    last_failure: Optional[str]
    last_failure_time: Optional[datetime]
    last_state_change: datetime

    @property
    def total_requests(self) -> int:
        return self.total_successes + self.total_failures

    @property
    def failure_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.total_failures / self.total_requests

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "total_requests": self.total_requests,
            "failure_rate": round(self.failure_rate, 4),
            "blocked_requests": self.blocked_requests,
            "opened_count": self.opened_count,
            "last_failure": self.last_failure,
            "last_failure_time": self.last_failure_time.isoformat() if self.last_failure_time else None,
            "last_state_change": self.last_state_change.isoformat(),
        }


class CircuitBreakerError(Exception):
    """Raised instead of calling a dependency whose breaker rejects calls."""

    def __init__(self, name: str, state: CircuitState, retry_after: Optional[float] = None):
        self.name = name
        self.state = state
        self.retry_after = retry_after
        if state == CircuitState.OPEN:
            message = f"circuit breaker '{name}' is open"
            if retry_after is not None:
                message += f", probe allowed in {retry_after:.1f}s"
        else:
            message = f"circuit breaker '{name}' is {state.value}, probe already in flight"
        super().__init__(message)


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    CLOSED passes calls through and counts consecutive failures; reaching
    failure_threshold opens the circuit. OPEN rejects every call with
    CircuitBreakerError until recovery_timeout has elapsed, then the circuit
    is HALF_OPEN and exactly one probe runs. A successful probe closes the
    circuit, a failed probe re-opens it and restarts the timeout.

    Works with RetryPolicy in either order: retrying around the breaker
    surfaces CircuitBreakerError as the last error, and a breaker around the
    retry counts a whole retry sequence as one call.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: Optional[int] = None,
        recovery_timeout: Optional[float] = None,
    ):
        """
        Args:
            name: Dependency name, used in errors and logs
            failure_threshold: Consecutive failures that open the circuit
            recovery_timeout: Seconds spent open before a probe is allowed
        """
        self.name = name
        self.failure_threshold = failure_threshold or settings.circuit_breaker_failure_threshold
        self.recovery_timeout = (
            settings.circuit_breaker_timeout if recovery_timeout is None else recovery_timeout
        )

        self._lock = asyncio.Lock()
        self._clear()

    def _clear(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._probe_in_flight = False
        self._last_state_change = time.monotonic()
        self._state_changed_at = datetime.now(timezone.utc)
        self._total_successes = 0
        self._total_failures = 0
        self._blocked_requests = 0
        self._opened_count = 0
        self._last_failure: Optional[str] = None
        self._last_failure_time: Optional[datetime] = None

    @property
    def state(self) -> CircuitState:
        """Current state; an open circuit past its timeout reports half-open."""
        if self._state == CircuitState.OPEN and self._recovery_elapsed():
            self._set_state(CircuitState.HALF_OPEN)
        return self._state

    @property
    def failure_count(self) -> int:
        """Consecutive failures since the last success."""
        return self._failure_count

    def _recovery_elapsed(self) -> bool:
        return time.monotonic() - self._last_state_change >= self.recovery_timeout

    def _set_state(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._last_state_change = time.monotonic()
        self._state_changed_at = datetime.now(timezone.utc)
        self._probe_in_flight = False

        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
        elif new_state == CircuitState.OPEN:
            self._opened_count += 1

        logger.info(
            "circuit_state_change",
            circuit=self.name,
            from_state=old_state.value,
            to_state=new_state.value,
        )

    def can_execute(self) -> bool:
        """Whether a call would currently be admitted."""
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN:
            return not self._probe_in_flight
        return False

    def record_success(self) -> None:
        self._total_successes += 1
        if self._state == CircuitState.HALF_OPEN:
            self._set_state(CircuitState.CLOSED)
            logger.info("circuit_closed", circuit=self.name)
        else:
            self._failure_count = 0

    def record_failure(self, error: Optional[str] = None) -> None:
        self._total_failures += 1
        self._failure_count += 1
        self._last_failure = error
        self._last_failure_time = datetime.now(timezone.utc)

        if self._state == CircuitState.HALF_OPEN:
            self._set_state(CircuitState.OPEN)
            logger.warning("circuit_probe_failed", circuit=self.name, error=error)
        elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
            self._set_state(CircuitState.OPEN)
            logger.warning(
                "circuit_opened",
                circuit=self.name,
                consecutive_failures=self._failure_count,
                last_error=error,
            )

    def get_time_until_reset(self) -> Optional[float]:
        """Seconds until a probe is allowed, or None unless open."""
        if self._state != CircuitState.OPEN:
            return None
        return max(0.0, self.recovery_timeout - (time.monotonic() - self._last_state_change))

    def get_stats(self) -> CircuitStats:
        return CircuitStats(
            name=self.name,
            state=self.state,
            consecutive_failures=self._failure_count,
            total_successes=self._total_successes,
            total_failures=self._total_failures,
            blocked_requests=self._blocked_requests,
            opened_count=self._opened_count,
            last_failure=self._last_failure,
            last_failure_time=self._last_failure_time,
            last_state_change=self._state_changed_at,
        )

    def reset(self) -> None:
        """Close the circuit and forget all counters."""
        self._clear()
        logger.info("circuit_reset", circuit=self.name)

    async def execute(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """
        Await func(*args, **kwargs) if the circuit admits the call.

        Raises:
            CircuitBreakerError: the circuit is open, or half-open with the probe taken
        """
        async with self._lock:
            if not self.can_execute():
                self._blocked_requests += 1
                raise CircuitBreakerError(self.name, self._state, self.get_time_until_reset())
            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = True

        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            # A cancelled probe says nothing about the dependency
            self._probe_in_flight = False
            raise
        except Exception as e:
            self.record_failure(str(e))
            raise

        self.record_success()
        return result


class CircuitBreakerManager:
    """Registry of breakers keyed by dependency name."""

    def __init__(
        self,
        failure_threshold: Optional[int] = None,
        recovery_timeout: Optional[float] = None,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get_breaker(self, name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name, self.failure_threshold, self.recovery_timeout)
                self._breakers[name] = breaker
            return breaker

    def get_all_stats(self) -> Dict[str, CircuitStats]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.name: b.get_stats() for b in breakers}

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()


_cb_manager: Optional[CircuitBreakerManager] = None


def get_circuit_breaker_manager() -> CircuitBreakerManager:
    """Get the process-wide breaker registry."""
    global _cb_manager
    if _cb_manager is None:
        _cb_manager = CircuitBreakerManager()
    return _cb_manager


def get_circuit_breaker(name: str) -> CircuitBreaker:
    return get_circuit_breaker_manager().get_breaker(name)
