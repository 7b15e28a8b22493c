"""
Fallback strategy management and degraded mode handling.
Runs the primary operation and escalates failures to registered strategies in priority order.
"""

import asyncio
import copy
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, TypeVar
import structlog

from coverdeploy.config import settings
from coverdeploy.resilience.classifiers import is_retryable_error
from coverdeploy.resilience.operations import Operation
from coverdeploy.resilience.retry_policy import RetryCancelledError
from coverdeploy.resilience.strategies import (
    DeploymentFallbackStrategy,
    FallbackError,
    FallbackStrategy,
    GitHubAPIFallbackStrategy,
)

logger = structlog.get_logger()

T = TypeVar("T")

# Exception types treated as programming faults rather than operational failures
FAULT_TYPES = (
    AssertionError,
    AttributeError,
    IndexError,
    KeyError,
    NameError,
    RecursionError,
    TypeError,
    ZeroDivisionError,
)


class NoFallbackAvailableError(FallbackError):
    """No enabled strategy claims the failure."""

    def __init__(self, operation_type: str, original_error: BaseException):
        self.operation_type = operation_type
        self.original_error = original_error
        super().__init__(f"no fallback available for operation {operation_type}: {original_error}")


class AllFallbacksFailedError(FallbackError):
    """Every applicable strategy was tried and failed."""

    def __init__(self, operation_type: str, last_error: BaseException):
        self.operation_type = operation_type
        self.last_error = last_error
        super().__init__(
            f"all fallback strategies failed for operation {operation_type}: last error: {last_error}"
        )


class PanicRecoveredError(FallbackError):
    """An unexpected fault was caught and converted into an error."""

    def __init__(self, value: BaseException):
        self.value = value
        super().__init__(f"recovered from panic: {type(value).__name__}: {value}")


async def execute_with_recovery(func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
    """Await func, converting programming faults into PanicRecoveredError."""
    try:
        return await func(*args, **kwargs)
    except FAULT_TYPES as e:
        logger.error("panic_recovered", error=str(e), error_type=type(e).__name__)
        raise PanicRecoveredError(e) from e


@dataclass
class FallbackMetrics:
    """Fallback usage and success rates."""
    total_fallbacks: int = 0
    successful_fallbacks: int = 0
    failed_fallbacks: int = 0
    strategy_usage: Dict[str, int] = field(default_factory=dict)
    strategy_success_rate: Dict[str, float] = field(default_factory=dict)
    last_fallback_time: Optional[datetime] = None
    average_recovery_time: float = 0.0
    recovery_times: Deque[float] = field(default_factory=lambda: deque(maxlen=100))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_fallbacks": self.total_fallbacks,
            "successful_fallbacks": self.successful_fallbacks,
            "failed_fallbacks": self.failed_fallbacks,
            "strategy_usage": dict(self.strategy_usage),
            "strategy_success_rate": dict(self.strategy_success_rate),
            "last_fallback_time": self.last_fallback_time.isoformat()
            if self.last_fallback_time else None,
            "average_recovery_time": self.average_recovery_time,
        }


class FallbackManager:
    """
    Manages fallback strategies and degraded mode operations.

    Responsibilities:
    1. Keep strategies ordered by priority
    2. Run the primary operation, escalating failures to applicable strategies
    3. Retry each strategy with linear backoff
    4. Track fallback metrics
    """

    def __init__(
        self,
        enabled: Optional[bool] = None,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None,
        recovery_samples: Optional[int] = None,
    ):
        """
        Initialize fallback manager.

        Args:
            enabled: Disabled managers run operations without any fallback handling
            max_attempts: Attempts per strategy
            backoff_base: Linear backoff step between attempts, in seconds
            backoff_max: Cap on the backoff between attempts
            recovery_samples: Number of recovery times kept for the average
        """
        self._enabled = settings.fallback_enabled if enabled is None else enabled
        self.max_attempts = max_attempts or settings.fallback_max_attempts
        self.backoff_base = settings.fallback_backoff_base if backoff_base is None else backoff_base
        self.backoff_max = settings.fallback_backoff_max if backoff_max is None else backoff_max

        self._strategies: List[FallbackStrategy] = []
        self._lock = threading.Lock()

        samples = recovery_samples or settings.fallback_recovery_samples
        self._metrics = FallbackMetrics(recovery_times=deque(maxlen=samples))
        self._metrics_lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        with self._lock:
            return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        """Enable or disable fallback handling."""
        with self._lock:
            self._enabled = enabled

    @property
    def strategies(self) -> List[FallbackStrategy]:
        """Registered strategies in the order they would be tried."""
        with self._lock:
            return list(self._strategies)

    def register_strategy(self, strategy: FallbackStrategy) -> None:
        """
        Register a fallback strategy.

        Strategies are kept sorted by ascending priority; equal priorities keep
        registration order.

        Raises:
            ValueError: a strategy with the same name is already registered
        """
        with self._lock:
            if any(s.name == strategy.name for s in self._strategies):
                raise ValueError(f"fallback strategy already registered: {strategy.name}")
            self._strategies.append(strategy)
            self._strategies.sort(key=lambda s: s.priority)

        logger.debug("fallback_strategy_registered", strategy=strategy.name, priority=strategy.priority)

    async def execute_with_fallback(
        self,
        operation: Operation,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Execute an operation, falling back to registered strategies on failure.

        Args:
            operation: Operation to execute
            cancel_event: Setting this event aborts pending strategy backoff waits

        Raises:
            NoFallbackAvailableError: no enabled strategy can handle the failure
            AllFallbacksFailedError: every applicable strategy failed
        """
        if not self.enabled:
            await operation.execute()
            return

        start_time = time.monotonic()
        try:
            await execute_with_recovery(operation.execute)
            return
        except Exception as e:
            error = e

        op_type = operation.operation_type
        logger.warning(
            "fallback_primary_failed",
            operation=op_type,
            error=str(error),
            error_type=type(error).__name__,
        )

        with self._metrics_lock:
            self._metrics.total_fallbacks += 1
            self._metrics.last_fallback_time = datetime.now(timezone.utc)

        applicable = self._find_applicable_strategies(error)
        if not applicable:
            with self._metrics_lock:
                self._metrics.failed_fallbacks += 1
            raise NoFallbackAvailableError(op_type, error) from error

        last_error: BaseException = error
        for strategy in applicable:
            logger.info("fallback_strategy_attempt", operation=op_type, strategy=strategy.name)

            with self._metrics_lock:
                usage = self._metrics.strategy_usage
                usage[strategy.name] = usage.get(strategy.name, 0) + 1

            try:
                await self._execute_with_backoff(strategy, operation, error, cancel_event)
            except RetryCancelledError as e:
                last_error = e
                with self._metrics_lock:
                    self._update_strategy_success_rate(strategy.name, False)
                logger.warning("fallback_cancelled", operation=op_type, strategy=strategy.name)
                break
            except Exception as e:
                last_error = e
                logger.warning(
                    "fallback_strategy_failed",
                    operation=op_type,
                    strategy=strategy.name,
                    error=str(e),
                )
                with self._metrics_lock:
                    self._update_strategy_success_rate(strategy.name, False)
                continue

            recovery_time = time.monotonic() - start_time
            with self._metrics_lock:
                self._metrics.successful_fallbacks += 1
                self._metrics.recovery_times.append(recovery_time)
                self._update_strategy_success_rate(strategy.name, True)

            logger.info(
                "fallback_strategy_succeeded",
                operation=op_type,
                strategy=strategy.name,
                recovery_time=round(recovery_time, 3),
            )
            return

        with self._metrics_lock:
            self._metrics.failed_fallbacks += 1
        raise AllFallbacksFailedError(op_type, last_error) from last_error

    async def _execute_with_backoff(
        self,
        strategy: FallbackStrategy,
        operation: Operation,
        original_error: BaseException,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        """
        Execute a strategy with linear backoff between attempts.

        Failures the classifiers consider transient are retried up to
        max_attempts. FallbackError raised by the strategy and any other
        failure propagate after the first attempt.
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                delay = min((attempt - 1) * self.backoff_base, self.backoff_max)
                if cancel_event is not None:
                    if cancel_event.is_set():
                        raise RetryCancelledError(attempt - 1, last_error, during_delay=False)
                    try:
                        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
                    except asyncio.TimeoutError:
                        pass
                    else:
                        raise RetryCancelledError(attempt - 1, last_error, during_delay=True)
                else:
                    await asyncio.sleep(delay)

            try:
                await execute_with_recovery(strategy.execute, operation, original_error)
                return
            except FallbackError:
                # Failures reported by the strategy itself are final
                raise
            except Exception as e:
                last_error = e
                logger.debug(
                    "fallback_strategy_attempt_failed",
                    strategy=strategy.name,
                    attempt=attempt,
                    error=str(e),
                )
                # Only transient failures are worth another attempt
                if not is_retryable_error(e):
                    raise

        raise FallbackError(
            f"strategy {strategy.name} failed after {self.max_attempts} attempts: {last_error}"
        ) from last_error

    def _find_applicable_strategies(self, error: BaseException) -> List[FallbackStrategy]:
        """Find enabled strategies that can handle the given error, in priority order."""
        applicable = []
        for strategy in self.strategies:
            if not strategy.enabled:
                continue
            try:
                handles = strategy.can_handle(error)
            except Exception as e:
                logger.error(
                    "fallback_can_handle_error",
                    strategy=strategy.name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            if handles:
                applicable.append(strategy)
        return applicable

    def _update_strategy_success_rate(self, strategy_name: str, success: bool) -> None:
        """Recompute a strategy's running success rate. Caller holds the metrics lock."""
        usage = self._metrics.strategy_usage.get(strategy_name, 0)
        if usage == 0:
            return
        current_rate = self._metrics.strategy_success_rate.get(strategy_name, 0.0)
        successes = round(current_rate * (usage - 1))
        if success:
            successes += 1
        self._metrics.strategy_success_rate[strategy_name] = successes / usage

    def get_metrics(self) -> FallbackMetrics:
        """Get a snapshot of the current fallback metrics."""
        with self._metrics_lock:
            snapshot = copy.deepcopy(self._metrics)

        if snapshot.recovery_times:
            snapshot.average_recovery_time = sum(snapshot.recovery_times) / len(snapshot.recovery_times)
        return snapshot

    def reset_metrics(self) -> None:
        """Reset fallback metrics."""
        with self._metrics_lock:
            self._metrics = FallbackMetrics(
                recovery_times=deque(maxlen=self._metrics.recovery_times.maxlen)
            )


def get_default_fallback_manager() -> FallbackManager:
    """Create a fallback manager with the stock GitHub API and deployment strategies."""
    manager = FallbackManager()
    manager.register_strategy(GitHubAPIFallbackStrategy())
    manager.register_strategy(DeploymentFallbackStrategy())
    return manager


# Global fallback manager
_fallback_manager: Optional[FallbackManager] = None


def get_fallback_manager() -> FallbackManager:
    """Get the global fallback manager."""
    global _fallback_manager
    if _fallback_manager is None:
        _fallback_manager = get_default_fallback_manager()
    return _fallback_manager
