"""
Retry logic with exponential backoff and jitter.
Handles transient failures with configurable, per-dependency retry policies.
"""

import asyncio
import functools
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar
import structlog

from coverdeploy.config import settings
from coverdeploy.resilience.classifiers import (
    is_file_error,
    is_github_retryable_error,
    is_network_error,
    is_retryable_error,
)

logger = structlog.get_logger()

T = TypeVar("T")


class RetryError(Exception):
    """Base exception for retry failures."""

    def __init__(self, message: str, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message)


class NonRetryableError(RetryError):
    """The operation failed with an error the policy refuses to retry."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(
            f"non-retryable error on attempt {attempts}: {last_error}",
            attempts,
            last_error,
        )


class RetryExhaustedError(RetryError):
    """Every allowed attempt failed."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(
            f"operation failed after {attempts} attempts: {last_error}",
            attempts,
            last_error,
        )


class RetryCancelledError(RetryError):
    """Cancellation was requested before or during a backoff wait."""

    def __init__(self, attempts: int, last_error: Optional[BaseException], during_delay: bool):
        where = "during retry delay " if during_delay else ""
        super().__init__(
            f"context canceled {where}after {attempts} attempts: {last_error}",
            attempts,
            last_error,
        )


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    initial_delay: float = 0.1
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter_fraction: float = 0.1
    retry_if: Optional[Callable[[BaseException], bool]] = field(default=is_retryable_error, compare=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not 0.0 <= self.jitter_fraction <= 1.0:
            raise ValueError("jitter_fraction must be within [0, 1]")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")

    @classmethod
    def default(cls) -> "RetryConfig":
        """General purpose configuration."""
        return cls(
            max_attempts=settings.retry_max_attempts,
            initial_delay=settings.retry_initial_delay,
            max_delay=settings.retry_max_delay,
            multiplier=2.0,
            jitter_fraction=0.1,
            retry_if=is_retryable_error,
        )

    @classmethod
    def network(cls) -> "RetryConfig":
        """Tuned for raw network calls."""
        return cls(
            max_attempts=5,
            initial_delay=0.2,
            max_delay=10.0,
            multiplier=1.5,
            jitter_fraction=0.2,
            retry_if=is_network_error,
        )

    @classmethod
    def github_api(cls) -> "RetryConfig":
        """Tuned for GitHub REST API calls."""
        return cls(
            max_attempts=4,
            initial_delay=0.5,
            max_delay=15.0,
            multiplier=2.0,
            jitter_fraction=0.15,
            retry_if=is_github_retryable_error,
        )

    @classmethod
    def file_operation(cls) -> "RetryConfig":
        """Tuned for local file operations."""
        return cls(
            max_attempts=3,
            initial_delay=0.05,
            max_delay=2.0,
            multiplier=1.5,
            jitter_fraction=0.05,
            retry_if=is_file_error,
        )


class RetryPolicy:
    """
    Configurable retry policy with exponential backoff.

    Features:
    - Exponential backoff with optional jitter
    - Configurable max attempts
    - Pluggable retryability predicate
    - Backoff waits interruptible through a cancel event
    """

    def __init__(self, config: Optional[RetryConfig] = None):
        """
        Initialize retry policy.

        Args:
            config: Retry configuration (uses defaults if not provided)
        """
        self.config = config or RetryConfig.default()

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay for a given attempt number.

        Args:
            attempt: Attempt number (1-based)

        Returns:
            Delay in seconds
        """
        delay = self.config.initial_delay * (
            self.config.multiplier ** (attempt - 1)
        )

        delay = min(delay, self.config.max_delay)

        if self.config.jitter_fraction > 0:
            delay += delay * self.config.jitter_fraction * random.uniform(-1.0, 1.0)
            if delay < 0:
                delay = self.config.initial_delay

        return delay

    def should_retry(self, exception: BaseException) -> bool:
        """
        Determine if an exception should trigger a retry.

        Args:
            exception: The exception that occurred

        Returns:
            True if should retry
        """
        if self.config.retry_if is None:
            return True
        return self.config.retry_if(exception)

    async def execute(
        self,
        func: Callable[..., Awaitable[T]],
        *args,
        cancel_event: Optional[asyncio.Event] = None,
        **kwargs
    ) -> T:
        """
        Execute a function with retry logic.

        Args:
            func: Async function to execute
            *args, **kwargs: Arguments for the function
            cancel_event: Setting this event aborts any pending backoff wait

        Returns:
            Result of the function

        Raises:
            NonRetryableError: the predicate rejected the error
            RetryExhaustedError: every attempt failed
            RetryCancelledError: cancellation was requested
        """
        last_exception: Optional[Exception] = None

        for attempt in range(1, self.config.max_attempts + 1):
            try:
                return await func(*args, **kwargs)

            except Exception as e:
                last_exception = e

                if not self.should_retry(e):
                    logger.debug(
                        "retry_not_retryable",
                        attempt=attempt,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    raise NonRetryableError(attempt, e) from e

            if attempt == self.config.max_attempts:
                break

            if cancel_event is not None and cancel_event.is_set():
                raise RetryCancelledError(attempt, last_exception, during_delay=False) from last_exception

            delay = self.calculate_delay(attempt)

            logger.info(
                "retry_attempt",
                attempt=attempt,
                max_attempts=self.config.max_attempts,
                delay=round(delay, 3),
                error=str(last_exception),
                error_type=type(last_exception).__name__,
            )

            if await _wait_or_cancel(delay, cancel_event):
                raise RetryCancelledError(attempt, last_exception, during_delay=True) from last_exception

        logger.warning(
            "retry_exhausted",
            max_attempts=self.config.max_attempts,
            error=str(last_exception),
        )
        raise RetryExhaustedError(self.config.max_attempts, last_exception) from last_exception


async def _wait_or_cancel(delay: float, cancel_event: Optional[asyncio.Event]) -> bool:
    """Sleep for delay seconds. Returns True if the cancel event fired first."""
    if cancel_event is None:
        await asyncio.sleep(delay)
        return False

    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True


async def do(
    func: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> T:
    """Run func under a retry policy built from config."""
    return await RetryPolicy(config).execute(func, cancel_event=cancel_event)


def with_retry(
    max_attempts: int = None,
    initial_delay: float = None,
    retry_if: Callable[[BaseException], bool] = None
):
    """
    Decorator for adding retry logic to async functions.

    Args:
        max_attempts: Maximum retry attempts
        initial_delay: Base delay between retries
        retry_if: Retryability predicate

    Returns:
        Decorated function
    """
    defaults = RetryConfig.default()
    config = RetryConfig(
        max_attempts=max_attempts or defaults.max_attempts,
        initial_delay=initial_delay if initial_delay is not None else defaults.initial_delay,
        max_delay=defaults.max_delay,
        multiplier=defaults.multiplier,
        jitter_fraction=defaults.jitter_fraction,
        retry_if=retry_if or is_retryable_error,
    )
    policy = RetryPolicy(config)

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await policy.execute(func, *args, **kwargs)
        return wrapper

    return decorator


# Default retry policy
_default_policy: Optional[RetryPolicy] = None


def get_default_retry_policy() -> RetryPolicy:
    """Get the default retry policy."""
    global _default_policy
    if _default_policy is None:
        _default_policy = RetryPolicy()
    return _default_policy
