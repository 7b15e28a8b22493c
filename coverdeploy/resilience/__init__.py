"""Resilience package - Retry, circuit breaking and fallback handling."""

from coverdeploy.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerManager,
    CircuitBreakerError,
    CircuitState,
    CircuitStats,
    get_circuit_breaker_manager,
    get_circuit_breaker,
)
from coverdeploy.resilience.retry_policy import (
    RetryPolicy,
    RetryConfig,
    RetryError,
    NonRetryableError,
    RetryExhaustedError,
    RetryCancelledError,
    do,
    with_retry,
    get_default_retry_policy,
)
from coverdeploy.resilience.operations import (
    Operation,
    GitHubAPIOperation,
    ArtifactUploadOperation,
    PRCommentOperation,
    DeploymentOperation,
)
from coverdeploy.resilience.strategies import (
    FallbackStrategy,
    FallbackError,
    MissingMetadataError,
    GitHubAPIFallbackStrategy,
    DeploymentFallbackStrategy,
)
from coverdeploy.resilience.fallback_manager import (
    FallbackManager,
    FallbackMetrics,
    NoFallbackAvailableError,
    AllFallbacksFailedError,
    PanicRecoveredError,
    execute_with_recovery,
    get_fallback_manager,
)

__all__ = [
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerManager",
    "CircuitBreakerError",
    "CircuitState",
    "CircuitStats",
    "get_circuit_breaker_manager",
    "get_circuit_breaker",
    # Retry
    "RetryPolicy",
    "RetryConfig",
    "RetryError",
    "NonRetryableError",
    "RetryExhaustedError",
    "RetryCancelledError",
    "do",
    "with_retry",
    "get_default_retry_policy",
    # Operations
    "Operation",
    "GitHubAPIOperation",
    "ArtifactUploadOperation",
    "PRCommentOperation",
    "DeploymentOperation",
    # Fallback
    "FallbackStrategy",
    "FallbackError",
    "MissingMetadataError",
    "GitHubAPIFallbackStrategy",
    "DeploymentFallbackStrategy",
    "FallbackManager",
    "FallbackMetrics",
    "NoFallbackAvailableError",
    "AllFallbacksFailedError",
    "PanicRecoveredError",
    "execute_with_recovery",
    "get_fallback_manager",
]
