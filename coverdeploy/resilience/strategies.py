"""
Fallback strategies: degraded-mode handlers selected by the fallback manager
when a primary operation fails.
"""

import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, Optional
import structlog

from coverdeploy.config import settings
from coverdeploy.resilience.operations import (
    ARTIFACT_UPLOAD,
    GITHUB_API_REQUEST,
    PR_COMMENT,
    Operation,
    ResponseCache,
)

logger = structlog.get_logger()


class FallbackError(Exception):
    """Base exception for fallback handling."""


class FallbackConfigurationError(FallbackError):
    """A strategy cannot run because the operation was set up incorrectly. Never retried."""


class MissingMetadataError(FallbackConfigurationError):
    """A required metadata key is absent from the operation."""

    def __init__(self, key: str, operation_type: str):
        self.key = key
        self.operation_type = operation_type
        super().__init__(f"missing {key} in metadata for operation {operation_type}")


class UnsupportedOperationError(FallbackConfigurationError):
    """The strategy has no degraded path for this operation type."""

    def __init__(self, strategy: str, operation_type: str):
        self.strategy = strategy
        self.operation_type = operation_type
        super().__init__(f"unsupported operation type for {strategy}: {operation_type}")


class FallbackUnavailableError(FallbackError):
    """The strategy ran but could not provide a degraded result."""


def _matches_any(error: Optional[BaseException], patterns: Iterable[str]) -> bool:
    if error is None:
        return False
    text = str(error).lower()
    return any(pattern in text for pattern in patterns)


def _require(metadata: Dict[str, Any], key: str, expected: type, operation_type: str) -> Any:
    value = metadata.get(key)
    if not isinstance(value, expected):
        raise MissingMetadataError(key, operation_type)
    return value


class FallbackStrategy(ABC):
    """Abstract base class for fallback strategies."""

    def __init__(self, name: str, priority: int, enabled: bool = True):
        """
        Args:
            name: Unique strategy name
            priority: Lower values are tried first
            enabled: Disabled strategies are never invoked
        """
        self.name = name
        self.priority = priority
        self.enabled = enabled

    @abstractmethod
    def can_handle(self, error: BaseException) -> bool:
        """Check whether this strategy applies to the given failure."""
        pass

    @abstractmethod
    async def execute(self, operation: Operation, original_error: BaseException) -> None:
        """
        Perform the degraded-mode version of the operation.

        Raises:
            FallbackError: the strategy could not recover the operation
        """
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority}, enabled={self.enabled})"


class GitHubAPIFallbackStrategy(FallbackStrategy):
    """
    Degraded handling for GitHub API failures.

    - API reads are served from the local response cache
    - Artifact uploads are staged on local disk
    - PR comments are logged instead of posted
    """

    HANDLED_PATTERNS = (
        "github",
        "rate limit",
        "502",
        "503",
        "5xx",
        "timeout",
        "timed out",
        "connection refused",
    )

    def __init__(
        self,
        cache_dir: Optional[str] = None,
        degraded_mode: bool = True,
        local_fallback: bool = True,
        priority: int = 1,
    ):
        super().__init__("github_api_fallback", priority)
        self.cache_dir = Path(cache_dir or settings.fallback_cache_dir)
        self.degraded_mode = degraded_mode
        self.local_fallback = local_fallback
        self.response_cache = ResponseCache(str(self.cache_dir))

    def can_handle(self, error: BaseException) -> bool:
        return _matches_any(error, self.HANDLED_PATTERNS)

    async def execute(self, operation: Operation, original_error: BaseException) -> None:
        op_type = operation.operation_type
        metadata = operation.metadata()

        if op_type == GITHUB_API_REQUEST:
            self._handle_api_request(metadata, original_error)
        elif op_type == ARTIFACT_UPLOAD:
            self._handle_artifact_upload(metadata, original_error)
        elif op_type == PR_COMMENT:
            self._handle_pr_comment(metadata, original_error)
        else:
            raise UnsupportedOperationError(self.name, op_type)

    def _handle_api_request(self, metadata: Dict[str, Any], original_error: BaseException) -> None:
        if not self.local_fallback:
            raise FallbackUnavailableError(f"no fallback available for GitHub API request: {original_error}")

        method = _require(metadata, "method", str, GITHUB_API_REQUEST)
        url = _require(metadata, "url", str, GITHUB_API_REQUEST)

        if method.upper() != "GET":
            raise FallbackUnavailableError(f"cannot serve {method} {url} from cache: {original_error}")

        body = self.response_cache.get(method, url)
        if body is None:
            raise FallbackUnavailableError(f"no cached response for {url}: {original_error}")

        metadata["fallback_response"] = body
        metadata["degraded_mode"] = True
        logger.info("fallback_cache_hit", url=url)

    def _handle_artifact_upload(self, metadata: Dict[str, Any], original_error: BaseException) -> None:
        if not self.local_fallback:
            raise FallbackUnavailableError(f"no fallback available for artifact upload: {original_error}")

        artifact_name = _require(metadata, "artifact_name", str, ARTIFACT_UPLOAD)
        file_path = _require(metadata, "file_path", str, ARTIFACT_UPLOAD)

        fallback_dir = self.cache_dir / "artifacts"
        fallback_path = fallback_dir / f"{artifact_name}.json"
        try:
            fallback_dir.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(file_path, fallback_path)
        except OSError as e:
            raise FallbackUnavailableError(f"failed to stage artifact {artifact_name}: {e}") from e

        metadata["fallback_path"] = str(fallback_path)
        logger.info("fallback_artifact_stored", artifact=artifact_name, path=str(fallback_path))

    def _handle_pr_comment(self, metadata: Dict[str, Any], original_error: BaseException) -> None:
        if not self.degraded_mode:
            raise FallbackUnavailableError(f"no fallback available for PR comment: {original_error}")

        comment = _require(metadata, "comment", str, PR_COMMENT)
        logger.warning(
            "fallback_pr_comment_skipped",
            pr_number=metadata.get("pr_number"),
            comment=comment,
        )


class DeploymentFallbackStrategy(FallbackStrategy):
    """Degraded handling for failed Pages deployments: skip, or stage files locally."""

    HANDLED_PATTERNS = ("deployment", "gh-pages", "git", "pages", "push")

    def __init__(
        self,
        output_dir: Optional[str] = None,
        skip_deployment: Optional[bool] = None,
        local_deployment: bool = True,
        priority: int = 2,
    ):
        super().__init__("deployment_fallback", priority)
        self.output_dir = Path(output_dir or settings.fallback_deploy_dir)
        self.skip_deployment = (
            settings.fallback_skip_deployment if skip_deployment is None else skip_deployment
        )
        self.local_deployment = local_deployment

    def can_handle(self, error: BaseException) -> bool:
        return _matches_any(error, self.HANDLED_PATTERNS)

    async def execute(self, operation: Operation, original_error: BaseException) -> None:
        if self.skip_deployment:
            logger.warning("fallback_deployment_skipped", error=str(original_error))
            return

        if not self.local_deployment:
            raise FallbackUnavailableError(f"no fallback available for deployment: {original_error}")

        metadata = operation.metadata()
        files = metadata.get("files")
        if not isinstance(files, (list, tuple)):
            raise MissingMetadataError("files", operation.operation_type)

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FallbackUnavailableError(f"failed to create local deployment directory: {e}") from e

        staged = 0
        for file in files:
            dest = self.output_dir / os.path.basename(file)
            try:
                shutil.copyfile(file, dest)
            except OSError as e:
                logger.warning("fallback_deployment_file_failed", file=str(file), error=str(e))
                continue
            staged += 1
            logger.info("fallback_deployment_file_staged", file=str(file), dest=str(dest))

        metadata["fallback_output_dir"] = str(self.output_dir)
        metadata["fallback_files_staged"] = staged
