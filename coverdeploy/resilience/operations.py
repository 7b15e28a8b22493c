"""
Units of side-effecting work that can be retried and escalated to fallbacks.
"""

import functools
import hashlib
import json
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional
import httpx
import structlog

from coverdeploy.config import settings

logger = structlog.get_logger()

# Operation type discriminators read by fallback strategies
GITHUB_API_REQUEST = "github_api_request"
ARTIFACT_UPLOAD = "artifact_upload"
PR_COMMENT = "pr_comment"
DEPLOYMENT = "deployment"

USER_AGENT = "coverdeploy/0.1"


class OperationError(Exception):
    """Base exception for operation failures."""


class OperationNotConfiguredError(OperationError):
    """An operation was built without the callable it delegates to."""


class GitHubAPIError(OperationError):
    """GitHub API returned a non-success status."""

    def __init__(self, status_code: int, reason: str, body: str = ""):
        self.status_code = status_code
        self.reason = reason
        self.body = body
        super().__init__(f"github api returned error: {status_code} {reason}: {body[:200]}")


class Operation(ABC):
    """Abstract base class for operations executed under a fallback manager."""

    operation_type: str = ""

    def __init__(self):
        self._metadata: Dict[str, Any] = {}

    @abstractmethod
    async def execute(self) -> None:
        """
        Perform the primary operation.

        Raises:
            Exception: any failure; the fallback manager decides what happens next
        """
        pass

    def metadata(self) -> Dict[str, Any]:
        """Get the metadata bag read by fallback strategies."""
        return self._metadata

    def set_metadata(self, key: str, value: Any) -> "Operation":
        """Attach an extra metadata entry."""
        self._metadata[key] = value
        return self


class ResponseCache:
    """On-disk cache of GitHub API responses, keyed by method and URL."""

    def __init__(self, cache_dir: Optional[str] = None):
        self.cache_dir = Path(cache_dir or settings.fallback_cache_dir) / "responses"

    @staticmethod
    def _generate_cache_key(method: str, url: str) -> str:
        key_json = json.dumps({"method": method.upper(), "url": url}, sort_keys=True)
        return hashlib.sha256(key_json.encode()).hexdigest()

    def _path(self, method: str, url: str) -> Path:
        return self.cache_dir / f"{self._generate_cache_key(method, url)}.json"

    def get(self, method: str, url: str) -> Optional[str]:
        """Get a cached response body, or None on a miss."""
        path = self._path(method, url)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("response_cache_read_error", path=str(path), error=str(e))
            return None
        return data.get("body")

    def set(self, method: str, url: str, body: str) -> bool:
        """Store a response body. Returns True if it was written."""
        path = self._path(method, url)
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(
                json.dumps({
                    "method": method.upper(),
                    "url": url,
                    "body": body,
                    "cached_at": datetime.now(timezone.utc).isoformat(),
                }),
                encoding="utf-8",
            )
        except OSError as e:
            logger.warning("response_cache_write_error", path=str(path), error=str(e))
            return False
        return True


class GitHubAPIOperation(Operation):
    """A single GitHub REST API request."""

    operation_type = GITHUB_API_REQUEST

    def __init__(
        self,
        method: str,
        url: str,
        token: Optional[str] = None,
        json_body: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
        cache: Optional[ResponseCache] = None,
    ):
        super().__init__()
        self.method = method.upper()
        self.url = url
        self.token = token if token is not None else settings.github_token
        self.json_body = json_body
        self.headers = dict(headers or {})
        self.client = client
        self.cache = cache
        self.response_body: Optional[str] = None

    def metadata(self) -> Dict[str, Any]:
        self._metadata["method"] = self.method
        self._metadata["url"] = self.url
        self._metadata["has_token"] = bool(self.token)
        return self._metadata

    def _build_headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
        }
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        headers.update(self.headers)
        return headers

    async def execute(self) -> None:
        if self.client is not None:
            response = await self._send(self.client)
        else:
            async with httpx.AsyncClient(timeout=settings.http_timeout) as client:
                response = await self._send(client)

        if response.status_code < 200 or response.status_code >= 300:
            raise GitHubAPIError(response.status_code, response.reason_phrase, response.text)

        self.response_body = response.text
        if self.cache is not None and self.method == "GET":
            self.cache.set(self.method, self.url, response.text)

    async def _send(self, client: httpx.AsyncClient) -> httpx.Response:
        try:
            return await client.request(
                self.method,
                self.url,
                json=self.json_body,
                headers=self._build_headers(),
            )
        except httpx.HTTPError as e:
            raise OperationError(f"github api request failed: {e}") from e


class ArtifactUploadOperation(Operation):
    """Upload a file as a workflow artifact through an injected uploader."""

    operation_type = ARTIFACT_UPLOAD

    def __init__(
        self,
        artifact_name: str,
        file_path: str,
        retention_days: int,
        upload_func: Optional[Callable[[str, str, int], Awaitable[None]]],
    ):
        super().__init__()
        self.artifact_name = artifact_name
        self.file_path = file_path
        self.retention_days = retention_days
        self.upload_func = upload_func

    def metadata(self) -> Dict[str, Any]:
        self._metadata["artifact_name"] = self.artifact_name
        self._metadata["file_path"] = self.file_path
        self._metadata["retention_days"] = self.retention_days
        try:
            info = os.stat(self.file_path)
        except OSError:
            pass
        else:
            self._metadata["file_size"] = info.st_size
            self._metadata["file_modified"] = datetime.fromtimestamp(info.st_mtime)
        return self._metadata

    async def execute(self) -> None:
        if self.upload_func is None:
            raise OperationNotConfiguredError("upload function not configured")

        if not os.path.exists(self.file_path):
            raise OperationError(f"artifact file not found: {self.file_path}")

        await self.upload_func(self.artifact_name, self.file_path, self.retention_days)


class PRCommentOperation(Operation):
    """Post a comment on a pull request."""

    operation_type = PR_COMMENT

    def __init__(
        self,
        repository: str,
        pr_number: int,
        comment: str,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__()
        self.repository = repository
        self.pr_number = pr_number
        self.comment = comment
        self.token = token
        self.client = client

    def metadata(self) -> Dict[str, Any]:
        self._metadata["repository"] = self.repository
        self._metadata["pr_number"] = self.pr_number
        self._metadata["comment"] = self.comment
        self._metadata["comment_length"] = len(self.comment)
        return self._metadata

    async def execute(self) -> None:
        url = f"{settings.github_api_url}/repos/{self.repository}/issues/{self.pr_number}/comments"
        api_op = GitHubAPIOperation(
            "POST",
            url,
            token=self.token,
            json_body={"body": self.comment},
            client=self.client,
        )
        await api_op.execute()


class DeploymentOperation(Operation):
    """Publish a set of files through an injected deploy callable."""

    operation_type = DEPLOYMENT

    def __init__(
        self,
        files: List[str],
        target_branch: str,
        commit_message: str,
        deploy_func: Optional[Callable[[], Awaitable[Any]]],
        work_dir: str = "",
    ):
        super().__init__()
        self.files = list(files)
        self.target_branch = target_branch
        self.commit_message = commit_message
        self.work_dir = work_dir
        self.deploy_func = deploy_func
        self.result: Any = None

    def metadata(self) -> Dict[str, Any]:
        self._metadata["files"] = list(self.files)
        self._metadata["target_branch"] = self.target_branch
        self._metadata["commit_message"] = self.commit_message
        self._metadata["work_dir"] = self.work_dir
        self._metadata["file_count"] = len(self.files)
        self._metadata["total_size"] = sum(
            os.path.getsize(f) for f in self.files if os.path.isfile(f)
        )
        return self._metadata

    async def execute(self) -> None:
        if self.deploy_func is None:
            raise OperationNotConfiguredError("deployment function not configured")

        for file in self.files:
            if not os.path.exists(file):
                raise OperationError(f"deployment file not found: {file}")

        if self.work_dir and not os.path.isdir(self.work_dir):
            raise OperationError(f"work directory not found: {self.work_dir}")

        self.result = await self.deploy_func()

    @classmethod
    def for_manager(cls, manager: Any, options: Any, files: List[str]) -> "DeploymentOperation":
        """
        Wrap DeploymentManager.deploy as an operation.

        The deployment result is available as .result once execute() succeeds;
        files are what the deployment fallback stages locally on failure.
        """
        return cls(
            files=files,
            target_branch=settings.pages_branch,
            commit_message=manager.build_commit_message(options),
            deploy_func=functools.partial(manager.deploy, options),
        )
