"""
Data structures exchanged with the deployment manager and its collaborators.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from coverdeploy.config import settings
from coverdeploy.deployment.paths import DeploymentPath, PathType, build_deployment_path


def default_cleanup_patterns() -> Tuple[str, ...]:
    """File patterns removed from the pages branch on every deployment."""
    return (
        "*.go", "*.mod", "*.sum",
        "*.py", "*.pyc", "*.toml", "*.cfg",
        "*.yml", "*.yaml",
        "*.md", "LICENSE", "README*",
        "cmd/", "internal/", "pkg/", "src/",
        "test/", "tests/", "testdata/",
        ".github/",
        "docs/", "examples/",
        "scripts/", "tools/",
        "*.txt", "*.log",
        "Makefile", "mage*",
        "go.work*",
    )


def default_preserve_patterns() -> Tuple[str, ...]:
    """File patterns that are never removed from the pages branch."""
    return (
        "*.html",
        "*.svg",
        "*.css",
        "*.js",
        "*.json",
        "*.png",
        "*.jpg",
        "*.jpeg",
        "*.gif",
        "*.ico",
        ".nojekyll",
        "CNAME",
        "robots.txt",
        "sitemap.xml",
        "favicon.*",
        "manifest.*",
    )


@dataclass(frozen=True)
class DeploymentOptions:
    """Immutable per-call deployment configuration."""
    coverage_files: Mapping[str, bytes] = field(default_factory=dict)
    repository: str = ""
    branch: str = ""
    commit_sha: str = ""
    pr_number: str = ""
    event_name: str = ""
    target_path: DeploymentPath = field(default_factory=lambda: DeploymentPath(PathType.ROOT))
    cleanup_patterns: Tuple[str, ...] = field(default_factory=default_cleanup_patterns)
    dry_run: bool = False
    force: bool = False
    # Overall budget for verify(); zero or less skips verification
    verification_timeout: float = 30.0

    @classmethod
    def for_event(
        cls,
        coverage_files: Mapping[str, bytes],
        repository: str,
        branch: str,
        commit_sha: str,
        event_name: str,
        pr_number: str = "",
        main_branches: Optional[Iterable[str]] = None,
        **kwargs: Any,
    ) -> "DeploymentOptions":
        """Build options with the target path derived from the CI event."""
        target = build_deployment_path(
            event_name,
            branch,
            pr_number,
            main_branches if main_branches is not None else settings.main_branch_list,
        )
        return cls(
            coverage_files=dict(coverage_files),
            repository=repository,
            branch=branch,
            commit_sha=commit_sha,
            pr_number=pr_number,
            event_name=event_name,
            target_path=target,
            **kwargs,
        )


@dataclass
class DeploymentResult:
    """Outcome of a completed deployment."""
    commit_sha: str = ""
    deployment_url: str = ""
    additional_urls: List[str] = field(default_factory=list)
    files_deployed: int = 0
    files_removed: int = 0
    deployment_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    backup_ref: str = ""
    warnings: List[str] = field(default_factory=list)
    dry_run: bool = False
    verification_timeout: float = 30.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "commit_sha": self.commit_sha,
            "deployment_url": self.deployment_url,
            "additional_urls": list(self.additional_urls),
            "files_deployed": self.files_deployed,
            "files_removed": self.files_removed,
            "deployment_time": self.deployment_time.isoformat(),
            "backup_ref": self.backup_ref,
            "warnings": list(self.warnings),
            "dry_run": self.dry_run,
            "verification_timeout": self.verification_timeout,
        }


@dataclass
class CleanupResult:
    """Outcome of a cleanup pass over the pages branch."""
    files_removed: int = 0
    directories_removed: int = 0
    files_preserved: int = 0
    errors: List[str] = field(default_factory=list)
    removed_paths: List[str] = field(default_factory=list)
    preserved_paths: List[str] = field(default_factory=list)


@dataclass
class ReportInfo:
    """A coverage report already published on the pages branch."""
    type: PathType
    name: str
    path: str
    url: str = ""
    last_updated: Optional[datetime] = None
    file_size: int = 0
    branch: str = ""
    pr_number: str = ""


class DeploymentError(Exception):
    """Base exception for deployment failures."""

    def __init__(self, message: str, step: str = ""):
        self.step = step
        super().__init__(message)


class GitCommandError(DeploymentError):
    """A git invocation exited non-zero."""

    def __init__(self, args: Iterable[str], returncode: int, output: str = ""):
        self.git_args = list(args)
        self.returncode = returncode
        self.output = output
        super().__init__(
            f"git command failed: git {' '.join(self._redacted())} "
            f"(exit {returncode}), output: {output.strip()}",
            step="git",
        )

    def _redacted(self) -> List[str]:
        return ["<remote>" if "x-access-token" in a else a for a in self.git_args]


class LockTimeoutError(DeploymentError):
    """The deployment lock could not be acquired in time."""

    def __init__(self, lock_name: str, timeout: float):
        self.lock_name = lock_name
        self.timeout = timeout
        super().__init__(
            f"timeout acquiring deployment lock {lock_name} after {timeout}s",
            step="lock",
        )


class VerificationError(DeploymentError):
    """A published URL did not answer with 200 OK."""

    def __init__(self, url: str, status_code: Optional[int] = None, reason: str = ""):
        self.url = url
        self.status_code = status_code
        detail = f"status {status_code}" if status_code is not None else reason
        super().__init__(f"URL not accessible ({url}): {detail}", step="verify")


class NoBackupForRollbackError(DeploymentError):
    """Rollback was requested without a backup reference."""

    def __init__(self):
        super().__init__("no backup reference provided for rollback", step="rollback")


class CleanupError(DeploymentError):
    """The cleanup pass could not run."""

    def __init__(self, message: str):
        super().__init__(message, step="cleanup")
