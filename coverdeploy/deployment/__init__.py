"""Deployment package - Publishing coverage reports to GitHub Pages."""

from coverdeploy.deployment.paths import (
    PathType,
    DeploymentPath,
    build_deployment_path,
    sanitize_branch_name,
)
from coverdeploy.deployment.models import (
    DeploymentOptions,
    DeploymentResult,
    CleanupResult,
    ReportInfo,
    DeploymentError,
    GitCommandError,
    LockTimeoutError,
    VerificationError,
    NoBackupForRollbackError,
    CleanupError,
)
from coverdeploy.deployment.git import GitOperations, GitClient
from coverdeploy.deployment.cleanup import CleanupEngine, FileCleanup
from coverdeploy.deployment.html import HTMLGenerator, ReportGenerator
from coverdeploy.deployment.manager import DeploymentManager

__all__ = [
    # Paths
    "PathType",
    "DeploymentPath",
    "build_deployment_path",
    "sanitize_branch_name",
    # Models
    "DeploymentOptions",
    "DeploymentResult",
    "CleanupResult",
    "ReportInfo",
    "DeploymentError",
    "GitCommandError",
    "LockTimeoutError",
    "VerificationError",
    "NoBackupForRollbackError",
    "CleanupError",
    # Collaborators
    "GitOperations",
    "GitClient",
    "CleanupEngine",
    "FileCleanup",
    "HTMLGenerator",
    "ReportGenerator",
    # Manager
    "DeploymentManager",
]
