"""
Pytest configuration and fixtures.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from coverdeploy.deployment.git import GitOperations
from coverdeploy.deployment.cleanup import CleanupEngine
from coverdeploy.deployment.html import HTMLGenerator
from coverdeploy.deployment.manager import DeploymentManager
from coverdeploy.deployment.models import CleanupResult, DeploymentOptions
from coverdeploy.deployment.paths import DeploymentPath, PathType
from coverdeploy.resilience.retry_policy import RetryConfig


@pytest.fixture
def fast_retry_config():
    """Retry configuration with near-zero delays and no jitter."""
    return RetryConfig(
        max_attempts=3,
        initial_delay=0.001,
        max_delay=0.01,
        multiplier=2.0,
        jitter_fraction=0.0,
        retry_if=lambda e: True,
    )


@pytest.fixture
def mock_git():
    """Create a mock git client."""
    git = AsyncMock(spec=GitOperations)
    git.acquire_lock.return_value = None
    git.release_lock.return_value = None
    git.clone_or_create_branch.return_value = None
    git.create_backup.return_value = "refs/backup/deployment-1700000000"
    git.commit_changes.return_value = "abc1234def5678"
    git.push_changes.return_value = None
    git.rollback.return_value = None
    return git


@pytest.fixture
def mock_cleanup():
    """Create a mock cleanup engine."""
    cleanup = MagicMock(spec=CleanupEngine)
    cleanup.cleanup_files.return_value = CleanupResult(files_removed=2, files_preserved=5)
    return cleanup


@pytest.fixture
def mock_html():
    """Create a mock HTML generator."""
    html = MagicMock(spec=HTMLGenerator)
    html.discover_reports.return_value = []
    return html


@pytest.fixture
def deployment_manager(mock_git, mock_cleanup, mock_html):
    """Deployment manager wired to mock collaborators."""
    return DeploymentManager(
        mock_git,
        mock_cleanup,
        mock_html,
        verification_delay=0,
        verification_request_timeout=1.0,
    )


@pytest.fixture
def coverage_files():
    """Coverage report and badge contents."""
    return {
        "coverage.html": b"<html><body>87.5%</body></html>",
        "coverage.svg": b"<svg>87.5%</svg>",
    }


@pytest.fixture
def branch_options(coverage_files):
    """Deployment options for a feature branch push."""
    return DeploymentOptions(
        coverage_files=coverage_files,
        repository="octo-org/widgets",
        branch="feature/login",
        commit_sha="0123456789abcdef",
        event_name="push",
        target_path=DeploymentPath(PathType.BRANCH, "branch", "feature-login"),
    )


@pytest.fixture
def root_options(coverage_files):
    """Deployment options for a main branch push."""
    return DeploymentOptions(
        coverage_files=coverage_files,
        repository="octo-org/widgets",
        branch="main",
        commit_sha="fedcba9876543210",
        event_name="push",
        target_path=DeploymentPath(PathType.ROOT),
    )
