"""
Deployment path tests.
"""

import pytest

from coverdeploy.deployment.models import DeploymentOptions
from coverdeploy.deployment.paths import (
    DeploymentPath,
    PathType,
    build_deployment_path,
    sanitize_branch_name,
)


class TestBuildDeploymentPath:
    """Tests for target path derivation."""

    @pytest.mark.parametrize("event", ["pull_request", "pull_request_target"])
    @pytest.mark.parametrize("branch", ["feature/x", "main", "", "refs/pull/42/merge"])
    def test_pull_request_events(self, event, branch):
        """Test PR events map to the PR path regardless of branch."""
        assert build_deployment_path(event, branch, "42") == DeploymentPath(PathType.PR, "pr", "42")

    def test_merge_ref_with_pr_number(self):
        path = build_deployment_path("push", "42/merge", "42")
        assert path == DeploymentPath(PathType.PR, "pr", "42")

    def test_merge_ref_without_pr_number_is_cleaned(self):
        path = build_deployment_path("push", "feature/x/merge", "")
        assert path == DeploymentPath(PathType.BRANCH, "branch", "feature-x")

    def test_pull_request_without_number_uses_branch(self):
        path = build_deployment_path("pull_request", "feature/x", "")
        assert path.type == PathType.BRANCH

    @pytest.mark.parametrize("branch", ["main", "master"])
    def test_main_branches_publish_at_root(self, branch):
        path = build_deployment_path("push", branch, "")
        assert path == DeploymentPath(PathType.ROOT)
        assert path.root == ""
        assert path.identifier == ""

    def test_feature_branch(self):
        path = build_deployment_path("push", "feature/x", "")
        assert path == DeploymentPath(PathType.BRANCH, "branch", "feature-x")

    def test_custom_main_branches(self):
        assert build_deployment_path("push", "develop", "", ["develop"]).type == PathType.ROOT
        assert build_deployment_path("push", "main", "", ["develop"]).type == PathType.BRANCH

    def test_empty_branch_is_unknown(self):
        path = build_deployment_path("push", "", "")
        assert path == DeploymentPath(PathType.BRANCH, "branch", "unknown")

    def test_bare_merge_suffix_is_not_a_merge_ref(self):
        path = build_deployment_path("push", "/merge", "")
        assert path.identifier == "-merge"

    def test_deterministic(self):
        first = build_deployment_path("push", "release/1.2", "")
        second = build_deployment_path("push", "release/1.2", "")
        assert first == second


class TestDeploymentPathString:
    """Tests for path rendering."""

    def test_root_renders_empty(self):
        assert str(DeploymentPath(PathType.ROOT)) == ""

    def test_branch_renders_root_and_identifier(self):
        assert str(DeploymentPath(PathType.BRANCH, "branch", "feature-x")) == "branch/feature-x"

    def test_pr_renders_root_and_identifier(self):
        assert str(DeploymentPath(PathType.PR, "pr", "42")) == "pr/42"


class TestSanitizeBranchName:
    """Tests for branch name sanitization."""

    def test_replaces_unsafe_characters(self):
        assert sanitize_branch_name('a/b\\c:d*e?f"g<h>i|j k') == "a-b-c-d-e-f-g-h-i-j-k"

    def test_keeps_safe_characters(self):
        assert sanitize_branch_name("release-1.2_rc") == "release-1.2_rc"


class TestDeploymentOptions:
    """Tests for option construction from CI events."""

    def test_for_event_derives_target_path(self):
        options = DeploymentOptions.for_event(
            {"coverage.html": b"<html/>"},
            repository="octo-org/widgets",
            branch="feature/x",
            commit_sha="0123456789",
            event_name="push",
            main_branches=["main"],
        )
        assert options.target_path == DeploymentPath(PathType.BRANCH, "branch", "feature-x")
        assert options.coverage_files == {"coverage.html": b"<html/>"}

    def test_for_event_pull_request(self):
        options = DeploymentOptions.for_event(
            {}, "octo-org/widgets", "refs/pull/7/merge", "abc", "pull_request", pr_number="7",
        )
        assert str(options.target_path) == "pr/7"

    def test_options_are_immutable(self):
        options = DeploymentOptions()
        with pytest.raises(Exception):
            options.dry_run = True
