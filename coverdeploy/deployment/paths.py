"""
Target path taxonomy for published coverage reports.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

DEFAULT_MAIN_BRANCHES = ("main", "master")

PULL_REQUEST_EVENTS = frozenset({"pull_request", "pull_request_target"})

MERGE_REF_SUFFIX = "/merge"

_UNSAFE_CHARS_RE = re.compile(r'[/\\:*?"<>| ]')


class PathType(str, Enum):
    """Kind of deployment target."""
    ROOT = "root"
    MAIN = "main"
    BRANCH = "branch"
    PR = "pr"


@dataclass(frozen=True)
class DeploymentPath:
    """Where a report is published inside the pages branch."""
    type: PathType
    root: str = ""
    identifier: str = ""

    def __str__(self) -> str:
        if self.type == PathType.ROOT:
            return ""
        return f"{self.root}/{self.identifier}"


def is_merge_ref(ref: str) -> bool:
    """Check if a ref is a GitHub synthetic merge ref such as refs/pull/42/merge."""
    return len(ref) > len(MERGE_REF_SUFFIX) and ref.endswith(MERGE_REF_SUFFIX)


def clean_merge_ref(branch: str) -> str:
    """Strip a trailing /merge from a branch name."""
    if is_merge_ref(branch):
        return branch[:-len(MERGE_REF_SUFFIX)]
    return branch


def sanitize_branch_name(branch: str) -> str:
    """Replace characters that are unsafe in file paths with '-'."""
    return _UNSAFE_CHARS_RE.sub("-", branch)


def build_deployment_path(
    event_name: str,
    branch: str,
    pr_number: str,
    main_branches: Optional[Iterable[str]] = None,
) -> DeploymentPath:
    """
    Derive the deployment target from the CI event context.

    A pull request number wins over the branch name, including when the branch
    is GitHub's synthetic merge ref for that pull request.

    Args:
        event_name: GitHub event name (push, pull_request, ...)
        branch: Source branch or ref name
        pr_number: Pull request number, empty when not a PR
        main_branches: Branches published at the root (defaults to main, master)

    Returns:
        DeploymentPath for the event
    """
    pr_number = (pr_number or "").strip()
    branch = branch or ""

    if pr_number and (event_name in PULL_REQUEST_EVENTS or is_merge_ref(branch)):
        return DeploymentPath(PathType.PR, "pr", pr_number)

    clean_branch = clean_merge_ref(branch) or "unknown"

    mains = {b.strip() for b in (main_branches if main_branches is not None else DEFAULT_MAIN_BRANCHES)}
    if clean_branch in mains:
        return DeploymentPath(PathType.ROOT)

    return DeploymentPath(PathType.BRANCH, "branch", sanitize_branch_name(clean_branch))
