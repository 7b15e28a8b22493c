"""
Pattern-driven removal of stray source files from the Pages branch.
"""

import fnmatch
import os
import shutil
from abc import ABC, abstractmethod
from typing import Iterator, List, Sequence, Tuple
import structlog

from coverdeploy.deployment.models import CleanupError, CleanupResult

logger = structlog.get_logger()

# Never removed, whatever the caller's patterns say
CRITICAL_FILES = (".nojekyll", "index.html")
COVERAGE_PATTERNS = ("*.html", "*.svg", "*.json", "*.css", "*.js")

# Refused by validate_cleanup
CRITICAL_PATTERNS = (".nojekyll", "index.html", "coverage.html", "coverage.svg", "*.html", "*.svg")

UNWANTED_EXTENSIONS = (".go", ".mod", ".sum", ".py", ".yml", ".yaml", ".md", ".txt", ".log")
UNWANTED_DIRECTORIES = (
    "cmd", "internal", "pkg", "src", "test", "tests", "testdata",
    "docs", "examples", "scripts", "tools", ".github",
)


def is_wildcard(pattern: str) -> bool:
    return any(c in pattern for c in "*?[")


def match_pattern(rel_path: str, pattern: str) -> bool:
    """
    Match a path relative to the work dir against a cleanup pattern.

    Patterns ending in '/' name a top-level directory. Wildcard patterns are
    matched against the file name and the full relative path. Anything else
    matches the exact path or a directory prefix.
    """
    if pattern.endswith("/"):
        directory = pattern.rstrip("/")
        return rel_path == directory or rel_path.startswith(directory + "/")

    if is_wildcard(pattern):
        return (
            fnmatch.fnmatchcase(os.path.basename(rel_path), pattern)
            or fnmatch.fnmatchcase(rel_path, pattern)
        )

    return rel_path == pattern or rel_path.startswith(pattern + "/")


class CleanupEngine(ABC):
    """Abstract interface for Pages branch cleanup."""

    @abstractmethod
    def cleanup_files(
        self,
        work_dir: str,
        patterns: Sequence[str],
        preserve_patterns: Sequence[str],
    ) -> CleanupResult:
        """Remove files matching patterns while keeping preserved ones."""
        pass

    @abstractmethod
    def validate_cleanup(self, work_dir: str, patterns: Sequence[str]) -> None:
        """Raise CleanupError if running patterns against work_dir is unsafe."""
        pass

    @abstractmethod
    def preview_cleanup(
        self,
        work_dir: str,
        patterns: Sequence[str],
        preserve_patterns: Sequence[str],
    ) -> List[str]:
        """List the relative paths cleanup_files would remove."""
        pass


class FileCleanup(CleanupEngine):
    """Filesystem cleanup engine. In dry-run mode nothing is deleted."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def should_preserve(self, rel_path: str, preserve_patterns: Sequence[str] = ()) -> bool:
        if rel_path in CRITICAL_FILES:
            return True
        if any(match_pattern(rel_path, p) for p in COVERAGE_PATTERNS):
            return True
        return any(match_pattern(rel_path, p) for p in preserve_patterns)

    def should_remove(self, rel_path: str, patterns: Sequence[str], is_dir: bool) -> bool:
        """
        Decide removal for a single path.

        Wildcard patterns apply to files only. A directory is removed only
        when a directory or exact pattern names it, so a published report
        directory such as branch/README-fix is never matched by README*.
        """
        if self.should_preserve(rel_path):
            return False

        if is_dir:
            if any(match_pattern(rel_path, p) for p in patterns if not is_wildcard(p)):
                return True
            return any(rel_path == d or rel_path.startswith(d + "/") for d in UNWANTED_DIRECTORIES)

        if any(match_pattern(rel_path, p) for p in patterns):
            return True
        return rel_path.endswith(UNWANTED_EXTENSIONS)

    def _contains_preserved(
        self,
        work_dir: str,
        directory: str,
        preserve_patterns: Sequence[str],
    ) -> bool:
        for root, _, filenames in os.walk(directory):
            for name in filenames:
                rel = os.path.relpath(os.path.join(root, name), work_dir).replace(os.sep, "/")
                if self.should_preserve(rel, preserve_patterns):
                    return True
        return False

    def _scan(
        self,
        work_dir: str,
        patterns: Sequence[str],
        preserve_patterns: Sequence[str],
    ) -> Iterator[Tuple[str, str, bool, bool]]:
        """
        Walk work_dir, yielding (rel_path, full_path, is_dir, remove).

        The .git directory is skipped. A directory marked for removal is
        removed whole unless it holds a preserved file, in which case it is
        descended into and judged file by file.
        """
        for root, dirnames, filenames in os.walk(work_dir):
            dirnames.sort()
            kept_dirs = []
            for name in dirnames:
                full = os.path.join(root, name)
                rel = os.path.relpath(full, work_dir).replace(os.sep, "/")
                if rel == ".git":
                    continue
                if (
                    not self.should_preserve(rel, preserve_patterns)
                    and self.should_remove(rel, patterns, True)
                    and not self._contains_preserved(work_dir, full, preserve_patterns)
                ):
                    yield rel, full, True, True
                    continue
                kept_dirs.append(name)
            dirnames[:] = kept_dirs

            for name in sorted(filenames):
                full = os.path.join(root, name)
                rel = os.path.relpath(full, work_dir).replace(os.sep, "/")
                if self.should_preserve(rel, preserve_patterns):
                    yield rel, full, False, False
                else:
                    yield rel, full, False, self.should_remove(rel, patterns, False)

    def cleanup_files(
        self,
        work_dir: str,
        patterns: Sequence[str],
        preserve_patterns: Sequence[str],
    ) -> CleanupResult:
        if not os.path.isdir(work_dir):
            raise CleanupError(f"work directory does not exist: {work_dir}")

        result = CleanupResult()

        for rel, full, is_dir, remove in self._scan(work_dir, patterns, preserve_patterns):
            if not remove:
                result.files_preserved += 1
                result.preserved_paths.append(rel)
                continue

            if not self.dry_run:
                try:
                    if is_dir:
                        shutil.rmtree(full)
                    else:
                        os.remove(full)
                except OSError as e:
                    result.errors.append(f"failed to remove {rel}: {e}")
                    logger.warning("cleanup_remove_failed", path=rel, error=str(e))
                    continue

            if is_dir:
                result.directories_removed += 1
            else:
                result.files_removed += 1
            result.removed_paths.append(rel)

        logger.info(
            "cleanup_completed",
            work_dir=work_dir,
            files_removed=result.files_removed,
            directories_removed=result.directories_removed,
            files_preserved=result.files_preserved,
            errors=len(result.errors),
            dry_run=self.dry_run,
        )
        return result

    def validate_cleanup(self, work_dir: str, patterns: Sequence[str]) -> None:
        if not os.path.isdir(work_dir):
            raise CleanupError(f"work directory does not exist: {work_dir}")

        for pattern in patterns:
            if pattern in CRITICAL_PATTERNS:
                raise CleanupError(f"cleanup pattern would remove critical coverage files: {pattern}")

    def preview_cleanup(
        self,
        work_dir: str,
        patterns: Sequence[str],
        preserve_patterns: Sequence[str],
    ) -> List[str]:
        return [
            rel for rel, _, _, remove in self._scan(work_dir, patterns, preserve_patterns) if remove
        ]
