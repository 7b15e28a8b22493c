"""
Deployment orchestration.
Publishes coverage reports to the GitHub Pages branch under lock, with a backup for rollback.
"""

import asyncio
import shutil
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Tuple
import httpx
import structlog

from coverdeploy.config import settings
from coverdeploy.deployment.cleanup import CleanupEngine, FileCleanup
from coverdeploy.deployment.git import GitClient, GitOperations
from coverdeploy.deployment.html import INDEX_FILENAME, HTMLGenerator, ReportGenerator
from coverdeploy.deployment.models import (
    DeploymentError,
    DeploymentOptions,
    DeploymentResult,
    NoBackupForRollbackError,
    VerificationError,
    default_preserve_patterns,
)
from coverdeploy.deployment.paths import PathType, sanitize_branch_name

logger = structlog.get_logger()

REPORT_FILE = "coverage.html"
BADGE_FILE = "coverage.svg"
ROOT_MIRRORED_FILES = (REPORT_FILE, BADGE_FILE)


def split_repository(repository: str) -> Tuple[str, str]:
    """Split owner/name into its parts. Malformed input yields empty strings."""
    parts = [p for p in repository.split("/") if p]
    if len(parts) >= 2:
        return parts[0], parts[1]
    return "", ""


def pages_url_for(repository: str) -> str:
    """Public GitHub Pages URL of a repository."""
    owner, repo = split_repository(repository)
    return f"https://{owner}.github.io/{repo}"


@contextmanager
def _deployment_step(step: str, description: str) -> Iterator[None]:
    """Wrap any failure inside the block as a DeploymentError naming the step."""
    try:
        yield
    except Exception as e:
        raise DeploymentError(f"failed to {description}: {e}", step=step) from e


class DeploymentManager:
    """
    Publishes coverage reports to the Pages branch.

    Each deploy runs the same sequence: lock, backup, materialize branch,
    cleanup, place files, regenerate navigation, commit, push. Verification
    and rollback are separate calls. Instances hold no state between calls,
    so one manager may serve several branches concurrently.
    """

    def __init__(
        self,
        git_client: GitOperations,
        cleanup_engine: CleanupEngine,
        html_generator: HTMLGenerator,
        *,
        dry_run: bool = False,
        pages_base_url: Optional[str] = None,
        verification_delay: Optional[float] = None,
        verification_request_timeout: Optional[float] = None,
        lock_ttl: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize deployment manager.

        Args:
            git_client: Git plumbing for the Pages branch
            cleanup_engine: Removes stray files before publishing
            html_generator: Writes reports and the navigation page
            dry_run: Never push when set
            pages_base_url: Overrides the URL derived from the repository name
            verification_delay: Seconds to wait for Pages to propagate before verifying
            verification_request_timeout: Timeout of each verification request
            lock_ttl: Lifetime of the deployment lock, in seconds
            http_client: Client used for verification requests
        """
        self.git_client = git_client
        self.cleanup_engine = cleanup_engine
        self.html_generator = html_generator
        self.dry_run = dry_run
        self.pages_base_url = pages_base_url.rstrip("/") if pages_base_url else None
        self.verification_delay = (
            settings.verification_delay if verification_delay is None else verification_delay
        )
        self.verification_request_timeout = (
            verification_request_timeout or settings.verification_request_timeout
        )
        self.lock_ttl = lock_ttl or settings.lock_ttl
        self.http_client = http_client

    @classmethod
    def create(
        cls,
        repository: str,
        token: Optional[str] = None,
        dry_run: bool = False,
        **kwargs,
    ) -> "DeploymentManager":
        """Build a manager wired to the git CLI, the filesystem and the jinja2 index page."""
        base_url = kwargs.get("pages_base_url") or pages_url_for(repository)
        return cls(
            GitClient(repository, token if token is not None else settings.github_token),
            FileCleanup(dry_run=dry_run),
            ReportGenerator(repository, base_url),
            dry_run=dry_run,
            **kwargs,
        )

    async def deploy(self, options: DeploymentOptions) -> DeploymentResult:
        """
        Publish coverage files to the Pages branch.

        Args:
            options: What to publish and where

        Returns:
            DeploymentResult with commit, URLs, counts and warnings

        Raises:
            DeploymentError: lock acquisition or any publishing step failed
        """
        dry_run = self.dry_run or options.dry_run
        result = DeploymentResult(
            deployment_time=datetime.now(timezone.utc),
            dry_run=dry_run,
            verification_timeout=options.verification_timeout,
        )
        log = logger.bind(
            repository=options.repository,
            branch=options.branch,
            target=str(options.target_path) or "/",
            dry_run=dry_run,
        )

        lock_name = sanitize_branch_name(f"{options.repository}-{options.branch}")
        with _deployment_step("lock", "acquire deployment lock"):
            await self.git_client.acquire_lock(lock_name, self.lock_ttl)
        log.info("deployment_started", lock=lock_name)

        try:
            await self._backup(result, log)

            work_dir = tempfile.mkdtemp(prefix="gh-pages-deploy-")
            try:
                await self._publish(options, result, work_dir, dry_run)
            finally:
                shutil.rmtree(work_dir, ignore_errors=True)
        finally:
            try:
                await self.git_client.release_lock(lock_name)
            except Exception as e:
                result.warnings.append(f"failed to release deployment lock: {e}")
                log.warning("deployment_lock_release_failed", lock=lock_name, error=str(e))

        result.deployment_url = self.get_deployment_url(options)
        result.additional_urls = self.build_additional_urls(options)

        log.info(
            "deployment_completed",
            commit=result.commit_sha,
            files_deployed=result.files_deployed,
            files_removed=result.files_removed,
            url=result.deployment_url,
            warnings=len(result.warnings),
        )
        return result

    async def _backup(self, result: DeploymentResult, log) -> None:
        """Capture the current remote state. Failure only forfeits rollback."""
        backup_dir = tempfile.mkdtemp(prefix="gh-pages-backup-")
        try:
            await self.git_client.clone_or_create_branch(backup_dir)
            result.backup_ref = await self.git_client.create_backup(backup_dir)
        except Exception as e:
            result.warnings.append(f"failed to create backup: {e}")
            log.warning("deployment_backup_failed", error=str(e))
        finally:
            shutil.rmtree(backup_dir, ignore_errors=True)

    async def _publish(
        self,
        options: DeploymentOptions,
        result: DeploymentResult,
        work_dir: str,
        dry_run: bool,
    ) -> None:
        with _deployment_step("materialize", "set up pages branch"):
            await self.git_client.clone_or_create_branch(work_dir)

        with _deployment_step("cleanup", "clean up files"):
            cleanup = self.cleanup_engine.cleanup_files(
                work_dir,
                list(options.cleanup_patterns),
                list(default_preserve_patterns()),
            )
        result.files_removed = cleanup.files_removed
        for error in cleanup.errors:
            result.warnings.append(f"cleanup: {error}")

        with _deployment_step("place", "deploy coverage files"):
            result.files_deployed = self._place_files(options, work_dir)

        with _deployment_step("navigation", "generate navigation"):
            reports = self.html_generator.discover_reports(work_dir)
            self.html_generator.generate_index_html(work_dir, reports)

        with _deployment_step("commit", "commit changes"):
            result.commit_sha = await self.git_client.commit_changes(
                work_dir, self.build_commit_message(options)
            )

        if dry_run:
            logger.info("deployment_push_skipped", reason="dry_run", commit=result.commit_sha)
            return

        with _deployment_step("push", "push changes"):
            await self.git_client.push_changes(work_dir, options.force)

    def _place_files(self, options: DeploymentOptions, work_dir: str) -> int:
        """Write coverage files to the target path; mirror report and badge to the root."""
        target = str(options.target_path)
        deployed = 0

        for filename, data in options.coverage_files.items():
            path = f"{target}/{filename}" if target else filename
            self.html_generator.generate_report_html(work_dir, path, data)
            deployed += 1

        if options.target_path.type != PathType.ROOT:
            for filename in ROOT_MIRRORED_FILES:
                if filename in options.coverage_files:
                    self.html_generator.generate_report_html(
                        work_dir, filename, options.coverage_files[filename]
                    )

        return deployed

    def build_commit_message(self, options: DeploymentOptions) -> str:
        short_sha = options.commit_sha[:7]
        path_type = options.target_path.type

        if path_type == PathType.MAIN:
            return f"Deploy coverage for {options.branch} branch ({short_sha})"
        if path_type == PathType.BRANCH:
            return f"Deploy coverage for branch {options.branch} ({short_sha})"
        if path_type == PathType.PR:
            return f"Deploy coverage for PR #{options.pr_number} ({short_sha})"
        return f"Deploy coverage ({short_sha})"

    def _base_url(self, options: DeploymentOptions) -> str:
        return self.pages_base_url or pages_url_for(options.repository)

    def _target_url(self, options: DeploymentOptions, filename: str) -> str:
        target = str(options.target_path)
        if target:
            return f"{self._base_url(options)}/{target}/{filename}"
        return f"{self._base_url(options)}/{filename}"

    def get_deployment_url(self, options: DeploymentOptions) -> str:
        """URL of the published coverage report."""
        return self._target_url(options, REPORT_FILE)

    def build_additional_urls(self, options: DeploymentOptions) -> List[str]:
        """Badge and navigation index URLs."""
        return [
            self._target_url(options, BADGE_FILE),
            f"{self._base_url(options)}/{INDEX_FILENAME}",
        ]

    async def verify(self, result: DeploymentResult) -> None:
        """
        Check that every published URL answers 200 OK.

        Skipped in dry-run mode and when result.verification_timeout is not
        positive. After the propagation delay, the URL checks together must
        finish within result.verification_timeout; each request also carries
        the manager's fixed per-request timeout.

        Raises:
            VerificationError: a URL failed, returned another status, or the checks timed out
        """
        if self.dry_run or result.dry_run:
            logger.info("deployment_verify_skipped", reason="dry_run")
            return
        if result.verification_timeout <= 0:
            logger.info("deployment_verify_skipped", reason="disabled")
            return

        await asyncio.sleep(self.verification_delay)

        urls = [result.deployment_url, *result.additional_urls]
        try:
            await asyncio.wait_for(self._verify_all(urls), timeout=result.verification_timeout)
        except asyncio.TimeoutError as e:
            raise VerificationError(
                result.deployment_url,
                reason=f"verification timed out after {result.verification_timeout}s",
            ) from e

    async def _verify_all(self, urls: List[str]) -> None:
        if self.http_client is not None:
            await self._verify_urls(self.http_client, urls)
            return

        async with httpx.AsyncClient(
            timeout=self.verification_request_timeout,
            follow_redirects=True,
        ) as client:
            await self._verify_urls(client, urls)

    async def _verify_urls(self, client: httpx.AsyncClient, urls: List[str]) -> None:
        for url in urls:
            try:
                response = await client.head(url, timeout=self.verification_request_timeout)
            except httpx.HTTPError as e:
                raise VerificationError(url, reason=str(e)) from e

            if response.status_code != 200:
                raise VerificationError(url, status_code=response.status_code)
            logger.debug("deployment_url_verified", url=url)

        logger.info("deployment_verified", urls=len(urls))

    async def rollback(self, backup_ref: str) -> None:
        """
        Restore the Pages branch to a backup ref.

        Raises:
            NoBackupForRollbackError: backup_ref is empty
            DeploymentError: git failed while restoring
        """
        if not backup_ref:
            raise NoBackupForRollbackError()

        work_dir = tempfile.mkdtemp(prefix="gh-pages-rollback-")
        try:
            with _deployment_step("rollback", "set up work directory for rollback"):
                await self.git_client.clone_or_create_branch(work_dir)
            with _deployment_step("rollback", f"roll back to {backup_ref}"):
                await self.git_client.rollback(work_dir, backup_ref)
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        logger.info("deployment_rollback_completed", backup_ref=backup_ref)
