"""
Report placement, discovery and the navigation index page.
"""

import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional
import structlog

from jinja2 import Environment, FileSystemLoader, select_autoescape

from coverdeploy.deployment.models import ReportInfo
from coverdeploy.deployment.paths import PathType

logger = structlog.get_logger()

REPORT_FILENAME = "coverage.html"
INDEX_FILENAME = "index.html"
INDEX_TEMPLATE = "index.html.j2"

_TYPE_ORDER = {PathType.ROOT: 0, PathType.MAIN: 0, PathType.BRANCH: 1, PathType.PR: 2}


class HTMLGenerator(ABC):
    """Abstract interface for writing reports and the navigation page."""

    @abstractmethod
    def generate_report_html(self, work_dir: str, target_path: str, report_data: bytes) -> None:
        """Write report bytes to target_path under work_dir."""
        pass

    @abstractmethod
    def discover_reports(self, work_dir: str) -> List[ReportInfo]:
        """Find the coverage reports already published in work_dir."""
        pass

    @abstractmethod
    def generate_index_html(self, work_dir: str, reports: List[ReportInfo]) -> None:
        """Write the navigation index.html for the given reports."""
        pass


class ReportGenerator(HTMLGenerator):
    """HTMLGenerator rendering the index page from a jinja2 template."""

    def __init__(self, repository: str, base_url: str, template_dir: Optional[str] = None):
        """
        Initialize report generator.

        Args:
            repository: owner/name shown in the page header
            base_url: Public Pages URL reports are served under
            template_dir: Directory holding index.html.j2
        """
        self.repository = repository
        self.base_url = base_url.rstrip("/")

        template_dir = template_dir or os.path.join(os.path.dirname(__file__), "templates")
        self.env = Environment(
            loader=FileSystemLoader(template_dir),
            autoescape=select_autoescape(["html", "j2"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def generate_report_html(self, work_dir: str, target_path: str, report_data: bytes) -> None:
        full_path = Path(work_dir, target_path)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_bytes(report_data)

    def discover_reports(self, work_dir: str) -> List[ReportInfo]:
        reports = []
        for root, dirnames, filenames in os.walk(work_dir):
            dirnames[:] = sorted(d for d in dirnames if d != ".git")
            if REPORT_FILENAME not in filenames:
                continue

            full = os.path.join(root, REPORT_FILENAME)
            rel = os.path.relpath(full, work_dir).replace(os.sep, "/")
            try:
                stat = os.stat(full)
            except OSError as e:
                logger.warning("report_discovery_skipped", path=rel, error=str(e))
                continue
            reports.append(self._report_info(rel, stat.st_mtime, stat.st_size))

        logger.debug("reports_discovered", work_dir=work_dir, count=len(reports))
        return reports

    def _report_info(self, rel_path: str, mtime: float, size: int) -> ReportInfo:
        parts = rel_path.split("/")
        report = ReportInfo(
            type=PathType.ROOT,
            name="Latest",
            path=rel_path,
            url=f"{self.base_url}/{rel_path}",
            last_updated=datetime.fromtimestamp(mtime),
            file_size=size,
        )

        if len(parts) < 3:
            return report

        kind, identifier = parts[0], parts[1]
        if kind == "main":
            report.type = PathType.MAIN
            report.name = "Main Branch"
            report.branch = "main"
        elif kind == "branch":
            report.type = PathType.BRANCH
            report.name = f"Branch: {identifier}"
            report.branch = identifier
        elif kind == "pr":
            report.type = PathType.PR
            report.name = f"PR #{identifier}"
            report.pr_number = identifier
        return report

    def render_index(self, reports: List[ReportInfo]) -> str:
        ordered = sorted(reports, key=lambda r: (_TYPE_ORDER.get(r.type, 3), r.name))

        main_report = next((r for r in ordered if r.type == PathType.MAIN), None)
        if main_report is None:
            main_report = next((r for r in ordered if r.type == PathType.ROOT), None)

        template = self.env.get_template(INDEX_TEMPLATE)
        return template.render(
            repository=self.repository,
            base_url=self.base_url,
            reports=ordered,
            main_report=main_report,
            branch_reports=[r for r in ordered if r.type == PathType.BRANCH],
            pr_reports=[r for r in ordered if r.type == PathType.PR],
            total_reports=len(ordered),
            updated_at=datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC"),
        )

    def generate_index_html(self, work_dir: str, reports: List[ReportInfo]) -> None:
        html = self.render_index(reports)
        Path(work_dir, INDEX_FILENAME).write_text(html, encoding="utf-8")
        logger.info("index_generated", work_dir=work_dir, reports=len(reports))
