"""
Pages branch cleanup tests.
"""

import pytest

from coverdeploy.deployment.cleanup import FileCleanup, match_pattern
from coverdeploy.deployment.models import (
    CleanupError,
    default_cleanup_patterns,
    default_preserve_patterns,
)


@pytest.fixture
def pages_tree(tmp_path):
    """A Pages branch checkout polluted with source files."""
    files = {
        ".nojekyll": "",
        "index.html": "<html/>",
        "coverage.html": "<html/>",
        "coverage.svg": "<svg/>",
        "robots.txt": "User-agent: *",
        "README.md": "# widgets",
        "go.mod": "module widgets",
        "notes.txt": "notes",
        "branch/feature-x/coverage.html": "<html/>",
        "branch/feature-x/debug.log": "log",
        "internal/core.go": "package core",
        "internal/util/helpers.go": "package util",
        ".git/HEAD": "ref: refs/heads/gh-pages",
        ".git/config.yml": "x",
    }
    for rel, content in files.items():
        path = tmp_path / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return tmp_path


class TestMatchPattern:
    """Tests for cleanup pattern matching."""

    def test_extension_wildcard(self):
        assert match_pattern("pkg/util.go", "*.go")
        assert not match_pattern("coverage.html", "*.go")

    def test_directory_pattern(self):
        assert match_pattern("internal", "internal/")
        assert match_pattern("internal/core.go", "internal/")
        assert not match_pattern("branch/internal", "internal/")

    def test_exact_pattern(self):
        assert match_pattern("Makefile", "Makefile")
        assert match_pattern("docs/index.md", "docs")
        assert not match_pattern("docsite", "docs")

    def test_prefix_wildcard(self):
        assert match_pattern("README.md", "README*")
        assert match_pattern("magefile.go", "mage*")


class TestFileCleanup:
    """Tests for the filesystem cleanup engine."""

    def test_removes_source_files_and_keeps_published_artifacts(self, pages_tree):
        result = FileCleanup().cleanup_files(
            str(pages_tree), list(default_cleanup_patterns()), list(default_preserve_patterns()),
        )

        for kept in (".nojekyll", "index.html", "coverage.html", "coverage.svg",
                     "robots.txt", "branch/feature-x/coverage.html"):
            assert (pages_tree / kept).exists(), kept

        for removed in ("README.md", "go.mod", "notes.txt", "branch/feature-x/debug.log", "internal"):
            assert not (pages_tree / removed).exists(), removed

        assert "internal" in result.removed_paths
        assert result.directories_removed == 1
        assert result.files_removed == 4
        assert result.errors == []

    def test_never_touches_git_directory(self, pages_tree):
        FileCleanup().cleanup_files(str(pages_tree), ["*.yml"], [])
        assert (pages_tree / ".git" / "config.yml").exists()
        assert (pages_tree / ".git" / "HEAD").exists()

    def test_dry_run_removes_nothing(self, pages_tree):
        result = FileCleanup(dry_run=True).cleanup_files(
            str(pages_tree), list(default_cleanup_patterns()), list(default_preserve_patterns()),
        )
        assert result.files_removed == 4
        assert (pages_tree / "README.md").exists()
        assert (pages_tree / "internal" / "core.go").exists()

    def test_preview_matches_cleanup(self, pages_tree):
        engine = FileCleanup()
        patterns = list(default_cleanup_patterns())
        preserve = list(default_preserve_patterns())

        preview = engine.preview_cleanup(str(pages_tree), patterns, preserve)
        result = engine.cleanup_files(str(pages_tree), patterns, preserve)

        assert sorted(preview) == sorted(result.removed_paths)

    def test_missing_work_dir(self, tmp_path):
        with pytest.raises(CleanupError):
            FileCleanup().cleanup_files(str(tmp_path / "missing"), [], [])


class TestPublishedReportDirectories:
    """Tests that published report directories survive source-file patterns."""

    @pytest.mark.parametrize("name", [
        "magenta-theme",
        "README-fix",
        "notes.md",
        "bump-pyproject.toml",
        "fix-setup.py",
        "ci.yml",
    ])
    def test_branch_report_kept(self, tmp_path, name):
        report = tmp_path / "branch" / name / "coverage.html"
        report.parent.mkdir(parents=True)
        report.write_text("<html/>")
        (report.parent / "coverage.svg").write_text("<svg/>")

        result = FileCleanup().cleanup_files(
            str(tmp_path), list(default_cleanup_patterns()), list(default_preserve_patterns()),
        )

        assert report.exists()
        assert (report.parent / "coverage.svg").exists()
        assert result.directories_removed == 0
        assert result.removed_paths == []

    def test_stray_file_in_report_directory_removed(self, tmp_path):
        directory = tmp_path / "branch" / "README-fix"
        directory.mkdir(parents=True)
        (directory / "coverage.html").write_text("<html/>")
        (directory / "build.log").write_text("log")

        result = FileCleanup().cleanup_files(
            str(tmp_path), list(default_cleanup_patterns()), list(default_preserve_patterns()),
        )

        assert (directory / "coverage.html").exists()
        assert result.removed_paths == ["branch/README-fix/build.log"]

    def test_named_directory_with_report_is_emptied_not_removed(self, tmp_path):
        (tmp_path / "docs").mkdir()
        (tmp_path / "docs" / "coverage.html").write_text("<html/>")
        (tmp_path / "docs" / "guide.md").write_text("# guide")

        result = FileCleanup().cleanup_files(
            str(tmp_path), list(default_cleanup_patterns()), list(default_preserve_patterns()),
        )

        assert (tmp_path / "docs" / "coverage.html").exists()
        assert not (tmp_path / "docs" / "guide.md").exists()
        assert result.directories_removed == 0
        assert result.files_removed == 1

    def test_wildcards_never_remove_directories(self):
        engine = FileCleanup()
        assert engine.should_remove("mage-tools", ["mage*"], is_dir=True) is False
        assert engine.should_remove("magefile.go", ["mage*"], is_dir=False) is True
        assert engine.should_remove("scripts", ["scripts/"], is_dir=True) is True


class TestValidateCleanup:
    """Tests for cleanup safety validation."""

    @pytest.mark.parametrize("pattern", ["*.html", "coverage.svg", ".nojekyll", "index.html"])
    def test_rejects_critical_patterns(self, tmp_path, pattern):
        with pytest.raises(CleanupError, match="critical"):
            FileCleanup().validate_cleanup(str(tmp_path), ["*.go", pattern])

    def test_accepts_default_patterns(self, tmp_path):
        FileCleanup().validate_cleanup(str(tmp_path), list(default_cleanup_patterns()))

    def test_rejects_missing_directory(self, tmp_path):
        with pytest.raises(CleanupError):
            FileCleanup().validate_cleanup(str(tmp_path / "missing"), [])
