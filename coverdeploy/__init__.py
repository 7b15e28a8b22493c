"""Resilient execution and GitHub Pages deployment for CI coverage reports."""

from coverdeploy.observability import logger as _logger  # noqa: F401

__version__ = "0.1.0"
