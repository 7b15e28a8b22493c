"""Observability package - Structured logging."""

from coverdeploy.observability.logger import (
    configure_logging,
    get_logger,
    bind_context,
    clear_context,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
]
