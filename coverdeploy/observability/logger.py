"""
Structured logging configuration using structlog.

Logs go to stderr so that command output on stdout stays parseable in CI.
"""

import logging
import re
import sys
from typing import Any, Dict, Optional
import structlog

from coverdeploy.config import settings

# Credentials that can leak through git remotes and API errors
_TOKEN_PATTERNS = (
    re.compile(r"x-access-token:[^@\s]+@"),
    re.compile(r"\bgh[pousr]_[A-Za-z0-9]{16,}\b"),
)


def redact_tokens(_logger: Any, _method: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """structlog processor masking GitHub tokens in string values."""
    for key, value in event_dict.items():
        if isinstance(value, str):
            for pattern in _TOKEN_PATTERNS:
                value = pattern.sub(_mask, value)
            event_dict[key] = value
    return event_dict


def _mask(match: "re.Match[str]") -> str:
    if match.group(0).startswith("x-access-token:"):
        return "x-access-token:***@"
    return "***"


def configure_logging(
    level: Optional[str] = None,
    json_format: bool = True
) -> None:
    """
    Configure structured logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Emit JSON lines when running in production
    """
    log_level = getattr(logging, (level or settings.log_level).upper())

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_tokens,
    ]

    if json_format and settings.is_production:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        # Plain text for CI log viewers
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs) -> None:
    """
    Bind fields to every subsequent log line, e.g. repository, branch and
    commit once per CI run.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


configure_logging()
