"""
Retryability predicates for errors raised by network, GitHub and file operations.
All functions are pure and never perform I/O.
"""

import errno
import re
import socket
from typing import Optional

import httpx

# Matched case-insensitively against the error text
RETRYABLE_PATTERNS = (
    "timeout",
    "timed out",
    "temporary failure",
    "connection reset",
    "connection refused",
    "no such host",
    "network is unreachable",
    "i/o timeout",
    "deadline exceeded",
)

GITHUB_RETRYABLE_PATTERNS = (
    "rate limit",
    "abuse detection",
    "secondary rate",
    "server error",
    "temporarily unavailable",
    "service unavailable",
)

FILE_RETRYABLE_PATTERNS = (
    "resource temporarily unavailable",
    "device or resource busy",
    "no space left on device",
    "disk full",
    "operation would block",
)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
GITHUB_NON_RETRYABLE_STATUS_CODES = frozenset({400, 401, 403, 404})

_STATUS_RE = re.compile(r"(?<!\d)([1-5]\d\d)(?!\d)")

_FILE_ERRNOS = frozenset(
    code for code in (
        errno.EBUSY,
        errno.ENOSPC,
        errno.EAGAIN,
        getattr(errno, "EWOULDBLOCK", errno.EAGAIN),
    )
)


def _status_code(error: BaseException) -> Optional[int]:
    """Extract an HTTP status code from an error, if it carries one."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    return None


def _status_codes_in_text(text: str) -> set:
    return {int(code) for code in _STATUS_RE.findall(text)}


def is_network_error(error: Optional[BaseException]) -> bool:
    """Check if an error is a transient network failure."""
    if error is None:
        return False

    if isinstance(error, socket.gaierror):
        return error.errno == socket.EAI_AGAIN

    if isinstance(error, (ConnectionError, TimeoutError)):
        return True

    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return True

    return False


def is_http_retryable_error(error: Optional[BaseException]) -> bool:
    """Check if an error represents a retryable HTTP status (429, 5xx gateway errors)."""
    if error is None:
        return False

    status = _status_code(error)
    if status is not None:
        return status in RETRYABLE_STATUS_CODES

    return bool(_status_codes_in_text(str(error)) & RETRYABLE_STATUS_CODES)


def is_retryable_error(error: Optional[BaseException]) -> bool:
    """
    Determine if an error is potentially transient.

    Used by the default retry configuration.
    """
    if error is None:
        return False

    text = str(error).lower()
    if any(pattern in text for pattern in RETRYABLE_PATTERNS):
        return True

    return is_network_error(error) or is_http_retryable_error(error)


def is_github_retryable_error(error: Optional[BaseException]) -> bool:
    """
    Check if an error from the GitHub API is worth retrying.

    Authentication, permission and missing-resource errors (401/403/404) are
    never retried, even when the message also mentions a retryable condition.
    """
    if error is None:
        return False

    status = _status_code(error)
    text = str(error).lower()
    codes = {status} if status is not None else _status_codes_in_text(text)

    if codes & GITHUB_NON_RETRYABLE_STATUS_CODES:
        return False

    if is_network_error(error) or is_http_retryable_error(error):
        return True

    return any(pattern in text for pattern in GITHUB_RETRYABLE_PATTERNS)


def is_file_error(error: Optional[BaseException]) -> bool:
    """Check if a file operation error is transient resource contention."""
    if error is None:
        return False

    if isinstance(error, FileNotFoundError):
        return False

    if isinstance(error, OSError) and error.errno in _FILE_ERRNOS:
        return True

    text = str(error).lower()
    if any(pattern in text for pattern in FILE_RETRYABLE_PATTERNS):
        return True

    # Network filesystems surface connection errors from file calls
    return is_network_error(error)
