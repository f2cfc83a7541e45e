"""Error classification and retry policy for audit jobs."""

import asyncio
import re
import socket
from enum import Enum
from typing import Optional

import aiohttp

from audit_queue.errors import AuditNotFoundError, PermanentTargetError, RemoteHttpError
from audit_queue.models import JobStatus

# Responses from the audited site that retrying cannot fix
PERMANENT_HTTP_STATUSES = frozenset({401, 403, 404})

MAX_ERROR_LENGTH = 1000

# DNS and refused-connection failures reported only as text
_PERMANENT_MESSAGE_PATTERNS = re.compile(
    r"ENOTFOUND|EAI_AGAIN|getaddrinfo|name or service not known|nodename nor servname"
    r"|ECONNREFUSED|connection refused",
    re.IGNORECASE,
)


class ErrorClass(str, Enum):
    """Whether a failed attempt is eligible for retry."""

    PERMANENT = "permanent"
    TRANSIENT = "transient"


def classify_error(error: BaseException) -> ErrorClass:
    """
    Classify an exception raised while processing an audit.

    Permanent: the audited site answered 401/403/404, its name did not
    resolve, the connection was refused, or the audit record itself is gone.
    A failure of the pipeline service is transient even for a 401 or 404, as
    are timeouts and everything else.
    """
    if isinstance(error, (PermanentTargetError, AuditNotFoundError)):
        return ErrorClass.PERMANENT

    if isinstance(error, asyncio.TimeoutError):
        return ErrorClass.TRANSIENT

    # The pipeline service itself failed, whatever its status code
    if isinstance(error, RemoteHttpError):
        return ErrorClass.TRANSIENT

    if isinstance(error, aiohttp.ClientResponseError):
        if error.status in PERMANENT_HTTP_STATUSES:
            return ErrorClass.PERMANENT
        return ErrorClass.TRANSIENT

    if isinstance(error, aiohttp.ClientConnectorError):
        if isinstance(error.os_error, (socket.gaierror, ConnectionRefusedError)):
            return ErrorClass.PERMANENT
        return ErrorClass.TRANSIENT

    if isinstance(error, (socket.gaierror, ConnectionRefusedError)):
        return ErrorClass.PERMANENT

    # Collaborators that only hand back a message
    if _PERMANENT_MESSAGE_PATTERNS.search(str(error)):
        return ErrorClass.PERMANENT

    return ErrorClass.TRANSIENT


def status_after_failure(
    error_class: ErrorClass, retry_count: int, max_retries: int
) -> JobStatus:
    """
    Next job status after a failed attempt.

    ``retry_count`` already includes the attempt that just failed, since the
    claim increments it.
    """
    if error_class == ErrorClass.PERMANENT:
        return JobStatus.FAILED
    if retry_count >= max_retries:
        return JobStatus.FAILED
    return JobStatus.PENDING


def format_error(error: Optional[BaseException]) -> str:
    """Render an exception for the bounded ``last_error`` column."""
    if error is None:
        return ""
    message = str(error) or type(error).__name__
    return truncate_error(f"{type(error).__name__}: {message}")


def truncate_error(message: str, limit: int = MAX_ERROR_LENGTH) -> str:
    if len(message) <= limit:
        return message
    return message[:limit]
