"""Unit tests for error classification and retry policy."""

import asyncio
import socket
from unittest.mock import MagicMock

import aiohttp
import pytest

from audit_queue.errors import AuditNotFoundError, PermanentTargetError, RemoteHttpError
from audit_queue.models import JobStatus
from audit_queue.retry import (
    ErrorClass,
    classify_error,
    format_error,
    status_after_failure,
    truncate_error,
)


@pytest.mark.parametrize("status_code", [0, 401, 403, 404, 429, 500, 502, 503])
def test_pipeline_http_errors_are_transient(status_code):
    """A failing pipeline service is retried, even when it answers 401 or 404."""
    assert classify_error(RemoteHttpError(status_code, "try later")) == ErrorClass.TRANSIENT


def test_permanent_target_error():
    error = PermanentTargetError("Target site answered HTTP 404", status_code=404)
    assert classify_error(error) == ErrorClass.PERMANENT


def test_missing_audit_is_permanent():
    assert classify_error(AuditNotFoundError("abc")) == ErrorClass.PERMANENT


def test_timeout_is_transient():
    assert classify_error(asyncio.TimeoutError()) == ErrorClass.TRANSIENT


def test_aiohttp_response_error():
    request_info = MagicMock()
    error = aiohttp.ClientResponseError(request_info, (), status=403, message="Forbidden")
    assert classify_error(error) == ErrorClass.PERMANENT

    error = aiohttp.ClientResponseError(request_info, (), status=502, message="Bad Gateway")
    assert classify_error(error) == ErrorClass.TRANSIENT


def test_dns_failure_is_permanent():
    assert classify_error(socket.gaierror(-2, "Name or service not known")) == ErrorClass.PERMANENT


def test_connection_refused_is_permanent():
    assert classify_error(ConnectionRefusedError(111, "Connection refused")) == ErrorClass.PERMANENT


@pytest.mark.parametrize(
    "message",
    ["getaddrinfo ENOTFOUND example.invalid", "connect ECONNREFUSED 10.0.0.1:443"],
)
def test_permanent_messages(message):
    assert classify_error(RuntimeError(message)) == ErrorClass.PERMANENT


def test_unknown_error_is_transient():
    assert classify_error(RuntimeError("socket hang up")) == ErrorClass.TRANSIENT


@pytest.mark.parametrize(
    "message", ["template not found", "404 Not Found", "403 Forbidden", "Unauthorized"]
)
def test_status_words_in_messages_are_transient(message):
    assert classify_error(ValueError(message)) == ErrorClass.TRANSIENT


@pytest.mark.parametrize("status_code", [401, 403, 404])
def test_target_status_codes_are_permanent(status_code):
    error = PermanentTargetError(f"Target site answered HTTP {status_code}", status_code=status_code)
    assert classify_error(error) == ErrorClass.PERMANENT


def test_status_after_permanent_failure():
    assert status_after_failure(ErrorClass.PERMANENT, 1, 3) == JobStatus.FAILED


@pytest.mark.parametrize(
    "retry_count, expected",
    [(1, JobStatus.PENDING), (2, JobStatus.PENDING), (3, JobStatus.FAILED), (4, JobStatus.FAILED)],
)
def test_status_after_transient_failure(retry_count, expected):
    assert status_after_failure(ErrorClass.TRANSIENT, retry_count, 3) == expected


def test_format_error_includes_type():
    assert format_error(RemoteHttpError(500, "boom")) == "RemoteHttpError: HTTP 500: boom"
    assert format_error(asyncio.TimeoutError()).endswith("TimeoutError")
    assert format_error(None) == ""


def test_error_is_truncated():
    assert len(format_error(RuntimeError("x" * 5000))) == 1000
    assert truncate_error("short") == "short"
    assert truncate_error("abcdef", limit=3) == "abc"
