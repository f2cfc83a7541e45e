"""Unit tests for errors module."""

from audit_queue.errors import (
    AuditNotFoundError,
    AuditQueueError,
    AuthTokenError,
    EmailDeliveryError,
    JobNotFoundError,
    PermanentTargetError,
    RemoteHttpError,
)


def test_audit_queue_error_base_class():
    """Test base exception class."""
    error = AuditQueueError("Test error")
    assert str(error) == "Test error"
    assert isinstance(error, Exception)


def test_job_not_found_error():
    """Test JobNotFoundError."""
    error = JobNotFoundError("abc123")
    assert isinstance(error, AuditQueueError)
    assert error.job_id == "abc123"
    assert str(error) == "Job abc123 not found"


def test_audit_not_found_error_custom_message():
    """Test AuditNotFoundError with an explicit message."""
    error = AuditNotFoundError("abc123", "Audit row deleted")
    assert isinstance(error, AuditQueueError)
    assert error.audit_id == "abc123"
    assert str(error) == "Audit row deleted"


def test_auth_token_error():
    """Test AuthTokenError."""
    error = AuthTokenError("Invalid token")
    assert isinstance(error, AuditQueueError)
    assert str(error) == "Invalid token"


def test_remote_http_error():
    """Test RemoteHttpError."""
    error = RemoteHttpError(503, "Service unavailable", response_body="busy")
    assert isinstance(error, AuditQueueError)
    assert error.status_code == 503
    assert error.response_body == "busy"
    assert str(error) == "HTTP 503: Service unavailable"


def test_permanent_target_error():
    """Test PermanentTargetError."""
    error = PermanentTargetError("Target site answered HTTP 403", status_code=403)
    assert isinstance(error, AuditQueueError)
    assert error.status_code == 403


def test_email_delivery_error():
    """Test EmailDeliveryError."""
    error = EmailDeliveryError("SES rejected the message")
    assert isinstance(error, AuditQueueError)
    assert str(error) == "SES rejected the message"
