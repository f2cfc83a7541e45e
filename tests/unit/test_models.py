"""Unit tests for models module."""

from datetime import datetime, timezone
from uuid import uuid4

from audit_queue.models import AuditRecord, AuditStatus, Job, JobStatus, StuckItem, TickResult


def test_job_status_enum():
    """Test JobStatus enum values."""
    assert JobStatus.PENDING.value == "pending"
    assert JobStatus.PROCESSING.value == "processing"
    assert JobStatus.COMPLETED.value == "completed"
    assert JobStatus.FAILED.value == "failed"


def test_audit_status_enum():
    """Test AuditStatus enum values."""
    assert AuditStatus.RUNNING.value == "running"
    assert AuditStatus("failed") == AuditStatus.FAILED


def test_job_accepts_status_string():
    """Test that a raw status string is converted to JobStatus."""
    job = Job(
        id=uuid4(),
        audit_id=uuid4(),
        status="processing",
        created_at=datetime.now(timezone.utc),
    )

    assert job.status == JobStatus.PROCESSING
    assert job.retry_count == 0
    assert job.started_at is None


def test_job_to_dict():
    """Test converting job to dictionary."""
    job_id = uuid4()
    audit_id = uuid4()
    now = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

    job = Job(
        id=job_id,
        audit_id=audit_id,
        status=JobStatus.FAILED,
        created_at=now,
        started_at=now,
        retry_count=3,
        last_error="RemoteHttpError: HTTP 500: boom",
    )

    job_dict = job.to_dict()

    assert job_dict["id"] == str(job_id)
    assert job_dict["audit_id"] == str(audit_id)
    assert job_dict["status"] == "failed"
    assert job_dict["created_at"] == now.isoformat()
    assert job_dict["started_at"] == now.isoformat()
    assert job_dict["completed_at"] is None
    assert job_dict["retry_count"] == 3
    assert job_dict["last_error"] == "RemoteHttpError: HTTP 500: boom"


def test_audit_record_has_report():
    """Test that an empty report does not count as a report."""
    audit = AuditRecord(id=uuid4(), url="https://example.com", status="pending", report_html="")
    assert audit.has_report is False

    audit.report_html = "<p>report</p>"
    assert audit.has_report is True


def test_audit_record_to_dict_omits_report_body():
    """Test that the summary carries a flag instead of the report."""
    audit = AuditRecord(
        id=uuid4(),
        url="https://example.com",
        status=AuditStatus.COMPLETED,
        report_html="<p>long report</p>",
    )

    audit_dict = audit.to_dict()

    assert audit_dict["has_report"] is True
    assert "report_html" not in audit_dict
    assert audit_dict["status"] == "completed"


def test_tick_result_defaults():
    """Test TickResult default values."""
    result = TickResult(processed=False, message="No pending jobs")

    assert result.will_retry is False
    assert result.continuing is False
    assert result.reconciled == []
    assert result.stuck_reclaimed == []
    assert result.orphans_enqueued == 0


def test_tick_result_serializes_stuck_items():
    """Test that stuck items serialize in the tick response."""
    result = TickResult(
        processed=False,
        message="No pending jobs",
        stuck_reclaimed=[
            StuckItem(job_id="j1", audit_id="a1", started_at=None, retry_count=1, action="reset")
        ],
    )

    data = result.model_dump()

    assert data["stuck_reclaimed"][0]["action"] == "reset"
