"""Data models for queue entries and audit records."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    """Queue entry status values."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AuditStatus(str, Enum):
    """Audit record status values."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


UNFINISHED_AUDIT_STATUSES = (AuditStatus.PENDING, AuditStatus.RUNNING)


class Job:
    """Represents one row of the audit queue."""

    def __init__(
        self,
        id: UUID,
        audit_id: UUID,
        status: JobStatus,
        created_at: datetime,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
        retry_count: int = 0,
        last_error: Optional[str] = None,
    ):
        self.id = id
        self.audit_id = audit_id
        self.status = JobStatus(status) if isinstance(status, str) else status
        self.created_at = created_at
        self.started_at = started_at
        self.completed_at = completed_at
        self.retry_count = retry_count
        self.last_error = last_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to dictionary for JSON serialization."""
        return {
            "id": str(self.id),
            "audit_id": str(self.audit_id),
            "status": self.status.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "retry_count": self.retry_count,
            "last_error": self.last_error,
        }


class AuditRecord:
    """Represents the customer-facing audit row as seen by the coordinator."""

    def __init__(
        self,
        id: UUID,
        url: str,
        status: AuditStatus,
        customer_email: Optional[str] = None,
        report_html: Optional[str] = None,
        email_marker: Optional[str] = None,
        error_log: Optional[str] = None,
        created_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
    ):
        self.id = id
        self.url = url
        self.status = AuditStatus(status) if isinstance(status, str) else status
        self.customer_email = customer_email
        self.report_html = report_html
        self.email_marker = email_marker
        self.error_log = error_log
        self.created_at = created_at
        self.completed_at = completed_at

    @property
    def has_report(self) -> bool:
        return bool(self.report_html)

    def to_dict(self) -> Dict[str, Any]:
        """Summary without the report body."""
        return {
            "id": str(self.id),
            "url": self.url,
            "status": self.status.value,
            "customer_email": self.customer_email,
            "has_report": self.has_report,
            "email_marker": self.email_marker,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
        }


class StuckItem(BaseModel):
    """A processing job the reclaimer acted on."""

    job_id: str
    audit_id: str
    started_at: Optional[str] = None
    retry_count: int
    action: str


class TickResult(BaseModel):
    """Structured result of one coordinator invocation."""

    processed: bool
    message: str
    audit_id: Optional[str] = None
    job_id: Optional[str] = None
    will_retry: bool = False
    retry_count: Optional[int] = None
    continuing: bool = False
    reconciled: List[str] = Field(default_factory=list)
    orphans_enqueued: int = 0
    stuck_reclaimed: List[StuckItem] = Field(default_factory=list)
    request_id: Optional[str] = None
