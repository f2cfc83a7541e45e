"""Audit job queue coordinator."""

from audit_queue.config import AuditQueueConfig
from audit_queue.coordinator import EmailOutcome, QueueCoordinator
from audit_queue.ddl import AUDIT_QUEUE_TABLE_DDL, AUDITS_TABLE_DDL, SCHEMA_DDL
from audit_queue.errors import (
    AuditNotFoundError,
    AuditQueueError,
    AuthTokenError,
    EmailDeliveryError,
    JobNotFoundError,
    PermanentTargetError,
    RemoteHttpError,
)
from audit_queue.models import AuditRecord, AuditStatus, Job, JobStatus, StuckItem, TickResult
from audit_queue.service import QueueService
from audit_queue.store import AuditStore, JobStore

__version__ = "0.1.0"

__all__ = [
    "AuditQueueConfig",
    "EmailOutcome",
    "QueueCoordinator",
    "AUDIT_QUEUE_TABLE_DDL",
    "AUDITS_TABLE_DDL",
    "SCHEMA_DDL",
    "AuditNotFoundError",
    "AuditQueueError",
    "AuthTokenError",
    "EmailDeliveryError",
    "JobNotFoundError",
    "PermanentTargetError",
    "RemoteHttpError",
    "AuditRecord",
    "AuditStatus",
    "Job",
    "JobStatus",
    "StuckItem",
    "TickResult",
    "QueueService",
    "AuditStore",
    "JobStore",
]
