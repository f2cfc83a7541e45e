"""High-level service layer for queue administration."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

import asyncpg

from audit_queue.config import AuditQueueConfig
from audit_queue.models import Job, JobStatus
from audit_queue.store import AuditStore, JobStore


class QueueService:
    """High-level API for enqueueing and inspecting audit jobs."""

    def __init__(
        self,
        config: AuditQueueConfig,
        db_pool: Optional[asyncpg.Pool] = None,
        logger: Optional[logging.Logger] = None,
        job_store: Optional[JobStore] = None,
        audit_store: Optional[AuditStore] = None,
    ):
        self.config = config
        self.job_store = job_store or JobStore(db_pool)
        self.audit_store = audit_store or AuditStore(db_pool)
        self.logger = logger or logging.getLogger(__name__)

    async def enqueue_audit(self, audit_id: UUID) -> Job:
        """
        Queue an audit for processing.

        Returns the audit's existing pending or processing job instead of
        creating a second one.

        Raises:
            AuditNotFoundError: If the audit does not exist
        """
        await self.audit_store.get_audit(audit_id)

        job = await self.job_store.insert_job_if_absent(
            uuid4(), audit_id, datetime.now(timezone.utc), active_only=True
        )
        if job is not None:
            self.logger.info(f"Enqueued job {job.id} for audit {audit_id}")
            return job

        active = await self._active_job(audit_id)
        self.logger.info(f"Audit {audit_id} already queued as job {active.id}")
        return active

    async def get_job(self, job_id: UUID) -> Job:
        """Get a job by ID."""
        return await self.job_store.get_job(job_id)

    async def list_jobs(
        self,
        *,
        status: Optional[str] = None,
        audit_id: Optional[UUID] = None,
        limit: int = 50,
    ) -> List[Job]:
        """List jobs with optional filters."""
        return await self.job_store.list_jobs(status=status, audit_id=audit_id, limit=limit)

    async def queue_status(self) -> Dict[str, Any]:
        """Counts per status plus the jobs currently considered stuck."""
        now = datetime.now(timezone.utc)
        counts = await self.job_store.count_by_status()
        stuck = await self.job_store.list_stale_processing_jobs(
            now - self.config.stale_after
        )
        pending = await self.job_store.list_pending_jobs(1)

        return {
            "counts": counts,
            "stuck_jobs": [job.to_dict() for job in stuck],
            "oldest_pending": pending[0].to_dict() if pending else None,
            "checked_at": now.isoformat(),
        }

    async def retry_audit(self, audit_id: UUID) -> Dict[str, Any]:
        """
        Give a failed audit a fresh retry budget.

        Failed jobs go back to pending with ``retry_count`` 0 and a failed
        audit goes back to pending. An audit without any job gets a new one.

        Raises:
            AuditNotFoundError: If the audit does not exist
        """
        await self.audit_store.get_audit(audit_id)

        jobs_reset = await self.job_store.reset_jobs_for_audit(audit_id)
        created = None
        if jobs_reset == 0:
            created = await self.job_store.insert_job_if_absent(
                uuid4(), audit_id, datetime.now(timezone.utc), active_only=True
            )
        audit_reset = await self.audit_store.reset_failed_audit(audit_id)

        self.logger.info(
            f"Retry requested for audit {audit_id}: {jobs_reset} jobs reset, "
            f"audit reset={audit_reset}"
        )
        return {
            "audit_id": str(audit_id),
            "jobs_reset": jobs_reset,
            "job_created": str(created.id) if created else None,
            "audit_reset": audit_reset,
        }

    async def _active_job(self, audit_id: UUID) -> Job:
        jobs = await self.job_store.list_jobs(audit_id=audit_id, limit=50)
        for job in jobs:
            if job.status in (JobStatus.PENDING, JobStatus.PROCESSING):
                return job
        # The active job finished between the insert attempt and this read
        return jobs[0]
