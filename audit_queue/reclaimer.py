"""Recovery of jobs left in processing by a crashed or timed-out tick."""

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, List

from audit_queue.email_marker import is_committed
from audit_queue.errors import AuditNotFoundError
from audit_queue.logging_utils import LoggerLike
from audit_queue.models import AuditStatus, Job, JobStatus, StuckItem

if TYPE_CHECKING:
    from audit_queue.coordinator import QueueCoordinator


class StuckJobTimeout(asyncio.TimeoutError):
    """A job sat in processing for longer than the staleness threshold."""


async def reclaim_stuck_jobs(
    coordinator: "QueueCoordinator",
    now: datetime,
    logger: LoggerLike,
    limit: int = 50,
) -> List[StuckItem]:
    """
    Reset or finish processing jobs whose ``started_at`` is older than the
    staleness threshold.

    Per job:
    - email committed or audit completed: job completed
    - report present but no email: back to pending while retries remain so a
      later tick sends it, otherwise completed on the report
    - no evidence: audit marked failed, job back to pending or failed by the
      retry cap

    Every update is conditional on the job still being in processing with the
    same ``started_at``, so a job that finished in the meantime is left alone.
    """
    config = coordinator.config
    cutoff = now - config.stale_after
    stale_jobs = await coordinator.job_store.list_stale_processing_jobs(cutoff, limit)
    if not stale_jobs:
        return []

    logger.warning(f"Found {len(stale_jobs)} stuck jobs started before {cutoff.isoformat()}")
    minutes = config.stale_after_seconds // 60

    reclaimed = []
    for job in stale_jobs:
        action = await _reclaim_one(coordinator, job, now, minutes, logger)
        reclaimed.append(
            StuckItem(
                job_id=str(job.id),
                audit_id=str(job.audit_id),
                started_at=job.started_at.isoformat() if job.started_at else None,
                retry_count=job.retry_count,
                action=action,
            )
        )
    return reclaimed


async def _reclaim_one(
    coordinator: "QueueCoordinator",
    job: Job,
    now: datetime,
    minutes: int,
    logger: LoggerLike,
) -> str:
    try:
        audit = await coordinator.audit_store.get_audit(job.audit_id)
    except AuditNotFoundError as e:
        await coordinator.reconcile(job, error=e, log=logger)
        return "failed"

    if is_committed(audit.email_marker) or audit.status == AuditStatus.COMPLETED:
        await coordinator.reconcile(job, log=logger)
        return "completed"

    if audit.has_report:
        if job.retry_count < coordinator.config.max_retries:
            reset = await coordinator.job_store.record_failure(
                job.id,
                JobStatus.PENDING,
                "Stuck after report was saved, email pending",
                now,
                expected_started_at=job.started_at,
            )
            if reset:
                logger.info(f"Stuck job {job.id} reset to pending to send its email")
            return "reset"
        await coordinator.reconcile(job, log=logger)
        return "completed"

    error = StuckJobTimeout(f"Processing timeout - stuck for > {minutes} minutes")
    result = await coordinator.reconcile(job, error=error, log=logger)
    return "reset" if result.will_retry else "failed"
