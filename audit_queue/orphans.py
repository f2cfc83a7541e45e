"""Enqueueing of audits that never got a queue entry."""

from datetime import datetime
from typing import List
from uuid import UUID, uuid4

from audit_queue.logging_utils import LoggerLike
from audit_queue.store import AuditStore, JobStore


async def enqueue_orphaned_audits(
    job_store: JobStore,
    audit_store: AuditStore,
    now: datetime,
    limit: int,
    logger: LoggerLike,
) -> List[UUID]:
    """
    Create a pending job for each unfinished audit that has no job at all.

    Returns the ids of the audits that got a new job. Inserts are
    insert-if-absent, so concurrent sweeps never double-enqueue an audit.
    """
    audit_ids = await audit_store.list_orphaned_audits(limit)
    if not audit_ids:
        return []

    enqueued = []
    for audit_id in audit_ids:
        job = await job_store.insert_job_if_absent(uuid4(), audit_id, now)
        if job is not None:
            enqueued.append(audit_id)
            logger.info(f"Enqueued orphaned audit {audit_id} as job {job.id}")

    if enqueued:
        logger.warning(f"Enqueued {len(enqueued)} orphaned audits")
    return enqueued
