"""Unit tests for the orphan reconciler."""

import asyncio
import logging
from datetime import timedelta

import pytest

from audit_queue.email_marker import make_committed, make_reservation
from audit_queue.models import AuditStatus, JobStatus
from audit_queue.orphans import enqueue_orphaned_audits

logger = logging.getLogger("tests.orphans")


@pytest.mark.asyncio
async def test_orphaned_audits_are_enqueued(job_store, audit_store, clock):
    first = audit_store.add(created_at=clock() - timedelta(minutes=2))
    second = audit_store.add(created_at=clock() - timedelta(minutes=1), status=AuditStatus.RUNNING)
    reserved = audit_store.add(
        created_at=clock(), email_marker=make_reservation(clock())
    )
    audit_store.add(created_at=clock(), status=AuditStatus.COMPLETED)
    audit_store.add(created_at=clock(), status=AuditStatus.FAILED)
    audit_store.add(created_at=clock(), email_marker=make_committed(clock()))
    queued = audit_store.add(created_at=clock())
    job_store.add(queued.id, created_at=clock())

    enqueued = await enqueue_orphaned_audits(job_store, audit_store, clock(), 50, logger)

    assert enqueued == [first.id, second.id, reserved.id]
    for audit_id in enqueued:
        jobs = job_store.for_audit(audit_id)
        assert len(jobs) == 1
        assert jobs[0].status == JobStatus.PENDING
        assert jobs[0].retry_count == 0


@pytest.mark.asyncio
async def test_concurrent_sweeps_enqueue_once(job_store, audit_store, clock):
    """Two overlapping sweeps never create two jobs for one audit."""
    audits = [audit_store.add(created_at=clock()) for _ in range(3)]

    first, second = await asyncio.gather(
        enqueue_orphaned_audits(job_store, audit_store, clock(), 50, logger),
        enqueue_orphaned_audits(job_store, audit_store, clock(), 50, logger),
    )

    assert len(first) + len(second) == 3
    for audit in audits:
        assert len(job_store.for_audit(audit.id)) == 1


@pytest.mark.asyncio
async def test_second_sweep_finds_nothing(job_store, audit_store, clock):
    audit_store.add(created_at=clock())

    await enqueue_orphaned_audits(job_store, audit_store, clock(), 50, logger)
    again = await enqueue_orphaned_audits(job_store, audit_store, clock(), 50, logger)

    assert again == []
    assert len(job_store.jobs) == 1


@pytest.mark.asyncio
async def test_sweep_respects_limit(job_store, audit_store, clock):
    for minutes in range(5):
        audit_store.add(created_at=clock() + timedelta(minutes=minutes))

    enqueued = await enqueue_orphaned_audits(job_store, audit_store, clock(), 2, logger)

    assert len(enqueued) == 2


@pytest.mark.asyncio
async def test_tick_runs_sweep_when_queue_is_empty(coordinator, job_store, audit_store, clock):
    audit = audit_store.add(created_at=clock())

    result = await coordinator.tick()

    assert result.processed is False
    assert result.orphans_enqueued == 1
    assert len(job_store.for_audit(audit.id)) == 1

    # The next tick picks up the new job
    result = await coordinator.tick()
    assert result.processed is True
    assert result.audit_id == str(audit.id)
