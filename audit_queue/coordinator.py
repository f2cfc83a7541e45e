"""Claim and dispatch loop for the audit queue.

Each call to :meth:`QueueCoordinator.tick` is independent: it picks the oldest
pending audit, claims it with a conditional update, runs the audit pipeline,
sends the report email and records the outcome. Overlapping ticks coordinate
only through the database.
"""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, List, Optional, Set
from uuid import UUID

from audit_queue.config import AuditQueueConfig
from audit_queue.email_marker import (
    MarkerState,
    classify_marker,
    is_committed,
    make_committed,
    make_reservation,
)
from audit_queue.errors import AuditNotFoundError, AuditQueueError, JobNotFoundError
from audit_queue.logging_utils import LoggerLike, bind_request_id, get_request_id
from audit_queue.models import AuditRecord, AuditStatus, Job, JobStatus, TickResult
from audit_queue.orphans import enqueue_orphaned_audits
from audit_queue.reclaimer import reclaim_stuck_jobs
from audit_queue.retry import (
    ErrorClass,
    classify_error,
    format_error,
    status_after_failure,
)
from audit_queue.store import AuditStore, JobStore


class EmailOutcome(str, Enum):
    """Result of one attempt to deliver a report email."""

    SENT = "sent"
    ALREADY_SENT = "already_sent"
    IN_FLIGHT = "in_flight"
    FAILED = "failed"
    NO_REPORT = "no_report"


class RunOutcome(str, Enum):
    """Result of running a claimed job, before reconciliation."""

    DONE = "done"
    IN_FLIGHT = "in_flight"


def has_completion_evidence(audit: AuditRecord) -> bool:
    """A report, a committed email marker or a completed status means the audit is done."""
    return (
        audit.has_report
        or is_committed(audit.email_marker)
        or audit.status == AuditStatus.COMPLETED
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueueCoordinator:
    """
    Runs one step of the audit queue per tick.

    Args:
        config: Audit queue configuration
        job_store: Store for queue entries
        audit_store: Store for audit records
        pipeline: Object with ``async run_audit(audit_id) -> str``
        email_sender: Object with
            ``async send_report_email(to_address, target_url, audit_id, report_html)``
        logger: Logger instance
        clock: Callable returning the current timezone-aware time
        soft_deadline: Seconds a tick waits for a dispatch, defaults to
            the configured execution limit minus its margin
    """

    def __init__(
        self,
        config: AuditQueueConfig,
        job_store: JobStore,
        audit_store: AuditStore,
        pipeline: Any,
        email_sender: Any,
        logger: Optional[logging.Logger] = None,
        clock: Optional[Callable[[], datetime]] = None,
        soft_deadline: Optional[float] = None,
    ):
        self.config = config
        self.job_store = job_store
        self.audit_store = audit_store
        self.pipeline = pipeline
        self.email_sender = email_sender
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock or _utcnow
        self.soft_deadline = (
            soft_deadline if soft_deadline is not None else config.soft_deadline_seconds
        )
        self._background: Set[asyncio.Task] = set()

    async def tick(self, request_id: Optional[str] = None) -> TickResult:
        """
        Process at most one pending audit.

        When nothing is pending, orphaned audits are enqueued and stuck jobs
        reclaimed instead.
        """
        request_id = request_id or get_request_id()
        log = bind_request_id(self.logger, request_id)

        result = await self._tick(log)
        result.request_id = request_id
        log.info(f"Tick finished: {result.message}")
        return result

    async def _tick(self, log: LoggerLike) -> TickResult:
        candidates = await self.job_store.list_pending_jobs(
            self.config.candidate_batch_size
        )

        if not candidates:
            log.info("No pending jobs, checking for orphaned audits and stuck jobs")
            orphans = await enqueue_orphaned_audits(
                self.job_store,
                self.audit_store,
                now=self.clock(),
                limit=self.config.orphan_batch_size,
                logger=log,
            )
            stuck = await reclaim_stuck_jobs(self, now=self.clock(), logger=log)
            return TickResult(
                processed=False,
                message="No pending jobs",
                orphans_enqueued=len(orphans),
                stuck_reclaimed=stuck,
            )

        reconciled: List[str] = []
        for candidate in candidates:
            # The listing may come from a lagging read; re-check the row itself
            try:
                job = await self.job_store.get_job(candidate.id)
            except JobNotFoundError:
                continue
            if job.status != JobStatus.PENDING:
                continue

            try:
                audit = await self.audit_store.get_audit(job.audit_id)
            except AuditNotFoundError as e:
                log.warning(f"Job {job.id} references missing audit {job.audit_id}")
                await self.job_store.record_failure(
                    job.id,
                    JobStatus.FAILED,
                    format_error(e),
                    self.clock(),
                    expected_status=JobStatus.PENDING,
                )
                continue

            if is_committed(audit.email_marker) or audit.status == AuditStatus.COMPLETED:
                await self._complete(job, audit)
                reconciled.append(str(audit.id))
                log.info(f"Job {job.id} already done for audit {audit.id}, marked completed")
                continue

            state = classify_marker(
                audit.email_marker, self.clock(), self.config.reservation_grace
            )
            if state == MarkerState.IN_FLIGHT:
                log.info(f"Audit {audit.id} has an email in flight, skipping job {job.id}")
                continue

            claimed = await self.job_store.claim_job(job.id, self.clock())
            if claimed is None:
                log.info(f"Lost claim race for job {job.id}")
                return TickResult(
                    processed=False,
                    message="Lost claim race",
                    job_id=str(job.id),
                    audit_id=str(job.audit_id),
                    reconciled=reconciled,
                )

            log.info(
                f"Claimed job {claimed.id} for audit {claimed.audit_id} "
                f"(attempt {claimed.retry_count}/{self.config.max_retries})"
            )
            result = await self._dispatch(claimed, log)
            result.reconciled = reconciled + result.reconciled
            return result

        stuck = await reclaim_stuck_jobs(self, now=self.clock(), logger=log)
        return TickResult(
            processed=False,
            message="No claimable jobs",
            reconciled=reconciled,
            stuck_reclaimed=stuck,
        )

    async def _dispatch(self, job: Job, log: LoggerLike) -> TickResult:
        """Race the job against the soft deadline; past it, the job keeps running."""
        task = asyncio.ensure_future(self._process(job, log))
        try:
            return await asyncio.wait_for(asyncio.shield(task), self.soft_deadline)
        except asyncio.TimeoutError:
            self._background.add(task)
            task.add_done_callback(self._on_background_done)
            log.warning(
                f"Job {job.id} still running after {self.soft_deadline}s, "
                f"continuing in background"
            )
            return TickResult(
                processed=True,
                message="Processing continues in background",
                audit_id=str(job.audit_id),
                job_id=str(job.id),
                retry_count=job.retry_count,
                continuing=True,
            )

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error(
                f"Background dispatch failed: {error}",
                exc_info=(type(error), error, error.__traceback__),
            )

    async def drain_background(self, timeout: Optional[float] = None) -> None:
        """Wait for dispatches that outlived their tick."""
        if not self._background:
            return
        self.logger.info(f"Waiting for {len(self._background)} background dispatches")
        await asyncio.wait(list(self._background), timeout=timeout)

    async def _process(self, job: Job, log: LoggerLike) -> TickResult:
        try:
            outcome = await self.run_job(job, log)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(f"Job {job.id} failed: {str(e)}", exc_info=True)
            return await self.reconcile(job, error=e, log=log)

        if outcome == RunOutcome.IN_FLIGHT:
            await self.job_store.release_claim(job.id, job.started_at)
            log.info(f"Released claim on job {job.id}, another sender is in flight")
            return TickResult(
                processed=False,
                message="Email send already in flight",
                audit_id=str(job.audit_id),
                job_id=str(job.id),
                retry_count=max(job.retry_count - 1, 0),
            )

        return await self.reconcile(job, log=log)

    async def run_job(self, job: Job, log: LoggerLike) -> RunOutcome:
        """
        Produce the report if needed, then deliver it.

        Raises whatever the pipeline raises; the caller reconciles.
        """
        audit = await self.audit_store.get_audit(job.audit_id)
        state = classify_marker(
            audit.email_marker, self.clock(), self.config.reservation_grace
        )
        if state == MarkerState.COMMITTED:
            log.info(f"Email for audit {audit.id} already sent")
            return RunOutcome.DONE
        if state == MarkerState.IN_FLIGHT:
            return RunOutcome.IN_FLIGHT

        if audit.has_report:
            outcome = await self.deliver_report(audit.id, log)
            if outcome == EmailOutcome.IN_FLIGHT:
                return RunOutcome.IN_FLIGHT
            return RunOutcome.DONE

        token = make_reservation(self.clock())
        if not await self.audit_store.swap_email_marker(
            audit.id, audit.email_marker, token
        ):
            log.info(f"Could not reserve audit {audit.id}, another sender got there first")
            return RunOutcome.IN_FLIGHT

        try:
            await self.audit_store.mark_running(audit.id)
            log.info(f"Running audit pipeline for audit {audit.id} ({audit.url})")
            report_html = await self.pipeline.run_audit(audit.id)
            await self.audit_store.save_report(audit.id, report_html)
        except Exception:
            await self._release_reservation(audit.id, token, log)
            raise

        log.info(f"Report saved for audit {audit.id}")
        await self.deliver_report(audit.id, log, held_token=token)
        return RunOutcome.DONE

    async def deliver_report(
        self,
        audit_id: UUID,
        log: Optional[LoggerLike] = None,
        held_token: Optional[str] = None,
    ) -> EmailOutcome:
        """
        Send the report email at most once.

        Re-reads the audit, refreshes the reservation with a conditional
        update and only then calls the sender. ``held_token`` is a reservation
        the caller already owns. A sender failure releases the reservation so
        the email can be sent again later.
        """
        log = log or self.logger
        audit = await self.audit_store.get_audit(audit_id)
        state = classify_marker(
            audit.email_marker, self.clock(), self.config.reservation_grace
        )
        if state == MarkerState.COMMITTED:
            return EmailOutcome.ALREADY_SENT
        if state == MarkerState.IN_FLIGHT and audit.email_marker != held_token:
            log.info(f"Email for audit {audit_id} is in flight elsewhere")
            return EmailOutcome.IN_FLIGHT
        if not audit.has_report:
            if held_token is not None:
                await self._release_reservation(audit_id, held_token, log)
            return EmailOutcome.NO_REPORT

        token = make_reservation(self.clock())
        if not await self.audit_store.swap_email_marker(
            audit_id, audit.email_marker, token
        ):
            current = await self.audit_store.get_audit(audit_id)
            if is_committed(current.email_marker):
                return EmailOutcome.ALREADY_SENT
            log.info(f"Lost email reservation race for audit {audit_id}")
            return EmailOutcome.IN_FLIGHT

        try:
            await self.email_sender.send_report_email(
                audit.customer_email, audit.url, audit.id, audit.report_html
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._release_reservation(audit_id, token, log)
            log.error(f"Failed to send report email for audit {audit_id}: {e}")
            return EmailOutcome.FAILED

        if not await self.audit_store.swap_email_marker(
            audit_id, token, make_committed(self.clock())
        ):
            log.warning(f"Email marker for audit {audit_id} changed while sending")
        log.info(f"Report email sent for audit {audit_id}")
        return EmailOutcome.SENT

    async def _release_reservation(
        self, audit_id: UUID, token: str, log: LoggerLike
    ) -> None:
        try:
            await self.audit_store.swap_email_marker(audit_id, token, None)
        except Exception as e:
            # Left in place, the reservation is treated as abandoned after the grace window
            log.warning(f"Could not release email reservation for audit {audit_id}: {e}")

    async def reconcile(
        self,
        job: Job,
        error: Optional[BaseException] = None,
        log: Optional[LoggerLike] = None,
    ) -> TickResult:
        """
        Derive a job's terminal state from the audit record.

        Evidence of completion wins over ``error``. Without evidence the error
        is classified and the job is retried or failed. Updates are
        conditional, so calling this twice for the same outcome is harmless.
        """
        log = log or self.logger
        try:
            audit = await self.audit_store.get_audit(job.audit_id)
        except AuditNotFoundError as e:
            audit = None
            error = error or e

        if audit is not None and has_completion_evidence(audit):
            await self._complete(job, audit)
            log.info(f"Job {job.id} completed for audit {audit.id}")
            return TickResult(
                processed=True,
                message="Audit completed",
                audit_id=str(job.audit_id),
                job_id=str(job.id),
                retry_count=job.retry_count,
            )

        if error is None:
            error = AuditQueueError("Processing finished without a report")

        error_class = classify_error(error)
        message = format_error(error)
        new_status = status_after_failure(
            error_class, job.retry_count, self.config.max_retries
        )

        now = self.clock()
        if job.status == JobStatus.PROCESSING:
            recorded = await self.job_store.record_failure(
                job.id,
                new_status,
                message,
                now,
                expected_started_at=job.started_at,
            )
        else:
            recorded = await self.job_store.record_failure(
                job.id, new_status, message, now, expected_status=job.status
            )

        if not recorded:
            log.info(f"Job {job.id} changed since it was read, leaving it and its audit alone")
        elif audit is not None:
            await self.audit_store.mark_failed(audit.id, message)

        will_retry = new_status == JobStatus.PENDING
        if will_retry:
            log.info(
                f"Job {job.id} will retry ({job.retry_count}/{self.config.max_retries}): "
                f"{message}"
            )
        else:
            reason = "permanent error" if error_class == ErrorClass.PERMANENT else "retries exhausted"
            log.error(f"Job {job.id} failed ({reason}): {message}")

        return TickResult(
            processed=True,
            message="Audit failed, will retry" if will_retry else "Audit failed",
            audit_id=str(job.audit_id),
            job_id=str(job.id),
            will_retry=will_retry,
            retry_count=job.retry_count,
        )

    async def _complete(self, job: Job, audit: AuditRecord) -> None:
        now = self.clock()
        await self.job_store.complete_job(job.id, now)
        if audit.status != AuditStatus.COMPLETED:
            await self.audit_store.mark_completed(audit.id, now)
