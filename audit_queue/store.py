"""Database store layer for the audit queue and audit records."""

from datetime import datetime
from typing import Dict, List, Optional, Sequence
from uuid import UUID

import asyncpg

from audit_queue.errors import AuditNotFoundError, JobNotFoundError
from audit_queue.models import AuditRecord, AuditStatus, Job, JobStatus


def _affected(result: str) -> int:
    """Extract the row count from a command tag like "UPDATE 1" or "INSERT 0 1"."""
    return int(result.split()[-1]) if result else 0


class JobStore:
    """Database layer for queue entry operations.

    Every state transition is a conditional UPDATE; a return value of False
    (or None) means another invocation changed the row first.
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def insert_job(self, id: UUID, audit_id: UUID, now: datetime) -> Job:
        """Insert a new pending job unconditionally."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO audit_queue (id, audit_id, status, created_at, retry_count)
                VALUES ($1, $2, $3, $4, 0)
                RETURNING *
                """,
                id,
                audit_id,
                JobStatus.PENDING.value,
                now,
            )
        return self._row_to_job(row)

    async def insert_job_if_absent(
        self, id: UUID, audit_id: UUID, now: datetime, active_only: bool = False
    ) -> Optional[Job]:
        """
        Insert a pending job unless the audit already has one.

        With ``active_only`` only pending/processing rows block the insert,
        otherwise any row does. A per-audit advisory lock serialises
        concurrent callers so two of them never both insert.
        Returns the new job, or None if nothing was inserted.
        """
        if active_only:
            blocking = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)
        else:
            blocking = tuple(status.value for status in JobStatus)

        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    "SELECT pg_advisory_xact_lock(hashtext($1))", str(audit_id)
                )
                row = await conn.fetchrow(
                    """
                    INSERT INTO audit_queue (id, audit_id, status, created_at, retry_count)
                    SELECT $1::uuid, $2::uuid, $3::text, $4::timestamptz, 0
                    WHERE NOT EXISTS (
                        SELECT 1 FROM audit_queue
                        WHERE audit_id = $2 AND status = ANY($5::text[])
                    )
                    RETURNING *
                    """,
                    id,
                    audit_id,
                    JobStatus.PENDING.value,
                    now,
                    list(blocking),
                )

        return self._row_to_job(row) if row else None

    async def get_job(self, job_id: UUID) -> Job:
        """Get a job by ID."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM audit_queue WHERE id = $1", job_id)

        if not row:
            raise JobNotFoundError(str(job_id))

        return self._row_to_job(row)

    async def list_jobs(
        self,
        status: Optional[str] = None,
        audit_id: Optional[UUID] = None,
        limit: int = 50,
    ) -> List[Job]:
        """List jobs with optional filters, newest first."""
        query = "SELECT * FROM audit_queue WHERE 1=1"
        params = []
        param_idx = 1

        if status:
            query += f" AND status = ${param_idx}"
            params.append(status)
            param_idx += 1

        if audit_id:
            query += f" AND audit_id = ${param_idx}"
            params.append(audit_id)
            param_idx += 1

        query += f" ORDER BY created_at DESC LIMIT ${param_idx}"
        params.append(limit)

        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(query, *params)

        return [self._row_to_job(row) for row in rows]

    async def list_pending_jobs(self, limit: int) -> List[Job]:
        """Pending jobs, oldest first."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM audit_queue
                WHERE status = $1
                ORDER BY created_at ASC
                LIMIT $2
                """,
                JobStatus.PENDING.value,
                limit,
            )
        return [self._row_to_job(row) for row in rows]

    async def list_stale_processing_jobs(
        self, cutoff: datetime, limit: int = 50
    ) -> List[Job]:
        """Processing jobs that started before ``cutoff``."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM audit_queue
                WHERE status = $1
                  AND started_at < $2
                ORDER BY started_at ASC
                LIMIT $3
                """,
                JobStatus.PROCESSING.value,
                cutoff,
                limit,
            )
        return [self._row_to_job(row) for row in rows]

    async def count_by_status(self) -> Dict[str, int]:
        """Number of jobs per status, with zero for absent statuses."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT status, COUNT(*) AS count FROM audit_queue GROUP BY status"
            )
        counts = {status.value: 0 for status in JobStatus}
        for row in rows:
            counts[row["status"]] = row["count"]
        return counts

    async def claim_job(self, job_id: UUID, now: datetime) -> Optional[Job]:
        """
        Claim a pending job.

        Moves the row to processing, stamps ``started_at`` and increments
        ``retry_count``. Returns None when the row was no longer pending.
        """
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE audit_queue
                SET status = $1,
                    started_at = $2,
                    retry_count = retry_count + 1
                WHERE id = $3
                  AND status = $4
                RETURNING *
                """,
                JobStatus.PROCESSING.value,
                now,
                job_id,
                JobStatus.PENDING.value,
            )
        return self._row_to_job(row) if row else None

    async def release_claim(self, job_id: UUID, started_at: datetime) -> bool:
        """Undo a claim: back to pending with the retry increment reverted."""
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE audit_queue
                SET status = $1,
                    started_at = NULL,
                    retry_count = GREATEST(retry_count - 1, 0)
                WHERE id = $2
                  AND status = $3
                  AND started_at = $4
                """,
                JobStatus.PENDING.value,
                job_id,
                JobStatus.PROCESSING.value,
                started_at,
            )
        return _affected(result) > 0

    async def complete_job(self, job_id: UUID, now: datetime) -> bool:
        """Mark a job completed unless it already is."""
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE audit_queue
                SET status = $1,
                    completed_at = $2,
                    last_error = NULL
                WHERE id = $3
                  AND status <> $1
                """,
                JobStatus.COMPLETED.value,
                now,
                job_id,
            )
        return _affected(result) > 0

    async def record_failure(
        self,
        job_id: UUID,
        new_status: JobStatus,
        error: str,
        now: datetime,
        expected_status: JobStatus = JobStatus.PROCESSING,
        expected_started_at: Optional[datetime] = None,
    ) -> bool:
        """
        Move a job to pending (retry) or failed after an unsuccessful attempt.

        Conditional on the row still holding ``expected_status`` and, when
        given, the same ``started_at``. ``started_at`` is cleared.
        """
        query = """
            UPDATE audit_queue
            SET status = $1,
                last_error = $2,
                started_at = NULL,
                completed_at = CASE WHEN $1 = 'failed' THEN $3::timestamptz ELSE NULL END
            WHERE id = $4
              AND status = $5
        """
        params = [
            new_status.value,
            error,
            now,
            job_id,
            expected_status.value,
        ]
        if expected_started_at is not None:
            query += " AND started_at = $6"
            params.append(expected_started_at)

        async with self.db_pool.acquire() as conn:
            result = await conn.execute(query, *params)
        return _affected(result) > 0

    async def reset_jobs_for_audit(self, audit_id: UUID) -> int:
        """Put every failed job of an audit back to pending with a fresh retry budget."""
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE audit_queue
                SET status = $1,
                    retry_count = 0,
                    started_at = NULL,
                    completed_at = NULL,
                    last_error = NULL
                WHERE audit_id = $2
                  AND status = $3
                """,
                JobStatus.PENDING.value,
                audit_id,
                JobStatus.FAILED.value,
            )
        return _affected(result)

    def _row_to_job(self, row: asyncpg.Record) -> Job:
        """Convert a database row to a Job model."""
        return Job(
            id=row["id"],
            audit_id=row["audit_id"],
            status=JobStatus(row["status"]),
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            retry_count=row["retry_count"],
            last_error=row["last_error"],
        )


class AuditStore:
    """Database layer for the audit records the queue works on."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def get_audit(self, audit_id: UUID) -> AuditRecord:
        """Point read of an audit with its customer's email."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT a.id, a.url, a.status, a.report_html, a.email_marker,
                       a.error_log, a.created_at, a.completed_at,
                       c.email AS customer_email
                FROM audits a
                LEFT JOIN customers c ON c.id = a.customer_id
                WHERE a.id = $1
                """,
                audit_id,
            )

        if not row:
            raise AuditNotFoundError(str(audit_id))

        return self._row_to_audit(row)

    async def mark_running(self, audit_id: UUID) -> bool:
        """Flag an audit as running if it has not finished."""
        return await self._set_status(
            audit_id,
            AuditStatus.RUNNING,
            expected=(AuditStatus.PENDING, AuditStatus.FAILED),
        )

    async def mark_completed(self, audit_id: UUID, now: datetime) -> bool:
        """Correct an audit's status to completed."""
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE audits
                SET status = $1,
                    completed_at = COALESCE(completed_at, $2)
                WHERE id = $3
                  AND status <> $1
                """,
                AuditStatus.COMPLETED.value,
                now,
                audit_id,
            )
        return _affected(result) > 0

    async def mark_failed(self, audit_id: UUID, error_log: str) -> bool:
        """Mark an audit failed, only while it is still pending or running."""
        return await self._set_status(
            audit_id,
            AuditStatus.FAILED,
            expected=(AuditStatus.PENDING, AuditStatus.RUNNING),
            error_log=error_log,
        )

    async def reset_failed_audit(self, audit_id: UUID) -> bool:
        """Return a failed audit to pending and clear its error log."""
        return await self._set_status(
            audit_id,
            AuditStatus.PENDING,
            expected=(AuditStatus.FAILED,),
            error_log=None,
            clear_error_log=True,
        )

    async def save_report(self, audit_id: UUID, report_html: str) -> None:
        """Store the generated report."""
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                "UPDATE audits SET report_html = $1 WHERE id = $2",
                report_html,
                audit_id,
            )

    async def swap_email_marker(
        self, audit_id: UUID, expected: Optional[str], new: Optional[str]
    ) -> bool:
        """Compare-and-swap the email marker. ``None`` matches a NULL column."""
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE audits
                SET email_marker = $1
                WHERE id = $2
                  AND email_marker IS NOT DISTINCT FROM $3
                """,
                new,
                audit_id,
                expected,
            )
        return _affected(result) > 0

    async def list_orphaned_audits(self, limit: int) -> List[UUID]:
        """
        Unfinished audits that have never had a queue entry.

        Audits with a committed email marker are excluded; a reservation
        sentinel does not count as committed.
        """
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT a.id
                FROM audits a
                LEFT JOIN audit_queue q ON q.audit_id = a.id
                WHERE a.status = ANY($1::text[])
                  AND (a.email_marker IS NULL OR a.email_marker LIKE 'sending\\_%')
                  AND q.id IS NULL
                ORDER BY a.created_at ASC
                LIMIT $2
                """,
                [AuditStatus.PENDING.value, AuditStatus.RUNNING.value],
                limit,
            )
        return [row["id"] for row in rows]

    async def _set_status(
        self,
        audit_id: UUID,
        status: AuditStatus,
        expected: Sequence[AuditStatus],
        error_log: Optional[str] = None,
        clear_error_log: bool = False,
    ) -> bool:
        if error_log is not None or clear_error_log:
            query = """
                UPDATE audits
                SET status = $1, error_log = $4
                WHERE id = $2 AND status = ANY($3::text[])
            """
            params = [status.value, audit_id, [s.value for s in expected], error_log]
        else:
            query = """
                UPDATE audits
                SET status = $1
                WHERE id = $2 AND status = ANY($3::text[])
            """
            params = [status.value, audit_id, [s.value for s in expected]]

        async with self.db_pool.acquire() as conn:
            result = await conn.execute(query, *params)
        return _affected(result) > 0

    def _row_to_audit(self, row: asyncpg.Record) -> AuditRecord:
        """Convert a database row to an AuditRecord."""
        return AuditRecord(
            id=row["id"],
            url=row["url"],
            status=AuditStatus(row["status"]),
            customer_email=row["customer_email"],
            report_html=row["report_html"],
            email_marker=row["email_marker"],
            error_log=row["error_log"],
            created_at=row["created_at"],
            completed_at=row["completed_at"],
        )
