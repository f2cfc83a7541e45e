"""FastAPI router for the audit queue HTTP API."""

import logging
import secrets
from typing import Callable, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel

from audit_queue.coordinator import EmailOutcome, QueueCoordinator
from audit_queue.errors import AuditNotFoundError, JobNotFoundError
from audit_queue.logging_utils import get_request_id
from audit_queue.models import JobStatus, TickResult
from audit_queue.service import QueueService


logger = logging.getLogger(__name__)


class JobResponse(BaseModel):
    """Response model for job details."""

    id: str
    audit_id: str
    status: str
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    retry_count: int
    last_error: Optional[str] = None


class QueueStatusResponse(BaseModel):
    """Response model for queue status."""

    counts: Dict[str, int]
    stuck_jobs: List[JobResponse]
    oldest_pending: Optional[JobResponse] = None
    checked_at: str


class RetryAuditResponse(BaseModel):
    """Response model for an admin retry."""

    audit_id: str
    jobs_reset: int
    job_created: Optional[str] = None
    audit_reset: bool


class SendEmailResponse(BaseModel):
    """Response model for an admin email re-send."""

    audit_id: str
    outcome: str


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def _matches(candidate: Optional[str], expected: str) -> bool:
    return candidate is not None and secrets.compare_digest(candidate, expected)


def _parse_uuid(value: str, what: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid {what} format") from e


def create_queue_router(
    coordinator_factory: Callable[[], QueueCoordinator],
    service_factory: Callable[[], QueueService],
    queue_secret: Optional[str] = None,
    admin_secret: Optional[str] = None,
) -> APIRouter:
    """
    Create FastAPI router for the audit queue.

    Args:
        coordinator_factory: Callable that returns the QueueCoordinator
        service_factory: Callable that returns a QueueService instance
        queue_secret: Optional shared secret for the tick endpoint
        admin_secret: Optional bearer secret for the admin endpoints

    Returns:
        APIRouter instance
    """
    router = APIRouter()

    if not admin_secret:
        logger.warning("Admin secret not configured, admin endpoints are unprotected")

    async def get_coordinator() -> QueueCoordinator:
        """Dependency to get the QueueCoordinator."""
        return coordinator_factory()

    async def get_service() -> QueueService:
        """Dependency to get QueueService instance."""
        return service_factory()

    async def verify_queue_secret(
        authorization: Optional[str] = Header(None),
        secret: Optional[str] = Query(None),
    ) -> None:
        """Accept the tick secret as a bearer token or a ``secret`` query parameter."""
        if queue_secret:
            if not (
                _matches(_bearer_token(authorization), queue_secret)
                or _matches(secret, queue_secret)
            ):
                raise HTTPException(status_code=401, detail="Unauthorized")

    async def verify_admin_secret(authorization: Optional[str] = Header(None)) -> None:
        """Verify the admin bearer token if configured."""
        if admin_secret:
            if not _matches(_bearer_token(authorization), admin_secret):
                raise HTTPException(status_code=401, detail="Unauthorized")

    @router.get("/health")
    async def health():
        """Liveness check."""
        return {"status": "ok"}

    @router.api_route(
        "/process-queue", methods=["GET", "POST"], response_model=TickResult
    )
    async def process_queue(
        request: Request,
        coordinator: QueueCoordinator = Depends(get_coordinator),
        _: None = Depends(verify_queue_secret),
    ):
        """Run one coordinator tick."""
        request_id = get_request_id(request.headers)
        try:
            return await coordinator.tick(request_id=request_id)
        except Exception as e:
            logger.exception(f"[{request_id}] Error processing queue")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    @router.get(
        "/admin/queue-status",
        response_model=QueueStatusResponse,
        dependencies=[Depends(verify_admin_secret)],
    )
    async def queue_status(service: QueueService = Depends(get_service)):
        """Job counts per status and stuck jobs."""
        try:
            return QueueStatusResponse(**await service.queue_status())
        except Exception as e:
            logger.exception("Error getting queue status")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    @router.get(
        "/admin/jobs",
        response_model=List[JobResponse],
        dependencies=[Depends(verify_admin_secret)],
    )
    async def list_jobs(
        status: Optional[JobStatus] = Query(None),
        audit_id: Optional[str] = Query(None),
        limit: int = Query(50, ge=1, le=1000),
        service: QueueService = Depends(get_service),
    ):
        """List jobs with optional filters."""
        audit_uuid = _parse_uuid(audit_id, "audit ID") if audit_id else None
        try:
            jobs = await service.list_jobs(
                status=status.value if status else None,
                audit_id=audit_uuid,
                limit=limit,
            )
            return [JobResponse(**job.to_dict()) for job in jobs]
        except Exception as e:
            logger.exception("Error listing jobs")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    @router.get(
        "/admin/jobs/{job_id}",
        response_model=JobResponse,
        dependencies=[Depends(verify_admin_secret)],
    )
    async def get_job(job_id: str, service: QueueService = Depends(get_service)):
        """Get job details by ID."""
        job_uuid = _parse_uuid(job_id, "job ID")
        try:
            job = await service.get_job(job_uuid)
            return JobResponse(**job.to_dict())
        except JobNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except Exception as e:
            logger.exception("Error getting job")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    @router.post(
        "/admin/audits/{audit_id}/enqueue",
        response_model=JobResponse,
        dependencies=[Depends(verify_admin_secret)],
    )
    async def enqueue_audit(audit_id: str, service: QueueService = Depends(get_service)):
        """Queue an audit, or return its active job."""
        audit_uuid = _parse_uuid(audit_id, "audit ID")
        try:
            job = await service.enqueue_audit(audit_uuid)
            return JobResponse(**job.to_dict())
        except AuditNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except Exception as e:
            logger.exception("Error enqueueing audit")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    @router.post(
        "/admin/audits/{audit_id}/retry",
        response_model=RetryAuditResponse,
        dependencies=[Depends(verify_admin_secret)],
    )
    async def retry_audit(audit_id: str, service: QueueService = Depends(get_service)):
        """Reset a failed audit and its jobs for another round of attempts."""
        audit_uuid = _parse_uuid(audit_id, "audit ID")
        try:
            return RetryAuditResponse(**await service.retry_audit(audit_uuid))
        except AuditNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except Exception as e:
            logger.exception("Error retrying audit")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    @router.post(
        "/admin/audits/{audit_id}/send-email",
        response_model=SendEmailResponse,
        dependencies=[Depends(verify_admin_secret)],
    )
    async def send_email(
        audit_id: str, coordinator: QueueCoordinator = Depends(get_coordinator)
    ):
        """Send the report email, unless it was already sent or is being sent."""
        audit_uuid = _parse_uuid(audit_id, "audit ID")
        try:
            outcome = await coordinator.deliver_report(audit_uuid)
        except AuditNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except Exception as e:
            logger.exception("Error sending report email")
            raise HTTPException(status_code=500, detail="Internal server error") from e

        if outcome == EmailOutcome.NO_REPORT:
            raise HTTPException(status_code=409, detail="Audit has no report yet")
        if outcome == EmailOutcome.FAILED:
            raise HTTPException(status_code=502, detail="Email delivery failed")
        return SendEmailResponse(audit_id=str(audit_uuid), outcome=outcome.value)

    return router
