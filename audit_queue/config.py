"""Configuration for the audit queue coordinator."""

import os
from datetime import timedelta
from typing import Optional


class AuditQueueConfig:
    """Configuration object for the audit queue."""

    def __init__(
        self,
        db_dsn: str,
        queue_secret: Optional[str] = None,
        admin_secret: Optional[str] = None,
        max_retries: int = 3,
        stale_after_seconds: int = 600,
        reservation_grace_seconds: int = 300,
        execution_limit_seconds: int = 540,
        deadline_margin_seconds: int = 60,
        candidate_batch_size: int = 20,
        orphan_batch_size: int = 50,
        pipeline_url: Optional[str] = None,
        pipeline_token: Optional[str] = None,
        pipeline_timeout_seconds: float = 540.0,
        email_from: str = "reports@example.com",
        email_region: Optional[str] = None,
        site_url: str = "http://localhost:3000",
    ):
        self.db_dsn = db_dsn
        self.queue_secret = queue_secret
        self.admin_secret = admin_secret
        self.max_retries = max_retries
        self.stale_after_seconds = stale_after_seconds
        self.reservation_grace_seconds = reservation_grace_seconds
        self.execution_limit_seconds = execution_limit_seconds
        self.deadline_margin_seconds = deadline_margin_seconds
        self.candidate_batch_size = candidate_batch_size
        self.orphan_batch_size = orphan_batch_size
        self.pipeline_url = pipeline_url
        self.pipeline_token = pipeline_token
        self.pipeline_timeout_seconds = pipeline_timeout_seconds
        self.email_from = email_from
        self.email_region = email_region
        self.site_url = site_url

        self.validate()

    @classmethod
    def from_env(cls) -> "AuditQueueConfig":
        """Create config from environment variables."""
        db_dsn = os.getenv("AUDIT_QUEUE_DB_DSN")
        if not db_dsn:
            raise ValueError("AUDIT_QUEUE_DB_DSN environment variable is required")

        return cls(
            db_dsn=db_dsn,
            queue_secret=os.getenv("AUDIT_QUEUE_QUEUE_SECRET") or None,
            admin_secret=os.getenv("AUDIT_QUEUE_ADMIN_SECRET") or None,
            max_retries=_int_env("AUDIT_QUEUE_MAX_RETRIES", 3),
            stale_after_seconds=_int_env("AUDIT_QUEUE_STALE_AFTER_SECONDS", 600),
            reservation_grace_seconds=_int_env(
                "AUDIT_QUEUE_RESERVATION_GRACE_SECONDS", 300
            ),
            execution_limit_seconds=_int_env(
                "AUDIT_QUEUE_EXECUTION_LIMIT_SECONDS", 540
            ),
            deadline_margin_seconds=_int_env(
                "AUDIT_QUEUE_DEADLINE_MARGIN_SECONDS", 60
            ),
            candidate_batch_size=_int_env("AUDIT_QUEUE_CANDIDATE_BATCH_SIZE", 20),
            orphan_batch_size=_int_env("AUDIT_QUEUE_ORPHAN_BATCH_SIZE", 50),
            pipeline_url=os.getenv("AUDIT_QUEUE_PIPELINE_URL") or None,
            pipeline_token=os.getenv("AUDIT_QUEUE_PIPELINE_TOKEN") or None,
            pipeline_timeout_seconds=float(
                os.getenv("AUDIT_QUEUE_PIPELINE_TIMEOUT_SECONDS", "540")
            ),
            email_from=os.getenv("AUDIT_QUEUE_EMAIL_FROM", "reports@example.com"),
            email_region=os.getenv("AUDIT_QUEUE_EMAIL_REGION") or None,
            site_url=os.getenv("AUDIT_QUEUE_SITE_URL", "http://localhost:3000"),
        )

    def validate(self) -> None:
        """Reject policy constants that contradict each other."""
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.deadline_margin_seconds >= self.execution_limit_seconds:
            raise ValueError(
                "deadline_margin_seconds must be smaller than execution_limit_seconds"
            )
        if self.reservation_grace_seconds >= self.stale_after_seconds:
            raise ValueError(
                "reservation_grace_seconds must be smaller than stale_after_seconds"
            )
        if self.soft_deadline_seconds >= self.stale_after_seconds:
            raise ValueError(
                "the soft deadline (execution limit minus margin) must be smaller "
                "than stale_after_seconds"
            )
        if self.pipeline_timeout_seconds >= self.stale_after_seconds:
            raise ValueError(
                "pipeline_timeout_seconds must be smaller than stale_after_seconds"
            )

    @property
    def soft_deadline_seconds(self) -> int:
        """How long a tick waits on a dispatch before returning."""
        return self.execution_limit_seconds - self.deadline_margin_seconds

    @property
    def stale_after(self) -> timedelta:
        return timedelta(seconds=self.stale_after_seconds)

    @property
    def reservation_grace(self) -> timedelta:
        return timedelta(seconds=self.reservation_grace_seconds)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"Invalid integer in {name}: {raw!r}") from e
