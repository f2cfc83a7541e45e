"""FastAPI application serving the audit queue tick and admin API.

Run with::

    uvicorn audit_queue.app:create_app --factory
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import asyncpg
from fastapi import FastAPI

from audit_queue.config import AuditQueueConfig
from audit_queue.coordinator import QueueCoordinator
from audit_queue.email_sender import SesEmailSender
from audit_queue.fastapi_router import create_queue_router
from audit_queue.logging_utils import setup_logging
from audit_queue.pipeline_client import HttpAuditPipeline
from audit_queue.service import QueueService
from audit_queue.store import AuditStore, JobStore

logger = logging.getLogger(__name__)


async def create_db_pool(config: AuditQueueConfig) -> asyncpg.Pool:
    """Create database connection pool."""
    return await asyncpg.create_pool(config.db_dsn, min_size=2, max_size=10)


def build_coordinator(
    config: AuditQueueConfig,
    db_pool: asyncpg.Pool,
    logger: Optional[logging.Logger] = None,
) -> QueueCoordinator:
    """Wire the stores and collaborators into a coordinator."""
    if not config.pipeline_url:
        raise ValueError("AUDIT_QUEUE_PIPELINE_URL environment variable is required")

    pipeline = HttpAuditPipeline(
        config.pipeline_url,
        auth_token=config.pipeline_token,
        timeout=config.pipeline_timeout_seconds,
    )
    email_sender = SesEmailSender(
        from_address=config.email_from,
        site_url=config.site_url,
        region_name=config.email_region,
        logger=logger,
    )
    return QueueCoordinator(
        config,
        JobStore(db_pool),
        AuditStore(db_pool),
        pipeline,
        email_sender,
        logger=logger,
    )


def create_app(config: Optional[AuditQueueConfig] = None) -> FastAPI:
    """Create the FastAPI application."""
    setup_logging()
    config = config or AuditQueueConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan."""
        logger.info("Creating database connection pool...")
        db_pool = await create_db_pool(config)
        coordinator = build_coordinator(config, db_pool, logger)
        app.state.coordinator = coordinator
        app.state.service = QueueService(config, db_pool, logger)
        logger.info("Audit queue started")

        try:
            yield
        finally:
            logger.info("Shutting down audit queue...")
            await coordinator.drain_background(timeout=config.soft_deadline_seconds)
            await db_pool.close()
            logger.info("Database connection pool closed")

    app = FastAPI(
        title="Audit Queue",
        description="Coordinator for the website audit job queue",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(
        create_queue_router(
            coordinator_factory=lambda: app.state.coordinator,
            service_factory=lambda: app.state.service,
            queue_secret=config.queue_secret,
            admin_secret=config.admin_secret,
        )
    )
    return app


def main():
    """Serve the application with uvicorn."""
    import uvicorn

    uvicorn.run(
        "audit_queue.app:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level="info",
    )


if __name__ == "__main__":
    main()
