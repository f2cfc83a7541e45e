"""CLI entrypoint that triggers coordinator ticks.

Stands in for the external scheduler: runs one tick, or with ``--loop`` one
tick every ``--interval`` seconds until interrupted.
"""

import argparse
import asyncio
import logging
import signal
import sys

from audit_queue.app import build_coordinator, create_db_pool
from audit_queue.config import AuditQueueConfig
from audit_queue.logging_utils import setup_logging


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run audit queue ticks")
    parser.add_argument(
        "--loop", action="store_true", help="Keep ticking until interrupted"
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=60.0,
        help="Seconds between ticks with --loop (default: 60)",
    )
    return parser.parse_args(argv)


async def run_ticks(
    config: AuditQueueConfig,
    logger: logging.Logger,
    loop_forever: bool = False,
    interval: float = 60.0,
    shutdown_event: asyncio.Event = None,
) -> None:
    """Create the pool and coordinator, then tick once or until shutdown."""
    db_pool = None
    coordinator = None
    try:
        logger.info("Creating database connection pool...")
        db_pool = await create_db_pool(config)
        coordinator = build_coordinator(config, db_pool, logger)

        while True:
            if shutdown_event and shutdown_event.is_set():
                logger.info("Shutdown signal received, exiting tick loop")
                break

            try:
                result = await coordinator.tick()
                logger.info(f"Tick result: {result.model_dump_json()}")
            except Exception as e:
                if not loop_forever:
                    raise
                logger.error(f"Error in tick: {str(e)}", exc_info=True)

            if not loop_forever:
                break

            try:
                if shutdown_event:
                    await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
                else:
                    await asyncio.sleep(interval)
            except asyncio.TimeoutError:
                pass
    finally:
        if coordinator:
            await coordinator.drain_background(timeout=config.soft_deadline_seconds)
        if db_pool:
            logger.info("Closing database connection pool...")
            await db_pool.close()


def main(argv=None):
    """Main entrypoint for the tick CLI."""
    setup_logging()
    logger = logging.getLogger(__name__)
    args = parse_args(argv)

    try:
        config = AuditQueueConfig.from_env()
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        sys.exit(1)

    async def run():
        """Async main function."""
        shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, shutdown_event.set)

        await run_ticks(
            config,
            logger,
            loop_forever=args.loop,
            interval=args.interval,
            shutdown_event=shutdown_event,
        )

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
