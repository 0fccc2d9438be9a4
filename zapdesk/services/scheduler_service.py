"""
APScheduler service for console maintenance jobs.

Runs on the console event loop, so jobs touch the pools from the same thread
as every other mutation.
"""

import asyncio
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from zapdesk.repositories.session_registry import SessionRegistry
from zapdesk.utils.logger import logger


# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None

IDLE_SWEEP_JOB_ID = "idle_bot_session_sweep"


def init_scheduler(loop: asyncio.AbstractEventLoop) -> AsyncIOScheduler:
    """
    Initialize and start the scheduler on the given event loop.

    Must be called from the loop's own thread.

    Args:
        loop: Console event loop

    Returns:
        Configured AsyncIOScheduler instance
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already initialized")
        return scheduler

    scheduler = AsyncIOScheduler(
        event_loop=loop,
        job_defaults={
            "coalesce": True,  # Combine missed runs into one
            "max_instances": 1,
            "misfire_grace_time": 300,
        },
        timezone="UTC",
    )
    scheduler.start()
    logger.info("APScheduler initialized and started")
    return scheduler


def get_scheduler() -> AsyncIOScheduler:
    """
    Get the scheduler instance.

    Raises:
        RuntimeError: If scheduler not initialized
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")
    return scheduler


async def sweep_idle_sessions(registry: SessionRegistry) -> None:
    # Must stay a coroutine: AsyncIOExecutor runs plain functions in a thread pool
    expired = registry.expire_idle_bot_sessions()
    if expired:
        logger.info(f"Idle sweep closed {len(expired)} bot sessions")


def schedule_idle_sweep(registry: SessionRegistry, interval_minutes: int = 10):
    """
    Schedule the recurring expiry of idle bot sessions.

    Returns:
        Job object
    """
    job = get_scheduler().add_job(
        sweep_idle_sessions,
        "interval",
        args=[registry],
        minutes=interval_minutes,
        id=IDLE_SWEEP_JOB_ID,
        replace_existing=True,
    )
    logger.info(f"Idle bot session sweep scheduled (interval: {interval_minutes}m)")
    return job


def shutdown_scheduler() -> None:
    global scheduler
    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("Scheduler shut down")
