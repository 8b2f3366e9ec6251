"""
Background Job Scheduler.

WHAT: Configures and manages APScheduler for background tasks.

WHY: Admin credentials send mail for whole countries without anyone
logged in. Refreshing them ahead of expiry keeps automated sends from
stalling on an expired token.

HOW: AsyncIOScheduler with an in-memory job store. The admin token
refresh job runs every ADMIN_TOKEN_REFRESH_INTERVAL_MINUTES in its own
database session.

Example:
    # In the application lifespan (main.py):
    await start_scheduler()
    yield
    await shutdown_scheduler()
"""

import logging
from typing import Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError

from casenotify.core.config import settings
from casenotify.db.session import AsyncSessionLocal
from casenotify.services.admin_email_service import AdminEmailService


logger = logging.getLogger(__name__)


ADMIN_TOKEN_REFRESH_JOB_ID = "admin_token_refresh"

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> Optional[AsyncIOScheduler]:
    """Get the global scheduler instance."""
    return _scheduler


async def refresh_admin_tokens() -> int:
    """
    Refresh admin credentials that expire within the refresh window.

    Returns:
        Number of credentials refreshed (0 if the run failed)
    """
    async with AsyncSessionLocal() as session:
        try:
            refreshed = await AdminEmailService(session).refresh_expiring_credentials()
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Admin token refresh run failed: {e}", exc_info=True)
            return 0
    if refreshed:
        logger.info(f"Refreshed {refreshed} admin email credentials")
    return refreshed


async def start_scheduler() -> None:
    """
    Start the background job scheduler.

    Note: Call this from FastAPI startup event.
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Scheduler already running")
        return

    _scheduler = AsyncIOScheduler(
        jobstores={"default": MemoryJobStore()},
        executors={"default": AsyncIOExecutor()},
        job_defaults={
            "coalesce": True,  # Combine multiple missed runs into one
            "max_instances": 1,
            "misfire_grace_time": 60,
        },
        timezone="UTC",
    )
    _scheduler.add_job(
        func=refresh_admin_tokens,
        trigger=IntervalTrigger(minutes=settings.ADMIN_TOKEN_REFRESH_INTERVAL_MINUTES),
        id=ADMIN_TOKEN_REFRESH_JOB_ID,
        name="Admin Email Token Refresh",
        replace_existing=True,
    )
    _scheduler.start()
    logger.info(
        f"Scheduler started with admin token refresh every "
        f"{settings.ADMIN_TOKEN_REFRESH_INTERVAL_MINUTES} minutes"
    )


async def shutdown_scheduler() -> None:
    """Stop the scheduler, letting a running job finish."""
    global _scheduler

    if _scheduler is None or not _scheduler.running:
        logger.info("Scheduler not running")
        _scheduler = None
        return

    logger.info("Shutting down scheduler...")
    _scheduler.shutdown(wait=True)
    _scheduler = None
    logger.info("Scheduler shut down successfully")


def get_scheduler_status() -> dict:
    """Scheduler state and job info for the health endpoint."""
    if _scheduler is None:
        return {"running": False, "jobs": []}

    return {
        "running": _scheduler.running,
        "jobs": [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": str(job.next_run_time) if job.next_run_time else None,
            }
            for job in _scheduler.get_jobs()
        ],
    }
