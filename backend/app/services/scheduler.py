"""
Periodic Streak Sweep

Reads resync a user lazily, so this job exists for users who never open the
app: every STREAK_SWEEP_INTERVAL_MINUTES (default hourly) it applies the day
rollover and the freeze pass to every user, resetting streaks whose cutoff
passed and freezing streaks whose mastery tests went overdue.

The AsyncIOScheduler runs in-process on FastAPI's event loop and is started
and stopped from the lifespan in app/main.py. Each replica runs its own copy;
overlapping sweeps are safe because every transition is idempotent and rows
are versioned.

Usage:
    from app.services.scheduler import trigger_job_now, STREAK_SWEEP_JOB_ID

    trigger_job_now(STREAK_SWEEP_JOB_ID)
"""

import logging
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import settings

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

STREAK_SWEEP_JOB_ID = "streak_sweep"


async def run_streak_sweep() -> None:
    """Sweep every user with a dedicated session."""
    # Imported at run time so the scheduler module stays free of DB imports
    from app.db.base import async_session_maker
    from app.services.progression import ProgressionService

    async with async_session_maker() as db:
        result = await ProgressionService(db).sweep_all_users()

    logger.info(
        f"Scheduled streak sweep: {result.users_processed} users, "
        f"{result.streaks_reset} streaks reset, {result.freezes_changed} freezes changed, "
        f"{result.users_failed} failed"
    )


def setup_scheduled_jobs() -> None:
    """Register the sweep job, replacing any previous registration."""
    interval = settings.STREAK_SWEEP_INTERVAL_MINUTES

    # One sweep at a time; missed runs collapse into a single catch-up run
    scheduler.add_job(
        run_streak_sweep,
        IntervalTrigger(minutes=interval),
        id=STREAK_SWEEP_JOB_ID,
        name="Streak Rollover & Freeze Sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=interval * 60,
    )
    logger.info(f"Streak sweep scheduled every {interval} minutes")


def start_scheduler() -> None:
    if scheduler.running:
        logger.warning("Streak sweep scheduler already running")
        return

    setup_scheduled_jobs()
    scheduler.start()
    logger.info("Streak sweep scheduler started")


def stop_scheduler() -> None:
    if not scheduler.running:
        logger.warning("Streak sweep scheduler not running")
        return

    scheduler.shutdown(wait=True)
    logger.info("Streak sweep scheduler stopped")


def get_scheduled_jobs() -> list[dict]:
    """Describe registered jobs for the detailed health check."""
    return [
        {
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger),
        }
        for job in scheduler.get_jobs()
    ]


def trigger_job_now(job_id: str) -> bool:
    """
    Move a job's next run to now.

    Returns:
        False if no job with that id is registered.
    """
    job = scheduler.get_job(job_id)
    if job is None:
        logger.warning(f"Job not found: {job_id}")
        return False

    job.modify(next_run_time=datetime.now(timezone.utc))
    logger.info(f"Manually triggered job: {job_id}")
    return True
