"""
APScheduler-based background ticks.

All jobs are periodic and idempotent, so they live in an in-memory job
store and are registered again at every startup:

- reconcile_poll: live attendance reconciliation
- reminder_scan: slot reminders
- pause_sweep: Active/Paused status as pause windows begin and end
- catch_up: daily reconciliation of the last few days

Each job catches and reports its own failures so one bad tick never stops
the schedule.
"""

import logging

import sentry_sdk
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..config import (
    get_catch_up_time_utc,
    get_pause_sweep_interval_seconds,
    get_reconcile_interval_seconds,
    get_reminder_interval_seconds,
)

logger = logging.getLogger(__name__)


_scheduler: AsyncIOScheduler | None = None


# =============================================================================
# Scheduler initialization and shutdown
# =============================================================================


def init_scheduler() -> AsyncIOScheduler:
    """
    Initialize and start the APScheduler with every periodic job.

    Call this during app startup (in FastAPI lifespan).
    """
    global _scheduler

    if _scheduler is not None:
        return _scheduler

    _scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,  # Combine missed runs into one
            "max_instances": 1,
            "misfire_grace_time": 60,
        },
    )
    register_jobs(_scheduler)
    _scheduler.start()
    logger.info("Background scheduler started")
    return _scheduler


def register_jobs(scheduler: AsyncIOScheduler) -> None:
    scheduler.add_job(
        run_reconcile_poll,
        trigger="interval",
        seconds=get_reconcile_interval_seconds(),
        id="reconcile_poll",
        replace_existing=True,
    )
    scheduler.add_job(
        run_reminder_tick,
        trigger="interval",
        seconds=get_reminder_interval_seconds(),
        id="reminder_scan",
        replace_existing=True,
    )
    scheduler.add_job(
        run_pause_sweep,
        trigger="interval",
        seconds=get_pause_sweep_interval_seconds(),
        id="pause_sweep",
        replace_existing=True,
    )
    hour, minute = get_catch_up_time_utc()
    scheduler.add_job(
        run_catch_up_job,
        trigger="cron",
        hour=hour,
        minute=minute,
        id="catch_up",
        replace_existing=True,
    )


def shutdown_scheduler() -> None:
    """
    Shutdown the scheduler gracefully.

    Call this during app shutdown.
    """
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=True)
        _scheduler = None
        logger.info("Background scheduler stopped")


def get_scheduler() -> AsyncIOScheduler | None:
    return _scheduler


# =============================================================================
# Jobs
# =============================================================================


async def _run_job(name: str, func) -> dict | None:
    try:
        return await func()
    except Exception as e:
        logger.exception(f"Scheduled job {name} failed: {e}")
        sentry_sdk.capture_exception(e)
        return None


async def run_reconcile_poll() -> dict | None:
    from ..reconciler import run_live_poll

    return await _run_job("reconcile_poll", run_live_poll)


async def run_catch_up_job() -> dict | None:
    from ..reconciler import run_catch_up

    stats = await _run_job("catch_up", run_catch_up)
    if stats is not None:
        logger.info(f"Daily reconciliation catch-up: {stats}")
    return stats


async def run_reminder_tick() -> dict | None:
    from .reminders import run_reminder_scan

    return await _run_job("reminder_scan", run_reminder_scan)


async def run_pause_sweep() -> dict | None:
    from ..pauses import sweep_pause_states

    return await _run_job("pause_sweep", sweep_pause_states)
