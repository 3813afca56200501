"""
APScheduler configuration for the background jobs.

The auto-reorder cycle runs on an interval when AUTO_REORDER_ENABLED is
set; supplier lead times are recalibrated once a day.
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from stockflow.config import settings

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE
)


def register_jobs() -> None:
    """Add the reorder jobs to the scheduler, replacing earlier registrations."""
    from stockflow.jobs.auto_reorder import scheduled_auto_reorder, scheduled_lead_time_refresh

    scheduler.add_job(
        scheduled_auto_reorder,
        'interval',
        minutes=settings.AUTO_REORDER_INTERVAL_MINUTES,
        id='auto_reorder',
        name='Automated Reorder Cycle',
        replace_existing=True,
    )

    scheduler.add_job(
        scheduled_lead_time_refresh,
        'interval',
        hours=24,
        id='supplier_lead_times',
        name='Supplier Lead-Time Refresh',
        replace_existing=True,
    )


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        register_jobs()
        scheduler.start()
        logger.info("Background job scheduler started")

        for job in scheduler.get_jobs():
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if getattr(job, 'next_run_time', None) else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
