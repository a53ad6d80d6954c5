"""
APScheduler Configuration

Background job scheduler. The only recurring job retries outbox events left
pending or failed by order creation.
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from app.config import settings

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
    'misfire_grace_time': 60,
}

scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE
)


async def run_outbox_retry():
    """Scheduler entry point for the outbox retry job."""
    from app.jobs.outbox_jobs import retry_post_commit_events

    try:
        await retry_post_commit_events()
    except Exception as e:
        logger.error(f"Job 'retry_post_commit_events' failed: {e}")


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        scheduler.add_job(
            run_outbox_retry,
            'interval',
            minutes=settings.OUTBOX_RETRY_INTERVAL_MINUTES,
            id='retry_post_commit_events',
            name='Retry Post-Commit Events',
            replace_existing=True,
        )

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
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
