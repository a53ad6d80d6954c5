"""
Background Jobs Module

Handles scheduled tasks for:
- Post-commit (outbox) event retries
"""

from app.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler
from app.jobs.outbox_jobs import retry_post_commit_events

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "retry_post_commit_events",
]
