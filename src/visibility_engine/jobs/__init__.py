"""Job handlers and the Celery tasks that run the queue."""

from visibility_engine.jobs.tasks import (
    cleanup_jobs_task,
    process_job_queue_task,
    reclaim_stale_jobs_task,
)

__all__ = [
    "cleanup_jobs_task",
    "process_job_queue_task",
    "reclaim_stale_jobs_task",
]
