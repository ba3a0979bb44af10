"""Celery worker configuration.

Celery beat is the external timer that drives the job queue: it triggers
processing runs, stale-job sweeps, engine snapshots and a daily cleanup.
Queue jobs themselves live in the database, not in the broker.
"""

from celery import Celery

from visibility_engine.config import settings
from visibility_engine.logging import setup_logging

# Setup logging before anything else
setup_logging()

# Create Celery app
celery_app = Celery(
    "visibility_engine",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Task execution
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=600,  # 10 minutes max
    task_soft_time_limit=540,  # 9 minutes soft limit
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=2,
    # Result backend
    result_expires=86400,  # 24 hours
    # Task routing
    task_routes={
        "process_job_queue": {"queue": "default"},
        "reclaim_stale_jobs": {"queue": "default"},
        "cleanup_jobs": {"queue": "low"},
        "snapshot_engines": {"queue": "low"},
    },
    # Beat scheduler
    beat_schedule={
        "process-job-queue": {
            "task": "process_job_queue",
            "schedule": settings.queue_process_interval_seconds,
            "options": {"queue": "default"},
        },
        "reclaim-stale-jobs": {
            "task": "reclaim_stale_jobs",
            "schedule": settings.queue_reclaim_interval_seconds,
            "options": {"queue": "default"},
        },
        "cleanup-jobs-daily": {
            "task": "cleanup_jobs",
            "schedule": 86400.0,  # 24 hours
            "options": {"queue": "low"},
        },
        "snapshot-engines-hourly": {
            "task": "snapshot_engines",
            "schedule": settings.authority_snapshot_interval_seconds,
            "kwargs": {"snapshot_type": "hourly"},
            "options": {"queue": "low"},
        },
        "snapshot-engines-daily": {
            "task": "snapshot_engines",
            "schedule": 86400.0,
            "kwargs": {"snapshot_type": "daily"},
            "options": {"queue": "low"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["visibility_engine.jobs"])
