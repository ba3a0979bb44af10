"""Celery tasks that drive the database-backed job queue and engine snapshots."""

from datetime import timedelta
from typing import Any

from visibility_engine.domain.enums import SnapshotType
from visibility_engine.logging import get_logger
from visibility_engine.services.authority import AuthorityRegistry
from visibility_engine.services.job_queue import JobQueue
from visibility_engine.worker import celery_app

logger = get_logger(__name__)


@celery_app.task(bind=True, name="process_job_queue")
def process_job_queue_task(self: Any, batch_size: int | None = None) -> dict[str, Any]:
    """Claim and run one batch of due jobs."""
    logger.debug("process_job_queue_started", task_id=self.request.id, batch_size=batch_size)
    result = JobQueue().process_batch(batch_size)
    return result.to_dict()


@celery_app.task(bind=True, name="reclaim_stale_jobs")
def reclaim_stale_jobs_task(self: Any, older_than_minutes: int | None = None) -> dict[str, Any]:
    """Fail jobs that have been processing for too long."""
    older_than = timedelta(minutes=older_than_minutes) if older_than_minutes else None
    outcomes = JobQueue().reclaim_stale(older_than)
    if outcomes:
        logger.info("stale_jobs_reclaimed", task_id=self.request.id, count=len(outcomes))
    return {"reclaimed": len(outcomes), "results": [o.to_dict() for o in outcomes]}


@celery_app.task(bind=True, name="cleanup_jobs")
def cleanup_jobs_task(self: Any, older_than_days: int | None = None) -> dict[str, Any]:
    """Delete finished jobs past the retention window."""
    deleted = JobQueue().cleanup(older_than_days)
    return {"deleted": deleted}


@celery_app.task(bind=True, name="snapshot_engines")
def snapshot_engines_task(self: Any, snapshot_type: str = "hourly") -> dict[str, Any]:
    """Store a snapshot of every available engine for scoring fallbacks."""
    snapshots = AuthorityRegistry().snapshot_all(SnapshotType(snapshot_type))
    logger.info(
        "engine_snapshots_stored",
        task_id=self.request.id,
        snapshot_type=snapshot_type,
        count=len(snapshots),
    )
    return {"snapshot_type": snapshot_type, "engines": [s.engine for s in snapshots]}
