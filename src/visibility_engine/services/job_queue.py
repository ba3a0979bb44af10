"""Persistent job queue with priority scheduling, backoff and dead-lettering.

The processor is invoked repeatedly from outside (Celery beat, the API or
the CLI) and assumes nothing about other invocations running at the same
time. Exclusivity comes from conditional writes:

* claim:    ``UPDATE ... SET status='processing', claim_token=:t
            WHERE id=:id AND status='pending'``
* finish:   ``UPDATE ... WHERE id=:id AND status='processing'
            AND claim_token=:t``

A claim that updates no row lost the race and the job is skipped. A finish
that updates no row means the job was reclaimed as stale in the meantime
and the late result is discarded.
"""

import secrets
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from visibility_engine.config import settings
from visibility_engine.db.models import JobModel
from visibility_engine.db.session import SessionLocal
from visibility_engine.domain.enums import JobStatus
from visibility_engine.domain.errors import (
    ExhaustedError,
    InvalidStateError,
    JobNotFoundError,
    PermanentError,
    TransientError,
)
from visibility_engine.domain.models import Job
from visibility_engine.logging import get_logger, job_log_context
from visibility_engine.services.alerting import AlertingService, AlertSink, job_failed_alert
from visibility_engine.utils.clock import utc_now

logger = get_logger(__name__)

# A handler takes the job and the shared collaborators and returns a JSON result
JobHandler = Callable[[Job, Any], dict[str, Any]]

STALE_JOB_ERROR = "Job exceeded processing timeout"


class OutcomeStatus(StrEnum):
    COMPLETED = "completed"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTER = "dead_letter"
    SKIPPED = "skipped"


@dataclass
class JobOutcome:
    """What happened to one job during a processing run."""

    job_id: UUID
    job_type: str
    status: OutcomeStatus
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "job_id": str(self.job_id),
            "job_type": self.job_type,
            "status": self.status.value,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class BatchResult:
    processed_count: int = 0
    results: list[JobOutcome] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed_count": self.processed_count,
            "results": [outcome.to_dict() for outcome in self.results],
        }


def backoff_minutes(retry_count: int, base_minutes: int | None = None) -> int:
    """Delay before the next attempt: ``2**retry_count * base`` minutes."""
    base = settings.queue_backoff_base_minutes if base_minutes is None else base_minutes
    return (2**retry_count) * base


class JobQueue:
    """Enqueue, claim, run and settle jobs stored in ``job_queue``."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        handlers: Mapping[str, JobHandler] | None = None,
        context: Any = None,
        alert_sink: AlertSink | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

        if handlers is None:
            from visibility_engine.jobs.handlers import JOB_HANDLERS

            handlers = JOB_HANDLERS
        self._handlers = dict(handlers)

        if alert_sink is None:
            alert_sink = AlertingService(session_factory)
        self._alert_sink = alert_sink

        if context is None:
            from visibility_engine.jobs.handlers import HandlerContext

            context = HandlerContext.create(session_factory, alert_sink=alert_sink)
        self._context = context

    @property
    def job_types(self) -> list[str]:
        return sorted(self._handlers)

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        owner_id: UUID,
        priority: int = 0,
        scheduled_for: datetime | None = None,
        max_retries: int | None = None,
    ) -> Job:
        """Add a job to the queue.

        Args:
            job_type: Registered handler name
            payload: Handler input, stored as JSON
            owner_id: Who gets alerted if the job dead-letters
            priority: Higher runs first
            scheduled_for: Earliest run time (now when omitted)
            max_retries: Retry budget (settings default when omitted)

        Returns:
            The stored pending Job

        Raises:
            PermanentError: If no handler is registered for ``job_type``
        """
        if job_type not in self._handlers:
            raise PermanentError(f"Unknown job type: {job_type}")

        retries = settings.queue_default_max_retries if max_retries is None else max_retries
        if retries < 0:
            raise ValueError("max_retries must be >= 0")

        row = JobModel(
            id=uuid4(),
            owner_id=owner_id,
            job_type=job_type,
            payload=payload,
            status=JobStatus.PENDING.value,
            priority=priority,
            scheduled_for=scheduled_for or self._clock(),
            retry_count=0,
            max_retries=retries,
            created_at=self._clock(),
        )
        with self._session_factory() as session, session.begin():
            session.add(row)
            session.flush()
            job = row.to_domain()

        logger.info(
            "job_enqueued",
            job_id=str(job.id),
            job_type=job_type,
            priority=priority,
            scheduled_for=job.scheduled_for.isoformat() if job.scheduled_for else None,
        )
        return job

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    def process_batch(self, batch_size: int | None = None) -> BatchResult:
        """Claim and run up to ``batch_size`` due jobs.

        Jobs are claimed in ``priority DESC, scheduled_for ASC`` order and
        executed in that order. Jobs another invocation claimed first are
        reported as skipped.

        Raises:
            ValueError: If ``batch_size`` is given and is less than 1
        """
        size = settings.queue_batch_size if batch_size is None else batch_size
        if size < 1:
            raise ValueError(f"batch_size must be at least 1, got {size}")
        claimed, skipped = self._claim_due(size)

        batch = BatchResult(results=list(skipped))
        for job, token in claimed:
            outcome = self._execute(job, token)
            batch.results.append(outcome)
            if outcome.status != OutcomeStatus.SKIPPED:
                batch.processed_count += 1

        if batch.results:
            logger.info(
                "job_batch_processed",
                processed=batch.processed_count,
                skipped=sum(1 for r in batch.results if r.status == OutcomeStatus.SKIPPED),
            )
        return batch

    def reclaim_stale(self, older_than: timedelta | None = None) -> list[JobOutcome]:
        """Fail jobs stuck in ``processing`` past the staleness timeout.

        Each stale job counts as one failed attempt and follows the normal
        retry/dead-letter policy.
        """
        now = self._clock()
        cutoff = now - (older_than or timedelta(minutes=settings.queue_stale_after_minutes))

        stmt = select(JobModel).where(
            JobModel.status == JobStatus.PROCESSING.value,
            JobModel.started_at < cutoff,
        )
        with self._session_factory() as session:
            stale = [(row.to_domain(), row.claim_token) for row in session.execute(stmt).scalars()]

        outcomes = []
        for job, token in stale:
            logger.warning(
                "job_stale_reclaimed",
                job_id=str(job.id),
                job_type=job.job_type,
                started_at=job.started_at.isoformat() if job.started_at else None,
            )
            outcomes.append(self._fail(job, token, TransientError(STALE_JOB_ERROR)))
        return outcomes

    # -------------------------------------------------------------------------
    # Operator actions & queries
    # -------------------------------------------------------------------------

    def replay_dead_letter(self, job_id: UUID) -> Job:
        """Put a dead-lettered job back in the queue with a fresh retry budget.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidStateError: If the job is not dead-lettered
        """
        now = self._clock()
        with self._session_factory() as session, session.begin():
            result = session.execute(
                update(JobModel)
                .where(JobModel.id == job_id, JobModel.status == JobStatus.DEAD_LETTER.value)
                .values(
                    status=JobStatus.PENDING.value,
                    retry_count=0,
                    error_message=None,
                    result=None,
                    scheduled_for=now,
                    started_at=None,
                    completed_at=None,
                    claim_token=None,
                )
                .execution_options(synchronize_session=False)
            )
            row = session.get(JobModel, job_id)
            if row is None:
                raise JobNotFoundError(f"Job {job_id} not found")
            if result.rowcount != 1:
                raise InvalidStateError(f"Job {job_id} is {row.status}, not dead_letter")
            session.refresh(row)
            job = row.to_domain()

        logger.info("job_replayed", job_id=str(job_id), job_type=job.job_type)
        return job

    def get(self, job_id: UUID) -> Job | None:
        with self._session_factory() as session:
            row = session.get(JobModel, job_id)
            return row.to_domain() if row else None

    def list_jobs(
        self,
        status: JobStatus | None = None,
        limit: int = 50,
        owner_id: UUID | None = None,
    ) -> list[Job]:
        stmt = select(JobModel).order_by(JobModel.created_at.desc()).limit(limit)
        if status is not None:
            stmt = stmt.where(JobModel.status == JobStatus(status).value)
        if owner_id is not None:
            stmt = stmt.where(JobModel.owner_id == owner_id)
        with self._session_factory() as session:
            return [row.to_domain() for row in session.execute(stmt).scalars()]

    def stats(self) -> dict[str, int]:
        """Job count per status."""
        counts = {status.value: 0 for status in JobStatus}
        stmt = select(JobModel.status, func.count()).group_by(JobModel.status)
        with self._session_factory() as session:
            for status, count in session.execute(stmt):
                counts[status] = count
        return counts

    def cleanup(self, older_than_days: int | None = None) -> int:
        """Delete finished jobs older than the retention window.

        Returns:
            Number of jobs deleted
        """
        days = settings.job_retention_days if older_than_days is None else older_than_days
        cutoff = self._clock() - timedelta(days=days)
        with self._session_factory() as session, session.begin():
            result = session.execute(
                delete(JobModel)
                .where(
                    JobModel.status.in_([JobStatus.COMPLETED.value, JobStatus.DEAD_LETTER.value]),
                    JobModel.completed_at < cutoff,
                )
                .execution_options(synchronize_session=False)
            )
        deleted = result.rowcount or 0
        logger.info("jobs_cleaned_up", deleted=deleted, older_than_days=days)
        return deleted

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _claim_due(self, batch_size: int) -> tuple[list[tuple[Job, str]], list[JobOutcome]]:
        now = self._clock()
        claimed: list[tuple[Job, str]] = []
        skipped: list[JobOutcome] = []

        with self._session_factory() as session, session.begin():
            stmt = (
                select(JobModel.id, JobModel.job_type)
                .where(
                    JobModel.status == JobStatus.PENDING.value,
                    JobModel.scheduled_for <= now,
                )
                .order_by(JobModel.priority.desc(), JobModel.scheduled_for.asc())
                .limit(batch_size)
            )
            if session.get_bind().dialect.name == "postgresql":
                stmt = stmt.with_for_update(skip_locked=True)

            for job_id, job_type in session.execute(stmt).all():
                token = secrets.token_hex(16)
                result = session.execute(
                    update(JobModel)
                    .where(JobModel.id == job_id, JobModel.status == JobStatus.PENDING.value)
                    .values(
                        status=JobStatus.PROCESSING.value,
                        started_at=now,
                        claim_token=token,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    logger.info("job_claim_lost", job_id=str(job_id))
                    skipped.append(JobOutcome(job_id, job_type, OutcomeStatus.SKIPPED))
                    continue

                row = session.get(JobModel, job_id)
                session.refresh(row)
                claimed.append((row.to_domain(), token))

        return claimed, skipped

    def _execute(self, job: Job, token: str) -> JobOutcome:
        log = logger.bind(job_id=str(job.id), job_type=job.job_type, attempt=job.retry_count + 1)
        log.info("job_started")

        try:
            handler = self._handlers.get(job.job_type)
            if handler is None:
                raise PermanentError(f"Unknown job type: {job.job_type}")
            with job_log_context(job.id, job.job_type, job.retry_count + 1):
                result = handler(job, self._context)
        except Exception as e:
            log.warning("job_failed", error=str(e), error_type=type(e).__name__)
            return self._fail(job, token, e)

        now = self._clock()
        with self._session_factory() as session, session.begin():
            written = session.execute(
                update(JobModel)
                .where(
                    JobModel.id == job.id,
                    JobModel.status == JobStatus.PROCESSING.value,
                    JobModel.claim_token == token,
                )
                .values(
                    status=JobStatus.COMPLETED.value,
                    result=result,
                    completed_at=now,
                    error_message=None,
                    claim_token=None,
                )
                .execution_options(synchronize_session=False)
            ).rowcount

        if written != 1:
            log.warning("job_result_discarded", reason="claim no longer held")
            return JobOutcome(job.id, job.job_type, OutcomeStatus.SKIPPED)

        log.info("job_completed")
        return JobOutcome(job.id, job.job_type, OutcomeStatus.COMPLETED)

    def _fail(self, job: Job, token: str | None, error: Exception) -> JobOutcome:
        """Apply the retry/dead-letter policy to a failed attempt."""
        now = self._clock()
        message = str(error) or type(error).__name__
        permanent = isinstance(error, PermanentError)

        if not permanent and job.retry_count < job.max_retries:
            delay = backoff_minutes(job.retry_count)
            values: dict[str, Any] = {
                "status": JobStatus.PENDING.value,
                "retry_count": job.retry_count + 1,
                "scheduled_for": now + timedelta(minutes=delay),
                "error_message": message,
                "started_at": None,
                "claim_token": None,
            }
            status = OutcomeStatus.RETRY_SCHEDULED
        else:
            if permanent:
                final_error = f"PermanentError: {message}"
            else:
                final_error = str(ExhaustedError(job.job_type, job.retry_count + 1, message))
            values = {
                "status": JobStatus.DEAD_LETTER.value,
                "error_message": final_error,
                "completed_at": now,
                "claim_token": None,
            }
            status = OutcomeStatus.DEAD_LETTER

        with self._session_factory() as session, session.begin():
            written = session.execute(
                update(JobModel)
                .where(
                    JobModel.id == job.id,
                    JobModel.status == JobStatus.PROCESSING.value,
                    JobModel.claim_token == token,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            ).rowcount

        log = logger.bind(job_id=str(job.id), job_type=job.job_type)
        if written != 1:
            log.warning("job_failure_discarded", reason="claim no longer held")
            return JobOutcome(job.id, job.job_type, OutcomeStatus.SKIPPED, error=message)

        if status == OutcomeStatus.RETRY_SCHEDULED:
            log.info(
                "job_retry_scheduled",
                retry_count=values["retry_count"],
                backoff_minutes=backoff_minutes(job.retry_count),
                error=message,
            )
        else:
            log.error("job_dead_lettered", permanent=permanent, error=message)
            self._notify_owner(job, message)

        return JobOutcome(job.id, job.job_type, status, error=message)

    def _notify_owner(self, job: Job, message: str) -> None:
        try:
            self._alert_sink.emit(job_failed_alert(job, message))
        except Exception as e:
            logger.error("job_alert_failed", job_id=str(job.id), error=str(e))
