"""Job queue endpoints.

Endpoints that run handlers (``/process``, ``/reclaim``) are plain
functions so FastAPI executes them in its threadpool, where the handlers
can drive their own event loop for the async engine clients.
"""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from visibility_engine.api.deps import JobQueueDep
from visibility_engine.domain.enums import JobStatus
from visibility_engine.domain.errors import InvalidStateError, JobNotFoundError, PermanentError
from visibility_engine.domain.models import Job
from visibility_engine.logging import get_logger
from visibility_engine.services.job_queue import JobOutcome

router = APIRouter(prefix="/jobs", tags=["Jobs"])
logger = get_logger(__name__)


class EnqueueJobRequest(BaseModel):
    """Request to add a job to the queue."""

    job_type: str = Field(..., min_length=1, max_length=50)
    payload: dict[str, Any] = Field(default_factory=dict)
    owner_id: UUID
    priority: int = Field(default=0, ge=-100, le=100)
    scheduled_for: datetime | None = None
    max_retries: int | None = Field(default=None, ge=0, le=10)


class ProcessRequest(BaseModel):
    batch_size: int | None = Field(default=None, ge=1, le=100)


class ReclaimRequest(BaseModel):
    older_than_minutes: int | None = Field(default=None, ge=1)


class JobDetail(BaseModel):
    """A job as stored in the queue."""

    id: UUID
    owner_id: UUID
    job_type: str
    status: JobStatus
    payload: dict[str, Any]
    priority: int
    scheduled_for: datetime | None
    retry_count: int
    max_retries: int
    result: dict[str, Any] | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def from_domain(cls, job: Job) -> "JobDetail":
        return cls.model_validate(job, from_attributes=True)


class JobOutcomeResponse(BaseModel):
    job_id: UUID
    job_type: str
    status: str
    error: str | None = None

    @classmethod
    def from_outcome(cls, outcome: JobOutcome) -> "JobOutcomeResponse":
        return cls(
            job_id=outcome.job_id,
            job_type=outcome.job_type,
            status=outcome.status.value,
            error=outcome.error,
        )


class BatchResponse(BaseModel):
    processed_count: int
    results: list[JobOutcomeResponse]


class ReclaimResponse(BaseModel):
    reclaimed: int
    results: list[JobOutcomeResponse]


class QueueStatsResponse(BaseModel):
    counts: dict[str, int]
    total: int


@router.post(
    "",
    response_model=JobDetail,
    status_code=status.HTTP_201_CREATED,
    summary="Enqueue job",
    description="Add a job to the persistent queue.",
)
def enqueue_job(request: EnqueueJobRequest, queue: JobQueueDep) -> JobDetail:
    try:
        job = queue.enqueue(
            request.job_type,
            request.payload,
            owner_id=request.owner_id,
            priority=request.priority,
            scheduled_for=request.scheduled_for,
            max_retries=request.max_retries,
        )
    except PermanentError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    return JobDetail.from_domain(job)


@router.get(
    "",
    response_model=list[JobDetail],
    summary="List jobs",
)
def list_jobs(
    queue: JobQueueDep,
    job_status: JobStatus | None = Query(default=None, alias="status"),
    owner_id: UUID | None = None,
    limit: int = Query(default=50, ge=1, le=500),
) -> list[JobDetail]:
    jobs = queue.list_jobs(status=job_status, limit=limit, owner_id=owner_id)
    return [JobDetail.from_domain(job) for job in jobs]


@router.get(
    "/stats",
    response_model=QueueStatsResponse,
    summary="Queue statistics",
    description="Number of jobs in each status.",
)
def queue_stats(queue: JobQueueDep) -> QueueStatsResponse:
    counts = queue.stats()
    return QueueStatsResponse(counts=counts, total=sum(counts.values()))


@router.post(
    "/process",
    response_model=BatchResponse,
    summary="Process due jobs",
    description="Claim and run one batch of due jobs.",
)
def process_jobs(queue: JobQueueDep, request: ProcessRequest | None = None) -> BatchResponse:
    batch = queue.process_batch(request.batch_size if request else None)
    return BatchResponse(
        processed_count=batch.processed_count,
        results=[JobOutcomeResponse.from_outcome(o) for o in batch.results],
    )


@router.post(
    "/reclaim",
    response_model=ReclaimResponse,
    summary="Reclaim stale jobs",
    description="Fail jobs stuck in processing past the staleness timeout.",
)
def reclaim_jobs(queue: JobQueueDep, request: ReclaimRequest | None = None) -> ReclaimResponse:
    older_than = None
    if request and request.older_than_minutes:
        older_than = timedelta(minutes=request.older_than_minutes)
    outcomes = queue.reclaim_stale(older_than)
    return ReclaimResponse(
        reclaimed=len(outcomes),
        results=[JobOutcomeResponse.from_outcome(o) for o in outcomes],
    )


@router.get(
    "/{job_id}",
    response_model=JobDetail,
    summary="Get job",
)
def get_job(job_id: UUID, queue: JobQueueDep) -> JobDetail:
    job = queue.get(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return JobDetail.from_domain(job)


@router.post(
    "/{job_id}/replay",
    response_model=JobDetail,
    summary="Replay dead-lettered job",
    description="Return a dead-lettered job to the queue with a fresh retry budget.",
)
def replay_job(job_id: UUID, queue: JobQueueDep) -> JobDetail:
    try:
        job = queue.replay_dead_letter(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InvalidStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    logger.info("job_replay_requested", job_id=str(job_id))
    return JobDetail.from_domain(job)
