"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from visibility_engine.db.session import get_session
from visibility_engine.services.alerting import AlertingService
from visibility_engine.services.authority import AuthorityRegistry
from visibility_engine.services.job_queue import JobQueue
from visibility_engine.services.scoring import ScoringConfigStore, ScoringService

# Database session dependency
SessionDep = Annotated[Session, Depends(get_session)]


def get_job_queue() -> JobQueue:
    """Get a job queue bound to the application database."""
    return JobQueue()


def get_authority_registry() -> AuthorityRegistry:
    """Get the authority registry, alerting on outages."""
    return AuthorityRegistry(alert_sink=AlertingService())


def get_scoring_service() -> ScoringService:
    return ScoringService()


def get_scoring_config_store() -> ScoringConfigStore:
    return ScoringConfigStore()


JobQueueDep = Annotated[JobQueue, Depends(get_job_queue)]
AuthorityRegistryDep = Annotated[AuthorityRegistry, Depends(get_authority_registry)]
ScoringServiceDep = Annotated[ScoringService, Depends(get_scoring_service)]
ScoringConfigStoreDep = Annotated[ScoringConfigStore, Depends(get_scoring_config_store)]
