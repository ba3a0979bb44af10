"""Application services."""

from visibility_engine.services.alerting import AlertingService, AlertSink
from visibility_engine.services.authority import AuthorityRegistry
from visibility_engine.services.job_queue import BatchResult, JobOutcome, JobQueue
from visibility_engine.services.scoring import ScoringConfigStore, ScoringService

__all__ = [
    "AlertingService",
    "AlertSink",
    "AuthorityRegistry",
    "BatchResult",
    "JobOutcome",
    "JobQueue",
    "ScoringConfigStore",
    "ScoringService",
]
