"""Database layer."""

from visibility_engine.db.models import (
    AlertModel,
    AuthorityAuditModel,
    Base,
    EngineAuthorityModel,
    EngineOutageModel,
    EngineResultModel,
    EngineSnapshotModel,
    JobModel,
    PromptScoreModel,
    ScoringConfigModel,
)
from visibility_engine.db.session import SessionLocal, get_session, init_db

__all__ = [
    "Base",
    "SessionLocal",
    "get_session",
    "init_db",
    # Models
    "AlertModel",
    "AuthorityAuditModel",
    "EngineAuthorityModel",
    "EngineOutageModel",
    "EngineSnapshotModel",
    "EngineResultModel",
    "JobModel",
    "PromptScoreModel",
    "ScoringConfigModel",
]
