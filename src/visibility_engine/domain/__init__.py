"""Domain layer: enums, errors, dataclasses and the pure authority/scoring rules."""

from visibility_engine.domain.enums import (
    AlertSeverity,
    EngineStatus,
    JobStatus,
    JobType,
    Sentiment,
    TrustLevel,
)
from visibility_engine.domain.models import (
    DEFAULT_SCORING_CONFIG,
    Alert,
    EngineAuthority,
    EngineOutage,
    EngineResult,
    EngineScore,
    Job,
    ScoreResult,
    ScoringConfig,
    ScoringTotals,
)

__all__ = [
    # Enums
    "AlertSeverity",
    "EngineStatus",
    "JobStatus",
    "JobType",
    "Sentiment",
    "TrustLevel",
    # Models
    "DEFAULT_SCORING_CONFIG",
    "Alert",
    "EngineAuthority",
    "EngineOutage",
    "EngineResult",
    "EngineScore",
    "Job",
    "ScoreResult",
    "ScoringConfig",
    "ScoringTotals",
]
