"""Domain models - pure Python classes independent of database."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from visibility_engine.domain.enums import (
    AuthorityChangeType,
    ChangeTrigger,
    EngineStatus,
    JobStatus,
    Sentiment,
    SnapshotType,
)


@dataclass
class Job:
    """A unit of work in the persistent job queue."""

    id: UUID
    owner_id: UUID
    job_type: str
    payload: dict[str, Any]
    status: JobStatus = JobStatus.PENDING
    priority: int = 0
    scheduled_for: datetime | None = None
    retry_count: int = 0
    max_retries: int = 3
    result: dict[str, Any] | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.DEAD_LETTER)

    @property
    def retries_left(self) -> int:
        return max(0, self.max_retries - self.retry_count)


@dataclass
class EngineAuthority:
    """Health and trust record for one answer engine."""

    engine: str
    display_name: str
    status: EngineStatus = EngineStatus.HEALTHY
    consecutive_failures: int = 0
    reliability_score: float = 50.0
    citation_completeness: float = 50.0
    freshness_index: float = 50.0
    authority_weight: float = 1.0
    total_queries: int = 0
    successful_queries: int = 0
    avg_response_time_ms: float = 0.0
    last_successful_query: datetime | None = None
    last_failure: datetime | None = None
    status_message: str | None = None
    version: int = 0


@dataclass
class EngineOutage:
    """A continuous interval during which an engine was unavailable."""

    id: UUID
    engine: str
    started_at: datetime
    ended_at: datetime | None = None
    affected_queries: int = 0
    resolution_type: str | None = None
    fallback_snapshot_id: UUID | None = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


@dataclass
class EngineSnapshot:
    """Point-in-time copy of an engine's authority metrics.

    Scoring falls back to the latest hourly or daily snapshot while the
    engine is unavailable.
    """

    id: UUID
    engine: str
    snapshot_type: SnapshotType
    reliability_score: float
    citation_completeness: float
    freshness_index: float
    authority_weight: float
    status: EngineStatus
    total_queries: int = 0
    queries_in_period: int = 0
    success_rate: float | None = None
    avg_response_time_ms: float | None = None
    created_at: datetime | None = None


@dataclass
class AuthorityAuditEntry:
    """One recorded change to an engine's weight, reliability or status."""

    id: UUID
    engine: str
    change_type: AuthorityChangeType
    triggered_by: ChangeTrigger
    explanation: str
    previous_authority_weight: float | None = None
    new_authority_weight: float | None = None
    previous_reliability: float | None = None
    new_reliability: float | None = None
    evidence: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None


@dataclass
class EngineResult:
    """What one engine said about the brand for one prompt."""

    engine: str
    mentioned: bool
    position: int | None = None
    citation_count: int = 0
    sentiment: Sentiment = Sentiment.NEUTRAL
    sentiment_score: float = 0.0
    competitors_mentioned: int = 0


@dataclass
class ScoringTotals:
    """Prompt-level counts that are not attributable to a single engine."""

    total_citations: int = 0
    brand_citations: int = 0
    competitor_mentions: int = 0
    historical_trend: float = 0.0


@dataclass
class ScoringWeights:
    """Blend weights for the per-engine factors (conceptually sum to 1.0)."""

    visibility: float = 0.4
    citations: float = 0.3
    sentiment: float = 0.2
    rank: float = 0.1


@dataclass
class SentimentMultiplier:
    positive: float = 1.2
    neutral: float = 1.0
    negative: float = 0.8

    def for_sentiment(self, sentiment: Sentiment) -> float:
        return getattr(self, Sentiment(sentiment).value)


@dataclass
class AlgorithmParams:
    """Tunable parameters of the per-engine scoring formula."""

    mention_weight: float = 1.0
    rank_decay: float = 0.1
    sentiment_multiplier: SentimentMultiplier = field(default_factory=SentimentMultiplier)
    citation_bonus: float = 0.15
    competitor_penalty: float = 0.05


@dataclass
class ScoringConfig:
    """A named, versioned scoring configuration."""

    version: str
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    algorithm: AlgorithmParams = field(default_factory=AlgorithmParams)
    description: str | None = None
    is_active: bool = False

    @classmethod
    def from_dicts(
        cls,
        version: str,
        weights: dict[str, Any] | None,
        algorithm: dict[str, Any] | None,
        description: str | None = None,
        is_active: bool = False,
    ) -> "ScoringConfig":
        """Build a config from the JSON shapes stored in the database.

        Missing keys fall back to the built-in defaults so that partially
        specified rows still produce a complete config.
        """
        algorithm = dict(algorithm or {})
        multiplier = algorithm.pop("sentiment_multiplier", None) or {}
        return cls(
            version=version,
            weights=ScoringWeights(**(weights or {})),
            algorithm=AlgorithmParams(
                sentiment_multiplier=SentimentMultiplier(**multiplier),
                **algorithm,
            ),
            description=description,
            is_active=is_active,
        )

    def weights_dict(self) -> dict[str, float]:
        return asdict(self.weights)

    def algorithm_dict(self) -> dict[str, Any]:
        return asdict(self.algorithm)


DEFAULT_SCORING_VERSION = "v1.0.0"
DEFAULT_SCORING_CONFIG = ScoringConfig(
    version=DEFAULT_SCORING_VERSION,
    description="Built-in default scoring algorithm",
)


@dataclass
class EngineScore:
    """Per-engine entry in a score breakdown."""

    engine: str
    score: float
    factors: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"engine": self.engine, "score": self.score, "factors": dict(self.factors)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EngineScore":
        return cls(
            engine=data["engine"],
            score=data["score"],
            factors=dict(data.get("factors") or {}),
        )


@dataclass
class ScoreResult:
    """Composite visibility score for a prompt."""

    prompt_id: UUID
    ai_visibility_score: float
    unweighted_avs: float
    citation_score: float
    brand_authority_score: float
    share_of_voice: float
    breakdown: list[EngineScore]
    confidence: float
    is_estimated: bool
    degraded_engines: list[str]
    scoring_version: str
    scored_at: datetime | None = None

    @property
    def confidence_level(self) -> str:
        if self.confidence >= 80:
            return "high"
        if self.confidence >= 50:
            return "medium"
        return "low"

    def to_dict(self) -> dict[str, Any]:
        return {
            "prompt_id": str(self.prompt_id),
            "ai_visibility_score": self.ai_visibility_score,
            "unweighted_avs": self.unweighted_avs,
            "citation_score": self.citation_score,
            "brand_authority_score": self.brand_authority_score,
            "share_of_voice": self.share_of_voice,
            "breakdown": [entry.to_dict() for entry in self.breakdown],
            "confidence": self.confidence,
            "confidence_level": self.confidence_level,
            "is_estimated": self.is_estimated,
            "degraded_engines": list(self.degraded_engines),
            "scoring_version": self.scoring_version,
            "scored_at": self.scored_at.isoformat() if self.scored_at else None,
        }


@dataclass
class Alert:
    """A notification addressed to a job owner."""

    owner_id: UUID | None
    type: str
    title: str
    message: str
    severity: str = "warning"
    data: dict[str, Any] = field(default_factory=dict)
    id: UUID = field(default_factory=uuid4)
