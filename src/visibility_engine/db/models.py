"""SQLAlchemy ORM models."""

from datetime import datetime
from typing import Any
from uuid import UUID as PyUUID
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from visibility_engine.domain.enums import (
    AuthorityChangeType,
    ChangeTrigger,
    EngineStatus,
    JobStatus,
    SnapshotType,
)
from visibility_engine.domain.models import (
    Alert,
    AuthorityAuditEntry,
    EngineAuthority,
    EngineOutage,
    EngineSnapshot,
    EngineScore,
    Job,
    ScoreResult,
    ScoringConfig,
)
from visibility_engine.utils.clock import ensure_utc, utc_now

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Job Queue
# =============================================================================


class JobModel(Base):
    """Queued unit of work ORM model."""

    __tablename__ = "job_queue"

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[PyUUID] = mapped_column(Uuid, nullable=False, index=True)
    job_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.PENDING.value, index=True
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scheduled_for: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    claim_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("ix_job_queue_due", "status", "priority", "scheduled_for"),
        CheckConstraint("retry_count <= max_retries", name="ck_job_queue_retry_budget"),
    )

    def to_domain(self) -> Job:
        return Job(
            id=self.id,
            owner_id=self.owner_id,
            job_type=self.job_type,
            payload=dict(self.payload or {}),
            status=JobStatus(self.status),
            priority=self.priority,
            scheduled_for=ensure_utc(self.scheduled_for),
            retry_count=self.retry_count,
            max_retries=self.max_retries,
            result=self.result,
            error_message=self.error_message,
            started_at=ensure_utc(self.started_at),
            completed_at=ensure_utc(self.completed_at),
            created_at=ensure_utc(self.created_at),
        )


# =============================================================================
# Engine Authority
# =============================================================================


class EngineAuthorityModel(Base):
    """Per-engine health and trust ORM model."""

    __tablename__ = "engine_authority"

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    engine: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    reliability_score: Mapped[float] = mapped_column(Float, nullable=False, default=50.0)
    citation_completeness: Mapped[float] = mapped_column(Float, nullable=False, default=50.0)
    freshness_index: Mapped[float] = mapped_column(Float, nullable=False, default=50.0)
    authority_weight: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    total_queries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_queries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_response_time_ms: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    consecutive_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_successful_query: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_failure: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EngineStatus.HEALTHY.value, index=True
    )
    status_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Optimistic concurrency counter, bumped on every write
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "authority_weight >= 0.5 AND authority_weight <= 1.5",
            name="ck_engine_authority_weight_range",
        ),
    )

    outages: Mapped[list["EngineOutageModel"]] = relationship(
        "EngineOutageModel", back_populates="authority"
    )

    def to_domain(self) -> EngineAuthority:
        return EngineAuthority(
            engine=self.engine,
            display_name=self.display_name,
            status=EngineStatus(self.status),
            consecutive_failures=self.consecutive_failures,
            reliability_score=self.reliability_score,
            citation_completeness=self.citation_completeness,
            freshness_index=self.freshness_index,
            authority_weight=self.authority_weight,
            total_queries=self.total_queries,
            successful_queries=self.successful_queries,
            avg_response_time_ms=self.avg_response_time_ms,
            last_successful_query=ensure_utc(self.last_successful_query),
            last_failure=ensure_utc(self.last_failure),
            status_message=self.status_message,
            version=self.version,
        )


class EngineOutageModel(Base):
    """Append-only engine outage log ORM model."""

    __tablename__ = "engine_outages"

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    engine: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("engine_authority.engine", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    affected_queries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    resolution_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    fallback_snapshot_id: Mapped[PyUUID | None] = mapped_column(
        Uuid, ForeignKey("engine_snapshots.id", ondelete="SET NULL"), nullable=True
    )

    __table_args__ = (
        # At most one open outage per engine
        Index(
            "uq_engine_outages_open",
            "engine",
            unique=True,
            postgresql_where=text("ended_at IS NULL"),
            sqlite_where=text("ended_at IS NULL"),
        ),
    )

    authority: Mapped["EngineAuthorityModel"] = relationship(
        "EngineAuthorityModel", back_populates="outages"
    )

    def to_domain(self) -> EngineOutage:
        return EngineOutage(
            id=self.id,
            engine=self.engine,
            started_at=ensure_utc(self.started_at),
            ended_at=ensure_utc(self.ended_at),
            affected_queries=self.affected_queries,
            resolution_type=self.resolution_type,
            fallback_snapshot_id=self.fallback_snapshot_id,
        )


class EngineSnapshotModel(Base):
    """Point-in-time engine metrics ORM model."""

    __tablename__ = "engine_snapshots"

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    engine: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("engine_authority.engine", ondelete="CASCADE"),
        nullable=False,
    )
    snapshot_type: Mapped[str] = mapped_column(String(20), nullable=False)
    reliability_score: Mapped[float] = mapped_column(Float, nullable=False)
    citation_completeness: Mapped[float] = mapped_column(Float, nullable=False)
    freshness_index: Mapped[float] = mapped_column(Float, nullable=False)
    authority_weight: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    total_queries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    queries_in_period: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    avg_response_time_ms: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("ix_engine_snapshots_latest", "engine", "snapshot_type", "created_at"),
        CheckConstraint(
            "snapshot_type IN ('hourly', 'daily', 'weekly', 'manual')",
            name="ck_engine_snapshots_type",
        ),
    )

    @classmethod
    def from_domain(cls, snapshot: EngineSnapshot) -> "EngineSnapshotModel":
        return cls(
            id=snapshot.id,
            engine=snapshot.engine,
            snapshot_type=snapshot.snapshot_type.value,
            reliability_score=snapshot.reliability_score,
            citation_completeness=snapshot.citation_completeness,
            freshness_index=snapshot.freshness_index,
            authority_weight=snapshot.authority_weight,
            status=snapshot.status.value,
            total_queries=snapshot.total_queries,
            queries_in_period=snapshot.queries_in_period,
            success_rate=snapshot.success_rate,
            avg_response_time_ms=snapshot.avg_response_time_ms,
            created_at=snapshot.created_at,
        )

    def to_domain(self) -> EngineSnapshot:
        return EngineSnapshot(
            id=self.id,
            engine=self.engine,
            snapshot_type=SnapshotType(self.snapshot_type),
            reliability_score=self.reliability_score,
            citation_completeness=self.citation_completeness,
            freshness_index=self.freshness_index,
            authority_weight=self.authority_weight,
            status=EngineStatus(self.status),
            total_queries=self.total_queries,
            queries_in_period=self.queries_in_period,
            success_rate=self.success_rate,
            avg_response_time_ms=self.avg_response_time_ms,
            created_at=ensure_utc(self.created_at),
        )


class AuthorityAuditModel(Base):
    """Append-only log of authority changes ORM model."""

    __tablename__ = "authority_audit_log"

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    engine: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("engine_authority.engine", ondelete="CASCADE"),
        nullable=False,
    )
    change_type: Mapped[str] = mapped_column(String(50), nullable=False)
    previous_authority_weight: Mapped[float | None] = mapped_column(Float, nullable=True)
    new_authority_weight: Mapped[float | None] = mapped_column(Float, nullable=True)
    previous_reliability: Mapped[float | None] = mapped_column(Float, nullable=True)
    new_reliability: Mapped[float | None] = mapped_column(Float, nullable=True)
    explanation: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    triggered_by: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("ix_authority_audit_log_engine_time", "engine", "created_at"),)

    def to_domain(self) -> AuthorityAuditEntry:
        return AuthorityAuditEntry(
            id=self.id,
            engine=self.engine,
            change_type=AuthorityChangeType(self.change_type),
            triggered_by=ChangeTrigger(self.triggered_by),
            explanation=self.explanation,
            previous_authority_weight=self.previous_authority_weight,
            new_authority_weight=self.new_authority_weight,
            previous_reliability=self.previous_reliability,
            new_reliability=self.new_reliability,
            evidence=dict(self.evidence or {}),
            created_at=ensure_utc(self.created_at),
        )


# =============================================================================
# Engine Results & Scores
# =============================================================================


class EngineResultModel(Base):
    """One engine's parsed answer for a prompt."""

    __tablename__ = "engine_results"

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    prompt_id: Mapped[PyUUID] = mapped_column(Uuid, nullable=False, index=True)
    job_id: Mapped[PyUUID | None] = mapped_column(Uuid, nullable=True)
    engine: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    mentioned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    citation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    citations: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    sentiment: Mapped[str] = mapped_column(String(20), nullable=False, default="neutral")
    sentiment_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    competitors_mentioned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    response_time_ms: Mapped[float | None] = mapped_column(Float, nullable=True)
    authority_weight_at_query: Mapped[float | None] = mapped_column(Float, nullable=True)
    raw_response: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )


class PromptScoreModel(Base):
    """Latest composite score per prompt."""

    __tablename__ = "prompt_scores"

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    prompt_id: Mapped[PyUUID] = mapped_column(Uuid, nullable=False, unique=True)
    ai_visibility_score: Mapped[float] = mapped_column(Float, nullable=False)
    unweighted_avs: Mapped[float] = mapped_column(Float, nullable=False)
    citation_score: Mapped[float] = mapped_column(Float, nullable=False)
    brand_authority_score: Mapped[float] = mapped_column(Float, nullable=False)
    share_of_voice: Mapped[float] = mapped_column(Float, nullable=False)
    breakdown: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    is_estimated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    degraded_engines: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    scoring_version: Mapped[str] = mapped_column(String(50), nullable=False)
    confidence_downgrade_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_full_confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_full_confidence_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    scored_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def to_domain(self) -> ScoreResult:
        return ScoreResult(
            prompt_id=self.prompt_id,
            ai_visibility_score=self.ai_visibility_score,
            unweighted_avs=self.unweighted_avs,
            citation_score=self.citation_score,
            brand_authority_score=self.brand_authority_score,
            share_of_voice=self.share_of_voice,
            breakdown=[EngineScore.from_dict(entry) for entry in self.breakdown or []],
            confidence=self.confidence,
            is_estimated=self.is_estimated,
            degraded_engines=list(self.degraded_engines or []),
            scoring_version=self.scoring_version,
            scored_at=ensure_utc(self.scored_at),
        )


class ScoringConfigModel(Base):
    """Versioned scoring configuration ORM model."""

    __tablename__ = "scoring_configs"

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    version: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    weights: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    algorithm: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        # Single active config
        Index(
            "uq_scoring_configs_active",
            "is_active",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    def to_domain(self) -> ScoringConfig:
        return ScoringConfig.from_dicts(
            version=self.version,
            weights=self.weights,
            algorithm=self.algorithm,
            description=self.description,
            is_active=self.is_active,
        )


# =============================================================================
# Alerts
# =============================================================================


class AlertModel(Base):
    """Owner-facing alert ORM model."""

    __tablename__ = "alerts"

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[PyUUID | None] = mapped_column(Uuid, nullable=True, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="warning")
    data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def to_domain(self) -> Alert:
        return Alert(
            id=self.id,
            owner_id=self.owner_id,
            type=self.type,
            title=self.title,
            message=self.message,
            severity=self.severity,
            data=dict(self.data or {}),
        )
