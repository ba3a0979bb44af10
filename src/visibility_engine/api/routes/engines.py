"""Engine authority endpoints."""

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from visibility_engine.api.deps import AuthorityRegistryDep
from visibility_engine.config import settings
from visibility_engine.domain.enums import (
    AuthorityChangeType,
    ChangeTrigger,
    EngineStatus,
    SnapshotType,
    TrustLevel,
)
from visibility_engine.domain.models import EngineAuthority, EngineOutage

router = APIRouter(prefix="/engines", tags=["Engines"])


class EngineAuthorityResponse(BaseModel):
    engine: str
    display_name: str
    status: EngineStatus
    status_message: str | None = None
    authority_weight: float
    reliability_score: float
    citation_completeness: float
    freshness_index: float
    consecutive_failures: int
    total_queries: int
    successful_queries: int
    avg_response_time_ms: float
    last_successful_query: datetime | None = None
    last_failure: datetime | None = None

    @classmethod
    def from_domain(cls, authority: EngineAuthority) -> "EngineAuthorityResponse":
        return cls.model_validate(authority, from_attributes=True)


class OutageResponse(BaseModel):
    id: UUID
    engine: str
    started_at: datetime
    ended_at: datetime | None = None
    affected_queries: int
    resolution_type: str | None = None
    fallback_snapshot_id: UUID | None = None

    @classmethod
    def from_domain(cls, outage: EngineOutage) -> "OutageResponse":
        return cls.model_validate(outage, from_attributes=True)


class EngineDetailResponse(BaseModel):
    authority: EngineAuthorityResponse
    outages: list[OutageResponse]


class ExplanationResponse(BaseModel):
    engine: str
    display_name: str
    authority_weight: float
    trust_level: TrustLevel
    why_trustworthy: list[str]
    why_cautious: list[str]
    compared_to_others: str


class MaintenanceRequest(BaseModel):
    enabled: bool
    message: str | None = Field(default=None, max_length=500)


class SnapshotRequest(BaseModel):
    snapshot_type: SnapshotType = SnapshotType.HOURLY


class SnapshotResponse(BaseModel):
    id: UUID
    engine: str
    snapshot_type: SnapshotType
    reliability_score: float
    citation_completeness: float
    freshness_index: float
    authority_weight: float
    status: EngineStatus
    queries_in_period: int
    success_rate: float | None = None
    avg_response_time_ms: float | None = None
    created_at: datetime | None = None


class AuditEntryResponse(BaseModel):
    id: UUID
    change_type: AuthorityChangeType
    triggered_by: ChangeTrigger
    explanation: str
    previous_authority_weight: float | None = None
    new_authority_weight: float | None = None
    previous_reliability: float | None = None
    new_reliability: float | None = None
    evidence: dict[str, Any]
    created_at: datetime | None = None


class AuditTrailResponse(BaseModel):
    engine: str
    period_days: int
    summary: str
    entries: list[AuditEntryResponse]


@router.get(
    "",
    response_model=list[EngineAuthorityResponse],
    summary="List engines",
    description="All engines, highest authority weight first.",
)
def list_engines(registry: AuthorityRegistryDep) -> list[EngineAuthorityResponse]:
    return [EngineAuthorityResponse.from_domain(a) for a in registry.list_authorities()]


@router.get(
    "/outages/active",
    response_model=list[OutageResponse],
    summary="Active outages",
)
def active_outages(registry: AuthorityRegistryDep) -> list[OutageResponse]:
    return [OutageResponse.from_domain(o) for o in registry.active_outages()]


@router.get(
    "/{engine}",
    response_model=EngineDetailResponse,
    summary="Get engine",
    description="Authority record and recent outages for one engine.",
)
def get_engine(engine: str, registry: AuthorityRegistryDep) -> EngineDetailResponse:
    authority = registry.get_authority(engine)
    if authority is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Engine not found")
    return EngineDetailResponse(
        authority=EngineAuthorityResponse.from_domain(authority),
        outages=[OutageResponse.from_domain(o) for o in registry.outage_history(engine)],
    )


@router.get(
    "/{engine}/explain",
    response_model=ExplanationResponse,
    summary="Explain engine authority",
    description="Why the engine is or is not trusted at its current weight.",
)
def explain_engine(engine: str, registry: AuthorityRegistryDep) -> ExplanationResponse:
    explanation = registry.explain(engine)
    return ExplanationResponse.model_validate(explanation, from_attributes=True)


@router.post(
    "/{engine}/maintenance",
    response_model=EngineAuthorityResponse,
    summary="Set maintenance",
    description="Put an engine into or take it out of operator maintenance. Unknown engines are 404 and lost update races 409.",
)
def set_maintenance(
    engine: str, request: MaintenanceRequest, registry: AuthorityRegistryDep
) -> EngineAuthorityResponse:
    authority = registry.set_maintenance(engine, request.enabled, request.message)
    return EngineAuthorityResponse.from_domain(authority)


@router.post(
    "/{engine}/snapshots",
    response_model=SnapshotResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create snapshot",
    description="Store the engine's current metrics. Hourly and daily snapshots back scoring while the engine is unavailable.",
)
def create_snapshot(
    engine: str, registry: AuthorityRegistryDep, request: SnapshotRequest | None = None
) -> SnapshotResponse:
    snapshot_type = request.snapshot_type if request else SnapshotType.HOURLY
    snapshot = registry.create_snapshot(engine, snapshot_type)
    return SnapshotResponse.model_validate(snapshot, from_attributes=True)


@router.get(
    "/{engine}/snapshots",
    response_model=list[SnapshotResponse],
    summary="List snapshots",
)
def list_snapshots(
    engine: str,
    registry: AuthorityRegistryDep,
    limit: int = Query(default=24, ge=1, le=500),
) -> list[SnapshotResponse]:
    registry.require_authority(engine)
    return [
        SnapshotResponse.model_validate(s, from_attributes=True)
        for s in registry.snapshot_history(engine, limit)
    ]


@router.get(
    "/{engine}/audit",
    response_model=AuditTrailResponse,
    summary="Authority audit trail",
    description="Changes to the engine's weight, reliability and status, newest first.",
)
def audit_trail(
    engine: str,
    registry: AuthorityRegistryDep,
    days: int = Query(default=settings.authority_audit_days, ge=1, le=365),
) -> AuditTrailResponse:
    trail = registry.audit_trail(engine, days)
    return AuditTrailResponse(
        engine=trail.engine,
        period_days=trail.period_days,
        summary=trail.summary,
        entries=[AuditEntryResponse.model_validate(e, from_attributes=True) for e in trail.entries],
    )
