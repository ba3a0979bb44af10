"""Scoring config endpoints."""

from typing import Any

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from visibility_engine.api.deps import ScoringConfigStoreDep
from visibility_engine.domain.errors import InvalidStateError, MissingConfigError
from visibility_engine.domain.models import ScoringConfig
from visibility_engine.logging import get_logger

router = APIRouter(prefix="/scoring-configs", tags=["Scoring Configs"])
logger = get_logger(__name__)


class WeightsIn(BaseModel):
    visibility: float = Field(default=0.4, ge=0, le=1)
    citations: float = Field(default=0.3, ge=0, le=1)
    sentiment: float = Field(default=0.2, ge=0, le=1)
    rank: float = Field(default=0.1, ge=0, le=1)


class SentimentMultiplierIn(BaseModel):
    positive: float = Field(default=1.2, ge=0)
    neutral: float = Field(default=1.0, ge=0)
    negative: float = Field(default=0.8, ge=0)


class AlgorithmIn(BaseModel):
    mention_weight: float = Field(default=1.0, ge=0)
    rank_decay: float = Field(default=0.1, ge=0)
    sentiment_multiplier: SentimentMultiplierIn = Field(default_factory=SentimentMultiplierIn)
    citation_bonus: float = Field(default=0.15, ge=0)
    competitor_penalty: float = Field(default=0.05, ge=0)


class CreateConfigRequest(BaseModel):
    version: str = Field(..., min_length=1, max_length=50)
    description: str | None = None
    weights: WeightsIn = Field(default_factory=WeightsIn)
    algorithm: AlgorithmIn = Field(default_factory=AlgorithmIn)
    activate: bool = False


class ScoringConfigResponse(BaseModel):
    version: str
    description: str | None = None
    is_active: bool
    weights: dict[str, float]
    algorithm: dict[str, Any]

    @classmethod
    def from_domain(cls, config: ScoringConfig) -> "ScoringConfigResponse":
        return cls(
            version=config.version,
            description=config.description,
            is_active=config.is_active,
            weights=config.weights_dict(),
            algorithm=config.algorithm_dict(),
        )


@router.get(
    "",
    response_model=list[ScoringConfigResponse],
    summary="List scoring configs",
)
def list_configs(store: ScoringConfigStoreDep) -> list[ScoringConfigResponse]:
    return [ScoringConfigResponse.from_domain(c) for c in store.list()]


@router.get(
    "/active",
    response_model=ScoringConfigResponse,
    summary="Active scoring config",
    description="The config used when no version is requested, or the built-in defaults.",
)
def active_config(store: ScoringConfigStoreDep) -> ScoringConfigResponse:
    return ScoringConfigResponse.from_domain(store.get())


@router.post(
    "",
    response_model=ScoringConfigResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create scoring config",
)
def create_config(request: CreateConfigRequest, store: ScoringConfigStoreDep) -> ScoringConfigResponse:
    try:
        config = store.create(
            request.version,
            weights=request.weights.model_dump(),
            algorithm=request.algorithm.model_dump(),
            description=request.description,
            activate=request.activate,
        )
    except InvalidStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    return ScoringConfigResponse.from_domain(config)


@router.post(
    "/{version}/activate",
    response_model=ScoringConfigResponse,
    summary="Activate scoring config",
    description="Make this version the single active scoring config.",
)
def activate_config(version: str, store: ScoringConfigStoreDep) -> ScoringConfigResponse:
    try:
        config = store.activate(version)
    except MissingConfigError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    logger.info("scoring_config_activation_requested", version=version)
    return ScoringConfigResponse.from_domain(config)
