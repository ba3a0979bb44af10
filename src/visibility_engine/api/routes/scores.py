"""Visibility score endpoints.

Consumers must surface ``is_estimated`` and ``degraded_engines`` as a
visible confidence signal rather than hide them.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from visibility_engine.api.deps import ScoringServiceDep
from visibility_engine.domain.enums import Sentiment
from visibility_engine.domain.errors import InvalidStateError
from visibility_engine.domain.models import EngineResult, ScoreResult, ScoringTotals

router = APIRouter(prefix="/scores", tags=["Scores"])


class EngineResultIn(BaseModel):
    engine: str = Field(..., min_length=1, max_length=50)
    mentioned: bool
    position: int | None = Field(default=None, ge=1)
    citation_count: int = Field(default=0, ge=0)
    sentiment: Sentiment = Sentiment.NEUTRAL
    sentiment_score: float = Field(default=0.0, ge=-1.0, le=1.0)
    competitors_mentioned: int = Field(default=0, ge=0)

    def to_domain(self) -> EngineResult:
        return EngineResult(**self.model_dump())


class TotalsIn(BaseModel):
    total_citations: int = Field(default=0, ge=0)
    brand_citations: int = Field(default=0, ge=0)
    competitor_mentions: int = Field(default=0, ge=0)
    historical_trend: float = 0.0

    def to_domain(self) -> ScoringTotals:
        return ScoringTotals(**self.model_dump())


class ScoreRequest(BaseModel):
    """Score a prompt from explicitly supplied engine results."""

    prompt_id: UUID
    engine_results: list[EngineResultIn] = Field(..., min_length=1)
    totals: TotalsIn = Field(default_factory=TotalsIn)
    scoring_version: str | None = None
    store: bool = True


class RecalculateRequest(BaseModel):
    totals: TotalsIn = Field(default_factory=TotalsIn)
    scoring_version: str | None = None


class EngineScoreOut(BaseModel):
    engine: str
    score: float
    factors: dict[str, float]


class ScoreResponse(BaseModel):
    prompt_id: UUID
    ai_visibility_score: float
    unweighted_avs: float
    citation_score: float
    brand_authority_score: float
    share_of_voice: float
    breakdown: list[EngineScoreOut]
    confidence: float
    confidence_level: str
    is_estimated: bool
    degraded_engines: list[str]
    scoring_version: str
    scored_at: datetime | None = None

    @classmethod
    def from_domain(cls, result: ScoreResult) -> "ScoreResponse":
        return cls.model_validate(result.to_dict())


@router.post(
    "",
    response_model=ScoreResponse,
    summary="Score prompt",
    description="Compute (and by default store) the composite score for a prompt.",
)
def score_prompt(request: ScoreRequest, scoring: ScoringServiceDep) -> ScoreResponse:
    result = scoring.score_prompt(
        request.prompt_id,
        [r.to_domain() for r in request.engine_results],
        request.totals.to_domain(),
        version=request.scoring_version,
        store=request.store,
    )
    return ScoreResponse.from_domain(result)


@router.get(
    "/{prompt_id}",
    response_model=ScoreResponse,
    summary="Get score",
)
def get_score(prompt_id: UUID, scoring: ScoringServiceDep) -> ScoreResponse:
    result = scoring.get_score(prompt_id)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Score not found")
    return ScoreResponse.from_domain(result)


@router.post(
    "/{prompt_id}/recalculate",
    response_model=ScoreResponse,
    summary="Recalculate score",
    description="Re-score a prompt from its latest stored engine results.",
)
def recalculate_score(
    prompt_id: UUID, scoring: ScoringServiceDep, request: RecalculateRequest | None = None
) -> ScoreResponse:
    request = request or RecalculateRequest()
    try:
        result = scoring.score_stored_results(
            prompt_id, request.totals.to_domain(), version=request.scoring_version
        )
    except InvalidStateError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return ScoreResponse.from_domain(result)
