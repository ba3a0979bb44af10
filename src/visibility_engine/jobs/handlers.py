"""Job handlers, one per job type.

A handler receives the claimed ``Job`` and the shared ``HandlerContext``
and returns a JSON-serialisable result. Raising marks the attempt as
failed: ``PermanentError`` dead-letters immediately, anything else is
retried with backoff. Payloads are validated with pydantic and a
validation failure is a permanent error.
"""

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.orm import Session

from visibility_engine.adapters.citations import CitationVerifier, get_citation_verifier
from visibility_engine.adapters.engines import AnswerEngineClient, EngineQuery, get_engine_client
from visibility_engine.db.session import SessionLocal
from visibility_engine.domain.engines import (
    DEFAULT_AI_OVERVIEW_ENGINE,
    DEFAULT_LLM_SCRAPE_ENGINE,
)
from visibility_engine.domain.enums import AlertSeverity, JobType
from visibility_engine.domain.errors import PermanentError, TransientError
from visibility_engine.domain.mentions import analyze_answer, count_brand_citations
from visibility_engine.domain.models import Alert, Job, ScoringTotals
from visibility_engine.logging import get_logger
from visibility_engine.services.alerting import AlertingService, AlertSink
from visibility_engine.services.authority import AuthorityRegistry
from visibility_engine.services.scoring import ScoringService
from visibility_engine.utils import run_async

logger = get_logger(__name__)

P = TypeVar("P", bound=BaseModel)


@dataclass
class HandlerContext:
    """Collaborators shared by all handlers in a processing run."""

    registry: AuthorityRegistry
    scoring: ScoringService
    engine_client: AnswerEngineClient
    citation_verifier: CitationVerifier
    alerts: AlertSink

    @classmethod
    def create(
        cls,
        session_factory: Callable[[], Session] = SessionLocal,
        alert_sink: AlertSink | None = None,
        engine_client: AnswerEngineClient | None = None,
        citation_verifier: CitationVerifier | None = None,
    ) -> "HandlerContext":
        alerts = alert_sink or AlertingService(session_factory)
        registry = AuthorityRegistry(session_factory, alert_sink=alerts)
        return cls(
            registry=registry,
            scoring=ScoringService(session_factory, registry=registry),
            engine_client=engine_client or get_engine_client(),
            citation_verifier=citation_verifier or get_citation_verifier(),
            alerts=alerts,
        )


# =============================================================================
# Payloads
# =============================================================================


class BrandPayload(BaseModel):
    brand_name: str = Field(min_length=1)
    brand_domain: str | None = None
    competitors: list[str] = Field(default_factory=list)


class AnalyzePromptPayload(BrandPayload):
    prompt_id: UUID
    prompt_text: str = Field(min_length=1)
    engine: str = Field(min_length=1)
    persona: str | None = None
    location: str | None = None


class ScrapePrompt(BaseModel):
    prompt_id: UUID
    prompt_text: str = Field(min_length=1)


class ScrapePayload(BrandPayload):
    prompts: list[ScrapePrompt] = Field(min_length=1)
    engine: str | None = None
    location: str | None = None


class VerifyCitationPayload(BaseModel):
    source_url: str = Field(min_length=1)
    claim_text: str = Field(min_length=1)


class SendAlertPayload(BaseModel):
    alert_type: str = Field(min_length=1)
    title: str = Field(min_length=1)
    message: str
    severity: AlertSeverity = AlertSeverity.WARNING
    owner_id: UUID | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class CalculateScoresPayload(BaseModel):
    prompt_id: UUID
    total_citations: int = Field(default=0, ge=0)
    brand_citations: int = Field(default=0, ge=0)
    competitor_mentions: int = Field(default=0, ge=0)
    historical_trend: float = 0.0
    scoring_version: str | None = None


def parse_payload(model: type[P], job: Job) -> P:
    """Validate a job payload, turning validation failures into permanent errors."""
    try:
        return model.model_validate(job.payload)
    except ValidationError as e:
        raise PermanentError(f"Invalid {job.job_type} payload: {e.error_count()} error(s)") from e


# =============================================================================
# Handlers
# =============================================================================


def _query_and_store(
    ctx: HandlerContext,
    job: Job,
    engine: str,
    prompt_id: UUID,
    prompt_text: str,
    brand: BrandPayload,
    persona: str | None = None,
    location: str | None = None,
) -> dict[str, Any]:
    """Query one engine, analyse the answer and store it as an engine result."""
    started = time.perf_counter()
    with ctx.registry.track(engine):
        answer = run_async(
            ctx.engine_client.query(
                EngineQuery(engine=engine, prompt=prompt_text, persona=persona, location=location)
            )
        )
    elapsed_ms = (time.perf_counter() - started) * 1000

    result = analyze_answer(
        engine,
        answer.text,
        brand.brand_name,
        brand.competitors,
        answer.citations,
    )
    result_id = ctx.scoring.store_engine_result(
        prompt_id,
        result,
        job_id=job.id,
        citations=answer.citations,
        response_time_ms=elapsed_ms,
        raw_response=answer.raw_response,
    )

    return {
        "engine_result_id": str(result_id),
        "prompt_id": str(prompt_id),
        "engine": engine,
        "mentioned": result.mentioned,
        "position": result.position,
        "citation_count": result.citation_count,
        "brand_citations": count_brand_citations(answer.citations, brand.brand_domain),
        "sentiment": result.sentiment.value,
        "sentiment_score": result.sentiment_score,
        "competitors_mentioned": result.competitors_mentioned,
    }


def handle_analyze_prompt(job: Job, ctx: HandlerContext) -> dict[str, Any]:
    payload = parse_payload(AnalyzePromptPayload, job)
    return _query_and_store(
        ctx,
        job,
        payload.engine,
        payload.prompt_id,
        payload.prompt_text,
        payload,
        persona=payload.persona,
        location=payload.location,
    )


def _scrape(job: Job, ctx: HandlerContext, default_engine: str) -> dict[str, Any]:
    """Run a batch of prompts against one engine.

    Partial failures are reported in the result. The attempt fails only
    when every prompt failed.
    """
    payload = parse_payload(ScrapePayload, job)
    engine = payload.engine or default_engine

    results: list[dict[str, Any]] = []
    failures: list[dict[str, Any]] = []
    last_error: Exception | None = None
    for prompt in payload.prompts:
        try:
            results.append(
                _query_and_store(
                    ctx,
                    job,
                    engine,
                    prompt.prompt_id,
                    prompt.prompt_text,
                    payload,
                    location=payload.location,
                )
            )
        except Exception as e:
            last_error = e
            failures.append({"prompt_id": str(prompt.prompt_id), "error": str(e)})
            logger.warning(
                "scrape_prompt_failed",
                job_id=str(job.id),
                engine=engine,
                prompt_id=str(prompt.prompt_id),
                error=str(e),
            )

    if not results and last_error is not None:
        raise last_error

    return {"engine": engine, "results": results, "failures": failures}


def handle_scrape_llm(job: Job, ctx: HandlerContext) -> dict[str, Any]:
    return _scrape(job, ctx, DEFAULT_LLM_SCRAPE_ENGINE)


def handle_scrape_ai_overview(job: Job, ctx: HandlerContext) -> dict[str, Any]:
    return _scrape(job, ctx, DEFAULT_AI_OVERVIEW_ENGINE)


def handle_verify_citation(job: Job, ctx: HandlerContext) -> dict[str, Any]:
    payload = parse_payload(VerifyCitationPayload, job)
    verification = run_async(ctx.citation_verifier.verify(payload.source_url, payload.claim_text))
    return verification.to_dict()


def handle_send_alert(job: Job, ctx: HandlerContext) -> dict[str, Any]:
    """Store an alert and deliver it to the configured channels.

    The alert row is written on the first attempt only; retries just
    re-attempt delivery.
    """
    payload = parse_payload(SendAlertPayload, job)
    alert = Alert(
        owner_id=payload.owner_id or job.owner_id,
        type=payload.alert_type,
        title=payload.title,
        message=payload.message,
        severity=payload.severity.value,
        data=payload.data,
    )

    alerts = ctx.alerts
    if not isinstance(alerts, AlertingService):
        alerts.emit(alert)
        return {"alert_id": str(alert.id), "delivered": True}

    if job.retry_count == 0:
        alerts.store(alert)

    delivered = False
    if alerts.has_channels:
        delivered = run_async(alerts.dispatch(alert))
        if not delivered:
            raise TransientError("Alert delivery failed on every channel")

    return {"alert_id": str(alert.id), "delivered": delivered}


def handle_calculate_scores(job: Job, ctx: HandlerContext) -> dict[str, Any]:
    payload = parse_payload(CalculateScoresPayload, job)
    totals = ScoringTotals(
        total_citations=payload.total_citations,
        brand_citations=payload.brand_citations,
        competitor_mentions=payload.competitor_mentions,
        historical_trend=payload.historical_trend,
    )
    score = ctx.scoring.score_stored_results(
        payload.prompt_id, totals, version=payload.scoring_version
    )
    return score.to_dict()


JOB_HANDLERS: dict[str, Callable[[Job, HandlerContext], dict[str, Any]]] = {
    JobType.ANALYZE_PROMPT.value: handle_analyze_prompt,
    JobType.VERIFY_CITATION.value: handle_verify_citation,
    JobType.SCRAPE_LLM.value: handle_scrape_llm,
    JobType.SCRAPE_AI_OVERVIEW.value: handle_scrape_ai_overview,
    JobType.SEND_ALERT.value: handle_send_alert,
    JobType.CALCULATE_SCORES.value: handle_calculate_scores,
}


def supported_job_types() -> Sequence[str]:
    return tuple(JOB_HANDLERS)
