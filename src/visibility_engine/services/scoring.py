"""Scoring service: config resolution, engine result storage and score upserts."""

from collections.abc import Callable, Sequence
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from visibility_engine.db.models import (
    EngineResultModel,
    PromptScoreModel,
    ScoringConfigModel,
)
from visibility_engine.db.session import SessionLocal
from visibility_engine.domain.enums import EngineStatus, Sentiment
from visibility_engine.domain.errors import InvalidStateError, MissingConfigError
from visibility_engine.domain.models import (
    DEFAULT_SCORING_CONFIG,
    EngineResult,
    ScoreResult,
    ScoringConfig,
    ScoringTotals,
)
from visibility_engine.domain.scoring import compute_score
from visibility_engine.logging import get_logger
from visibility_engine.services.authority import AuthorityRegistry
from visibility_engine.utils.clock import utc_now

logger = get_logger(__name__)


class ScoringConfigStore:
    """Versioned scoring configs with a single active pointer."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    def get(self, version: str | None = None) -> ScoringConfig:
        """Resolve a config by version, or the active one.

        Falls back to the built-in defaults when nothing matches.
        """
        try:
            return self.require(version)
        except MissingConfigError as e:
            logger.info("scoring_config_defaulted", requested_version=version, reason=str(e))
            return DEFAULT_SCORING_CONFIG

    def require(self, version: str | None = None) -> ScoringConfig:
        stmt = select(ScoringConfigModel)
        if version is not None:
            stmt = stmt.where(ScoringConfigModel.version == version)
        else:
            stmt = stmt.where(ScoringConfigModel.is_active)

        with self._session_factory() as session:
            row = session.execute(stmt).scalar_one_or_none()
            if row is None:
                if version is not None:
                    raise MissingConfigError(f"Scoring config {version!r} not found")
                raise MissingConfigError("No active scoring config")
            return row.to_domain()

    def list(self) -> list[ScoringConfig]:
        stmt = select(ScoringConfigModel).order_by(ScoringConfigModel.created_at.desc())
        with self._session_factory() as session:
            return [row.to_domain() for row in session.execute(stmt).scalars()]

    def create(
        self,
        version: str,
        weights: dict[str, Any] | None = None,
        algorithm: dict[str, Any] | None = None,
        description: str | None = None,
        activate: bool = False,
    ) -> ScoringConfig:
        """Store a new config version.

        Missing weight or algorithm keys are filled from the defaults so the
        stored row is always complete.

        Raises:
            InvalidStateError: If the version already exists
        """
        config = ScoringConfig.from_dicts(version, weights, algorithm, description)

        with self._session_factory() as session, session.begin():
            exists = session.execute(
                select(ScoringConfigModel.id).where(ScoringConfigModel.version == version)
            ).first()
            if exists:
                raise InvalidStateError(f"Scoring config {version!r} already exists")

            session.add(
                ScoringConfigModel(
                    version=version,
                    weights=config.weights_dict(),
                    algorithm=config.algorithm_dict(),
                    description=description,
                    is_active=False,
                )
            )

        logger.info("scoring_config_created", version=version)
        if activate:
            return self.activate(version)
        return config

    def activate(self, version: str) -> ScoringConfig:
        """Make ``version`` the only active config.

        Raises:
            MissingConfigError: If the version does not exist
        """
        with self._session_factory() as session, session.begin():
            row = session.execute(
                select(ScoringConfigModel).where(ScoringConfigModel.version == version)
            ).scalar_one_or_none()
            if row is None:
                raise MissingConfigError(f"Scoring config {version!r} not found")

            # Clear first so the single-active index never sees two rows
            session.execute(
                update(ScoringConfigModel)
                .where(ScoringConfigModel.is_active)
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            session.execute(
                update(ScoringConfigModel)
                .where(ScoringConfigModel.id == row.id)
                .values(is_active=True)
                .execution_options(synchronize_session=False)
            )
            session.expire(row)
            config = row.to_domain()

        logger.info("scoring_config_activated", version=version)
        return config


class ScoringService:
    """Computes and stores composite visibility scores for prompts."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        registry: AuthorityRegistry | None = None,
        configs: ScoringConfigStore | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.registry = registry or AuthorityRegistry(session_factory)
        self.configs = configs or ScoringConfigStore(session_factory)

    def score_prompt(
        self,
        prompt_id: UUID,
        engine_results: Sequence[EngineResult],
        totals: ScoringTotals | None = None,
        version: str | None = None,
        store: bool = True,
    ) -> ScoreResult:
        """Score a prompt from its per-engine results.

        Args:
            prompt_id: Prompt being scored
            engine_results: One result per queried engine
            totals: Prompt-level citation/mention counts
            version: Scoring config version; the active config when omitted
            store: Upsert the result into ``prompt_scores``

        Returns:
            The computed ScoreResult
        """
        config = self.configs.get(version)
        engines = [result.engine for result in engine_results]
        authorities = self.registry.authority_map(engines)

        missing = sorted(set(engines) - set(authorities))
        if missing:
            logger.info("scoring_authority_missing", prompt_id=str(prompt_id), engines=missing)

        unavailable = [
            engine
            for engine, authority in authorities.items()
            if authority.status == EngineStatus.UNAVAILABLE
        ]
        fallbacks = self.registry.fallback_snapshots(unavailable) if unavailable else {}
        if fallbacks:
            logger.info(
                "scoring_fallback_snapshots_used",
                prompt_id=str(prompt_id),
                engines=sorted(fallbacks),
            )

        result = compute_score(
            prompt_id,
            engine_results,
            totals or ScoringTotals(),
            authorities,
            config,
            now=utc_now(),
            fallbacks=fallbacks,
        )

        if store:
            self._upsert(result)

        logger.info(
            "prompt_scored",
            prompt_id=str(prompt_id),
            ai_visibility_score=result.ai_visibility_score,
            confidence=result.confidence,
            is_estimated=result.is_estimated,
            scoring_version=result.scoring_version,
        )
        return result

    def score_stored_results(
        self,
        prompt_id: UUID,
        totals: ScoringTotals | None = None,
        version: str | None = None,
    ) -> ScoreResult:
        """Score a prompt from the latest stored result of each engine.

        Raises:
            InvalidStateError: If the prompt has no stored engine results
        """
        results = self.latest_results(prompt_id)
        if not results:
            raise InvalidStateError(f"No engine results stored for prompt {prompt_id}")
        return self.score_prompt(prompt_id, results, totals, version=version)

    def get_score(self, prompt_id: UUID) -> ScoreResult | None:
        with self._session_factory() as session:
            row = session.execute(
                select(PromptScoreModel).where(PromptScoreModel.prompt_id == prompt_id)
            ).scalar_one_or_none()
            return row.to_domain() if row else None

    def store_engine_result(
        self,
        prompt_id: UUID,
        result: EngineResult,
        job_id: UUID | None = None,
        citations: list[str] | None = None,
        response_time_ms: float | None = None,
        raw_response: dict[str, Any] | None = None,
    ) -> UUID:
        """Persist one engine's parsed answer for later scoring."""
        authority = self.registry.get_authority(result.engine)
        row_id = uuid4()
        with self._session_factory() as session, session.begin():
            session.add(
                EngineResultModel(
                    id=row_id,
                    prompt_id=prompt_id,
                    job_id=job_id,
                    engine=result.engine,
                    mentioned=result.mentioned,
                    position=result.position,
                    citation_count=result.citation_count,
                    citations=citations,
                    sentiment=Sentiment(result.sentiment).value,
                    sentiment_score=result.sentiment_score,
                    competitors_mentioned=result.competitors_mentioned,
                    response_time_ms=response_time_ms,
                    authority_weight_at_query=authority.authority_weight if authority else None,
                    raw_response=raw_response,
                )
            )
        return row_id

    def latest_results(self, prompt_id: UUID) -> list[EngineResult]:
        """Most recent stored result per engine for a prompt."""
        stmt = (
            select(EngineResultModel)
            .where(EngineResultModel.prompt_id == prompt_id)
            .order_by(EngineResultModel.created_at.desc())
        )
        latest: dict[str, EngineResult] = {}
        with self._session_factory() as session:
            for row in session.execute(stmt).scalars():
                if row.engine in latest:
                    continue
                latest[row.engine] = EngineResult(
                    engine=row.engine,
                    mentioned=row.mentioned,
                    position=row.position,
                    citation_count=row.citation_count,
                    sentiment=Sentiment(row.sentiment),
                    sentiment_score=row.sentiment_score,
                    competitors_mentioned=row.competitors_mentioned,
                )
        return sorted(latest.values(), key=lambda r: r.engine)

    def _upsert(self, result: ScoreResult) -> None:
        full_confidence = not result.is_estimated and not result.degraded_engines
        values: dict[str, Any] = {
            "prompt_id": result.prompt_id,
            "ai_visibility_score": result.ai_visibility_score,
            "unweighted_avs": result.unweighted_avs,
            "citation_score": result.citation_score,
            "brand_authority_score": result.brand_authority_score,
            "share_of_voice": result.share_of_voice,
            "breakdown": [entry.to_dict() for entry in result.breakdown],
            "confidence": result.confidence,
            "is_estimated": result.is_estimated,
            "degraded_engines": list(result.degraded_engines),
            "scoring_version": result.scoring_version,
            "scored_at": result.scored_at,
        }
        if full_confidence:
            values["confidence_downgrade_reason"] = None
            values["last_full_confidence_score"] = result.ai_visibility_score
            values["last_full_confidence_at"] = result.scored_at
        else:
            values["confidence_downgrade_reason"] = (
                "Engines degraded or unavailable: " + ", ".join(result.degraded_engines)
            )

        with self._session_factory() as session, session.begin():
            stmt = _insert_for(session)(PromptScoreModel).values(id=uuid4(), **values)
            # Keep the last full-confidence snapshot when this run is degraded
            stmt = stmt.on_conflict_do_update(
                index_elements=[PromptScoreModel.prompt_id],
                set_={key: stmt.excluded[key] for key in values if key != "prompt_id"},
            )
            session.execute(stmt)


def _insert_for(session: Session) -> Callable[..., Any]:
    """Dialect-specific INSERT construct supporting ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise NotImplementedError(f"Score upsert is not supported on {dialect}")
