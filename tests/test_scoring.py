"""Tests for the scoring service and scoring config store."""

from uuid import uuid4

import pytest
from sqlalchemy import select

from visibility_engine.db.models import PromptScoreModel
from visibility_engine.domain.enums import Sentiment
from visibility_engine.domain.errors import InvalidStateError, MissingConfigError
from visibility_engine.domain.models import DEFAULT_SCORING_VERSION, EngineResult, ScoringTotals
from visibility_engine.services.scoring import ScoringConfigStore


def sample_results() -> list[EngineResult]:
    return [
        EngineResult(
            engine="chatgpt",
            mentioned=True,
            position=1,
            citation_count=2,
            sentiment=Sentiment.POSITIVE,
            sentiment_score=0.6,
        ),
        EngineResult(engine="perplexity", mentioned=True, position=3, citation_count=4),
        EngineResult(engine="gemini", mentioned=False, competitors_mentioned=2),
    ]


class TestConfigStore:
    """Versioned configs with a single active pointer."""

    def test_defaults_when_store_is_empty(self, session_factory) -> None:
        store = ScoringConfigStore(session_factory)

        config = store.get()

        assert config.version == DEFAULT_SCORING_VERSION
        assert config.weights.visibility == 0.4
        with pytest.raises(MissingConfigError):
            store.require()

    def test_create_and_activate(self, session_factory) -> None:
        store = ScoringConfigStore(session_factory)
        store.create("v1.0.0", activate=True)
        store.create("v2.0.0", weights={"visibility": 0.5, "rank": 0.0})

        assert store.get().version == "v1.0.0"

        activated = store.activate("v2.0.0")

        assert activated.is_active
        assert store.get().version == "v2.0.0"
        assert [c.version for c in store.list() if c.is_active] == ["v2.0.0"]
        # Unspecified keys are filled from the defaults
        assert store.get("v2.0.0").weights.citations == 0.3

    def test_unknown_version_falls_back(self, session_factory) -> None:
        store = ScoringConfigStore(session_factory)
        store.create("v1.0.0", activate=True)

        assert store.get("v9.9.9").version == DEFAULT_SCORING_VERSION
        with pytest.raises(MissingConfigError):
            store.require("v9.9.9")

    def test_duplicate_version_rejected(self, session_factory) -> None:
        store = ScoringConfigStore(session_factory)
        store.create("v1.0.0")

        with pytest.raises(InvalidStateError):
            store.create("v1.0.0")

    def test_activate_unknown_version(self, session_factory) -> None:
        with pytest.raises(MissingConfigError):
            ScoringConfigStore(session_factory).activate("v404")


class TestScoringService:
    """Scoring against live authority state and score persistence."""

    def test_breakdown_survives_round_trip(self, scoring_service) -> None:
        prompt_id = uuid4()

        computed = scoring_service.score_prompt(prompt_id, sample_results())
        stored = scoring_service.get_score(prompt_id)

        assert stored is not None
        assert stored.breakdown == computed.breakdown
        assert [entry.engine for entry in stored.breakdown] == ["chatgpt", "perplexity", "gemini"]
        assert stored.ai_visibility_score == computed.ai_visibility_score
        assert stored.scoring_version == DEFAULT_SCORING_VERSION

    def test_uses_authority_weights(self, scoring_service) -> None:
        result = scoring_service.score_prompt(uuid4(), sample_results(), store=False)

        # Seeded weights differ per engine, so the weighted average moves
        assert result.ai_visibility_score != result.unweighted_avs
        assert result.degraded_engines == []
        assert result.confidence == 90.0

    def test_store_false_skips_persistence(self, scoring_service) -> None:
        prompt_id = uuid4()
        scoring_service.score_prompt(prompt_id, sample_results(), store=False)

        assert scoring_service.get_score(prompt_id) is None

    def test_rescoring_overwrites(self, scoring_service, session_factory) -> None:
        prompt_id = uuid4()
        scoring_service.score_prompt(prompt_id, sample_results())
        second = scoring_service.score_prompt(
            prompt_id, [EngineResult(engine="chatgpt", mentioned=False)]
        )

        with session_factory() as session:
            rows = session.execute(
                select(PromptScoreModel).where(PromptScoreModel.prompt_id == prompt_id)
            ).scalars().all()
        assert len(rows) == 1
        assert rows[0].ai_visibility_score == second.ai_visibility_score

    def test_degraded_run_keeps_last_full_confidence(
        self, scoring_service, registry, session_factory
    ) -> None:
        prompt_id = uuid4()
        full = scoring_service.score_prompt(prompt_id, sample_results())

        for _ in range(5):
            registry.record_query_outcome("gemini", success=False)
        estimated = scoring_service.score_prompt(prompt_id, sample_results())

        assert estimated.is_estimated
        assert estimated.degraded_engines == ["gemini"]
        assert estimated.confidence < full.confidence

        with session_factory() as session:
            row = session.execute(
                select(PromptScoreModel).where(PromptScoreModel.prompt_id == prompt_id)
            ).scalar_one()
        assert row.last_full_confidence_score == full.ai_visibility_score
        assert row.confidence_downgrade_reason == "Engines degraded or unavailable: gemini"

    def test_requested_config_version(self, scoring_service, session_factory) -> None:
        ScoringConfigStore(session_factory).create(
            "mention-only",
            weights={"visibility": 1.0, "citations": 0.0, "sentiment": 0.0, "rank": 0.0},
        )

        result = scoring_service.score_prompt(
            uuid4(), [EngineResult(engine="chatgpt", mentioned=True)], version="mention-only"
        )

        assert result.scoring_version == "mention-only"
        assert result.breakdown[0].score == 100.0

    def test_score_stored_results(self, scoring_service) -> None:
        prompt_id = uuid4()
        scoring_service.store_engine_result(
            prompt_id, EngineResult(engine="perplexity", mentioned=False)
        )
        scoring_service.store_engine_result(
            prompt_id, EngineResult(engine="perplexity", mentioned=True, position=1)
        )
        scoring_service.store_engine_result(
            prompt_id, EngineResult(engine="chatgpt", mentioned=True, position=2)
        )

        latest = scoring_service.latest_results(prompt_id)
        assert [r.engine for r in latest] == ["chatgpt", "perplexity"]
        assert all(r.mentioned for r in latest)

        result = scoring_service.score_stored_results(
            prompt_id, ScoringTotals(total_citations=4, brand_citations=1)
        )
        assert len(result.breakdown) == 2
        assert scoring_service.get_score(prompt_id) is not None

    def test_score_stored_results_requires_results(self, scoring_service) -> None:
        with pytest.raises(InvalidStateError):
            scoring_service.score_stored_results(uuid4())

    def test_engine_without_authority_counts_at_full_weight(self, scoring_service) -> None:
        results = [
            EngineResult(engine="chatgpt", mentioned=True, position=1),
            EngineResult(engine="newcomer", mentioned=True, position=1),
        ]

        result = scoring_service.score_prompt(uuid4(), results, store=False)

        assert result.degraded_engines == []
        assert result.breakdown[0].score == result.breakdown[1].score
        assert result.ai_visibility_score == result.unweighted_avs

    def test_unavailable_engine_scores_from_snapshot(self, scoring_service, registry) -> None:
        registry.create_snapshot("gemini")
        for _ in range(5):
            registry.record_query_outcome("gemini", success=False)

        result = scoring_service.score_prompt(uuid4(), sample_results(), store=False)

        gemini = next(entry for entry in result.breakdown if entry.engine == "gemini")
        assert gemini.score == pytest.approx(65.6)
        assert gemini.factors["fallback_reliability"] == 82.0
        assert result.is_estimated
        assert result.degraded_engines == ["gemini"]

    def test_unavailable_engine_without_snapshot(self, scoring_service, registry) -> None:
        for _ in range(5):
            registry.record_query_outcome("gemini", success=False)

        result = scoring_service.score_prompt(uuid4(), sample_results(), store=False)

        gemini = next(entry for entry in result.breakdown if entry.engine == "gemini")
        assert "fallback_reliability" not in gemini.factors
