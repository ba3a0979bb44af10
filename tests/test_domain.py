"""Tests for the pure authority and scoring functions."""

from dataclasses import replace
from datetime import UTC, datetime
from uuid import uuid4

import pytest

from visibility_engine.domain.authority import (
    AuditTrail,
    AuthorityTransition,
    apply_outcome,
    build_snapshot,
    classify_change,
    compute_authority_weight,
    derive_status,
    explain_authority,
    release_maintenance,
)
from visibility_engine.domain.enums import (
    AuthorityChangeType,
    ChangeTrigger,
    EngineStatus,
    Sentiment,
    SnapshotType,
    TrustLevel,
)
from visibility_engine.domain.models import (
    DEFAULT_SCORING_CONFIG,
    AuthorityAuditEntry,
    EngineAuthority,
    EngineResult,
    EngineScore,
    ScoringConfig,
    ScoringTotals,
)
from visibility_engine.domain.scoring import (
    apply_fallback,
    compute_score,
    score_engine,
    share_of_voice,
)

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


def make_authority(engine: str = "chatgpt", **kwargs) -> EngineAuthority:
    defaults = {
        "display_name": engine.title(),
        "reliability_score": 80.0,
        "citation_completeness": 75.0,
        "freshness_index": 70.0,
        "authority_weight": 1.0,
    }
    defaults.update(kwargs)
    return EngineAuthority(engine=engine, **defaults)


class TestAuthorityStateMachine:
    """Status and weight transitions driven by query outcomes."""

    @pytest.mark.parametrize(
        ("failures", "expected"),
        [
            (0, EngineStatus.HEALTHY),
            (2, EngineStatus.HEALTHY),
            (3, EngineStatus.DEGRADED),
            (4, EngineStatus.DEGRADED),
            (5, EngineStatus.UNAVAILABLE),
            (12, EngineStatus.UNAVAILABLE),
        ],
    )
    def test_derive_status_thresholds(self, failures: int, expected: EngineStatus) -> None:
        assert derive_status(failures) == expected

    def test_status_sequence_is_deterministic(self) -> None:
        """The same outcome sequence always yields the same statuses."""
        outcomes = [False, False, False, True, False, False, False, False, False, True]

        def run() -> list[EngineStatus]:
            authority = make_authority()
            statuses = []
            for success in outcomes:
                authority = apply_outcome(authority, success, NOW).current
                statuses.append(authority.status)
            return statuses

        first = run()
        assert first == run()
        assert first == [
            EngineStatus.HEALTHY,
            EngineStatus.HEALTHY,
            EngineStatus.DEGRADED,
            EngineStatus.HEALTHY,
            EngineStatus.HEALTHY,
            EngineStatus.HEALTHY,
            EngineStatus.DEGRADED,
            EngineStatus.DEGRADED,
            EngineStatus.UNAVAILABLE,
            EngineStatus.HEALTHY,
        ]

    def test_weight_bounds(self) -> None:
        assert compute_authority_weight(0, 0, 0, EngineStatus.HEALTHY) == pytest.approx(0.8)
        assert compute_authority_weight(100, 100, 100, EngineStatus.HEALTHY) == pytest.approx(1.5)
        assert compute_authority_weight(100, 100, 100, EngineStatus.UNAVAILABLE) == 0.5
        assert compute_authority_weight(100, 100, 100, EngineStatus.DEGRADED) == 0.75
        assert compute_authority_weight(0, 0, 0, EngineStatus.DEGRADED) == 0.75

    def test_weight_stays_in_range_over_many_outcomes(self) -> None:
        authority = make_authority(reliability_score=100.0)
        for i in range(60):
            authority = apply_outcome(authority, success=(i % 7 != 0 and i < 30), now=NOW).current
            assert 0.5 <= authority.authority_weight <= 1.5

    def test_reliability_untouched_below_min_sample(self) -> None:
        authority = make_authority(reliability_score=80.0)
        for _ in range(10):
            authority = apply_outcome(authority, success=False, now=NOW).current
        assert authority.reliability_score == 80.0

        authority = apply_outcome(authority, success=True, now=NOW).current
        assert authority.total_queries == 11
        assert authority.reliability_score == pytest.approx(100.0 / 11)

    def test_apply_outcome_does_not_mutate_input(self) -> None:
        authority = make_authority()
        transition = apply_outcome(authority, success=False, now=NOW, response_time_ms=200.0)

        assert authority.total_queries == 0
        assert transition.previous is authority
        assert transition.current.total_queries == 1
        assert transition.current.last_failure == NOW
        assert transition.current.avg_response_time_ms == 200.0

    def test_running_average_response_time(self) -> None:
        authority = make_authority()
        authority = apply_outcome(authority, True, NOW, response_time_ms=100.0).current
        authority = apply_outcome(authority, True, NOW, response_time_ms=300.0).current
        authority = apply_outcome(authority, True, NOW).current

        assert authority.avg_response_time_ms == pytest.approx(200.0)
        assert authority.last_successful_query == NOW

    def test_outcomes_never_replace_maintenance(self) -> None:
        authority = make_authority(status=EngineStatus.MAINTENANCE)
        for _ in range(6):
            authority = apply_outcome(authority, success=False, now=NOW).current
        assert authority.status == EngineStatus.MAINTENANCE
        assert authority.consecutive_failures == 6

        released = release_maintenance(authority)
        assert released.status == EngineStatus.UNAVAILABLE
        assert released.authority_weight == 0.5

    def test_five_failures_pin_weight_to_floor(self) -> None:
        authority = make_authority(authority_weight=1.15)
        transitions = [apply_outcome(authority, success=False, now=NOW)]
        for _ in range(4):
            transitions.append(apply_outcome(transitions[-1].current, success=False, now=NOW))

        assert [t.became_unavailable for t in transitions] == [False, False, False, False, True]
        assert transitions[-1].current.authority_weight == 0.5

        recovered = apply_outcome(transitions[-1].current, success=True, now=NOW)
        assert recovered.became_healthy
        assert recovered.current.consecutive_failures == 0

    def test_explain_authority(self) -> None:
        authority = make_authority(
            "perplexity",
            reliability_score=88.0,
            citation_completeness=95.0,
            freshness_index=90.0,
            authority_weight=1.12,
        )
        explanation = explain_authority(authority, rank=1, total=6)

        assert explanation.trust_level == TrustLevel.HIGH
        assert len(explanation.why_trustworthy) == 3
        assert explanation.why_cautious == []
        assert explanation.compared_to_others == "Ranked #1 of 6 engines by authority weight"

    def test_explain_unavailable_engine(self) -> None:
        authority = make_authority(
            status=EngineStatus.UNAVAILABLE,
            consecutive_failures=5,
            authority_weight=0.5,
            citation_completeness=50.0,
        )
        explanation = explain_authority(authority, rank=6, total=6)

        assert explanation.trust_level == TrustLevel.LOW
        assert any("unavailable" in reason for reason in explanation.why_cautious)
        assert any("5 consecutive failures" in reason for reason in explanation.why_cautious)


class TestAuditAndSnapshots:
    """Audit classification and snapshot construction."""

    def steady(self, **kwargs) -> EngineAuthority:
        weight = compute_authority_weight(80.0, 75.0, 70.0, EngineStatus.HEALTHY)
        return make_authority(authority_weight=weight, **kwargs)

    def test_small_moves_are_not_audited(self) -> None:
        transition = apply_outcome(self.steady(), success=True, now=NOW)

        assert classify_change(transition) is None

    def test_outage_is_an_sla_violation(self) -> None:
        transition = apply_outcome(self.steady(consecutive_failures=4), success=False, now=NOW)

        change = classify_change(transition)

        assert change.change_type == AuthorityChangeType.SLA_VIOLATION
        assert "5 consecutive failures" in change.explanation

    def test_recovery_is_audited(self) -> None:
        down = self.steady(
            status=EngineStatus.UNAVAILABLE, consecutive_failures=6, authority_weight=0.5
        )

        change = classify_change(apply_outcome(down, success=True, now=NOW))

        assert change.change_type == AuthorityChangeType.AUTO_RECOVERY
        assert "unavailable" in change.explanation

    def test_degrading_is_a_reliability_change(self) -> None:
        transition = apply_outcome(self.steady(consecutive_failures=2), success=False, now=NOW)

        change = classify_change(transition)

        assert change.change_type == AuthorityChangeType.RELIABILITY_CHANGE
        assert "(degraded)" in change.explanation

    def test_manual_changes(self) -> None:
        before = self.steady()
        after = replace(before, status=EngineStatus.MAINTENANCE, status_message="Model upgrade")

        change = classify_change(AuthorityTransition(before, after), manual=True)

        assert change.change_type == AuthorityChangeType.MANUAL_OVERRIDE
        assert change.explanation.endswith(": Model upgrade")
        assert classify_change(AuthorityTransition(before, before), manual=True) is None

    def test_build_snapshot(self) -> None:
        authority = make_authority(total_queries=20, successful_queries=15)
        earlier = build_snapshot(make_authority(total_queries=12), SnapshotType.HOURLY, NOW)

        snapshot = build_snapshot(authority, SnapshotType.DAILY, NOW, previous=earlier)

        assert snapshot.snapshot_type == SnapshotType.DAILY
        assert snapshot.success_rate == pytest.approx(75.0)
        assert snapshot.queries_in_period == 8
        assert snapshot.reliability_score == 80.0
        assert snapshot.created_at == NOW
        assert build_snapshot(make_authority(), SnapshotType.MANUAL, NOW).success_rate is None

    def test_audit_trail_summary(self) -> None:
        assert AuditTrail("chatgpt", 7).summary == "No authority changes in the last 7 days"

        change = classify_change(
            apply_outcome(self.steady(consecutive_failures=4), success=False, now=NOW)
        )
        entry = AuthorityAuditEntry(
            id=uuid4(),
            engine="chatgpt",
            change_type=change.change_type,
            triggered_by=ChangeTrigger.QUERY_RESULT,
            explanation=change.explanation,
        )

        assert AuditTrail("chatgpt", 3, [entry]).summary == (
            "1 authority change(s) in the last 3 days"
        )


class TestScoring:
    """Per-engine scores and the composite score."""

    def test_mentioned_engine_beats_silent_engine(self) -> None:
        a = EngineResult(
            engine="a",
            mentioned=True,
            position=1,
            citation_count=2,
            sentiment=Sentiment.POSITIVE,
            sentiment_score=0.8,
        )
        b = EngineResult(engine="b", mentioned=False)
        authorities = {
            "a": make_authority("a", authority_weight=1.2),
            "b": make_authority("b", authority_weight=0.8),
        }

        result = compute_score(
            uuid4(), [a, b], ScoringTotals(), authorities, DEFAULT_SCORING_CONFIG, now=NOW
        )
        score_a, score_b = (entry.score for entry in result.breakdown)

        assert score_a == pytest.approx(78.6)
        assert score_b == pytest.approx(10.0)
        assert score_a > score_b
        assert score_b < result.ai_visibility_score < score_a
        expected = (score_a * 1.2 + score_b * 0.8) / 2.0
        assert result.ai_visibility_score == pytest.approx(round(expected, 2))
        assert result.unweighted_avs == pytest.approx(round((score_a + score_b) / 2, 2))

    def test_equal_weights_match_unweighted_average(self) -> None:
        results = [
            EngineResult(engine="a", mentioned=True, position=2, citation_count=1),
            EngineResult(
                engine="b",
                mentioned=True,
                position=4,
                sentiment=Sentiment.NEGATIVE,
                sentiment_score=-0.5,
            ),
            EngineResult(engine="c", mentioned=False, competitors_mentioned=2),
        ]
        authorities = {r.engine: make_authority(r.engine, authority_weight=1.0) for r in results}

        result = compute_score(
            uuid4(), results, ScoringTotals(), authorities, DEFAULT_SCORING_CONFIG, now=NOW
        )

        assert result.ai_visibility_score == result.unweighted_avs

    def test_missing_authorities_score_unweighted(self) -> None:
        results = [
            EngineResult(engine="a", mentioned=True, position=1),
            EngineResult(engine="b", mentioned=False),
        ]
        result = compute_score(uuid4(), results, ScoringTotals(), {}, DEFAULT_SCORING_CONFIG)

        assert result.ai_visibility_score == result.unweighted_avs
        assert result.confidence == 50 + 10 * 2 + 5 * 1
        assert result.degraded_engines == []
        assert result.is_estimated is False

    def test_confidence_non_increasing_with_unhealthy_engines(self) -> None:
        results = [EngineResult(engine=name, mentioned=True) for name in ("a", "b", "c")]
        statuses = [EngineStatus.DEGRADED, EngineStatus.UNAVAILABLE, EngineStatus.DEGRADED]

        confidences = []
        for unhealthy in range(4):
            authorities = {
                r.engine: make_authority(
                    r.engine,
                    status=statuses[i] if i < unhealthy else EngineStatus.HEALTHY,
                )
                for i, r in enumerate(results)
            }
            result = compute_score(
                uuid4(), results, ScoringTotals(), authorities, DEFAULT_SCORING_CONFIG
            )
            confidences.append(result.confidence)

        assert confidences == sorted(confidences, reverse=True)
        assert confidences[0] == 95.0
        assert confidences[-1] == 0.0

    def test_degradation_flags(self) -> None:
        results = [
            EngineResult(engine="a", mentioned=True),
            EngineResult(engine="b", mentioned=True),
            EngineResult(engine="c", mentioned=True),
        ]
        authorities = {
            "a": make_authority("a", status=EngineStatus.DEGRADED, authority_weight=0.75),
            "b": make_authority("b", status=EngineStatus.MAINTENANCE),
            "c": make_authority("c"),
        }

        result = compute_score(uuid4(), results, ScoringTotals(), authorities, DEFAULT_SCORING_CONFIG)
        assert result.degraded_engines == ["a"]
        assert result.is_estimated is False

        authorities["a"] = make_authority("a", status=EngineStatus.UNAVAILABLE, authority_weight=0.5)
        result = compute_score(uuid4(), results, ScoringTotals(), authorities, DEFAULT_SCORING_CONFIG)
        assert result.degraded_engines == ["a"]
        assert result.is_estimated is True
        assert result.confidence_level == "medium"

    def test_unavailable_engine_scores_from_snapshot(self) -> None:
        results = [
            EngineResult(engine="a", mentioned=False),
            EngineResult(engine="b", mentioned=True, position=1),
        ]
        authorities = {
            "a": make_authority("a", status=EngineStatus.UNAVAILABLE, authority_weight=0.5),
            "b": make_authority("b"),
        }
        fallbacks = {
            "a": build_snapshot(
                make_authority("a", reliability_score=90.0), SnapshotType.HOURLY, NOW
            ),
            "b": build_snapshot(
                make_authority("b", reliability_score=10.0), SnapshotType.HOURLY, NOW
            ),
        }

        result = compute_score(
            uuid4(),
            results,
            ScoringTotals(),
            authorities,
            DEFAULT_SCORING_CONFIG,
            fallbacks=fallbacks,
        )

        fallback, live = result.breakdown
        assert fallback.score == pytest.approx(72.0)
        assert fallback.factors["fallback_reliability"] == 90.0
        assert live == score_engine(results[1], DEFAULT_SCORING_CONFIG)
        assert result.is_estimated is True
        assert result.degraded_engines == ["a"]

    def test_fallback_ignored_for_available_engine(self) -> None:
        entry = EngineScore(engine="a", score=40.0)
        snapshot = build_snapshot(make_authority("a"), SnapshotType.HOURLY, NOW)

        assert apply_fallback(entry, make_authority("a"), snapshot) is entry
        assert apply_fallback(entry, None, snapshot) is entry
        down = make_authority("a", status=EngineStatus.UNAVAILABLE)
        assert apply_fallback(entry, down, None) is entry

    def test_competitor_penalty_is_bounded(self) -> None:
        crowded = EngineResult(engine="a", mentioned=True, position=1, competitors_mentioned=50)
        entry = score_engine(crowded, DEFAULT_SCORING_CONFIG)

        assert entry.factors["competitor_penalty"] == -100.0
        assert entry.score == 0.0

    def test_unranked_mention_gets_midpoint_position(self) -> None:
        entry = score_engine(EngineResult(engine="a", mentioned=True), DEFAULT_SCORING_CONFIG)
        assert entry.factors["position"] == 50.0

        entry = score_engine(EngineResult(engine="a", mentioned=True, position=20), DEFAULT_SCORING_CONFIG)
        assert entry.factors["position"] == 0.0

    def test_config_weights_change_the_score(self) -> None:
        result = EngineResult(engine="a", mentioned=True, position=1)
        mention_only = ScoringConfig.from_dicts(
            "mention-only",
            {"visibility": 1.0, "citations": 0.0, "sentiment": 0.0, "rank": 0.0},
            None,
        )

        assert score_engine(result, mention_only).score == 100.0
        assert score_engine(result, DEFAULT_SCORING_CONFIG).score == pytest.approx(60.0)

    def test_citation_score_and_share_of_voice(self) -> None:
        results = [
            EngineResult(engine="a", mentioned=True, citation_count=3),
            EngineResult(engine="b", mentioned=False, citation_count=1),
        ]
        totals = ScoringTotals(total_citations=4, brand_citations=2, competitor_mentions=3)

        result = compute_score(uuid4(), results, totals, {}, DEFAULT_SCORING_CONFIG)

        assert result.citation_score == pytest.approx(0.5 * 50 + 2 * 10)
        assert result.share_of_voice == pytest.approx(25.0)
        assert share_of_voice(0, 0) == 0.0

    def test_empty_results(self) -> None:
        result = compute_score(uuid4(), [], ScoringTotals(), {}, DEFAULT_SCORING_CONFIG)

        assert result.ai_visibility_score == 0.0
        assert result.breakdown == []
        assert result.confidence == 50.0
