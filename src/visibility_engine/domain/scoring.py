"""Weighted visibility scoring.

Per engine, five factors are computed on a 0-100 scale and blended with
the config weights::

    engine_score = clamp(mention * w.visibility
                         + position * w.rank
                         + citations * w.citations
                         + sentiment * w.sentiment
                         + competitor_penalty, 0, 100)

Engine scores are then averaged twice: plainly (unweighted AVS) and
weighted by each engine's current authority weight (the AVS that is
reported). Confidence starts from data volume and is scaled down by the
share of queried engines that are degraded or unavailable.

An unavailable engine with a fallback snapshot is scored from that
snapshot instead of its live answer: ``reliability_score * 0.8``.
"""

from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from uuid import UUID

from visibility_engine.domain.enums import EngineStatus
from visibility_engine.domain.models import (
    EngineAuthority,
    EngineResult,
    EngineScore,
    EngineSnapshot,
    ScoreResult,
    ScoringConfig,
    ScoringTotals,
)

UNHEALTHY_STATUSES = (EngineStatus.DEGRADED, EngineStatus.UNAVAILABLE)

# Snapshot-based scores count for less than a live answer
FALLBACK_DISCOUNT = 0.8


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def score_engine(result: EngineResult, config: ScoringConfig) -> EngineScore:
    """Score a single engine's answer.

    Args:
        result: The engine's parsed answer
        config: Scoring weights and algorithm parameters

    Returns:
        EngineScore with the blended score and the individual factors
    """
    algorithm = config.algorithm
    weights = config.weights

    mention = clamp(100 * algorithm.mention_weight if result.mentioned else 0.0)

    if result.position is not None and result.position > 0:
        position = clamp(100 - (result.position - 1) * algorithm.rank_decay * 100)
    else:
        position = 50.0 if result.mentioned else 0.0

    citations = clamp(result.citation_count * algorithm.citation_bonus * 100)

    multiplier = algorithm.sentiment_multiplier.for_sentiment(result.sentiment)
    sentiment = clamp(result.sentiment_score * multiplier * 50 + 50)

    # Penalty is the only factor allowed below zero
    competitor_penalty = clamp(
        -result.competitors_mentioned * algorithm.competitor_penalty * 100, -100.0, 0.0
    )

    score = clamp(
        mention * weights.visibility
        + position * weights.rank
        + citations * weights.citations
        + sentiment * weights.sentiment
        + competitor_penalty
    )

    return EngineScore(
        engine=result.engine,
        score=score,
        factors={
            "mention": mention,
            "position": position,
            "citations": citations,
            "sentiment": sentiment,
            "competitor_penalty": competitor_penalty,
        },
    )


def apply_fallback(
    entry: EngineScore,
    authority: EngineAuthority | None,
    snapshot: EngineSnapshot | None,
) -> EngineScore:
    """Replace an unavailable engine's score with its discounted snapshot reliability."""
    if snapshot is None or authority is None or authority.status != EngineStatus.UNAVAILABLE:
        return entry
    return EngineScore(
        engine=entry.engine,
        score=clamp(snapshot.reliability_score * FALLBACK_DISCOUNT),
        factors={**entry.factors, "fallback_reliability": snapshot.reliability_score},
    )


def citation_score(results: Sequence[EngineResult], totals: ScoringTotals) -> float:
    if totals.total_citations <= 0:
        return 0.0
    ratio = totals.brand_citations / totals.total_citations
    mean_citations = (
        sum(r.citation_count for r in results) / len(results) if results else 0.0
    )
    return clamp(ratio * 50 + mean_citations * 10)


def share_of_voice(brand_mentions: int, competitor_mentions: int) -> float:
    total = brand_mentions + competitor_mentions
    if total == 0:
        return 0.0
    return 100.0 * brand_mentions / total


def weighted_average(
    breakdown: Sequence[EngineScore],
    authorities: Mapping[str, EngineAuthority],
) -> float | None:
    """Authority-weighted mean of engine scores.

    Engines without an authority record count with weight 1.0. Returns
    None when none of the engines has authority data.
    """
    if not breakdown or not any(entry.engine in authorities for entry in breakdown):
        return None

    total_weighted = 0.0
    total_weight = 0.0
    for entry in breakdown:
        authority = authorities.get(entry.engine)
        weight = authority.authority_weight if authority else 1.0
        total_weighted += entry.score * weight
        total_weight += weight
    return total_weighted / total_weight if total_weight > 0 else None


def compute_confidence(
    results: Sequence[EngineResult],
    authorities: Mapping[str, EngineAuthority],
) -> float:
    data_points = len(results)
    mentioned = sum(1 for r in results if r.mentioned)
    confidence = min(100.0, 50.0 + 10 * data_points + 5 * mentioned)

    unhealthy = sum(1 for r in results if _is_unhealthy(authorities.get(r.engine)))
    if unhealthy and data_points:
        confidence *= (data_points - unhealthy) / data_points
    return confidence


def compute_score(
    prompt_id: UUID,
    results: Sequence[EngineResult],
    totals: ScoringTotals,
    authorities: Mapping[str, EngineAuthority],
    config: ScoringConfig,
    now: datetime | None = None,
    fallbacks: Mapping[str, EngineSnapshot] | None = None,
) -> ScoreResult:
    """Fold per-engine results into a composite score for a prompt.

    Args:
        prompt_id: Prompt being scored
        results: One result per queried engine
        totals: Prompt-level citation/mention counts
        authorities: Current authority records keyed by engine
        config: Scoring config to apply
        fallbacks: Latest snapshots of unavailable engines, keyed by engine

    Returns:
        ScoreResult with confidence and degradation flags filled in
    """
    fallbacks = fallbacks or {}
    breakdown = [
        apply_fallback(
            score_engine(result, config),
            authorities.get(result.engine),
            fallbacks.get(result.engine),
        )
        for result in results
    ]

    unweighted = sum(entry.score for entry in breakdown) / len(breakdown) if breakdown else 0.0
    weighted = weighted_average(breakdown, authorities)
    if weighted is None:
        weighted = unweighted

    citations = citation_score(results, totals)
    brand_authority = clamp(weighted * 0.5 + citations * 0.3 + totals.historical_trend * 0.2)
    brand_mentions = sum(1 for r in results if r.mentioned)

    degraded_engines: list[str] = []
    is_estimated = False
    for result in results:
        authority = authorities.get(result.engine)
        if _is_unhealthy(authority) and result.engine not in degraded_engines:
            degraded_engines.append(result.engine)
        if authority is not None and authority.status == EngineStatus.UNAVAILABLE:
            is_estimated = True

    return ScoreResult(
        prompt_id=prompt_id,
        ai_visibility_score=round(weighted, 2),
        unweighted_avs=round(unweighted, 2),
        citation_score=round(citations, 2),
        brand_authority_score=round(brand_authority, 2),
        share_of_voice=round(share_of_voice(brand_mentions, totals.competitor_mentions), 2),
        breakdown=breakdown,
        confidence=round(compute_confidence(results, authorities), 2),
        is_estimated=is_estimated,
        degraded_engines=degraded_engines,
        scoring_version=config.version,
        scored_at=now or datetime.now(UTC),
    )


def _is_unhealthy(authority: EngineAuthority | None) -> bool:
    return authority is not None and authority.status in UNHEALTHY_STATUSES
