"""Rule-based analysis of an engine answer.

Turns answer text into the ``EngineResult`` the scoring engine consumes:
whether the brand is mentioned, where it ranks among the named
competitors, how many sources were cited, and a lexicon sentiment over
the sentences that mention the brand.
"""

import re
from collections.abc import Sequence

from visibility_engine.domain.enums import Sentiment
from visibility_engine.domain.models import EngineResult

POSITIVE_WORDS = (
    "best", "excellent", "great", "amazing", "outstanding", "superior", "leading",
    "top", "recommended", "trusted", "reliable", "innovative", "powerful", "efficient",
    "popular", "favorite", "preferred", "award", "winning", "success", "effective",
)
NEGATIVE_WORDS = (
    "worst", "bad", "poor", "terrible", "awful", "inferior", "lacking", "weak",
    "outdated", "expensive", "overpriced", "complicated", "difficult", "slow",
    "unreliable", "buggy", "limited", "disappointing", "frustrating", "avoid",
)

# Net lexicon score beyond which a sentence set counts as polarised
SENTIMENT_THRESHOLD = 0.2

_SENTENCE_SPLIT = re.compile(r"[.!?]+")


def analyze_sentiment(text: str, brand: str) -> tuple[Sentiment, float]:
    """Score sentiment in [-1, 1] over the sentences that mention ``brand``."""
    brand_lower = brand.lower()
    sentences = [s.lower() for s in _SENTENCE_SPLIT.split(text) if brand_lower in s.lower()]
    if not sentences:
        return Sentiment.NEUTRAL, 0.0

    positive = sum(1 for s in sentences for word in POSITIVE_WORDS if word in s)
    negative = sum(1 for s in sentences for word in NEGATIVE_WORDS if word in s)
    score = (positive - negative) / max(1, positive + negative)

    if score > SENTIMENT_THRESHOLD:
        return Sentiment.POSITIVE, score
    if score < -SENTIMENT_THRESHOLD:
        return Sentiment.NEGATIVE, score
    return Sentiment.NEUTRAL, score


def brand_position(text: str, brand: str, competitors: Sequence[str]) -> int | None:
    """1-based rank of the brand by first appearance among all named brands."""
    lowered = text.lower()
    first_seen: dict[str, int] = {}
    for name in (brand, *competitors):
        index = lowered.find(name.lower())
        if index != -1:
            first_seen[name] = index

    if brand not in first_seen:
        return None
    ranked = sorted(first_seen, key=first_seen.__getitem__)
    return ranked.index(brand) + 1


def analyze_answer(
    engine: str,
    text: str,
    brand: str,
    competitors: Sequence[str] = (),
    citations: Sequence[str] = (),
) -> EngineResult:
    """Derive the scoring inputs from one engine's answer."""
    lowered = text.lower()
    mentioned = brand.lower() in lowered
    sentiment, sentiment_score = analyze_sentiment(text, brand)

    return EngineResult(
        engine=engine,
        mentioned=mentioned,
        position=brand_position(text, brand, competitors) if mentioned else None,
        citation_count=len(citations),
        sentiment=sentiment,
        sentiment_score=sentiment_score,
        competitors_mentioned=sum(1 for c in competitors if c.lower() in lowered),
    )


def count_brand_citations(citations: Sequence[str], brand_domain: str | None) -> int:
    """Number of cited URLs that point at the brand's own domain."""
    if not brand_domain:
        return 0
    domain = brand_domain.lower()
    return sum(1 for url in citations if domain in url.lower())
