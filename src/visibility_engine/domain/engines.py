"""Static catalogue of the answer engines the registry knows about."""

from dataclasses import dataclass


@dataclass(frozen=True)
class EngineSeed:
    """Initial authority values for a known engine."""

    engine: str
    display_name: str
    reliability_score: float
    citation_completeness: float
    freshness_index: float
    authority_weight: float


KNOWN_ENGINES: tuple[EngineSeed, ...] = (
    EngineSeed("google_ai_mode", "Google AI Mode", 85.0, 90.0, 95.0, 1.15),
    EngineSeed("chatgpt", "ChatGPT", 80.0, 75.0, 70.0, 1.0),
    EngineSeed("perplexity", "Perplexity", 88.0, 95.0, 90.0, 1.12),
    EngineSeed("bing_copilot", "Bing Copilot", 78.0, 85.0, 88.0, 1.05),
    EngineSeed("gemini", "Gemini", 82.0, 80.0, 85.0, 1.02),
    EngineSeed("claude", "Claude", 85.0, 70.0, 65.0, 0.95),
)

# Default engine for the scrape job types when the payload names none
DEFAULT_LLM_SCRAPE_ENGINE = "chatgpt"
DEFAULT_AI_OVERVIEW_ENGINE = "google_ai_mode"


def get_seed(engine: str) -> EngineSeed | None:
    """Look up the seed record for an engine name."""
    for seed in KNOWN_ENGINES:
        if seed.engine == engine:
            return seed
    return None
