"""Domain enumerations."""

from enum import StrEnum


class JobStatus(StrEnum):
    """Lifecycle state of a queued job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    DEAD_LETTER = "dead_letter"


class JobType(StrEnum):
    """Job types understood by the queue processor."""

    ANALYZE_PROMPT = "analyze_prompt"
    VERIFY_CITATION = "verify_citation"
    SCRAPE_LLM = "scrape_llm"
    SCRAPE_AI_OVERVIEW = "scrape_ai_overview"
    SEND_ALERT = "send_alert"
    CALCULATE_SCORES = "calculate_scores"


class EngineStatus(StrEnum):
    """Health state of an answer engine.

    MAINTENANCE is set by operators only; the other states are derived from
    the engine's consecutive failure count.
    """

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"
    MAINTENANCE = "maintenance"


class Sentiment(StrEnum):
    """Sentiment of an engine's answer towards the brand."""

    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class AlertSeverity(StrEnum):
    """Alert severity levels."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class TrustLevel(StrEnum):
    """Coarse trust bucket derived from an engine's authority weight."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SnapshotType(StrEnum):
    """Cadence a stored engine snapshot was taken at."""

    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MANUAL = "manual"


class AuthorityChangeType(StrEnum):
    """Why an engine's authority record changed."""

    RELIABILITY_CHANGE = "reliability_change"
    SLA_VIOLATION = "sla_violation"
    AUTO_RECOVERY = "auto_recovery"
    MANUAL_OVERRIDE = "manual_override"


class ChangeTrigger(StrEnum):
    """What caused an audited authority change."""

    QUERY_RESULT = "query_result"
    ADMIN = "admin"
    SYSTEM = "system"
