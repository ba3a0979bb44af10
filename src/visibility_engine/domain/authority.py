"""Engine authority state machine.

Every query attempt against an engine feeds one outcome into
``apply_outcome``, which returns the engine's next authority record. The
function is pure: persistence, concurrency control and outage bookkeeping
live in ``visibility_engine.services.authority``.

Status is derived only from the consecutive failure count::

    failures >= 5  -> unavailable
    failures 3..4  -> degraded
    failures < 3   -> healthy

``maintenance`` is an operator override that outcomes never replace.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from uuid import uuid4

from visibility_engine.domain.enums import (
    AuthorityChangeType,
    EngineStatus,
    SnapshotType,
    TrustLevel,
)
from visibility_engine.domain.models import AuthorityAuditEntry, EngineAuthority, EngineSnapshot

UNAVAILABLE_AFTER_FAILURES = 5
DEGRADED_AFTER_FAILURES = 3

# reliability_score is left untouched until an engine has this many queries
RELIABILITY_MIN_SAMPLE = 10

MIN_AUTHORITY_WEIGHT = 0.5
MAX_AUTHORITY_WEIGHT = 1.5
DEGRADED_WEIGHT_CAP = 0.75


def derive_status(consecutive_failures: int) -> EngineStatus:
    """Map a consecutive failure count to an engine status."""
    if consecutive_failures >= UNAVAILABLE_AFTER_FAILURES:
        return EngineStatus.UNAVAILABLE
    if consecutive_failures >= DEGRADED_AFTER_FAILURES:
        return EngineStatus.DEGRADED
    return EngineStatus.HEALTHY


def compute_authority_weight(
    reliability_score: float,
    citation_completeness: float,
    freshness_index: float,
    status: EngineStatus,
) -> float:
    """Blend the quality metrics into a weight in [0.5, 1.5].

    Unavailable engines are pinned to the floor and degraded engines are
    capped at 0.75 regardless of their historical quality.
    """
    weight = (
        0.8
        + 0.4 * reliability_score / 100
        + 0.2 * citation_completeness / 100
        + 0.1 * freshness_index / 100
    )
    weight = min(MAX_AUTHORITY_WEIGHT, max(MIN_AUTHORITY_WEIGHT, weight))

    if status == EngineStatus.UNAVAILABLE:
        return MIN_AUTHORITY_WEIGHT
    if status == EngineStatus.DEGRADED:
        return min(weight, DEGRADED_WEIGHT_CAP)
    return weight


@dataclass
class AuthorityTransition:
    """Before/after pair produced by a single outcome."""

    previous: EngineAuthority
    current: EngineAuthority

    @property
    def status_changed(self) -> bool:
        return self.previous.status != self.current.status

    @property
    def became_unavailable(self) -> bool:
        return self.status_changed and self.current.status == EngineStatus.UNAVAILABLE

    @property
    def became_healthy(self) -> bool:
        return self.status_changed and self.current.status == EngineStatus.HEALTHY


def apply_outcome(
    authority: EngineAuthority,
    success: bool,
    now: datetime,
    response_time_ms: float | None = None,
) -> AuthorityTransition:
    """Fold one query outcome into an engine's authority record.

    Args:
        authority: Current record (not mutated)
        success: Whether the query succeeded
        now: Timestamp of the outcome
        response_time_ms: Observed latency, if known

    Returns:
        Transition holding the previous and next records
    """
    total = authority.total_queries + 1
    successful = authority.successful_queries + (1 if success else 0)
    consecutive_failures = 0 if success else authority.consecutive_failures + 1

    reliability = authority.reliability_score
    if total > RELIABILITY_MIN_SAMPLE:
        reliability = 100.0 * successful / total

    if authority.status == EngineStatus.MAINTENANCE:
        status = EngineStatus.MAINTENANCE
    else:
        status = derive_status(consecutive_failures)

    weight = compute_authority_weight(
        reliability,
        authority.citation_completeness,
        authority.freshness_index,
        status,
    )

    avg_response = authority.avg_response_time_ms
    if response_time_ms is not None:
        avg_response = (avg_response * authority.total_queries + response_time_ms) / total

    current = replace(
        authority,
        total_queries=total,
        successful_queries=successful,
        consecutive_failures=consecutive_failures,
        reliability_score=reliability,
        status=status,
        authority_weight=weight,
        avg_response_time_ms=avg_response,
        last_successful_query=now if success else authority.last_successful_query,
        last_failure=authority.last_failure if success else now,
    )
    return AuthorityTransition(previous=authority, current=current)


def release_maintenance(authority: EngineAuthority) -> EngineAuthority:
    """Leave maintenance, re-deriving status and weight from the failure count."""
    status = derive_status(authority.consecutive_failures)
    return replace(
        authority,
        status=status,
        status_message=None,
        authority_weight=compute_authority_weight(
            authority.reliability_score,
            authority.citation_completeness,
            authority.freshness_index,
            status,
        ),
    )


@dataclass
class AuthorityExplanation:
    """Human-readable account of why an engine is (or is not) trusted."""

    engine: str
    display_name: str
    authority_weight: float
    trust_level: TrustLevel
    why_trustworthy: list[str] = field(default_factory=list)
    why_cautious: list[str] = field(default_factory=list)
    compared_to_others: str = ""


def explain_authority(authority: EngineAuthority, rank: int, total: int) -> AuthorityExplanation:
    """Summarise an engine's authority record for operators and dashboards."""
    trustworthy: list[str] = []
    cautious: list[str] = []

    if authority.reliability_score >= 85:
        trustworthy.append(
            f"High reliability: {authority.reliability_score:.0f}% success rate "
            f"over {authority.total_queries} queries"
        )
    elif authority.reliability_score < 70:
        cautious.append(f"Lower reliability: {authority.reliability_score:.0f}% success rate")

    if authority.citation_completeness >= 85:
        trustworthy.append(
            f"Excellent citation coverage: {authority.citation_completeness:.0f}% "
            "of responses include verifiable sources"
        )
    elif authority.citation_completeness < 60:
        cautious.append(
            f"Limited citations: only {authority.citation_completeness:.0f}% of responses cite sources"
        )

    if authority.freshness_index >= 85:
        trustworthy.append(f"Fresh knowledge base: {authority.freshness_index:.0f}% freshness score")
    elif authority.freshness_index < 60:
        cautious.append(f"Potentially stale data: {authority.freshness_index:.0f}% freshness score")

    if authority.consecutive_failures > 0:
        cautious.append(f"Recent issues: {authority.consecutive_failures} consecutive failures")

    if authority.status == EngineStatus.DEGRADED:
        cautious.append("Currently experiencing degraded performance")
    elif authority.status == EngineStatus.UNAVAILABLE:
        cautious.append("Currently unavailable - scores involving this engine are estimated")
    elif authority.status == EngineStatus.MAINTENANCE:
        cautious.append("Under maintenance")

    if authority.authority_weight >= 1.1:
        trust_level = TrustLevel.HIGH
    elif authority.authority_weight >= 0.9:
        trust_level = TrustLevel.MEDIUM
    else:
        trust_level = TrustLevel.LOW

    return AuthorityExplanation(
        engine=authority.engine,
        display_name=authority.display_name,
        authority_weight=authority.authority_weight,
        trust_level=trust_level,
        why_trustworthy=trustworthy,
        why_cautious=cautious,
        compared_to_others=f"Ranked #{rank} of {total} engines by authority weight",
    )


# Smaller moves are folded into the next audited change
AUDIT_WEIGHT_DELTA = 0.01
AUDIT_RELIABILITY_DELTA = 1.0


@dataclass
class AuthorityChange:
    """Audit classification of a transition."""

    change_type: AuthorityChangeType
    explanation: str


def classify_change(
    transition: AuthorityTransition, manual: bool = False
) -> AuthorityChange | None:
    """Describe a transition for the audit log, or None if it is not worth recording.

    Status changes are always recorded. Otherwise the weight or the
    reliability score has to move by at least ``AUDIT_WEIGHT_DELTA`` /
    ``AUDIT_RELIABILITY_DELTA``.
    """
    previous, current = transition.previous, transition.current
    name = current.display_name

    if manual:
        if not transition.status_changed:
            return None
        if current.status == EngineStatus.MAINTENANCE:
            reason = f": {current.status_message}" if current.status_message else ""
            return AuthorityChange(
                AuthorityChangeType.MANUAL_OVERRIDE, f"{name} put into maintenance{reason}"
            )
        return AuthorityChange(
            AuthorityChangeType.MANUAL_OVERRIDE,
            f"{name} released from maintenance as {current.status.value}",
        )

    if transition.became_unavailable:
        return AuthorityChange(
            AuthorityChangeType.SLA_VIOLATION,
            f"{name} marked unavailable after {current.consecutive_failures} consecutive failures",
        )
    if transition.became_healthy:
        return AuthorityChange(
            AuthorityChangeType.AUTO_RECOVERY,
            f"{name} recovered from {previous.status.value} on a successful query",
        )

    weight_delta = abs(current.authority_weight - previous.authority_weight)
    reliability_delta = abs(current.reliability_score - previous.reliability_score)
    if (
        transition.status_changed
        or weight_delta >= AUDIT_WEIGHT_DELTA
        or reliability_delta >= AUDIT_RELIABILITY_DELTA
    ):
        return AuthorityChange(
            AuthorityChangeType.RELIABILITY_CHANGE,
            f"{name} authority weight {previous.authority_weight:.2f} -> "
            f"{current.authority_weight:.2f}, reliability {previous.reliability_score:.1f}% -> "
            f"{current.reliability_score:.1f}% ({current.status.value})",
        )
    return None


@dataclass
class AuditTrail:
    """Audited authority changes for one engine over a look-back window."""

    engine: str
    period_days: int
    entries: list[AuthorityAuditEntry] = field(default_factory=list)

    @property
    def summary(self) -> str:
        if not self.entries:
            return f"No authority changes in the last {self.period_days} days"
        return f"{len(self.entries)} authority change(s) in the last {self.period_days} days"


def build_snapshot(
    authority: EngineAuthority,
    snapshot_type: SnapshotType,
    now: datetime,
    previous: EngineSnapshot | None = None,
) -> EngineSnapshot:
    """Copy an engine's current metrics into a snapshot.

    ``queries_in_period`` counts queries since ``previous``, the engine's
    last snapshot, or since the record was created when there is none.
    """
    total = authority.total_queries
    since = previous.total_queries if previous is not None else 0
    return EngineSnapshot(
        id=uuid4(),
        engine=authority.engine,
        snapshot_type=snapshot_type,
        reliability_score=authority.reliability_score,
        citation_completeness=authority.citation_completeness,
        freshness_index=authority.freshness_index,
        authority_weight=authority.authority_weight,
        status=authority.status,
        total_queries=total,
        queries_in_period=max(0, total - since),
        success_rate=100.0 * authority.successful_queries / total if total else None,
        avg_response_time_ms=authority.avg_response_time_ms,
        created_at=now,
    )
