"""Tests for the engine authority registry."""

import pytest

from visibility_engine.domain.engines import KNOWN_ENGINES
from visibility_engine.domain.enums import (
    AuthorityChangeType,
    ChangeTrigger,
    EngineStatus,
    SnapshotType,
)
from visibility_engine.domain.errors import (
    ConcurrencyError,
    ConfigurationError,
    MissingAuthorityError,
)
from visibility_engine.services.authority import AuthorityRegistry


def fail(registry: AuthorityRegistry, engine: str, times: int) -> None:
    for _ in range(times):
        registry.record_query_outcome(engine, success=False)


class TestRegistry:
    """Authority records, outages and alerts."""

    def test_seed_defaults_is_idempotent(self, registry: AuthorityRegistry) -> None:
        assert len(registry.list_authorities()) == len(KNOWN_ENGINES)
        assert registry.seed_defaults() == 0

    def test_list_orders_by_weight(self, registry: AuthorityRegistry) -> None:
        weights = [a.authority_weight for a in registry.list_authorities()]

        assert weights == sorted(weights, reverse=True)
        assert registry.list_authorities()[0].engine == "google_ai_mode"

    def test_five_failures_open_outage(self, registry: AuthorityRegistry, alert_sink) -> None:
        fail(registry, "chatgpt", 5)

        authority = registry.get_authority("chatgpt")
        assert authority is not None
        assert authority.status == EngineStatus.UNAVAILABLE
        assert authority.authority_weight == 0.5
        assert authority.consecutive_failures == 5

        outages = registry.active_outages()
        assert [o.engine for o in outages] == ["chatgpt"]
        assert outages[0].is_open
        assert outages[0].affected_queries == 1

        assert len(alert_sink.of_type("engine_outage")) == 1
        assert alert_sink.of_type("engine_outage")[0].owner_id is None

    def test_status_follows_failure_count(self, registry: AuthorityRegistry) -> None:
        statuses = []
        for _ in range(5):
            transition = registry.record_query_outcome("gemini", success=False)
            statuses.append(transition.current.status)

        assert statuses == [
            EngineStatus.HEALTHY,
            EngineStatus.HEALTHY,
            EngineStatus.DEGRADED,
            EngineStatus.DEGRADED,
            EngineStatus.UNAVAILABLE,
        ]
        assert registry.get_authority("gemini").authority_weight == 0.5

    def test_queries_during_outage_are_counted(self, registry: AuthorityRegistry) -> None:
        fail(registry, "perplexity", 7)

        [outage] = registry.active_outages()
        assert outage.affected_queries == 3

    def test_recovery_closes_outage(self, registry: AuthorityRegistry, alert_sink, clock) -> None:
        fail(registry, "claude", 5)
        clock.advance(minutes=15)

        transition = registry.record_query_outcome("claude", success=True, response_time_ms=120.0)

        assert transition.became_healthy
        assert registry.active_outages() == []
        [outage] = registry.outage_history("claude")
        assert outage.ended_at == clock.now
        assert outage.resolution_type == "auto_recovered"
        assert len(alert_sink.of_type("engine_recovered")) == 1

    def test_alert_failure_keeps_transition(self, session_factory, clock) -> None:
        class BrokenSink:
            def emit(self, alert):
                raise ConnectionError("discord webhook down")

        registry = AuthorityRegistry(session_factory, alert_sink=BrokenSink(), clock=clock)
        registry.seed_defaults()
        fail(registry, "chatgpt", 4)

        transition = registry.record_query_outcome("chatgpt", success=False)

        assert transition.became_unavailable
        assert registry.get_authority("chatgpt").status == EngineStatus.UNAVAILABLE
        assert [o.engine for o in registry.active_outages()] == ["chatgpt"]

        recovered = registry.record_query_outcome("chatgpt", success=True)

        assert recovered.became_healthy
        assert registry.active_outages() == []

    def test_counters_and_version(self, registry: AuthorityRegistry, clock) -> None:
        registry.record_query_outcome("chatgpt", success=True, response_time_ms=100.0)
        registry.record_query_outcome("chatgpt", success=False, response_time_ms=300.0)
        registry.record_query_outcome("chatgpt", success=True)

        authority = registry.get_authority("chatgpt")
        assert authority.total_queries == 3
        assert authority.successful_queries == 2
        assert authority.consecutive_failures == 0
        assert authority.avg_response_time_ms == pytest.approx(200.0)
        assert authority.last_successful_query == clock.now
        assert authority.version == 3

    def test_unknown_engine_is_ignored(self, registry: AuthorityRegistry) -> None:
        assert registry.record_query_outcome("altavista", success=False) is None
        assert registry.get_authority("altavista") is None

        with pytest.raises(MissingAuthorityError):
            registry.require_authority("altavista")

    def test_authority_map_filters_engines(self, registry: AuthorityRegistry) -> None:
        authorities = registry.authority_map(["chatgpt", "gemini", "altavista"])

        assert set(authorities) == {"chatgpt", "gemini"}

    def test_explain_ranks_engine(self, registry: AuthorityRegistry) -> None:
        explanation = registry.explain("google_ai_mode")

        assert explanation.display_name == "Google AI Mode"
        assert explanation.compared_to_others.startswith("Ranked #1 of")

        with pytest.raises(MissingAuthorityError):
            registry.explain("altavista")


class TestOptimisticConcurrency:
    """Compare-and-swap retries on the authority row."""

    def test_lost_race_is_retried(self, registry: AuthorityRegistry, monkeypatch) -> None:
        real_swap = AuthorityRegistry._swap
        calls = []

        def flaky_swap(session, previous, current, now):
            calls.append(previous.version)
            if len(calls) == 1:
                return False
            return real_swap(session, previous, current, now)

        monkeypatch.setattr(AuthorityRegistry, "_swap", staticmethod(flaky_swap))

        transition = registry.record_query_outcome("chatgpt", success=False)

        assert len(calls) == 2
        assert transition.current.consecutive_failures == 1
        assert registry.get_authority("chatgpt").total_queries == 1

    def test_persistent_conflict_raises(self, session_factory, monkeypatch) -> None:
        registry = AuthorityRegistry(session_factory, max_cas_attempts=3)
        registry.seed_defaults()
        attempts = []

        def losing_swap(session, previous, current, now):
            attempts.append(1)
            return False

        monkeypatch.setattr(AuthorityRegistry, "_swap", staticmethod(losing_swap))

        with pytest.raises(ConcurrencyError):
            registry.record_query_outcome("chatgpt", success=True)
        assert len(attempts) == 3


class TestTrack:
    """Timing wrapper around engine calls."""

    def test_success_is_recorded(self, registry: AuthorityRegistry) -> None:
        with registry.track("bing_copilot"):
            pass

        authority = registry.get_authority("bing_copilot")
        assert authority.total_queries == 1
        assert authority.successful_queries == 1

    def test_exception_is_recorded_and_reraised(self, registry: AuthorityRegistry) -> None:
        with pytest.raises(TimeoutError):
            with registry.track("bing_copilot"):
                raise TimeoutError("engine timed out")

        authority = registry.get_authority("bing_copilot")
        assert authority.total_queries == 1
        assert authority.consecutive_failures == 1
        assert authority.last_failure is not None

    def test_configuration_error_is_not_recorded(self, registry: AuthorityRegistry) -> None:
        with pytest.raises(ConfigurationError):
            with registry.track("chatgpt"):
                raise ConfigurationError("Engine gateway URL not configured")

        authority = registry.get_authority("chatgpt")
        assert authority.total_queries == 0
        assert authority.consecutive_failures == 0
        assert authority.version == 0


class TestMaintenance:
    """Operator maintenance override."""

    def test_enter_and_leave_maintenance(self, registry: AuthorityRegistry) -> None:
        authority = registry.set_maintenance("gemini", True, "Model upgrade")
        assert authority.status == EngineStatus.MAINTENANCE
        assert authority.status_message == "Model upgrade"
        assert registry.get_authority("gemini").status == EngineStatus.MAINTENANCE

        authority = registry.set_maintenance("gemini", False)
        assert authority.status == EngineStatus.HEALTHY
        assert authority.status_message is None
        assert authority.version == registry.get_authority("gemini").version

    def test_failures_keep_maintenance(self, registry: AuthorityRegistry, alert_sink) -> None:
        registry.set_maintenance("chatgpt", True)
        fail(registry, "chatgpt", 6)

        authority = registry.get_authority("chatgpt")
        assert authority.status == EngineStatus.MAINTENANCE
        assert authority.consecutive_failures == 6
        assert registry.active_outages() == []
        assert alert_sink.alerts == []

    def test_release_closes_outage_manually(self, registry: AuthorityRegistry) -> None:
        fail(registry, "perplexity", 5)
        registry.set_maintenance("perplexity", True)
        registry.record_query_outcome("perplexity", success=True)

        registry.set_maintenance("perplexity", False)

        assert registry.get_authority("perplexity").status == EngineStatus.HEALTHY
        [outage] = registry.outage_history("perplexity")
        assert outage.resolution_type == "manual"

    def test_disable_when_not_in_maintenance_is_noop(self, registry: AuthorityRegistry) -> None:
        before = registry.get_authority("claude")

        after = registry.set_maintenance("claude", False)

        assert after == before

    def test_unknown_engine(self, registry: AuthorityRegistry) -> None:
        with pytest.raises(MissingAuthorityError):
            registry.set_maintenance("altavista", True)


class TestSnapshots:
    """Point-in-time engine metrics and scoring fallbacks."""

    def test_create_snapshot(self, registry: AuthorityRegistry, clock) -> None:
        registry.record_query_outcome("chatgpt", success=True, response_time_ms=100.0)
        registry.record_query_outcome("chatgpt", success=True, response_time_ms=100.0)
        registry.record_query_outcome("chatgpt", success=False)

        first = registry.create_snapshot("chatgpt")

        assert first.snapshot_type == SnapshotType.HOURLY
        assert first.success_rate == pytest.approx(200 / 3)
        assert first.queries_in_period == 3
        assert first.status == EngineStatus.HEALTHY

        clock.advance(hours=1)
        registry.record_query_outcome("chatgpt", success=True)
        second = registry.create_snapshot("chatgpt", SnapshotType.DAILY)

        assert second.queries_in_period == 1
        assert [s.id for s in registry.snapshot_history("chatgpt")] == [second.id, first.id]

    def test_unknown_engine(self, registry: AuthorityRegistry) -> None:
        with pytest.raises(MissingAuthorityError):
            registry.create_snapshot("altavista")

    def test_fallback_is_latest_hourly_or_daily(self, registry: AuthorityRegistry, clock) -> None:
        registry.create_snapshot("perplexity", SnapshotType.HOURLY)
        clock.advance(hours=1)
        daily = registry.create_snapshot("perplexity", SnapshotType.DAILY)
        clock.advance(hours=1)
        registry.create_snapshot("perplexity", SnapshotType.MANUAL)

        assert registry.fallback_snapshot("perplexity").id == daily.id
        assert registry.fallback_snapshot("claude") is None
        assert set(registry.fallback_snapshots(["perplexity", "claude"])) == {"perplexity"}

    def test_outage_references_fallback_snapshot(self, registry: AuthorityRegistry) -> None:
        snapshot = registry.create_snapshot("chatgpt")
        fail(registry, "chatgpt", 5)
        fail(registry, "gemini", 5)

        outages = {o.engine: o for o in registry.active_outages()}

        assert outages["chatgpt"].fallback_snapshot_id == snapshot.id
        assert outages["gemini"].fallback_snapshot_id is None

    def test_snapshot_all_skips_unavailable_engines(self, registry: AuthorityRegistry) -> None:
        fail(registry, "chatgpt", 5)

        snapshots = registry.snapshot_all()

        engines = {s.engine for s in snapshots}
        assert "chatgpt" not in engines
        assert len(engines) == len(KNOWN_ENGINES) - 1


class TestAuditLog:
    """Audit entries written alongside authority updates."""

    def test_outage_and_recovery_are_audited(self, registry: AuthorityRegistry, clock) -> None:
        for _ in range(5):
            clock.advance(minutes=1)
            registry.record_query_outcome("chatgpt", success=False)
        clock.advance(minutes=1)
        registry.record_query_outcome("chatgpt", success=True)

        trail = registry.audit_trail("chatgpt")

        assert [e.change_type for e in trail.entries] == [
            AuthorityChangeType.AUTO_RECOVERY,
            AuthorityChangeType.SLA_VIOLATION,
            AuthorityChangeType.RELIABILITY_CHANGE,
            AuthorityChangeType.RELIABILITY_CHANGE,
        ]
        assert all(e.triggered_by == ChangeTrigger.QUERY_RESULT for e in trail.entries)
        outage = trail.entries[1]
        assert outage.new_authority_weight == 0.5
        assert outage.evidence["consecutive_failures"] == 5
        assert trail.summary == "4 authority change(s) in the last 7 days"

    def test_maintenance_is_audited_as_admin(self, registry: AuthorityRegistry) -> None:
        registry.set_maintenance("gemini", True, "Model upgrade")

        [entry] = registry.audit_trail("gemini").entries

        assert entry.change_type == AuthorityChangeType.MANUAL_OVERRIDE
        assert entry.triggered_by == ChangeTrigger.ADMIN
        assert entry.explanation == "Gemini put into maintenance: Model upgrade"

    def test_window_excludes_old_changes(self, registry: AuthorityRegistry, clock) -> None:
        fail(registry, "claude", 5)
        clock.advance(days=8)

        recent = registry.audit_trail("claude", days=7)

        assert recent.entries == []
        assert recent.summary == "No authority changes in the last 7 days"
        assert len(registry.audit_trail("claude", days=30).entries) == 3

    def test_invalid_requests(self, registry: AuthorityRegistry) -> None:
        with pytest.raises(MissingAuthorityError):
            registry.audit_trail("altavista")
        with pytest.raises(ValueError):
            registry.audit_trail("chatgpt", days=0)

    def test_lost_race_writes_one_entry(self, registry: AuthorityRegistry, monkeypatch) -> None:
        real_swap = AuthorityRegistry._swap
        calls = []

        def flaky_swap(session, previous, current, now):
            calls.append(1)
            if len(calls) == 1:
                return False
            return real_swap(session, previous, current, now)

        monkeypatch.setattr(AuthorityRegistry, "_swap", staticmethod(flaky_swap))

        registry.record_query_outcome("chatgpt", success=False)

        assert len(calls) == 2
        assert len(registry.audit_trail("chatgpt").entries) == 1
