"""Engine authority registry backed by the ``engine_authority`` table.

Counters are updated with optimistic concurrency: each write is
conditional on the row's ``version`` and a lost race re-reads and
recomputes. Outage rows and audit log entries are written in the same
transaction as the update that produced them.
"""

import time
from collections.abc import Callable, Generator, Iterable
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from visibility_engine.config import settings
from visibility_engine.db.models import (
    AuthorityAuditModel,
    EngineAuthorityModel,
    EngineOutageModel,
    EngineSnapshotModel,
)
from visibility_engine.db.session import SessionLocal
from visibility_engine.domain.authority import (
    AuditTrail,
    AuthorityExplanation,
    AuthorityTransition,
    apply_outcome,
    build_snapshot,
    classify_change,
    explain_authority,
    release_maintenance,
)
from visibility_engine.domain.engines import KNOWN_ENGINES
from visibility_engine.domain.enums import AlertSeverity, ChangeTrigger, EngineStatus, SnapshotType
from visibility_engine.domain.errors import (
    ConcurrencyError,
    ConfigurationError,
    MissingAuthorityError,
)
from visibility_engine.domain.models import Alert, EngineAuthority, EngineOutage, EngineSnapshot
from visibility_engine.logging import get_logger
from visibility_engine.services.alerting import AlertSink
from visibility_engine.utils.clock import utc_now

logger = get_logger(__name__)

FALLBACK_SNAPSHOT_TYPES = (SnapshotType.HOURLY, SnapshotType.DAILY)


class AuthorityRegistry:
    """Tracks reliability, status and authority weight per answer engine."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        alert_sink: AlertSink | None = None,
        max_cas_attempts: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._alert_sink = alert_sink
        self._max_cas_attempts = max_cas_attempts or settings.authority_max_cas_attempts
        self._clock = clock

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_authority(self, engine: str) -> EngineAuthority | None:
        with self._session_factory() as session:
            row = self._load(session, engine)
            return row.to_domain() if row else None

    def require_authority(self, engine: str) -> EngineAuthority:
        authority = self.get_authority(engine)
        if authority is None:
            raise MissingAuthorityError(f"No authority record for engine {engine!r}")
        return authority

    def list_authorities(self) -> list[EngineAuthority]:
        """All engines, highest authority weight first."""
        stmt = select(EngineAuthorityModel).order_by(
            EngineAuthorityModel.authority_weight.desc(), EngineAuthorityModel.engine
        )
        with self._session_factory() as session:
            return [row.to_domain() for row in session.execute(stmt).scalars()]

    def authority_map(self, engines: Iterable[str] | None = None) -> dict[str, EngineAuthority]:
        """Authority records keyed by engine, optionally limited to some engines."""
        stmt = select(EngineAuthorityModel)
        if engines is not None:
            stmt = stmt.where(EngineAuthorityModel.engine.in_(list(engines)))
        with self._session_factory() as session:
            return {row.engine: row.to_domain() for row in session.execute(stmt).scalars()}

    def active_outages(self) -> list[EngineOutage]:
        stmt = select(EngineOutageModel).where(EngineOutageModel.ended_at.is_(None))
        with self._session_factory() as session:
            return [row.to_domain() for row in session.execute(stmt).scalars()]

    def outage_history(self, engine: str, limit: int = 20) -> list[EngineOutage]:
        stmt = (
            select(EngineOutageModel)
            .where(EngineOutageModel.engine == engine)
            .order_by(EngineOutageModel.started_at.desc())
            .limit(limit)
        )
        with self._session_factory() as session:
            return [row.to_domain() for row in session.execute(stmt).scalars()]

    def explain(self, engine: str) -> AuthorityExplanation:
        """Explain why an engine currently carries its authority weight."""
        ranked = self.list_authorities()
        for rank, authority in enumerate(ranked, start=1):
            if authority.engine == engine:
                return explain_authority(authority, rank, len(ranked))
        raise MissingAuthorityError(f"No authority record for engine {engine!r}")

    def fallback_snapshot(self, engine: str) -> EngineSnapshot | None:
        """Latest hourly or daily snapshot, used while the engine is unavailable."""
        with self._session_factory() as session:
            row = self._latest_snapshot(session, engine, FALLBACK_SNAPSHOT_TYPES)
            return row.to_domain() if row else None

    def fallback_snapshots(self, engines: Iterable[str]) -> dict[str, EngineSnapshot]:
        """Fallback snapshots keyed by engine; engines without one are left out."""
        snapshots = {}
        with self._session_factory() as session:
            for engine in engines:
                row = self._latest_snapshot(session, engine, FALLBACK_SNAPSHOT_TYPES)
                if row is not None:
                    snapshots[engine] = row.to_domain()
        return snapshots

    def snapshot_history(self, engine: str, limit: int = 24) -> list[EngineSnapshot]:
        stmt = (
            select(EngineSnapshotModel)
            .where(EngineSnapshotModel.engine == engine)
            .order_by(EngineSnapshotModel.created_at.desc())
            .limit(limit)
        )
        with self._session_factory() as session:
            return [row.to_domain() for row in session.execute(stmt).scalars()]

    def audit_trail(self, engine: str, days: int = 7) -> AuditTrail:
        """Authority changes recorded for an engine in the last ``days`` days, newest first.

        Raises:
            MissingAuthorityError: If the engine has no authority record
            ValueError: If ``days`` is less than 1
        """
        if days < 1:
            raise ValueError(f"days must be at least 1, got {days}")
        self.require_authority(engine)

        since = self._clock() - timedelta(days=days)
        stmt = (
            select(AuthorityAuditModel)
            .where(
                AuthorityAuditModel.engine == engine,
                AuthorityAuditModel.created_at >= since,
            )
            .order_by(AuthorityAuditModel.created_at.desc())
        )
        with self._session_factory() as session:
            entries = [row.to_domain() for row in session.execute(stmt).scalars()]
        return AuditTrail(engine=engine, period_days=days, entries=entries)

        raise MissingAuthorityError(f"No authority record for engine {engine!r}")

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def seed_defaults(self) -> int:
        """Insert any known engine that has no authority row yet.

        Returns:
            Number of engines inserted
        """
        inserted = 0
        with self._session_factory() as session, session.begin():
            existing = set(session.execute(select(EngineAuthorityModel.engine)).scalars())
            for seed in KNOWN_ENGINES:
                if seed.engine in existing:
                    continue
                session.add(
                    EngineAuthorityModel(
                        engine=seed.engine,
                        display_name=seed.display_name,
                        reliability_score=seed.reliability_score,
                        citation_completeness=seed.citation_completeness,
                        freshness_index=seed.freshness_index,
                        authority_weight=seed.authority_weight,
                    )
                )
                inserted += 1
        if inserted:
            logger.info("authority_engines_seeded", count=inserted)
        return inserted

    def record_query_outcome(
        self,
        engine: str,
        success: bool,
        response_time_ms: float | None = None,
    ) -> AuthorityTransition | None:
        """Fold one query attempt into the engine's authority record.

        Args:
            engine: Engine that was queried
            success: Whether the query succeeded
            response_time_ms: Observed latency, if known

        Returns:
            The applied transition, or None if the engine is unknown

        Raises:
            ConcurrencyError: If the update kept conflicting with other writers
        """
        for attempt in range(1, self._max_cas_attempts + 1):
            now = self._clock()
            applied: AuthorityTransition | None = None

            with self._session_factory() as session, session.begin():
                row = self._load(session, engine)
                if row is None:
                    logger.warning("authority_unknown_engine", engine=engine)
                    return None

                transition = apply_outcome(row.to_domain(), success, now, response_time_ms)
                if self._swap(session, transition.previous, transition.current, now):
                    self._track_outage(session, transition, now)
                    self._audit(session, transition, now, ChangeTrigger.QUERY_RESULT)
                    applied = transition

            if applied is not None:
                self._after_transition(applied)
                return applied

            logger.info("authority_update_conflict", engine=engine, attempt=attempt)

        raise ConcurrencyError(
            f"Authority update for {engine!r} lost {self._max_cas_attempts} consecutive races"
        )

    @contextmanager
    def track(self, engine: str) -> Generator[None, None, None]:
        """Time the wrapped engine call and record its outcome.

        Exceptions are recorded as failures and re-raised unchanged, except
        ConfigurationError, which is our fault rather than the engine's and
        is re-raised without recording anything.
        """
        started = time.perf_counter()
        try:
            yield
        except ConfigurationError as e:
            logger.warning("authority_outcome_not_recorded", engine=engine, error=str(e))
            raise
        except Exception:
            elapsed_ms = (time.perf_counter() - started) * 1000
            self.record_query_outcome(engine, success=False, response_time_ms=elapsed_ms)
            raise
        elapsed_ms = (time.perf_counter() - started) * 1000
        self.record_query_outcome(engine, success=True, response_time_ms=elapsed_ms)

    def set_maintenance(
        self, engine: str, enabled: bool, message: str | None = None
    ) -> EngineAuthority:
        """Put an engine into (or take it out of) operator maintenance."""
        for attempt in range(1, self._max_cas_attempts + 1):
            now = self._clock()
            with self._session_factory() as session, session.begin():
                row = self._load(session, engine)
                if row is None:
                    raise MissingAuthorityError(f"No authority record for engine {engine!r}")
                previous = row.to_domain()

                if enabled:
                    current = replace(
                        previous, status=EngineStatus.MAINTENANCE, status_message=message
                    )
                elif previous.status == EngineStatus.MAINTENANCE:
                    current = release_maintenance(previous)
                else:
                    return previous

                swapped = self._swap(session, previous, current, now)
                if swapped:
                    transition = AuthorityTransition(previous, current)
                    self._track_outage(session, transition, now, counts_query=False)
                    self._audit(session, transition, now, ChangeTrigger.ADMIN, manual=True)

            if swapped:
                logger.info(
                    "authority_maintenance_changed",
                    engine=engine,
                    enabled=enabled,
                    status=current.status.value,
                )
                return replace(current, version=previous.version + 1)

            logger.info("authority_update_conflict", engine=engine, attempt=attempt)

        raise ConcurrencyError(
            f"Maintenance update for {engine!r} lost {self._max_cas_attempts} consecutive races"
        )

    def create_snapshot(
        self, engine: str, snapshot_type: SnapshotType = SnapshotType.HOURLY
    ) -> EngineSnapshot:
        """Store a copy of the engine's current metrics.

        Raises:
            MissingAuthorityError: If the engine has no authority record
        """
        now = self._clock()
        with self._session_factory() as session, session.begin():
            row = self._load(session, engine)
            if row is None:
                raise MissingAuthorityError(f"No authority record for engine {engine!r}")
            previous = self._latest_snapshot(session, engine)
            snapshot = build_snapshot(
                row.to_domain(),
                SnapshotType(snapshot_type),
                now,
                previous=previous.to_domain() if previous else None,
            )
            session.add(EngineSnapshotModel.from_domain(snapshot))

        logger.info(
            "authority_snapshot_created",
            engine=engine,
            snapshot_type=snapshot.snapshot_type.value,
            reliability_score=snapshot.reliability_score,
            status=snapshot.status.value,
        )
        return snapshot

    def snapshot_all(
        self, snapshot_type: SnapshotType = SnapshotType.HOURLY
    ) -> list[EngineSnapshot]:
        """Snapshot every engine, skipping those that are currently unavailable.

        Scoring falls back to an unavailable engine's latest snapshot, so
        that snapshot has to predate the outage.
        """
        snapshots = []
        for authority in self.list_authorities():
            if authority.status == EngineStatus.UNAVAILABLE:
                logger.info("authority_snapshot_skipped", engine=authority.engine)
                continue
            snapshots.append(self.create_snapshot(authority.engine, snapshot_type))
        return snapshots

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @staticmethod
    def _load(session: Session, engine: str) -> EngineAuthorityModel | None:
        return session.execute(
            select(EngineAuthorityModel).where(EngineAuthorityModel.engine == engine)
        ).scalar_one_or_none()

    @staticmethod
    def _latest_snapshot(
        session: Session,
        engine: str,
        snapshot_types: Iterable[SnapshotType] | None = None,
    ) -> EngineSnapshotModel | None:
        stmt = select(EngineSnapshotModel).where(EngineSnapshotModel.engine == engine)
        if snapshot_types is not None:
            stmt = stmt.where(
                EngineSnapshotModel.snapshot_type.in_([t.value for t in snapshot_types])
            )
        stmt = stmt.order_by(EngineSnapshotModel.created_at.desc()).limit(1)
        return session.execute(stmt).scalars().first()

    @staticmethod
    def _swap(
        session: Session,
        previous: EngineAuthority,
        current: EngineAuthority,
        now: datetime,
    ) -> bool:
        """Write ``current`` only if the row still holds ``previous``'s version."""
        stmt = (
            update(EngineAuthorityModel)
            .where(
                EngineAuthorityModel.engine == previous.engine,
                EngineAuthorityModel.version == previous.version,
            )
            .values(
                total_queries=current.total_queries,
                successful_queries=current.successful_queries,
                consecutive_failures=current.consecutive_failures,
                reliability_score=current.reliability_score,
                status=current.status.value,
                status_message=current.status_message,
                authority_weight=current.authority_weight,
                avg_response_time_ms=current.avg_response_time_ms,
                last_successful_query=current.last_successful_query,
                last_failure=current.last_failure,
                version=previous.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return session.execute(stmt).rowcount == 1

    @classmethod
    def _track_outage(
        cls,
        session: Session,
        transition: AuthorityTransition,
        now: datetime,
        counts_query: bool = True,
    ) -> None:
        engine = transition.current.engine
        open_outage = session.execute(
            select(EngineOutageModel).where(
                EngineOutageModel.engine == engine,
                EngineOutageModel.ended_at.is_(None),
            )
        ).scalar_one_or_none()

        if transition.became_unavailable:
            if open_outage is None:
                fallback = cls._latest_snapshot(session, engine, FALLBACK_SNAPSHOT_TYPES)
                session.add(
                    EngineOutageModel(
                        engine=engine,
                        started_at=now,
                        affected_queries=1,
                        fallback_snapshot_id=fallback.id if fallback else None,
                    )
                )
            return

        if open_outage is None:
            return

        if transition.became_healthy:
            open_outage.ended_at = now
            open_outage.resolution_type = "auto_recovered" if counts_query else "manual"
        elif counts_query:
            session.execute(
                update(EngineOutageModel)
                .where(EngineOutageModel.id == open_outage.id)
                .values(affected_queries=EngineOutageModel.affected_queries + 1)
                .execution_options(synchronize_session=False)
            )

    @staticmethod
    def _audit(
        session: Session,
        transition: AuthorityTransition,
        now: datetime,
        triggered_by: ChangeTrigger,
        manual: bool = False,
    ) -> None:
        change = classify_change(transition, manual=manual)
        if change is None:
            return
        previous, current = transition.previous, transition.current
        session.add(
            AuthorityAuditModel(
                engine=current.engine,
                change_type=change.change_type.value,
                previous_authority_weight=previous.authority_weight,
                new_authority_weight=current.authority_weight,
                previous_reliability=previous.reliability_score,
                new_reliability=current.reliability_score,
                explanation=change.explanation,
                evidence={
                    "previous_status": previous.status.value,
                    "status": current.status.value,
                    "consecutive_failures": current.consecutive_failures,
                    "total_queries": current.total_queries,
                    "successful_queries": current.successful_queries,
                },
                triggered_by=triggered_by.value,
                created_at=now,
            )
        )

    def _after_transition(self, transition: AuthorityTransition) -> None:
        current = transition.current
        if not transition.status_changed:
            return

        logger.info(
            "authority_status_changed",
            engine=current.engine,
            previous_status=transition.previous.status.value,
            status=current.status.value,
            consecutive_failures=current.consecutive_failures,
            authority_weight=current.authority_weight,
        )

        if self._alert_sink is None:
            return

        if transition.became_unavailable:
            alert = Alert(
                owner_id=None,
                type="engine_outage",
                title=f"{current.display_name} Unavailable",
                message=(
                    f"{current.display_name} is currently unavailable. "
                    "Scores involving it will be marked as estimated."
                ),
                severity=AlertSeverity.WARNING.value,
                data={"engine": current.engine},
            )
        elif transition.became_healthy and transition.previous.status == EngineStatus.UNAVAILABLE:
            alert = Alert(
                owner_id=None,
                type="engine_recovered",
                title=f"{current.display_name} Recovered",
                message=f"{current.display_name} is back online.",
                severity=AlertSeverity.INFO.value,
                data={"engine": current.engine},
            )
        else:
            return

        # Transition is already committed; delivery failures are only logged
        try:
            self._alert_sink.emit(alert)
        except Exception as e:
            logger.error(
                "authority_alert_failed", engine=current.engine, alert_type=alert.type, error=str(e)
            )
