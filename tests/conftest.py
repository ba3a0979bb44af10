"""Pytest configuration and fixtures."""

import os
from collections.abc import Generator
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

# Set test environment before importing app modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = "redis://localhost:6379/1"
os.environ["CELERY_BROKER_URL"] = "redis://localhost:6379/1"
os.environ["CELERY_RESULT_BACKEND"] = "redis://localhost:6379/1"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["ENGINE_CLIENT_PROVIDER"] = "stub"
os.environ["CITATION_VERIFIER_PROVIDER"] = "stub"
os.environ["AUTHORITY_SEED_ON_STARTUP"] = "false"

from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from visibility_engine.db.models import Base  # noqa: E402
from visibility_engine.domain.models import Alert  # noqa: E402


class RecordingAlertSink:
    """Alert sink that keeps emitted alerts in memory."""

    def __init__(self) -> None:
        self.alerts: list[Alert] = []

    def emit(self, alert: Alert) -> None:
        self.alerts.append(alert)

    def of_type(self, alert_type: str) -> list[Alert]:
        return [a for a in self.alerts if a.type == alert_type]


class FrozenClock:
    """Controllable clock for backoff and staleness tests."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def db_engine() -> Generator[Engine, None, None]:
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine: Engine) -> sessionmaker:
    return sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def alert_sink() -> RecordingAlertSink:
    return RecordingAlertSink()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 1, 15, 12, 0, tzinfo=UTC))


@pytest.fixture
def registry(session_factory, alert_sink, clock):
    """Authority registry seeded with the known engines."""
    from visibility_engine.services.authority import AuthorityRegistry

    registry = AuthorityRegistry(session_factory, alert_sink=alert_sink, clock=clock)
    registry.seed_defaults()
    return registry


@pytest.fixture
def scoring_service(session_factory, registry):
    from visibility_engine.services.scoring import ScoringService

    return ScoringService(session_factory, registry=registry)


@pytest.fixture
def engine_client():
    """Stub answer engine that names the brand first and positively."""
    from visibility_engine.adapters.engines.stub import StubAnswerEngineClient

    return StubAnswerEngineClient(
        answers={
            "chatgpt": "Acme is the best option for teams. Globex is also popular.",
            "perplexity": "Globex and Initech lead the market. Acme is slow and expensive.",
        },
        citations=["https://acme.com/pricing", "https://reviews.example.com/crm"],
    )


@pytest.fixture
def handler_context(session_factory, alert_sink, engine_client):
    """Handler collaborators wired to the test database and stub adapters."""
    from visibility_engine.adapters.citations.stub import StubCitationVerifier
    from visibility_engine.jobs.handlers import HandlerContext

    context = HandlerContext.create(
        session_factory,
        alert_sink=alert_sink,
        engine_client=engine_client,
        citation_verifier=StubCitationVerifier(),
    )
    context.registry.seed_defaults()
    return context


@pytest.fixture
def job_queue(session_factory, alert_sink, handler_context, clock):
    """Job queue running the real handlers."""
    from visibility_engine.services.job_queue import JobQueue

    return JobQueue(
        session_factory,
        context=handler_context,
        alert_sink=alert_sink,
        clock=clock,
    )


@pytest.fixture
def test_client(
    session_factory, job_queue, registry, scoring_service
) -> Generator[TestClient, None, None]:
    """Test client with services bound to the per-test database."""
    from visibility_engine.api import deps
    from visibility_engine.db.session import get_session
    from visibility_engine.main import app
    from visibility_engine.services.scoring import ScoringConfigStore

    def override_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[deps.get_job_queue] = lambda: job_queue
    app.dependency_overrides[deps.get_authority_registry] = lambda: registry
    app.dependency_overrides[deps.get_scoring_service] = lambda: scoring_service
    app.dependency_overrides[deps.get_scoring_config_store] = lambda: ScoringConfigStore(
        session_factory
    )

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
