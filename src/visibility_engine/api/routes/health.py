"""Health check endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel
from sqlalchemy import func, select, text

from visibility_engine.api.deps import SessionDep
from visibility_engine.config import settings
from visibility_engine.db.models import EngineAuthorityModel, EngineOutageModel
from visibility_engine.logging import get_logger

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    components: dict[str, bool]


class ReadinessResponse(BaseModel):
    """Readiness check response.

    ``engines_seeded`` is false until the authority table holds at least
    one engine; scoring would silently run at neutral weights without it.
    """

    ready: bool
    database: bool
    redis: bool
    engines_seeded: bool
    open_outages: int = 0


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check",
    description="Basic health check endpoint that verifies the API is running.",
)
async def health_check() -> HealthResponse:
    """Is the API up, and which adapters talk to real services?"""
    from visibility_engine import __version__

    providers = {
        "engine_client": settings.engine_client_provider,
        "citation_verifier": settings.citation_verifier_provider,
    }
    return HealthResponse(
        status="healthy",
        version=__version__,
        components={name: provider.lower() != "stub" for name, provider in providers.items()},
    )


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    description="Verifies the database, the Celery broker and the engine authority seed.",
)
def readiness_check(session: SessionDep) -> ReadinessResponse:
    database_ok = False
    engines_seeded = False
    open_outages = 0
    try:
        session.execute(text("SELECT 1"))
        database_ok = True
        engines_seeded = bool(
            session.execute(select(func.count()).select_from(EngineAuthorityModel)).scalar()
        )
        open_outages = session.execute(
            select(func.count())
            .select_from(EngineOutageModel)
            .where(EngineOutageModel.ended_at.is_(None))
        ).scalar_one()
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))

    redis_ok = False
    try:
        import redis

        redis.from_url(settings.redis_url, socket_connect_timeout=2).ping()
        redis_ok = True
    except Exception as e:
        logger.error("redis_health_check_failed", error=str(e))

    return ReadinessResponse(
        ready=database_ok and redis_ok and engines_seeded,
        database=database_ok,
        redis=redis_ok,
        engines_seeded=engines_seeded,
        open_outages=open_outages,
    )


@router.get(
    "/health/live",
    status_code=status.HTTP_200_OK,
    summary="Liveness check",
    description="Simple liveness check for Kubernetes."
)
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}
