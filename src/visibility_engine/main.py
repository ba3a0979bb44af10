"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from visibility_engine import __version__
from visibility_engine.api.routes import configs, engines, health, jobs, scores
from visibility_engine.config import settings
from visibility_engine.domain.errors import ConcurrencyError, MissingAuthorityError
from visibility_engine.logging import get_logger, setup_logging

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    logger.info("application_starting", version=__version__)

    try:
        from visibility_engine.db.session import init_db

        init_db()
        logger.info("database_connected")
    except Exception as e:
        # Readiness reports the failure
        logger.error("database_connection_failed", error=str(e))

    if settings.authority_seed_on_startup:
        try:
            from visibility_engine.services.authority import AuthorityRegistry

            AuthorityRegistry().seed_defaults()
        except Exception as e:
            logger.error("authority_seed_failed", error=str(e))

    yield

    logger.info("application_shutting_down")


# Create FastAPI app
app = FastAPI(
    title="AI Visibility Engine",
    description="Job queue, engine authority registry and weighted visibility scoring",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ConcurrencyError)
async def concurrency_error_handler(request: Request, exc: ConcurrencyError) -> JSONResponse:
    """Lost optimistic-concurrency races surface as a retryable conflict."""
    logger.warning("request_conflict", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(MissingAuthorityError)
async def missing_authority_handler(request: Request, exc: MissingAuthorityError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


# Register routers
app.include_router(health.router)
app.include_router(jobs.router, prefix="/api/v1")
app.include_router(engines.router, prefix="/api/v1")
app.include_router(scores.router, prefix="/api/v1")
app.include_router(configs.router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Root endpoint redirect to docs."""
    return {
        "name": "AI Visibility Engine",
        "version": __version__,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "visibility_engine.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
    )
