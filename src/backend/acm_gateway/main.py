"""ACM Gateway FastAPI Application Entry Point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from acm_gateway import __version__
from acm_gateway.api import router as api_router
from acm_gateway.core.config import settings
from acm_gateway.core.deps import async_session_factory, engine, get_db
from acm_gateway.core.logging_setup import configure_logging
from acm_gateway.integrations.base import LoadError, StoreError
from acm_gateway.integrations.hl7 import AlarmIngestionService, MLLPListener
from acm_gateway.models import Base
from acm_gateway.services.alarm_record_service import AlarmRecordWriter
from acm_gateway.services.codesystem_service import CodeTableRegistry
from acm_gateway.services.health_service import health_service
from acm_gateway.services.session_manager import ConnectionSessionManager

logger = structlog.get_logger()


async def _bootstrap_registry(registry: CodeTableRegistry) -> None:
    """Load the configured code system; an empty registry is not fatal."""
    path = settings.resolve_codesystem_document()
    try:
        result = await registry.bootstrap_file(path)
        logger.info(
            "Code system ready",
            name=result.name,
            status=result.status.value,
            tags=result.tag_count,
        )
    except (LoadError, StoreError) as e:
        logger.error(
            "Code system bootstrap failed, descriptions will be unknown",
            path=str(path),
            error=str(e),
        )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown events."""
    configure_logging(settings.log_level, settings.log_json)

    # Startup
    logger.info("Starting ACM gateway", environment=settings.environment, version=__version__)

    # Database schema is required before anything can be persisted
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    registry = CodeTableRegistry(
        session_factory=async_session_factory,
        default_table=settings.default_codetag_table,
        default_name=settings.default_codesystem_name,
    )
    await _bootstrap_registry(registry)

    session_manager = ConnectionSessionManager(history_size=settings.session_history_size)

    listener: MLLPListener | None = None
    if settings.mllp_enabled:
        ingestion = AlarmIngestionService(
            registry=registry,
            writer=AlarmRecordWriter(async_session_factory),
            persist_timeout=settings.persist_timeout_seconds,
        )
        listener = MLLPListener(
            ingestion=ingestion,
            session_manager=session_manager,
            host=settings.mllp_host,
            port=settings.mllp_port,
            max_frame_bytes=settings.max_frame_bytes,
            nak_on_missing_segment=settings.nak_on_missing_segment,
        )
        await listener.connect()
        logger.info("MLLP listener started", host=settings.mllp_host, port=listener.port)

    app.state.registry = registry
    app.state.session_manager = session_manager
    app.state.listener = listener

    yield

    # Shutdown
    logger.info("Shutting down ACM gateway")

    if listener:
        await listener.disconnect()
        logger.info("MLLP listener stopped")

    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="HL7 v2 alarm ingestion over MLLP with code system enrichment",
    version=__version__,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router, prefix="/api")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "loc": error.get("loc"),
            "msg": str(error.get("msg")),
            "type": error.get("type"),
        }
        for error in exc.errors()
    ]
    logger.warning("Validation error", path=str(request.url.path), errors=errors)
    return JSONResponse(status_code=422, content={"detail": errors})


# Set up Prometheus metrics instrumentation
if settings.metrics_enabled:
    from acm_gateway.core.metrics import expose_metrics, setup_metrics

    _instrumentator = setup_metrics(app)
    expose_metrics(app, _instrumentator)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for container probes."""
    return {"status": "healthy", "version": __version__}


@app.get("/health/live")
async def liveness_check() -> dict:
    """Liveness probe - checks if application is running."""
    result = health_service.get_liveness()
    return result.to_dict()


@app.get("/health/ready")
async def readiness_check(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    """Readiness probe - checks database, listener and code registry."""
    result = await health_service.get_readiness(
        db,
        listener=getattr(request.app.state, "listener", None),
        registry=getattr(request.app.state, "registry", None),
    )
    return result.to_dict()
