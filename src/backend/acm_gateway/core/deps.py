"""Database engine and dependency injection utilities for FastAPI."""

from typing import AsyncGenerator

from fastapi import HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from acm_gateway.core.config import settings
from acm_gateway.services.codesystem_service import CodeTableRegistry
from acm_gateway.services.session_manager import ConnectionSessionManager

# Database engine and session factory
engine = create_async_engine(settings.database_url, echo=settings.debug)
async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session."""
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_registry(request: Request) -> CodeTableRegistry:
    """Get the code table registry created during application startup."""
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Code table registry not initialized",
        )
    return registry


def get_session_manager(request: Request) -> ConnectionSessionManager:
    """Get the connection session manager shared with the MLLP listener."""
    manager = getattr(request.app.state, "session_manager", None)
    if manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Connection session manager not initialized",
        )
    return manager
