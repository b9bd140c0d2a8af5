"""Health check service for the ACM gateway."""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any
import time

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from acm_gateway import __version__

if TYPE_CHECKING:
    from acm_gateway.integrations.hl7.listener import MLLPListener
    from acm_gateway.services.codesystem_service import CodeTableRegistry

logger = structlog.get_logger()


class HealthStatus(str, Enum):
    """Health check status values."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    """Health status of a single component."""

    name: str
    status: HealthStatus
    message: str | None = None
    latency_ms: float | None = None


@dataclass
class SystemHealth:
    """Overall system health status."""

    status: HealthStatus
    version: str
    components: list[ComponentHealth]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "status": self.status.value,
            "version": self.version,
            "components": [
                {
                    "name": c.name,
                    "status": c.status.value,
                    "message": c.message,
                    "latency_ms": c.latency_ms,
                }
                for c in self.components
            ],
        }


class HealthService:
    """Service for checking health of system components."""

    VERSION = __version__

    async def check_database(self, session: AsyncSession) -> ComponentHealth:
        """Check database connectivity and response time."""
        start = time.perf_counter()
        try:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            latency = (time.perf_counter() - start) * 1000

            return ComponentHealth(
                name="database",
                status=HealthStatus.HEALTHY,
                message="Database responding",
                latency_ms=round(latency, 2),
            )
        except SQLAlchemyError as e:
            latency = (time.perf_counter() - start) * 1000
            logger.error("Database health check failed", error=str(e))
            return ComponentHealth(
                name="database",
                status=HealthStatus.UNHEALTHY,
                message=f"Connection failed: {str(e)[:100]}",
                latency_ms=round(latency, 2),
            )

    async def check_listener(self, listener: "MLLPListener | None") -> ComponentHealth:
        """Check that the MLLP listener is accepting connections."""
        if listener is None:
            return ComponentHealth(
                name="mllp_listener",
                status=HealthStatus.DEGRADED,
                message="Listener disabled",
            )

        status = await listener.update_health()
        if not status.get("healthy"):
            return ComponentHealth(
                name="mllp_listener",
                status=HealthStatus.UNHEALTHY,
                message=status.get("error", "Listener not running"),
            )

        return ComponentHealth(
            name="mllp_listener",
            status=HealthStatus.HEALTHY,
            message=f"Listening on port {status.get('port')}",
        )

    def check_registry(self, registry: "CodeTableRegistry | None") -> ComponentHealth:
        """Check that a code system is loaded."""
        if registry is None or registry.tag_count == 0:
            return ComponentHealth(
                name="code_registry",
                status=HealthStatus.DEGRADED,
                message="No code tags loaded; descriptions will be unknown",
            )

        return ComponentHealth(
            name="code_registry",
            status=HealthStatus.HEALTHY,
            message=f"{registry.tag_count} tags loaded from '{registry.active_name}'",
        )

    async def get_readiness(
        self,
        session: AsyncSession,
        listener: "MLLPListener | None" = None,
        registry: "CodeTableRegistry | None" = None,
    ) -> SystemHealth:
        """Get full readiness status including all dependencies."""
        components = [
            await self.check_database(session),
            await self.check_listener(listener),
            self.check_registry(registry),
        ]

        # Determine overall status
        statuses = [c.status for c in components]
        if HealthStatus.UNHEALTHY in statuses:
            overall_status = HealthStatus.UNHEALTHY
        elif HealthStatus.DEGRADED in statuses:
            overall_status = HealthStatus.DEGRADED
        else:
            overall_status = HealthStatus.HEALTHY

        return SystemHealth(
            status=overall_status,
            version=self.VERSION,
            components=components,
        )

    def get_liveness(self) -> SystemHealth:
        """Get basic liveness status (application is running)."""
        return SystemHealth(
            status=HealthStatus.HEALTHY,
            version=self.VERSION,
            components=[
                ComponentHealth(
                    name="application",
                    status=HealthStatus.HEALTHY,
                    message="Application is running",
                )
            ],
        )


# Singleton instance
health_service = HealthService()
