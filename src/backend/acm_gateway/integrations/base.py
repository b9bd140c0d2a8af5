"""Base classes for protocol integrations.

Provides the error hierarchy shared by the ingestion pipeline and the
lifecycle contract implemented by long-running adapters such as the
MLLP listener:
- Connection management (connect / disconnect)
- Health monitoring
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any
import logging

logger = logging.getLogger(__name__)


class IntegrationError(Exception):
    """Base exception for integration errors."""

    def __init__(
        self,
        message: str,
        source: str | None = None,
        retryable: bool = True,
        original_error: Exception | None = None,
    ):
        super().__init__(message)
        self.source = source
        self.retryable = retryable
        self.original_error = original_error


class FrameTooLargeError(IntegrationError):
    """Raised when a partial frame grows past the configured limit."""

    def __init__(self, size: int, limit: int, frames: list[str] | None = None):
        super().__init__(
            f"Frame exceeds {limit} bytes ({size} buffered)",
            source="mllp",
            retryable=False,
        )
        self.size = size
        self.limit = limit
        # Complete frames decoded from the same chunk before the overflow
        self.frames = frames or []


class DecodeError(IntegrationError):
    """Raised when a payload is not a parseable HL7 message."""

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(
            message,
            source="hl7",
            retryable=False,
            original_error=original_error,
        )


class MissingSegmentError(IntegrationError):
    """Raised when a mandatory segment is absent from a message."""

    def __init__(self, segment: str):
        super().__init__(
            f"Missing mandatory segment: {segment}",
            source="hl7",
            retryable=False,
        )
        self.segment = segment


class StoreError(IntegrationError):
    """Raised when a database operation fails."""

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(
            message,
            source="store",
            retryable=True,
            original_error=original_error,
        )


class LoadError(IntegrationError):
    """Raised when a code system document cannot be loaded."""

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(
            message,
            source="codesystem",
            retryable=False,
            original_error=original_error,
        )


class IntegrationAdapter(ABC):
    """
    Base class for long-running integration adapters.

    Provides common functionality:
    - Connection state tracking
    - Health checking with timestamped results
    """

    def __init__(self, name: str):
        self.name = name
        self._connected = False
        self._health_status: dict[str, Any] = {}

    @property
    def is_connected(self) -> bool:
        """Check if adapter is connected."""
        return self._connected

    @property
    def is_healthy(self) -> bool:
        """Check if adapter is healthy."""
        return self._connected and self._health_status.get("healthy", False)

    @abstractmethod
    async def connect(self) -> bool:
        """
        Start the adapter.

        Returns:
            True if startup succeeded
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Stop the adapter and release its resources."""
        pass

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """
        Check health of the adapter.

        Returns:
            Health status dictionary
        """
        pass

    async def update_health(self) -> dict[str, Any]:
        """Update and return health status."""
        try:
            self._health_status = await self.health_check()
            self._health_status["healthy"] = self._connected
            self._health_status["checked_at"] = datetime.now(timezone.utc).isoformat()
        except Exception as e:
            logger.warning(f"Health check failed for {self.name}: {e}")
            self._health_status = {
                "healthy": False,
                "error": str(e),
                "checked_at": datetime.now(timezone.utc).isoformat(),
            }

        return self._health_status
