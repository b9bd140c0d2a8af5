"""Connection session tracking for MLLP clients."""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
import threading

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class MessageInfo:
    """One received frame kept for diagnostics."""
    timestamp: datetime
    content: str
    size: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "content": self.content,
            "size": self.size,
        }


@dataclass
class ConnectionSession:
    """State of one client connection."""
    client_id: str
    ip: str
    port: int
    connected_at: datetime
    messages_received: int = 0
    last_message_at: datetime | None = None
    messages: deque = field(default_factory=lambda: deque(maxlen=10))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.client_id,
            "ip": self.ip,
            "port": self.port,
            "connected_at": self.connected_at.isoformat(),
            "messages_received": self.messages_received,
            "last_message_at": self.last_message_at.isoformat() if self.last_message_at else None,
            "messages": [message.to_dict() for message in self.messages],
        }


class ConnectionSessionManager:
    """
    Tracks live MLLP connections and message counters.

    Sessions are mutated by their own connection task and read by the
    HTTP API from worker threads, so every access goes through one lock.
    """

    def __init__(self, history_size: int = 10):
        self.history_size = history_size
        self._sessions: dict[str, ConnectionSession] = {}
        self._lock = threading.Lock()
        self._active_connections = 0
        self._total_connections = 0
        self._total_messages = 0

    def open(self, ip: str, port: int) -> ConnectionSession:
        """Register a newly accepted connection."""
        session = ConnectionSession(
            client_id=f"{ip}:{port}",
            ip=ip,
            port=port,
            connected_at=datetime.now(timezone.utc),
            messages=deque(maxlen=self.history_size),
        )
        with self._lock:
            self._sessions[session.client_id] = session
            self._active_connections += 1
            self._total_connections += 1
            active, total = self._active_connections, self._total_connections

        logger.info(
            "New client connected",
            client_id=session.client_id,
            active_connections=active,
            total_connections=total,
        )
        return session

    def record_message(self, session: ConnectionSession, content: str) -> None:
        """Count a received frame and add it to the session history."""
        now = datetime.now(timezone.utc)
        with self._lock:
            session.messages_received += 1
            session.last_message_at = now
            session.messages.append(
                MessageInfo(timestamp=now, content=content, size=len(content))
            )
            self._total_messages += 1

    def close(self, session: ConnectionSession) -> dict[str, Any]:
        """
        Remove a session from the live set.

        Returns:
            Final snapshot of the session
        """
        with self._lock:
            removed = self._sessions.pop(session.client_id, None)
            if removed is not None:
                self._active_connections -= 1
            snapshot = session.to_dict()
            active = self._active_connections

        if removed is not None:
            duration = (datetime.now(timezone.utc) - session.connected_at).total_seconds()
            logger.info(
                "Client disconnected",
                client_id=session.client_id,
                messages_received=session.messages_received,
                connection_duration=f"{int(duration)} seconds",
                active_connections=active,
            )
        return snapshot

    def get_stats(self) -> dict[str, Any]:
        """Aggregate counters plus a snapshot of every live client."""
        with self._lock:
            return {
                "active_connections": self._active_connections,
                "total_connections": self._total_connections,
                "total_messages_received": self._total_messages,
                "clients": [session.to_dict() for session in self._sessions.values()],
            }

    def get_client(self, client_id: str) -> dict[str, Any] | None:
        """Snapshot of one live client, or None."""
        with self._lock:
            session = self._sessions.get(client_id)
            return session.to_dict() if session else None
