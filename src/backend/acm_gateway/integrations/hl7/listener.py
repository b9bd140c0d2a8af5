"""MLLP TCP listener.

Accepts device connections, splits each byte stream into MLLP frames and
answers every processed frame with an acknowledgment on the same socket.
Each connection runs in its own task and handles its frames strictly in
order: the next frame is not decoded until the previous one has been
persisted and acknowledged.
"""

from typing import Any
import asyncio
import logging

from acm_gateway.core.metrics import (
    decrement_mllp_connections,
    increment_mllp_connections,
    record_frame,
)
from acm_gateway.integrations.base import FrameTooLargeError, IntegrationAdapter
from acm_gateway.integrations.hl7.mllp import ACK_ERROR, ACK_OK, MLLPFrameDecoder
from acm_gateway.integrations.hl7.protocols import IngestionOutcome, IngestionResult
from acm_gateway.integrations.hl7.receiver import AlarmIngestionService
from acm_gateway.services.session_manager import ConnectionSession, ConnectionSessionManager

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 100


def is_valid_port(port: Any) -> bool:
    """Check that a value is a usable TCP port number."""
    return isinstance(port, int) and not isinstance(port, bool) and 0 < port < 65536


def _preview(text: str) -> str:
    return text[:PREVIEW_LENGTH] + "..." if len(text) > PREVIEW_LENGTH else text


class MLLPListener(IntegrationAdapter):
    """
    TCP server for HL7 alarm feeds.

    A port of 0 binds an ephemeral port; the bound port is available on
    ``port`` after ``connect``.
    """

    def __init__(
        self,
        ingestion: AlarmIngestionService,
        session_manager: ConnectionSessionManager,
        host: str = "0.0.0.0",
        port: int = 3359,
        max_frame_bytes: int | None = 1024 * 1024,
        nak_on_missing_segment: bool = False,
        read_size: int = 64 * 1024,
    ):
        if port != 0 and not is_valid_port(port):
            raise ValueError(f"Invalid MLLP port: {port}")

        super().__init__(name="mllp_listener")
        self.ingestion = ingestion
        self.session_manager = session_manager
        self.host = host
        self.port = port
        self.max_frame_bytes = max_frame_bytes
        self.nak_on_missing_segment = nak_on_missing_segment
        self.read_size = read_size

        self._server: asyncio.AbstractServer | None = None
        self._connection_tasks: set[asyncio.Task] = set()

    async def connect(self) -> bool:
        """Start listening for connections."""
        if self._server is not None:
            return True

        self._server = await asyncio.start_server(
            self._handle_connection, self.host, self.port,
        )
        sockets = self._server.sockets or []
        if sockets:
            self.port = sockets[0].getsockname()[1]

        self._connected = True
        logger.info(f"MLLP listener listening on {self.host}:{self.port}")
        return True

    async def disconnect(self) -> None:
        """Stop accepting connections and close the open ones."""
        if self._server is None:
            return

        self._server.close()

        tasks = list(self._connection_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self._server.wait_closed()
        self._server = None
        self._connected = False
        logger.info("MLLP listener stopped")

    async def health_check(self) -> dict[str, Any]:
        """Check listener health."""
        serving = self._server is not None and self._server.is_serving()
        return {
            "status": "healthy" if serving else "stopped",
            "host": self.host,
            "port": self.port,
            "active_connections": len(self._connection_tasks),
            "stats": self.ingestion.get_stats(),
        }

    def ack_for(self, result: IngestionResult) -> bytes:
        """Choose the acknowledgment for a processed frame."""
        if result.outcome == IngestionOutcome.FAILED:
            return ACK_ERROR
        if result.outcome == IngestionOutcome.DROPPED and self.nak_on_missing_segment:
            return ACK_ERROR
        return ACK_OK

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._connection_tasks.add(task)

        peer = writer.get_extra_info("peername") or ("unknown", 0)
        session = self.session_manager.open(str(peer[0]), int(peer[1]))
        increment_mllp_connections()
        decoder = MLLPFrameDecoder(self.max_frame_bytes)

        try:
            while True:
                chunk = await reader.read(self.read_size)
                if not chunk:
                    logger.info(f"Client disconnected: {session.client_id}")
                    break

                try:
                    frames = decoder.feed(chunk)
                except FrameTooLargeError as e:
                    for frame in e.frames:
                        await self._handle_frame(session, frame, writer)
                    logger.warning(f"Oversized frame from {session.client_id}: {e}")
                    writer.write(ACK_ERROR)
                    await writer.drain()
                    continue

                for frame in frames:
                    await self._handle_frame(session, frame, writer)

        except (ConnectionError, OSError) as e:
            logger.error(f"Socket error for client {session.client_id}: {e}")
        finally:
            decoder.reset()
            self.session_manager.close(session)
            decrement_mllp_connections()
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError) as e:
                logger.debug(f"Socket for client {session.client_id} closed with error: {e}")
            if task is not None:
                self._connection_tasks.discard(task)
            logger.info(f"Cleaned socket resources for client {session.client_id}")

    async def _handle_frame(
        self,
        session: ConnectionSession,
        frame: str,
        writer: asyncio.StreamWriter,
    ) -> None:
        record_frame()
        self.session_manager.record_message(session, frame)
        logger.info(f"Received HL7 message from {session.client_id}: {_preview(frame)}")

        try:
            result = await self.ingestion.process(frame)
            ack = self.ack_for(result)
            logger.info(f"Message from {session.client_id} {result.outcome.value}")
        except Exception as e:
            logger.exception(f"Unexpected error processing message from {session.client_id}: {e}")
            ack = ACK_ERROR

        writer.write(ack)
        await writer.drain()
