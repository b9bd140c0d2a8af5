"""MLLP (Minimal Lower Layer Protocol) framing.

Frame format: <VT> payload <FS><CR>
- VT: start block, 0x0B
- payload: UTF-8 encoded HL7 message
- FS CR: end block, 0x1C 0x0D

There is no checksum or sequence number; a frame is complete as soon as
the end block follows a start block.
"""

import logging

from acm_gateway.integrations.base import FrameTooLargeError
from acm_gateway.integrations.hl7.protocols import FrameState

logger = logging.getLogger(__name__)

START_BLOCK = b"\x0b"
END_BLOCK = b"\x1c\x0d"

ACK_OK = START_BLOCK + b"ok" + END_BLOCK
ACK_ERROR = START_BLOCK + b"AE|Error processing message" + END_BLOCK


def encode_frame(payload: str | bytes) -> bytes:
    """Wrap a payload in MLLP start and end blocks."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return START_BLOCK + payload + END_BLOCK


class MLLPFrameDecoder:
    """
    Incremental decoder for one connection's byte stream.

    Chunks may split a frame at any offset and one chunk may carry several
    frames; ``feed`` returns every frame completed by the chunk, in order,
    and keeps the trailing partial frame buffered. Bytes that precede a
    start block are discarded.
    """

    def __init__(self, max_frame_bytes: int | None = None):
        self.max_frame_bytes = max_frame_bytes
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        """Number of bytes waiting for an end block."""
        return len(self._buffer)

    @property
    def state(self) -> FrameState:
        """Current decoder state."""
        start = self._buffer.find(START_BLOCK)
        if start != -1 and self._buffer.find(END_BLOCK, start + 1) != -1:
            return FrameState.FRAME_READY
        return FrameState.ACCUMULATING

    def reset(self) -> None:
        """Drop any buffered bytes."""
        self._buffer.clear()

    def feed(self, chunk: bytes) -> list[str]:
        """
        Append a chunk and extract all complete frames.

        Args:
            chunk: Bytes read from the connection

        Returns:
            Decoded payloads of the frames completed by this chunk

        Raises:
            FrameTooLargeError: If the pending partial frame exceeds
                ``max_frame_bytes``. The buffer is reset and frames that
                completed before the overflow are carried on the error.
        """
        self._buffer.extend(chunk)

        frames = []
        while True:
            frame = self._next_frame()
            if frame is None:
                break
            frames.append(frame)

        if self.max_frame_bytes is not None and len(self._buffer) > self.max_frame_bytes:
            size = len(self._buffer)
            self.reset()
            logger.warning(f"Discarding partial MLLP frame of {size} bytes")
            raise FrameTooLargeError(size, self.max_frame_bytes, frames=frames)

        return frames

    def _next_frame(self) -> str | None:
        """Extract the first complete frame from the buffer, if any."""
        start = self._buffer.find(START_BLOCK)
        if start == -1:
            # No frame has started; nothing here can become part of one
            self._buffer.clear()
            return None

        if start > 0:
            logger.debug(f"Skipping {start} bytes before MLLP start block")
            del self._buffer[:start]

        end = self._buffer.find(END_BLOCK, 1)
        if end == -1:
            return None

        payload = bytes(self._buffer[1:end])
        del self._buffer[:end + len(END_BLOCK)]
        return payload.decode("utf-8", errors="replace")
