"""HL7 v2 message decoding.

Thin wrapper over the ``hl7`` package that exposes segments by tag with
1-indexed field access. Field numbering follows the HL7 standard for
every segment, including MSH where MSH-1 is the field separator and
MSH-2 the encoding characters.
"""

import logging
import re

import hl7
from hl7.exceptions import HL7Exception

from acm_gateway.integrations.base import DecodeError

logger = logging.getLogger(__name__)

_SEGMENT_SPLIT = re.compile(r"\r\n|\r|\n")


def component_at(field: str | None, index: int, delimiter: str = "^") -> str | None:
    """
    Get one component of a composite field.

    Args:
        field: Raw field text, e.g. "12345^MySubID"
        index: 0-based component index, -1 for the last component
        delimiter: Component separator

    Returns:
        The component text, or None when absent or empty
    """
    if not field or not isinstance(field, str):
        return None

    components = field.split(delimiter)
    if index == -1:
        return components[-1] or None
    if index < 0 or index >= len(components):
        return None
    return components[index] or None


class Segment:
    """One decoded segment with 1-indexed field access."""

    def __init__(self, segment: hl7.Segment, component_separator: str = "^"):
        self._segment = segment
        self.component_separator = component_separator

    @property
    def tag(self) -> str:
        return str(self._segment[0])

    def get_field(self, index: int) -> str | None:
        """Get the raw text of a field, or None if the segment is shorter."""
        if index < 1:
            return None
        try:
            return str(self._segment[index])
        except IndexError:
            return None

    def get_component(self, index: int, sub_index: int) -> str | None:
        """Get a component of a field (both indices 1-based)."""
        if sub_index < 1:
            return None
        return component_at(self.get_field(index), sub_index - 1, self.component_separator)

    def __str__(self) -> str:
        return str(self._segment)

    def __repr__(self) -> str:
        return f"<Segment {self.tag}>"


class ParsedMessage:
    """Decoded HL7 message grouped by segment tag."""

    def __init__(self, message: hl7.Message, raw: str):
        self._message = message
        self.raw = raw

        header = message[0]
        encoding = str(header[2]) if len(header) > 2 else ""
        self.component_separator = encoding[0] if encoding else "^"

        self._segments = [Segment(seg, self.component_separator) for seg in message]

    @property
    def header(self) -> Segment | None:
        return self.get_segment("MSH")

    @property
    def segments(self) -> list[Segment]:
        return list(self._segments)

    def get_segment(self, tag: str) -> Segment | None:
        """Get the first segment with the given tag."""
        for segment in self._segments:
            if segment.tag == tag:
                return segment
        return None

    def get_segments(self, tag: str) -> list[Segment]:
        """Get all segments with the given tag, in message order."""
        return [segment for segment in self._segments if segment.tag == tag]

    def __str__(self) -> str:
        return self.raw


def parse_message(text: str) -> ParsedMessage:
    """
    Decode a frame payload into a ParsedMessage.

    Segments may be separated by CR, LF or CRLF.

    Raises:
        DecodeError: If the payload is not an HL7 v2 message
    """
    if not text or not isinstance(text, str):
        raise DecodeError("Empty HL7 payload")

    lines = [line for line in _SEGMENT_SPLIT.split(text.strip()) if line.strip()]
    if not lines or not lines[0].startswith("MSH") or len(lines[0]) < 8:
        raise DecodeError("Payload does not start with an MSH segment")

    try:
        message = hl7.parse("\r".join(lines))
    except (HL7Exception, AssertionError, IndexError, KeyError, ValueError) as e:
        logger.warning(f"Failed to parse HL7 payload: {e}")
        raise DecodeError(f"Malformed HL7 message: {e}", original_error=e) from e

    return ParsedMessage(message, text)
