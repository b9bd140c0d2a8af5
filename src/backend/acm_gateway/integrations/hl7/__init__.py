"""HL7 v2 Alarm Integration.

Provides ingestion of IHE PCD alarm reports (ORU^R40) using:
- MLLP framing over TCP
- HL7 v2 segment decoding
- Code table enrichment
"""

from acm_gateway.integrations.hl7.protocols import (
    AlarmRecord,
    IngestionOutcome,
    IngestionResult,
    ObservationResult,
)
from acm_gateway.integrations.hl7.mllp import (
    ACK_ERROR,
    ACK_OK,
    MLLPFrameDecoder,
    encode_frame,
)
from acm_gateway.integrations.hl7.parser import ParsedMessage, Segment, parse_message
from acm_gateway.integrations.hl7.enrichment import AlarmEnrichmentEngine
from acm_gateway.integrations.hl7.receiver import AlarmIngestionService
from acm_gateway.integrations.hl7.listener import MLLPListener, is_valid_port

__all__ = [
    "AlarmRecord",
    "IngestionOutcome",
    "IngestionResult",
    "ObservationResult",
    "ACK_ERROR",
    "ACK_OK",
    "MLLPFrameDecoder",
    "encode_frame",
    "ParsedMessage",
    "Segment",
    "parse_message",
    "AlarmEnrichmentEngine",
    "AlarmIngestionService",
    "MLLPListener",
    "is_valid_port",
]
