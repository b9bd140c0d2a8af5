"""HL7 alarm ingestion service.

Runs one frame through decode, enrichment and persistence, and reports
the outcome so the transport can acknowledge it.
"""

from typing import TYPE_CHECKING
import asyncio
import logging
import time

from acm_gateway.core.metrics import observe_message
from acm_gateway.integrations.base import (
    DecodeError,
    IntegrationError,
    MissingSegmentError,
    StoreError,
)
from acm_gateway.integrations.hl7.enrichment import AlarmEnrichmentEngine
from acm_gateway.integrations.hl7.parser import parse_message
from acm_gateway.integrations.hl7.protocols import IngestionOutcome, IngestionResult

if TYPE_CHECKING:
    from acm_gateway.services.alarm_record_service import AlarmRecordWriter
    from acm_gateway.services.codesystem_service import CodeTableRegistry

logger = logging.getLogger(__name__)


class AlarmIngestionService:
    """
    Linear decode -> enrich -> persist pipeline for one frame at a time.

    Decode, segment and store failures do not escape ``process``; they
    are folded into the returned IngestionResult.
    """

    def __init__(
        self,
        registry: "CodeTableRegistry",
        writer: "AlarmRecordWriter",
        persist_timeout: float | None = 10.0,
    ):
        self.registry = registry
        self.writer = writer
        self.persist_timeout = persist_timeout
        self.enricher = AlarmEnrichmentEngine(registry)

        # Statistics
        self._stats = {outcome.value: 0 for outcome in IngestionOutcome}
        self._stats["frames_processed"] = 0

    async def process(self, frame_text: str) -> IngestionResult:
        """
        Process one frame payload.

        Args:
            frame_text: Decoded frame text

        Returns:
            IngestionResult with the outcome, the record and its row id
        """
        started = time.perf_counter()
        result = await self._run(frame_text)
        result.duration = time.perf_counter() - started

        self._stats["frames_processed"] += 1
        self._stats[result.outcome.value] += 1
        observe_message(result.outcome.value, result.duration)
        return result

    async def _run(self, frame_text: str) -> IngestionResult:
        try:
            message = parse_message(frame_text)
            record = self.enricher.enrich(message, raw=frame_text)
        except MissingSegmentError as e:
            logger.warning(f"Dropping HL7 message: {e}")
            return IngestionResult(outcome=IngestionOutcome.DROPPED, error=e)
        except DecodeError as e:
            logger.error(f"Failed to decode HL7 message: {e}")
            return IngestionResult(outcome=IngestionOutcome.FAILED, error=e)

        if record is None:
            return IngestionResult(outcome=IngestionOutcome.SKIPPED)

        try:
            row_id = await asyncio.wait_for(self.writer.insert(record), timeout=self.persist_timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Alarm record insert timed out after {self.persist_timeout}s")
            error = StoreError("Timed out saving alarm record", original_error=e)
            return IngestionResult(outcome=IngestionOutcome.FAILED, record=record, error=error)
        except IntegrationError as e:
            logger.error(f"Failed to persist alarm record: {e}")
            return IngestionResult(outcome=IngestionOutcome.FAILED, record=record, error=e)

        return IngestionResult(outcome=IngestionOutcome.PERSISTED, record=record, row_id=row_id)

    def get_stats(self) -> dict:
        """Get processing statistics."""
        return self._stats.copy()
