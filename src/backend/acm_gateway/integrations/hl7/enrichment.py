"""Alarm enrichment for ORU^R40 messages.

Turns a decoded IHE PCD alarm report into an ``AlarmRecord``:
- Validates the message type against the accepted list
- Derives UTC date/time fields from MSH-7
- Extracts location (PV1-3), patient (PID-3) and device (OBR-13) identity
- Classifies priority, state and limit violation from OBX segments
- Resolves descriptions through the code table registry
"""

from typing import TYPE_CHECKING
import logging

from acm_gateway.integrations.base import MissingSegmentError
from acm_gateway.integrations.hl7.observations import (
    CODED,
    NUMERIC,
    extract_observations,
    last_observation,
    observation_value,
)
from acm_gateway.integrations.hl7.parser import ParsedMessage, Segment, component_at
from acm_gateway.integrations.hl7.protocols import (
    ACCEPTED_MESSAGE_TYPES,
    EVENT_MARKER,
    NOT_AVAILABLE,
    PRIORITY_MARKER,
    STATE_MARKER,
    UNKNOWN,
    AlarmRecord,
    AlarmType,
    ObservationResult,
)
from acm_gateway.integrations.hl7.rules import (
    DEFAULT_PRIORITY,
    alarm_priority,
    alarm_type,
    convert_timestamp,
    limit_violation,
    limit_violation_value,
)

if TYPE_CHECKING:
    from acm_gateway.services.codesystem_service import CodeTableRegistry

logger = logging.getLogger(__name__)


class AlarmEnrichmentEngine:
    """
    Builds alarm records from parsed messages.

    Target observations follow a last-wins policy: when a message carries
    several NM or CWE segments, the last of each kind is used.
    """

    def __init__(self, registry: "CodeTableRegistry"):
        self.registry = registry

    def enrich(self, message: ParsedMessage, raw: str | None = None) -> AlarmRecord | None:
        """
        Enrich one message.

        Args:
            message: Parsed HL7 message
            raw: Original frame text stored with the record

        Returns:
            The alarm record, or None if the message type is not accepted

        Raises:
            MissingSegmentError: If MSH, PV1, PID or OBR is absent
            DecodeError: If the MSH-7 timestamp cannot be converted
        """
        header = self._require(message, "MSH")
        sep = message.component_separator

        message_type = header.get_component(9, 1)
        trigger_event = header.get_component(9, 2)
        if (message_type, trigger_event) not in ACCEPTED_MESSAGE_TYPES:
            logger.warning(f"Skipping HL7 message type {message_type}^{trigger_event}")
            return None

        timestamp = convert_timestamp(component_at(header.get_field(7), 0, sep) or "")

        location = self._require(message, "PV1").get_field(3)
        care_unit = component_at(location, 0, sep)
        bed_label = component_at(location, 2, sep)

        patient_id = component_at(self._require(message, "PID").get_field(3), 0, sep)

        device_id = component_at(self._require(message, "OBR").get_field(13), -1, sep)

        priority_code = observation_value(message, PRIORITY_MARKER)
        if not priority_code or not priority_code.strip():
            priority = DEFAULT_PRIORITY
        else:
            priority = alarm_priority(priority_code)

        state = observation_value(message, STATE_MARKER)

        coded = last_observation(extract_observations(message, CODED))
        numeric = last_observation(extract_observations(message, NUMERIC))

        sub_id = coded.sub_id if coded else None
        source_channel = None
        if sub_id:
            source_channel = self.registry.source_channel(coded.observation_code, sub_id)

        alarm_message = self._alarm_message(
            observation_value(message, EVENT_MARKER), numeric, sub_id,
        )

        record = AlarmRecord(
            device_id=device_id,
            local_time=timestamp.utc_datetime,
            date=timestamp.utc_date,
            time=timestamp.utc_time,
            hour=timestamp.utc_hour,
            bed_label=bed_label,
            pat_id=patient_id,
            care_unit=care_unit,
            alarm_grade=priority,
            alarm_state=state,
            alarm_message=alarm_message,
            subid=sub_id,
            sourcechannel=source_channel,
            raw_message=raw if raw is not None else message.raw,
        )

        if numeric is not None:
            record.param_id = numeric.observation_code
            record.param_description = numeric.observation_name
            record.param_value = numeric.observation_value
            record.param_upper_lim = numeric.upper_limit
            record.param_lower_lim = numeric.low_limit
            if numeric.unit_code:
                record.param_uom = self.registry.describe(numeric.unit_code)

        if coded is not None:
            record.limit_violation_type = limit_violation(coded.limit_violation)

        if numeric is not None and coded is not None:
            record.limit_violation_value = limit_violation_value(
                numeric.upper_limit,
                numeric.low_limit,
                numeric.observation_value,
                coded.limit_violation,
            )

        logger.info(
            f"Enriched alarm: patient={patient_id} bed={bed_label} "
            f"priority={priority} message={alarm_message}"
        )
        return record

    def _require(self, message: ParsedMessage, tag: str) -> Segment:
        segment = message.get_segment(tag)
        if segment is None:
            logger.warning(f"No {tag} segment found in received HL7 message")
            raise MissingSegmentError(tag)
        return segment

    def _alarm_message(
        self,
        event: str | None,
        numeric: ObservationResult | None,
        sub_id: str | None,
    ) -> str:
        """Format the alarm text from the MDC_EVT_ALARM value."""
        if not event or not event.strip():
            logger.warning("Alarm event is empty, using default message")
            return UNKNOWN

        kind = alarm_type(event)
        if kind in (AlarmType.LOW, AlarmType.HIGH):
            if numeric is None:
                logger.warning(f"No numeric observation for limit alarm {event}")
                return event

            description = self.registry.describe(numeric.observation_code, sub_id) or UNKNOWN
            if kind == AlarmType.LOW:
                return f"{description} < {numeric.low_limit or NOT_AVAILABLE}"
            return f"{description} > {numeric.upper_limit or NOT_AVAILABLE}"

        description = self.registry.describe(event) or UNKNOWN
        observation_type = self.registry.observation_type(event) or UNKNOWN
        return f"{description}/{observation_type}"
