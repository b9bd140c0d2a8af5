"""OBX observation extraction."""

import logging

from acm_gateway.integrations.hl7.parser import ParsedMessage, Segment, component_at
from acm_gateway.integrations.hl7.protocols import ObservationResult

logger = logging.getLogger(__name__)

NUMERIC = "NM"
CODED = "CWE"


def observation_value(message: ParsedMessage, identifier: str) -> str | None:
    """
    Find the value of the first OBX whose identifier contains a marker.

    Args:
        message: Parsed HL7 message
        identifier: Text to look for in OBX-3, e.g. "MDC_ATTR_ALARM_PRIORITY"

    Returns:
        First component of OBX-5, or None if no OBX carries the marker
    """
    for obx in message.get_segments("OBX"):
        observation_id = obx.get_field(3)
        if observation_id and identifier in observation_id:
            value = obx.get_field(5)
            if value is None:
                return None
            return value.split(obx.component_separator)[0]

    logger.debug(f"No OBX segment with identifier {identifier}")
    return None


def _sub_id(obx: Segment) -> str | None:
    # OBX-4 is a dotted path whose last part is the observation's own
    # index; the channel sub-id is everything before it
    raw = obx.get_field(4)
    if not raw:
        return None
    parts = raw.split(".")
    if len(parts) > 1:
        parts = parts[:-1]
    return ".".join(parts) or None


def _extract(obx: Segment, value_type: str) -> ObservationResult:
    sep = obx.component_separator
    observation_id = obx.get_field(3)
    result = ObservationResult(
        set_id=obx.get_field(1),
        value_type=value_type,
        observation_code=component_at(observation_id, 0, sep),
        observation_name=component_at(observation_id, 1, sep),
        sub_id=_sub_id(obx),
    )

    if value_type == NUMERIC:
        result.observation_value = obx.get_field(5)

        unit = obx.get_field(6)
        result.unit_code = component_at(unit, 0, sep)
        result.unit_name = component_at(unit, 1, sep)

        range_field = obx.get_field(7)
        result.low_limit = component_at(range_field, 0, "-")
        result.upper_limit = component_at(range_field, 1, "-")

    elif value_type == CODED:
        result.limit_violation = component_at(obx.get_field(5), 0, sep)

    return result


def extract_observations(message: ParsedMessage, value_type: str = NUMERIC) -> list[ObservationResult]:
    """Extract every OBX of the given value type (OBX-2), in message order."""
    results = [
        _extract(obx, value_type)
        for obx in message.get_segments("OBX")
        if obx.get_field(2) == value_type
    ]

    if not results:
        logger.warning(f"No OBX segments with value type {value_type}")

    for index, result in enumerate(results, start=1):
        logger.debug(
            f"{value_type} OBX({index}): set_id={result.set_id} "
            f"code={result.observation_code} value={result.observation_value} "
            f"sub_id={result.sub_id} limit_violation={result.limit_violation}"
        )

    return results


def last_observation(results: list[ObservationResult]) -> ObservationResult | None:
    """Pick the target observation of a list: the last one in the message."""
    return results[-1] if results else None
