"""HL7 alarm protocol definitions and data structures."""

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any


class FrameState(str, Enum):
    """MLLP frame decoder states."""
    ACCUMULATING = "accumulating"  # Waiting for more bytes
    FRAME_READY = "frame_ready"    # A complete frame is buffered


class AlarmType(str, Enum):
    """Alarm direction derived from an alarm encode."""
    UNKNOWN = "unknown"
    LOW = "low"
    HIGH = "high"


class IngestionOutcome(str, Enum):
    """Result of processing one frame."""
    PERSISTED = "persisted"  # Record written
    SKIPPED = "skipped"      # Message type not accepted
    DROPPED = "dropped"      # Mandatory segment missing
    FAILED = "failed"        # Decode or store failure


# Accepted message type / trigger event pairs (MSH-9.1, MSH-9.2)
ACCEPTED_MESSAGE_TYPES: frozenset[tuple[str, str]] = frozenset({("ORU", "R40")})

# OBX-3 markers for alarm attributes
PRIORITY_MARKER = "MDC_ATTR_ALARM_PRIORITY"
STATE_MARKER = "MDC_ATTR_ALARM_STATE"
EVENT_MARKER = "MDC_EVT_ALARM"

# Alarm encodes with limit semantics
LOW_ALARM_ENCODE = "196674"
HIGH_ALARM_ENCODE = "196652"

NOT_AVAILABLE = "NA"
UNKNOWN = "Unknown"


@dataclass(frozen=True)
class MessageTimestamp:
    """UTC values derived from the MSH-7 message timestamp."""
    utc_datetime: str  # YYYY-MM-DD HH:MM:SS
    utc_date: str      # YYYY-MM-DD
    utc_time: str      # HH:MM
    utc_hour: str      # HH


@dataclass
class ObservationResult:
    """One OBX segment of a given value type."""
    set_id: str | None
    value_type: str
    observation_code: str | None = None
    observation_name: str | None = None
    observation_value: str | None = None
    sub_id: str | None = None
    unit_code: str | None = None
    unit_name: str | None = None
    low_limit: str | None = None
    upper_limit: str | None = None
    limit_violation: str | None = None


def _printable(value: Any) -> str | None:
    """Coerce a scalar to text, keeping None."""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@dataclass
class AlarmRecord:
    """Normalized alarm record ready for persistence.

    Attribute names match ``AlarmRecordRow`` so ``to_row()`` can be passed
    straight to the ORM constructor.
    """
    device_id: Any = None
    local_time: Any = None
    date: Any = None
    time: Any = None
    hour: Any = None
    bed_label: Any = None
    pat_id: Any = None
    mon_unit: Any = None
    care_unit: Any = None
    alarm_grade: Any = None
    alarm_state: Any = None
    alarm_grade_2: Any = None
    alarm_message: Any = None
    param_id: Any = None
    param_description: Any = None
    param_value: Any = None
    param_uom: Any = None
    param_upper_lim: Any = None
    param_lower_lim: Any = None
    limit_violation_type: Any = None
    limit_violation_value: Any = None
    subid: Any = None
    sourcechannel: Any = None
    onset_tick: Any = None
    alarm_duration: Any = None
    change_time_utc: Any = None
    change_tick: Any = None
    aborted: Any = None
    raw_message: Any = None

    def to_row(self) -> dict[str, str | None]:
        """Return the record with every value as text or None."""
        return {f.name: _printable(getattr(self, f.name)) for f in fields(self)}


@dataclass
class IngestionResult:
    """Outcome of one pass through the ingestion pipeline."""
    outcome: IngestionOutcome
    record: AlarmRecord | None = None
    row_id: int | None = None
    error: Exception | None = None
    duration: float = 0.0
