"""Classification and conversion rules for IHE PCD alarm messages."""

from datetime import datetime, timedelta, timezone
import math
import re

from acm_gateway.integrations.base import DecodeError
from acm_gateway.integrations.hl7.protocols import (
    AlarmType,
    MessageTimestamp,
    HIGH_ALARM_ENCODE,
    LOW_ALARM_ENCODE,
    NOT_AVAILABLE,
    UNKNOWN,
)

# OBX-5 priority codes of MDC_ATTR_ALARM_PRIORITY
PRIORITY_LABELS: dict[str, str] = {
    "PN": "not indicated",
    "PL": "Low",
    "PM": "Medium",
    "PH": "High",
}

DEFAULT_PRIORITY = "Normal"

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def alarm_priority(code: str | None) -> str:
    """Map an alarm priority code to its label."""
    return PRIORITY_LABELS.get(code or "", UNKNOWN)


def alarm_type(encode: str | None) -> AlarmType:
    """Classify an alarm encode as a high or low limit alarm."""
    if encode == HIGH_ALARM_ENCODE:
        return AlarmType.HIGH
    if encode == LOW_ALARM_ENCODE:
        return AlarmType.LOW
    return AlarmType.UNKNOWN


def limit_violation(encode: str | None) -> str:
    """Get the limit violation label for an alarm encode."""
    if encode is None:
        return NOT_AVAILABLE

    kind = alarm_type(encode)
    if kind == AlarmType.LOW:
        return "below"
    if kind == AlarmType.HIGH:
        return "high"
    return NOT_AVAILABLE


def _to_float(value) -> float | None:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def limit_violation_value(upper_limit, low_limit, value, encode: str | None) -> float | str:
    """
    Compute how far a value lies past the violated limit.

    Returns:
        abs(low_limit - value) for a low alarm, abs(upper_limit - value)
        for a high alarm, "NA" when any input is missing or non-numeric or
        the encode is not a limit alarm.
    """
    if encode is None:
        return NOT_AVAILABLE

    upper = _to_float(upper_limit)
    low = _to_float(low_limit)
    current = _to_float(value)
    if upper is None or low is None or current is None:
        return NOT_AVAILABLE

    kind = alarm_type(encode)
    if kind == AlarmType.LOW:
        return abs(low - current)
    if kind == AlarmType.HIGH:
        return abs(upper - current)
    return NOT_AVAILABLE


def _leading_int(text: str) -> int | None:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else None


def _utc_instant(year: int, month: int, day: int, hour: int = 0,
                 minute: int = 0, second: int = 0) -> datetime:
    """Build a UTC instant letting out-of-range parts roll over.

    ``month`` is zero-based. Day 0 is the last day of the previous month
    and hour 24 is midnight of the next day, as with ECMAScript Date.UTC.
    """
    if 0 <= year <= 99:
        year += 1900
    year += month // 12
    month = month % 12
    base = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return base + timedelta(days=day - 1, hours=hour, minutes=minute, seconds=second)


def _timestamp_parts(value: str) -> tuple[int, int, int, int, int, int]:
    text = value or ""
    year = _leading_int(text[0:4])
    month = _leading_int(text[4:6])
    if year is None or month is None:
        raise DecodeError(f"Invalid HL7 timestamp: {value!r}")

    day, hour, minute, second = (_leading_int(text[i:i + 2]) or 0 for i in (6, 8, 10, 12))
    return year, month - 1, day, hour, minute, second


def parse_hl7_timestamp(value: str) -> datetime:
    """
    Parse a YYYYMMDDHHmmss timestamp into a UTC datetime.

    Missing day, hour, minute and second default to 0.

    Raises:
        DecodeError: If the year or month cannot be read or the instant
            is out of range
    """
    parts = _timestamp_parts(value)
    try:
        return _utc_instant(*parts)
    except (ValueError, OverflowError) as e:
        raise DecodeError(f"HL7 timestamp out of range: {value!r}", original_error=e) from e


def convert_timestamp(value: str) -> MessageTimestamp:
    """Derive the UTC datetime, date, time and hour of a message timestamp."""
    year, month, day, _, _, _ = _timestamp_parts(value)
    instant = parse_hl7_timestamp(value)

    # The calendar date is taken from year/month/day alone, so an
    # overflowing hour does not move it
    try:
        date_only = _utc_instant(year, month, day)
    except (ValueError, OverflowError) as e:
        raise DecodeError(f"HL7 timestamp out of range: {value!r}", original_error=e) from e

    return MessageTimestamp(
        utc_datetime=instant.strftime("%Y-%m-%d %H:%M:%S"),
        utc_date=date_only.strftime("%Y-%m-%d"),
        utc_time=instant.strftime("%H:%M"),
        utc_hour=instant.strftime("%H"),
    )
