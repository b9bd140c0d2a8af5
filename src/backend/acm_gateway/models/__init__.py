"""ACM Gateway database models."""

from acm_gateway.models.base import Base, TimestampMixin
from acm_gateway.models.alarm_record import AlarmRecordRow
from acm_gateway.models.codesystem import (
    CODETAG_COLUMNS,
    CodeSystem,
    codetag_table,
    codetag_metadata,
    is_valid_identifier,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "AlarmRecordRow",
    "CODETAG_COLUMNS",
    "CodeSystem",
    "codetag_table",
    "codetag_metadata",
    "is_valid_identifier",
]
