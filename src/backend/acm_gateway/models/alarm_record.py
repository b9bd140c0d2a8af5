"""Alarm record model - one row per enriched HL7 alarm message."""

from datetime import datetime

from sqlalchemy import Integer, Text, DateTime, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from acm_gateway.core.config import settings
from acm_gateway.models.base import Base


class AlarmRecordRow(Base):
    """Normalized alarm record.

    Column names keep the mixed-case spelling of the reporting schema
    consumed by the record browser and spreadsheet export. Rows are
    written once and never updated.
    """

    __tablename__ = settings.alarm_record_table

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Device / time / location identity
    device_id: Mapped[str | None] = mapped_column(Text)
    local_time: Mapped[str | None] = mapped_column(Text)
    date: Mapped[str | None] = mapped_column("Date", Text)
    time: Mapped[str | None] = mapped_column("Time", Text)
    hour: Mapped[str | None] = mapped_column("Hour", Text)
    bed_label: Mapped[str | None] = mapped_column(Text)
    pat_id: Mapped[str | None] = mapped_column("pat_ID", Text)
    mon_unit: Mapped[str | None] = mapped_column(Text)
    care_unit: Mapped[str | None] = mapped_column(Text)

    # Classification
    alarm_grade: Mapped[str | None] = mapped_column(Text)
    alarm_state: Mapped[str | None] = mapped_column(Text)
    alarm_grade_2: Mapped[str | None] = mapped_column("Alarm_Grade_2", Text)
    alarm_message: Mapped[str | None] = mapped_column(Text)

    # Observation
    param_id: Mapped[str | None] = mapped_column(Text)
    param_description: Mapped[str | None] = mapped_column(Text)
    param_value: Mapped[str | None] = mapped_column(Text)
    param_uom: Mapped[str | None] = mapped_column(Text)
    param_upper_lim: Mapped[str | None] = mapped_column(Text)
    param_lower_lim: Mapped[str | None] = mapped_column(Text)
    limit_violation_type: Mapped[str | None] = mapped_column("Limit_Violation_Type", Text)
    limit_violation_value: Mapped[str | None] = mapped_column("Limit_Violation_Value", Text)
    subid: Mapped[str | None] = mapped_column(Text)
    sourcechannel: Mapped[str | None] = mapped_column(Text)

    # Alarm lifecycle (not populated by ORU^R40 ingestion)
    onset_tick: Mapped[str | None] = mapped_column(Text)
    alarm_duration: Mapped[str | None] = mapped_column(Text)
    change_time_utc: Mapped[str | None] = mapped_column("change_time_UTC", Text)
    change_tick: Mapped[str | None] = mapped_column(Text)
    aborted: Mapped[str | None] = mapped_column(Text)

    raw_message: Mapped[str | None] = mapped_column(Text)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    __table_args__ = (
        Index(f"ix_{settings.alarm_record_table}_pat_id_date", "pat_ID", "Date"),
    )

    def __repr__(self) -> str:
        return f"<AlarmRecordRow(id={self.id}, pat_ID={self.pat_id}, message={self.alarm_message})>"
