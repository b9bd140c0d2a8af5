"""Alarm record browsing API endpoints."""

from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from acm_gateway.core.deps import get_db
from acm_gateway.models.alarm_record import AlarmRecordRow
from acm_gateway.services.alarm_record_service import AlarmRecordService

router = APIRouter()


class AlarmRecordResponse(BaseModel):
    """Stored alarm record, keyed by reporting column names, without the raw message."""

    id: int
    device_id: str | None
    local_time: str | None
    Date: str | None
    Time: str | None
    Hour: str | None
    bed_label: str | None
    pat_ID: str | None
    mon_unit: str | None
    care_unit: str | None
    alarm_grade: str | None
    alarm_state: str | None
    Alarm_Grade_2: str | None
    alarm_message: str | None
    param_id: str | None
    param_description: str | None
    param_value: str | None
    param_uom: str | None
    param_upper_lim: str | None
    param_lower_lim: str | None
    Limit_Violation_Type: str | None
    Limit_Violation_Value: str | None
    subid: str | None
    sourcechannel: str | None
    onset_tick: str | None
    alarm_duration: str | None
    change_time_UTC: str | None
    change_tick: str | None
    aborted: str | None
    received_at: datetime | None


class PaginatedAlarmRecordResponse(BaseModel):
    """Paginated alarm record response."""

    items: list[AlarmRecordResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


def record_to_response(row: AlarmRecordRow) -> AlarmRecordResponse:
    """Convert an alarm record row to response."""
    return AlarmRecordResponse(
        id=row.id,
        device_id=row.device_id,
        local_time=row.local_time,
        Date=row.date,
        Time=row.time,
        Hour=row.hour,
        bed_label=row.bed_label,
        pat_ID=row.pat_id,
        mon_unit=row.mon_unit,
        care_unit=row.care_unit,
        alarm_grade=row.alarm_grade,
        alarm_state=row.alarm_state,
        Alarm_Grade_2=row.alarm_grade_2,
        alarm_message=row.alarm_message,
        param_id=row.param_id,
        param_description=row.param_description,
        param_value=row.param_value,
        param_uom=row.param_uom,
        param_upper_lim=row.param_upper_lim,
        param_lower_lim=row.param_lower_lim,
        Limit_Violation_Type=row.limit_violation_type,
        Limit_Violation_Value=row.limit_violation_value,
        subid=row.subid,
        sourcechannel=row.sourcechannel,
        onset_tick=row.onset_tick,
        alarm_duration=row.alarm_duration,
        change_time_UTC=row.change_time_utc,
        change_tick=row.change_tick,
        aborted=row.aborted,
        received_at=row.received_at,
    )


@router.get("", response_model=PaginatedAlarmRecordResponse)
async def list_alarm_records(
    patient_id: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> PaginatedAlarmRecordResponse:
    """List alarm records newest first, filtered by patient and UTC date range."""
    service = AlarmRecordService(db)
    result = await service.list_records(
        patient_id=patient_id,
        start_date=start_date.isoformat() if start_date else None,
        end_date=end_date.isoformat() if end_date else None,
        page=page,
        page_size=page_size,
    )

    return PaginatedAlarmRecordResponse(
        items=[record_to_response(row) for row in result.rows],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )


@router.get("/{record_id}", response_model=AlarmRecordResponse)
async def get_alarm_record(
    record_id: int,
    db: AsyncSession = Depends(get_db),
) -> AlarmRecordResponse:
    """Get a single alarm record."""
    service = AlarmRecordService(db)
    row = await service.get_record(record_id)
    if not row:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Alarm record not found",
        )
    return record_to_response(row)
