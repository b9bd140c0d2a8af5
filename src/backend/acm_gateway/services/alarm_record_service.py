"""Alarm record persistence and retrieval."""

from dataclasses import dataclass
import math

import structlog
from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from acm_gateway.integrations.base import StoreError
from acm_gateway.integrations.hl7.protocols import AlarmRecord
from acm_gateway.models.alarm_record import AlarmRecordRow

logger = structlog.get_logger()


class AlarmRecordWriter:
    """Writes one alarm record per call, each in its own session."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def insert(self, record: AlarmRecord) -> int:
        """
        Insert an alarm record.

        Returns:
            The new row id

        Raises:
            StoreError: If the insert fails
        """
        row = AlarmRecordRow(**record.to_row())
        try:
            async with self.session_factory() as session:
                session.add(row)
                await session.commit()
                row_id = row.id
        except SQLAlchemyError as e:
            logger.error("Alarm record insert failed", error=str(e))
            raise StoreError("Failed to save alarm record", original_error=e) from e

        logger.info("Alarm record saved", row_id=row_id, pat_id=record.pat_id)
        return row_id


@dataclass
class RecordPage:
    """One page of alarm records."""
    rows: list[AlarmRecordRow]
    total: int
    page: int
    page_size: int
    total_pages: int


class AlarmRecordService:
    """Read access to stored alarm records."""

    def __init__(self, db: AsyncSession):
        """Initialize alarm record service with database session."""
        self.db = db

    async def list_records(
        self,
        patient_id: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> RecordPage:
        """List records newest first, optionally filtered by patient and date range."""
        conditions = []
        if patient_id:
            conditions.append(AlarmRecordRow.pat_id == patient_id)
        if start_date:
            conditions.append(AlarmRecordRow.date >= start_date)
        if end_date:
            conditions.append(AlarmRecordRow.date <= end_date)

        count_query = select(func.count()).select_from(AlarmRecordRow)
        query = select(AlarmRecordRow)
        if conditions:
            count_query = count_query.where(and_(*conditions))
            query = query.where(and_(*conditions))

        total = (await self.db.execute(count_query)).scalar_one()

        query = (
            query.order_by(AlarmRecordRow.local_time.desc(), AlarmRecordRow.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self.db.execute(query)

        return RecordPage(
            rows=list(result.scalars().all()),
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size) if page_size else 0,
        )

    async def get_record(self, record_id: int) -> AlarmRecordRow | None:
        """Get one record by id."""
        result = await self.db.execute(
            select(AlarmRecordRow).where(AlarmRecordRow.id == record_id)
        )
        return result.scalar_one_or_none()
