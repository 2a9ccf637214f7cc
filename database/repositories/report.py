"""Data quality report repository."""

import logging
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy import select, desc
from sqlalchemy.exc import SQLAlchemyError

from database.models import DataQualityReportRow
from .base import BaseRepository

logger = logging.getLogger(__name__)


class ReportRepository(BaseRepository[DataQualityReportRow]):
    """Repository for persisted data quality reports."""

    def __init__(self, db=None):
        super().__init__(DataQualityReportRow, db)

    async def save(
        self,
        payload: Dict[str, Any],
        health_score: float,
        generated_at: datetime
    ) -> DataQualityReportRow:
        return await self.create({
            "payload": payload,
            "health_score": health_score,
            "generated_at": generated_at,
        })

    async def latest_since(self, since: datetime) -> Optional[DataQualityReportRow]:
        """Get the newest report generated at or after ``since``."""
        try:
            async with self.get_session() as session:
                stmt = (
                    select(DataQualityReportRow)
                    .where(DataQualityReportRow.generated_at >= since)
                    .order_by(desc(DataQualityReportRow.generated_at))
                    .limit(1)
                )
                result = await session.execute(stmt)
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._error("latest_since", e) from e
