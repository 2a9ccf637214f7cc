"""
Migration history repository.

Rows are appended once per run and updated only while the run is open;
the state machine itself lives in ``migration.history``.
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict

from sqlalchemy import select, update, func, desc
from sqlalchemy.exc import SQLAlchemyError

from database.models import MigrationHistory
from .base import BaseRepository

logger = logging.getLogger(__name__)


class HistoryRepository(BaseRepository[MigrationHistory]):
    """Repository for migration history entries."""

    def __init__(self, db=None):
        super().__init__(MigrationHistory, db)

    async def get_recent(
        self,
        limit: int = 20,
        migration_type: Optional[str] = None,
        operation: Optional[str] = None
    ) -> List[MigrationHistory]:
        """Get the most recent entries, newest first."""
        try:
            async with self.get_session() as session:
                stmt = select(MigrationHistory)
                if migration_type:
                    stmt = stmt.where(MigrationHistory.migration_type == migration_type)
                if operation:
                    stmt = stmt.where(MigrationHistory.operation == operation)
                stmt = stmt.order_by(desc(MigrationHistory.started_at)).limit(limit)
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._error("get_recent", e) from e

    async def get_running(self, migration_type: str) -> List[MigrationHistory]:
        """Get entries of a type that have not been finalized yet."""
        try:
            async with self.get_session() as session:
                stmt = (
                    select(MigrationHistory)
                    .where(MigrationHistory.migration_type == migration_type)
                    .where(MigrationHistory.status.in_(["pending", "running"]))
                    .order_by(MigrationHistory.started_at)
                )
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._error("get_running", e) from e

    async def count_by_status_since(self, since: datetime) -> Dict[str, int]:
        """Count runs per status started at or after ``since``."""
        try:
            async with self.get_session() as session:
                stmt = (
                    select(MigrationHistory.status, func.count())
                    .where(MigrationHistory.started_at >= since)
                    .group_by(MigrationHistory.status)
                )
                result = await session.execute(stmt)
                return {status: count for status, count in result.all()}
        except SQLAlchemyError as e:
            raise self._error("count_by_status_since", e) from e

    async def transition(self, run_id: str, from_statuses: List[str], values: Dict) -> bool:
        """
        Update an entry only while its status is one of ``from_statuses``.

        Returns:
            False if the entry is missing or in another status
        """
        try:
            async with self.get_session() as session:
                result = await session.execute(
                    update(MigrationHistory)
                    .where(MigrationHistory.id == run_id)
                    .where(MigrationHistory.status.in_(from_statuses))
                    .values(**values)
                )
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise self._error("transition", e) from e
