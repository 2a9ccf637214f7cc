"""
Lock table repository.

A lock is held while its row exists; the primary key makes acquisition
atomic across processes.
"""

import logging
from typing import Optional, List

from sqlalchemy import select, delete
from sqlalchemy.exc import SQLAlchemyError, IntegrityError

from database.models import MigrationLockRow, utcnow
from .base import BaseRepository

logger = logging.getLogger(__name__)


class LockRepository(BaseRepository[MigrationLockRow]):
    """Repository for type-scoped migration locks."""

    def __init__(self, db=None):
        super().__init__(MigrationLockRow, db)

    async def try_acquire(self, lock_name: str, holder_run_id: str) -> bool:
        """
        Insert the lock row.

        Returns:
            False if another holder already owns the lock
        """
        try:
            async with self.get_session() as session:
                session.add(MigrationLockRow(
                    lock_name=lock_name,
                    holder_run_id=holder_run_id,
                    acquired_at=utcnow()
                ))
                await session.flush()
            return True
        except IntegrityError:
            return False
        except SQLAlchemyError as e:
            raise self._error("acquire", e) from e

    async def release(self, lock_name: str, holder_run_id: str) -> bool:
        """Delete the lock row if it is still owned by ``holder_run_id``."""
        try:
            async with self.get_session() as session:
                result = await session.execute(
                    delete(MigrationLockRow)
                    .where(MigrationLockRow.lock_name == lock_name)
                    .where(MigrationLockRow.holder_run_id == holder_run_id)
                )
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise self._error("release", e) from e

    async def force_release(self, lock_name: str) -> bool:
        """Delete the lock row regardless of its holder."""
        try:
            async with self.get_session() as session:
                result = await session.execute(
                    delete(MigrationLockRow).where(MigrationLockRow.lock_name == lock_name)
                )
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise self._error("force_release", e) from e

    async def get(self, lock_name: str) -> Optional[MigrationLockRow]:
        return await self.get_by_id(lock_name)

    async def list_held(self) -> List[MigrationLockRow]:
        try:
            async with self.get_session() as session:
                result = await session.execute(
                    select(MigrationLockRow).order_by(MigrationLockRow.lock_name)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._error("list_held", e) from e
