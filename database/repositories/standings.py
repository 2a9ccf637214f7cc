"""
Standings repository.

Candidate selection joins clubs so that entries whose display name drifted
away from their club's canonical name are picked up as well.
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import select, or_, and_
from sqlalchemy.exc import SQLAlchemyError

from database.models import StandingsEntry, Club, utcnow
from .base import BaseRepository

logger = logging.getLogger(__name__)


class StandingsRepository(BaseRepository[StandingsEntry]):
    """Repository for league table entries."""

    def __init__(self, db=None):
        super().__init__(StandingsEntry, db)

    async def get_candidates(self) -> List[StandingsEntry]:
        """Get entries without a club or with a display name differing from it."""
        try:
            async with self.get_session() as session:
                stmt = (
                    select(StandingsEntry)
                    .outerjoin(Club, Club.id == StandingsEntry.club_id)
                    .where(or_(
                        StandingsEntry.club_id.is_(None),
                        and_(Club.id.is_not(None), StandingsEntry.display_name != Club.name),
                    ))
                    .order_by(StandingsEntry.id)
                )
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._error("get_candidates", e) from e

    async def count_migrated(self) -> int:
        """Count entries attached to a club and no longer to a team."""
        return await self.count(
            StandingsEntry.club_id.is_not(None),
            StandingsEntry.team_id.is_(None),
        )

    async def apply_system_update(
        self,
        entry_id: int,
        values: Dict[str, Any],
        now: Optional[datetime] = None
    ) -> bool:
        """Update an entry on behalf of the migration system."""
        now = now or utcnow()
        return await self.update_fields(
            entry_id,
            {**values, "updated_at": now, "system_write_at": now}
        )
