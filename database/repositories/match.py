"""
Match repository.

Provides the match queries the migration needs:
- Candidate selection (matches still carrying team references)
- Progress counts per reference mode
- System-stamped updates so rollback can tell its own writes apart
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import select, or_, and_
from sqlalchemy.exc import SQLAlchemyError

from database.models import Match, utcnow
from .base import BaseRepository

logger = logging.getLogger(__name__)


class MatchRepository(BaseRepository[Match]):
    """Repository for matches."""

    def __init__(self, db=None):
        super().__init__(Match, db)

    async def get_candidates(self) -> List[Match]:
        """Get every match that still references a team on either side."""
        try:
            async with self.get_session() as session:
                stmt = (
                    select(Match)
                    .where(or_(Match.home_team_id.is_not(None), Match.away_team_id.is_not(None)))
                    .order_by(Match.id)
                )
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._error("get_candidates", e) from e

    async def count_migrated(self) -> int:
        """Count matches that reference clubs only."""
        return await self.count(
            Match.home_club_id.is_not(None),
            Match.away_club_id.is_not(None),
            Match.home_team_id.is_(None),
            Match.away_team_id.is_(None),
        )

    async def get_club_mode(self) -> List[Match]:
        """Get matches whose both sides reference clubs."""
        try:
            async with self.get_session() as session:
                stmt = (
                    select(Match)
                    .where(and_(Match.home_club_id.is_not(None), Match.away_club_id.is_not(None)))
                    .order_by(Match.id)
                )
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._error("get_club_mode", e) from e

    async def apply_system_update(
        self,
        match_id: int,
        values: Dict[str, Any],
        now: Optional[datetime] = None
    ) -> bool:
        """
        Update a match on behalf of the migration system.

        ``updated_at`` and ``system_write_at`` receive the same timestamp.
        """
        now = now or utcnow()
        return await self.update_fields(
            match_id,
            {**values, "updated_at": now, "system_write_at": now}
        )
