"""
Club, team and league lookups.

These collections are reference data for the migration and are only read.
"""

import logging
from typing import Optional, List, Dict

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from database.models import Club, Team, League
from .base import BaseRepository

logger = logging.getLogger(__name__)


class ClubRepository(BaseRepository[Club]):
    """Repository for clubs and their league assignments."""

    def __init__(self, db=None):
        super().__init__(Club, db)

    async def get_by_name(self, name: str, active_only: bool = False) -> Optional[Club]:
        """
        Get a club by its canonical name.

        Args:
            name: Exact club name
            active_only: Ignore inactive clubs

        Returns:
            First matching club (lowest id) or None
        """
        try:
            async with self.get_session() as session:
                stmt = select(Club).where(Club.name == name)
                if active_only:
                    stmt = stmt.where(Club.active.is_(True))
                stmt = stmt.order_by(Club.id).limit(1)
                result = await session.execute(stmt)
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._error("get_by_name", e) from e

    async def get_names(self, ids) -> Dict[int, str]:
        """Map club id to name for the given ids."""
        return {club.id: club.name for club in await self.get_many(ids)}


class TeamRepository(BaseRepository[Team]):
    """Repository for legacy teams."""

    def __init__(self, db=None):
        super().__init__(Team, db)

    async def get_names(self, ids) -> Dict[int, str]:
        return {team.id: team.name for team in await self.get_many(ids)}


class LeagueRepository(BaseRepository[League]):
    """Repository for leagues."""

    def __init__(self, db=None):
        super().__init__(League, db)

    async def list_ids(self) -> List[int]:
        return [league.id for league in await self.get_all()]
