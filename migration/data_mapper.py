"""Team to club mapping.

Resolves legacy team names to the clubs that replace them. The mapping table
is loaded once at process start and injected; it cannot be changed while the
tool runs. Every resolved club is checked against the league of the record
being migrated.
"""

import logging
from enum import Enum
from types import MappingProxyType
from typing import Dict, Any, Optional, Mapping, Tuple

from config.settings import Settings
from database.store import RecordStore
from .records import ClubRef
from .utils import MigrationError

logger = logging.getLogger(__name__)


class MappingFailure(str, Enum):
    UNMAPPABLE_TEAM = "unmappable-team"
    INACTIVE = "inactive"
    WRONG_LEAGUE = "wrong-league"
    SELF_PLAY = "self-play"
    MIXED_REFERENCE = "mixed-reference"


class MappingError(MigrationError):
    """Exception raised when a record cannot be mapped to clubs."""

    def __init__(self, reason: MappingFailure, message: str, details: Optional[Dict[str, Any]] = None):
        self.reason = reason
        self.details = details or {}
        super().__init__(message)


class MappingTable:
    """Read-only team name -> club name table."""

    def __init__(self, rules: Mapping[str, str]):
        self._rules = MappingProxyType(dict(rules))

    @classmethod
    def from_settings(cls, settings: Settings) -> "MappingTable":
        table = cls(settings.load_team_club_mapping())
        logger.info(f"Loaded {len(table)} team to club mapping rules")
        return table

    def get(self, team_name: str) -> Optional[str]:
        return self._rules.get(team_name)

    @property
    def rules(self) -> Mapping[str, str]:
        return self._rules

    def __contains__(self, team_name: str) -> bool:
        return team_name in self._rules

    def __len__(self) -> int:
        return len(self._rules)


class MappingResolver:
    """Resolves team names to clubs valid for a league."""

    def __init__(self, store: RecordStore, table: MappingTable, name_fallback: bool = True):
        """
        Initialize the resolver.

        Args:
            store: Record store used to look up clubs and teams
            table: Static team -> club name table
            name_fallback: Accept a club whose name equals the team name when
                the table has no rule for it
        """
        self.store = store
        self.table = table
        self.name_fallback = name_fallback

    async def resolve(self, team_name: str, league_id: Optional[int]) -> ClubRef:
        """
        Resolve a team name to a club of ``league_id``.

        Raises:
            MappingError: unmappable-team, inactive or wrong-league
        """
        details = {"team_name": team_name, "league_id": league_id}
        club_name = self.table.get(team_name)

        if club_name is not None:
            club = await self.store.clubs.get_by_name(club_name)
            if club is None:
                raise MappingError(
                    MappingFailure.UNMAPPABLE_TEAM,
                    f"Mapped club '{club_name}' for team '{team_name}' does not exist",
                    {**details, "club_name": club_name},
                )
        elif self.name_fallback:
            club = await self.store.clubs.get_by_name(team_name)
            if club is None:
                raise MappingError(
                    MappingFailure.UNMAPPABLE_TEAM,
                    f"No mapping rule or club named '{team_name}'",
                    details,
                )
        else:
            raise MappingError(
                MappingFailure.UNMAPPABLE_TEAM,
                f"No mapping rule for team '{team_name}'",
                details,
            )

        details.update({"club_id": club.id, "club_name": club.name})
        if not club.active:
            raise MappingError(MappingFailure.INACTIVE, f"Club '{club.name}' is inactive", details)
        if league_id is None or league_id not in club.league_ids:
            raise MappingError(
                MappingFailure.WRONG_LEAGUE,
                f"Club '{club.name}' is not assigned to league {league_id}",
                details,
            )

        return ClubRef(club.id)

    async def resolve_team(self, team_id: int, league_id: Optional[int]) -> ClubRef:
        """Resolve a team by id."""
        team = await self.store.teams.get_by_id(team_id)
        if team is None:
            raise MappingError(
                MappingFailure.UNMAPPABLE_TEAM,
                f"Team {team_id} does not exist",
                {"team_id": team_id, "league_id": league_id},
            )
        return await self.resolve(team.name, league_id)

    async def resolve_pair(
        self,
        home_team_id: int,
        away_team_id: int,
        league_id: Optional[int]
    ) -> Tuple[ClubRef, ClubRef]:
        """
        Resolve both sides of a match.

        Raises:
            MappingError: When either side fails, or both sides map to one club
        """
        home = await self.resolve_team(home_team_id, league_id)
        away = await self.resolve_team(away_team_id, league_id)
        if home == away:
            raise MappingError(
                MappingFailure.SELF_PLAY,
                f"Both teams map to club {home.id}",
                {"home_team_id": home_team_id, "away_team_id": away_team_id, "club_id": home.id},
            )
        return home, away
