"""
Record store gateway.

Bundles the repositories the migration components use so that they can be
wired against one connection manager (the global one by default, or a
dedicated one in tests).
"""

from typing import Any, Dict, Optional

from database import connection
from database.connection import DatabaseConnectionManager
from database.models import Match, StandingsEntry
from database.repositories import (
    ClubRepository,
    TeamRepository,
    LeagueRepository,
    MatchRepository,
    StandingsRepository,
    HistoryRepository,
    LockRepository,
    ReportRepository,
)


class RecordStore:
    """Typed access to every persisted collection; no business logic."""

    def __init__(self, db: Optional[DatabaseConnectionManager] = None):
        self.db = db
        self.clubs = ClubRepository(db)
        self.teams = TeamRepository(db)
        self.leagues = LeagueRepository(db)
        self.matches = MatchRepository(db)
        self.standings = StandingsRepository(db)
        self.history = HistoryRepository(db)
        self.locks = LockRepository(db)
        self.reports = ReportRepository(db)

    def repository_for(self, migration_type: str):
        """Return the repository holding records of a migration type."""
        if migration_type == "matches":
            return self.matches
        if migration_type == "standings":
            return self.standings
        raise ValueError(f"Unknown migration type: {migration_type}")

    @staticmethod
    def collection_name(migration_type: str) -> str:
        """Name of the backup payload collection for a migration type."""
        return {"matches": Match.__tablename__, "standings": StandingsEntry.__tablename__}[migration_type]

    async def health_check(self) -> Dict[str, Any]:
        """Health of the connection manager backing this store."""
        manager = self.db or connection.db_manager
        if manager is None:
            return {"connected": False, "status": "disconnected", "error": "Database not initialized"}
        return await manager.health_check()
