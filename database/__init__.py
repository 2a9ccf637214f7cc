"""
Database package for the club migration tool.

This package provides:
- SQLAlchemy 2.0 async models for matches, standings and reference data
- Database connection management with pooling
- Repositories and the RecordStore gateway used by the migration
- Connection health checks

Usage:
    from database import init_database, get_db_session, RecordStore
    from config.settings import settings

    await init_database(settings.get_database_config())
    store = RecordStore()
    candidates = await store.matches.get_candidates()
"""

from database.connection import (
    DatabaseConnectionManager,
    db_manager,
    init_database,
    close_database,
    get_db_session,
    DatabaseConnectionError,
    DatabaseOperationError,
)

from database.models import (
    Base,
    MatchStatus,
    League,
    Club,
    Team,
    Match,
    StandingsEntry,
    MigrationHistory,
    MigrationLockRow,
    DataQualityReportRow,
)

from database.store import RecordStore

__version__ = "1.0.0"

__all__ = [
    # Connection management
    "DatabaseConnectionManager",
    "db_manager",
    "init_database",
    "close_database",
    "get_db_session",

    # Models
    "Base",
    "MatchStatus",
    "League",
    "Club",
    "Team",
    "Match",
    "StandingsEntry",
    "MigrationHistory",
    "MigrationLockRow",
    "DataQualityReportRow",

    # Gateway
    "RecordStore",

    # Exceptions
    "DatabaseConnectionError",
    "DatabaseOperationError",
]
