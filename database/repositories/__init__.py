"""
Repository pattern implementations for the club migration record store.

This module provides data access layer abstractions using async
SQLAlchemy 2.0 patterns.

Repositories:
- BaseRepository: Generic base class with common CRUD operations
- ClubRepository / TeamRepository / LeagueRepository: reference data
- MatchRepository: Matches and migration candidates
- StandingsRepository: League table entries
- HistoryRepository: Migration run log
- LockRepository: Type-scoped migration locks
- ReportRepository: Persisted data quality reports
"""

from .base import BaseRepository, model_to_dict, payload_to_values
from .club import ClubRepository, TeamRepository, LeagueRepository
from .match import MatchRepository
from .standings import StandingsRepository
from .history import HistoryRepository
from .lock import LockRepository
from .report import ReportRepository

__all__ = [
    'BaseRepository',
    'model_to_dict',
    'payload_to_values',
    'ClubRepository',
    'TeamRepository',
    'LeagueRepository',
    'MatchRepository',
    'StandingsRepository',
    'HistoryRepository',
    'LockRepository',
    'ReportRepository',
]
