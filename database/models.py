"""SQLAlchemy database models for the club migration record store.

This module contains all database models using SQLAlchemy 2.0 async patterns.
Match and standings rows still carry the legacy team-keyed reference columns
next to the club-keyed ones; references are soft (no foreign keys) so that
orphaned rows left behind by older imports remain representable and can be
detected and cleaned up.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional, Dict, Any, List

from sqlalchemy import (
    String, Integer, Boolean, DateTime, Float, Text, JSON,
    ForeignKey, Index, Table, Column
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import (
    DeclarativeBase, Mapped, mapped_column, relationship
)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values read back from backends without tz support."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all database models."""
    pass


class MatchStatus(PyEnum):
    """Match status enumeration."""
    SCHEDULED = "geplant"
    FINISHED = "beendet"
    CANCELLED = "abgesagt"
    POSTPONED = "verschoben"


club_leagues = Table(
    "club_leagues",
    Base.metadata,
    Column("club_id", Integer, ForeignKey("clubs.id", ondelete="CASCADE"), primary_key=True),
    Column("league_id", Integer, ForeignKey("leagues.id", ondelete="CASCADE"), primary_key=True),
)


class League(Base):
    """League (one competition of one season)."""

    __tablename__ = "leagues"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<League(id={self.id}, name='{self.name}')>"


class Club(Base):
    """Club - the canonical entity replacing ad hoc team references."""

    __tablename__ = "clubs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    leagues: Mapped[List["League"]] = relationship(
        "League",
        secondary=club_leagues,
        lazy="selectin"
    )

    @property
    def league_ids(self) -> List[int]:
        return [league.id for league in self.leagues]

    def __repr__(self) -> str:
        return f"<Club(id={self.id}, name='{self.name}', active={self.active})>"


class Team(Base):
    """Legacy team entity being phased out in favour of clubs."""

    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    league_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)

    def __repr__(self) -> str:
        return f"<Team(id={self.id}, name='{self.name}')>"


class Match(Base):
    """Match (Spiel) with legacy team references and target club references."""

    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    league_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    season_id: Mapped[Optional[int]] = mapped_column(Integer)

    home_team_id: Mapped[Optional[int]] = mapped_column(Integer)
    away_team_id: Mapped[Optional[int]] = mapped_column(Integer)
    home_club_id: Mapped[Optional[int]] = mapped_column(Integer)
    away_club_id: Mapped[Optional[int]] = mapped_column(Integer)

    status: Mapped[str] = mapped_column(String(20), default=MatchStatus.SCHEDULED.value)
    home_score: Mapped[Optional[int]] = mapped_column(Integer)
    away_score: Mapped[Optional[int]] = mapped_column(Integer)
    matchday: Mapped[Optional[int]] = mapped_column(Integer)
    kickoff_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Timestamps
    last_migration_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    system_write_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_matches_league_clubs", "league_id", "home_club_id", "away_club_id"),
    )

    def __repr__(self) -> str:
        return f"<Match(id={self.id}, league_id={self.league_id})>"


class StandingsEntry(Base):
    """One row of a league table (Tabellen-Eintrag)."""

    __tablename__ = "standings_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    league_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    team_id: Mapped[Optional[int]] = mapped_column(Integer)
    club_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)

    rank: Mapped[int] = mapped_column(Integer, default=0)
    played: Mapped[int] = mapped_column(Integer, default=0)
    won: Mapped[int] = mapped_column(Integer, default=0)
    drawn: Mapped[int] = mapped_column(Integer, default=0)
    lost: Mapped[int] = mapped_column(Integer, default=0)
    goals_for: Mapped[int] = mapped_column(Integer, default=0)
    goals_against: Mapped[int] = mapped_column(Integer, default=0)
    goal_difference: Mapped[int] = mapped_column(Integer, default=0)
    points: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps
    last_migration_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    system_write_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_standings_league_name", "league_id", "display_name"),
    )

    def __repr__(self) -> str:
        return f"<StandingsEntry(id={self.id}, display_name='{self.display_name}')>"


class MigrationHistory(Base):
    """Append-only log of migrate / rollback / cleanup runs, keyed by run id."""

    __tablename__ = "migration_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    operation: Mapped[str] = mapped_column(String(20), nullable=False)
    migration_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    reason: Mapped[Optional[str]] = mapped_column(String(50))
    message: Mapped[Optional[str]] = mapped_column(Text)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    backup_id: Mapped[Optional[str]] = mapped_column(String(255))

    processed_count: Mapped[int] = mapped_column(Integer, default=0)
    succeeded_count: Mapped[int] = mapped_column(Integer, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, default=0)
    error_count: Mapped[int] = mapped_column(Integer, default=0)
    warning_count: Mapped[int] = mapped_column(Integer, default=0)
    dry_run: Mapped[bool] = mapped_column(Boolean, default=False)
    details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)

    def __repr__(self) -> str:
        return f"<MigrationHistory(id={self.id}, operation='{self.operation}', status='{self.status}')>"


class MigrationLockRow(Base):
    """Type-scoped exclusive lock; the row exists while the lock is held."""

    __tablename__ = "migration_locks"

    lock_name: Mapped[str] = mapped_column(String(50), primary_key=True)
    holder_run_id: Mapped[str] = mapped_column(String(36), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<MigrationLockRow(lock_name='{self.lock_name}', holder={self.holder_run_id})>"


class DataQualityReportRow(Base):
    """Persisted data-quality report, used for trend deltas."""

    __tablename__ = "data_quality_reports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    health_score: Mapped[float] = mapped_column(Float, default=0.0)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return f"<DataQualityReportRow(id={self.id}, health_score={self.health_score})>"
