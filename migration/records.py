"""Domain records and enumerations shared by the migration components.

A match side references either a team or a club, never both and never
neither. Rows are decoded into ``TeamRef`` / ``ClubRef`` values here, so
code past this module only ever sees well-formed references; rows that do
not decode are reported by the validator instead.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, Union


class MigrationType(str, Enum):
    """Entity collections the migration operates on."""
    MATCHES = "matches"
    STANDINGS = "standings"


class Operation(str, Enum):
    """Kinds of runs recorded in the history log."""
    MIGRATE = "migrate"
    ROLLBACK = "rollback"
    CLEANUP = "cleanup"


class RunStatus(str, Enum):
    """Run state machine: pending -> running -> terminal."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.PARTIAL)


class Reason(str, Enum):
    """Enumerated explanation attached to every abort and terminal status."""
    ALL_SUCCEEDED = "all-succeeded"
    NO_CANDIDATES = "no-candidates"
    PRE_VALIDATION_FAILED = "pre-validation-failed"
    BACKUP_FAILED = "backup-failed"
    RECORD_FAILURES = "record-failures"
    POST_VALIDATION_ERRORS = "post-validation-errors"
    ALL_RECORDS_FAILED = "all-records-failed"
    ALL_RESTORED = "all-restored"
    SOME_RECORDS_SKIPPED = "some-records-skipped"
    NO_RECORDS_RESTORED = "no-records-restored"
    ABANDONED = "abandoned"
    UNEXPECTED_ERROR = "unexpected-error"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueType(str, Enum):
    """Validation issue taxonomy."""
    MIXED_REFERENCE = "mixed-reference"
    MISSING_REFERENCE = "missing-reference"
    ORPHANED_REFERENCE = "orphaned-reference"
    UNMAPPABLE_TEAM = "unmappable-team"
    INVALID_CLUB_LEAGUE = "invalid-club-league"
    SELF_PLAY = "self-play"
    NAME_MISMATCH = "name-mismatch"
    DUPLICATE_ENTRY = "duplicate-entry"
    CROSS_INCONSISTENCY = "cross-inconsistency"


ISSUE_DESCRIPTIONS: Dict[IssueType, str] = {
    IssueType.MIXED_REFERENCE: "Record references teams and clubs at the same time",
    IssueType.MISSING_REFERENCE: "Record references neither a team nor a club",
    IssueType.ORPHANED_REFERENCE: "Referenced team, club or league does not exist",
    IssueType.UNMAPPABLE_TEAM: "Team cannot be mapped to an active club of its league",
    IssueType.INVALID_CLUB_LEAGUE: "Club is inactive or not assigned to the record's league",
    IssueType.SELF_PLAY: "Match is played between a club and itself",
    IssueType.NAME_MISMATCH: "Standings display name differs from the club name",
    IssueType.DUPLICATE_ENTRY: "Several standings entries share a name within one league",
    IssueType.CROSS_INCONSISTENCY: "Match participant is missing from the league standings",
}


class HealthBand(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    NEEDS_ATTENTION = "needs-attention"

    @classmethod
    def for_score(cls, score: float) -> "HealthBand":
        if score >= 90:
            return cls.EXCELLENT
        if score >= 80:
            return cls.GOOD
        if score >= 70:
            return cls.FAIR
        return cls.NEEDS_ATTENTION


@dataclass(frozen=True)
class TeamRef:
    id: int


@dataclass(frozen=True)
class ClubRef:
    id: int


Ref = Union[TeamRef, ClubRef]


class ReferenceShapeError(ValueError):
    """A persisted side holds both or neither of its reference columns."""

    def __init__(self, record_id: Any, side: str, kind: str):
        self.record_id = record_id
        self.side = side
        self.kind = kind  # "both", "neither" or "mixed-sides"
        super().__init__(f"Record {record_id}: {side} reference is {kind}")


def decode_ref(record_id: Any, side: str, team_id: Optional[int], club_id: Optional[int]) -> Ref:
    """Decode one side's pair of nullable columns into a reference."""
    if team_id is not None and club_id is not None:
        raise ReferenceShapeError(record_id, side, "both")
    if team_id is not None:
        return TeamRef(team_id)
    if club_id is not None:
        return ClubRef(club_id)
    raise ReferenceShapeError(record_id, side, "neither")


def encode_ref(side: str, ref: Ref) -> Dict[str, Optional[int]]:
    """Column values for one side; the other column is always cleared."""
    if isinstance(ref, ClubRef):
        return {f"{side}_team_id": None, f"{side}_club_id": ref.id}
    return {f"{side}_team_id": ref.id, f"{side}_club_id": None}


@dataclass(frozen=True)
class MatchRecord:
    """A match whose two sides reference the same variant."""

    id: int
    league_id: Optional[int]
    season_id: Optional[int]
    home: Ref
    away: Ref
    status: Optional[str] = None
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    last_migration_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_club_mode(self) -> bool:
        return isinstance(self.home, ClubRef)

    @classmethod
    def from_row(cls, row) -> "MatchRecord":
        """
        Decode a match row.

        Raises:
            ReferenceShapeError: When a side, or the pair of sides, is mixed
        """
        home = decode_ref(row.id, "home", row.home_team_id, row.home_club_id)
        away = decode_ref(row.id, "away", row.away_team_id, row.away_club_id)
        if type(home) is not type(away):
            raise ReferenceShapeError(row.id, "home/away", "mixed-sides")
        return cls(
            id=row.id,
            league_id=row.league_id,
            season_id=row.season_id,
            home=home,
            away=away,
            status=row.status,
            home_score=row.home_score,
            away_score=row.away_score,
            last_migration_at=row.last_migration_at,
            updated_at=row.updated_at,
        )

    def ref_columns(self) -> Dict[str, Optional[int]]:
        return {**encode_ref("home", self.home), **encode_ref("away", self.away)}


@dataclass
class RecordDiff:
    """Field changes the migration applies (or would apply) to one record."""

    record_id: int
    before: Dict[str, Any]
    after: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.record_id, "before": self.before, "after": self.after}
