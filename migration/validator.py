"""Data Validation utilities for migration consistency checking.

Checks matches and standings before and after a migration, and on demand,
and reports typed issues together with a health score. Validation only
reads from the record store.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Iterable, Set, Tuple

from database.models import utcnow
from database.store import RecordStore
from .data_mapper import MappingResolver, MappingError
from .records import (
    IssueType, Severity, HealthBand, ClubRef,
    ReferenceShapeError, decode_ref,
)

logger = logging.getLogger(__name__)


@dataclass
class ValidationIssue:
    """One problem found on one record."""

    type: IssueType
    severity: Severity
    message: str
    entity: str
    record_id: Any
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> Tuple[str, Any]:
        return (self.entity, self.record_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "details": {"entity": self.entity, "id": self.record_id, **self.details},
        }


def health_score(valid: int, total: int) -> float:
    """Percentage of valid records; 100 when there is nothing to check."""
    if total == 0:
        return 100.0
    return round(100.0 * valid / total, 2)


class ValidationResult:
    """Container for validation results."""

    def __init__(self, scope: str):
        self.scope = scope
        self.issues: List[ValidationIssue] = []
        self.checked: Set[Tuple[str, Any]] = set()
        self.generated_at = utcnow()

    def check(self, entity: str, record_id: Any):
        self.checked.add((entity, record_id))

    def add_issue(
        self,
        issue_type: IssueType,
        severity: Severity,
        entity: str,
        record_id: Any,
        message: str,
        **details
    ):
        """Add an issue for a record."""
        self.issues.append(ValidationIssue(issue_type, severity, message, entity, record_id, details))
        if severity == Severity.ERROR:
            logger.debug(f"Validation error: {message}")

    def merge(self, other: "ValidationResult"):
        self.issues.extend(other.issues)
        self.checked |= other.checked

    @property
    def invalid_keys(self) -> Set[Tuple[str, Any]]:
        return {
            issue.key for issue in self.issues
            if issue.severity in (Severity.ERROR, Severity.WARNING)
        }

    @property
    def total(self) -> int:
        return len(self.checked)

    @property
    def valid(self) -> int:
        return len(self.checked - self.invalid_keys)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.WARNING]

    @property
    def has_errors(self) -> bool:
        return any(i.severity == Severity.ERROR for i in self.issues)

    @property
    def health_score(self) -> float:
        return health_score(self.valid, self.total)

    @property
    def health_band(self) -> HealthBand:
        return HealthBand.for_score(self.health_score)

    def issues_for(self, entity: str, record_id: Any) -> List[ValidationIssue]:
        return [i for i in self.issues if i.key == (entity, record_id)]

    def get_summary(self) -> Dict[str, Any]:
        """Get validation summary."""
        return {
            "valid": self.valid,
            "errors": len(self.errors),
            "warnings": len(self.warnings),
            "total": self.total,
            "issues": [issue.to_dict() for issue in self.issues],
            "healthScore": self.health_score,
            "healthBand": self.health_band.value,
        }


class FullValidationReport:
    """Combined result of validating every collection."""

    def __init__(self, matches: ValidationResult, standings: ValidationResult, cross: ValidationResult):
        self.matches = matches
        self.standings = standings
        self.cross = cross
        self.combined = ValidationResult("all")
        for part in (matches, standings, cross):
            self.combined.merge(part)

    @property
    def has_errors(self) -> bool:
        return self.combined.has_errors

    @property
    def health_score(self) -> float:
        return self.combined.health_score

    def to_dict(self) -> Dict[str, Any]:
        summary = self.combined.get_summary()
        return {
            "lastRun": self.combined.generated_at.isoformat(),
            **summary,
            "matches": self.matches.get_summary(),
            "standings": self.standings.get_summary(),
            "cross": self.cross.get_summary(),
        }


class DataValidator:
    """Validates data consistency and integrity of matches and standings."""

    MATCH = "match"
    STANDINGS = "standings"

    def __init__(self, store: RecordStore, resolver: MappingResolver):
        self.store = store
        self.resolver = resolver

    async def _resolve_cached(self, cache: Dict, team_name: str, league_id: Optional[int]) -> Optional[MappingError]:
        key = (team_name, league_id)
        if key not in cache:
            try:
                await self.resolver.resolve(team_name, league_id)
                cache[key] = None
            except MappingError as e:
                cache[key] = e
        return cache[key]

    async def validate_matches(self, scope: Optional[Iterable[int]] = None) -> ValidationResult:
        """
        Validate matches.

        Args:
            scope: Match ids to check; every match when omitted

        Returns:
            ValidationResult with one entry per checked match
        """
        result = ValidationResult("matches")
        rows = await (self.store.matches.get_many(scope) if scope is not None else self.store.matches.get_all())

        team_ids = {r.home_team_id for r in rows} | {r.away_team_id for r in rows}
        club_ids = {r.home_club_id for r in rows} | {r.away_club_id for r in rows}
        teams = {t.id: t for t in await self.store.teams.get_many(i for i in team_ids if i is not None)}
        clubs = {c.id: c for c in await self.store.clubs.get_many(i for i in club_ids if i is not None)}
        leagues = await self.store.leagues.existing_ids(r.league_id for r in rows)
        resolutions: Dict = {}

        for row in rows:
            result.check(self.MATCH, row.id)

            try:
                home = decode_ref(row.id, "home", row.home_team_id, row.home_club_id)
                away = decode_ref(row.id, "away", row.away_team_id, row.away_club_id)
            except ReferenceShapeError as e:
                issue_type = IssueType.MIXED_REFERENCE if e.kind == "both" else IssueType.MISSING_REFERENCE
                result.add_issue(issue_type, Severity.ERROR, self.MATCH, row.id, str(e), side=e.side)
                continue

            if type(home) is not type(away):
                result.add_issue(
                    IssueType.MIXED_REFERENCE, Severity.ERROR, self.MATCH, row.id,
                    f"Match {row.id} mixes a team and a club reference",
                    home=type(home).__name__, away=type(away).__name__,
                )
                continue

            if row.league_id is not None and row.league_id not in leagues:
                result.add_issue(
                    IssueType.ORPHANED_REFERENCE, Severity.ERROR, self.MATCH, row.id,
                    f"Match {row.id} references missing league {row.league_id}",
                    field="league_id", value=row.league_id,
                )

            if home.id == away.id:
                result.add_issue(
                    IssueType.SELF_PLAY, Severity.ERROR, self.MATCH, row.id,
                    f"Match {row.id} is played against itself",
                    home=home.id, away=away.id,
                )

            if isinstance(home, ClubRef):
                await self._check_club_sides(result, row, (("home", home), ("away", away)), clubs)
            else:
                await self._check_team_sides(result, row, (("home", home), ("away", away)), teams, resolutions)

        logger.info(
            f"Validated {result.total} matches: {len(result.errors)} errors, {len(result.warnings)} warnings"
        )
        return result

    async def _check_club_sides(self, result, row, sides, clubs):
        for side, ref in sides:
            club = clubs.get(ref.id)
            if club is None:
                result.add_issue(
                    IssueType.ORPHANED_REFERENCE, Severity.ERROR, self.MATCH, row.id,
                    f"Match {row.id} references missing {side} club {ref.id}",
                    field=f"{side}_club_id", value=ref.id,
                )
            elif not club.active or row.league_id not in club.league_ids:
                result.add_issue(
                    IssueType.INVALID_CLUB_LEAGUE, Severity.ERROR, self.MATCH, row.id,
                    f"{side.capitalize()} club '{club.name}' is inactive or not in league {row.league_id}",
                    field=f"{side}_club_id", value=ref.id, active=club.active,
                )

    async def _check_team_sides(self, result, row, sides, teams, resolutions):
        for side, ref in sides:
            team = teams.get(ref.id)
            if team is None:
                result.add_issue(
                    IssueType.ORPHANED_REFERENCE, Severity.ERROR, self.MATCH, row.id,
                    f"Match {row.id} references missing {side} team {ref.id}",
                    field=f"{side}_team_id", value=ref.id,
                )
                continue
            error = await self._resolve_cached(resolutions, team.name, row.league_id)
            if error is not None:
                result.add_issue(
                    IssueType.UNMAPPABLE_TEAM, Severity.WARNING, self.MATCH, row.id,
                    f"{side.capitalize()} team '{team.name}' of match {row.id}: {error}",
                    field=f"{side}_team_id", value=ref.id, reason=error.reason.value,
                )

    async def validate_standings(self, scope: Optional[Iterable[int]] = None) -> ValidationResult:
        """
        Validate standings entries.

        Duplicates are detected against every entry, also when ``scope``
        limits the entries being reported on.
        """
        result = ValidationResult("standings")
        all_rows = await self.store.standings.get_all()
        scope_ids = set(scope) if scope is not None else None
        rows = [r for r in all_rows if scope_ids is None or r.id in scope_ids]

        clubs = {c.id: c for c in await self.store.clubs.get_many({r.club_id for r in rows if r.club_id is not None})}
        teams = await self.store.teams.existing_ids(r.team_id for r in rows)
        groups = defaultdict(list)
        for row in all_rows:
            groups[(row.display_name, row.league_id)].append(row.id)
        resolutions: Dict = {}

        for row in rows:
            result.check(self.STANDINGS, row.id)

            if row.team_id is not None and row.team_id not in teams:
                result.add_issue(
                    IssueType.ORPHANED_REFERENCE, Severity.ERROR, self.STANDINGS, row.id,
                    f"Standings entry {row.id} references missing team {row.team_id}",
                    field="team_id", value=row.team_id,
                )

            if row.club_id is not None:
                club = clubs.get(row.club_id)
                if club is None:
                    result.add_issue(
                        IssueType.ORPHANED_REFERENCE, Severity.ERROR, self.STANDINGS, row.id,
                        f"Standings entry {row.id} references missing club {row.club_id}",
                        field="club_id", value=row.club_id,
                    )
                else:
                    if row.display_name != club.name:
                        result.add_issue(
                            IssueType.NAME_MISMATCH, Severity.WARNING, self.STANDINGS, row.id,
                            f"Display name '{row.display_name}' differs from club name '{club.name}'",
                            display_name=row.display_name, club_name=club.name,
                        )
                    if row.league_id not in club.league_ids:
                        result.add_issue(
                            IssueType.INVALID_CLUB_LEAGUE, Severity.ERROR, self.STANDINGS, row.id,
                            f"Club '{club.name}' is not assigned to league {row.league_id}",
                            club_id=club.id, league_id=row.league_id,
                        )
            else:
                error = await self._resolve_cached(resolutions, row.display_name, row.league_id)
                if error is not None:
                    result.add_issue(
                        IssueType.UNMAPPABLE_TEAM, Severity.WARNING, self.STANDINGS, row.id,
                        f"Standings entry '{row.display_name}': {error}",
                        display_name=row.display_name, reason=error.reason.value,
                    )

            duplicates = groups[(row.display_name, row.league_id)]
            if len(duplicates) > 1:
                result.add_issue(
                    IssueType.DUPLICATE_ENTRY, Severity.WARNING, self.STANDINGS, row.id,
                    f"'{row.display_name}' appears {len(duplicates)} times in league {row.league_id}",
                    duplicate_ids=sorted(duplicates),
                )

        logger.info(
            f"Validated {result.total} standings entries: "
            f"{len(result.errors)} errors, {len(result.warnings)} warnings"
        )
        return result

    async def validate_cross_consistency(self) -> ValidationResult:
        """Check that clubs playing club-mode matches appear in their league's standings."""
        result = ValidationResult("cross")
        matches = await self.store.matches.get_club_mode()
        standings = await self.store.standings.get_all()

        clubs_in_table = defaultdict(set)
        for entry in standings:
            if entry.club_id is not None:
                clubs_in_table[entry.league_id].add(entry.club_id)

        for match in matches:
            result.check(self.MATCH, match.id)
            missing = [
                club_id for club_id in (match.home_club_id, match.away_club_id)
                if club_id not in clubs_in_table[match.league_id]
            ]
            if missing:
                result.add_issue(
                    IssueType.CROSS_INCONSISTENCY, Severity.WARNING, self.MATCH, match.id,
                    f"Clubs {missing} of match {match.id} are missing from standings of league {match.league_id}",
                    league_id=match.league_id, missing_club_ids=missing,
                )

        return result

    async def validate_all(self) -> FullValidationReport:
        """Validate every collection and the consistency between them."""
        report = FullValidationReport(
            await self.validate_matches(),
            await self.validate_standings(),
            await self.validate_cross_consistency(),
        )
        logger.info(
            f"🔍 Validation finished: {report.combined.valid}/{report.combined.total} valid, "
            f"health score {report.health_score:.1f}"
        )
        return report
