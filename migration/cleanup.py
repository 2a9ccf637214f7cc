"""Cleanup of orphaned, duplicate and reference-less records.

Candidates are taken from validator output. Every deletion is preceded by a
``cleanup`` backup, so removed records can be brought back with a rollback.
"""

import logging
import uuid
from collections import defaultdict
from typing import Dict, Any, List, Optional, Iterable

from database.connection import DatabaseOperationError
from .context import MigrationContext
from .records import IssueType, MigrationType, Operation, RunStatus, Reason, Severity
from .utils import BackupError, MigrationError, MigrationLock
from .validator import DataValidator, ValidationResult

logger = logging.getLogger(__name__)

ORPHANED = "orphaned"
NO_REFERENCES = "no-references"
DUPLICATES = "duplicates"


class TypeCleanupResult:
    """Cleanup outcome for one migration type."""

    def __init__(self, migration_type: str, dry_run: bool):
        self.migration_type = migration_type
        self.dry_run = dry_run
        self.run_id: Optional[str] = None
        self.status = RunStatus.PENDING
        self.reason: Optional[Reason] = None
        self.message: Optional[str] = None
        self.backup_id: Optional[str] = None
        self.candidates: Dict[str, List[Any]] = defaultdict(list)
        self.skipped: List[Dict[str, Any]] = []
        self.deleted = 0

    @property
    def candidate_ids(self) -> List[Any]:
        return [record_id for ids in self.candidates.values() for record_id in ids]

    def finish(self, status: RunStatus, reason: Reason, message: Optional[str] = None):
        self.status = status
        self.reason = reason
        self.message = message

    def get_summary(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "migrationType": self.migration_type,
            "dryRun": self.dry_run,
            "status": self.status.value,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "backupId": self.backup_id,
            "counts": {category: len(ids) for category, ids in self.candidates.items()},
            "candidates": dict(self.candidates),
            "skipped": self.skipped,
            "deleted": self.deleted,
        }


class CleanupResult:
    """Container for cleanup results across types."""

    def __init__(self, dry_run: bool):
        self.dry_run = dry_run
        self.types: Dict[str, TypeCleanupResult] = {}

    @property
    def status(self) -> RunStatus:
        statuses = {r.status for r in self.types.values()}
        if statuses <= {RunStatus.COMPLETED}:
            return RunStatus.COMPLETED
        if RunStatus.COMPLETED in statuses or RunStatus.PARTIAL in statuses:
            return RunStatus.PARTIAL
        return RunStatus.FAILED

    @property
    def deleted(self) -> int:
        return sum(r.deleted for r in self.types.values())

    def get_summary(self) -> Dict[str, Any]:
        return {
            "dryRun": self.dry_run,
            "status": self.status.value,
            "deleted": self.deleted,
            "types": {name: r.get_summary() for name, r in self.types.items()},
        }


class CleanupEngine:
    """Detects and removes records that cannot be repaired by migrating."""

    def __init__(self, context: MigrationContext):
        self.context = context
        self.store = context.store

    @staticmethod
    def _unrelated_errors(validation: ValidationResult, entity: str, record_id: Any, related: Iterable[IssueType]):
        related = set(related)
        return [
            issue for issue in validation.issues_for(entity, record_id)
            if issue.severity == Severity.ERROR and issue.type not in related
        ]

    def _add_candidate(self, result: TypeCleanupResult, validation, entity, record_id, category, related, seen):
        if record_id in seen:
            return
        seen.add(record_id)
        blocking = self._unrelated_errors(validation, entity, record_id, related)
        if blocking:
            result.skipped.append({
                "id": record_id,
                "category": category,
                "issues": [issue.type.value for issue in blocking],
            })
            logger.info(f"Keeping {entity} {record_id}: also fails {[i.type.value for i in blocking]}")
            return
        result.candidates[category].append(record_id)

    async def find_match_candidates(self, result: TypeCleanupResult):
        validation = await self.context.validator.validate_matches()
        rows = {row.id: row for row in await self.store.matches.get_all()}
        seen = set()

        for issue in validation.issues:
            if issue.type == IssueType.ORPHANED_REFERENCE:
                self._add_candidate(
                    result, validation, DataValidator.MATCH, issue.record_id, ORPHANED,
                    [IssueType.ORPHANED_REFERENCE], seen,
                )

        for row in rows.values():
            if all(value is None for value in (row.home_team_id, row.away_team_id, row.home_club_id, row.away_club_id)):
                self._add_candidate(
                    result, validation, DataValidator.MATCH, row.id, NO_REFERENCES,
                    [IssueType.MISSING_REFERENCE], seen,
                )

    async def find_standings_candidates(self, result: TypeCleanupResult):
        validation = await self.context.validator.validate_standings()
        rows = await self.store.standings.get_all()
        seen = set()

        for issue in validation.issues:
            if issue.type == IssueType.ORPHANED_REFERENCE:
                self._add_candidate(
                    result, validation, DataValidator.STANDINGS, issue.record_id, ORPHANED,
                    [IssueType.ORPHANED_REFERENCE], seen,
                )

        groups = defaultdict(list)
        for row in rows:
            if row.id not in seen:
                groups[(row.display_name, row.league_id)].append(row)
        for group in groups.values():
            if len(group) < 2:
                continue
            # Keep the entry attached to a club, then the oldest one
            keep = sorted(group, key=lambda r: (r.club_id is None, r.id))[0]
            for row in group:
                if row.id != keep.id:
                    self._add_candidate(
                        result, validation, DataValidator.STANDINGS, row.id, DUPLICATES,
                        [IssueType.DUPLICATE_ENTRY], seen,
                    )

    async def cleanup_type(self, migration_type: str, dry_run: bool = False) -> TypeCleanupResult:
        """Clean up one type under its lock."""
        migration_type = MigrationType(migration_type).value
        result = TypeCleanupResult(migration_type, dry_run)
        result.run_id = run_id = str(uuid.uuid4())
        history = self.context.history

        async with MigrationLock(self.store, migration_type, run_id).acquire():
            if not dry_run:
                await history.start(Operation.CLEANUP, migration_type, run_id=run_id)
                await history.mark_running(run_id)

            ids: List[Any] = []
            try:
                if migration_type == MigrationType.MATCHES.value:
                    await self.find_match_candidates(result)
                else:
                    await self.find_standings_candidates(result)

                ids = result.candidate_ids
                logger.info(
                    f"🧹 {migration_type}: {len(ids)} records to remove, {len(result.skipped)} kept "
                    f"({dict((k, len(v)) for k, v in result.candidates.items())})"
                )

                if dry_run:
                    result.finish(RunStatus.COMPLETED, Reason.ALL_SUCCEEDED if ids else Reason.NO_CANDIDATES)
                elif not ids:
                    result.finish(RunStatus.COMPLETED, Reason.NO_CANDIDATES)
                else:
                    await self._delete(result, ids)
            except (MigrationError, DatabaseOperationError) as e:
                logger.error(f"❌ {migration_type} cleanup aborted: {e}")
                result.finish(RunStatus.FAILED, Reason.UNEXPECTED_ERROR, str(e))

            if dry_run:
                return result

            await history.finalize(
                run_id, result.status, result.reason,
                backup_id=result.backup_id,
                message=result.message,
                details={"counts": {k: len(v) for k, v in result.candidates.items()}, "skipped": result.skipped},
                processed_count=len(ids),
                succeeded_count=result.deleted,
                failed_count=len(ids) - result.deleted,
                skipped_count=len(result.skipped),
            )

        return result

    async def _delete(self, result: TypeCleanupResult, ids: List[Any]):
        try:
            snapshot = await self.context.backups.snapshot(result.migration_type, ids, Operation.CLEANUP.value)
        except BackupError as e:
            logger.error(f"❌ Cleanup backup failed, nothing was deleted: {e}")
            result.finish(RunStatus.FAILED, Reason.BACKUP_FAILED, str(e))
            return
        result.backup_id = snapshot.backup_id

        repository = self.store.repository_for(result.migration_type)
        try:
            result.deleted = await self.context.retry_policy.run(
                lambda: repository.delete_many(ids),
                description=f"Deleting {len(ids)} {result.migration_type}",
            )
        except DatabaseOperationError as e:
            result.finish(RunStatus.FAILED, Reason.UNEXPECTED_ERROR, str(e))
            return
        result.finish(RunStatus.COMPLETED, Reason.ALL_SUCCEEDED)

    async def cleanup(self, types: Optional[Iterable[str]] = None, dry_run: bool = False) -> CleanupResult:
        """
        Remove orphaned, duplicate and reference-less records.

        Args:
            types: Migration types to clean; both when omitted
            dry_run: Report candidates only

        Returns:
            CleanupResult with per-type counts
        """
        result = CleanupResult(dry_run)
        for migration_type in types or [t.value for t in MigrationType]:
            result.types[migration_type] = await self.cleanup_type(migration_type, dry_run)
        return result
