"""Team to club data migration.

Orchestrates one migration run per entity type:

    stale-run check -> lock -> pre-validation -> backup -> transform
    -> post-validation -> history finalization -> unlock

Record-level failures (unmappable teams, write errors after retries) never
abort a run; they lower its terminal status to ``partial`` or ``failed``.
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Dict, Any, List, Optional

from database.connection import DatabaseOperationError
from database.models import as_utc, utcnow
from .context import MigrationContext
from .data_mapper import MappingError, MappingFailure
from .records import (
    MigrationType, Operation, RunStatus, Reason, MatchRecord,
    RecordDiff, ReferenceShapeError,
)
from .utils import (
    BackupError, BatchProcessor, MigrationError, MigrationLock,
    PersistenceError, ProgressTracker, StaleRunError,
)
from .validator import ValidationResult

logger = logging.getLogger(__name__)


class RunResult:
    """Container for the outcome of one migration run."""

    def __init__(self, run_id: str, migration_type: str, dry_run: bool = False):
        self.run_id = run_id
        self.migration_type = migration_type
        self.dry_run = dry_run
        self.status = RunStatus.PENDING
        self.reason: Optional[Reason] = None
        self.backup_id: Optional[str] = None
        self.candidates = 0
        self.succeeded = 0
        self.failed = 0
        self.progress: Optional[Dict[str, Any]] = None
        self.failures: List[Dict[str, Any]] = []
        self.diffs: List[RecordDiff] = []
        self.pre_validation: Optional[ValidationResult] = None
        self.post_validation: Optional[ValidationResult] = None
        self.start_time = utcnow()
        self.end_time: Optional[datetime] = None

    @property
    def completed(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed

    def add_failure(self, record_id: Any, reason: str, message: str):
        """Record a record-scoped failure."""
        self.failed += 1
        self.failures.append({"id": record_id, "reason": reason, "message": message})
        logger.warning(f"{self.migration_type} record {record_id} not migrated: {message}")

    def finish(self, status: RunStatus, reason: Reason):
        self.status = status
        self.reason = reason
        self.end_time = utcnow()

    def history_counts(self) -> Dict[str, int]:
        error_count = self.failed
        warning_count = 0
        if self.pre_validation is not None:
            warning_count += len(self.pre_validation.warnings)
        if self.post_validation is not None:
            error_count += len(self.post_validation.errors)
        return {
            "processed_count": self.processed,
            "succeeded_count": self.succeeded,
            "failed_count": self.failed,
            "error_count": error_count,
            "warning_count": warning_count,
        }

    def get_summary(self) -> Dict[str, Any]:
        """Get run summary."""
        duration = (self.end_time - self.start_time) if self.end_time else None
        return {
            "runId": self.run_id,
            "migrationType": self.migration_type,
            "dryRun": self.dry_run,
            "status": self.status.value,
            "reason": self.reason.value if self.reason else None,
            "completed": self.completed,
            "backupId": self.backup_id,
            "candidates": self.candidates,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "progress": self.progress,
            "failures": self.failures,
            "diffs": [diff.to_dict() for diff in self.diffs],
            "preValidation": self.pre_validation.get_summary() if self.pre_validation else None,
            "postValidation": self.post_validation.get_summary() if self.post_validation else None,
            "durationSeconds": duration.total_seconds() if duration else None,
        }


class DataMigration:
    """Main class for orchestrating team to club migrations."""

    def __init__(self, context: MigrationContext):
        """
        Initialize data migration.

        Args:
            context: Record store, resolver, validator, backups and history
        """
        self.context = context
        self.store = context.store
        self.settings = context.settings
        self.batch_processor = BatchProcessor(
            self.settings.migration_batch_size,
            self.settings.migration_max_concurrent,
        )

    async def check_stale_runs(self, migration_type: str):
        """
        Raises:
            StaleRunError: If an unfinished run of the type has timed out, or
                its lock outlived the timeout without an open history entry
        """
        stale = await self.context.history.find_stale(
            migration_type, self.settings.stale_run_timeout_minutes
        )
        if stale:
            entry = stale[0]
            raise StaleRunError(entry.id, migration_type, entry.started_at)

        orphaned = await MigrationLock.find_orphaned(
            self.store, migration_type, self.settings.stale_run_timeout_minutes
        )
        if orphaned is not None:
            raise StaleRunError(orphaned.holder_run_id, migration_type, orphaned.acquired_at)

    async def run(self, migration_type: str, dry_run: bool = False, force: bool = False) -> RunResult:
        """
        Execute one migration run.

        Args:
            migration_type: "matches" or "standings"
            dry_run: Only validate and compute diffs; no backup, writes or history
            force: Continue despite error-severity pre-validation issues

        Returns:
            RunResult with status, reason, counts and diffs

        Raises:
            StaleRunError: If an earlier run of this type never finished
            AlreadyRunningError: If another run holds the type lock
        """
        migration_type = MigrationType(migration_type).value
        await self.check_stale_runs(migration_type)

        run_id = str(uuid.uuid4())
        result = RunResult(run_id, migration_type, dry_run)
        history = self.context.history

        async with MigrationLock(self.store, migration_type, run_id).acquire():
            if not dry_run:
                await history.start(Operation.MIGRATE, migration_type, run_id=run_id)
                await history.mark_running(run_id)
            logger.info(f"🚀 Starting {'dry run of ' if dry_run else ''}{migration_type} migration (run {run_id})")

            try:
                await self._execute(result, force)
            except (MigrationError, DatabaseOperationError) as e:
                logger.error(f"❌ {migration_type} migration aborted: {e}")
                result.finish(RunStatus.FAILED, Reason.UNEXPECTED_ERROR)
                if not dry_run:
                    await history.finalize(
                        run_id, result.status, result.reason,
                        backup_id=result.backup_id, message=str(e), **result.history_counts()
                    )
                return result

            if not dry_run:
                await history.finalize(
                    run_id, result.status, result.reason,
                    backup_id=result.backup_id,
                    details={"failures": result.failures[:100], "progress": result.progress},
                    **result.history_counts()
                )

        logger.info(
            f"✅ {migration_type} migration finished: {result.status.value} ({result.reason.value}) - "
            f"{result.succeeded} migrated, {result.failed} failed"
        )
        return result

    async def _execute(self, result: RunResult, force: bool):
        migration_type = result.migration_type
        repository = self.store.repository_for(migration_type)

        candidates = await repository.get_candidates()
        result.candidates = len(candidates)
        if not candidates:
            result.finish(RunStatus.COMPLETED, Reason.NO_CANDIDATES)
            return
        candidate_ids = [row.id for row in candidates]

        # Pre-validation
        result.pre_validation = await self._validate(migration_type, candidate_ids)
        if result.pre_validation.has_errors and not force:
            logger.error(
                f"Pre-validation found {len(result.pre_validation.errors)} errors; "
                f"use --force to migrate anyway"
            )
            result.finish(RunStatus.FAILED, Reason.PRE_VALIDATION_FAILED)
            return

        if result.dry_run:
            for row in candidates:
                try:
                    result.diffs.append(await self._plan(migration_type, row))
                    result.succeeded += 1
                except MappingError as e:
                    result.add_failure(row.id, e.reason.value, str(e))
            result.finish(*self._terminal_status(result))
            return

        # Backup
        try:
            snapshot = await self.context.backups.snapshot(migration_type, candidate_ids, Operation.MIGRATE.value)
        except BackupError as e:
            logger.error(f"❌ Backup failed, nothing was changed: {e}")
            result.finish(RunStatus.FAILED, Reason.BACKUP_FAILED)
            return
        result.backup_id = snapshot.backup_id

        # Transform
        tracker = ProgressTracker(len(candidates), f"{migration_type.capitalize()} migration")
        outcomes = await self.batch_processor.process_batches(
            candidates,
            lambda row: self._migrate_record(migration_type, row),
            tracker,
        )
        succeeded_ids = []
        for row, success, diff, error in outcomes:
            if success:
                result.succeeded += 1
                result.diffs.append(diff)
                succeeded_ids.append(row.id)
            elif isinstance(error, MappingError):
                result.add_failure(row.id, error.reason.value, str(error))
            else:
                result.add_failure(row.id, "persistence-error", str(error))
        result.progress = tracker.get_final_report()
        logger.info(
            f"{result.progress['description']}: {result.progress['processed_items']} records in "
            f"{result.progress['elapsed_time']}s ({result.progress['success_rate']}% succeeded)"
        )

        # Post-validation
        result.post_validation = await self._validate(migration_type, succeeded_ids)
        result.finish(*self._terminal_status(result))

    @staticmethod
    def _terminal_status(result: RunResult):
        post_errors = result.post_validation is not None and result.post_validation.has_errors
        if result.failed == 0 and not post_errors:
            return RunStatus.COMPLETED, Reason.ALL_SUCCEEDED
        if result.succeeded > 0:
            return RunStatus.PARTIAL, Reason.RECORD_FAILURES if result.failed else Reason.POST_VALIDATION_ERRORS
        return RunStatus.FAILED, Reason.ALL_RECORDS_FAILED

    async def _validate(self, migration_type: str, ids: List[Any]) -> ValidationResult:
        if migration_type == MigrationType.MATCHES.value:
            return await self.context.validator.validate_matches(ids)
        return await self.context.validator.validate_standings(ids)

    async def _plan(self, migration_type: str, row) -> RecordDiff:
        if migration_type == MigrationType.MATCHES.value:
            return await self._plan_match(row)
        return await self._plan_standings(row)

    async def _plan_match(self, row) -> RecordDiff:
        """Compute the reference change for one match."""
        try:
            record = MatchRecord.from_row(row)
        except ReferenceShapeError as e:
            raise MappingError(MappingFailure.MIXED_REFERENCE, str(e), {"side": e.side}) from e
        if record.is_club_mode:
            raise MappingError(MappingFailure.MIXED_REFERENCE, f"Match {row.id} already references clubs")

        home, away = await self.context.resolver.resolve_pair(record.home.id, record.away.id, record.league_id)
        migrated = replace(record, home=home, away=away)
        return RecordDiff(row.id, record.ref_columns(), migrated.ref_columns())

    async def _plan_standings(self, row) -> RecordDiff:
        """Compute the club assignment for one standings entry."""
        if row.club_id is not None:
            club = await self.store.clubs.get_by_id(row.club_id)
            if club is None:
                raise MappingError(
                    MappingFailure.UNMAPPABLE_TEAM,
                    f"Club {row.club_id} of standings entry {row.id} does not exist",
                    {"club_id": row.club_id},
                )
        else:
            ref = await self.context.resolver.resolve(row.display_name, row.league_id)
            club = await self.store.clubs.get_by_id(ref.id)

        before = {"team_id": row.team_id, "club_id": row.club_id, "display_name": row.display_name}
        after = {"team_id": None, "club_id": club.id, "display_name": club.name}
        return RecordDiff(row.id, before, after)

    async def _migrate_record(self, migration_type: str, row) -> RecordDiff:
        """Plan and apply one record; raises MappingError or PersistenceError."""
        repository = self.store.repository_for(migration_type)
        try:
            diff = await self._plan(migration_type, row)
        except DatabaseOperationError as e:
            raise PersistenceError(row.id, str(e)) from e

        now = utcnow()
        values = {**diff.after, "last_migration_at": now}
        try:
            await self.context.retry_policy.run(
                lambda: repository.apply_system_update(row.id, values, now),
                description=f"Migrating {migration_type} {row.id}",
            )
        except DatabaseOperationError as e:
            raise PersistenceError(row.id, str(e)) from e
        return diff

    async def run_all(self, dry_run: bool = False, force: bool = False) -> Dict[str, RunResult]:
        """Migrate matches, then standings."""
        results = {}
        for migration_type in (MigrationType.MATCHES, MigrationType.STANDINGS):
            results[migration_type.value] = await self.run(migration_type.value, dry_run=dry_run, force=force)
        return results

    async def get_progress(self, migration_type: str) -> Dict[str, Any]:
        """Per-type totals: total, migrated, remaining, progressPct."""
        repository = self.store.repository_for(MigrationType(migration_type).value)
        total = await repository.count()
        migrated = await repository.count_migrated()
        remaining = len(await repository.get_candidates())
        progress = round(100.0 * migrated / total, 2) if total else 100.0
        return {"total": total, "migrated": migrated, "remaining": remaining, "progressPct": progress}

    async def get_migration_status(self) -> Dict[str, Any]:
        """
        Get current migration status.

        Returns:
            Per-type progress and state, recent history and held locks
        """
        status: Dict[str, Any] = {}
        for migration_type in MigrationType:
            progress = await self.get_progress(migration_type.value)
            recent = await self.context.history.recent(1, migration_type=migration_type.value)
            if progress["remaining"] == 0:
                state = RunStatus.COMPLETED.value
            elif progress["migrated"] > 0:
                state = RunStatus.PARTIAL.value
            else:
                state = RunStatus.PENDING.value
            status[migration_type.value] = {
                **progress,
                "state": state,
                "lastRun": recent[0] if recent else None,
            }

        status["recentHistory"] = await self.context.history.recent(10)
        status["locks"] = [
            {"lockName": lock.lock_name, "holderRunId": lock.holder_run_id, "acquiredAt": as_utc(lock.acquired_at).isoformat()}
            for lock in await self.store.locks.list_held()
        ]
        return status
