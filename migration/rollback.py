"""Rollback of migration and cleanup runs from their backups.

Matches are fully reversible. Standings are restored on a best-effort basis:
entries whose statistics were recomputed since the backup are flagged for
manual reconciliation instead of being overwritten.
"""

import logging
import uuid
from datetime import datetime
from typing import Dict, Any, List, Optional

from database.connection import DatabaseOperationError
from database.models import utcnow
from .backup import BACKUP_FORMAT_VERSION, RestoreOutcome, RestoreResult, versions_compatible
from .context import MigrationContext
from .records import Operation, RunStatus, Reason
from .utils import BackupError, MigrationError, MigrationLock, VersionIncompatibleError

logger = logging.getLogger(__name__)


class RollbackResult:
    """Container for rollback results."""

    def __init__(self, run_id: str, backup_id: str, migration_type: str):
        self.run_id = run_id
        self.backup_id = backup_id
        self.migration_type = migration_type
        self.status = RunStatus.PENDING
        self.reason: Optional[Reason] = None
        self.message: Optional[str] = None
        self.restore: Optional[RestoreResult] = None
        self.abandoned_runs: List[str] = []
        self.start_time = utcnow()
        self.end_time: Optional[datetime] = None

    @property
    def restored(self) -> int:
        return self.restore.restored if self.restore else 0

    @property
    def skipped_dependent_modified(self) -> int:
        return self.restore.skipped_dependent_modified if self.restore else 0

    @property
    def flagged(self) -> int:
        return self.restore.flagged if self.restore else 0

    @property
    def errors(self) -> int:
        return self.restore.errors if self.restore else 0

    def finish(self, status: RunStatus, reason: Reason, message: Optional[str] = None):
        self.status = status
        self.reason = reason
        self.message = message
        self.end_time = utcnow()

    def history_counts(self) -> Dict[str, int]:
        total = len(self.restore.outcomes) if self.restore else 0
        return {
            "processed_count": total,
            "succeeded_count": self.restored,
            "failed_count": self.errors,
            "skipped_count": self.skipped_dependent_modified + self.flagged,
            "error_count": self.errors,
            "warning_count": self.skipped_dependent_modified + self.flagged,
        }

    def get_summary(self) -> Dict[str, Any]:
        """Get rollback summary."""
        return {
            "runId": self.run_id,
            "backupId": self.backup_id,
            "migrationType": self.migration_type,
            "status": self.status.value,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "restored": self.restored,
            "skippedDependentModified": self.skipped_dependent_modified,
            "flaggedStatisticsChanged": self.flagged,
            "errors": self.errors,
            "preRollbackBackupId": self.restore.pre_rollback_backup_id if self.restore else None,
            "records": [o.to_dict() for o in self.restore.outcomes] if self.restore else [],
            "abandonedRuns": self.abandoned_runs,
        }


class RollbackExecutor:
    """Restores a backup under the type lock and records the run."""

    def __init__(self, context: MigrationContext):
        self.context = context
        self.store = context.store

    async def _break_stale_runs(self, migration_type: str) -> List[str]:
        """Release locks of timed-out or vanished runs and close their history entries."""
        abandoned = []
        stale = await self.context.history.find_stale(
            migration_type, self.context.settings.stale_run_timeout_minutes
        )
        for entry in stale:
            lock = await self.store.locks.get(MigrationLock.name_for(migration_type))
            if lock is not None and lock.holder_run_id == entry.id:
                await self.store.locks.force_release(lock.lock_name)
                logger.warning(f"🔨 Broke lock {lock.lock_name} held by stale run {entry.id}")
            await self.context.history.abandon(entry.id)
            abandoned.append(entry.id)

        orphaned = await MigrationLock.find_orphaned(
            self.store, migration_type, self.context.settings.stale_run_timeout_minutes
        )
        if orphaned is not None:
            await self.store.locks.force_release(orphaned.lock_name)
            logger.warning(
                f"🔨 Broke lock {orphaned.lock_name} left by run {orphaned.holder_run_id} "
                f"without an open history entry"
            )
        return abandoned

    async def rollback(self, backup_id: str, force: bool = False) -> RollbackResult:
        """
        Roll back to a backup.

        Args:
            backup_id: Backup to restore
            force: Overwrite records modified after the backup and ignore
                version mismatches

        Returns:
            RollbackResult with per-record outcomes

        Raises:
            NotFoundError: If the backup does not exist
            VersionIncompatibleError: If the backup version is incompatible
            AlreadyRunningError: If a live run holds the type lock
        """
        snapshot = self.context.backups.load(backup_id)
        if not force and not versions_compatible(snapshot.version):
            raise VersionIncompatibleError(
                f"Backup {backup_id} has version {snapshot.version}, "
                f"current version is {BACKUP_FORMAT_VERSION}; use --force to override"
            )

        migration_type = snapshot.migration_type
        run_id = str(uuid.uuid4())
        result = RollbackResult(run_id, backup_id, migration_type)
        result.abandoned_runs = await self._break_stale_runs(migration_type)
        history = self.context.history

        async with MigrationLock(self.store, migration_type, run_id).acquire():
            await history.start(Operation.ROLLBACK, migration_type, run_id=run_id)
            await history.mark_running(run_id)
            logger.info(f"⏪ Rolling back {migration_type} from {backup_id} (run {run_id})")

            try:
                result.restore = await self.context.backups.restore(backup_id, force=force)
            except BackupError as e:
                result.finish(RunStatus.FAILED, Reason.BACKUP_FAILED, str(e))
            except (MigrationError, DatabaseOperationError) as e:
                logger.error(f"❌ Rollback of {backup_id} aborted: {e}")
                result.finish(RunStatus.FAILED, Reason.UNEXPECTED_ERROR, str(e))
            else:
                total = len(result.restore.outcomes)
                if result.restored == total:
                    result.finish(RunStatus.COMPLETED, Reason.ALL_RESTORED)
                elif result.restored > 0:
                    result.finish(RunStatus.PARTIAL, Reason.SOME_RECORDS_SKIPPED)
                else:
                    result.finish(RunStatus.FAILED, Reason.NO_RECORDS_RESTORED)

            await history.finalize(
                run_id, result.status, result.reason,
                backup_id=backup_id,
                message=result.message,
                details={
                    "preRollbackBackupId": result.restore.pre_rollback_backup_id if result.restore else None,
                    "abandonedRuns": result.abandoned_runs,
                    "records": [o.to_dict() for o in result.restore.outcomes if o.outcome != RestoreOutcome.RESTORED]
                    if result.restore else [],
                },
                **result.history_counts()
            )

        logger.info(
            f"Rollback {result.status.value}: {result.restored} restored, "
            f"{result.skipped_dependent_modified} skipped, {result.flagged} flagged, {result.errors} errors"
        )
        return result
