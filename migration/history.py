"""Append-only history of migration, rollback and cleanup runs.

Each run gets one entry keyed by its run id. The entry starts as
``pending``, becomes ``running`` once the run holds its lock, and is
finalized exactly once to ``completed``, ``failed`` or ``partial``.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional

from database.models import MigrationHistory, as_utc, utcnow
from database.store import RecordStore
from .records import Operation, RunStatus, Reason
from .utils import InvalidStateTransition, NotFoundError

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    RunStatus.PENDING: {RunStatus.RUNNING},
    RunStatus.RUNNING: {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.PARTIAL},
}


def entry_to_dict(entry: MigrationHistory) -> Dict[str, Any]:
    """Serialise a history entry."""
    completed_at = as_utc(entry.completed_at)
    return {
        "id": entry.id,
        "operation": entry.operation,
        "migrationType": entry.migration_type,
        "status": entry.status,
        "reason": entry.reason,
        "message": entry.message,
        "startedAt": as_utc(entry.started_at).isoformat(),
        "completedAt": completed_at.isoformat() if completed_at else None,
        "backupId": entry.backup_id,
        "processedCount": entry.processed_count,
        "succeededCount": entry.succeeded_count,
        "failedCount": entry.failed_count,
        "skippedCount": entry.skipped_count,
        "errorCount": entry.error_count,
        "warningCount": entry.warning_count,
        "dryRun": entry.dry_run,
        "details": entry.details,
    }


class HistoryLog:
    """Run log with an enforced status state machine."""

    def __init__(self, store: RecordStore):
        self.store = store

    async def start(
        self,
        operation: Operation,
        migration_type: str,
        run_id: Optional[str] = None,
        dry_run: bool = False
    ) -> str:
        """Append a pending entry and return its run id."""
        entry = await self.store.history.create({
            "id": run_id or str(uuid.uuid4()),
            "operation": Operation(operation).value,
            "migration_type": migration_type,
            "status": RunStatus.PENDING.value,
            "started_at": utcnow(),
            "dry_run": dry_run,
        })
        logger.debug(f"History entry {entry.id} created for {operation} {migration_type}")
        return entry.id

    async def _transition(self, run_id: str, target: RunStatus, values: Dict[str, Any]):
        sources = [s.value for s, targets in ALLOWED_TRANSITIONS.items() if target in targets]
        if await self.store.history.transition(run_id, sources, {**values, "status": target.value}):
            return
        entry = await self.store.history.get_by_id(run_id)
        if entry is None:
            raise NotFoundError(f"History entry not found: {run_id}")
        raise InvalidStateTransition(f"Run {run_id} cannot move from {entry.status} to {target.value}")

    async def mark_running(self, run_id: str):
        await self._transition(run_id, RunStatus.RUNNING, {})

    async def finalize(
        self,
        run_id: str,
        status: RunStatus,
        reason: Reason,
        backup_id: Optional[str] = None,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        **counts: int
    ):
        """
        Record the terminal status of a run.

        Args:
            counts: processed/succeeded/failed/skipped/error/warning counts,
                e.g. ``failed_count=2``

        Raises:
            InvalidStateTransition: If the run is not running (e.g. already finalized)
        """
        status = RunStatus(status)
        if not status.is_terminal:
            raise InvalidStateTransition(f"{status.value} is not a terminal status")
        values = {
            "reason": Reason(reason).value,
            "completed_at": utcnow(),
            "backup_id": backup_id,
            "message": message,
            "details": details,
            **counts,
        }
        await self._transition(run_id, status, values)
        logger.info(f"📝 Run {run_id} finalized as {status.value} ({Reason(reason).value})")

    async def get(self, run_id: str) -> Optional[Dict[str, Any]]:
        entry = await self.store.history.get_by_id(run_id)
        return entry_to_dict(entry) if entry else None

    async def recent(self, limit: int = 20, migration_type: Optional[str] = None) -> List[Dict[str, Any]]:
        entries = await self.store.history.get_recent(limit, migration_type=migration_type)
        return [entry_to_dict(e) for e in entries]

    async def find_stale(self, migration_type: str, timeout_minutes: int, now: Optional[datetime] = None) -> List[MigrationHistory]:
        """Entries of a type still open after ``timeout_minutes``."""
        cutoff = (now or utcnow()) - timedelta(minutes=timeout_minutes)
        return [
            entry for entry in await self.store.history.get_running(migration_type)
            if as_utc(entry.started_at) < cutoff
        ]

    async def abandon(self, run_id: str):
        """Close a stale run that will never finish on its own."""
        entry = await self.store.history.get_by_id(run_id)
        if entry is not None and entry.status == RunStatus.PENDING.value:
            await self.mark_running(run_id)
        await self.finalize(
            run_id, RunStatus.FAILED, Reason.ABANDONED,
            message="Run did not finish and was closed by an operator rollback",
        )

    async def counts_by_status_since(self, since: datetime) -> Dict[str, int]:
        return await self.store.history.count_by_status_since(since)
