"""Backup management for migration safety.

Every mutating operation first writes an immutable snapshot of the records
it is about to touch. Snapshots are JSON files in the backup directory:

    {"metadata": {"backupId", "timestamp", "recordCount", "version",
                  "migrationType", "operation", "collection"},
     "data": {"<collection>": [<verbatim rows>]}}

Restoring a snapshot writes the rows back field by field, except rows that
were changed after the snapshot by something other than the migration.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Any, List, Optional, Iterable

from database.connection import DatabaseOperationError
from database.models import as_utc, utcnow
from database.repositories import model_to_dict, payload_to_values
from database.store import RecordStore
from .records import MigrationType, Operation
from .utils import (
    BackupError, NotFoundError, VersionIncompatibleError, RetryPolicy
)

logger = logging.getLogger(__name__)

BACKUP_FORMAT_VERSION = "1.0"

# Columns a migration adds to a record; cleared on restore when the
# snapshot predates them.
MIGRATION_ADDED_FIELDS = {
    MigrationType.MATCHES.value: ("home_club_id", "away_club_id", "last_migration_at"),
    MigrationType.STANDINGS.value: ("club_id", "last_migration_at"),
}

STANDINGS_STAT_FIELDS = (
    "rank", "played", "won", "drawn", "lost",
    "goals_for", "goals_against", "goal_difference", "points",
)


def versions_compatible(snapshot_version: str, current_version: str = BACKUP_FORMAT_VERSION) -> bool:
    """Snapshots are compatible when their major versions match."""
    return snapshot_version.split(".")[0] == current_version.split(".")[0]


def is_dependent_modified(row, snapshot_time: datetime) -> bool:
    """
    Whether a row changed after the snapshot by a writer other than us.

    Migration writes stamp ``updated_at`` and ``system_write_at`` together,
    so only a later ``updated_at`` counts as an outside change.
    """
    updated_at = as_utc(row.updated_at)
    if updated_at is None or updated_at <= as_utc(snapshot_time):
        return False
    system_write_at = as_utc(row.system_write_at)
    return system_write_at is None or updated_at > system_write_at


@dataclass(frozen=True)
class BackupSnapshot:
    """Immutable point-in-time copy of records."""

    backup_id: str
    timestamp: datetime
    migration_type: str
    operation: str
    record_count: int
    version: str
    collection: str
    payload: tuple

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": {
                "backupId": self.backup_id,
                "timestamp": self.timestamp.isoformat(),
                "recordCount": self.record_count,
                "version": self.version,
                "migrationType": self.migration_type,
                "operation": self.operation,
                "collection": self.collection,
            },
            "data": {self.collection: list(self.payload)},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupSnapshot":
        """
        Build a snapshot from its persisted form.

        Raises:
            BackupError: When the document is malformed or its count is wrong
        """
        try:
            meta = data["metadata"]
            collection = meta["collection"]
            payload = data["data"][collection]
            snapshot = cls(
                backup_id=meta["backupId"],
                timestamp=as_utc(datetime.fromisoformat(meta["timestamp"])),
                migration_type=meta["migrationType"],
                operation=meta["operation"],
                record_count=int(meta["recordCount"]),
                version=str(meta["version"]),
                collection=collection,
                payload=tuple(payload),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise BackupError(f"Malformed backup document: {e}") from e
        snapshot.check_count()
        return snapshot

    def check_count(self):
        if self.record_count != len(self.payload):
            raise BackupError(
                f"Backup {self.backup_id} declares {self.record_count} records "
                f"but holds {len(self.payload)}"
            )

    @property
    def record_ids(self) -> List[Any]:
        return [record["id"] for record in self.payload]


class RestoreOutcome(str, Enum):
    RESTORED = "restored"
    SKIPPED_DEPENDENT_MODIFIED = "skipped-dependent-modified"
    FLAGGED_STATISTICS_CHANGED = "flagged-statistics-changed"
    ERROR = "error"


@dataclass
class RecordOutcome:
    record_id: Any
    outcome: RestoreOutcome
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.record_id, "outcome": self.outcome.value, "message": self.message}


@dataclass
class RestoreResult:
    """Per-record outcomes of restoring one snapshot."""

    backup_id: str
    migration_type: str
    pre_rollback_backup_id: Optional[str] = None
    outcomes: List[RecordOutcome] = field(default_factory=list)

    def count(self, outcome: RestoreOutcome) -> int:
        return sum(1 for o in self.outcomes if o.outcome == outcome)

    @property
    def restored(self) -> int:
        return self.count(RestoreOutcome.RESTORED)

    @property
    def skipped_dependent_modified(self) -> int:
        return self.count(RestoreOutcome.SKIPPED_DEPENDENT_MODIFIED)

    @property
    def flagged(self) -> int:
        return self.count(RestoreOutcome.FLAGGED_STATISTICS_CHANGED)

    @property
    def errors(self) -> int:
        return self.count(RestoreOutcome.ERROR)


class BackupManager:
    """Creates, lists, loads and restores snapshots."""

    def __init__(
        self,
        store: RecordStore,
        backup_dir: str = "backups/migrations",
        retry_policy: Optional[RetryPolicy] = None
    ):
        self.store = store
        self.backup_dir = Path(backup_dir)
        self.retry_policy = retry_policy or RetryPolicy()

    def _path(self, backup_id: str) -> Path:
        return self.backup_dir / f"{backup_id}.json"

    def exists(self, backup_id: str) -> bool:
        return self._path(backup_id).exists()

    @staticmethod
    def make_backup_id(migration_type: str, operation: str, timestamp: datetime) -> str:
        return f"{migration_type}-{operation}-backup-{timestamp.strftime('%Y%m%dT%H%M%S%fZ')}"

    async def snapshot(
        self,
        migration_type: str,
        record_ids: Iterable[Any],
        operation: str = Operation.MIGRATE.value
    ) -> BackupSnapshot:
        """
        Persist the current state of the given records.

        Args:
            migration_type: "matches" or "standings"
            record_ids: Records about to be mutated
            operation: Operation the snapshot precedes

        Returns:
            The persisted snapshot

        Raises:
            BackupError: When reading or writing fails
        """
        migration_type = MigrationType(migration_type).value
        repository = self.store.repository_for(migration_type)
        record_ids = list(record_ids)
        # Precedes the read: any write landing during it counts as a later change
        timestamp = utcnow()
        try:
            rows = await self.retry_policy.run(
                lambda: repository.get_many(record_ids),
                description=f"Reading {migration_type} for backup",
            )
        except DatabaseOperationError as e:
            raise BackupError(f"Cannot read {migration_type} for backup: {e}") from e

        payload = tuple(model_to_dict(row) for row in rows)
        snapshot = BackupSnapshot(
            backup_id=self.make_backup_id(migration_type, operation, timestamp),
            timestamp=timestamp,
            migration_type=migration_type,
            operation=operation,
            record_count=len(payload),
            version=BACKUP_FORMAT_VERSION,
            collection=self.store.collection_name(migration_type),
            payload=payload,
        )
        snapshot.check_count()

        path = self._path(snapshot.backup_id)
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".json.tmp")
            tmp_path.write_text(json.dumps(snapshot.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
            tmp_path.replace(path)
        except (OSError, TypeError, ValueError) as e:
            raise BackupError(f"Cannot write backup {snapshot.backup_id}: {e}") from e

        # Read the file back so a truncated write never passes as a backup
        self.load(snapshot.backup_id)
        logger.info(f"💾 Backup created: {snapshot.backup_id} ({snapshot.record_count} records)")
        return snapshot

    def load(self, backup_id: str) -> BackupSnapshot:
        """
        Load a snapshot by id.

        Raises:
            NotFoundError: If no such backup exists
            BackupError: If the file is unreadable or inconsistent
        """
        path = self._path(backup_id)
        if not path.exists():
            raise NotFoundError(f"Backup not found: {backup_id}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise BackupError(f"Cannot read backup {backup_id}: {e}") from e
        return BackupSnapshot.from_dict(data)

    def list_backups(self) -> List[Dict[str, Any]]:
        """List backup metadata, newest first; unreadable files are skipped."""
        if not self.backup_dir.exists():
            return []
        backups = []
        for path in self.backup_dir.glob("*.json"):
            try:
                backups.append(self.load(path.stem).to_dict()["metadata"])
            except BackupError as e:
                logger.warning(f"Skipping unreadable backup {path.name}: {e}")
        return sorted(backups, key=lambda meta: meta["timestamp"], reverse=True)

    async def restore(self, backup_id: str, force: bool = False) -> RestoreResult:
        """
        Write a snapshot back to the record store.

        A pre-rollback snapshot of the current state is taken first. Rows
        changed by an outside writer after the snapshot are skipped unless
        ``force``; rows that no longer exist are re-inserted.

        Raises:
            NotFoundError, BackupError, VersionIncompatibleError
        """
        snapshot = self.load(backup_id)
        if not force and not versions_compatible(snapshot.version):
            raise VersionIncompatibleError(
                f"Backup {backup_id} has version {snapshot.version}, "
                f"current version is {BACKUP_FORMAT_VERSION}"
            )

        migration_type = snapshot.migration_type
        repository = self.store.repository_for(migration_type)
        pre_rollback = await self.snapshot(migration_type, snapshot.record_ids, Operation.ROLLBACK.value)
        result = RestoreResult(backup_id, migration_type, pre_rollback.backup_id)

        try:
            current = {row.id: row for row in await repository.get_many(snapshot.record_ids)}
        except DatabaseOperationError as e:
            raise BackupError(f"Cannot read current {migration_type} state: {e}") from e

        added_fields = MIGRATION_ADDED_FIELDS[migration_type] if snapshot.operation == Operation.MIGRATE.value else ()

        for record in snapshot.payload:
            record_id = record["id"]
            row = current.get(record_id)
            values = payload_to_values(repository.model, record)
            for name in added_fields:
                values.setdefault(name, None)

            if row is not None and not force:
                if is_dependent_modified(row, snapshot.timestamp):
                    result.outcomes.append(RecordOutcome(
                        record_id, RestoreOutcome.SKIPPED_DEPENDENT_MODIFIED,
                        f"Modified at {as_utc(row.updated_at).isoformat()} after backup"
                    ))
                    continue
                if migration_type == MigrationType.STANDINGS.value and any(
                    getattr(row, name) != values.get(name) for name in STANDINGS_STAT_FIELDS if name in values
                ):
                    result.outcomes.append(RecordOutcome(
                        record_id, RestoreOutcome.FLAGGED_STATISTICS_CHANGED,
                        "Statistics were recomputed since the backup"
                    ))
                    continue

            try:
                if row is None:
                    await self.retry_policy.run(
                        lambda: repository.create(values),
                        description=f"Re-inserting {migration_type} {record_id}",
                    )
                else:
                    update_values = {k: v for k, v in values.items() if k != "id"}
                    await self.retry_policy.run(
                        lambda: repository.update_fields(record_id, update_values),
                        description=f"Restoring {migration_type} {record_id}",
                    )
            except DatabaseOperationError as e:
                result.outcomes.append(RecordOutcome(record_id, RestoreOutcome.ERROR, str(e)))
                continue

            result.outcomes.append(RecordOutcome(record_id, RestoreOutcome.RESTORED))

        logger.info(
            f"♻️ Restored {result.restored}/{snapshot.record_count} records from {backup_id} "
            f"({result.skipped_dependent_modified} skipped, {result.flagged} flagged, {result.errors} errors)"
        )
        return result
