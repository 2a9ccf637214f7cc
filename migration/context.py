"""Wiring of the migration components from settings."""

from dataclasses import dataclass
from typing import Optional

from config.settings import Settings
from database.store import RecordStore
from .backup import BackupManager
from .data_mapper import MappingResolver, MappingTable
from .history import HistoryLog
from .utils import RetryPolicy
from .validator import DataValidator


@dataclass
class MigrationContext:
    """Collaborators shared by migrate, rollback, cleanup and reporting."""

    settings: Settings
    store: RecordStore
    resolver: MappingResolver
    validator: DataValidator
    backups: BackupManager
    history: HistoryLog
    retry_policy: RetryPolicy

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: Optional[RecordStore] = None,
        mapping: Optional[MappingTable] = None
    ) -> "MigrationContext":
        store = store or RecordStore()
        retry_policy = RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )
        resolver = MappingResolver(
            store,
            mapping or MappingTable.from_settings(settings),
            name_fallback=settings.mapping_name_fallback,
        )
        return cls(
            settings=settings,
            store=store,
            resolver=resolver,
            validator=DataValidator(store, resolver),
            backups=BackupManager(store, settings.backup_dir, retry_policy),
            history=HistoryLog(store),
            retry_policy=retry_policy,
        )
