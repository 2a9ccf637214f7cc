"""Team to club data migration system.

Moves matches and standings entries from legacy team references to
canonical club references, with backups, rollback, cleanup and data
quality reporting.

Modules:
- records: Reference types, enums and the match record model
- data_mapper: Team to club resolution
- validator: Data validation and health scoring
- backup: Snapshots and restore
- history: Run history with its status state machine
- migrate_data: Migration orchestrator
- rollback: Rollback of runs from their backups
- cleanup: Removal of orphaned and duplicate records
- quality: Data quality reports
- cli: Command-line interface for migration operations
"""

__version__ = "1.0.0"

from .data_mapper import MappingError, MappingResolver, MappingTable
from .validator import DataValidator, ValidationResult
from .utils import (
    AlreadyRunningError, MigrationError, NotFoundError,
    StaleRunError, VersionIncompatibleError,
)
from .context import MigrationContext
from .migrate_data import DataMigration, RunResult
from .rollback import RollbackExecutor, RollbackResult
from .cleanup import CleanupEngine, CleanupResult
from .quality import DataQualityReporter, DataQualityReport

__all__ = [
    "MappingError",
    "MappingResolver",
    "MappingTable",
    "DataValidator",
    "ValidationResult",
    "MigrationError",
    "AlreadyRunningError",
    "NotFoundError",
    "StaleRunError",
    "VersionIncompatibleError",
    "MigrationContext",
    "DataMigration",
    "RunResult",
    "RollbackExecutor",
    "RollbackResult",
    "CleanupEngine",
    "CleanupResult",
    "DataQualityReporter",
    "DataQualityReport",
]
