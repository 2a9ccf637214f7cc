"""Migration utility functions and helper classes.

Provides common functionality needed across the migration system including
the error hierarchy, progress tracking, retry policy, batch processing and
the type-scoped migration lock.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from database.connection import DatabaseOperationError
from database.models import MigrationLockRow, as_utc, utcnow
from database.repositories.base import is_transient
from database.store import RecordStore

logger = logging.getLogger(__name__)

OPEN_RUN_STATUSES = ("pending", "running")


class MigrationError(Exception):
    """Base exception for migration operations."""
    pass


class BackupError(MigrationError):
    """Snapshot could not be read or persisted; raised before any mutation."""
    pass


class PersistenceError(MigrationError):
    """Writing one record failed after retries."""

    def __init__(self, record_id: Any, message: str):
        self.record_id = record_id
        super().__init__(f"Record {record_id}: {message}")


class RollbackIncompatibilityError(MigrationError):
    """Snapshot cannot be applied to the current state."""
    pass


class VersionIncompatibleError(RollbackIncompatibilityError):
    """Snapshot was written by an incompatible backup format version."""
    pass


class AlreadyRunningError(MigrationError):
    """The type-scoped lock is held by another run."""
    pass


class StaleRunError(MigrationError):
    """A previous run of the same type never finished."""

    def __init__(self, run_id: str, migration_type: str, started_at):
        self.run_id = run_id
        self.migration_type = migration_type
        self.started_at = started_at
        super().__init__(
            f"Run {run_id} ({migration_type}) has been running since {started_at}; "
            f"roll back from its backup before migrating again"
        )


class NotFoundError(MigrationError):
    """Requested backup or run does not exist."""
    pass


class InvalidStateTransition(MigrationError):
    """History entry moved outside pending -> running -> terminal."""
    pass


def is_transient_error(error: BaseException) -> bool:
    """Whether an I/O failure is worth retrying."""
    if isinstance(error, DatabaseOperationError):
        return error.transient
    if isinstance(error, SQLAlchemyError):
        return is_transient(error)
    return isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError))


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for transient persistence failures."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1`` (attempt is 0-based)."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    async def run(self, operation: Callable[[], Awaitable[Any]], description: str = "operation") -> Any:
        """
        Await ``operation`` until it succeeds or a non-transient error occurs.

        Raises:
            The last error once attempts are exhausted, or the first
            non-transient error immediately
        """
        for attempt in range(self.max_attempts):
            try:
                return await operation()
            except (SQLAlchemyError, DatabaseOperationError, ConnectionError, TimeoutError) as e:
                if not is_transient_error(e) or attempt == self.max_attempts - 1:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    f"{description} failed (attempt {attempt + 1}/{self.max_attempts}): {e}; "
                    f"retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)


class ProgressTracker:
    """Tracks and reports migration progress."""

    def __init__(self, total_items: int, description: str = "Migration", report_interval: float = 5.0):
        self.total_items = total_items
        self.processed_items = 0
        self.failed_items = 0
        self.start_time = time.monotonic()
        self.description = description
        self.last_report_time = self.start_time
        self.report_interval = report_interval

    def update(self, processed: int = 1, failed: int = 0):
        """Update progress counters."""
        self.processed_items += processed
        self.failed_items += failed

        now = time.monotonic()
        if now - self.last_report_time >= self.report_interval:
            self.report_progress()
            self.last_report_time = now

    def report_progress(self):
        """Log current progress."""
        elapsed = time.monotonic() - self.start_time
        percentage = (self.processed_items / self.total_items * 100) if self.total_items > 0 else 100.0
        rate = self.processed_items / elapsed if elapsed > 0 else 0

        logger.info(
            f"{self.description}: {self.processed_items}/{self.total_items} "
            f"({percentage:.1f}%) - {rate:.1f} records/sec - Failed: {self.failed_items}"
        )

    def get_final_report(self) -> Dict[str, Any]:
        """Get final progress report."""
        elapsed = time.monotonic() - self.start_time
        succeeded = self.processed_items - self.failed_items
        success_rate = (succeeded / self.processed_items * 100) if self.processed_items > 0 else 0

        return {
            'total_items': self.total_items,
            'processed_items': self.processed_items,
            'failed_items': self.failed_items,
            'success_rate': round(success_rate, 2),
            'elapsed_time': round(elapsed, 2),
            'description': self.description
        }


class BatchProcessor:
    """Processes records in batches on a bounded worker pool."""

    def __init__(self, batch_size: int = 50, max_concurrent: int = 5):
        self.batch_size = batch_size
        self.max_concurrent = max_concurrent
        self.semaphore = asyncio.Semaphore(max_concurrent)

    async def process_batches(
        self,
        items: List[Any],
        processor_func: Callable[[Any], Awaitable[Any]],
        progress_tracker: Optional[ProgressTracker] = None
    ) -> List[Tuple[Any, bool, Any, Optional[BaseException]]]:
        """
        Process items batch by batch; at most ``max_concurrent`` run at once.

        Args:
            items: Items to process; each is handed to ``processor_func`` once
            processor_func: Async function processing one item
            progress_tracker: Optional progress tracker

        Returns:
            List of (item, success, result, error) tuples in input order
        """
        results = []
        batches = [
            items[i:i + self.batch_size]
            for i in range(0, len(items), self.batch_size)
        ]

        logger.info(f"Processing {len(items)} records in {len(batches)} batches")

        for batch_index, batch in enumerate(batches):
            batch_results = await asyncio.gather(*[
                self._process_single_item(item, processor_func) for item in batch
            ])
            for item, success, result, error in batch_results:
                if progress_tracker:
                    progress_tracker.update(processed=1, failed=0 if success else 1)
            results.extend(batch_results)
            logger.debug(f"Completed batch {batch_index + 1}/{len(batches)} with {len(batch)} records")

        return results

    async def _process_single_item(
        self,
        item: Any,
        processor_func: Callable[[Any], Awaitable[Any]]
    ) -> Tuple[Any, bool, Any, Optional[BaseException]]:
        async with self.semaphore:
            try:
                return (item, True, await processor_func(item), None)
            except MigrationError as e:
                logger.error(f"Failed to process record: {e}")
                return (item, False, None, e)


class MigrationLock:
    """Prevents concurrent operations on one migration type.

    The lock is a row in ``migration_locks``; inserting it acquires the lock
    and deleting it releases it, so it also holds across processes.
    """

    def __init__(self, store: RecordStore, migration_type: str, run_id: str):
        self.store = store
        self.lock_name = self.name_for(migration_type)
        self.run_id = run_id
        self.lock_acquired = False

    @staticmethod
    def name_for(migration_type: str) -> str:
        return f"migration:{migration_type}"

    @classmethod
    async def find_orphaned(
        cls,
        store: RecordStore,
        migration_type: str,
        timeout_minutes: int,
        now: Optional[datetime] = None
    ) -> Optional[MigrationLockRow]:
        """
        Return the type lock if it outlived ``timeout_minutes`` while its holder
        has no open history entry, i.e. the holder died before or without
        recording its run.
        """
        lock = await store.locks.get(cls.name_for(migration_type))
        if lock is None:
            return None
        cutoff = (now or utcnow()) - timedelta(minutes=timeout_minutes)
        if as_utc(lock.acquired_at) >= cutoff:
            return None
        holder = await store.history.get_by_id(lock.holder_run_id)
        if holder is not None and holder.status in OPEN_RUN_STATUSES:
            return None
        return lock

    @asynccontextmanager
    async def acquire(self):
        """
        Hold the lock for the duration of the block.

        Raises:
            AlreadyRunningError: If another run holds the lock
        """
        if not await self.store.locks.try_acquire(self.lock_name, self.run_id):
            holder = await self.store.locks.get(self.lock_name)
            holder_id = holder.holder_run_id if holder else "unknown"
            raise AlreadyRunningError(f"Lock {self.lock_name} is held by run {holder_id}")

        self.lock_acquired = True
        logger.info(f"🔒 Migration lock acquired: {self.lock_name}")
        try:
            yield self
        finally:
            await self.store.locks.release(self.lock_name, self.run_id)
            self.lock_acquired = False
            logger.info(f"🔓 Migration lock released: {self.lock_name}")
