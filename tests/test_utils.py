"""Tests for retry, batching and locking helpers."""

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from database.connection import DatabaseOperationError
from migration.utils import (
    AlreadyRunningError, BatchProcessor, MigrationError, MigrationLock,
    ProgressTracker, RetryPolicy, is_transient_error,
)


class Flaky:
    """Fails ``failures`` times with ``error`` before returning a value."""

    def __init__(self, failures, error):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestRetryPolicy:

    def test_backoff(self):
        policy = RetryPolicy(max_attempts=5, base_delay=0.5, max_delay=2.0)
        assert [policy.delay_for(attempt) for attempt in range(4)] == [0.5, 1.0, 2.0, 2.0]

    def test_transient_classification(self):
        assert is_transient_error(DatabaseOperationError("timeout", transient=True))
        assert not is_transient_error(DatabaseOperationError("constraint"))
        assert is_transient_error(OperationalError("SELECT 1", {}, Exception("database is locked")))
        assert is_transient_error(ConnectionResetError())

    async def test_retries_transient_errors(self):
        operation = Flaky(2, DatabaseOperationError("connection lost", transient=True))

        result = await RetryPolicy(max_attempts=3, base_delay=0.0).run(operation)

        assert result == "ok"
        assert operation.calls == 3

    async def test_gives_up_after_max_attempts(self):
        operation = Flaky(5, DatabaseOperationError("connection lost", transient=True))

        with pytest.raises(DatabaseOperationError):
            await RetryPolicy(max_attempts=3, base_delay=0.0).run(operation)
        assert operation.calls == 3

    async def test_permanent_errors_are_not_retried(self):
        operation = Flaky(1, DatabaseOperationError("constraint violated"))

        with pytest.raises(DatabaseOperationError):
            await RetryPolicy(max_attempts=3, base_delay=0.0).run(operation)
        assert operation.calls == 1


class TestBatchProcessor:

    async def test_results_in_input_order(self):
        async def process(item):
            if item == 3:
                raise MigrationError("three is unlucky")
            return item * 10

        tracker = ProgressTracker(5, "Test")
        results = await BatchProcessor(batch_size=2, max_concurrent=2).process_batches(
            [1, 2, 3, 4, 5], process, tracker
        )

        assert [(item, success, value) for item, success, value, _ in results] == [
            (1, True, 10), (2, True, 20), (3, False, None), (4, True, 40), (5, True, 50),
        ]
        assert isinstance(results[2][3], MigrationError)
        assert tracker.get_final_report()["failed_items"] == 1

    async def test_concurrency_is_bounded(self):
        running = 0
        peak = 0

        async def process(item):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return item

        await BatchProcessor(batch_size=10, max_concurrent=3).process_batches(list(range(10)), process)

        assert peak == 3


class TestMigrationLock:

    async def test_exclusive_per_type(self, store):
        async with MigrationLock(store, "matches", "run-1").acquire():
            with pytest.raises(AlreadyRunningError):
                async with MigrationLock(store, "matches", "run-2").acquire():
                    pass
            async with MigrationLock(store, "standings", "run-3").acquire():
                assert len(await store.locks.list_held()) == 2

        assert await store.locks.list_held() == []

    async def test_released_on_error(self, store):
        with pytest.raises(RuntimeError):
            async with MigrationLock(store, "matches", "run-1").acquire():
                raise RuntimeError("boom")

        assert await store.locks.get(MigrationLock.name_for("matches")) is None
