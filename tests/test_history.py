"""Tests for the run history state machine."""

from datetime import timedelta

import pytest

from database.models import utcnow
from migration.records import Operation, Reason, RunStatus
from migration.utils import InvalidStateTransition, NotFoundError


class TestHistoryLog:

    async def test_lifecycle(self, context):
        history = context.history
        run_id = await history.start(Operation.MIGRATE, "matches")
        assert (await history.get(run_id))["status"] == "pending"

        await history.mark_running(run_id)
        await history.finalize(
            run_id, RunStatus.PARTIAL, Reason.RECORD_FAILURES,
            backup_id="matches-migrate-backup-20240101T000000000000Z",
            processed_count=3, succeeded_count=2, failed_count=1,
        )

        entry = await history.get(run_id)
        assert entry["status"] == "partial"
        assert entry["reason"] == "record-failures"
        assert (entry["processedCount"], entry["succeededCount"], entry["failedCount"]) == (3, 2, 1)
        assert entry["completedAt"] is not None

    async def test_finalize_only_once(self, context):
        history = context.history
        run_id = await history.start(Operation.CLEANUP, "standings")
        await history.mark_running(run_id)
        await history.finalize(run_id, RunStatus.COMPLETED, Reason.ALL_SUCCEEDED)

        with pytest.raises(InvalidStateTransition):
            await history.finalize(run_id, RunStatus.FAILED, Reason.UNEXPECTED_ERROR)
        assert (await history.get(run_id))["status"] == "completed"

    async def test_pending_cannot_be_finalized(self, context):
        run_id = await context.history.start(Operation.MIGRATE, "matches")

        with pytest.raises(InvalidStateTransition):
            await context.history.finalize(run_id, RunStatus.COMPLETED, Reason.ALL_SUCCEEDED)

    async def test_non_terminal_status(self, context):
        run_id = await context.history.start(Operation.MIGRATE, "matches")
        await context.history.mark_running(run_id)

        with pytest.raises(InvalidStateTransition):
            await context.history.finalize(run_id, RunStatus.RUNNING, Reason.ALL_SUCCEEDED)

    async def test_unknown_run(self, context):
        with pytest.raises(NotFoundError):
            await context.history.mark_running("does-not-exist")

    async def test_find_stale(self, context):
        history = context.history
        run_id = await history.start(Operation.MIGRATE, "matches")
        await history.mark_running(run_id)

        assert await history.find_stale("matches", 60) == []
        stale = await history.find_stale("matches", 60, now=utcnow() + timedelta(hours=2))
        assert [e.id for e in stale] == [run_id]
        assert await history.find_stale("standings", 60, now=utcnow() + timedelta(hours=2)) == []

    async def test_abandon_pending_run(self, context):
        run_id = await context.history.start(Operation.MIGRATE, "matches")

        await context.history.abandon(run_id)

        entry = await context.history.get(run_id)
        assert (entry["status"], entry["reason"]) == ("failed", "abandoned")

    async def test_recent_and_counts(self, context):
        history = context.history
        for status in (RunStatus.COMPLETED, RunStatus.COMPLETED, RunStatus.FAILED):
            run_id = await history.start(Operation.MIGRATE, "matches")
            await history.mark_running(run_id)
            await history.finalize(run_id, status, Reason.ALL_SUCCEEDED)
        await history.start(Operation.MIGRATE, "standings")

        assert len(await history.recent(limit=2)) == 2
        assert len(await history.recent(migration_type="standings")) == 1
        counts = await history.counts_by_status_since(utcnow() - timedelta(days=1))
        assert counts == {"completed": 2, "failed": 1, "pending": 1}
