"""Tests for rolling runs back from their backups."""

from datetime import timedelta

import pytest

from database.models import utcnow
from migration.cleanup import CleanupEngine
from migration.migrate_data import DataMigration
from migration.records import Operation, Reason, RunStatus
from migration.rollback import RollbackExecutor
from migration.utils import MigrationLock, NotFoundError, RollbackIncompatibilityError

from conftest import (
    HUNDHEIM, KREUZWERTHEIM, TEAM_ERSTE, TEAM_HUNDHEIM, TEAM_KREUZWERTHEIM, MISSING_TEAM,
)


@pytest.fixture
def executor(context):
    return RollbackExecutor(context)


async def touch_outside_migration(store, match_id):
    """Simulate a later edit by another writer."""
    await store.matches.update_fields(match_id, {
        "home_score": 2,
        "away_score": 2,
        "updated_at": utcnow() + timedelta(seconds=1),
    })


class TestMatchRollback:

    async def test_externally_modified_records_are_kept(self, context, executor, store, make_match):
        matches = [await make_match(TEAM_KREUZWERTHEIM, TEAM_HUNDHEIM) for _ in range(10)]
        run = await DataMigration(context).run("matches")
        assert run.completed
        modified = [m.id for m in matches[:3]]
        for match_id in modified:
            await touch_outside_migration(store, match_id)

        result = await executor.rollback(run.backup_id)

        assert result.restored == 7
        assert result.skipped_dependent_modified == 3
        assert result.status == RunStatus.PARTIAL
        assert result.reason == Reason.SOME_RECORDS_SKIPPED
        for match in matches:
            row = await store.matches.get_by_id(match.id)
            if match.id in modified:
                assert (row.home_club_id, row.away_club_id) == (KREUZWERTHEIM, HUNDHEIM)
                assert row.home_score == 2
            else:
                assert (row.home_team_id, row.away_team_id) == (TEAM_KREUZWERTHEIM, TEAM_HUNDHEIM)
                assert row.home_club_id is None and row.away_club_id is None

        entry = await context.history.get(result.run_id)
        assert entry["operation"] == Operation.ROLLBACK.value
        assert entry["status"] == "partial"
        assert entry["skippedCount"] == 3
        assert context.backups.exists(result.get_summary()["preRollbackBackupId"])

    async def test_force_overwrites_modified_records(self, context, executor, store, make_match):
        matches = [await make_match(TEAM_KREUZWERTHEIM, TEAM_HUNDHEIM) for _ in range(3)]
        run = await DataMigration(context).run("matches")
        await touch_outside_migration(store, matches[0].id)

        result = await executor.rollback(run.backup_id, force=True)

        assert result.status == RunStatus.COMPLETED
        assert result.reason == Reason.ALL_RESTORED
        row = await store.matches.get_by_id(matches[0].id)
        assert row.home_team_id == TEAM_KREUZWERTHEIM
        assert row.home_score is None

    async def test_migration_can_run_again_after_rollback(self, context, executor, store, make_match):
        match = await make_match(TEAM_ERSTE, TEAM_HUNDHEIM)
        migration = DataMigration(context)
        run = await migration.run("matches")
        await executor.rollback(run.backup_id)

        again = await migration.run("matches")

        assert again.completed
        assert again.succeeded == 1

    async def test_unknown_backup(self, executor):
        with pytest.raises(NotFoundError):
            await executor.rollback("matches-migrate-backup-19700101T000000000000Z")

    async def test_deleted_records_are_reinserted(self, context, executor, store, make_match):
        orphaned = await make_match(MISSING_TEAM, TEAM_KREUZWERTHEIM, home_score=1)
        cleanup = await CleanupEngine(context).cleanup(["matches"])
        assert await store.matches.get_by_id(orphaned.id) is None
        backup_id = cleanup.types["matches"].backup_id

        result = await executor.rollback(backup_id)

        assert result.status == RunStatus.COMPLETED
        restored = await store.matches.get_by_id(orphaned.id)
        assert restored.home_team_id == MISSING_TEAM
        assert restored.home_score == 1

    async def test_rollback_closes_stale_runs(self, context, executor, store, make_match):
        await make_match(TEAM_KREUZWERTHEIM, TEAM_HUNDHEIM)
        run = await DataMigration(context).run("matches")
        stale_id = await context.history.start(Operation.MIGRATE, "matches")
        await context.history.mark_running(stale_id)
        await store.history.update_fields(stale_id, {"started_at": utcnow() - timedelta(hours=3)})
        await store.locks.try_acquire(MigrationLock.name_for("matches"), stale_id)

        result = await executor.rollback(run.backup_id)

        assert result.abandoned_runs == [stale_id]
        assert result.status == RunStatus.COMPLETED
        stale = await context.history.get(stale_id)
        assert (stale["status"], stale["reason"]) == ("failed", "abandoned")
        assert await store.locks.list_held() == []

    async def test_rollback_breaks_lock_left_without_history(self, context, executor, store, make_match):
        await make_match(TEAM_KREUZWERTHEIM, TEAM_HUNDHEIM)
        run = await DataMigration(context).run("matches")
        await store.locks.try_acquire(MigrationLock.name_for("matches"), "dead-dry-run")
        context.settings.stale_run_timeout_minutes = 0

        result = await executor.rollback(run.backup_id)

        assert result.status == RunStatus.COMPLETED
        assert result.abandoned_runs == []
        assert await store.locks.list_held() == []
        again = await DataMigration(context).run("matches")
        assert again.completed

    async def test_failed_restore_closes_history_entry(self, context, executor, store, make_match, monkeypatch):
        await make_match(TEAM_KREUZWERTHEIM, TEAM_HUNDHEIM)
        run = await DataMigration(context).run("matches")

        async def incompatible(backup_id, force=False):
            raise RollbackIncompatibilityError(f"{backup_id} no longer fits the matches table")

        monkeypatch.setattr(context.backups, "restore", incompatible)

        result = await executor.rollback(run.backup_id)

        assert (result.status, result.reason) == (RunStatus.FAILED, Reason.UNEXPECTED_ERROR)
        entry = await context.history.get(result.run_id)
        assert (entry["status"], entry["reason"]) == ("failed", "unexpected-error")
        assert "no longer fits" in entry["message"]
        assert await store.locks.list_held() == []


class TestStandingsRollback:

    async def test_recomputed_statistics_are_flagged(self, context, executor, store, make_entry):
        recomputed = await make_entry("1. Mannschaft", team_id=TEAM_ERSTE, points=10)
        plain = await make_entry("FC Hundheim", team_id=TEAM_HUNDHEIM, points=4)
        run = await DataMigration(context).run("standings")
        await store.standings.apply_system_update(recomputed.id, {"points": 13, "played": 5})

        result = await executor.rollback(run.backup_id)

        assert result.flagged == 1
        assert result.restored == 1
        assert result.status == RunStatus.PARTIAL
        flagged = await store.standings.get_by_id(recomputed.id)
        assert flagged.points == 13
        assert flagged.display_name == "SV Viktoria Wertheim"
        restored = await store.standings.get_by_id(plain.id)
        assert (restored.display_name, restored.team_id, restored.club_id) == ("FC Hundheim", TEAM_HUNDHEIM, None)
