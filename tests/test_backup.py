"""Tests for snapshots and restore."""

import json
import re
from datetime import timedelta
from types import SimpleNamespace

import pytest

from database.models import utcnow
from migration.backup import (
    BACKUP_FORMAT_VERSION, RestoreOutcome, is_dependent_modified, versions_compatible,
)
from migration.utils import BackupError, NotFoundError, VersionIncompatibleError

from conftest import HUNDHEIM, KREUZWERTHEIM, TEAM_HUNDHEIM, TEAM_KREUZWERTHEIM


def rewrite_backup(context, backup_id, mutate):
    path = context.backups.backup_dir / f"{backup_id}.json"
    data = json.loads(path.read_text(encoding="utf-8"))
    mutate(data)
    path.write_text(json.dumps(data), encoding="utf-8")


class TestSnapshot:

    async def test_snapshot_file(self, context, make_match):
        first = await make_match(TEAM_KREUZWERTHEIM, TEAM_HUNDHEIM)
        second = await make_match(TEAM_HUNDHEIM, TEAM_KREUZWERTHEIM)

        snapshot = await context.backups.snapshot("matches", [first.id, second.id])

        assert re.fullmatch(r"matches-migrate-backup-\d{8}T\d{12}Z", snapshot.backup_id)
        path = context.backups.backup_dir / f"{snapshot.backup_id}.json"
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["metadata"]["recordCount"] == len(data["data"]["matches"]) == 2
        assert data["metadata"]["version"] == BACKUP_FORMAT_VERSION
        assert data["metadata"]["operation"] == "migrate"
        assert data["data"]["matches"][0]["home_team_id"] == TEAM_KREUZWERTHEIM

    async def test_load(self, context, make_entry):
        entry = await make_entry("TSV Kreuzwertheim", team_id=TEAM_KREUZWERTHEIM, points=12)
        snapshot = await context.backups.snapshot("standings", [entry.id], "cleanup")

        loaded = context.backups.load(snapshot.backup_id)

        assert loaded.collection == "standings_entries"
        assert loaded.operation == "cleanup"
        assert loaded.record_ids == [entry.id]
        assert loaded.payload[0]["points"] == 12
        assert context.backups.exists(snapshot.backup_id)

    async def test_missing_backup(self, context):
        with pytest.raises(NotFoundError):
            context.backups.load("matches-migrate-backup-19700101T000000000000Z")

    async def test_count_mismatch(self, context, make_match):
        match = await make_match(TEAM_KREUZWERTHEIM, TEAM_HUNDHEIM)
        snapshot = await context.backups.snapshot("matches", [match.id])
        rewrite_backup(context, snapshot.backup_id, lambda d: d["metadata"].update(recordCount=5))

        with pytest.raises(BackupError):
            context.backups.load(snapshot.backup_id)

    async def test_list_backups_newest_first(self, context, make_match):
        match = await make_match(TEAM_KREUZWERTHEIM, TEAM_HUNDHEIM)
        older = await context.backups.snapshot("matches", [match.id])
        newer = await context.backups.snapshot("matches", [match.id], "cleanup")
        (context.backups.backup_dir / "broken.json").write_text("{", encoding="utf-8")

        backups = context.backups.list_backups()

        assert [b["backupId"] for b in backups] == [newer.backup_id, older.backup_id]


class TestRestoreRules:

    def test_version_compatibility(self):
        assert versions_compatible("1.0")
        assert versions_compatible("1.4")
        assert not versions_compatible("2.0")

    def test_dependent_modification(self):
        snapshot_time = utcnow()
        later = snapshot_time + timedelta(minutes=5)

        untouched = SimpleNamespace(updated_at=snapshot_time - timedelta(minutes=1), system_write_at=None)
        system_write = SimpleNamespace(updated_at=later, system_write_at=later)
        outside_write = SimpleNamespace(updated_at=later, system_write_at=None)
        after_system = SimpleNamespace(updated_at=later + timedelta(seconds=1), system_write_at=later)

        assert not is_dependent_modified(untouched, snapshot_time)
        assert not is_dependent_modified(system_write, snapshot_time)
        assert is_dependent_modified(outside_write, snapshot_time)
        assert is_dependent_modified(after_system, snapshot_time)

    async def test_restore_writes_fields_back(self, context, store, make_match):
        match = await make_match(TEAM_KREUZWERTHEIM, TEAM_HUNDHEIM)
        snapshot = await context.backups.snapshot("matches", [match.id])
        await store.matches.apply_system_update(match.id, {
            "home_team_id": None, "away_team_id": None,
            "home_club_id": KREUZWERTHEIM, "away_club_id": HUNDHEIM,
            "last_migration_at": utcnow(),
        })

        result = await context.backups.restore(snapshot.backup_id)

        assert result.restored == 1
        assert result.pre_rollback_backup_id is not None
        restored = await store.matches.get_by_id(match.id)
        assert (restored.home_team_id, restored.away_team_id) == (TEAM_KREUZWERTHEIM, TEAM_HUNDHEIM)
        assert restored.home_club_id is None and restored.away_club_id is None
        assert restored.last_migration_at is None

    async def test_write_during_snapshot_read_is_kept(self, context, store, make_match, monkeypatch):
        match = await make_match(TEAM_KREUZWERTHEIM, TEAM_HUNDHEIM)
        read = store.matches.get_many

        async def read_then_edit(ids):
            rows = await read(ids)
            await store.matches.update_fields(match.id, {"home_score": 3, "updated_at": utcnow()})
            return rows

        monkeypatch.setattr(store.matches, "get_many", read_then_edit)
        snapshot = await context.backups.snapshot("matches", [match.id])
        monkeypatch.undo()

        result = await context.backups.restore(snapshot.backup_id)

        assert [o.outcome for o in result.outcomes] == [RestoreOutcome.SKIPPED_DEPENDENT_MODIFIED]
        assert (await store.matches.get_by_id(match.id)).home_score == 3

    async def test_incompatible_version(self, context, make_match):
        match = await make_match(TEAM_KREUZWERTHEIM, TEAM_HUNDHEIM)
        snapshot = await context.backups.snapshot("matches", [match.id])
        rewrite_backup(context, snapshot.backup_id, lambda d: d["metadata"].update(version="2.0"))

        with pytest.raises(VersionIncompatibleError):
            await context.backups.restore(snapshot.backup_id)

        result = await context.backups.restore(snapshot.backup_id, force=True)
        assert [o.outcome for o in result.outcomes] == [RestoreOutcome.RESTORED]
