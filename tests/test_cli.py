"""Tests for the command-line interface."""

import json

import pytest

from config.settings import validate_settings
from migration.cli import MigrationCLI

from conftest import TEAM_ERSTE, TEAM_HUNDHEIM, TEAM_KREUZWERTHEIM, MISSING_TEAM, VIKTORIA


@pytest.fixture
def cli(context):
    return MigrationCLI(context)


class TestParser:

    def test_migrate_arguments(self):
        args = MigrationCLI().create_parser().parse_args(["migrate", "--type", "all", "--dry-run"])
        assert (args.command, args.migration_type, args.dry_run, args.force) == ("migrate", "all", True, False)

    def test_migrate_requires_type(self):
        with pytest.raises(SystemExit):
            MigrationCLI().create_parser().parse_args(["migrate"])

    def test_rejects_unknown_type(self):
        with pytest.raises(SystemExit):
            MigrationCLI().create_parser().parse_args(["cleanup", "--type", "players"])

    def test_defaults(self):
        parser = MigrationCLI().create_parser()
        assert parser.parse_args(["report"]).period == 7
        assert parser.parse_args(["history"]).limit == 20
        assert parser.parse_args(["cleanup"]).migration_type == "all"


class TestCommands:

    async def test_migrate_completed(self, cli, make_match, capsys):
        await make_match(TEAM_ERSTE, TEAM_KREUZWERTHEIM)

        assert await cli.run(["migrate", "--type", "matches"]) == 0
        assert "COMPLETED" in capsys.readouterr().out

    async def test_migrate_partial_exits_with_error(self, cli, store, make_match):
        await store.clubs.update_fields(VIKTORIA, {"active": False})
        await make_match(TEAM_ERSTE, TEAM_KREUZWERTHEIM)
        await make_match(TEAM_KREUZWERTHEIM, TEAM_HUNDHEIM)

        assert await cli.run(["migrate", "--type", "matches"]) == 1

    async def test_validation_errors_block_migration(self, cli, make_match):
        await make_match(MISSING_TEAM, TEAM_KREUZWERTHEIM)

        assert await cli.run(["migrate", "--type", "all"]) == 1

    async def test_status_json(self, cli, make_match, capsys):
        await make_match(TEAM_ERSTE, TEAM_KREUZWERTHEIM)

        assert await cli.run(["status", "--json"]) == 0
        status = json.loads(capsys.readouterr().out)
        assert status["matches"]["remaining"] == 1
        assert status["database"]["status"] == "healthy"

    async def test_validate_writes_report(self, cli, make_match, tmp_path):
        await make_match(MISSING_TEAM, TEAM_KREUZWERTHEIM)
        report_path = tmp_path / "reports" / "validation.json"

        assert await cli.run(["validate", "--report", str(report_path)]) == 1
        report = json.loads(report_path.read_text(encoding="utf-8"))
        assert report["errors"] == 1

    async def test_rollback_unknown_backup(self, cli, capsys):
        assert await cli.run(["rollback", "--backup-id", "nope"]) == 1
        assert "Backup not found" in capsys.readouterr().out

    async def test_rollback_after_migration(self, cli, context, make_match):
        await make_match(TEAM_ERSTE, TEAM_KREUZWERTHEIM)
        await cli.run(["migrate", "--type", "matches"])
        backup_id = context.backups.list_backups()[0]["backupId"]

        assert await cli.run(["rollback", "--backup-id", backup_id]) == 0

    async def test_cleanup_report_history_backups(self, cli, make_match, capsys):
        await make_match(MISSING_TEAM, TEAM_KREUZWERTHEIM)

        assert await cli.run(["cleanup"]) == 0
        assert await cli.run(["report", "--period", "3"]) == 0
        assert await cli.run(["history", "--limit", "5"]) == 0
        assert await cli.run(["backups"]) == 0
        out = capsys.readouterr().out
        assert "CLEANUP RESULTS" in out
        assert "DATA QUALITY REPORT" in out
        assert "matches-cleanup-backup-" in out

    async def test_no_command(self, cli):
        assert await cli.run([]) == 1

    async def test_status_display(self, cli, capsys):
        assert await cli.run(["status"]) == 0
        out = capsys.readouterr().out
        assert "MIGRATION STATUS" in out
        assert "database: healthy" in out


class TestSettingsValidation:

    def test_valid_settings(self, settings):
        validate_settings(settings)

    def test_empty_mapping_needs_name_fallback(self, settings):
        validate_settings(settings.model_copy(update={"team_club_mapping": {}}))

        with pytest.raises(ValueError):
            validate_settings(settings.model_copy(update={"team_club_mapping": {}, "mapping_name_fallback": False}))
