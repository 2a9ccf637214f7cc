"""Command-line interface for the team to club migration.

Usage:
    python -m migration.cli status [--json]
    python -m migration.cli validate [--report PATH]
    python -m migration.cli migrate --type {matches,standings,all} [--dry-run] [--force]
    python -m migration.cli rollback --backup-id ID [--force]
    python -m migration.cli cleanup [--type {matches,standings,all}] [--dry-run]
    python -m migration.cli report [--period DAYS] [--json]
    python -m migration.cli history [--limit N]
    python -m migration.cli backups

Exit code is 0 when the command completed, 1 otherwise.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Dict, Any, List

from config.settings import settings, validate_settings
from database.connection import (
    DatabaseConnectionError, DatabaseOperationError, close_database, init_database
)
from .cleanup import CleanupEngine, CleanupResult
from .context import MigrationContext
from .migrate_data import DataMigration, RunResult
from .quality import DataQualityReporter
from .records import MigrationType, RunStatus
from .rollback import RollbackExecutor, RollbackResult
from .utils import MigrationError

logger = logging.getLogger(__name__)

STATUS_ICONS = {
    'completed': '✅',
    'partial': '⚠️',
    'failed': '❌',
    'running': '⏳',
    'pending': '🕓',
}


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Configure root logging with console and optional file output."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )


class MigrationCLI:
    """Command-line interface for migration operations."""

    def __init__(self, context: Optional[MigrationContext] = None):
        """
        Args:
            context: Pre-wired components; when omitted the database is
                initialized from settings and closed afterwards
        """
        self.context = context

    def create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser with all commands and options."""
        parser = argparse.ArgumentParser(
            prog="python -m migration.cli",
            description="Team to club data migration tool",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # Preview the match migration
  python -m migration.cli migrate --type matches --dry-run

  # Migrate everything
  python -m migration.cli migrate --type all

  # Undo a run from its backup
  python -m migration.cli rollback --backup-id matches-migrate-backup-20240101T120000000000Z
            """
        )

        parser.add_argument('--verbose', '-v', action='store_true',
                            help='Enable verbose logging')
        parser.add_argument('--quiet', '-q', action='store_true',
                            help='Enable quiet mode (warnings and errors only)')

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        status_parser = subparsers.add_parser('status', help='Show migration status')
        status_parser.add_argument('--json', action='store_true',
                                   help='Output in JSON format')

        validate_parser = subparsers.add_parser('validate', help='Validate matches and standings')
        validate_parser.add_argument('--report', type=str,
                                     help='Path to save the validation report')

        migrate_parser = subparsers.add_parser('migrate', help='Migrate team references to clubs')
        migrate_parser.add_argument('--type', required=True, dest='migration_type',
                                    choices=['matches', 'standings', 'all'],
                                    help='Records to migrate')
        migrate_parser.add_argument('--dry-run', action='store_true',
                                    help='Validate and show planned changes without writing')
        migrate_parser.add_argument('--force', action='store_true',
                                    help='Migrate even if pre-validation finds errors')

        rollback_parser = subparsers.add_parser('rollback', help='Restore records from a backup')
        rollback_parser.add_argument('--backup-id', required=True, type=str,
                                     help='Backup to restore')
        rollback_parser.add_argument('--force', action='store_true',
                                     help='Overwrite records changed after the backup')

        cleanup_parser = subparsers.add_parser('cleanup', help='Remove orphaned and duplicate records')
        cleanup_parser.add_argument('--type', dest='migration_type', default='all',
                                    choices=['matches', 'standings', 'all'],
                                    help='Records to clean up (default: all)')
        cleanup_parser.add_argument('--dry-run', action='store_true',
                                    help='Only report what would be removed')

        report_parser = subparsers.add_parser('report', help='Generate a data quality report')
        report_parser.add_argument('--period', type=int, default=7,
                                   help='Trend window in days (default: 7)')
        report_parser.add_argument('--json', action='store_true',
                                   help='Output in JSON format')

        history_parser = subparsers.add_parser('history', help='Show recent runs')
        history_parser.add_argument('--limit', type=int, default=20,
                                    help='Number of runs to show (default: 20)')

        subparsers.add_parser('backups', help='List available backups')

        return parser

    async def run(self, argv: Optional[List[str]] = None) -> int:
        """Parse arguments, execute the command and return the exit code."""
        parser = self.create_parser()
        args = parser.parse_args(argv)

        if args.verbose:
            logging.getLogger().setLevel(logging.DEBUG)
        elif args.quiet:
            logging.getLogger().setLevel(logging.WARNING)

        if not args.command:
            parser.print_help()
            return 1

        handler = getattr(self, f"_cmd_{args.command}")
        owns_database = self.context is None
        try:
            if owns_database:
                validate_settings(settings)
                await init_database(settings.get_database_config())
                self.context = MigrationContext.from_settings(settings)
            return await handler(args)
        except KeyboardInterrupt:
            print("\n⚠️  Operation cancelled by user")
            return 1
        except (MigrationError, DatabaseConnectionError, DatabaseOperationError, ValueError) as e:
            logger.error(f"CLI error: {e}")
            print(f"❌ Error: {e}")
            return 1
        finally:
            if owns_database:
                await close_database()
                self.context = None

    async def _cmd_status(self, args) -> int:
        """Execute status command."""
        status = await DataMigration(self.context).get_migration_status()
        status["database"] = await self.context.store.health_check()
        if args.json:
            print(json.dumps(status, indent=2, ensure_ascii=False))
        else:
            self._display_status(status)
        return 0

    async def _cmd_validate(self, args) -> int:
        """Execute validation command."""
        print("🔍 Validating matches and standings...")
        report = await self.context.validator.validate_all()
        data = report.to_dict()
        self._display_validation(data)

        if args.report:
            path = Path(args.report)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding='utf-8')
            print(f"📄 Validation report saved to: {path}")

        return 1 if report.has_errors else 0

    async def _cmd_migrate(self, args) -> int:
        """Execute migration command."""
        migration = DataMigration(self.context)
        mode = "dry run" if args.dry_run else "migration"
        print(f"🚀 Starting {args.migration_type} {mode}...")

        if args.migration_type == 'all':
            results = await migration.run_all(dry_run=args.dry_run, force=args.force)
        else:
            results = {
                args.migration_type: await migration.run(args.migration_type, dry_run=args.dry_run, force=args.force)
            }

        for result in results.values():
            self._display_run_result(result)
        return 0 if all(r.completed for r in results.values()) else 1

    async def _cmd_rollback(self, args) -> int:
        """Execute rollback command."""
        print(f"⏪ Rolling back from {args.backup_id}...")
        result = await RollbackExecutor(self.context).rollback(args.backup_id, force=args.force)
        self._display_rollback_result(result)
        return 0 if result.status == RunStatus.COMPLETED else 1

    async def _cmd_cleanup(self, args) -> int:
        """Execute cleanup command."""
        types = None if args.migration_type == 'all' else [args.migration_type]
        result = await CleanupEngine(self.context).cleanup(types, dry_run=args.dry_run)
        self._display_cleanup_result(result)
        return 0 if result.status == RunStatus.COMPLETED else 1

    async def _cmd_report(self, args) -> int:
        """Execute report command."""
        report = await DataQualityReporter(self.context).generate_report(period_days=args.period)
        if args.json:
            print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
        else:
            self._display_report(report.to_dict())
        return 0

    async def _cmd_history(self, args) -> int:
        """Execute history command."""
        entries = await self.context.history.recent(args.limit)
        print("\n" + "=" * 60)
        print("📋 RUN HISTORY")
        print("=" * 60)
        if not entries:
            print("   No runs recorded yet")
        for entry in entries:
            icon = STATUS_ICONS.get(entry['status'], '❓')
            print(
                f"{icon} {entry['startedAt'][:19]} {entry['operation']:<8} {entry['migrationType']:<10} "
                f"{entry['status']:<9} {entry['reason'] or ''} "
                f"({entry['succeededCount']}/{entry['processedCount']}) {entry['backupId'] or ''}"
            )
        print("=" * 60)
        return 0

    async def _cmd_backups(self, args) -> int:
        """Execute backups command."""
        backups = self.context.backups.list_backups()
        print("\n" + "=" * 60)
        print("💾 BACKUPS")
        print("=" * 60)
        if not backups:
            print("   No backups found")
        for meta in backups:
            print(f"   • {meta['backupId']} - {meta['recordCount']} records (v{meta['version']})")
        print("=" * 60)
        return 0

    def _display_run_result(self, result: RunResult):
        """Display migration results in a formatted way."""
        summary = result.get_summary()
        print("\n" + "=" * 60)
        print(f"📋 {result.migration_type.upper()} {'DRY RUN' if result.dry_run else 'MIGRATION'} RESULTS")
        print("=" * 60)
        print(f"{STATUS_ICONS.get(summary['status'], '❓')} {summary['status'].upper()} ({summary['reason']})")

        print("\n📊 Statistics:")
        print(f"   • Candidates: {result.candidates}")
        print(f"   • Migrated: {result.succeeded}")
        print(f"   • Failed: {result.failed}")
        if summary['durationSeconds'] is not None:
            print(f"   • Duration: {summary['durationSeconds']:.1f} seconds")

        if result.backup_id:
            print(f"\n💾 Backup: {result.backup_id}")

        if result.pre_validation is not None:
            pre = result.pre_validation
            print(f"\n🔍 Pre-validation: {len(pre.errors)} errors, {len(pre.warnings)} warnings")

        if result.failures:
            print(f"\n❌ Failures ({len(result.failures)}):")
            for failure in result.failures[:5]:
                print(f"   • {failure['id']}: {failure['message']}")
            if len(result.failures) > 5:
                print(f"   ... and {len(result.failures) - 5} more")

        if result.dry_run and result.diffs:
            print(f"\n📝 Planned changes ({len(result.diffs)}):")
            for diff in result.diffs[:5]:
                print(f"   • {diff.record_id}: {diff.before} -> {diff.after}")
            if len(result.diffs) > 5:
                print(f"   ... and {len(result.diffs) - 5} more")

        print("=" * 60)

    def _display_rollback_result(self, result: RollbackResult):
        summary = result.get_summary()
        print("\n" + "=" * 60)
        print("⏪ ROLLBACK RESULTS")
        print("=" * 60)
        print(f"{STATUS_ICONS.get(summary['status'], '❓')} {summary['status'].upper()} ({summary['reason']})")
        print(f"   • Restored: {result.restored}")
        print(f"   • Skipped (modified after backup): {result.skipped_dependent_modified}")
        print(f"   • Flagged (statistics changed): {result.flagged}")
        print(f"   • Errors: {result.errors}")
        if summary['preRollbackBackupId']:
            print(f"\n💾 Pre-rollback backup: {summary['preRollbackBackupId']}")
        if result.abandoned_runs:
            print(f"\n🔨 Closed stale runs: {', '.join(result.abandoned_runs)}")
        print("=" * 60)

    def _display_cleanup_result(self, result: CleanupResult):
        print("\n" + "=" * 60)
        print(f"🧹 CLEANUP {'DRY RUN ' if result.dry_run else ''}RESULTS")
        print("=" * 60)
        for migration_type, type_result in result.types.items():
            summary = type_result.get_summary()
            icon = STATUS_ICONS.get(summary['status'], '❓')
            print(f"{icon} {migration_type}: {summary['status']} ({summary['reason']})")
            for category, count in summary['counts'].items():
                print(f"   • {category}: {count}")
            if type_result.skipped:
                print(f"   • kept (other errors): {len(type_result.skipped)}")
            if not result.dry_run:
                print(f"   • deleted: {type_result.deleted}")
            if type_result.backup_id:
                print(f"   💾 Backup: {type_result.backup_id}")
        print("=" * 60)

    def _display_validation(self, data: Dict[str, Any]):
        print("\n" + "=" * 60)
        print("🔍 VALIDATION RESULTS")
        print("=" * 60)
        print(f"Health score: {data['healthScore']:.1f} ({data['healthBand']})")
        print(f"Valid records: {data['valid']}/{data['total']}")
        for part in ('matches', 'standings', 'cross'):
            section = data[part]
            icon = "✅" if section['errors'] == 0 else "❌"
            print(f"{icon} {part}: {section['errors']} errors, {section['warnings']} warnings")

        issues = data['issues']
        if issues:
            print(f"\nIssues ({len(issues)}):")
            for issue in issues[:10]:
                print(f"   • [{issue['severity']}] {issue['type']}: {issue['message']}")
            if len(issues) > 10:
                print(f"   ... and {len(issues) - 10} more")
        print("=" * 60)

    def _display_report(self, data: Dict[str, Any]):
        print("\n" + "=" * 60)
        print("📊 DATA QUALITY REPORT")
        print("=" * 60)
        print(f"Health score: {data['healthScore']:.1f} ({data['healthBand']})")
        for migration_type in MigrationType:
            stats = data[migration_type.value]
            print(
                f"   • {migration_type.value}: {stats['migrated']}/{stats['total']} migrated "
                f"({stats['progressPct']:.1f}%), {stats['remaining']} remaining"
            )

        if data['issues']:
            print("\nIssues:")
            for group in data['issues']:
                print(f"   • {group['type']} ({group['count']}): {group['description']}")

        if data['recommendations']:
            print("\nRecommendations:")
            for rec in data['recommendations']:
                print(f"   [{rec['priority']}] {rec['action']}")

        trend = data['trend']
        if trend.get('previousGenerated'):
            print(f"\nTrend since {trend['previousGenerated'][:19]}: {trend['healthScoreDelta']:+.1f} health")
        if trend.get('runs'):
            runs = ", ".join(f"{status}: {count}" for status, count in sorted(trend['runs'].items()))
            print(f"Runs in the last {data['periodDays']} days: {runs}")
        print("=" * 60)

    def _display_status(self, status: Dict[str, Any]):
        """Display migration status."""
        print("\n" + "=" * 60)
        print("📊 MIGRATION STATUS")
        print("=" * 60)

        database = status.get("database") or {}
        db_icon = "✅" if database.get("status") == "healthy" else "❌"
        print(f"{db_icon} database: {database.get('status', 'unknown')} ({database.get('response_time', '-')})")

        for migration_type in MigrationType:
            info = status[migration_type.value]
            icon = STATUS_ICONS.get(info['state'], '❓')
            print(
                f"{icon} {migration_type.value}: {info['state']} - {info['migrated']}/{info['total']} "
                f"migrated ({info['progressPct']:.1f}%), {info['remaining']} remaining"
            )

        if status['locks']:
            print("\n🔒 Held locks:")
            for lock in status['locks']:
                print(f"   • {lock['lockName']} by run {lock['holderRunId']} since {lock['acquiredAt'][:19]}")

        recent = status['recentHistory']
        if recent:
            print("\n📋 Recent runs:")
            for entry in recent[:5]:
                icon = STATUS_ICONS.get(entry['status'], '❓')
                print(
                    f"   {icon} {entry['startedAt'][:19]} - {entry['operation']} {entry['migrationType']} "
                    f"{entry['status']} ({entry['succeededCount']}/{entry['processedCount']})"
                )

        print("=" * 60)


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    setup_logging(settings.log_level, settings.log_file)
    return await MigrationCLI().run(argv)


def run():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
