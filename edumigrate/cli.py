#!/usr/bin/env python3
"""
edumigrate - Migration and Backup CLI
=====================================
Command-line entry point for the MongoDB -> SQLite migration and the
SQLite backup/restore tooling.

Usage Examples:
    # Migrate from the live MongoDB (MONGODB_URI / MONGODB_DATABASE)
    edumigrate migrate

    # Migrate from an extended-JSON export directory
    edumigrate migrate --from-export ./backups/source-20241201_143022

    # Backups
    edumigrate backup                  # full backup
    edumigrate backup --db-only --cloud
    edumigrate restore backup_20241201_143022 --db-only

    # Maintenance
    edumigrate cleanup --dry-run
    edumigrate status
    edumigrate list --local

Exit status is 0 on success, 1 on any failure, 2 on usage errors.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AppConfig, load_config
from .exceptions import EduMigrateError
from .migration.backup import BackupCategory, SnapshotManager
from .migration.cloud import CloudStorage
from .migration.orchestrator import MigrationOrchestrator
from .migration.source import JsonExportSource, MongoSource
from .utils import format_duration, format_file_size

logger = logging.getLogger(__name__)

console = Console()


def _snapshots(config: AppConfig, database_path: Optional[str] = None) -> SnapshotManager:
    snapshots = SnapshotManager.from_config(config.backup)
    if database_path:
        snapshots.database_path = Path(database_path)
    return snapshots


def _cloud(config: AppConfig) -> Optional[CloudStorage]:
    if not config.backup.cloud_backup_path:
        return None
    return CloudStorage(config.backup.cloud_backup_path, max_backups=config.backup.max_cloud_backups)


def _scope(args: argparse.Namespace) -> str:
    if getattr(args, 'db_only', False):
        return "database"
    if getattr(args, 'files_only', False):
        return "files"
    return "full"


def cmd_migrate(args: argparse.Namespace, config: AppConfig) -> int:
    """Run a full migration."""
    migration = config.migration
    if args.sqlite:
        migration.sqlite_path = args.sqlite
    if args.no_export:
        migration.export_source = False
    if args.no_snapshot:
        migration.snapshot_before_migrate = False
    if args.verify_checksums:
        migration.verify_checksums = True

    if args.from_export:
        source = JsonExportSource(args.from_export)
        logger.info(f"Source: export directory {args.from_export}")
    else:
        source = MongoSource(migration.mongodb_uri, migration.mongodb_database)

    # Pre-migration snapshots share the backup root so restore and cleanup see them
    snapshots = _snapshots(config, migration.sqlite_path) if migration.snapshot_before_migrate else None
    orchestrator = MigrationOrchestrator(source, migration.sqlite_path, migration, snapshots=snapshots)
    result = orchestrator.run()

    if result.verification:
        result.verification.print_report(console)

    if result.success:
        console.print(f"✅ {result.message} in {format_duration(result.duration_seconds)}")
        return 0

    console.print(f"❌ {result.message}")
    if result.cause:
        console.print(f"   cause: {result.cause.value}, phase: {result.failed_phase.value}")
    return 1


def cmd_backup(args: argparse.Namespace, config: AppConfig) -> int:
    """Create a backup and optionally upload it."""
    snapshots = _snapshots(config)
    scope = _scope(args)
    path = snapshots.create_backup(scope, name=args.name)

    if path is None:
        console.print("❌ No files archive was produced")
        return 1
    console.print(f"✅ Backup created: {path}")

    if args.cloud:
        cloud = _cloud(config)
        if cloud is None:
            console.print("❌ CLOUD_BACKUP_PATH is not configured")
            return 1
        cloud.upload(path)
        console.print(f"✅ Uploaded to {cloud.location}")
    return 0


def cmd_restore(args: argparse.Namespace, config: AppConfig) -> int:
    """Restore a backup by name."""
    snapshots = _snapshots(config)
    scope = _scope(args)
    logger.warning("Stop the application before restoring; writers are not paused automatically")
    snapshots.restore(args.name, scope)
    console.print(f"✅ Restored {scope} from {args.name}")
    return 0


def cmd_cleanup(args: argparse.Namespace, config: AppConfig) -> int:
    """Apply the retention policy."""
    snapshots = _snapshots(config)
    removed = snapshots.cleanup(keep=args.keep, dry_run=args.dry_run)
    verb = "Would delete" if args.dry_run else "Deleted"
    console.print(f"{verb} {len(removed)} local backups")

    if args.cloud:
        cloud = _cloud(config)
        if cloud is None:
            console.print("❌ CLOUD_BACKUP_PATH is not configured")
            return 1
        removed_cloud = cloud.cleanup(dry_run=args.dry_run)
        console.print(f"{verb} {len(removed_cloud)} cloud backups")
    return 0


def cmd_status(args: argparse.Namespace, config: AppConfig) -> int:
    """Show live store and backup statistics."""
    info = _snapshots(config).status()

    console.print("[bold]EduTech ChatBot Backup Status[/bold]")
    database = info['database']
    if database:
        console.print(f"Database: {format_file_size(database['size'])} (modified: {database['modified']})")
    else:
        console.print("Database: Not found")

    files = info['files']
    if files:
        console.print(f"Files: {files['count']} files, {format_file_size(files['size'])}")
    else:
        console.print("Files: Directory not found")

    table = Table(title="Local Backups")
    table.add_column("Category")
    table.add_column("Count", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Latest")
    for category, stats in info['backups'].items():
        table.add_row(category, str(stats['count']), format_file_size(stats['size']),
                      stats['latest'] or "-")
    console.print(table)

    if info['safety_copies']:
        console.print(f"Pre-restore copies: {len(info['safety_copies'])} (pruned by cleanup)")
    return 0


def cmd_list(args: argparse.Namespace, config: AppConfig) -> int:
    """List local and/or cloud backups."""
    show_local = args.local or not args.cloud
    show_cloud = args.cloud or (not args.local and bool(config.backup.cloud_backup_path))

    if show_local:
        snapshots = _snapshots(config)
        for category in BackupCategory:
            table = Table(title=f"{category.value} backups")
            table.add_column("Name")
            table.add_column("Size", justify="right")
            table.add_column("Created")
            for entry in snapshots.list_backups(category):
                table.add_row(
                    entry.name,
                    format_file_size(entry.size),
                    entry.modified.strftime("%Y-%m-%d %H:%M:%S"),
                )
            console.print(table)

    if show_cloud:
        cloud = _cloud(config)
        if cloud is None:
            console.print("❌ CLOUD_BACKUP_PATH is not configured")
            return 1
        table = Table(title=f"Cloud backups ({cloud.location})")
        table.add_column("Key")
        table.add_column("Size", justify="right")
        table.add_column("Uploaded")
        for obj in reversed(cloud.list_objects()):
            table.add_row(obj.key, format_file_size(obj.size), f"{obj.date} {obj.time}")
        console.print(table)
    return 0


COMMANDS = {
    'migrate': cmd_migrate,
    'backup': cmd_backup,
    'restore': cmd_restore,
    'cleanup': cmd_cleanup,
    'status': cmd_status,
    'list': cmd_list,
}


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='edumigrate',
        description='EduTech MongoDB -> SQLite migration and backup tooling',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--env-file', help='dotenv file to load (default: .env search)')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: INFO)')

    subparsers = parser.add_subparsers(dest='command', help='Action to execute')

    migrate_parser = subparsers.add_parser('migrate', help='Migrate MongoDB data into SQLite')
    migrate_parser.add_argument('--from-export', metavar='DIR',
                                help='Read from an extended-JSON export instead of MongoDB')
    migrate_parser.add_argument('--sqlite', metavar='PATH', help='Target SQLite file')
    migrate_parser.add_argument('--no-export', action='store_true',
                                help='Skip the source export before migrating')
    migrate_parser.add_argument('--no-snapshot', action='store_true',
                                help='Skip the pre-migration snapshot of the target')
    migrate_parser.add_argument('--verify-checksums', action='store_true',
                                help='Also compare content checksums per kind')

    backup_parser = subparsers.add_parser('backup', help='Create a backup')
    backup_scope = backup_parser.add_mutually_exclusive_group()
    backup_scope.add_argument('--full', action='store_true', help='Database + files + metadata (default)')
    backup_scope.add_argument('--db-only', action='store_true', help='Database only')
    backup_scope.add_argument('--files-only', action='store_true', help='Files only')
    backup_parser.add_argument('--cloud', action='store_true', help='Upload to CLOUD_BACKUP_PATH')
    backup_parser.add_argument('--name', help='Backup name (default: backup_<timestamp>)')

    restore_parser = subparsers.add_parser('restore', help='Restore a backup')
    restore_parser.add_argument('name', help='Backup name, e.g. backup_20241201_143022')
    restore_scope = restore_parser.add_mutually_exclusive_group()
    restore_scope.add_argument('--db-only', action='store_true', help='Restore database only')
    restore_scope.add_argument('--files-only', action='store_true', help='Restore files only')

    cleanup_parser = subparsers.add_parser('cleanup', help='Delete backups beyond the retention limit')
    cleanup_parser.add_argument('--dry-run', action='store_true', help='Show what would be deleted')
    cleanup_parser.add_argument('--keep', type=int, help='Backups kept per category (default: MAX_LOCAL_BACKUPS)')
    cleanup_parser.add_argument('--cloud', action='store_true', help='Also prune cloud backups')

    subparsers.add_parser('status', help='Show backup status')

    list_parser = subparsers.add_parser('list', help='List available backups')
    list_where = list_parser.add_mutually_exclusive_group()
    list_where.add_argument('--local', action='store_true', help='Local backups only')
    list_where.add_argument('--cloud', action='store_true', help='Cloud backups only')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 2

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = load_config(args.env_file)
        return COMMANDS[args.command](args, config)
    except EduMigrateError as e:
        logger.error(str(e))
        console.print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
