"""
Snapshot Manager
================

Creates, validates, retains and restores point-in-time copies of the SQLite
store and its file assets.

Layout under the backup root::

    database/<name>.db        SQLite online-backup copy, integrity checked
    files/<name>.tar.gz       archive of the files directory
    full/<name>.tar.gz        <name>/{<name>.db, <name>.tar.gz, metadata.json}

Guarantees:
- A backup that fails ``PRAGMA integrity_check`` is deleted, never kept.
- A restore first copies the live store aside (``<db>.pre-restore-<ts>``);
  if the restored store fails its check the safety copy is put back.

Callers must pause writers for the duration of a backup or restore; the
manager does not lock the store itself.
"""

import json
import logging
import re
import shutil
import socket
import sqlite3
import subprocess
import tarfile
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from ..exceptions import (
    BackupCorruptedError,
    ConfigurationError,
    BackupError,
    BackupNotFoundError,
    RestoreError,
)
from ..utils import directory_size, generate_backup_name, timestamp
from . import target

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_TIMESTAMP_RE = re.compile(r'(\d{8}_\d{6})$')


class BackupCategory(str, Enum):
    """Backup categories, each retained independently."""

    DATABASE = "database"
    FILES = "files"
    FULL = "full"

    @property
    def suffix(self) -> str:
        return ".db" if self == BackupCategory.DATABASE else ".tar.gz"


class RestoreScope(str, Enum):
    DATABASE = "database"
    FILES = "files"
    FULL = "full"


@dataclass
class BackupMetadata:
    """Descriptor stored as metadata.json inside a full backup."""
    backup_name: str
    created_at: str
    type: str = "full"
    database_size: int = 0
    files_size: int = 0
    hostname: str = ""
    project_version: str = "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'backup_name': self.backup_name,
            'created_at': self.created_at,
            'type': self.type,
            'database_size': self.database_size,
            'files_size': self.files_size,
            'hostname': self.hostname,
            'project_version': self.project_version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BackupMetadata':
        return cls(**data)

    def save(self, filepath: Path) -> None:
        """Save metadata to JSON file."""
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, filepath: Path) -> Optional['BackupMetadata']:
        """Load metadata from JSON file."""
        if not filepath.exists():
            return None
        with open(filepath, 'r') as f:
            return cls.from_dict(json.load(f))


@dataclass
class BackupEntry:
    """A backup artifact found on disk."""
    name: str
    category: BackupCategory
    path: Path
    size: int
    modified: datetime

    @property
    def sort_key(self) -> str:
        match = _TIMESTAMP_RE.search(self.name)
        stamp = match.group(1) if match else timestamp(self.modified)
        return f"{stamp}|{self.name}"


def _remove_database_file(path: Path) -> None:
    """Delete a SQLite file together with its WAL and shared-memory sidecars."""
    for candidate in (path, Path(f"{path}-wal"), Path(f"{path}-shm")):
        if candidate.exists():
            candidate.unlink()


def detect_project_version(project_path: Optional[PathLike]) -> str:
    """Short git revision of the deployed project, or ``unknown``."""
    if not project_path:
        return "unknown"
    try:
        result = subprocess.run(
            ["git", "-C", str(project_path), "rev-parse", "--short", "HEAD"],
            capture_output=True, text=True, timeout=10,
        )
    except (OSError, subprocess.SubprocessError):
        return "unknown"
    return result.stdout.strip() if result.returncode == 0 and result.stdout.strip() else "unknown"


class SnapshotManager:
    """
    Manages database and file backups of the live application store.

    Args:
        database_path: Live SQLite database
        files_path: Live file-asset directory
        backup_root: Directory holding the category subdirectories
        max_backups: Backups retained per category by cleanup()
        project_path: Deployed project checkout (for the version marker)
    """

    def __init__(
        self,
        database_path: PathLike,
        files_path: PathLike,
        backup_root: PathLike,
        max_backups: int = 30,
        project_path: Optional[PathLike] = None,
    ):
        self.database_path = Path(database_path)
        self.files_path = Path(files_path)
        self.backup_root = Path(backup_root)
        self.max_backups = max_backups
        self.project_path = project_path

    @classmethod
    def from_config(cls, config) -> 'SnapshotManager':
        """Build from a BackupConfig."""
        return cls(
            database_path=config.database_path,
            files_path=config.files_path,
            backup_root=config.backup_base_path,
            max_backups=config.max_local_backups,
            project_path=config.project_path,
        )

    def ensure_dirs(self) -> None:
        for category in BackupCategory:
            (self.backup_root / category.value).mkdir(parents=True, exist_ok=True)
        (self.backup_root / "logs").mkdir(parents=True, exist_ok=True)

    def path_for(self, category: BackupCategory, name: str) -> Path:
        return self.backup_root / category.value / f"{name}{category.suffix}"

    def check_integrity(self, path: PathLike) -> bool:
        """Store-native consistency check of a database file."""
        return target.integrity_check(path)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_database_backup(self, name: Optional[str] = None) -> Path:
        """
        Checkpoint the live store, copy it with the online backup API and
        verify the copy.

        Raises:
            BackupError: the live database does not exist or the name is taken
            BackupCorruptedError: the copy failed its integrity check (deleted)
        """
        name = name or generate_backup_name()
        self.ensure_dirs()
        backup_path = self.path_for(BackupCategory.DATABASE, name)

        if not self.database_path.exists():
            raise BackupError(f"Database not found: {self.database_path}")
        if backup_path.exists():
            raise BackupError(f"Backup already exists: {backup_path}")

        logger.info(f"Creating database backup: {name}")
        target.checkpoint(self.database_path)
        target.copy_database(self.database_path, backup_path)

        if not self.check_integrity(backup_path):
            _remove_database_file(backup_path)
            raise BackupCorruptedError(
                f"Database backup {name} failed integrity check and was deleted"
            )

        logger.info(f"Database backup verified: {backup_path.name}")
        return backup_path

    def create_files_backup(self, name: Optional[str] = None) -> Optional[Path]:
        """
        Archive the files directory.

        Best effort: a missing directory or archive failure is logged as a
        warning and None is returned.
        """
        name = name or generate_backup_name()
        self.ensure_dirs()
        backup_path = self.path_for(BackupCategory.FILES, name)

        if not self.files_path.is_dir():
            logger.warning(f"Files directory not found: {self.files_path}")
            return None

        logger.info(f"Creating files backup: {name}")
        try:
            with tarfile.open(backup_path, 'w:gz') as tar:
                tar.add(self.files_path, arcname=self.files_path.name)
        except (OSError, tarfile.TarError) as e:
            logger.warning(f"Files backup failed: {e}")
            if backup_path.exists():
                backup_path.unlink()
            return None

        logger.info(f"Files backup created: {backup_path.name}")
        return backup_path

    def create_full_backup(self, name: Optional[str] = None) -> Path:
        """Database backup + files archive + metadata, bundled as one archive."""
        name = name or generate_backup_name()
        self.ensure_dirs()
        full_path = self.path_for(BackupCategory.FULL, name)
        if full_path.exists():
            raise BackupError(f"Backup already exists: {full_path}")

        logger.info(f"Creating full backup: {name}")
        db_backup = self.create_database_backup(name)
        files_backup = self.create_files_backup(name)

        staging = self.backup_root / BackupCategory.FULL.value / name
        staging.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copy2(db_backup, staging / db_backup.name)
            if files_backup:
                shutil.copy2(files_backup, staging / files_backup.name)

            metadata = BackupMetadata(
                backup_name=name,
                created_at=datetime.now().astimezone().isoformat(timespec='seconds'),
                type="full",
                database_size=db_backup.stat().st_size,
                files_size=files_backup.stat().st_size if files_backup else 0,
                hostname=socket.gethostname(),
                project_version=detect_project_version(self.project_path),
            )
            metadata.save(staging / "metadata.json")

            with tarfile.open(full_path, 'w:gz') as tar:
                tar.add(staging, arcname=name)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        logger.info(f"Full backup created: {full_path.name}")
        return full_path

    def create_backup(self, scope: str = "full", name: Optional[str] = None) -> Optional[Path]:
        """Dispatch on backup scope: full, database or files."""
        scope = RestoreScope(scope)
        if scope == RestoreScope.DATABASE:
            return self.create_database_backup(name)
        if scope == RestoreScope.FILES:
            return self.create_files_backup(name)
        return self.create_full_backup(name)

    def read_metadata(self, name: str) -> Optional[BackupMetadata]:
        """Metadata descriptor of a full backup."""
        full_path = self.path_for(BackupCategory.FULL, name)
        if not full_path.exists():
            raise BackupNotFoundError(f"Full backup not found: {full_path}")
        with self._extract_member(full_path, f"{name}/metadata.json") as extracted:
            return BackupMetadata.load(extracted) if extracted else None

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    @contextmanager
    def _extract_member(self, archive: Path, member: str) -> Iterator[Optional[Path]]:
        """Extract one member of a full-backup archive into a temp dir."""
        with tempfile.TemporaryDirectory(dir=self.backup_root) as tmp:
            with tarfile.open(archive, 'r:gz') as tar:
                found = member in tar.getnames()
                if found:
                    tar.extract(member, path=tmp, filter='data')
            yield Path(tmp) / member if found else None

    @contextmanager
    def _locate(self, category: BackupCategory, name: str) -> Iterator[Path]:
        """Path of the *category* artifact for *name*, looking inside full/ too."""
        direct = self.path_for(category, name)
        if direct.exists():
            yield direct
            return

        full_path = self.path_for(BackupCategory.FULL, name)
        if full_path.exists():
            member = f"{name}/{name}{category.suffix}"
            with self._extract_member(full_path, member) as extracted:
                if extracted is not None:
                    yield extracted
                    return

        raise BackupNotFoundError(f"{category.value} backup not found: {name}")

    def restore_database(self, name: str) -> Optional[Path]:
        """
        Replace the live database with backup *name*.

        Returns:
            Path of the pre-restore safety copy (None if there was no live store)

        Raises:
            BackupNotFoundError: no database artifact for *name*
            RestoreError: the restore failed and the live store was rolled back
        """
        with self._locate(BackupCategory.DATABASE, name) as backup_path:
            if not self.check_integrity(backup_path):
                raise RestoreError(f"Backup {name} failed integrity check; live store untouched")

            logger.info(f"Restoring database from: {name}")
            safety_path = None
            if self.database_path.exists():
                safety_path = self.database_path.with_name(
                    f"{self.database_path.name}.pre-restore-{timestamp()}"
                )
                target.checkpoint(self.database_path)
                target.copy_database(self.database_path, safety_path)
                logger.info(f"Current database backed up to: {safety_path}")

            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            error = None
            try:
                target.copy_database(backup_path, self.database_path)
            except (sqlite3.Error, OSError) as e:
                error = str(e)

            if error is None and self.check_integrity(self.database_path):
                logger.info("Database restored successfully")
                return safety_path

        logger.error("Restored database integrity check failed, rolling back...")
        self._rollback_database(safety_path)
        raise RestoreError(
            f"Restore of {name} failed ({error or 'integrity check failed'}); "
            f"live store rolled back"
        )

    def _rollback_database(self, safety_path: Optional[Path]) -> None:
        if safety_path is None:
            # There was no live store before; leave none behind
            _remove_database_file(self.database_path)
            return
        target.copy_database(safety_path, self.database_path)
        if not self.check_integrity(self.database_path):
            logger.error(f"Rollback copy failed integrity check; safety copy kept at {safety_path}")
        else:
            logger.info(f"Rolled back to pre-restore copy {safety_path.name}")

    def restore_files(self, name: str) -> Optional[Path]:
        """
        Replace the live files directory with archive *name*.

        Returns:
            Path the previous directory was moved to (None if there was none)
        """
        with self._locate(BackupCategory.FILES, name) as archive:
            logger.info(f"Restoring files from: {name}")
            parent = self.files_path.parent
            parent.mkdir(parents=True, exist_ok=True)

            aside = None
            if self.files_path.exists():
                aside = self.files_path.with_name(
                    f"{self.files_path.name}.pre-restore-{timestamp()}"
                )
                self.files_path.rename(aside)
                logger.info(f"Current files backed up to: {aside}")

            try:
                with tempfile.TemporaryDirectory(dir=parent) as tmp:
                    with tarfile.open(archive, 'r:gz') as tar:
                        tar.extractall(path=tmp, filter='data')
                    roots = list(Path(tmp).iterdir())
                    if len(roots) != 1 or not roots[0].is_dir():
                        raise RestoreError(f"Files archive {name} has unexpected layout")
                    roots[0].rename(self.files_path)
            except (OSError, tarfile.TarError, RestoreError) as e:
                if self.files_path.exists():
                    shutil.rmtree(self.files_path)
                if aside is not None:
                    aside.rename(self.files_path)
                raise RestoreError(f"Files restore of {name} failed: {e}") from e

        logger.info("Files restored successfully")
        return aside

    def restore(self, name: str, scope: str = "full") -> None:
        """Restore *name*: database, files, or both (database first)."""
        scope = RestoreScope(scope)
        if scope in (RestoreScope.DATABASE, RestoreScope.FULL):
            self.restore_database(name)
        if scope == RestoreScope.FILES:
            self.restore_files(name)
        elif scope == RestoreScope.FULL:
            try:
                self.restore_files(name)
            except BackupNotFoundError:
                logger.warning(f"No files archive in backup {name}; files left as they are")

    # ------------------------------------------------------------------
    # Listing and retention
    # ------------------------------------------------------------------

    def list_backups(self, category: Optional[BackupCategory] = None) -> List[BackupEntry]:
        """Backups on disk, newest first."""
        categories = [category] if category else list(BackupCategory)
        entries = []
        for cat in categories:
            directory = self.backup_root / cat.value
            if not directory.is_dir():
                continue
            for path in directory.iterdir():
                if not path.is_file() or not path.name.endswith(cat.suffix):
                    continue
                stat = path.stat()
                entries.append(BackupEntry(
                    name=path.name[:-len(cat.suffix)],
                    category=cat,
                    path=path,
                    size=stat.st_size,
                    modified=datetime.fromtimestamp(stat.st_mtime),
                ))
        entries.sort(key=lambda e: e.sort_key, reverse=True)
        return entries

    def list_safety_copies(self) -> List[Path]:
        """Pre-restore copies of the database and files directory, newest first."""
        copies = []
        for live in (self.database_path, self.files_path):
            if not live.parent.is_dir():
                continue
            for path in live.parent.glob(f"{live.name}.pre-restore-*"):
                if _TIMESTAMP_RE.search(path.name):
                    copies.append(path)
        copies.sort(key=lambda p: _TIMESTAMP_RE.search(p.name).group(1), reverse=True)
        return copies

    def _remove_safety_copy(self, path: Path) -> None:
        if path.is_dir():
            shutil.rmtree(path)
        else:
            _remove_database_file(path)

    def delete_backup(self, entry: BackupEntry) -> None:
        if entry.category == BackupCategory.DATABASE:
            _remove_database_file(entry.path)
        elif entry.path.exists():
            entry.path.unlink()

    def cleanup(self, keep: Optional[int] = None, dry_run: bool = False) -> List[Path]:
        """
        Keep the *keep* newest backups in each category; delete the rest.

        Pre-restore safety copies are retained the same way, as one extra
        group.

        Returns:
            Paths deleted (or that would be deleted in dry-run mode)
        """
        keep = self.max_backups if keep is None else keep
        if keep < 0:
            raise ConfigurationError(f"keep must be >= 0, got {keep}")
        logger.info(f"Cleaning up old backups (keeping {keep} per category)...")

        removed = []
        for category in BackupCategory:
            for entry in self.list_backups(category)[keep:]:
                if dry_run:
                    logger.info(f"Would delete: {entry.path}")
                else:
                    self.delete_backup(entry)
                    logger.info(f"Deleted old backup: {entry.path.name}")
                removed.append(entry.path)

        for path in self.list_safety_copies()[keep:]:
            if dry_run:
                logger.info(f"Would delete: {path}")
            else:
                self._remove_safety_copy(path)
                logger.info(f"Deleted pre-restore copy: {path.name}")
            removed.append(path)

        if not dry_run:
            logger.info("Cleanup completed")
        return removed

    def status(self) -> Dict[str, Any]:
        """Live store and backup statistics."""
        info: Dict[str, Any] = {}

        if self.database_path.exists():
            stat = self.database_path.stat()
            info['database'] = {
                'path': str(self.database_path),
                'size': stat.st_size,
                'modified': datetime.fromtimestamp(stat.st_mtime).isoformat(timespec='seconds'),
            }
        else:
            info['database'] = None

        if self.files_path.is_dir():
            info['files'] = {
                'path': str(self.files_path),
                'count': sum(1 for p in self.files_path.rglob('*') if p.is_file()),
                'size': directory_size(self.files_path),
            }
        else:
            info['files'] = None

        info['backups'] = {}
        for category in BackupCategory:
            entries = self.list_backups(category)
            info['backups'][category.value] = {
                'count': len(entries),
                'size': sum(e.size for e in entries),
                'latest': entries[0].name if entries else None,
            }
        info['safety_copies'] = [str(p) for p in self.list_safety_copies()]
        return info
