"""Configuration for the edumigrate migration and backup tooling.

Settings are plain dataclasses populated from the environment (a ``.env``
file is honoured through python-dotenv). Paths default to the layout of a
single-host deployment.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from ..exceptions import ConfigurationError


def mask_uri(uri: str) -> str:
    """Hide credentials in a connection URI before it is logged."""
    return re.sub(r"//.*@", "//***@", uri)


@dataclass
class MigrationConfig:
    """Source and target settings for a migration run."""

    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "edutech"
    sqlite_path: str = "./data/edutech.db"

    # Dump every source collection to JSON before writing anything
    export_source: bool = True
    export_path: str = "./backups"

    # Snapshot the target before importing and restore it on failure
    snapshot_before_migrate: bool = True

    # Progress line every N records (questions use the larger interval)
    progress_interval: int = 10
    question_progress_interval: int = 50

    verify_checksums: bool = False

    def __post_init__(self) -> None:
        if self.progress_interval < 1 or self.question_progress_interval < 1:
            raise ConfigurationError("progress intervals must be >= 1")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for display (credentials masked)."""
        return {
            "mongodb_uri": mask_uri(self.mongodb_uri),
            "mongodb_database": self.mongodb_database,
            "sqlite_path": self.sqlite_path,
            "export_source": self.export_source,
            "export_path": self.export_path,
            "snapshot_before_migrate": self.snapshot_before_migrate,
            "progress_interval": self.progress_interval,
            "question_progress_interval": self.question_progress_interval,
            "verify_checksums": self.verify_checksums,
        }


@dataclass
class BackupConfig:
    """Backup locations and retention limits."""

    project_path: str = "/var/www/edutech-chatbot"
    database_path: Optional[str] = None
    files_path: Optional[str] = None
    backup_base_path: str = "/var/backups/edutech-chatbot"
    cloud_backup_path: Optional[str] = None
    max_local_backups: int = 30
    max_cloud_backups: int = 90

    def __post_init__(self) -> None:
        # Database and files live under the project unless overridden
        if not self.database_path:
            self.database_path = str(Path(self.project_path) / "data" / "edutech.db")
        if not self.files_path:
            self.files_path = str(Path(self.project_path) / "data" / "files")

        if self.max_local_backups < 1:
            raise ConfigurationError(
                f"max_local_backups must be >= 1, got {self.max_local_backups}"
            )
        if self.max_cloud_backups < 1:
            raise ConfigurationError(
                f"max_cloud_backups must be >= 1, got {self.max_cloud_backups}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class AppConfig:
    """Complete configuration for the tooling."""

    migration: MigrationConfig = field(default_factory=MigrationConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "migration": self.migration.to_dict(),
            "backup": self.backup.to_dict(),
        }


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(env_file: Optional[str] = None) -> AppConfig:
    """
    Load configuration from the environment.

    Args:
        env_file: Optional path to a dotenv file (default: search for .env)

    Returns:
        AppConfig instance
    """
    load_dotenv(env_file)

    migration = MigrationConfig(
        mongodb_uri=os.getenv("MONGODB_URI", MigrationConfig.mongodb_uri),
        mongodb_database=os.getenv("MONGODB_DATABASE", MigrationConfig.mongodb_database),
        sqlite_path=os.getenv("SQLITE_PATH", MigrationConfig.sqlite_path),
        export_source=_env_bool("EXPORT_SOURCE", MigrationConfig.export_source),
        export_path=os.getenv("SOURCE_EXPORT_PATH", MigrationConfig.export_path),
        snapshot_before_migrate=_env_bool(
            "SNAPSHOT_BEFORE_MIGRATE", MigrationConfig.snapshot_before_migrate
        ),
        verify_checksums=_env_bool("VERIFY_CHECKSUMS", MigrationConfig.verify_checksums),
    )

    backup = BackupConfig(
        project_path=os.getenv("PROJECT_PATH", BackupConfig.project_path),
        database_path=os.getenv("DATABASE_PATH"),
        files_path=os.getenv("FILES_PATH"),
        backup_base_path=os.getenv("BACKUP_BASE_PATH", BackupConfig.backup_base_path),
        cloud_backup_path=os.getenv("CLOUD_BACKUP_PATH"),
        max_local_backups=_env_int("MAX_LOCAL_BACKUPS", BackupConfig.max_local_backups),
        max_cloud_backups=_env_int("MAX_CLOUD_BACKUPS", BackupConfig.max_cloud_backups),
    )

    return AppConfig(migration=migration, backup=backup)
