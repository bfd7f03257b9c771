# Config module - re-exports for convenience
from .config import (  # noqa: F401
    AppConfig,
    BackupConfig,
    MigrationConfig,
    load_config,
    mask_uri,
)
