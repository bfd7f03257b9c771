"""
edumigrate Data Migration Module
================================

Moves the legacy MongoDB content store into SQLite and keeps the result
safe with verified point-in-time backups.

Components:
    - MigrationOrchestrator: Runs connect -> import -> link -> verify
    - EntityImporter: Copies records kind by kind through the IdMapper
    - RelationshipResolver: Rebuilds textbook/passage-set links
    - IntegrityVerifier: Reconciles per-kind counts (fatal on mismatch)
    - SnapshotManager: Creates, verifies, retains and restores backups
    - CloudStorage: Mirrors backups to S3 through the AWS CLI
"""

from .backup import (
    BackupCategory,
    BackupEntry,
    BackupMetadata,
    RestoreScope,
    SnapshotManager,
)
from .cloud import CloudObject, CloudStorage
from .importer import EntityImporter, ImportStats, SkippedRecord
from .mapper import IdMapper
from .models import EntityKind, IMPORT_ORDER
from .orchestrator import (
    FailureCause,
    MigrationOrchestrator,
    MigrationPhase,
    MigrationResult,
)
from .relationships import LinkStats, RelationshipResolver
from .source import JsonExportSource, MongoSource, SourceConnector, export_source
from .target import TargetStore
from .verify import IntegrityVerifier, MigrationVerificationReport

__all__ = [
    'BackupCategory',
    'BackupEntry',
    'BackupMetadata',
    'RestoreScope',
    'SnapshotManager',
    'CloudObject',
    'CloudStorage',
    'EntityImporter',
    'ImportStats',
    'SkippedRecord',
    'IdMapper',
    'EntityKind',
    'IMPORT_ORDER',
    'FailureCause',
    'MigrationOrchestrator',
    'MigrationPhase',
    'MigrationResult',
    'LinkStats',
    'RelationshipResolver',
    'JsonExportSource',
    'MongoSource',
    'SourceConnector',
    'export_source',
    'TargetStore',
    'IntegrityVerifier',
    'MigrationVerificationReport',
]
