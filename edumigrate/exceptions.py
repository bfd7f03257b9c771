"""Exceptions raised by the migration and backup subsystem."""

from typing import List, Tuple


class EduMigrateError(Exception):
    """Base exception for edumigrate operations."""


class ConfigurationError(EduMigrateError, ValueError):
    """Configuration validation or loading failed."""


class SourceConnectionError(EduMigrateError):
    """The source document store could not be reached."""


class TargetConnectionError(EduMigrateError):
    """The target SQLite store could not be opened or prepared."""


class DuplicateAssignmentError(EduMigrateError):
    """A source identifier was assigned a target identifier twice."""


class RecordWriteError(EduMigrateError):
    """A row could not be written to the target store."""


class MigrationCancelled(EduMigrateError):
    """The migration run was cancelled at a record or kind boundary."""


class IntegrityVerificationError(EduMigrateError):
    """Post-migration verification found a discrepancy."""


class CountMismatchError(IntegrityVerificationError):
    """Source and target record counts differ for one or more entity kinds."""

    def __init__(self, mismatches: List[Tuple[str, int, int]]):
        self.mismatches = mismatches
        details = ", ".join(
            f"{kind}: source={source} target={target}"
            for kind, source, target in mismatches
        )
        super().__init__(f"Record count mismatch ({details})")


class ChecksumMismatchError(IntegrityVerificationError):
    """Source and target content differ for one or more entity kinds."""

    def __init__(self, kinds: List[str]):
        self.kinds = kinds
        super().__init__(f"Content checksum mismatch for: {', '.join(kinds)}")


class BackupError(EduMigrateError):
    """A backup operation failed."""


class BackupNotFoundError(BackupError):
    """The named backup does not exist."""


class BackupCorruptedError(BackupError):
    """A freshly written backup failed its consistency check and was deleted."""


class RestoreError(BackupError):
    """A restore failed; the live store was rolled back to its previous state."""
