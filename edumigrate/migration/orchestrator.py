"""
Migration Orchestrator
======================

Runs one MongoDB -> SQLite migration end to end and owns the single
success/failure decision:

    NOT_STARTED -> CONNECTING -> IMPORTING -> RESOLVING_RELATIONSHIPS
                -> VERIFYING -> SUCCEEDED
    (any fatal condition)    -> FAILED

Usage:
    orchestrator = MigrationOrchestrator(
        source=MongoSource(uri, 'edutech'),
        target_path='./data/edutech.db',
        config=MigrationConfig(),
    )
    result = orchestrator.run()
"""

import logging
import threading
import time
from contextlib import ExitStack
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..config.config import MigrationConfig
from ..exceptions import (
    EduMigrateError,
    IntegrityVerificationError,
    MigrationCancelled,
    SourceConnectionError,
    TargetConnectionError,
)
from ..utils import format_duration, generate_backup_name
from .backup import SnapshotManager
from .importer import EntityImporter, ImportStats
from .mapper import IdMapper
from .relationships import LinkStats, RelationshipResolver
from .source import SourceConnector, export_source
from .target import TargetStore
from .verify import IntegrityVerifier, MigrationVerificationReport

logger = logging.getLogger(__name__)


class MigrationPhase(str, Enum):
    """State of a migration run."""
    NOT_STARTED = "not_started"
    CONNECTING = "connecting"
    IMPORTING = "importing"
    RESOLVING_RELATIONSHIPS = "resolving_relationships"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureCause(str, Enum):
    """Why a run ended in FAILED."""
    CONNECTION = "connection"
    VERIFICATION = "verification"
    WRITE = "write"
    CANCELLED = "cancelled"


def classify_failure(error: BaseException) -> FailureCause:
    if isinstance(error, (SourceConnectionError, TargetConnectionError)):
        return FailureCause.CONNECTION
    if isinstance(error, IntegrityVerificationError):
        return FailureCause.VERIFICATION
    if isinstance(error, MigrationCancelled):
        return FailureCause.CANCELLED
    return FailureCause.WRITE


@dataclass
class MigrationResult:
    """Result of a migration run."""
    success: bool
    phase: MigrationPhase
    message: str
    duration_seconds: float = 0.0
    cause: Optional[FailureCause] = None
    failed_phase: Optional[MigrationPhase] = None
    import_stats: Dict[str, ImportStats] = field(default_factory=dict)
    link_stats: Optional[LinkStats] = None
    verification: Optional[MigrationVerificationReport] = None
    export_path: Optional[Path] = None
    snapshot_name: Optional[str] = None
    rolled_back: bool = False

    @property
    def skipped_count(self) -> int:
        skipped = sum(s.skipped_count for s in self.import_stats.values())
        if self.link_stats:
            skipped += len(self.link_stats.skipped)
        return skipped

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'phase': self.phase.value,
            'message': self.message,
            'duration_seconds': self.duration_seconds,
            'cause': self.cause.value if self.cause else None,
            'failed_phase': self.failed_phase.value if self.failed_phase else None,
            'import_stats': {k: s.to_dict() for k, s in self.import_stats.items()},
            'link_stats': self.link_stats.to_dict() if self.link_stats else None,
            'verification': self.verification.to_dict() if self.verification else None,
            'export_path': str(self.export_path) if self.export_path else None,
            'snapshot_name': self.snapshot_name,
            'rolled_back': self.rolled_back,
        }


class MigrationOrchestrator:
    """
    Sequences importer, relationship resolver and verifier over one pair of
    connections.

    Args:
        source: Source connector (connected and closed by run())
        target_path: SQLite file to migrate into
        config: Migration settings
        snapshots: Snapshot manager for the pre-migration backup; built
            from *config* when omitted and snapshots are enabled
        cancel_event: External cancellation signal
    """

    def __init__(
        self,
        source: SourceConnector,
        target_path: Union[str, Path],
        config: Optional[MigrationConfig] = None,
        snapshots: Optional[SnapshotManager] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.source = source
        self.target_path = Path(target_path)
        self.config = config or MigrationConfig()
        self.cancel_event = cancel_event or threading.Event()
        self.phase = MigrationPhase.NOT_STARTED

        if snapshots is None and self.config.snapshot_before_migrate:
            snapshots = SnapshotManager(
                database_path=self.target_path,
                files_path=self.target_path.parent / "files",
                backup_root=self.config.export_path,
            )
        self.snapshots = snapshots

    def cancel(self) -> None:
        """Request cancellation; the run stops at the next record or kind boundary."""
        logger.warning("Cancellation requested")
        self.cancel_event.set()

    def _set_phase(self, phase: MigrationPhase) -> None:
        logger.debug(f"Phase: {self.phase.value} -> {phase.value}")
        self.phase = phase

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise MigrationCancelled("Migration cancelled by user")

    def run(self) -> MigrationResult:
        """
        Execute the migration.

        Returns:
            MigrationResult; never raises for failures of the run itself
        """
        start_time = time.time()
        self.phase = MigrationPhase.NOT_STARTED
        result = MigrationResult(success=False, phase=self.phase, message="")
        mapper = IdMapper()

        try:
            with ExitStack() as stack:
                self._set_phase(MigrationPhase.CONNECTING)
                stack.enter_context(self.source)
                target = stack.enter_context(TargetStore(self.target_path))
                logger.info(f"Connected, migrating into {self.target_path}")

                target.initialize_schema()
                existing = target.total_rows()
                if existing:
                    logger.warning(
                        f"Target already holds {existing} rows; "
                        f"count verification will not reconcile"
                    )

                if self.config.export_source:
                    result.export_path = export_source(self.source, Path(self.config.export_path))

                if self.snapshots is not None:
                    name = generate_backup_name("pre-migrate")
                    self.snapshots.create_database_backup(name)
                    result.snapshot_name = name
                    logger.info(f"Pre-migration snapshot: {name}")

                self._set_phase(MigrationPhase.IMPORTING)
                self._check_cancelled()
                importer = EntityImporter(
                    self.source, target, mapper,
                    progress_interval=self.config.progress_interval,
                    question_progress_interval=self.config.question_progress_interval,
                    cancel_event=self.cancel_event,
                )
                result.import_stats = {k.value: s for k, s in importer.import_all().items()}

                self._set_phase(MigrationPhase.RESOLVING_RELATIONSHIPS)
                self._check_cancelled()
                resolver = RelationshipResolver(
                    self.source, target, mapper, cancel_event=self.cancel_event
                )
                result.link_stats = resolver.resolve_all()

                self._set_phase(MigrationPhase.VERIFYING)
                self._check_cancelled()
                verifier = IntegrityVerifier(
                    self.source, target, verify_checksums=self.config.verify_checksums
                )
                result.verification = verifier.verify_all()
                result.verification.raise_for_mismatch()

                dangling = target.dangling_questions()
                if dangling:
                    raise IntegrityVerificationError(
                        f"{len(dangling)} questions reference a missing passage set"
                    )

        except Exception as e:
            return self._fail(result, e, start_time)

        self._set_phase(MigrationPhase.SUCCEEDED)
        result.success = True
        result.phase = self.phase
        result.duration_seconds = time.time() - start_time
        result.message = "Migration completed successfully"
        if result.skipped_count:
            result.message += f" ({result.skipped_count} records skipped)"
        logger.info(f"Migration completed in {format_duration(result.duration_seconds)}")
        return result

    def _fail(self, result: MigrationResult, error: Exception, start_time: float) -> MigrationResult:
        result.failed_phase = self.phase
        result.cause = classify_failure(error)
        self._set_phase(MigrationPhase.FAILED)
        result.phase = self.phase

        if isinstance(error, EduMigrateError):
            logger.error(f"Migration failed during {result.failed_phase.value}: {error}")
        else:
            logger.exception(f"Migration failed during {result.failed_phase.value}: {error}")

        # Connections are closed by now; put the target back as it was
        if result.snapshot_name and self.snapshots is not None:
            result.rolled_back = self._rollback(result.snapshot_name)

        result.message = f"Migration failed: {error}"
        if result.rolled_back:
            result.message += f" (target restored from {result.snapshot_name})"
        result.duration_seconds = time.time() - start_time
        return result

    def _rollback(self, snapshot_name: str) -> bool:
        logger.info(f"Rolling back target from snapshot {snapshot_name}")
        try:
            self.snapshots.restore_database(snapshot_name)
        except EduMigrateError as e:
            logger.error(f"Rollback failed: {e}")
            return False
        return True
