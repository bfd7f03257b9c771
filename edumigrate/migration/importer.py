"""
Entity Importer
===============

First migration pass: copies every record of each entity kind from the
source into the target, issuing new identifiers through the IdMapper.

Orphan records (a question whose passage set was never imported, or
that names no passage set at all) are skipped with a warning rather than
aborting the run. The integrity verifier reports the resulting count
difference.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..exceptions import MigrationCancelled
from .mapper import IdMapper
from .models import EntityKind, IMPORT_ORDER, source_id, to_model
from .source import SourceConnector
from .target import TargetStore

logger = logging.getLogger(__name__)


@dataclass
class SkippedRecord:
    """A record left out of the target, with enough detail to trace it."""
    kind: str
    source_id: str
    reason: str
    missing_reference: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'source_id': self.source_id,
            'reason': self.reason,
            'missing_reference': self.missing_reference,
        }


@dataclass
class ImportStats:
    """Per-kind outcome of the import pass."""
    kind: str
    total: int = 0
    imported: int = 0
    skipped: List[SkippedRecord] = field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'total': self.total,
            'imported': self.imported,
            'skipped': [s.to_dict() for s in self.skipped],
        }


class EntityImporter:
    """
    Imports entity kinds in dependency order.

    Args:
        source: Connected source connector
        target: Connected target store with schema initialised
        mapper: Identifier map shared with the relationship resolver
        progress_interval: Log a progress line every N records
        question_progress_interval: Progress interval for questions
        cancel_event: Checked before every record; when set the import
            stops at the record boundary
        progress_callback: Called with (kind, done, total) at each progress line
    """

    def __init__(
        self,
        source: SourceConnector,
        target: TargetStore,
        mapper: IdMapper,
        progress_interval: int = 10,
        question_progress_interval: int = 50,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[Callable[[EntityKind, int, int], None]] = None,
    ):
        self.source = source
        self.target = target
        self.mapper = mapper
        self.progress_interval = progress_interval
        self.question_progress_interval = question_progress_interval
        self.cancel_event = cancel_event or threading.Event()
        self.progress_callback = progress_callback

    def import_all(self) -> Dict[EntityKind, ImportStats]:
        """Import every kind in IMPORT_ORDER."""
        results = {}
        for kind in IMPORT_ORDER:
            self._check_cancelled()
            results[kind] = self.import_kind(kind)
        return results

    def import_kind(self, kind: EntityKind) -> ImportStats:
        """Import every source record of one kind."""
        records = self.source.fetch(kind)
        stats = ImportStats(kind=kind.value, total=len(records))
        interval = (self.question_progress_interval if kind == EntityKind.QUESTIONS
                    else self.progress_interval)

        logger.info(f"Migrating {kind.value} ({stats.total} records)...")

        for record in records:
            self._check_cancelled()

            if kind == EntityKind.QUESTIONS and record.get("setId") is None:
                self._skip(stats, source_id(record.get("_id")), "passage set reference missing")
                continue

            model = to_model(kind, record)
            if self._write(kind, model, stats):
                stats.imported += 1
                if stats.imported % interval == 0:
                    logger.info(f"  {kind.value} {stats.imported}/{stats.total}")
                    self._notify_progress(kind, stats.imported, stats.total)

        if stats.skipped:
            logger.warning(f"Migrated {stats.imported} {kind.value}, skipped {stats.skipped_count}")
        else:
            logger.info(f"Migrated {stats.imported} {kind.value}")
        self._notify_progress(kind, stats.imported, stats.total)
        return stats

    def _write(self, kind: EntityKind, model, stats: ImportStats) -> bool:
        """Write one typed record; return False if it was skipped."""
        if kind == EntityKind.TEXTBOOKS:
            target_id = self.mapper.assign(kind.value, model.source_id)
            self.target.insert_textbook(target_id, model)

        elif kind == EntityKind.PASSAGE_SETS:
            target_id = self.mapper.assign(kind.value, model.source_id)
            self.target.insert_passage_set(target_id, model)

        elif kind == EntityKind.QUESTIONS:
            set_id = self.mapper.resolve(EntityKind.PASSAGE_SETS.value, model.set_source_id)
            if set_id is None:
                self._skip(stats, model.source_id, "passage set not found", model.set_source_id)
                return False
            target_id = self.mapper.assign(kind.value, model.source_id)
            self.target.insert_question(target_id, set_id, model)

        elif kind == EntityKind.SYSTEM_PROMPTS:
            # Prompts keep their natural key; nothing references their row id
            self.target.insert_system_prompt(self._new_id(), model)

        elif kind == EntityKind.SYSTEM_PROMPT_VERSIONS:
            self.target.insert_system_prompt_version(self._new_id(), model)

        return True

    def _skip(
        self,
        stats: ImportStats,
        record_id: str,
        reason: str,
        missing_reference: Optional[str] = None,
    ) -> None:
        stats.skipped.append(SkippedRecord(
            kind=stats.kind,
            source_id=record_id,
            reason=reason,
            missing_reference=missing_reference,
        ))
        detail = f"passage set {missing_reference} was not imported" if missing_reference else reason
        logger.warning(f"Skipping {stats.kind} record {record_id}: {detail}")

    def _new_id(self) -> str:
        return str(uuid.uuid4())

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise MigrationCancelled("Migration cancelled by user")

    def _notify_progress(self, kind: EntityKind, done: int, total: int) -> None:
        if self.progress_callback:
            self.progress_callback(kind, done, total)
