"""
Relationship Resolver
=====================

Second migration pass. Once every entity kind is imported and the IdMapper
is complete, rebuilds the textbook/passage-set many-to-many links from the
``textbooks`` array each source passage set carries.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..exceptions import MigrationCancelled
from .importer import SkippedRecord
from .mapper import IdMapper
from .models import EntityKind, PassageSet
from .source import SourceConnector
from .target import TargetStore

logger = logging.getLogger(__name__)


@dataclass
class LinkStats:
    """Outcome of the relationship pass."""
    created: int = 0
    duplicates: int = 0
    skipped: List[SkippedRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'created': self.created,
            'duplicates': self.duplicates,
            'skipped': [s.to_dict() for s in self.skipped],
        }


class RelationshipResolver:
    """Writes junction rows for every resolvable textbook/passage-set pair."""

    def __init__(
        self,
        source: SourceConnector,
        target: TargetStore,
        mapper: IdMapper,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.source = source
        self.target = target
        self.mapper = mapper
        self.cancel_event = cancel_event or threading.Event()

    def resolve_all(self) -> LinkStats:
        logger.info("Establishing textbook/passage set relationships...")
        stats = LinkStats()

        for record in self.source.fetch(EntityKind.PASSAGE_SETS):
            if self.cancel_event.is_set():
                raise MigrationCancelled("Migration cancelled by user")

            passage_set = PassageSet.from_source(record)
            passage_set_id = self.mapper.resolve(
                EntityKind.PASSAGE_SETS.value, passage_set.source_id
            )
            if passage_set_id is None:
                # Never imported; the importer already reported it
                continue

            for textbook_source_id in passage_set.textbook_source_ids:
                self._link(passage_set, passage_set_id, textbook_source_id, stats)

        logger.info(
            f"Relationships established: {stats.created} "
            f"({stats.duplicates} duplicates, {len(stats.skipped)} unresolved)"
        )
        return stats

    def _link(
        self,
        passage_set: PassageSet,
        passage_set_id: str,
        textbook_source_id: str,
        stats: LinkStats,
    ) -> None:
        textbook_id = self.mapper.resolve(EntityKind.TEXTBOOKS.value, textbook_source_id)
        if textbook_id is None:
            stats.skipped.append(SkippedRecord(
                kind=EntityKind.PASSAGE_SETS.value,
                source_id=passage_set.source_id,
                reason="textbook not found",
                missing_reference=textbook_source_id,
            ))
            logger.warning(
                f"Skipping link for passage set {passage_set.source_id}: "
                f"textbook {textbook_source_id} was not imported"
            )
            return

        if self.target.link_textbook_passage_set(textbook_id, passage_set_id):
            stats.created += 1
        else:
            stats.duplicates += 1
            logger.debug(f"Duplicate link skipped: {textbook_id} - {passage_set_id}")
