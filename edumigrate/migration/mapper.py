"""
Identifier Mapper
=================

Maps source-native identifiers (MongoDB ObjectIds) to freshly issued target
identifiers (UUID4 strings) for the lifetime of one migration run.

The map is namespaced by entity kind, so two kinds whose source ids happen
to coincide never shadow each other. It is held in memory only and owned by
the orchestrator; nothing here is module-level state.
"""

import threading
import uuid
from typing import Callable, Dict, Optional, Tuple

from ..exceptions import DuplicateAssignmentError


class IdMapper:
    """Bidirectional source/target identifier map for a single run."""

    def __init__(self, id_factory: Optional[Callable[[], str]] = None):
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._forward: Dict[Tuple[str, str], str] = {}
        self._reverse: Dict[str, Tuple[str, str]] = {}
        # assign() is the single source of identifier uniqueness
        self._lock = threading.Lock()

    def assign(self, kind: str, source_id: str) -> str:
        """
        Issue a new target id for an unseen source id and record it.

        Raises:
            DuplicateAssignmentError: the source id was already assigned,
                which means the record is being imported twice.
        """
        key = (kind, str(source_id))
        with self._lock:
            if key in self._forward:
                raise DuplicateAssignmentError(
                    f"{kind} source id {source_id} already mapped to {self._forward[key]}"
                )
            target_id = self._id_factory()
            while target_id in self._reverse:
                target_id = self._id_factory()
            self._forward[key] = target_id
            self._reverse[target_id] = key
            return target_id

    def resolve(self, kind: str, source_id: str) -> Optional[str]:
        """Look up the target id for a source id; None if never assigned."""
        return self._forward.get((kind, str(source_id)))

    def source_of(self, target_id: str) -> Optional[Tuple[str, str]]:
        """Reverse lookup: (kind, source_id) for a target id."""
        return self._reverse.get(target_id)

    def count(self, kind: Optional[str] = None) -> int:
        if kind is None:
            return len(self._forward)
        return sum(1 for k, _ in self._forward if k == kind)

    def __len__(self) -> int:
        return len(self._forward)

    def __contains__(self, key: Tuple[str, str]) -> bool:
        kind, source_id = key
        return (kind, str(source_id)) in self._forward
