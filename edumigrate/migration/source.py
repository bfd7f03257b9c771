"""
Source Connectors
=================

Read-only access to the legacy document store. The pipeline only needs to
enumerate and count each entity kind, so a connector exposes exactly that:

    with MongoSource(uri, database) as source:
        for record in source.fetch(EntityKind.TEXTBOOKS):
            ...

Two implementations are provided: ``MongoSource`` talks to a live MongoDB
via pymongo, ``JsonExportSource`` reads a directory of extended-JSON dumps
(the format written by :func:`export_source`).
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config.config import mask_uri
from ..exceptions import SourceConnectionError
from ..utils import timestamp
from .models import EntityKind, IMPORT_ORDER

logger = logging.getLogger(__name__)


class SourceConnector(ABC):
    """Enumeration-only view of the source store."""

    @abstractmethod
    def connect(self) -> None:
        """Open the connection; raise SourceConnectionError if unreachable."""

    @abstractmethod
    def close(self) -> None:
        """Release the connection. Safe to call more than once."""

    @abstractmethod
    def fetch(self, kind: EntityKind) -> List[Dict[str, Any]]:
        """Return every record of *kind* as a finite in-memory batch."""

    def count(self, kind: EntityKind) -> int:
        return len(self.fetch(kind))

    def __enter__(self) -> "SourceConnector":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class MongoSource(SourceConnector):
    """Connector for the legacy MongoDB database."""

    def __init__(self, uri: str, database: str, timeout_ms: int = 10000):
        self.uri = uri
        self.database = database
        self.timeout_ms = timeout_ms
        self._client = None
        self._db = None

    def connect(self) -> None:
        if self._client is not None:
            return

        from pymongo import MongoClient
        from pymongo.errors import PyMongoError

        logger.info(f"Connecting to MongoDB: {mask_uri(self.uri)} ({self.database})")
        client = MongoClient(self.uri, serverSelectionTimeoutMS=self.timeout_ms)
        try:
            # MongoClient connects lazily; force a round-trip
            client.admin.command("ping")
        except PyMongoError as e:
            client.close()
            raise SourceConnectionError(
                f"Cannot reach MongoDB at {mask_uri(self.uri)}: {e}"
            ) from e

        self._client = client
        self._db = client[self.database]
        logger.debug("Connected to MongoDB")

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._db = None
            logger.debug("Disconnected from MongoDB")

    def _collection(self, kind: EntityKind):
        if self._db is None:
            raise SourceConnectionError("MongoSource is not connected")
        return self._db[kind.collection]

    def fetch(self, kind: EntityKind) -> List[Dict[str, Any]]:
        return list(self._collection(kind).find({}))

    def count(self, kind: EntityKind) -> int:
        return self._collection(kind).count_documents({})


class JsonExportSource(SourceConnector):
    """Connector over a directory of ``<collection>.json`` extended-JSON dumps.

    A missing file is an empty collection.
    """

    def __init__(self, export_dir: Path):
        self.export_dir = Path(export_dir)
        self._cache: Dict[EntityKind, List[Dict[str, Any]]] = {}
        self._connected = False

    def connect(self) -> None:
        if not self.export_dir.is_dir():
            raise SourceConnectionError(f"Export directory not found: {self.export_dir}")
        self._connected = True

    def close(self) -> None:
        self._cache.clear()
        self._connected = False

    def fetch(self, kind: EntityKind) -> List[Dict[str, Any]]:
        if not self._connected:
            raise SourceConnectionError("JsonExportSource is not connected")
        if kind not in self._cache:
            self._cache[kind] = self._load(kind)
        # Callers get their own list; cached records are not shared mutably
        return list(self._cache[kind])

    def _load(self, kind: EntityKind) -> List[Dict[str, Any]]:
        from bson import json_util

        filepath = self.export_dir / f"{kind.collection}.json"
        if not filepath.exists():
            logger.debug(f"No export file for {kind.value}: {filepath}")
            return []

        with open(filepath, 'r', encoding='utf-8') as f:
            data = json_util.loads(f.read())

        if isinstance(data, dict) and 'data' in data:
            data = data['data']
        if not isinstance(data, list):
            raise SourceConnectionError(
                f"Export file {filepath} must contain a JSON array"
            )
        return data


def export_source(
    source: SourceConnector,
    export_root: Path,
    kinds: Optional[List[EntityKind]] = None,
) -> Path:
    """
    Dump each source collection to ``<export_root>/source-<timestamp>/``.

    The dump is extended JSON, so ObjectIds and dates survive the round-trip
    and the directory can be read back with :class:`JsonExportSource`.

    Returns:
        Path of the export directory
    """
    from bson import json_util

    export_dir = Path(export_root) / f"source-{timestamp()}"
    export_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"Exporting source collections to {export_dir}")

    for kind in kinds or IMPORT_ORDER:
        records = source.fetch(kind)
        filepath = export_dir / f"{kind.collection}.json"
        with open(filepath, 'w', encoding='utf-8') as f:
            f.write(json_util.dumps(records, indent=2, ensure_ascii=False))
        logger.debug(f"  Exported {len(records)} {kind.value} -> {filepath.name}")

    return export_dir
