"""
Entity Models
=============

Typed value objects for the five entity kinds moved by the migration.

Source records arrive as loosely-typed MongoDB documents (camelCase keys,
ObjectId identifiers, optional fields). They are converted into these
dataclasses at the importer boundary so the rest of the pipeline never
handles raw dictionaries.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class EntityKind(str, Enum):
    """Entity kinds, in import order."""

    TEXTBOOKS = "textbooks"
    PASSAGE_SETS = "passage_sets"
    QUESTIONS = "questions"
    SYSTEM_PROMPTS = "system_prompts"
    SYSTEM_PROMPT_VERSIONS = "system_prompt_versions"

    @property
    def collection(self) -> str:
        """Name of the collection in the legacy MongoDB database."""
        return _COLLECTIONS[self]

    @property
    def table(self) -> str:
        """Name of the table in the target SQLite store."""
        return self.value

    @classmethod
    def from_string(cls, value: str) -> "EntityKind":
        value_lower = value.lower().strip()
        for member in cls:
            if value_lower in (member.value, member.collection):
                return member
        raise ValueError(
            f"Invalid entity kind: {value}. "
            f"Valid kinds: {[m.value for m in cls]}"
        )


_COLLECTIONS = {
    EntityKind.TEXTBOOKS: "textbooks",
    EntityKind.PASSAGE_SETS: "passagesets",
    EntityKind.QUESTIONS: "questions",
    EntityKind.SYSTEM_PROMPTS: "systemprompts",
    # Spelled as it exists in the legacy database
    EntityKind.SYSTEM_PROMPT_VERSIONS: "systemprompversions",
}

# Textbooks and passage sets must exist before questions reference them
IMPORT_ORDER: List[EntityKind] = [
    EntityKind.TEXTBOOKS,
    EntityKind.PASSAGE_SETS,
    EntityKind.QUESTIONS,
    EntityKind.SYSTEM_PROMPTS,
    EntityKind.SYSTEM_PROMPT_VERSIONS,
]

LINK_TABLE = "passage_set_textbooks"


def source_id(value: Any) -> str:
    """Normalise an ObjectId, extended-JSON ``{"$oid": ...}`` or plain id to str."""
    if value is None:
        raise ValueError("record has no identifier")
    if isinstance(value, dict) and "$oid" in value:
        return str(value["$oid"])
    return str(value)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Best-effort conversion of the timestamp shapes found in exports."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, dict) and "$date" in value:
        return parse_datetime(value["$date"])
    if isinstance(value, dict) and "$numberLong" in value:
        return parse_datetime(int(value["$numberLong"]))
    if isinstance(value, (int, float)):
        # Extended JSON stores epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    raise ValueError(f"Unrecognised timestamp: {value!r}")


def format_datetime(value: Optional[datetime]) -> str:
    return (value or datetime.now(timezone.utc)).isoformat()


def encode_options(options: List[str]) -> str:
    """Serialise the ordered answer options into a single text column."""
    return json.dumps(list(options), ensure_ascii=False)


def decode_options(encoded: Optional[str]) -> List[str]:
    """Inverse of :func:`encode_options`; preserves order."""
    if not encoded:
        return []
    value = json.loads(encoded)
    if not isinstance(value, list):
        raise ValueError(f"options must decode to a list, got {type(value).__name__}")
    return [str(v) for v in value]


def _require(record: Dict[str, Any], key: str, kind: EntityKind) -> Any:
    if record.get(key) is None:
        raise ValueError(
            f"{kind.value} record {record.get('_id')} is missing required field '{key}'"
        )
    return record[key]


@dataclass
class Textbook:
    source_id: str
    title: str
    publisher: str = ""
    subject: str = ""
    level: str = ""
    grade: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    kind = EntityKind.TEXTBOOKS

    @classmethod
    def from_source(cls, record: Dict[str, Any]) -> "Textbook":
        return cls(
            source_id=source_id(record.get("_id")),
            title=_require(record, "title", cls.kind),
            publisher=record.get("publisher") or "",
            subject=record.get("subject") or "",
            level=record.get("level") or "",
            grade=record.get("grade") or "",
            created_at=parse_datetime(record.get("createdAt")),
            updated_at=parse_datetime(record.get("updatedAt")),
        )

    def checksum_values(self) -> Tuple:
        return (self.title, self.publisher, self.subject, self.level, self.grade)


@dataclass
class PassageSet:
    source_id: str
    title: str
    passage: str
    passage_comment: str
    qr_code: str
    textbook_source_ids: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    kind = EntityKind.PASSAGE_SETS

    @classmethod
    def from_source(cls, record: Dict[str, Any]) -> "PassageSet":
        return cls(
            source_id=source_id(record.get("_id")),
            title=_require(record, "title", cls.kind),
            passage=record.get("passage") or "",
            passage_comment=record.get("passageComment") or "",
            qr_code=_require(record, "qrCode", cls.kind),
            textbook_source_ids=[source_id(t) for t in record.get("textbooks") or []],
            created_at=parse_datetime(record.get("createdAt")),
            updated_at=parse_datetime(record.get("updatedAt")),
        )

    def checksum_values(self) -> Tuple:
        return (self.title, self.passage, self.passage_comment, self.qr_code)


@dataclass
class Question:
    source_id: str
    set_source_id: str
    question_number: int
    question_text: str
    options: List[str] = field(default_factory=list)
    correct_answer: str = ""
    explanation: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    kind = EntityKind.QUESTIONS

    @classmethod
    def from_source(cls, record: Dict[str, Any]) -> "Question":
        return cls(
            source_id=source_id(record.get("_id")),
            set_source_id=source_id(_require(record, "setId", cls.kind)),
            question_number=int(record.get("questionNumber") or 0),
            question_text=_require(record, "questionText", cls.kind),
            options=[str(o) for o in record.get("options") or []],
            correct_answer=str(record.get("correctAnswer") or ""),
            explanation=record.get("explanation") or "",
            created_at=parse_datetime(record.get("createdAt")),
            updated_at=parse_datetime(record.get("updatedAt")),
        )

    @property
    def options_json(self) -> str:
        return encode_options(self.options)

    def checksum_values(self) -> Tuple:
        return (
            self.question_number,
            self.question_text,
            tuple(self.options),
            self.correct_answer,
            self.explanation,
        )


@dataclass
class SystemPrompt:
    source_id: str
    key: str
    name: str
    description: str = ""
    content: str = ""
    is_active: bool = True
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    kind = EntityKind.SYSTEM_PROMPTS

    @classmethod
    def from_source(cls, record: Dict[str, Any]) -> "SystemPrompt":
        is_active = record.get("isActive")
        return cls(
            source_id=source_id(record.get("_id")),
            key=_require(record, "key", cls.kind),
            name=record.get("name") or "",
            description=record.get("description") or "",
            content=record.get("content") or "",
            is_active=True if is_active is None else bool(is_active),
            version=int(record.get("version") or 1),
            created_at=parse_datetime(record.get("createdAt")),
            updated_at=parse_datetime(record.get("updatedAt")),
        )

    def checksum_values(self) -> Tuple:
        return (self.key, self.name, self.description, self.content,
                self.is_active, self.version)


@dataclass
class SystemPromptVersion:
    source_id: str
    prompt_key: str
    content: str
    version: int
    description: str = ""
    created_by: str = ""
    created_at: Optional[datetime] = None

    kind = EntityKind.SYSTEM_PROMPT_VERSIONS

    @classmethod
    def from_source(cls, record: Dict[str, Any]) -> "SystemPromptVersion":
        return cls(
            source_id=source_id(record.get("_id")),
            prompt_key=_require(record, "promptKey", cls.kind),
            content=record.get("content") or "",
            version=int(record.get("version") or 1),
            description=record.get("description") or "",
            created_by=record.get("createdBy") or "",
            created_at=parse_datetime(record.get("createdAt")),
        )

    def checksum_values(self) -> Tuple:
        return (self.prompt_key, self.content, self.version,
                self.description, self.created_by)


MODEL_BY_KIND = {
    EntityKind.TEXTBOOKS: Textbook,
    EntityKind.PASSAGE_SETS: PassageSet,
    EntityKind.QUESTIONS: Question,
    EntityKind.SYSTEM_PROMPTS: SystemPrompt,
    EntityKind.SYSTEM_PROMPT_VERSIONS: SystemPromptVersion,
}


def to_model(kind: EntityKind, record: Dict[str, Any]):
    """Convert a raw source record of *kind* into its typed model."""
    return MODEL_BY_KIND[kind].from_source(record)
