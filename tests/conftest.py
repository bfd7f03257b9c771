"""
Shared fixtures for the edumigrate test suite.

The ``scenario`` fixture is the reference data set:
3 textbooks, 2 passage sets (the first linked to 2 textbooks, the second
to none), 5 questions (2 on the first set, 3 on the second) and 1 orphan
question whose passage set was deleted from the source.
"""

from pathlib import Path
from typing import Any, Dict, List

import pytest

from edumigrate.config import MigrationConfig
from edumigrate.exceptions import SourceConnectionError
from edumigrate.migration.models import EntityKind, Textbook
from edumigrate.migration.source import SourceConnector
from edumigrate.migration.target import TargetStore


TEXTBOOK_IDS = [
    "650000000000000000000001",
    "650000000000000000000002",
    "650000000000000000000003",
]
PASSAGE_SET_IDS = [
    "651000000000000000000001",
    "651000000000000000000002",
]
DELETED_PASSAGE_SET_ID = "651000000000000000000099"
ORPHAN_QUESTION_ID = "652000000000000000000099"


class MemorySource(SourceConnector):
    """Source connector over in-memory records, counting connect/close calls."""

    def __init__(self, data: Dict[EntityKind, List[Dict[str, Any]]], fail_connect: bool = False):
        self.data = data
        self.fail_connect = fail_connect
        self.connect_calls = 0
        self.close_calls = 0

    def connect(self) -> None:
        self.connect_calls += 1
        if self.fail_connect:
            raise SourceConnectionError("Cannot reach MongoDB at mongodb://***@db:27017")

    def close(self) -> None:
        self.close_calls += 1

    def fetch(self, kind: EntityKind) -> List[Dict[str, Any]]:
        return [dict(record) for record in self.data.get(kind, [])]


def build_scenario() -> Dict[EntityKind, List[Dict[str, Any]]]:
    textbooks = [
        {"_id": TEXTBOOK_IDS[0], "title": "Reading Power 1", "publisher": "Neungyule",
         "subject": "English", "level": "Middle", "grade": "1",
         "createdAt": "2024-03-01T09:00:00Z", "updatedAt": "2024-03-02T09:00:00Z"},
        {"_id": TEXTBOOK_IDS[1], "title": "Reading Power 2", "publisher": "Neungyule",
         "subject": "English", "level": "Middle", "grade": "2"},
        {"_id": {"$oid": TEXTBOOK_IDS[2]}, "title": "Grammar Zone", "publisher": "YBM",
         "subject": "English", "level": "High", "grade": "1"},
    ]
    passage_sets = [
        {"_id": PASSAGE_SET_IDS[0], "title": "Unit 1 - Recycling",
         "passage": "Recycling helps reduce waste.", "passageComment": "Main idea: environment",
         "qrCode": "QR-0001", "textbooks": [TEXTBOOK_IDS[0], TEXTBOOK_IDS[1]]},
        {"_id": PASSAGE_SET_IDS[1], "title": "Unit 2 - Bees",
         "passage": "Bees communicate by dancing.", "qrCode": "QR-0002", "textbooks": []},
    ]
    questions = [
        {"_id": "652000000000000000000001", "setId": PASSAGE_SET_IDS[0], "questionNumber": 1,
         "questionText": "What is the main idea?",
         "options": ["Waste", "Recycling", "Energy", "Water", "Air"],
         "correctAnswer": "2", "explanation": "The passage is about recycling."},
        {"_id": "652000000000000000000002", "setId": PASSAGE_SET_IDS[0], "questionNumber": 2,
         "questionText": "윗글의 제목으로 가장 적절한 것은?",
         "options": ["재활용의 중요성", "에너지 절약", "물 부족"],
         "correctAnswer": "1"},
        {"_id": "652000000000000000000003", "setId": PASSAGE_SET_IDS[1], "questionNumber": 1,
         "questionText": "How do bees communicate?", "options": ["Dancing", "Singing"],
         "correctAnswer": "1"},
        {"_id": "652000000000000000000004", "setId": PASSAGE_SET_IDS[1], "questionNumber": 2,
         "questionText": "Which is NOT mentioned?", "options": ["Hive", "Honey", "Queen"],
         "correctAnswer": "3"},
        {"_id": "652000000000000000000005", "setId": {"$oid": PASSAGE_SET_IDS[1]},
         "questionNumber": 3, "questionText": "Fill in the blank.", "options": [],
         "correctAnswer": "dance"},
        {"_id": ORPHAN_QUESTION_ID, "setId": DELETED_PASSAGE_SET_ID, "questionNumber": 1,
         "questionText": "This passage set no longer exists.", "options": ["A", "B"],
         "correctAnswer": "1"},
    ]
    system_prompts = [
        {"_id": "653000000000000000000001", "key": "tutor", "name": "Reading tutor",
         "content": "You are a helpful reading tutor.", "isActive": True, "version": 2},
    ]
    system_prompt_versions = [
        {"_id": "654000000000000000000001", "promptKey": "tutor", "version": 1,
         "content": "You are a tutor.", "createdBy": "admin"},
        {"_id": "654000000000000000000002", "promptKey": "tutor", "version": 2,
         "content": "You are a helpful reading tutor.", "createdBy": "admin",
         "description": "Friendlier tone"},
    ]
    return {
        EntityKind.TEXTBOOKS: textbooks,
        EntityKind.PASSAGE_SETS: passage_sets,
        EntityKind.QUESTIONS: questions,
        EntityKind.SYSTEM_PROMPTS: system_prompts,
        EntityKind.SYSTEM_PROMPT_VERSIONS: system_prompt_versions,
    }


@pytest.fixture
def scenario():
    """Reference data set including the orphan question."""
    return build_scenario()


@pytest.fixture
def clean_scenario():
    """Reference data set without the orphan question."""
    data = build_scenario()
    data[EntityKind.QUESTIONS] = [
        q for q in data[EntityKind.QUESTIONS] if q["_id"] != ORPHAN_QUESTION_ID
    ]
    return data


@pytest.fixture
def source(scenario):
    return MemorySource(scenario)


@pytest.fixture
def clean_source(clean_scenario):
    return MemorySource(clean_scenario)


@pytest.fixture
def make_source():
    return MemorySource


@pytest.fixture
def target(tmp_path):
    store = TargetStore(tmp_path / "target" / "edutech.db")
    store.connect()
    store.initialize_schema()
    yield store
    store.close()


@pytest.fixture
def migration_config(tmp_path):
    return MigrationConfig(
        sqlite_path=str(tmp_path / "data" / "edutech.db"),
        export_source=False,
        export_path=str(tmp_path / "backups"),
    )


def seed_textbooks(path: Path, count: int, start: int = 0) -> None:
    """Write *count* textbook rows into the SQLite store at *path*."""
    with TargetStore(path) as store:
        store.initialize_schema()
        for i in range(start, start + count):
            store.insert_textbook(
                f"tb-{i:04d}",
                Textbook(source_id=str(i), title=f"Textbook {i}", publisher="YBM"),
            )


@pytest.fixture
def seed():
    return seed_textbooks


@pytest.fixture
def live_paths(tmp_path, seed):
    """A live deployment: database with 3 textbooks and a files directory."""
    db_path = tmp_path / "live" / "data" / "edutech.db"
    files_path = tmp_path / "live" / "data" / "files"
    seed(db_path, 3)

    (files_path / "uploads").mkdir(parents=True)
    (files_path / "uploads" / "worksheet.pdf").write_bytes(b"%PDF-1.4 worksheet")
    (files_path / "readme.txt").write_text("chatbot assets", encoding="utf-8")
    return db_path, files_path
