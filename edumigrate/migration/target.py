"""
SQLite Target Store
===================

Relational store the migration writes into, plus the three store-native
facilities the snapshot manager relies on:

- ``checkpoint()``      forces the WAL into the main database file
- ``integrity_check()`` runs ``PRAGMA integrity_check``
- ``copy_database()``   point-in-time copy through the online backup API
"""

import logging
import sqlite3
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from ..exceptions import RecordWriteError, TargetConnectionError
from .models import (
    EntityKind,
    LINK_TABLE,
    PassageSet,
    Question,
    SystemPrompt,
    SystemPromptVersion,
    Textbook,
    decode_options,
    format_datetime,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

PRAGMAS = [
    "PRAGMA journal_mode = WAL",
    "PRAGMA cache_size = -102400",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA foreign_keys = ON",
]

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS textbooks (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        publisher TEXT NOT NULL DEFAULT '',
        subject TEXT NOT NULL DEFAULT '',
        level TEXT NOT NULL DEFAULT '',
        grade TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS passage_sets (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        passage TEXT NOT NULL DEFAULT '',
        passage_comment TEXT NOT NULL DEFAULT '',
        qr_code TEXT NOT NULL UNIQUE,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS questions (
        id TEXT PRIMARY KEY,
        set_id TEXT NOT NULL REFERENCES passage_sets(id) ON DELETE CASCADE,
        question_number INTEGER NOT NULL,
        question_text TEXT NOT NULL,
        options_json TEXT NOT NULL,
        correct_answer TEXT NOT NULL DEFAULT '',
        explanation TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_questions_set_id ON questions(set_id)",
    """
    CREATE TABLE IF NOT EXISTS system_prompts (
        id TEXT PRIMARY KEY,
        key TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL DEFAULT '',
        description TEXT NOT NULL DEFAULT '',
        content TEXT NOT NULL DEFAULT '',
        is_active INTEGER NOT NULL DEFAULT 1,
        version INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS system_prompt_versions (
        id TEXT PRIMARY KEY,
        prompt_key TEXT NOT NULL,
        content TEXT NOT NULL DEFAULT '',
        version INTEGER NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        created_by TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS passage_set_textbooks (
        textbook_id TEXT NOT NULL REFERENCES textbooks(id) ON DELETE CASCADE,
        passage_set_id TEXT NOT NULL REFERENCES passage_sets(id) ON DELETE CASCADE,
        PRIMARY KEY (textbook_id, passage_set_id)
    )
    """,
]


@contextmanager
def _open(path: PathLike) -> Iterator[sqlite3.Connection]:
    with closing(sqlite3.connect(str(path))) as conn:
        yield conn


def checkpoint(path: PathLike) -> None:
    """Flush the write-ahead log into the main database file."""
    with _open(path) as conn:
        conn.execute("PRAGMA wal_checkpoint(FULL)")


def integrity_check(path: PathLike) -> bool:
    """Return True when ``PRAGMA integrity_check`` reports ``ok``."""
    try:
        with _open(path) as conn:
            rows = conn.execute("PRAGMA integrity_check").fetchall()
    except sqlite3.DatabaseError as e:
        logger.error(f"Integrity check could not run on {path}: {e}")
        return False
    result = [row[0] for row in rows]
    if result != ["ok"]:
        logger.error(f"Integrity check failed on {path}: {result[:5]}")
        return False
    return True


def copy_database(source: PathLike, destination: PathLike) -> None:
    """Atomic point-in-time copy of *source* into *destination*.

    Uses the SQLite online backup API, never a raw file copy, so a store
    with concurrent readers or an un-checkpointed WAL is copied consistently.
    Existing content in *destination* is replaced.
    """
    with _open(source) as src, _open(destination) as dst:
        src.backup(dst)


def count_rows(path: PathLike, table: str) -> int:
    with _open(path) as conn:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


class TargetStore:
    """Connection to the SQLite store being migrated into."""

    def __init__(self, path: PathLike):
        self.path = Path(path)
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise TargetConnectionError("TargetStore is not connected")
        return self._conn

    def connect(self) -> None:
        if self._conn is not None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path))
            for pragma in PRAGMAS:
                conn.execute(pragma)
        except (OSError, sqlite3.Error) as e:
            raise TargetConnectionError(f"Cannot open SQLite store {self.path}: {e}") from e
        self._conn = conn
        logger.debug(f"Connected to SQLite: {self.path}")

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug("Disconnected from SQLite")

    def __enter__(self) -> "TargetStore":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def initialize_schema(self) -> None:
        """Create tables and indexes that do not exist yet."""
        with self.conn:
            for statement in SCHEMA:
                self.conn.execute(statement)

    # ------------------------------------------------------------------
    # Inserts
    # ------------------------------------------------------------------

    def _insert(self, kind: EntityKind, sql: str, params: Tuple) -> None:
        try:
            with self.conn:
                self.conn.execute(sql, params)
        except sqlite3.Error as e:
            raise RecordWriteError(f"Failed to write {kind.value} row {params[0]}: {e}") from e

    def insert_textbook(self, target_id: str, textbook: Textbook) -> None:
        self._insert(
            EntityKind.TEXTBOOKS,
            """
            INSERT INTO textbooks (id, title, publisher, subject, level, grade,
                                   created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (target_id, textbook.title, textbook.publisher, textbook.subject,
             textbook.level, textbook.grade,
             format_datetime(textbook.created_at), format_datetime(textbook.updated_at)),
        )

    def insert_passage_set(self, target_id: str, passage_set: PassageSet) -> None:
        self._insert(
            EntityKind.PASSAGE_SETS,
            """
            INSERT INTO passage_sets (id, title, passage, passage_comment, qr_code,
                                      created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (target_id, passage_set.title, passage_set.passage,
             passage_set.passage_comment, passage_set.qr_code,
             format_datetime(passage_set.created_at), format_datetime(passage_set.updated_at)),
        )

    def insert_question(self, target_id: str, set_id: str, question: Question) -> None:
        self._insert(
            EntityKind.QUESTIONS,
            """
            INSERT INTO questions (id, set_id, question_number, question_text,
                                   options_json, correct_answer, explanation,
                                   created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (target_id, set_id, question.question_number, question.question_text,
             question.options_json, question.correct_answer, question.explanation,
             format_datetime(question.created_at), format_datetime(question.updated_at)),
        )

    def insert_system_prompt(self, target_id: str, prompt: SystemPrompt) -> None:
        self._insert(
            EntityKind.SYSTEM_PROMPTS,
            """
            INSERT INTO system_prompts (id, key, name, description, content,
                                        is_active, version, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (target_id, prompt.key, prompt.name, prompt.description, prompt.content,
             1 if prompt.is_active else 0, prompt.version,
             format_datetime(prompt.created_at), format_datetime(prompt.updated_at)),
        )

    def insert_system_prompt_version(self, target_id: str, version: SystemPromptVersion) -> None:
        self._insert(
            EntityKind.SYSTEM_PROMPT_VERSIONS,
            """
            INSERT INTO system_prompt_versions (id, prompt_key, content, version,
                                                description, created_by, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (target_id, version.prompt_key, version.content, version.version,
             version.description, version.created_by, format_datetime(version.created_at)),
        )

    def link_textbook_passage_set(self, textbook_id: str, passage_set_id: str) -> bool:
        """
        Insert a junction row.

        Returns:
            True if a row was written, False if the pair already existed.

        Raises:
            RecordWriteError: a referenced row does not exist.
        """
        try:
            with self.conn:
                cursor = self.conn.execute(
                    f"INSERT OR IGNORE INTO {LINK_TABLE} (textbook_id, passage_set_id) "
                    "VALUES (?, ?)",
                    (textbook_id, passage_set_id),
                )
        except sqlite3.IntegrityError as e:
            raise RecordWriteError(
                f"Failed to link textbook {textbook_id} to passage set {passage_set_id}: {e}"
            ) from e
        return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def count(self, kind: EntityKind) -> int:
        return self.conn.execute(f"SELECT COUNT(*) FROM {kind.table}").fetchone()[0]

    def count_links(self) -> int:
        return self.conn.execute(f"SELECT COUNT(*) FROM {LINK_TABLE}").fetchone()[0]

    def total_rows(self) -> int:
        return sum(self.count(kind) for kind in EntityKind) + self.count_links()

    def rows(self, kind: EntityKind) -> List[Dict[str, Any]]:
        cursor = self.conn.execute(f"SELECT * FROM {kind.table}")
        columns = [c[0] for c in cursor.description]
        return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def links(self) -> List[Tuple[str, str]]:
        return self.conn.execute(
            f"SELECT textbook_id, passage_set_id FROM {LINK_TABLE}"
        ).fetchall()

    def get_question_options(self, question_id: str) -> List[str]:
        row = self.conn.execute(
            "SELECT options_json FROM questions WHERE id = ?", (question_id,)
        ).fetchone()
        if row is None:
            raise KeyError(question_id)
        return decode_options(row[0])

    def dangling_questions(self) -> List[str]:
        """Ids of questions whose passage set does not exist."""
        return [row[0] for row in self.conn.execute(
            "SELECT q.id FROM questions q "
            "LEFT JOIN passage_sets p ON p.id = q.set_id WHERE p.id IS NULL"
        )]

    def checksum_values(self, kind: EntityKind) -> List[Tuple]:
        """Content values of every row of *kind*, identifiers excluded."""
        values = []
        for row in self.rows(kind):
            if kind == EntityKind.TEXTBOOKS:
                values.append((row['title'], row['publisher'], row['subject'],
                               row['level'], row['grade']))
            elif kind == EntityKind.PASSAGE_SETS:
                values.append((row['title'], row['passage'], row['passage_comment'],
                               row['qr_code']))
            elif kind == EntityKind.QUESTIONS:
                values.append((row['question_number'], row['question_text'],
                               tuple(decode_options(row['options_json'])),
                               row['correct_answer'], row['explanation']))
            elif kind == EntityKind.SYSTEM_PROMPTS:
                values.append((row['key'], row['name'], row['description'],
                               row['content'], bool(row['is_active']), row['version']))
            elif kind == EntityKind.SYSTEM_PROMPT_VERSIONS:
                values.append((row['prompt_key'], row['content'], row['version'],
                               row['description'], row['created_by']))
        return values
