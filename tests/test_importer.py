"""Tests for the entity importer."""

import logging
import threading
import uuid

import pytest

from edumigrate.exceptions import MigrationCancelled
from edumigrate.migration.importer import EntityImporter
from edumigrate.migration.mapper import IdMapper
from edumigrate.migration.models import EntityKind

from conftest import DELETED_PASSAGE_SET_ID, ORPHAN_QUESTION_ID


class TestEntityImporter:

    def test_scenario_counts(self, source, target):
        results = EntityImporter(source, target, IdMapper()).import_all()

        assert results[EntityKind.TEXTBOOKS].imported == 3
        assert results[EntityKind.PASSAGE_SETS].imported == 2
        assert results[EntityKind.QUESTIONS].total == 6
        assert results[EntityKind.QUESTIONS].imported == 5
        assert results[EntityKind.SYSTEM_PROMPTS].imported == 1
        assert results[EntityKind.SYSTEM_PROMPT_VERSIONS].imported == 2
        assert target.count(EntityKind.QUESTIONS) == 5

    def test_orphan_question_is_skipped_with_warning(self, source, target, caplog):
        with caplog.at_level(logging.WARNING, logger="edumigrate.migration.importer"):
            results = EntityImporter(source, target, IdMapper()).import_all()

        skipped = results[EntityKind.QUESTIONS].skipped
        assert len(skipped) == 1
        assert skipped[0].source_id == ORPHAN_QUESTION_ID
        assert skipped[0].missing_reference == DELETED_PASSAGE_SET_ID
        assert skipped[0].reason == "passage set not found"
        assert ORPHAN_QUESTION_ID in caplog.text
        assert DELETED_PASSAGE_SET_ID in caplog.text

    @pytest.mark.parametrize("set_id", [None, "absent"])
    def test_question_without_set_reference_is_skipped(
        self, clean_scenario, make_source, target, caplog, set_id
    ):
        question = {"_id": "652000000000000000000077", "questionNumber": 9,
                    "questionText": "Which set am I in?", "options": ["A"]}
        if set_id is None:
            question["setId"] = None
        clean_scenario[EntityKind.QUESTIONS].append(question)

        with caplog.at_level(logging.WARNING, logger="edumigrate.migration.importer"):
            results = EntityImporter(make_source(clean_scenario), target, IdMapper()).import_all()

        stats = results[EntityKind.QUESTIONS]
        assert stats.total == 6
        assert stats.imported == 5
        assert len(stats.skipped) == 1
        assert stats.skipped[0].source_id == "652000000000000000000077"
        assert stats.skipped[0].reason == "passage set reference missing"
        assert stats.skipped[0].missing_reference is None
        assert "652000000000000000000077" in caplog.text
        assert target.count(EntityKind.QUESTIONS) == 5

    def test_identifier_totality(self, clean_source, target, clean_scenario):
        mapper = IdMapper()
        EntityImporter(clean_source, target, mapper).import_all()

        textbook_rows = {row["id"] for row in target.rows(EntityKind.TEXTBOOKS)}
        issued = []
        for record in clean_scenario[EntityKind.TEXTBOOKS]:
            sid = record["_id"]["$oid"] if isinstance(record["_id"], dict) else record["_id"]
            target_id = mapper.resolve("textbooks", sid)
            assert target_id in textbook_rows
            assert uuid.UUID(target_id).version == 4
            issued.append(target_id)
        assert len(set(issued)) == 3

    def test_referential_integrity(self, source, target):
        EntityImporter(source, target, IdMapper()).import_all()

        assert target.dangling_questions() == []
        set_ids = {row["id"] for row in target.rows(EntityKind.PASSAGE_SETS)}
        for row in target.rows(EntityKind.QUESTIONS):
            assert row["set_id"] in set_ids

    def test_options_stored_in_order(self, source, target):
        mapper = IdMapper()
        EntityImporter(source, target, mapper).import_all()

        question_id = mapper.resolve("questions", "652000000000000000000002")
        assert target.get_question_options(question_id) == ["재활용의 중요성", "에너지 절약", "물 부족"]

    def test_progress_callback(self, source, target):
        calls = []
        importer = EntityImporter(
            source, target, IdMapper(), progress_interval=1, question_progress_interval=2,
            progress_callback=lambda kind, done, total: calls.append((kind, done, total)),
        )
        importer.import_kind(EntityKind.TEXTBOOKS)
        assert calls == [
            (EntityKind.TEXTBOOKS, 1, 3),
            (EntityKind.TEXTBOOKS, 2, 3),
            (EntityKind.TEXTBOOKS, 3, 3),
            (EntityKind.TEXTBOOKS, 3, 3),
        ]

    def test_cancel_before_start(self, source, target):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(MigrationCancelled):
            EntityImporter(source, target, IdMapper(), cancel_event=cancel).import_all()
        assert target.total_rows() == 0

    def test_cancel_stops_at_record_boundary(self, source, target):
        cancel = threading.Event()

        def stop_after_first(kind, done, total):
            if done == 1:
                cancel.set()

        importer = EntityImporter(
            source, target, IdMapper(), progress_interval=1,
            cancel_event=cancel, progress_callback=stop_after_first,
        )
        with pytest.raises(MigrationCancelled):
            importer.import_all()
        assert target.count(EntityKind.TEXTBOOKS) == 1
        assert target.count(EntityKind.PASSAGE_SETS) == 0
