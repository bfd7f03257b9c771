"""Tests for entity kinds and the typed record models."""

from datetime import datetime, timezone

import pytest
from bson import ObjectId

from edumigrate.migration.models import (
    EntityKind,
    IMPORT_ORDER,
    PassageSet,
    Question,
    SystemPrompt,
    Textbook,
    decode_options,
    encode_options,
    parse_datetime,
    source_id,
    to_model,
)


class TestEntityKind:

    def test_legacy_collection_names(self):
        assert EntityKind.PASSAGE_SETS.collection == "passagesets"
        assert EntityKind.SYSTEM_PROMPT_VERSIONS.collection == "systemprompversions"
        assert EntityKind.QUESTIONS.table == "questions"

    def test_from_string_accepts_table_or_collection(self):
        assert EntityKind.from_string("passagesets") is EntityKind.PASSAGE_SETS
        assert EntityKind.from_string(" Questions ") is EntityKind.QUESTIONS
        with pytest.raises(ValueError, match="Invalid entity kind"):
            EntityKind.from_string("users")

    def test_import_order_puts_parents_first(self):
        assert IMPORT_ORDER.index(EntityKind.PASSAGE_SETS) < IMPORT_ORDER.index(EntityKind.QUESTIONS)
        assert IMPORT_ORDER.index(EntityKind.SYSTEM_PROMPTS) < IMPORT_ORDER.index(
            EntityKind.SYSTEM_PROMPT_VERSIONS)


class TestConversions:

    def test_source_id_shapes(self):
        oid = ObjectId("650000000000000000000001")
        assert source_id(oid) == "650000000000000000000001"
        assert source_id({"$oid": "650000000000000000000001"}) == "650000000000000000000001"
        with pytest.raises(ValueError):
            source_id(None)

    def test_parse_datetime_shapes(self):
        expected = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
        assert parse_datetime("2023-11-14T22:13:20Z") == expected
        assert parse_datetime({"$date": 1700000000000}) == expected
        assert parse_datetime({"$date": {"$numberLong": "1700000000000"}}) == expected
        assert parse_datetime(None) is None
        assert parse_datetime(expected) is expected

    def test_options_round_trip_keeps_order_and_unicode(self):
        options = ["재활용의 중요성", "에너지 절약", "물 부족"]
        encoded = encode_options(options)
        assert "재활용" in encoded
        assert decode_options(encoded) == options
        assert decode_options(None) == []

    def test_decode_options_rejects_non_list(self):
        with pytest.raises(ValueError, match="list"):
            decode_options('{"a": 1}')


class TestModels:

    def test_question_from_source(self, scenario):
        record = scenario[EntityKind.QUESTIONS][4]
        question = Question.from_source(record)
        assert question.set_source_id == "651000000000000000000002"
        assert question.question_number == 3
        assert question.options == []
        assert question.options_json == "[]"

    def test_passage_set_textbook_refs(self, scenario):
        passage_set = PassageSet.from_source(scenario[EntityKind.PASSAGE_SETS][0])
        assert passage_set.qr_code == "QR-0001"
        assert passage_set.passage_comment == "Main idea: environment"
        assert len(passage_set.textbook_source_ids) == 2

    def test_missing_required_field(self):
        with pytest.raises(ValueError, match="qrCode"):
            PassageSet.from_source({"_id": "x", "title": "No code"})

    def test_system_prompt_defaults(self):
        prompt = SystemPrompt.from_source({"_id": "p", "key": "tutor"})
        assert prompt.is_active is True
        assert prompt.version == 1

    def test_to_model_dispatch(self, scenario):
        model = to_model(EntityKind.TEXTBOOKS, scenario[EntityKind.TEXTBOOKS][2])
        assert isinstance(model, Textbook)
        assert model.source_id == "650000000000000000000003"
        assert model.checksum_values() == ("Grammar Zone", "YBM", "English", "High", "1")
