"""End-to-end tests for a migration run."""

import logging
from dataclasses import replace
from pathlib import Path

from edumigrate.migration.backup import BackupCategory
from edumigrate.migration.models import EntityKind
from edumigrate.migration.orchestrator import (
    FailureCause,
    MigrationOrchestrator,
    MigrationPhase,
)
from edumigrate.migration.source import JsonExportSource
from edumigrate.migration.target import TargetStore


def _counts(path):
    with TargetStore(path) as store:
        return {kind: store.count(kind) for kind in EntityKind}, store.count_links()


class TestMigrationOrchestrator:

    def test_scenario_with_orphan_fails_on_questions(self, source, migration_config):
        result = MigrationOrchestrator(source, migration_config.sqlite_path, migration_config).run()

        assert result.success is False
        assert result.phase == MigrationPhase.FAILED
        assert result.failed_phase == MigrationPhase.VERIFYING
        assert result.cause == FailureCause.VERIFICATION
        assert "questions" in result.message
        assert result.import_stats["questions"].imported == 5
        assert result.import_stats["questions"].skipped_count == 1
        assert result.link_stats.created == 2

    def test_null_set_reference_fails_at_verification(
        self, clean_scenario, make_source, migration_config
    ):
        clean_scenario[EntityKind.QUESTIONS].append(
            {"_id": "652000000000000000000077", "setId": None, "questionNumber": 9,
             "questionText": "Which set am I in?", "options": ["A", "B"]}
        )
        result = MigrationOrchestrator(
            make_source(clean_scenario), migration_config.sqlite_path, migration_config
        ).run()

        assert result.cause == FailureCause.VERIFICATION
        assert result.failed_phase == MigrationPhase.VERIFYING
        assert "questions: source=6 target=5" in result.message
        assert result.import_stats["questions"].skipped[0].reason == "passage set reference missing"

    def test_failed_run_rolls_back_target(self, source, migration_config):
        result = MigrationOrchestrator(source, migration_config.sqlite_path, migration_config).run()

        assert result.rolled_back is True
        assert result.snapshot_name.startswith("pre-migrate_")
        counts, links = _counts(migration_config.sqlite_path)
        assert all(count == 0 for count in counts.values())
        assert links == 0

    def test_clean_scenario_succeeds(self, clean_source, migration_config):
        result = MigrationOrchestrator(
            clean_source, migration_config.sqlite_path, migration_config
        ).run()

        assert result.success is True
        assert result.phase == MigrationPhase.SUCCEEDED
        assert result.cause is None
        assert result.verification.passed
        counts, links = _counts(migration_config.sqlite_path)
        assert counts[EntityKind.TEXTBOOKS] == 3
        assert counts[EntityKind.PASSAGE_SETS] == 2
        assert counts[EntityKind.QUESTIONS] == 5
        assert counts[EntityKind.SYSTEM_PROMPT_VERSIONS] == 2
        assert links == 2

    def test_pre_migration_snapshot_is_kept(self, clean_source, migration_config, tmp_path):
        result = MigrationOrchestrator(
            clean_source, migration_config.sqlite_path, migration_config
        ).run()

        snapshot = tmp_path / "backups" / BackupCategory.DATABASE.value / f"{result.snapshot_name}.db"
        assert snapshot.exists()

    def test_connections_closed_exactly_once(self, source, clean_source, migration_config):
        MigrationOrchestrator(clean_source, migration_config.sqlite_path, migration_config).run()
        assert clean_source.connect_calls == 1
        assert clean_source.close_calls == 1

        other = replace(migration_config, sqlite_path=migration_config.sqlite_path + ".2",
                        export_path=migration_config.export_path + "-2")
        MigrationOrchestrator(source, other.sqlite_path, other).run()
        assert source.close_calls == 1

    def test_connection_failure_aborts_before_writes(self, scenario, make_source, migration_config):
        source = make_source(scenario, fail_connect=True)
        result = MigrationOrchestrator(source, migration_config.sqlite_path, migration_config).run()

        assert result.cause == FailureCause.CONNECTION
        assert result.failed_phase == MigrationPhase.CONNECTING
        assert result.snapshot_name is None
        assert result.rolled_back is False
        assert not Path(migration_config.sqlite_path).exists()

    def test_cancellation(self, clean_source, migration_config):
        orchestrator = MigrationOrchestrator(
            clean_source, migration_config.sqlite_path, migration_config
        )
        orchestrator.cancel()
        result = orchestrator.run()

        assert result.success is False
        assert result.cause == FailureCause.CANCELLED
        assert result.failed_phase == MigrationPhase.IMPORTING
        assert clean_source.close_calls == 1

    def test_write_error_is_fatal(self, clean_scenario, make_source, migration_config):
        clean_scenario[EntityKind.PASSAGE_SETS][1]["qrCode"] = "QR-0001"
        result = MigrationOrchestrator(
            make_source(clean_scenario), migration_config.sqlite_path, migration_config
        ).run()

        assert result.cause == FailureCause.WRITE
        assert result.failed_phase == MigrationPhase.IMPORTING
        assert result.rolled_back is True

    def test_rerun_into_populated_target_warns_and_restores(
            self, clean_scenario, make_source, migration_config, tmp_path, caplog):
        first = MigrationOrchestrator(
            make_source(clean_scenario), migration_config.sqlite_path, migration_config
        ).run()
        assert first.success

        second_config = replace(migration_config, export_path=str(tmp_path / "backups-2"))
        with caplog.at_level(logging.WARNING):
            second = MigrationOrchestrator(
                make_source(clean_scenario), second_config.sqlite_path, second_config
            ).run()

        assert "already holds" in caplog.text
        assert second.success is False
        assert second.rolled_back is True
        counts, links = _counts(migration_config.sqlite_path)
        assert counts[EntityKind.TEXTBOOKS] == 3
        assert links == 2

    def test_snapshot_disabled(self, source, migration_config):
        config = replace(migration_config, snapshot_before_migrate=False)
        orchestrator = MigrationOrchestrator(source, config.sqlite_path, config)
        result = orchestrator.run()

        assert orchestrator.snapshots is None
        assert result.rolled_back is False
        counts, _ = _counts(config.sqlite_path)
        assert counts[EntityKind.QUESTIONS] == 5

    def test_source_export_is_readable(self, clean_source, migration_config):
        config = replace(migration_config, export_source=True)
        result = MigrationOrchestrator(clean_source, config.sqlite_path, config).run()

        assert result.export_path.name.startswith("source-")
        assert (result.export_path / "passagesets.json").exists()
        with JsonExportSource(result.export_path) as exported:
            assert exported.count(EntityKind.QUESTIONS) == 5
            assert exported.count(EntityKind.SYSTEM_PROMPT_VERSIONS) == 2

    def test_result_to_dict(self, source, migration_config):
        result = MigrationOrchestrator(source, migration_config.sqlite_path, migration_config).run()
        data = result.to_dict()

        assert data["cause"] == "verification"
        assert data["phase"] == "failed"
        assert data["import_stats"]["questions"]["skipped"][0]["reason"] == "passage set not found"
