"""Tests for the import orchestrator: file → staged records, end to end with a mocked DB."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cutoff_ingest.config import IngestSettings
from cutoff_ingest.corrections.defaults import DEFAULT_RULES
from cutoff_ingest.corrections.normalizer import RuleSet, compile_rule
from cutoff_ingest.corrections.store import CorrectionRuleStore
from cutoff_ingest.migration.engine import MigrationEngine, MigrationResult
from cutoff_ingest.models.enums import PRIORITY_VALUES
from cutoff_ingest.models.staging import ImportSession, ProcessedCutoffRecord, RawCutoffRecord
from cutoff_ingest.pipeline.orchestrator import ImportOrchestrator
from cutoff_ingest.reference.loader import build_snapshot
from cutoff_ingest.schemas.events import EventType
from cutoff_ingest.schemas.pipeline import ImportDefaults
from cutoff_ingest.staging.progress import ProgressReporter
from cutoff_ingest.staging.store import StagingStore

SAMPLE_CSV = (
    "round,quota,college_name,college_location,course_name,all_ranks\n"
    'R1,AIQ,"B J MDAL COLLEGE, AHMDAD",AHMEDABAD,GENERAL MEDICINE,"GM:1500, SC:3000"\n'
    "R1,AIQ,UNKNOWN INSTITUTE OF NOWHERE,,GENERAL MEDICINE,GM:2000\n"
    "R1,AIQ,B.J. MEDICAL COLLEGE,,GENERAL MEDICINE,\n"
    "R1,AIQ,,,GENERAL MEDICINE,GM:10\n"
)


# ── Helpers ──────────────────────────────────────────────────────────


def _nested():
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=None)
    ctx.__aexit__ = AsyncMock(return_value=False)
    return ctx


def _make_db():
    db = AsyncMock()
    db.add = MagicMock()
    db.begin_nested = MagicMock(side_effect=lambda: _nested())
    result = MagicMock()
    result.all.return_value = []
    db.execute = AsyncMock(return_value=result)
    return db


def _rule_set() -> RuleSet:
    return RuleSet.from_rules([
        compile_rule(
            index,
            rule_def["category"].value,
            rule_def["regex_pattern"],
            rule_def["replacement"],
            rule_def["flags"],
            PRIORITY_VALUES[rule_def["priority"]],
        )
        for index, rule_def in enumerate(DEFAULT_RULES)
    ])


def _snapshot():
    return build_snapshot(
        colleges=[{"name": "B.J. MEDICAL COLLEGE", "city": "AHMEDABAD", "state": "GUJARAT"}],
        programs=[{"name": "GENERAL MEDICINE"}],
    )


def _make_orchestrator(store=None) -> tuple[ImportOrchestrator, MagicMock, MagicMock, MagicMock]:
    rules = MagicMock(spec=CorrectionRuleStore)
    rules.flush_usage.return_value = 3
    migrator = MagicMock(spec=MigrationEngine)
    progress = MagicMock(spec=ProgressReporter)
    orchestrator = ImportOrchestrator(
        _snapshot(),
        store=store or StagingStore(),
        rules=rules,
        migrator=migrator,
        progress=progress,
        ingest_config=IngestSettings(progress_interval=2),
    )
    return orchestrator, rules, migrator, progress


def _records(db) -> list[ProcessedCutoffRecord]:
    return [c.args[0] for c in db.add.call_args_list if isinstance(c.args[0], ProcessedCutoffRecord)]


def _sessions(db) -> list[ImportSession]:
    return [c.args[0] for c in db.add.call_args_list if isinstance(c.args[0], ImportSession)]


# ── import_file ──────────────────────────────────────────────────────


class TestImportFile:
    @pytest.mark.asyncio()
    async def test_full_import(self, tmp_path):
        path = tmp_path / "KEA_2024_DENTAL_R1_aggregated.csv"
        path.write_text(SAMPLE_CSV)
        orchestrator, rules, migrator, progress = _make_orchestrator()
        db = _make_db()

        with (
            patch("cutoff_ingest.pipeline.orchestrator.emit", new_callable=AsyncMock) as mock_emit,
            patch("cutoff_ingest.staging.store.emit", new_callable=AsyncMock),
        ):
            summary = await orchestrator.import_file(db, path, rule_set=_rule_set())

        assert summary.authority == "KEA DENTAL"
        assert summary.year == 2024
        assert summary.round == "r1"
        assert summary.status == "active"
        assert summary.raw_imported == 4
        assert summary.processed == 3
        assert summary.successful == 2
        assert summary.fully_resolved == 2
        assert summary.auto_verified == 2
        assert summary.success_rate == 50.0
        assert [(e["kind"], e["row"]) for e in summary.errors] == [("rank_parse", 3), ("row_validation", 4)]
        assert len(summary.warnings) == 1
        assert summary.warnings[0]["kind"] == "entity_unresolved"
        assert summary.warnings[0]["row"] == 2

        session = _sessions(db)[0]
        assert session.total_records == 4
        assert session.raw_imported == 4
        assert len(session.error_log) == 2
        raw_rows = [c.args[0] for c in db.add.call_args_list if isinstance(c.args[0], RawCutoffRecord)]
        assert len(raw_rows) == 4
        assert raw_rows[3].validation_error is not None

        resolved, second, unresolved = _records(db)
        assert resolved.cleaned_college_text == "B.J. MEDICAL COLLEGE, AHMEDABAD"
        assert resolved.college_name == "B.J. MEDICAL COLLEGE"
        assert resolved.college_city == "AHMEDABAD"
        assert resolved.college_state == "GUJARAT"
        assert resolved.college_match_tier == 1
        assert resolved.program_name == "GENERAL MEDICINE"
        assert resolved.authority == "KEA DENTAL"
        assert resolved.year == 2024
        assert resolved.round == "r1"
        assert resolved.quota == "AIQ"
        assert resolved.category == "GM"
        assert resolved.opening_rank == resolved.closing_rank == 1500
        assert resolved.confidence_score == 100
        assert resolved.status == "verified"
        assert resolved.notes == "Processed with confidence: 100%"
        assert second.category == "SC"
        assert second.closing_rank == 3000

        assert unresolved.college_id is None
        assert unresolved.college_city is None
        assert unresolved.program_id is not None
        assert unresolved.confidence_score == 50
        assert unresolved.status == "pending"

        # College text was corrected once, so one history batch was recorded
        rules.record_history.assert_called_once()
        assert rules.record_history.call_args.args[2] == "college_name"
        rules.flush_usage.assert_awaited_once()
        rules.snapshot.assert_not_awaited()
        migrator.migrate_session.assert_not_awaited()

        assert progress.publish.await_count == 6
        assert progress.publish.call_args.args[1:] == ("processed", 4, 4)

        events = [c.args[0] for c in mock_emit.call_args_list]
        assert [e.event_type for e in events] == [
            EventType.IMPORT_RAW_STAGED,
            EventType.IMPORT_PROCESSED,
            EventType.IMPORT_COMPLETED,
        ]
        assert events[-1].data["success_rate"] == 50.0
        assert "errors" not in events[-1].data

    @pytest.mark.asyncio()
    async def test_unreadable_file_fails_session(self, tmp_path):
        path = tmp_path / "KEA_2024_R1.pdf"
        path.write_text("%PDF-1.4")
        orchestrator, rules, _, progress = _make_orchestrator()
        db = _make_db()

        with (
            patch("cutoff_ingest.pipeline.orchestrator.emit", new_callable=AsyncMock) as mock_emit,
            patch("cutoff_ingest.staging.store.emit", new_callable=AsyncMock) as store_emit,
        ):
            summary = await orchestrator.import_file(db, path)

        assert summary.status == "failed"
        assert "Unsupported" in summary.fatal_error
        assert summary.raw_imported == 0
        assert _sessions(db)[0].file_type == "pdf"
        assert store_emit.call_args.args[0].event_type == EventType.IMPORT_FAILED
        mock_emit.assert_not_awaited()
        progress.publish.assert_not_awaited()
        rules.snapshot.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_defaults_without_filename_metadata(self, tmp_path):
        path = tmp_path / "cutoffs.csv"
        path.write_text("college_name,course_name,all_ranks\nB.J. MEDICAL COLLEGE,GENERAL MEDICINE,GM:10\n")
        orchestrator, _, _, _ = _make_orchestrator()
        db = _make_db()
        defaults = ImportDefaults(authority="MCC", year=2023, round="Round 2", quota="state quota")

        with (
            patch("cutoff_ingest.pipeline.orchestrator.emit", new_callable=AsyncMock),
            patch("cutoff_ingest.staging.store.emit", new_callable=AsyncMock),
        ):
            summary = await orchestrator.import_file(db, path, defaults, rule_set=_rule_set())

        assert (summary.authority, summary.year, summary.round) == ("MCC", 2023, "r2")
        record = _records(db)[0]
        assert record.authority == "MCC"
        assert record.year == 2023
        assert record.round == "r2"
        assert record.quota == "STATE"

    @pytest.mark.asyncio()
    async def test_auto_migrate(self, tmp_path):
        path = tmp_path / "KEA_2024_R1.csv"
        path.write_text("college_name,course_name,all_ranks\nB.J. MEDICAL COLLEGE,GENERAL MEDICINE,GM:10\n")
        orchestrator, _, migrator, _ = _make_orchestrator()
        migrator.migrate_session.return_value = MigrationResult(eligible=1, migrated=1, cutoffs_created=1)
        db = _make_db()

        with (
            patch("cutoff_ingest.pipeline.orchestrator.emit", new_callable=AsyncMock),
            patch("cutoff_ingest.staging.store.emit", new_callable=AsyncMock),
        ):
            summary = await orchestrator.import_file(
                db, path, ImportDefaults(auto_migrate=True, actor="cli"), rule_set=_rule_set()
            )

        session = _sessions(db)[0]
        migrator.migrate_session.assert_awaited_once_with(db, session.id, actor="cli")
        assert summary.migration["migrated"] == 1
        assert summary.migration["cutoffs_created"] == 1


# ── process_session ──────────────────────────────────────────────────


def _raw(session_id: uuid.UUID, row_number: int) -> RawCutoffRecord:
    return RawCutoffRecord(
        id=uuid.uuid4(),
        session_id=session_id,
        row_number=row_number,
        raw_data={},
        college_text="B.J. MEDICAL COLLEGE",
        course_text="GENERAL MEDICINE",
        all_ranks=f"GM:{row_number}00",
    )


def _mock_store(session: ImportSession, raws: list[RawCutoffRecord], done: set) -> MagicMock:
    store = MagicMock(spec=StagingStore)
    store.get_session.return_value = session
    store.get_raw_records.return_value = raws
    store.processed_raw_ids.return_value = done
    store.delete_reprocessable.return_value = set()
    return store


class TestProcessSession:
    def _session(self) -> ImportSession:
        return ImportSession(
            id=uuid.uuid4(),
            file_name="KEA_2024_R1.csv",
            file_type="csv",
            authority="KEA",
            year=2024,
            round="r1",
            default_quota="AIQ",
            status="active",
            error_log=[],
        )

    @pytest.mark.asyncio()
    async def test_skips_rows_already_processed(self):
        session = self._session()
        first, second = _raw(session.id, 1), _raw(session.id, 2)
        store = _mock_store(session, [first, second], {first.id})
        orchestrator, _, _, _ = _make_orchestrator(store)
        db = _make_db()

        with patch("cutoff_ingest.pipeline.orchestrator.emit", new_callable=AsyncMock):
            summary = await orchestrator.process_session(db, session.id, rule_set=_rule_set())

        assert summary.raw_imported == 1
        assert summary.processed == 1
        store.delete_reprocessable.assert_not_awaited()
        store.add_processed_record.assert_called_once()
        fields = store.add_processed_record.call_args.kwargs
        assert fields["raw_cutoff_id"] == second.id
        assert fields["closing_rank"] == 200
        assert fields["authority"] == "KEA"
        assert fields["quota"] == "AIQ"
        store.refresh_counters.assert_awaited_once_with(db, session)

    @pytest.mark.asyncio()
    async def test_reprocess_replaces_machine_records(self):
        session = self._session()
        raws = [_raw(session.id, 1), _raw(session.id, 2)]
        store = _mock_store(session, raws, {raws[0].id, raws[1].id})
        orchestrator, _, _, _ = _make_orchestrator(store)
        db = _make_db()

        with patch("cutoff_ingest.pipeline.orchestrator.emit", new_callable=AsyncMock):
            summary = await orchestrator.process_session(db, session.id, rule_set=_rule_set(), reprocess=True)

        store.delete_reprocessable.assert_awaited_once_with(db, session.id)
        store.processed_raw_ids.assert_not_awaited()
        assert summary.raw_imported == 2
        assert store.add_processed_record.call_count == 2
