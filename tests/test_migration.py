"""Tests for the migration engine: staging records → canonical cutoffs."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cutoff_ingest.errors import MigrationConflictError
from cutoff_ingest.migration.engine import MigrationEngine, MigrationResult
from cutoff_ingest.models.audit import AuditLog
from cutoff_ingest.models.canonical import College, Cutoff, Program
from cutoff_ingest.models.staging import ProcessedCutoffRecord
from cutoff_ingest.schemas.events import EventType
from cutoff_ingest.staging.store import StagingStore


# ── Helpers ──────────────────────────────────────────────────────────


def _nested():
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=None)
    ctx.__aexit__ = AsyncMock(return_value=False)
    return ctx


def _make_db(lookups: list | None = None):
    """Mock session; each execute() returns the next `lookups` item from scalar_one_or_none()."""
    db = AsyncMock()
    db.add = MagicMock()
    db.begin_nested = MagicMock(side_effect=lambda: _nested())
    results = []
    for found in lookups or []:
        result = MagicMock()
        result.scalar_one_or_none.return_value = found
        results.append(result)
    db.execute = AsyncMock(side_effect=results or None)
    return db


def _make_record(**overrides) -> ProcessedCutoffRecord:
    fields = {
        "id": uuid.uuid4(),
        "session_id": uuid.uuid4(),
        "raw_cutoff_id": uuid.uuid4(),
        "college_id": "ref-college",
        "program_id": "ref-program",
        "college_name": "b.j. medical college",
        "college_city": "Ahmedabad",
        "college_state": "Gujarat",
        "college_type": "MEDICAL",
        "program_name": "MD (GENERAL MEDICINE)",
        "program_level": None,
        "year": 2024,
        "round": "r1",
        "authority": "KEA",
        "quota": "AIQ",
        "category": "GM",
        "opening_rank": 1500,
        "closing_rank": 1500,
        "seats_available": 1,
        "seats_filled": 1,
        "confidence_score": 100,
        "status": "verified",
        "manual_verified": False,
    }
    fields.update(overrides)
    return ProcessedCutoffRecord(**fields)


def _make_engine() -> tuple[MigrationEngine, MagicMock]:
    store = MagicMock(spec=StagingStore)
    store.mark_migrated = MagicMock(side_effect=StagingStore().mark_migrated)
    return MigrationEngine(store=store), store


def _added(db, model) -> list:
    return [c.args[0] for c in db.add.call_args_list if isinstance(c.args[0], model)]


# ── Single record ────────────────────────────────────────────────────


class TestMigrateRecord:
    @pytest.mark.asyncio()
    async def test_creates_college_program_cutoff(self):
        engine, _ = _make_engine()
        db = _make_db([None, None, None])
        record = _make_record()
        result = MigrationResult()

        cutoff = await engine.migrate_record(db, record, result, source_file="KEA_2024.csv")

        college = _added(db, College)[0]
        assert college.name == "B.J. MEDICAL COLLEGE"
        assert college.normalized_name == "b j medical college"
        assert college.city == "AHMEDABAD"
        assert college.state == "GUJARAT"
        assert college.reference_id == "ref-college"

        program = _added(db, Program)[0]
        assert program.college_id == college.id
        assert program.level == "PG"
        assert program.specialization == "GENERAL MEDICINE"

        assert isinstance(cutoff, Cutoff)
        assert cutoff.college_id == college.id
        assert cutoff.program_id == program.id
        assert cutoff.closing_rank == 1500
        assert cutoff.source_file == "KEA_2024.csv"
        assert cutoff.import_session_id == record.session_id

        assert record.status == "migrated"
        assert (result.colleges_created, result.programs_created, result.cutoffs_created) == (1, 1, 1)
        actions = [a.event_type for a in _added(db, AuditLog)]
        assert actions == ["college.created", "program.created", "cutoff.created"]

    @pytest.mark.asyncio()
    async def test_updates_existing_cutoff(self):
        engine, _ = _make_engine()
        college = College(id=uuid.uuid4(), name="B.J. MEDICAL COLLEGE", normalized_name="b j medical college")
        program = Program(id=uuid.uuid4(), college_id=college.id, name="MD (GENERAL MEDICINE)")
        existing = Cutoff(
            id=uuid.uuid4(),
            college_id=college.id,
            program_id=program.id,
            year=2024,
            round="r1",
            authority="KEA",
            quota="AIQ",
            category="GM",
            opening_rank=1400,
            closing_rank=1400,
            seats_available=1,
            seats_filled=1,
            source_file="old.csv",
        )
        db = _make_db([college, program, existing])
        result = MigrationResult()

        cutoff = await engine.migrate_record(db, _make_record(closing_rank=1600), result)

        assert cutoff is existing
        assert existing.closing_rank == 1600
        assert existing.source_file == "old.csv"
        assert result.cutoffs_updated == 1
        assert result.colleges_created == 0
        audit = _added(db, AuditLog)
        assert len(audit) == 1
        assert audit[0].event_type == "cutoff.updated"
        assert audit[0].data["before"]["closing_rank"] == 1400
        assert audit[0].data["after"]["closing_rank"] == 1600

    @pytest.mark.asyncio()
    async def test_missing_fields_rejected(self):
        engine, _ = _make_engine()
        db = _make_db()

        with pytest.raises(MigrationConflictError, match="program_id"):
            await engine.migrate_record(db, _make_record(program_id=None), MigrationResult())

        db.execute.assert_not_awaited()


# ── Batches ──────────────────────────────────────────────────────────


class TestMigrateRecords:
    @pytest.mark.asyncio()
    async def test_failure_isolated(self):
        engine, store = _make_engine()
        db = _make_db([None, None, None])
        good = _make_record()
        bad = _make_record(year=None, session_id=good.session_id)

        with patch("cutoff_ingest.migration.engine.emit", new_callable=AsyncMock) as mock_emit:
            result = await engine.migrate_records(db, [bad, good])

        assert result.eligible == 2
        assert result.migrated == 1
        assert len(result.failures) == 1
        failure = result.failures[0]
        assert failure["kind"] == "migration_conflict"
        assert failure["record_id"] == str(bad.id)
        assert "year" in failure["message"]
        assert bad.status == "verified"
        assert good.status == "migrated"
        assert db.begin_nested.call_count == 2
        store.update_counters.assert_awaited_once_with(db, good.session_id, migrated=1)
        assert mock_emit.call_args.args[0].event_type == EventType.MIGRATION_RECORD_FAILED

    @pytest.mark.asyncio()
    async def test_unexpected_error_wrapped(self):
        engine, _ = _make_engine()
        db = _make_db()
        db.execute = AsyncMock(side_effect=RuntimeError("deadlock detected"))

        with patch("cutoff_ingest.migration.engine.emit", new_callable=AsyncMock):
            result = await engine.migrate_records(db, [_make_record()])

        assert result.migrated == 0
        assert "RuntimeError: deadlock detected" in result.failures[0]["message"]


class TestMigrateSession:
    @pytest.mark.asyncio()
    async def test_completes_session(self):
        engine, store = _make_engine()
        session = MagicMock()
        session.file_name = "KEA_2024_R1.csv"
        store.get_session.return_value = session
        db = _make_db()
        session_id = uuid.uuid4()

        with (
            patch.object(engine, "eligible_records", AsyncMock(return_value=[])),
            patch("cutoff_ingest.migration.engine.emit", new_callable=AsyncMock) as mock_emit,
        ):
            result = await engine.migrate_session(db, session_id, actor="admin")

        assert result.session_id == session_id
        assert result.eligible == 0
        store.complete_session.assert_awaited_once()
        event = mock_emit.call_args.args[0]
        assert event.event_type == EventType.MIGRATION_COMPLETED
        assert event.actor_id == "admin"
        assert event.data["migrated"] == 0

    @pytest.mark.asyncio()
    async def test_all_sessions(self):
        engine, store = _make_engine()
        db = _make_db()

        with (
            patch.object(engine, "eligible_records", AsyncMock(return_value=[])),
            patch("cutoff_ingest.migration.engine.emit", new_callable=AsyncMock),
        ):
            result = await engine.migrate_session(db)

        store.get_session.assert_not_awaited()
        store.complete_session.assert_not_awaited()
        assert result.to_dict()["session_id"] is None
