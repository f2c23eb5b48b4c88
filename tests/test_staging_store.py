"""Tests for the staging store: sessions, records, and the verification state machine."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cutoff_ingest.config import settings
from cutoff_ingest.errors import InvalidStatusTransition, RowValidationError, StagingRecordNotFound
from cutoff_ingest.models.staging import ManualCorrection, ProcessedCutoffRecord
from cutoff_ingest.parsing.reader import ParsedRow
from cutoff_ingest.reference.loader import build_snapshot
from cutoff_ingest.schemas.events import EventType
from cutoff_ingest.schemas.rows import validate_row
from cutoff_ingest.staging.store import StagingStore, compute_confidence


# ── Helpers ──────────────────────────────────────────────────────────


def _make_db(rows: list | None = None, rowcount: int = 0):
    db = AsyncMock()
    db.add = MagicMock()
    result = MagicMock()
    result.all.return_value = rows or []
    result.rowcount = rowcount
    db.execute = AsyncMock(return_value=result)
    return db


def _make_record(**overrides) -> ProcessedCutoffRecord:
    fields = {
        "id": uuid.uuid4(),
        "session_id": uuid.uuid4(),
        "raw_cutoff_id": uuid.uuid4(),
        "college_id": "c1",
        "program_id": None,
        "college_name": "B.J. MEDICAL COLLEGE",
        "program_name": None,
        "category": "GM",
        "closing_rank": 1500,
        "opening_rank": 1500,
        "confidence_score": 50,
        "status": "pending",
        "manual_verified": False,
        "notes": "Processed with confidence: 50%",
    }
    fields.update(overrides)
    return ProcessedCutoffRecord(**fields)


def _added(db, model) -> list:
    return [c.args[0] for c in db.add.call_args_list if isinstance(c.args[0], model)]


def test_compute_confidence():
    assert compute_confidence(None, None) == 0
    assert compute_confidence("c1", None) == 50
    assert compute_confidence(None, "p1") == 50
    assert compute_confidence("c1", "p1") == 100


# ── Sessions ─────────────────────────────────────────────────────────


class TestSessions:
    @pytest.mark.asyncio()
    async def test_start_session(self):
        store = StagingStore()
        db = _make_db()

        with patch("cutoff_ingest.staging.store.emit", new_callable=AsyncMock) as mock_emit:
            session = await store.start_session(
                db, "KEA_2024_R1.csv", "csv", authority="KEA", year=2024, round_code="r1"
            )

        assert session.status == "active"
        assert session.raw_imported == 0
        assert session.error_log == []
        assert session.round == "r1"
        db.add.assert_called_once_with(session)
        event = mock_emit.call_args.args[0]
        assert event.event_type == EventType.IMPORT_STARTED
        assert event.session_id == session.id

    @pytest.mark.asyncio()
    async def test_get_session_missing(self):
        store = StagingStore()
        db = _make_db()
        db.get = AsyncMock(return_value=None)
        with pytest.raises(StagingRecordNotFound):
            await store.get_session(db, uuid.uuid4())

    @pytest.mark.asyncio()
    async def test_fail_session(self):
        store = StagingStore()
        db = _make_db()
        with patch("cutoff_ingest.staging.store.emit", new_callable=AsyncMock) as mock_emit:
            session = await store.start_session(db, "bad.csv", "csv")
            await store.fail_session(db, session, "missing columns")

        assert session.status == "failed"
        assert session.notes == "missing columns"
        assert session.completed_at is not None
        assert mock_emit.call_args.args[0].event_type == EventType.IMPORT_FAILED

    @pytest.mark.asyncio()
    async def test_update_counters(self):
        store = StagingStore()
        db = _make_db()

        await store.update_counters(db, uuid.uuid4(), processed=0)
        db.execute.assert_not_awaited()

        await store.update_counters(db, uuid.uuid4(), processed=3, verified=1)
        db.execute.assert_awaited_once()

        with pytest.raises(ValueError):
            await store.update_counters(db, uuid.uuid4(), rows=1)

    @pytest.mark.asyncio()
    async def test_refresh_counters(self):
        store = StagingStore()
        db = _make_db([("pending", 2), ("verified", 1), ("migrated", 4)])
        with patch("cutoff_ingest.staging.store.emit", new_callable=AsyncMock):
            session = await store.start_session(db, "a.csv", "csv")

        await store.refresh_counters(db, session)

        assert session.processed == 7
        assert session.verified == 1
        assert session.migrated == 4

    @pytest.mark.asyncio()
    async def test_error_log_is_capped(self):
        store = StagingStore()
        db = _make_db()
        with patch("cutoff_ingest.staging.store.emit", new_callable=AsyncMock):
            session = await store.start_session(db, "a.csv", "csv")

        with patch.object(settings.ingest, "error_log_limit", 3):
            store.record_errors(session, [{"kind": "rank_parse", "message": str(i)} for i in range(2)])
            store.record_errors(session, [{"kind": "rank_parse", "message": str(i)} for i in range(2, 5)])

        assert [e["message"] for e in session.error_log] == ["0", "1", "2"]


# ── Records ──────────────────────────────────────────────────────────


class TestRecords:
    def test_add_raw_record_valid(self):
        store = StagingStore()
        db = MagicMock()
        session_id = uuid.uuid4()
        row = validate_row(
            {"college_name": "GDC", "course_name": "BDS", "all_ranks": "GM:10", "round": "R1"}, row_number=4
        )
        parsed = ParsedRow(4, {"College": "GDC", "Course": "BDS", "Ranks": "GM:10"}, row=row)

        raw = store.add_raw_record(db, session_id, parsed)

        assert raw.session_id == session_id
        assert raw.row_number == 4
        assert raw.college_text == "GDC"
        assert raw.all_ranks == "GM:10"
        assert raw.round == "R1"
        assert raw.validation_error is None
        db.add.assert_called_once_with(raw)

    def test_add_raw_record_quarantined(self):
        store = StagingStore()
        error = RowValidationError("college_name: must not be empty", row_number=2, field="college_name")
        parsed = ParsedRow(2, {"college_name": "", "course_name": "BDS"}, error=error)

        raw = store.add_raw_record(MagicMock(), uuid.uuid4(), parsed)

        assert raw.validation_error == "college_name: must not be empty"
        assert raw.course_text == "BDS"
        assert raw.college_text is None

    def test_add_raw_record_quarantined_with_aliased_headers(self):
        store = StagingStore()
        error = RowValidationError("all_ranks: no category:rank pairs", row_number=7, field="all_ranks")
        parsed = ParsedRow(
            7,
            {
                "College Name": "Govt Dental College, Bangalore",
                "COURSE": "BDS",
                "Quota Name": "GOVERNMENT",
                "Ranks": "GM-ten",
                "Round": "R2",
            },
            error=error,
        )

        raw = store.add_raw_record(MagicMock(), uuid.uuid4(), parsed)

        assert raw.college_text == "Govt Dental College, Bangalore"
        assert raw.course_text == "BDS"
        assert raw.quota == "GOVERNMENT"
        assert raw.all_ranks == "GM-ten"
        assert raw.round == "R2"
        assert raw.raw_data["College Name"] == "Govt Dental College, Bangalore"

    def test_add_processed_record_derives_confidence(self):
        store = StagingStore()
        db = MagicMock()

        full = store.add_processed_record(db, college_id="c1", program_id="p1", category="GM")
        half = store.add_processed_record(db, college_id=None, program_id="p1", category="GM", confidence_score=100)

        assert full.confidence_score == 100
        assert half.confidence_score == 50
        assert full.status == "pending"
        assert full.manual_verified is False
        assert full.seats_available == 1


# ── Verification state machine ───────────────────────────────────────


class TestVerifyRecord:
    @pytest.mark.asyncio()
    async def test_verify_with_correction(self):
        store = StagingStore()
        db = _make_db()
        record = _make_record()
        db.get = AsyncMock(return_value=record)

        with patch("cutoff_ingest.staging.store.emit", new_callable=AsyncMock) as mock_emit:
            await store.verify_record(db, record.id, {"closing_rank": "2000"}, notes="checked PDF", actor="asha")

        assert record.status == "verified"
        assert record.manual_verified is True
        assert record.closing_rank == 2000
        assert record.notes.endswith("checked PDF")
        corrections = _added(db, ManualCorrection)
        assert len(corrections) == 1
        assert corrections[0].field_name == "closing_rank"
        assert corrections[0].original_value == "1500"
        assert corrections[0].corrected_value == "2000"
        assert corrections[0].correction_type == "field_edit"
        assert corrections[0].corrected_by == "asha"
        # verified counter incremented
        db.execute.assert_awaited_once()
        assert mock_emit.call_args.args[0].event_type == EventType.RECORD_CORRECTED

    @pytest.mark.asyncio()
    async def test_verify_without_changes(self):
        store = StagingStore()
        db = _make_db()
        record = _make_record(status="verified")
        db.get = AsyncMock(return_value=record)

        with patch("cutoff_ingest.staging.store.emit", new_callable=AsyncMock) as mock_emit:
            await store.verify_record(db, record.id, {"closing_rank": 1500})

        assert _added(db, ManualCorrection) == []
        # Already verified: counter untouched
        db.execute.assert_not_awaited()
        assert mock_emit.call_args.args[0].event_type == EventType.RECORD_VERIFIED

    @pytest.mark.asyncio()
    async def test_remap_refreshes_names_and_confidence(self):
        store = StagingStore()
        db = _make_db()
        snapshot = build_snapshot(colleges=[], programs=[{"name": "MD (GENERAL MEDICINE)"}])
        program = snapshot.programs[0]
        record = _make_record()
        db.get = AsyncMock(return_value=record)

        with patch("cutoff_ingest.staging.store.emit", new_callable=AsyncMock):
            await store.verify_record(db, record.id, {"program_id": program.id}, snapshot=snapshot)

        assert record.program_id == program.id
        assert record.program_name == "MD (GENERAL MEDICINE)"
        assert record.program_level == "PG"
        assert record.confidence_score == 100
        types = {c.field_name: c.correction_type for c in _added(db, ManualCorrection)}
        assert types["program_id"] == "entity_remap"
        assert types["program_name"] == "field_edit"

    @pytest.mark.asyncio()
    async def test_remap_to_unknown_id_rejected(self):
        store = StagingStore()
        db = _make_db()
        snapshot = build_snapshot(colleges=[{"name": "B.J. MEDICAL COLLEGE", "city": "PUNE"}], programs=[])
        record = _make_record(college_id=None, college_name=None)
        db.get = AsyncMock(return_value=record)

        with (
            patch("cutoff_ingest.staging.store.emit", new_callable=AsyncMock) as mock_emit,
            pytest.raises(ValueError, match="no-such-id"),
        ):
            await store.verify_record(db, record.id, {"college_id": "no-such-id"}, snapshot=snapshot)

        assert record.college_id is None
        assert record.confidence_score == 50
        assert record.status == "pending"
        assert _added(db, ManualCorrection) == []
        mock_emit.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_remap_without_snapshot_rejected(self):
        store = StagingStore()
        db = _make_db()
        record = _make_record()
        db.get = AsyncMock(return_value=record)

        with pytest.raises(ValueError, match="snapshot"):
            await store.verify_record(db, record.id, {"program_id": "p1"})

        assert record.program_id is None

    @pytest.mark.asyncio()
    async def test_clearing_college_drops_its_details(self):
        store = StagingStore()
        db = _make_db()
        record = _make_record()
        db.get = AsyncMock(return_value=record)

        with patch("cutoff_ingest.staging.store.emit", new_callable=AsyncMock):
            await store.verify_record(db, record.id, {"college_id": None})

        assert record.college_id is None
        assert record.college_name is None
        assert record.confidence_score == 0

    @pytest.mark.asyncio()
    async def test_unknown_field(self):
        store = StagingStore()
        db = _make_db()
        db.get = AsyncMock(return_value=_make_record())
        with pytest.raises(ValueError, match="status"):
            await store.verify_record(db, uuid.uuid4(), {"status": "migrated"})

    @pytest.mark.asyncio()
    @pytest.mark.parametrize("status", ["migrated", "rejected"])
    async def test_terminal_states(self, status):
        store = StagingStore()
        db = _make_db()
        db.get = AsyncMock(return_value=_make_record(status=status))
        with pytest.raises(InvalidStatusTransition):
            await store.verify_record(db, uuid.uuid4())

    @pytest.mark.asyncio()
    async def test_missing_record(self):
        store = StagingStore()
        db = _make_db()
        db.get = AsyncMock(return_value=None)
        with pytest.raises(StagingRecordNotFound):
            await store.verify_record(db, uuid.uuid4())


class TestRejectRecord:
    @pytest.mark.asyncio()
    async def test_reject_verified(self):
        store = StagingStore()
        db = _make_db()
        record = _make_record(status="verified")
        db.get = AsyncMock(return_value=record)

        with patch("cutoff_ingest.staging.store.emit", new_callable=AsyncMock) as mock_emit:
            await store.reject_record(db, record.id, notes="duplicate row")

        assert record.status == "rejected"
        change = _added(db, ManualCorrection)[0]
        assert change.field_name == "status"
        assert change.original_value == "verified"
        assert change.correction_type == "status_change"
        # verified counter decremented
        db.execute.assert_awaited_once()
        event = mock_emit.call_args.args[0]
        assert event.event_type == EventType.RECORD_REJECTED
        assert event.record_id == record.id

    @pytest.mark.asyncio()
    async def test_reject_pending_leaves_counters(self):
        store = StagingStore()
        db = _make_db()
        db.get = AsyncMock(return_value=_make_record())

        with patch("cutoff_ingest.staging.store.emit", new_callable=AsyncMock):
            await store.reject_record(db, uuid.uuid4())

        db.execute.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_reject_migrated(self):
        store = StagingStore()
        db = _make_db()
        db.get = AsyncMock(return_value=_make_record(status="migrated"))
        with pytest.raises(InvalidStatusTransition):
            await store.reject_record(db, uuid.uuid4())


class TestMarkMigrated:
    def test_verified(self):
        record = _make_record(status="verified")
        StagingStore().mark_migrated(record)
        assert record.status == "migrated"

    def test_rejected(self):
        with pytest.raises(InvalidStatusTransition):
            StagingStore().mark_migrated(_make_record(status="rejected"))


# ── Reporting & maintenance ──────────────────────────────────────────


class TestMaintenance:
    @pytest.mark.asyncio()
    async def test_session_stats(self):
        store = StagingStore()
        db = _make_db([("pending", 2, 50.0), ("verified", 1, 100.0)])
        session_id = uuid.uuid4()

        stats = await store.session_stats(db, session_id)

        assert stats["session_id"] == str(session_id)
        assert stats["total"] == 3
        assert stats["by_status"] == {"pending": 2, "verified": 1}
        assert stats["average_confidence"] == 66.67

    @pytest.mark.asyncio()
    async def test_session_stats_empty(self):
        stats = await StagingStore().session_stats(_make_db(), uuid.uuid4())
        assert stats["total"] == 0
        assert stats["average_confidence"] == 0.0

    @pytest.mark.asyncio()
    async def test_reset(self):
        store = StagingStore()
        db = _make_db(rowcount=3)

        with patch("cutoff_ingest.staging.store.emit", new_callable=AsyncMock) as mock_emit:
            counts = await store.reset(db, actor="admin")

        assert counts == {
            "manual_corrections": 3,
            "correction_history": 3,
            "processed_cutoffs": 3,
            "raw_cutoffs": 3,
        }
        # Four deletes plus the session status update
        assert db.execute.await_count == 5
        event = mock_emit.call_args.args[0]
        assert event.event_type == EventType.STAGING_RESET
        assert event.actor_id == "admin"

    @pytest.mark.asyncio()
    async def test_processed_raw_ids(self):
        raw_id = uuid.uuid4()
        ids = await StagingStore().processed_raw_ids(_make_db([(raw_id,), (raw_id,)]), uuid.uuid4())
        assert ids == {raw_id}
