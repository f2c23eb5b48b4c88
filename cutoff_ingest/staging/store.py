"""Staging store: persistence and state machine for import data.

    pending ──(confidence 100 | human)──▶ verified ──(migration)──▶ migrated
       │                                     │
       └────────────(human)──────────────────┴──▶ rejected

Writes are staged on the caller's AsyncSession; the caller decides when
to commit. Counters are updated with atomic SQL increments.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cutoff_ingest.config import settings
from cutoff_ingest.errors import InvalidStatusTransition, StagingRecordNotFound
from cutoff_ingest.events import emit
from cutoff_ingest.models.correction_rule import CorrectionHistory
from cutoff_ingest.models.enums import ImportSessionStatus, ManualCorrectionType, RecordStatus
from cutoff_ingest.models.staging import (
    ImportSession,
    ManualCorrection,
    ProcessedCutoffRecord,
    RawCutoffRecord,
)
from cutoff_ingest.schemas.events import EventType, SystemEvent

if TYPE_CHECKING:
    from cutoff_ingest.parsing.reader import ParsedRow
    from cutoff_ingest.reference.snapshot import ReferenceSnapshot

logger = logging.getLogger(__name__)

COUNTER_FIELDS = frozenset({"total_records", "raw_imported", "processed", "verified", "migrated"})

# Column widths on raw_cutoffs; unlisted fields are unbounded Text
_RAW_TEXT_LIMITS = {"quota": 100, "college_location": 255, "category": 50, "round": 20}

CORRECTABLE_FIELDS = frozenset({
    "college_id",
    "program_id",
    "college_name",
    "college_city",
    "college_state",
    "college_type",
    "program_name",
    "program_level",
    "year",
    "round",
    "authority",
    "quota",
    "category",
    "opening_rank",
    "closing_rank",
    "seats_available",
    "seats_filled",
})
_INT_FIELDS = frozenset({"year", "opening_rank", "closing_rank", "seats_available", "seats_filled"})


def compute_confidence(college_matched: Any, program_matched: Any) -> int:
    """50 points per resolved entity: always 0, 50, or 100."""
    return 50 * int(bool(college_matched)) + 50 * int(bool(program_matched))


class StagingStore:
    """Stateless service; every method takes the caller's AsyncSession."""

    # ── Sessions ─────────────────────────────────────────────────────

    async def start_session(
        self,
        db: AsyncSession,
        file_name: str,
        file_type: str,
        *,
        authority_hint: str | None = None,
        authority: str | None = None,
        year: int | None = None,
        round_code: str | None = None,
        default_quota: str | None = None,
    ) -> ImportSession:
        session = ImportSession(
            id=uuid.uuid4(),
            file_name=file_name,
            file_type=file_type,
            authority_hint=authority_hint,
            authority=authority,
            year=year,
            round=round_code,
            default_quota=default_quota,
            total_records=0,
            raw_imported=0,
            processed=0,
            verified=0,
            migrated=0,
            status=ImportSessionStatus.ACTIVE.value,
            started_at=datetime.now(UTC),
            error_log=[],
        )
        db.add(session)
        await db.flush()

        await emit(SystemEvent(
            event_type=EventType.IMPORT_STARTED,
            session_id=session.id,
            data={"file_name": file_name, "authority": authority, "year": year, "round": round_code},
            source_module="staging.store",
        ))
        logger.info("Import session %s started for %s", session.id, file_name)
        return session

    async def get_session(self, db: AsyncSession, session_id: uuid.UUID) -> ImportSession:
        session = await db.get(ImportSession, session_id)
        if session is None:
            raise StagingRecordNotFound(session_id)
        return session

    async def list_sessions(
        self, db: AsyncSession, status: ImportSessionStatus | None = None, limit: int = 50
    ) -> list[ImportSession]:
        stmt = select(ImportSession).order_by(ImportSession.started_at.desc()).limit(limit)
        if status is not None:
            stmt = stmt.where(ImportSession.status == status.value)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def update_counters(self, db: AsyncSession, session_id: uuid.UUID, **deltas: int) -> None:
        """Increment session counters atomically, e.g. processed=3."""
        unknown = set(deltas) - COUNTER_FIELDS
        if unknown:
            msg = f"Unknown session counters: {sorted(unknown)}"
            raise ValueError(msg)
        values = {name: getattr(ImportSession, name) + delta for name, delta in deltas.items() if delta}
        if not values:
            return
        await db.execute(update(ImportSession).where(ImportSession.id == session_id).values(**values))

    def record_errors(self, session: ImportSession, entries: list[dict[str, Any]]) -> None:
        """Append error entries to the session log, keeping at most error_log_limit."""
        if not entries:
            return
        limit = settings.ingest.error_log_limit
        current = list(session.error_log or [])
        room = max(limit - len(current), 0)
        # Reassign so the JSONB change is detected
        session.error_log = current + entries[:room]

    async def refresh_counters(self, db: AsyncSession, session: ImportSession) -> None:
        """Recount processed/verified/migrated from the session's records."""
        await db.flush()
        result = await db.execute(
            select(ProcessedCutoffRecord.status, func.count(ProcessedCutoffRecord.id))
            .where(ProcessedCutoffRecord.session_id == session.id)
            .group_by(ProcessedCutoffRecord.status)
        )
        by_status = dict(result.all())
        session.processed = sum(by_status.values())
        session.verified = by_status.get(RecordStatus.VERIFIED.value, 0)
        session.migrated = by_status.get(RecordStatus.MIGRATED.value, 0)

    async def complete_session(self, db: AsyncSession, session: ImportSession, notes: str | None = None) -> None:
        session.status = ImportSessionStatus.COMPLETED.value
        session.completed_at = datetime.now(UTC)
        if notes:
            session.notes = notes
        await db.flush()

    async def fail_session(self, db: AsyncSession, session: ImportSession, message: str) -> None:
        session.status = ImportSessionStatus.FAILED.value
        session.completed_at = datetime.now(UTC)
        session.notes = message
        await db.flush()

        await emit(SystemEvent(
            event_type=EventType.IMPORT_FAILED,
            session_id=session.id,
            data={"file_name": session.file_name, "error": message},
            source_module="staging.store",
        ))

    # ── Raw records ──────────────────────────────────────────────────

    def add_raw_record(self, db: AsyncSession, session_id: uuid.UUID, parsed: ParsedRow) -> RawCutoffRecord:
        """Stage one input row. Quarantined rows carry their validation error."""
        row = parsed.row
        # Quarantined rows keep whatever text their aliased columns held
        fields = {} if row else {
            k: str(v)[: _RAW_TEXT_LIMITS.get(k)] for k, v in parsed.fields.items() if v not in (None, "")
        }
        raw = RawCutoffRecord(
            id=uuid.uuid4(),
            session_id=session_id,
            row_number=parsed.row_number,
            raw_data=parsed.raw_data,
            rank=row.rank if row else None,
            quota=row.quota if row else fields.get("quota"),
            college_text=row.college_name if row else fields.get("college_name"),
            college_location=row.college_location if row else fields.get("college_location"),
            course_text=row.course_name if row else fields.get("course_name"),
            category=row.category if row else fields.get("category"),
            all_ranks=row.all_ranks if row else fields.get("all_ranks"),
            round=row.round if row else fields.get("round"),
            year=row.year if row else None,
            validation_error=str(parsed.error) if parsed.error is not None else None,
        )
        db.add(raw)
        return raw

    async def get_raw_records(self, db: AsyncSession, session_id: uuid.UUID) -> list[RawCutoffRecord]:
        result = await db.execute(
            select(RawCutoffRecord)
            .where(RawCutoffRecord.session_id == session_id)
            .order_by(RawCutoffRecord.row_number)
        )
        return list(result.scalars().all())

    # ── Processed records ────────────────────────────────────────────

    def add_processed_record(self, db: AsyncSession, **fields: Any) -> ProcessedCutoffRecord:
        """Stage a processed record. confidence_score is derived from the ids."""
        fields["confidence_score"] = compute_confidence(fields.get("college_id"), fields.get("program_id"))
        fields.setdefault("status", RecordStatus.PENDING.value)
        fields.setdefault("manual_verified", False)
        fields.setdefault("seats_available", 1)
        fields.setdefault("seats_filled", 1)
        record = ProcessedCutoffRecord(id=uuid.uuid4(), **fields)
        db.add(record)
        return record

    async def get_record(self, db: AsyncSession, record_id: uuid.UUID) -> ProcessedCutoffRecord:
        record = await db.get(ProcessedCutoffRecord, record_id)
        if record is None:
            raise StagingRecordNotFound(record_id)
        return record

    async def get_processed_records(
        self,
        db: AsyncSession,
        session_id: uuid.UUID | None = None,
        status: RecordStatus | None = None,
    ) -> list[ProcessedCutoffRecord]:
        stmt = select(ProcessedCutoffRecord).order_by(ProcessedCutoffRecord.created_at)
        if session_id is not None:
            stmt = stmt.where(ProcessedCutoffRecord.session_id == session_id)
        if status is not None:
            stmt = stmt.where(ProcessedCutoffRecord.status == status.value)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def processed_raw_ids(self, db: AsyncSession, session_id: uuid.UUID) -> set[uuid.UUID]:
        """Raw record ids of a session that already have processed records."""
        result = await db.execute(
            select(ProcessedCutoffRecord.raw_cutoff_id)
            .where(ProcessedCutoffRecord.session_id == session_id)
            .distinct()
        )
        return {row[0] for row in result.all()}

    async def delete_reprocessable(self, db: AsyncSession, session_id: uuid.UUID) -> set[uuid.UUID]:
        """Drop machine-only processed records of a session before reprocessing.

        Records a human touched, or that were migrated or rejected, are kept.
        Returns the raw record ids that still have kept records.
        """
        kept = await db.execute(
            select(ProcessedCutoffRecord.raw_cutoff_id).where(
                ProcessedCutoffRecord.session_id == session_id,
                (ProcessedCutoffRecord.manual_verified.is_(True))
                | ProcessedCutoffRecord.status.in_([RecordStatus.MIGRATED.value, RecordStatus.REJECTED.value]),
            )
        )
        kept_raw_ids = {row[0] for row in kept.all()}

        stmt = delete(ProcessedCutoffRecord).where(ProcessedCutoffRecord.session_id == session_id)
        if kept_raw_ids:
            stmt = stmt.where(ProcessedCutoffRecord.raw_cutoff_id.not_in(kept_raw_ids))
        result = await db.execute(stmt)
        logger.info("Reprocess %s: removed %s processed records", session_id, result.rowcount)  # type: ignore[attr-defined]
        return kept_raw_ids

    async def verify_record(
        self,
        db: AsyncSession,
        record_id: uuid.UUID,
        corrections: dict[str, Any] | None = None,
        notes: str | None = None,
        actor: str = "operator",
        snapshot: ReferenceSnapshot | None = None,
    ) -> ProcessedCutoffRecord:
        """Mark a record verified, applying and logging any field corrections.

        Remapping college_id/program_id needs a snapshot holding the new
        entity, and refreshes the denormalized names. Confidence is
        recomputed from the ids.

        Raises:
            StagingRecordNotFound: Unknown record id.
            InvalidStatusTransition: Record is rejected or migrated.
            ValueError: A correction names a field that cannot be corrected,
                or remaps to an id the snapshot does not hold.
        """
        record = await self.get_record(db, record_id)
        if record.status not in (RecordStatus.PENDING.value, RecordStatus.VERIFIED.value):
            raise InvalidStatusTransition(record_id, record.status, RecordStatus.VERIFIED.value)

        changes = dict(corrections or {})
        unknown = set(changes) - CORRECTABLE_FIELDS
        if unknown:
            msg = f"Fields cannot be corrected: {sorted(unknown)}"
            raise ValueError(msg)

        changes = self._with_entity_details(changes, snapshot)

        applied = 0
        for field_name, new_value in changes.items():
            if field_name in _INT_FIELDS and new_value is not None:
                new_value = int(new_value)
            old_value = getattr(record, field_name)
            if old_value == new_value:
                continue
            setattr(record, field_name, new_value)
            db.add(ManualCorrection(
                processed_cutoff_id=record.id,
                field_name=field_name,
                original_value=None if old_value is None else str(old_value),
                corrected_value=None if new_value is None else str(new_value),
                correction_type=(
                    ManualCorrectionType.ENTITY_REMAP.value
                    if field_name in ("college_id", "program_id")
                    else ManualCorrectionType.FIELD_EDIT.value
                ),
                corrected_by=actor,
                notes=notes,
            ))
            applied += 1

        was_pending = record.status == RecordStatus.PENDING.value
        record.confidence_score = compute_confidence(record.college_id, record.program_id)
        record.status = RecordStatus.VERIFIED.value
        record.manual_verified = True
        if notes:
            record.notes = f"{record.notes}\n{notes}" if record.notes else notes
        if was_pending:
            await self.update_counters(db, record.session_id, verified=1)
        await db.flush()

        await emit(SystemEvent(
            event_type=EventType.RECORD_CORRECTED if applied else EventType.RECORD_VERIFIED,
            session_id=record.session_id,
            record_id=record.id,
            actor_id=actor,
            actor_role="operator",
            data={"corrections": applied},
            source_module="staging.store",
        ))
        return record

    async def reject_record(
        self,
        db: AsyncSession,
        record_id: uuid.UUID,
        notes: str | None = None,
        actor: str = "operator",
    ) -> ProcessedCutoffRecord:
        record = await self.get_record(db, record_id)
        if record.status not in (RecordStatus.PENDING.value, RecordStatus.VERIFIED.value):
            raise InvalidStatusTransition(record_id, record.status, RecordStatus.REJECTED.value)

        previous = record.status
        record.status = RecordStatus.REJECTED.value
        record.manual_verified = True
        if notes:
            record.notes = f"{record.notes}\n{notes}" if record.notes else notes
        db.add(ManualCorrection(
            processed_cutoff_id=record.id,
            field_name="status",
            original_value=previous,
            corrected_value=RecordStatus.REJECTED.value,
            correction_type=ManualCorrectionType.STATUS_CHANGE.value,
            corrected_by=actor,
            notes=notes,
        ))
        if previous == RecordStatus.VERIFIED.value:
            await self.update_counters(db, record.session_id, verified=-1)
        await db.flush()

        await emit(SystemEvent(
            event_type=EventType.RECORD_REJECTED,
            session_id=record.session_id,
            record_id=record.id,
            actor_id=actor,
            actor_role="operator",
            source_module="staging.store",
        ))
        return record

    def mark_migrated(self, record: ProcessedCutoffRecord) -> None:
        if record.status == RecordStatus.REJECTED.value:
            raise InvalidStatusTransition(record.id, record.status, RecordStatus.MIGRATED.value)
        record.status = RecordStatus.MIGRATED.value

    # ── Reporting & maintenance ──────────────────────────────────────

    async def session_stats(self, db: AsyncSession, session_id: uuid.UUID) -> dict[str, Any]:
        """Record counts per status plus average confidence for one session."""
        result = await db.execute(
            select(
                ProcessedCutoffRecord.status,
                func.count(ProcessedCutoffRecord.id),
                func.avg(ProcessedCutoffRecord.confidence_score),
            )
            .where(ProcessedCutoffRecord.session_id == session_id)
            .group_by(ProcessedCutoffRecord.status)
        )
        by_status: dict[str, int] = {}
        weighted = 0.0
        total = 0
        for status, count, avg in result.all():
            by_status[status] = count
            total += count
            weighted += float(avg or 0) * count
        return {
            "session_id": str(session_id),
            "total": total,
            "by_status": by_status,
            "average_confidence": round(weighted / total, 2) if total else 0.0,
        }

    async def reset(self, db: AsyncSession, actor: str = "operator") -> dict[str, int]:
        """Delete every staged row. Irreversible.

        Import sessions are kept as history; still-active ones are marked failed.
        """
        counts: dict[str, int] = {}
        for model in (ManualCorrection, CorrectionHistory, ProcessedCutoffRecord, RawCutoffRecord):
            result = await db.execute(delete(model))
            counts[model.__tablename__] = result.rowcount  # type: ignore[attr-defined]

        await db.execute(
            update(ImportSession)
            .where(ImportSession.status == ImportSessionStatus.ACTIVE.value)
            .values(
                status=ImportSessionStatus.FAILED.value,
                completed_at=datetime.now(UTC),
                notes="Staging reset",
            )
        )
        await db.flush()

        await emit(SystemEvent(
            event_type=EventType.STAGING_RESET,
            actor_id=actor,
            actor_role="operator",
            data=counts,
            source_module="staging.store",
        ))
        logger.warning("Staging reset by %s: %s", actor, counts)
        return counts

    @staticmethod
    def _with_entity_details(changes: dict[str, Any], snapshot: ReferenceSnapshot | None) -> dict[str, Any]:
        """Validate id remaps against the snapshot and fill in the names they imply.

        Clearing an id (None) clears its denormalized fields too.
        """
        out = dict(changes)
        remapped = [f for f in ("college_id", "program_id") if changes.get(f) is not None]
        if remapped and snapshot is None:
            msg = f"Remapping {', '.join(remapped)} needs a reference snapshot"
            raise ValueError(msg)

        if "college_id" in changes:
            college = snapshot.get(changes["college_id"]) if snapshot is not None else None
            if changes["college_id"] is not None and college is None:
                msg = f"Unknown college id: {changes['college_id']}"
                raise ValueError(msg)
            out.setdefault("college_name", college.name if college else None)
            out.setdefault("college_city", college.city if college else None)
            out.setdefault("college_state", college.state if college else None)
            out.setdefault("college_type", college.subtype if college else None)
        if "program_id" in changes:
            program = snapshot.get(changes["program_id"]) if snapshot is not None else None
            if changes["program_id"] is not None and program is None:
                msg = f"Unknown program id: {changes['program_id']}"
                raise ValueError(msg)
            out.setdefault("program_name", program.name if program else None)
            out.setdefault("program_level", program.subtype if program else None)
        return out


# Module-level singleton
staging_store = StagingStore()
