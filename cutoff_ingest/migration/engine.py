"""Migration engine: verified staging records → canonical cutoffs.

For each eligible record: resolve-or-create the College, resolve-or-create
the Program, then upsert the Cutoff on its natural key. Every canonical
create/update is written to the audit log with before/after payloads.
Each record runs in its own SAVEPOINT so one failure never aborts the batch.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from cutoff_ingest.audit import record_change
from cutoff_ingest.errors import MigrationConflictError, error_entry
from cutoff_ingest.events import emit
from cutoff_ingest.models.canonical import College, Cutoff, Program
from cutoff_ingest.models.enums import CollegeType, CutoffStatus, RecordStatus
from cutoff_ingest.models.staging import ProcessedCutoffRecord
from cutoff_ingest.parsing.fields import normalize_text, parse_course_info
from cutoff_ingest.schemas.events import EventType, SystemEvent
from cutoff_ingest.staging.store import StagingStore, staging_store

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("college_id", "program_id", "college_name", "program_name", "year", "round", "authority", "quota")


@dataclass
class MigrationResult:
    """Summary of one migration batch."""

    session_id: uuid.UUID | None = None
    eligible: int = 0
    migrated: int = 0
    colleges_created: int = 0
    programs_created: int = 0
    cutoffs_created: int = 0
    cutoffs_updated: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": str(self.session_id) if self.session_id else None,
            "eligible": self.eligible,
            "migrated": self.migrated,
            "colleges_created": self.colleges_created,
            "programs_created": self.programs_created,
            "cutoffs_created": self.cutoffs_created,
            "cutoffs_updated": self.cutoffs_updated,
            "failed": len(self.failures),
        }


def _cutoff_payload(cutoff: Cutoff) -> dict[str, Any]:
    return {
        "college_id": str(cutoff.college_id),
        "program_id": str(cutoff.program_id),
        "year": cutoff.year,
        "round": cutoff.round,
        "authority": cutoff.authority,
        "quota": cutoff.quota,
        "category": cutoff.category,
        "opening_rank": cutoff.opening_rank,
        "closing_rank": cutoff.closing_rank,
        "seats_available": cutoff.seats_available,
        "seats_filled": cutoff.seats_filled,
        "source_file": cutoff.source_file,
    }


class MigrationEngine:
    """Stateless service; every method takes the caller's AsyncSession."""

    def __init__(self, store: StagingStore | None = None) -> None:
        self.store = store or staging_store

    async def eligible_records(
        self, db: AsyncSession, session_id: uuid.UUID | None = None
    ) -> list[ProcessedCutoffRecord]:
        """Verified records, plus pending ones whose confidence is already 100."""
        stmt = select(ProcessedCutoffRecord).where(or_(
            ProcessedCutoffRecord.status == RecordStatus.VERIFIED.value,
            and_(
                ProcessedCutoffRecord.status == RecordStatus.PENDING.value,
                ProcessedCutoffRecord.confidence_score == 100,
            ),
        ))
        if session_id is not None:
            stmt = stmt.where(ProcessedCutoffRecord.session_id == session_id)
        result = await db.execute(stmt.order_by(ProcessedCutoffRecord.created_at))
        return list(result.scalars().all())

    async def migrate_session(
        self,
        db: AsyncSession,
        session_id: uuid.UUID | None = None,
        source_file: str | None = None,
        actor: str = "system",
    ) -> MigrationResult:
        """Migrate every eligible record (of one session, or of all sessions)."""
        records = await self.eligible_records(db, session_id)
        result = MigrationResult(session_id=session_id)

        session = None
        if session_id is not None:
            session = await self.store.get_session(db, session_id)
            source_file = source_file or session.file_name

        await self.migrate_records(db, records, result, source_file=source_file, actor=actor)

        if session is not None:
            await self.store.complete_session(
                db, session, notes=f"Migrated {result.migrated} of {result.eligible} eligible records"
            )

        await emit(SystemEvent(
            event_type=EventType.MIGRATION_COMPLETED,
            session_id=session_id,
            actor_id=actor,
            data=result.to_dict(),
            source_module="migration.engine",
        ))
        logger.info("Migration finished: %s", result.to_dict())
        return result

    async def migrate_records(
        self,
        db: AsyncSession,
        records: list[ProcessedCutoffRecord],
        result: MigrationResult | None = None,
        source_file: str | None = None,
        actor: str = "system",
    ) -> MigrationResult:
        result = result or MigrationResult()
        result.eligible += len(records)
        migrated_per_session: Counter[uuid.UUID] = Counter()

        for record in records:
            try:
                async with db.begin_nested():
                    await self.migrate_record(db, record, result, source_file=source_file, actor=actor)
            except Exception as exc:
                conflict = exc if isinstance(exc, MigrationConflictError) else MigrationConflictError(
                    f"{type(exc).__name__}: {exc}", record_id=record.id
                )
                logger.warning("Migration failed for record %s: %s", record.id, conflict)
                result.failures.append(error_entry("migration_conflict", str(conflict), record_id=str(record.id)))
                await emit(SystemEvent(
                    event_type=EventType.MIGRATION_RECORD_FAILED,
                    session_id=record.session_id,
                    record_id=record.id,
                    data={"error": str(conflict)},
                    source_module="migration.engine",
                ))
                continue
            result.migrated += 1
            migrated_per_session[record.session_id] += 1

        for session_id, count in migrated_per_session.items():
            await self.store.update_counters(db, session_id, migrated=count)
        await db.flush()
        return result

    async def migrate_record(
        self,
        db: AsyncSession,
        record: ProcessedCutoffRecord,
        result: MigrationResult,
        source_file: str | None = None,
        actor: str = "system",
    ) -> Cutoff:
        """Promote one record. Raises MigrationConflictError if it cannot be placed."""
        missing = [name for name in _REQUIRED_FIELDS if getattr(record, name) in (None, "")]
        if missing:
            msg = f"Record is missing {', '.join(missing)}"
            raise MigrationConflictError(msg, record_id=record.id)

        college, created = await self.resolve_college(db, record, actor=actor)
        result.colleges_created += int(created)
        program, created = await self.resolve_program(db, college, record, actor=actor)
        result.programs_created += int(created)
        cutoff, created = await self.upsert_cutoff(db, record, college, program, source_file, actor=actor)
        if created:
            result.cutoffs_created += 1
        else:
            result.cutoffs_updated += 1

        self.store.mark_migrated(record)
        await db.flush()
        return cutoff

    async def resolve_college(
        self, db: AsyncSession, record: ProcessedCutoffRecord, actor: str = "system"
    ) -> tuple[College, bool]:
        """Find the college by (normalized_name, city, state) or create it."""
        name = " ".join((record.college_name or "").upper().split())
        normalized = normalize_text(name)
        city = (record.college_city or "").upper()
        state = (record.college_state or "").upper()

        existing = await db.execute(
            select(College).where(
                College.normalized_name == normalized,
                College.city == city,
                College.state == state,
            )
        )
        college = existing.scalar_one_or_none()
        if college is not None:
            return college, False

        college = College(
            id=uuid.uuid4(),
            name=name,
            normalized_name=normalized,
            city=city,
            state=state,
            college_type=record.college_type or CollegeType.MEDICAL.value,
            status="active",
            source="import",
            reference_id=record.college_id,
        )
        db.add(college)
        await db.flush()
        record_change(
            db,
            entity_type="college",
            entity_id=college.id,
            action="created",
            before=None,
            after={"name": name, "city": city, "state": state, "college_type": college.college_type},
            session_id=record.session_id,
            actor_id=actor,
        )
        return college, True

    async def resolve_program(
        self, db: AsyncSession, college: College, record: ProcessedCutoffRecord, actor: str = "system"
    ) -> tuple[Program, bool]:
        """Find the program by (college_id, normalized_name) or create it."""
        name = " ".join((record.program_name or "").upper().split())
        normalized = normalize_text(name)

        existing = await db.execute(
            select(Program).where(Program.college_id == college.id, Program.normalized_name == normalized)
        )
        program = existing.scalar_one_or_none()
        if program is not None:
            return program, False

        info = parse_course_info(name)
        program = Program(
            id=uuid.uuid4(),
            college_id=college.id,
            name=name,
            normalized_name=normalized,
            level=record.program_level or info.level,
            specialization=info.specialization,
            status="active",
            reference_id=record.program_id,
        )
        db.add(program)
        await db.flush()
        record_change(
            db,
            entity_type="program",
            entity_id=program.id,
            action="created",
            before=None,
            after={"college_id": str(college.id), "name": name, "level": program.level},
            session_id=record.session_id,
            actor_id=actor,
        )
        return program, True

    async def upsert_cutoff(
        self,
        db: AsyncSession,
        record: ProcessedCutoffRecord,
        college: College,
        program: Program,
        source_file: str | None = None,
        actor: str = "system",
    ) -> tuple[Cutoff, bool]:
        """Insert, or update ranks in place, keyed on the seven-column identity."""
        existing = await db.execute(
            select(Cutoff).where(
                Cutoff.college_id == college.id,
                Cutoff.program_id == program.id,
                Cutoff.year == record.year,
                Cutoff.round == record.round,
                Cutoff.authority == record.authority,
                Cutoff.quota == record.quota,
                Cutoff.category == record.category,
            )
        )
        cutoff = existing.scalar_one_or_none()

        if cutoff is not None:
            before = _cutoff_payload(cutoff)
            cutoff.opening_rank = record.opening_rank
            cutoff.closing_rank = record.closing_rank
            cutoff.seats_available = record.seats_available
            cutoff.seats_filled = record.seats_filled
            cutoff.source_file = source_file or cutoff.source_file
            cutoff.import_session_id = record.session_id
            cutoff.updated_at = datetime.now(UTC)
            await db.flush()
            record_change(
                db,
                entity_type="cutoff",
                entity_id=cutoff.id,
                action="updated",
                before=before,
                after=_cutoff_payload(cutoff),
                session_id=record.session_id,
                actor_id=actor,
            )
            return cutoff, False

        cutoff = Cutoff(
            id=uuid.uuid4(),
            college_id=college.id,
            program_id=program.id,
            year=record.year,
            round=record.round,
            authority=record.authority,
            quota=record.quota,
            category=record.category,
            opening_rank=record.opening_rank,
            closing_rank=record.closing_rank,
            seats_available=record.seats_available,
            seats_filled=record.seats_filled,
            status=CutoffStatus.ACTIVE.value,
            source_file=source_file,
            import_session_id=record.session_id,
        )
        db.add(cutoff)
        await db.flush()
        record_change(
            db,
            entity_type="cutoff",
            entity_id=cutoff.id,
            action="created",
            before=None,
            after=_cutoff_payload(cutoff),
            session_id=record.session_id,
            actor_id=actor,
        )
        return cutoff, True


# Module-level singleton
migration_engine = MigrationEngine()
