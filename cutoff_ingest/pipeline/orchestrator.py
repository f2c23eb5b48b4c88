"""Import session orchestrator.

Sequences one uploaded file through the pipeline:

    metadata → session → read → stage raw rows → normalize → parse ranks
    → match → stage processed records → flush rule usage → (migrate)

Rows are handled one at a time. Progress is logged, published to Redis,
and committed every `progress_interval` rows, so a crash leaves an
inspectable partial session. Only a FileParseError ends a session early;
every other problem is recorded against its row.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from cutoff_ingest.config import IngestSettings, MatchingSettings, settings
from cutoff_ingest.corrections.normalizer import RuleSet, UsageAccumulator
from cutoff_ingest.corrections.store import CorrectionRuleStore, rule_store
from cutoff_ingest.errors import FileParseError, RankParseError, error_entry
from cutoff_ingest.events import emit
from cutoff_ingest.matching.matcher import EntityMatcher, MatchResult
from cutoff_ingest.migration.engine import MigrationEngine, migration_engine
from cutoff_ingest.models.enums import CorrectionCategory, EntityType, RecordStatus
from cutoff_ingest.models.staging import ImportSession, RawCutoffRecord
from cutoff_ingest.parsing.fields import normalize_quota, normalize_round, parse_college_info
from cutoff_ingest.parsing.metadata import extract_file_metadata
from cutoff_ingest.parsing.ranks import parse_ranks_or_raise
from cutoff_ingest.parsing.reader import read_cutoff_file
from cutoff_ingest.reference.snapshot import ReferenceSnapshot
from cutoff_ingest.schemas.events import EventType, SystemEvent
from cutoff_ingest.schemas.pipeline import ImportDefaults, ImportSummary
from cutoff_ingest.staging.progress import ProgressReporter, progress_reporter
from cutoff_ingest.staging.store import StagingStore, compute_confidence, staging_store

logger = logging.getLogger(__name__)


class ImportOrchestrator:
    """Runs imports against one reference snapshot."""

    def __init__(
        self,
        snapshot: ReferenceSnapshot,
        *,
        store: StagingStore | None = None,
        rules: CorrectionRuleStore | None = None,
        migrator: MigrationEngine | None = None,
        progress: ProgressReporter | None = None,
        ingest_config: IngestSettings | None = None,
        matching_config: MatchingSettings | None = None,
    ) -> None:
        self.snapshot = snapshot
        self.store = store or staging_store
        self.rules = rules or rule_store
        self.migrator = migrator or migration_engine
        self.progress = progress or progress_reporter
        self.config = ingest_config or settings.ingest
        self.matcher = EntityMatcher(snapshot, matching_config)

    # ── Entry points ─────────────────────────────────────────────────

    async def import_file(
        self,
        db: AsyncSession,
        path: str | Path,
        defaults: ImportDefaults | None = None,
        rule_set: RuleSet | None = None,
    ) -> ImportSummary:
        """Import one CSV/XLSX file. Never raises for row-level problems."""
        path = Path(path)
        defaults = defaults or ImportDefaults()
        metadata = extract_file_metadata(path.name)
        if metadata is None:
            logger.info("No metadata in filename %s, using caller defaults", path.name)

        authority = metadata.authority if metadata else (defaults.authority or self.config.default_authority)
        year = metadata.year if metadata else (defaults.year or self.config.default_year)
        round_code = metadata.round if metadata else normalize_round(defaults.round)

        session = await self.store.start_session(
            db,
            path.name,
            path.suffix.lower().lstrip(".") or "unknown",
            authority_hint=defaults.authority,
            authority=authority,
            year=year,
            round_code=round_code,
            default_quota=normalize_quota(defaults.quota) or self.config.default_quota,
        )
        await db.commit()

        summary = ImportSummary(
            session_id=session.id,
            file_name=path.name,
            authority=authority,
            year=year,
            round=round_code,
        )

        try:
            rows = read_cutoff_file(path)
        except FileParseError as exc:
            logger.error("Import of %s aborted: %s", path.name, exc)
            await self.store.fail_session(db, session, str(exc))
            await db.commit()
            summary.status = session.status
            summary.fatal_error = str(exc)
            return summary

        # Stage raw rows
        session.total_records = len(rows)
        raw_records: list[RawCutoffRecord] = []
        for done, parsed in enumerate(rows, start=1):
            raw_records.append(self.store.add_raw_record(db, session.id, parsed))
            if done % self.config.progress_interval == 0:
                session.raw_imported = done
                await self._checkpoint(db, session.id, "raw", done, len(rows))
        session.raw_imported = len(rows)
        summary.raw_imported = len(rows)
        await self._checkpoint(db, session.id, "raw", len(rows), len(rows))

        await emit(SystemEvent(
            event_type=EventType.IMPORT_RAW_STAGED,
            session_id=session.id,
            data={"raw_imported": len(rows)},
            source_module="pipeline.orchestrator",
        ))

        rule_set = rule_set if rule_set is not None else await self.rules.snapshot(db)
        await self._process(db, session, raw_records, rule_set, defaults, summary)

        if defaults.auto_migrate:
            migration = await self.migrator.migrate_session(db, session.id, actor=defaults.actor)
            summary.migration = migration.to_dict()

        await db.commit()
        summary.status = session.status

        await emit(SystemEvent(
            event_type=EventType.IMPORT_COMPLETED,
            session_id=session.id,
            actor_id=defaults.actor,
            data=summary.model_dump(mode="json", exclude={"errors", "warnings"}),
            source_module="pipeline.orchestrator",
        ))
        logger.info(
            "Import %s: %d raw, %d processed, %d errors, %.2f%% success",
            path.name,
            summary.raw_imported,
            summary.processed,
            summary.error_count,
            summary.success_rate,
        )
        return summary

    async def process_session(
        self,
        db: AsyncSession,
        session_id: uuid.UUID,
        defaults: ImportDefaults | None = None,
        rule_set: RuleSet | None = None,
        reprocess: bool = False,
    ) -> ImportSummary:
        """Run processing over a session's stored raw rows.

        Without `reprocess` only raw rows with no processed records are
        handled. With it, machine-generated processed records are replaced;
        rows with human-touched, rejected, or migrated records are left alone.
        """
        session = await self.store.get_session(db, session_id)
        if reprocess:
            kept_raw_ids = await self.store.delete_reprocessable(db, session_id)
        else:
            kept_raw_ids = await self.store.processed_raw_ids(db, session_id)
        raw_records = [r for r in await self.store.get_raw_records(db, session_id) if r.id not in kept_raw_ids]

        summary = ImportSummary(
            session_id=session.id,
            file_name=session.file_name,
            authority=session.authority,
            year=session.year,
            round=session.round,
            raw_imported=len(raw_records),
        )
        rule_set = rule_set if rule_set is not None else await self.rules.snapshot(db)
        await self._process(db, session, raw_records, rule_set, defaults or ImportDefaults(), summary)
        await db.commit()
        summary.status = session.status
        return summary

    # ── Processing ───────────────────────────────────────────────────

    async def _process(
        self,
        db: AsyncSession,
        session: ImportSession,
        raw_records: list[RawCutoffRecord],
        rule_set: RuleSet,
        defaults: ImportDefaults,
        summary: ImportSummary,
    ) -> None:
        usage = UsageAccumulator()
        total = len(raw_records)
        errors_flushed = 0

        for done, raw in enumerate(raw_records, start=1):
            self.process_raw_record(db, session, raw, rule_set, defaults, summary, usage)
            if done % self.config.progress_interval == 0:
                self.store.record_errors(session, summary.errors[errors_flushed:])
                errors_flushed = len(summary.errors)
                await self._checkpoint(db, session.id, "processing", done, total)

        self.store.record_errors(session, summary.errors[errors_flushed:])
        await self.store.refresh_counters(db, session)
        await self._flush_usage(db, usage)
        await self._checkpoint(db, session.id, "processed", total, total)

        await emit(SystemEvent(
            event_type=EventType.IMPORT_PROCESSED,
            session_id=session.id,
            data={
                "processed": summary.processed,
                "fully_resolved": summary.fully_resolved,
                "errors": summary.error_count,
                "warnings": len(summary.warnings),
                "rule_snapshot_size": len(rule_set),
                "reference_version": self.snapshot.version,
            },
            source_module="pipeline.orchestrator",
        ))

    def process_raw_record(
        self,
        db: AsyncSession,
        session: ImportSession,
        raw: RawCutoffRecord,
        rule_set: RuleSet,
        defaults: ImportDefaults,
        summary: ImportSummary,
        usage: UsageAccumulator | None = None,
    ) -> int:
        """Turn one raw row into processed records. Returns how many were staged."""
        if raw.validation_error:
            summary.errors.append(error_entry("row_validation", raw.validation_error, row=raw.row_number))
            return 0

        try:
            pairs = parse_ranks_or_raise(raw.all_ranks, raw.row_number)
        except RankParseError as exc:
            summary.errors.append(error_entry("rank_parse", str(exc), row=raw.row_number))
            return 0

        college_fix = rule_set.apply_corrections(raw.college_text, CorrectionCategory.COLLEGE_NAME, usage)
        course_fix = rule_set.apply_corrections(raw.course_text, CorrectionCategory.PROGRAM_NAME, usage)
        location_fix = rule_set.apply_corrections(raw.college_location, CorrectionCategory.LOCATION, usage)
        quota_fix = rule_set.apply_corrections(raw.quota, CorrectionCategory.QUOTA, usage)
        for field_name, fix in (
            ("college_name", college_fix),
            ("course_name", course_fix),
            ("college_location", location_fix),
            ("quota", quota_fix),
        ):
            if fix.changed:
                self.rules.record_history(db, session.id, field_name, fix)

        college = self.matcher.resolve(college_fix.corrected, EntityType.COLLEGE)
        program = self.matcher.resolve(course_fix.corrected, EntityType.PROGRAM)
        self._warn_unresolved(summary, raw.row_number, college, college_fix.corrected)
        self._warn_unresolved(summary, raw.row_number, program, course_fix.corrected)

        context = self._record_context(session, raw, defaults, college, program, location_fix.corrected, quota_fix.corrected)
        confidence = compute_confidence(college.matched, program.matched)
        auto_verify = confidence == 100 and self.config.auto_verify_full_confidence

        for pair in pairs:
            category_fix = rule_set.apply_corrections(pair.category, CorrectionCategory.CATEGORY, usage)
            self.store.add_processed_record(
                db,
                raw_cutoff_id=raw.id,
                session_id=session.id,
                category=self.snapshot.canonical_category(category_fix.corrected or pair.category),
                opening_rank=pair.rank,
                closing_rank=pair.rank,
                cleaned_college_text=college_fix.corrected,
                cleaned_course_text=course_fix.corrected,
                status=RecordStatus.VERIFIED.value if auto_verify else RecordStatus.PENDING.value,
                notes=f"Processed with confidence: {confidence}%",
                **context,
            )

        summary.processed += len(pairs)
        summary.successful += 1
        if confidence == 100:
            summary.fully_resolved += len(pairs)
        if auto_verify:
            summary.auto_verified += len(pairs)
        return len(pairs)

    def _record_context(
        self,
        session: ImportSession,
        raw: RawCutoffRecord,
        defaults: ImportDefaults,
        college: MatchResult,
        program: MatchResult,
        location: str,
        quota_text: str,
    ) -> dict[str, Any]:
        """Fields shared by every processed record of one raw row."""
        info = parse_college_info(college.query or "", location or None)
        college_entity = college.entity
        program_entity = program.entity

        quota = normalize_quota(quota_text) or session.default_quota or normalize_quota(defaults.quota)
        return {
            "college_id": college_entity.id if college_entity else None,
            "program_id": program_entity.id if program_entity else None,
            "college_name": college_entity.name if college_entity else None,
            "college_city": (college_entity.city if college_entity else "") or info.city or None,
            "college_state": (college_entity.state if college_entity else "") or info.state or None,
            "college_type": college_entity.subtype if college_entity else None,
            "program_name": program_entity.name if program_entity else None,
            "program_level": program_entity.subtype if program_entity else None,
            "college_match_tier": int(college.tier) if college.matched else None,
            "program_match_tier": int(program.tier) if program.matched else None,
            "year": raw.year or session.year or defaults.year,
            "round": normalize_round(raw.round) or session.round or normalize_round(defaults.round),
            "authority": session.authority,
            "quota": self.snapshot.canonical_quota(quota),
        }

    @staticmethod
    def _warn_unresolved(summary: ImportSummary, row_number: int, result: MatchResult, text: str) -> None:
        if result.matched:
            return
        message = f"{result.entity_type.value} not matched: {text!r}"
        if result.candidate is not None:
            message += f" (tier {int(result.tier)} candidate {result.candidate.name!r} below acceptance policy)"
        summary.warnings.append(error_entry("entity_unresolved", message, row=row_number))

    # ── Side effects ─────────────────────────────────────────────────

    async def _checkpoint(self, db: AsyncSession, session_id: uuid.UUID, stage: str, done: int, total: int) -> None:
        logger.info("Session %s %s: %d/%d rows", session_id, stage, done, total)
        await db.commit()
        await self.progress.publish(session_id, stage, done, total)

    async def _flush_usage(self, db: AsyncSession, usage: UsageAccumulator) -> None:
        """Write batched rule statistics. Failures are logged, never raised."""
        if not len(usage):
            return
        try:
            async with db.begin_nested():
                touched = await self.rules.flush_usage(db, usage)
            logger.debug("Flushed usage counters for %d rules", touched)
        except Exception:
            logger.exception("Failed to flush correction rule usage statistics")
