"""Staging tables: untrusted import data awaiting verification and migration.

ImportSession → RawCutoffRecord (one per input row) → ProcessedCutoffRecord
(one per parsed category/rank pair) → ManualCorrection (human edits).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cutoff_ingest.models.base import Base, CreatedAtMixin, TimestampMixin
from cutoff_ingest.models.enums import ImportSessionStatus, RecordStatus


class ImportSession(TimestampMixin, Base):
    """One submitted file and its progress through the pipeline."""

    __tablename__ = "import_sessions"

    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_type: Mapped[str] = mapped_column(String(10), nullable=False, comment="csv or xlsx")
    authority_hint: Mapped[str | None] = mapped_column(String(100))

    # Metadata resolved from filename or caller defaults
    authority: Mapped[str | None] = mapped_column(String(100))
    year: Mapped[int | None] = mapped_column(Integer)
    round: Mapped[str | None] = mapped_column(String(10))
    default_quota: Mapped[str | None] = mapped_column(String(50))

    # Counters
    total_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    raw_imported: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    verified: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    migrated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ImportSessionStatus.ACTIVE.value, index=True
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    notes: Mapped[str | None] = mapped_column(Text)

    # [{"row": 12, "kind": "rank_parse", "message": "..."}]
    error_log: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONB)

    raw_records: Mapped[list[RawCutoffRecord]] = relationship(
        "RawCutoffRecord", back_populates="session", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<ImportSession {self.file_name} status={self.status}>"


class RawCutoffRecord(CreatedAtMixin, Base):
    """A single input row exactly as read. Immutable once written."""

    __tablename__ = "raw_cutoffs"

    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("import_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    row_number: Mapped[int] = mapped_column(Integer, nullable=False)
    raw_data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)

    # As-extracted fields, before any cleaning
    rank: Mapped[int | None] = mapped_column(Integer)
    quota: Mapped[str | None] = mapped_column(String(100))
    college_text: Mapped[str | None] = mapped_column(Text)
    college_location: Mapped[str | None] = mapped_column(String(255))
    course_text: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str | None] = mapped_column(String(50))
    all_ranks: Mapped[str | None] = mapped_column(Text)
    round: Mapped[str | None] = mapped_column(String(20))
    year: Mapped[int | None] = mapped_column(Integer)

    # Set when the row failed input validation (quarantined, never processed)
    validation_error: Mapped[str | None] = mapped_column(Text)

    session: Mapped[ImportSession] = relationship("ImportSession", back_populates="raw_records")


class ProcessedCutoffRecord(TimestampMixin, Base):
    """One resolved (college, program, category, rank) candidate."""

    __tablename__ = "processed_cutoffs"

    raw_cutoff_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("raw_cutoffs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("import_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Reference entity ids (nullable, absence means unresolved)
    college_id: Mapped[str | None] = mapped_column(String(64), index=True)
    program_id: Mapped[str | None] = mapped_column(String(64), index=True)

    # Denormalized reference data captured at resolution time, used by migration
    college_name: Mapped[str | None] = mapped_column(String(500))
    college_city: Mapped[str | None] = mapped_column(String(100))
    college_state: Mapped[str | None] = mapped_column(String(100))
    college_type: Mapped[str | None] = mapped_column(String(20))
    program_name: Mapped[str | None] = mapped_column(String(255))
    program_level: Mapped[str | None] = mapped_column(String(20))
    college_match_tier: Mapped[int | None] = mapped_column(Integer)
    program_match_tier: Mapped[int | None] = mapped_column(Integer)

    # Cleaned source text, kept for manual review
    cleaned_college_text: Mapped[str | None] = mapped_column(Text)
    cleaned_course_text: Mapped[str | None] = mapped_column(Text)

    year: Mapped[int | None] = mapped_column(Integer)
    round: Mapped[str | None] = mapped_column(String(10))
    authority: Mapped[str | None] = mapped_column(String(100))
    quota: Mapped[str | None] = mapped_column(String(50))
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    opening_rank: Mapped[int | None] = mapped_column(Integer)
    closing_rank: Mapped[int | None] = mapped_column(Integer)
    seats_available: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    seats_filled: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    confidence_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RecordStatus.PENDING.value, index=True
    )
    manual_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text)

    corrections: Mapped[list[ManualCorrection]] = relationship(
        "ManualCorrection", back_populates="record", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<ProcessedCutoffRecord {self.category}:{self.closing_rank} conf={self.confidence_score}>"


class ManualCorrection(CreatedAtMixin, Base):
    """Append-only trail of human edits made during verification."""

    __tablename__ = "manual_corrections"

    processed_cutoff_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("processed_cutoffs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    field_name: Mapped[str] = mapped_column(String(50), nullable=False)
    original_value: Mapped[str | None] = mapped_column(Text)
    corrected_value: Mapped[str | None] = mapped_column(Text)
    correction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    corrected_by: Mapped[str | None] = mapped_column(String(100))
    notes: Mapped[str | None] = mapped_column(Text)

    record: Mapped[ProcessedCutoffRecord] = relationship("ProcessedCutoffRecord", back_populates="corrections")
