"""Canonical store: the authoritative colleges, programs, and cutoffs.

Written only by the migration engine. Each table carries the natural dedup
key as a unique constraint so repeated migrations update rather than duplicate.
"""

from __future__ import annotations

import uuid

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cutoff_ingest.models.base import Base, TimestampMixin
from cutoff_ingest.models.enums import CollegeType, CutoffStatus


class College(TimestampMixin, Base):
    """A canonical college, unique on (normalized_name, city, state)."""

    __tablename__ = "colleges"
    __table_args__ = (UniqueConstraint("normalized_name", "city", "state", name="uq_college_identity"),)

    name: Mapped[str] = mapped_column(String(500), nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    address: Mapped[str | None] = mapped_column(Text)
    # Empty string rather than NULL so the unique constraint holds
    city: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    state: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    college_type: Mapped[str] = mapped_column(String(20), nullable=False, default=CollegeType.MEDICAL.value)
    management_type: Mapped[str | None] = mapped_column(String(30))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    source: Mapped[str] = mapped_column(String(30), nullable=False, default="import")
    reference_id: Mapped[str | None] = mapped_column(String(64), index=True)

    programs: Mapped[list[Program]] = relationship("Program", back_populates="college")

    def __repr__(self) -> str:
        return f"<College {self.name} ({self.city}, {self.state})>"


class Program(TimestampMixin, Base):
    """A program offered by one college, unique on (college_id, normalized_name)."""

    __tablename__ = "programs"
    __table_args__ = (UniqueConstraint("college_id", "normalized_name", name="uq_program_identity"),)

    college_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("colleges.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(255), nullable=False)
    level: Mapped[str | None] = mapped_column(String(20), comment="UG, PG, DIPLOMA, DNB, FELLOWSHIP")
    specialization: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    reference_id: Mapped[str | None] = mapped_column(String(64))

    college: Mapped[College] = relationship("College", back_populates="programs")


class Cutoff(TimestampMixin, Base):
    """Opening/closing rank for one college, program, and selection context."""

    __tablename__ = "cutoffs"
    __table_args__ = (
        UniqueConstraint(
            "college_id",
            "program_id",
            "year",
            "round",
            "authority",
            "quota",
            "category",
            name="uq_cutoff_identity",
        ),
    )

    college_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("colleges.id"), nullable=False, index=True
    )
    program_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("programs.id"), nullable=False, index=True
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    round: Mapped[str] = mapped_column(String(10), nullable=False)
    authority: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    quota: Mapped[str] = mapped_column(String(50), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    opening_rank: Mapped[int | None] = mapped_column(Integer)
    closing_rank: Mapped[int | None] = mapped_column(Integer)
    seats_available: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    seats_filled: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=CutoffStatus.ACTIVE.value)
    source_file: Mapped[str | None] = mapped_column(String(255))
    import_session_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
